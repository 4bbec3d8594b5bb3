"""
Django-Criteria Filter Utilities

Groups criteria by dot-notation depth so each JOIN sees all of its
criteria together.

Buckets:
- direct: "status" -> field on the primary model
- relationship: "movies_movie_quotes.name" -> {relationship: {field: [...]}}
- related: "movies_movie_quotes.Movies.name" -> {(relationship, model): {field: [...]}}

Classification is purely syntactic; validation has already happened.
"""

from django_criteria.descriptors import CriteriaEntry


def split_criteria_key(key):
    """
    Split a criteria key into (relationship, model, field).

    Examples:
        >>> split_criteria_key("status")
        (None, None, 'status')
        >>> split_criteria_key("movies_movie_quotes.name")
        ('movies_movie_quotes', None, 'name')
        >>> split_criteria_key("movies_movie_quotes.movies.deleted_at")
        ('movies_movie_quotes', 'movies', 'deleted_at')
    """
    parts = key.split(".")
    if len(parts) == 1:
        return None, None, key
    if len(parts) == 2:
        return parts[0], None, parts[1]
    return parts[0], parts[1], ".".join(parts[2:])


def _entries(criteria):
    """Accept a bare criteria map or an iterable of CriteriaEntry."""
    if isinstance(criteria, dict):
        return [CriteriaEntry.from_value(key, value) for key, value in criteria.items()]
    return list(criteria or ())


def classify_criteria(criteria):
    """
    Partition criteria into direct, relationship and related-model buckets.

    Each bucket keeps criteria per field in arrival order, so two criteria
    on the same key (e.g. gte and lte) both survive.

    Args:
        criteria: Dict of key -> value, or a list of CriteriaEntry

    Returns:
        Tuple of (direct, relationship, related):
        - direct: {field: [CriteriaEntry, ...]}
        - relationship: {relationship: {field: [CriteriaEntry, ...]}}
        - related: {(relationship, model): {field: [CriteriaEntry, ...]}}

    Examples:
        >>> direct, rel, related = classify_criteria({
        ...     "status": "active",
        ...     "movies_movie_quotes.movies.deleted_at": None,
        ... })
        >>> list(direct)
        ['status']
        >>> list(related)
        [('movies_movie_quotes', 'movies')]
    """
    direct = {}
    relationship = {}
    related = {}

    for entry in _entries(criteria):
        rel_name, model_name, field_name = split_criteria_key(entry.key)
        if rel_name is None:
            direct.setdefault(field_name, []).append(entry)
        elif model_name is None:
            relationship.setdefault(rel_name, {}).setdefault(field_name, []).append(entry)
        else:
            related.setdefault((rel_name, model_name), {}).setdefault(field_name, []).append(entry)

    return direct, relationship, related


def extract_filter_keys(criteria):
    """
    List the distinct criteria keys in arrival order.

    Examples:
        >>> extract_filter_keys({"name": "Test", "status": "active"})
        ['name', 'status']
    """
    keys = []
    for entry in _entries(criteria):
        if entry.key not in keys:
            keys.append(entry.key)
    return keys

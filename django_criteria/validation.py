"""
Django-Criteria Validation

Checks parsed criteria and search terms against the target model before
they reach SQL construction.

Policy:
- A bad criterion never fails the request; it is dropped and recorded
  as a rejection (FieldNotFound, OperatorNotSupported, ValueShapeInvalid)
- Strict mode turns any rejection into a single CriteriaValidationError
- Unknown models or relationships are always fatal
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from django.utils.dateparse import parse_date, parse_datetime

from django_criteria.conf import criteria_settings
from django_criteria.exceptions import (
    CriteriaValidationError,
    FieldNotFound,
    OperatorNotSupported,
    SchemaNotFound,
    ValueShapeInvalid,
)
from django_criteria.operators import (
    LIKE_OPERATORS,
    LIST_OPERATORS,
    NULL_OPERATORS,
    FieldType,
    Operator,
    describe_operators,
    normalize_operator,
    sorted_operators,
)
from django_criteria.schema import NEVER_SEARCHABLE_TYPES, SEARCHABLE_TYPES

logger = logging.getLogger("django_criteria")

SEARCH_OPERATORS = ("contains", "startsWith", "endsWith", "equals")

TRUE_STRINGS = {"true", "1", "yes", "on"}
FALSE_STRINGS = {"false", "0", "no", "off"}

INTEGER_TYPES = {FieldType.INTEGER}
ID_TYPES = {FieldType.ID, FieldType.RELATED_RECORD}
OPTION_TYPES = {FieldType.ENUM, FieldType.RADIO_BUTTON_SET, FieldType.MULTI_ENUM}

# Signed 64-bit, the widest integer column the supported databases bind
MIN_INTEGER, MAX_INTEGER = -(2**63), 2**63 - 1


@dataclass(frozen=True)
class ResolvedField:
    """
    Where a criterion key points.

    Attributes:
        field: FieldDescriptor of the target column
        relationship: RelationshipDescriptor for dotted keys, else None
        related_schema: ModelSchema across the relationship, else None
        on_relationship_table: True when the column lives on the
            relationship table itself rather than the related model
    """

    field: Any
    relationship: Any = None
    related_schema: Any = None
    on_relationship_table: bool = False

    @property
    def is_direct(self):
        return self.relationship is None


def _model_segment_matches(segment, schema):
    return segment in (schema.name, schema.table) or segment.lower() == schema.name.lower()


def resolve_key(key, schema, registry):
    """
    Resolve a dot-notation key to the field it names.

    Depth 0 names a field on schema. Depth 1 names relationship.field, looked
    up on the related model first, then on the relationship table. Depth 2+
    names relationship.relatedModel.field, where relatedModel must be the
    model across that relationship.

    Raises:
        FieldNotFound: if a field or model segment does not resolve
        SchemaNotFound: if the relationship is unknown, or its other model is
            not registered
    """
    path = key.split(".")

    if len(path) == 1:
        descriptor = schema.get_field(key)
        if descriptor is None or not descriptor.is_db_field:
            raise FieldNotFound(
                key,
                f"Field '{key}' does not exist on model '{schema.name}'",
                suggestions=[f.name for f in schema.db_fields],
            )
        return ResolvedField(descriptor)

    rel_name = path[0]
    if registry is None or rel_name not in schema.relationships:
        logger.warning("Unknown relationship '%s' on %s in key '%s'", rel_name, schema.name, key)
        raise SchemaNotFound(rel_name, kind="relationship")
    relationship = registry.get_relationship(schema, rel_name)
    related_schema = registry.get_model_schema(registry.resolve_other_model(relationship, schema))

    if len(path) == 2:
        field_name = path[1]
        descriptor = related_schema.get_field(field_name)
        if descriptor is not None and descriptor.is_db_field:
            return ResolvedField(descriptor, relationship, related_schema)
        descriptor = relationship.get_field(field_name)
        if descriptor is not None:
            return ResolvedField(descriptor, relationship, related_schema, on_relationship_table=True)
        raise FieldNotFound(
            key,
            f"Field '{field_name}' does not exist on '{related_schema.name}' or relationship '{rel_name}'",
            suggestions=[f.name for f in related_schema.db_fields],
        )

    model_segment = path[1]
    if not _model_segment_matches(model_segment, related_schema):
        raise FieldNotFound(
            key,
            f"Model '{model_segment}' is not related through '{rel_name}' (expected '{related_schema.name}')",
            suggestions=[related_schema.name],
        )
    field_name = ".".join(path[2:])
    descriptor = related_schema.get_field(field_name)
    if descriptor is None or not descriptor.is_db_field:
        raise FieldNotFound(
            key,
            f"Field '{field_name}' does not exist on model '{related_schema.name}'",
            suggestions=[f.name for f in related_schema.db_fields],
        )
    return ResolvedField(descriptor, relationship, related_schema)


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def _check_integer(value):
    if not MIN_INTEGER <= value <= MAX_INTEGER:
        raise ValueError("integer out of range")
    return value


def coerce_value(descriptor, value):
    """
    Convert one scalar to the Python type matching the field.

    Raises:
        ValueError: if the value cannot represent the field's type
    """
    field_type = descriptor.type

    if isinstance(value, (dict, list, tuple)):
        raise ValueError("expected a single value")

    if field_type in INTEGER_TYPES:
        if isinstance(value, bool):
            raise ValueError("expected an integer")
        if isinstance(value, float) and not value.is_integer():
            raise ValueError("expected an integer")
        return _check_integer(int(str(value).strip()) if not isinstance(value, (int, float)) else int(value))

    if field_type in ID_TYPES:
        if isinstance(value, int) and not isinstance(value, bool):
            return _check_integer(value)
        text = str(value).strip()
        if not text:
            raise ValueError("expected an identifier")
        return _check_integer(int(text)) if text.isdigit() else text

    if field_type == FieldType.FLOAT:
        if isinstance(value, bool):
            raise ValueError("expected a number")
        number = float(value)
        if not math.isfinite(number):
            raise ValueError("expected a finite number")
        return number

    if field_type == FieldType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        text = str(value).strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        raise ValueError("expected a boolean")

    if field_type == FieldType.DATE:
        parsed = parse_date(str(value).strip())
        if parsed is None:
            raise ValueError("expected a date (YYYY-MM-DD)")
        return parsed.isoformat()

    if field_type == FieldType.DATETIME:
        text = str(value).strip()
        parsed = parse_datetime(text)
        if parsed is None:
            day = parse_date(text)
            if day is None:
                raise ValueError("expected a datetime (YYYY-MM-DD HH:MM:SS)")
            return f"{day.isoformat()} 00:00:00"
        return parsed.isoformat(sep=" ")

    if field_type in OPTION_TYPES:
        text = str(value)
        if descriptor.options and text not in descriptor.options:
            raise ValueError(f"'{text}' is not one of {', '.join(descriptor.options)}")
        return text

    return str(value)


def _as_list(value):
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    if value is None or isinstance(value, dict):
        raise ValueError("expected a list of values")
    return [value]


def normalize_value(descriptor, operator, value):
    """
    Check the value shape for the operator and coerce it.

    Returns:
        The coerced value: None for null checks, a list for list operators,
        a two-element list for between, a scalar otherwise

    Raises:
        ValueError: on a wrong shape or an uncoercible value
    """
    if operator in NULL_OPERATORS:
        if value in (None, "", True) or (isinstance(value, str) and value.lower() in TRUE_STRINGS):
            return None
        raise ValueError(f"{operator.value} takes no value")

    if operator in LIST_OPERATORS:
        values = _as_list(value)
        if descriptor.type == FieldType.MULTI_ENUM and operator not in (Operator.IN, Operator.NOT_IN):
            if not values:
                raise ValueError(f"{operator.value} requires at least one value")
        return [coerce_value(descriptor, v) for v in values]

    if operator == Operator.BETWEEN:
        values = _as_list(value)
        if len(values) != 2:
            raise ValueError("between requires exactly two values")
        if any(v is None or v == "" for v in values):
            raise ValueError("between bounds cannot be empty")
        low, high = (coerce_value(descriptor, v) for v in values)
        if low > high:
            raise ValueError("between bounds must be ordered (low, high)")
        return [low, high]

    if value is None:
        raise ValueError(f"{operator.value} requires a value (use isNull to match nulls)")

    if operator in LIKE_OPERATORS:
        if isinstance(value, (dict, list, tuple)):
            raise ValueError(f"{operator.value} requires a single text value")
        text = str(value)
        if not text:
            raise ValueError(f"{operator.value} requires a non-empty value")
        return text

    if descriptor.type == FieldType.MULTI_ENUM:
        # equals/notEquals compare the whole stored set
        if isinstance(value, (list, tuple)):
            return [coerce_value(descriptor, v) for v in value]
        return [coerce_value(descriptor, v) for v in _as_list(value)]

    return coerce_value(descriptor, value)


# ---------------------------------------------------------------------------
# Search fields
# ---------------------------------------------------------------------------


def _search_candidate(schema, name):
    descriptor = schema.get_field(name)
    if descriptor is None or not descriptor.is_db_field:
        return None
    if descriptor.type in NEVER_SEARCHABLE_TYPES:
        return None
    return descriptor


def default_search_fields(schema):
    """
    Fields a free-text search targets when the request names none.

    Order of precedence:
    1. The model's explicit searchableFields override
    2. Its display columns that are of a searchable type
    3. Every Text and Email field (plus fields flagged isSearchable)

    Password and Image fields are never returned.
    """
    if schema.searchable_fields is not None:
        return [name for name in schema.searchable_fields if _search_candidate(schema, name) is not None]

    display = []
    for name in schema.display_columns:
        descriptor = _search_candidate(schema, name)
        if descriptor is not None and descriptor.type in SEARCHABLE_TYPES:
            display.append(name)
    if display:
        return display

    return [
        f.name
        for f in schema.db_fields
        if f.searchable and (f.type in (FieldType.TEXT, FieldType.EMAIL) or f.is_searchable)
    ]


def resolve_search_fields(schema, requested=()):
    """
    Narrow requested search fields to searchable ones.

    Returns:
        Tuple of (fields, rejected) where rejected lists FieldNotFound errors
        for requested fields that cannot be searched. Falls back to the
        default search fields when no requested field survives.
    """
    rejected = []
    fields = []
    for name in requested:
        descriptor = _search_candidate(schema, name)
        if descriptor is None or not (descriptor.searchable or descriptor.type in SEARCHABLE_TYPES):
            logger.warning("Search field '%s' is not searchable on %s, dropping", name, schema.name)
            rejected.append(
                FieldNotFound(
                    name,
                    f"Field '{name}' is not searchable on model '{schema.name}'",
                    suggestions=default_search_fields(schema),
                )
            )
            continue
        if name not in fields:
            fields.append(name)

    if not fields:
        fields = default_search_fields(schema)
    return fields, rejected


def available_filters(schema):
    """
    Describe every filterable field of a model for clients.

    Example:
        >>> available_filters(schema)["password"]
        {'type': 'Password', 'operators': ['isNull', 'isNotNull'], 'descriptions': {...}}
    """
    result = {}
    for descriptor in schema.db_fields:
        entry = {
            "type": descriptor.type.value,
            "operators": sorted_operators(descriptor.supported_operators),
            "descriptions": describe_operators(descriptor.supported_operators),
        }
        if descriptor.options:
            entry["options"] = list(descriptor.options)
        if descriptor.related_model:
            entry["relatedModel"] = descriptor.related_model
        result[descriptor.name] = entry
    return result


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class CriteriaValidator:
    """
    Validates a QueryDescriptor against its model schema.

    Example:
        validator = CriteriaValidator(registry)
        validated = validator.validate(descriptor)
        validated.criteria   # only usable criteria, values coerced
        validated.rejected   # CriterionError instances for the rest
    """

    def __init__(self, registry=None, strict: Optional[bool] = None):
        self.registry = registry
        self.strict = criteria_settings.STRICT_FILTERS if strict is None else strict

    def validate_criterion(self, entry, schema, raise_errors=False):
        """
        Validate one CriteriaEntry.

        Returns:
            A new CriteriaEntry with a canonical operator and coerced value,
            or None when rejected (the error is returned via raise_errors=True
            or collected by validate())
        """
        try:
            return self._validate_entry(entry, schema)
        except (FieldNotFound, OperatorNotSupported, ValueShapeInvalid):
            if raise_errors:
                raise
            return None

    def _validate_entry(self, entry, schema):
        resolved = resolve_key(entry.key, schema, self.registry)
        descriptor = resolved.field

        operator = normalize_operator(entry.operator)
        if operator is None or not descriptor.supports(operator):
            supported = sorted_operators(descriptor.supported_operators)
            raise OperatorNotSupported(
                entry.key,
                f"Operator '{entry.operator_name}' is not supported for {descriptor.type.value} "
                f"field '{descriptor.name}'. Supported: {', '.join(supported)}",
                operator=entry.operator_name,
                suggestions=supported,
            )

        try:
            value = normalize_value(descriptor, operator, entry.value)
        except (TypeError, ValueError) as e:
            raise ValueShapeInvalid(
                entry.key,
                f"Invalid value for '{entry.key}' with operator '{operator.value}': {e}",
                operator=operator.value,
            )

        return type(entry)(entry.key, operator, value)

    def validate_search(self, search, schema):
        """Return (search or None, rejected) with fields and operator resolved."""
        if search is None or not search.term.strip():
            return None, []

        operator = search.operator
        if operator not in SEARCH_OPERATORS:
            logger.warning("Invalid search operator '%s', using 'contains'", operator)
            operator = "contains"

        fields, rejected = resolve_search_fields(schema, search.fields)
        if not fields:
            logger.warning("No searchable fields on %s, ignoring search '%s'", schema.name, search.term)
            return None, rejected

        return type(search)(term=search.term.strip(), fields=tuple(fields), operator=operator), rejected

    def validate(self, descriptor, require_criteria=False):
        """
        Validate every criterion and the search of a descriptor.

        Collects all rejections before deciding; never fails on the first.

        Args:
            descriptor: QueryDescriptor from the request parser
            require_criteria: Fail when criteria were sent but none survived

        Returns:
            A new QueryDescriptor holding only usable criteria, with the
            rejections appended to its rejected list

        Raises:
            CriteriaValidationError: in strict mode if anything was rejected,
                or when require_criteria is set and nothing usable remains
        """
        schema = descriptor.model
        accepted = []
        rejected = list(descriptor.rejected)

        for entry in descriptor.criteria:
            try:
                valid = self._validate_entry(entry, schema)
            except (FieldNotFound, OperatorNotSupported, ValueShapeInvalid) as e:
                logger.warning("Rejected filter '%s' on %s: %s", entry.key, schema.name, e)
                rejected.append(e)
                continue
            logger.debug("Accepted filter %s %s", valid.key, valid.operator.value)
            accepted.append(valid)

        search, search_rejected = self.validate_search(descriptor.search, schema)
        rejected.extend(search_rejected)

        logger.info(
            "Validation completed for %s: %d accepted, %d rejected",
            schema.name,
            len(accepted),
            len(rejected),
        )

        if rejected and self.strict:
            raise CriteriaValidationError(rejected)
        if require_criteria and descriptor.criteria and not accepted:
            raise CriteriaValidationError(rejected)

        return descriptor.replace(criteria=tuple(accepted), search=search, rejected=rejected)

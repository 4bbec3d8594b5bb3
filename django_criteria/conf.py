"""
Django-Criteria Settings

Configuration is read from Django settings under the DJANGO_CRITERIA key.
All settings have sensible defaults.

Example:
    # settings.py
    DJANGO_CRITERIA = {
        'DEFAULT_PAGE_SIZE': 25,
        'MAX_PAGE_SIZE': 500,
        'STRICT_FILTERS': False,
        'MODELS': {...},
        'RELATIONSHIPS': {...},
    }
"""

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

PARAMSTYLES = ("qmark", "format")

DEFAULTS = {
    # Pagination
    "DEFAULT_PAGE_SIZE": 20,
    "MAX_PAGE_SIZE": 1000,
    # Validation policy: False reports rejected filters as warnings,
    # True turns them into a single 400 response
    "STRICT_FILTERS": False,
    # SQL generation
    "PARAMSTYLE": "qmark",  # 'qmark' -> ?, 'format' -> %s
    "DIALECT": None,  # None infers from the Django connection vendor
    # Search
    "SEARCH_MIN_WORD_LENGTH": 2,
    # Response behavior
    "ALWAYS_HTTP_200": False,
    "DEBUG_META": False,
    # Metadata
    "MODELS": {},
    "RELATIONSHIPS": {},
}


class CriteriaSettings:
    """
    A settings object that allows django-criteria settings to be accessed as
    properties. For example:

        from django_criteria.conf import criteria_settings
        print(criteria_settings.MAX_PAGE_SIZE)

    Settings can be overridden in Django settings.py under DJANGO_CRITERIA key.
    """

    def __init__(self, defaults=None):
        self.defaults = defaults or DEFAULTS
        self._cached_attrs = set()

    @property
    def user_settings(self):
        if not hasattr(self, "_user_settings"):
            self._user_settings = getattr(settings, "DJANGO_CRITERIA", {})
        return self._user_settings

    def __getattr__(self, attr):
        if attr not in self.defaults:
            raise AttributeError(f"Invalid django-criteria setting: '{attr}'")

        val = self.check(attr, self.user_settings.get(attr, self.defaults[attr]))

        self._cached_attrs.add(attr)
        setattr(self, attr, val)
        return val

    def check(self, attr, val):
        """
        Reject values the query pipeline cannot work with.

        Raises:
            ImproperlyConfigured: on a bad paramstyle, page size or metadata block
        """
        if attr == "PARAMSTYLE" and val not in PARAMSTYLES:
            raise ImproperlyConfigured(f"DJANGO_CRITERIA['PARAMSTYLE'] must be one of {', '.join(PARAMSTYLES)}, got {val!r}")
        if attr in ("DEFAULT_PAGE_SIZE", "MAX_PAGE_SIZE", "SEARCH_MIN_WORD_LENGTH"):
            if isinstance(val, bool) or not isinstance(val, int) or val < 1:
                raise ImproperlyConfigured(f"DJANGO_CRITERIA['{attr}'] must be a positive integer, got {val!r}")
        if attr in ("MODELS", "RELATIONSHIPS") and not isinstance(val, dict):
            raise ImproperlyConfigured(f"DJANGO_CRITERIA['{attr}'] must be a dict keyed by name")
        if attr == "DIALECT" and val is not None:
            val = str(val).lower()
        return val

    def reload(self):
        """Forget cached values so changed Django settings are picked up (tests)."""
        for attr in self._cached_attrs:
            self.__dict__.pop(attr, None)
        self._cached_attrs.clear()
        self.__dict__.pop("_user_settings", None)


criteria_settings = CriteriaSettings(DEFAULTS)

"""
Tests for django_criteria.conf module.
"""

import pytest


class TestCriteriaSettings:
    """Tests for the criteria_settings object."""

    def test_defaults(self, settings):
        from django_criteria.conf import CriteriaSettings

        settings.DJANGO_CRITERIA = {}
        criteria = CriteriaSettings()

        assert criteria.DEFAULT_PAGE_SIZE == 20
        assert criteria.MAX_PAGE_SIZE == 1000
        assert criteria.STRICT_FILTERS is False
        assert criteria.PARAMSTYLE == "qmark"

    def test_override(self, settings):
        from django_criteria.conf import CriteriaSettings

        settings.DJANGO_CRITERIA = {"MAX_PAGE_SIZE": 100}
        assert CriteriaSettings().MAX_PAGE_SIZE == 100

    def test_reload(self, settings):
        from django_criteria.conf import CriteriaSettings

        criteria = CriteriaSettings()
        settings.DJANGO_CRITERIA = {"DEFAULT_PAGE_SIZE": 10}
        assert criteria.DEFAULT_PAGE_SIZE == 10

        settings.DJANGO_CRITERIA = {"DEFAULT_PAGE_SIZE": 30}
        assert criteria.DEFAULT_PAGE_SIZE == 10
        criteria.reload()
        assert criteria.DEFAULT_PAGE_SIZE == 30

    def test_unknown_setting(self):
        from django_criteria.conf import criteria_settings

        with pytest.raises(AttributeError):
            criteria_settings.NOT_A_SETTING

    def test_bad_paramstyle(self, settings):
        from django.core.exceptions import ImproperlyConfigured

        from django_criteria.conf import CriteriaSettings

        settings.DJANGO_CRITERIA = {"PARAMSTYLE": "named"}
        with pytest.raises(ImproperlyConfigured):
            CriteriaSettings().PARAMSTYLE

    @pytest.mark.parametrize("value", [0, -5, "20", True])
    def test_bad_page_size(self, settings, value):
        from django.core.exceptions import ImproperlyConfigured

        from django_criteria.conf import CriteriaSettings

        settings.DJANGO_CRITERIA = {"MAX_PAGE_SIZE": value}
        with pytest.raises(ImproperlyConfigured):
            CriteriaSettings().MAX_PAGE_SIZE

    def test_models_must_be_mapping(self, settings):
        from django.core.exceptions import ImproperlyConfigured

        from django_criteria.conf import CriteriaSettings

        settings.DJANGO_CRITERIA = {"MODELS": ["Movies"]}
        with pytest.raises(ImproperlyConfigured):
            CriteriaSettings().MODELS

    def test_dialect_lowercased(self, settings):
        from django_criteria.conf import CriteriaSettings

        settings.DJANGO_CRITERIA = {"DIALECT": "MySQL"}
        assert CriteriaSettings().DIALECT == "mysql"

"""
Django-Criteria Field Utilities

Handles model introspection: turns a Django model class into the
read-only ModelSchema the criteria pipeline works with.

Features:
- Map Django field classes to criteria field types
- Concrete (column-backed) fields only
- Foreign keys become RelatedRecord fields on their _id column
"""

import logging

from django.db import models

from django_criteria.operators import FieldType
from django_criteria.schema import FieldDescriptor, ModelSchema

logger = logging.getLogger("django_criteria")

# Checked in order: subclasses before their parents
DJANGO_FIELD_TYPES = (
    (models.AutoField, FieldType.ID),
    (models.BigAutoField, FieldType.ID),
    (models.UUIDField, FieldType.ID),
    (models.ForeignKey, FieldType.RELATED_RECORD),
    (models.EmailField, FieldType.EMAIL),
    (models.ImageField, FieldType.IMAGE),
    (models.FileField, FieldType.IMAGE),
    (models.TextField, FieldType.BIG_TEXT),
    (models.CharField, FieldType.TEXT),
    (models.BooleanField, FieldType.BOOLEAN),
    (models.DateTimeField, FieldType.DATETIME),
    (models.DateField, FieldType.DATE),
    (models.FloatField, FieldType.FLOAT),
    (models.DecimalField, FieldType.FLOAT),
    (models.IntegerField, FieldType.INTEGER),
    (models.JSONField, FieldType.MULTI_ENUM),
)

# Field names that always hold secrets
PASSWORD_FIELD_NAMES = {"password", "password_hash"}


def get_model_fields(model):
    """
    Get list of concrete, column-backed fields for a model.

    Only returns fields with database columns (excludes reverse relations,
    many-to-many through tables, etc.).

    Args:
        model: Django model class

    Returns:
        List of Django field instances
    """
    return [f for f in model._meta.get_fields() if getattr(f, "column", None)]


def get_field_type(field):
    """
    Map a Django field instance to a FieldType.

    Returns:
        FieldType, or None when the field class has no mapping

    Examples:
        >>> get_field_type(User._meta.get_field("email"))
        <FieldType.EMAIL: 'Email'>
        >>> get_field_type(User._meta.get_field("password"))
        <FieldType.PASSWORD: 'Password'>
    """
    if field.name in PASSWORD_FIELD_NAMES:
        return FieldType.PASSWORD

    for field_class, field_type in DJANGO_FIELD_TYPES:
        if isinstance(field, field_class):
            if field_type == FieldType.TEXT and field.choices:
                return FieldType.ENUM
            return field_type
    return None


def describe_field(field):
    """Build a FieldDescriptor for one Django field, or None if unsupported."""
    field_type = get_field_type(field)
    if field_type is None:
        logger.debug(
            "Skipping unsupported field %s (%s)",
            field.name,
            type(field).__name__,
        )
        return None

    if field_type == FieldType.RELATED_RECORD:
        return FieldDescriptor(
            name=field.column,
            type=field_type,
            related_model=field.related_model.__name__,
            display_field_name=f"{field.name}_name",
        )

    options = ()
    if field.choices:
        options = tuple(str(value) for value, _label in field.flatchoices)

    return FieldDescriptor(name=field.column, type=field_type, options=options)


def schema_for_model(model, relationships=(), display_columns=None, searchable_fields=None, sortable_fields=None):
    """
    Build a ModelSchema from a Django model class.

    Args:
        model: Django model class
        relationships: Names of relationships the model takes part in
        display_columns: Columns making up the model's human-readable label
        searchable_fields: Optional explicit search field override
        sortable_fields: Optional explicit sortable field override

    Returns:
        ModelSchema named after the model class, using its db_table

    Example:
        >>> schema = schema_for_model(User, display_columns=["first_name", "last_name"])
        >>> schema.table
        'auth_user'
    """
    fields = [d for d in (describe_field(f) for f in get_model_fields(model)) if d is not None]

    default_sort = tuple(
        (name[1:], "desc") if name.startswith("-") else (name, "asc")
        for name in (model._meta.ordering or ())
        if isinstance(name, str) and name != "?"
    )

    return ModelSchema(
        name=model.__name__,
        table=model._meta.db_table,
        fields=tuple(fields),
        relationships=tuple(relationships),
        display_columns=tuple(display_columns or ()),
        searchable_fields=tuple(searchable_fields) if searchable_fields is not None else None,
        sortable_fields=tuple(sortable_fields) if sortable_fields is not None else None,
        default_sort=default_sort,
        primary_key=model._meta.pk.column,
    )

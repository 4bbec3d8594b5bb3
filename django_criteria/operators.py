"""
Django-Criteria Operator Registry

Maps every field type to the comparison operators it supports.

Provides:
- FieldType and Operator enums (closed sets)
- Default operator table per field type
- Alias normalization for operator names sent by clients
- Human-readable operator descriptions for error messages
"""

from enum import Enum


class FieldType(str, Enum):
    TEXT = "Text"
    EMAIL = "Email"
    BIG_TEXT = "BigText"
    INTEGER = "Integer"
    FLOAT = "Float"
    BOOLEAN = "Boolean"
    DATE = "Date"
    DATETIME = "DateTime"
    ENUM = "Enum"
    RADIO_BUTTON_SET = "RadioButtonSet"
    MULTI_ENUM = "MultiEnum"
    PASSWORD = "Password"
    RELATED_RECORD = "RelatedRecord"
    ID = "ID"
    IMAGE = "Image"

    @classmethod
    def from_metadata(cls, value):
        """
        Resolve a metadata type name to a FieldType.

        Accepts the bare name ("Text") and the class-style name ("TextField").

        Raises:
            ValueError: if the name does not match a known type
        """
        if isinstance(value, cls):
            return value
        name = str(value)
        if name.endswith("Field"):
            name = name[: -len("Field")]
        for member in cls:
            if member.value.lower() == name.lower():
                return member
        raise ValueError(f"Unknown field type: '{value}'")


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "notIn"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"
    OVERLAP = "overlap"
    CONTAINS_ALL = "containsAll"
    CONTAINS_NONE = "containsNone"


# Alternate spellings accepted from clients
OPERATOR_ALIASES = {
    "eq": Operator.EQUALS,
    "ne": Operator.NOT_EQUALS,
    "notEqual": Operator.NOT_EQUALS,
    "greaterThan": Operator.GT,
    "greaterThanOrEqual": Operator.GTE,
    "lessThan": Operator.LT,
    "lessThanOrEqual": Operator.LTE,
}

LIST_OPERATORS = frozenset(
    {
        Operator.IN,
        Operator.NOT_IN,
        Operator.OVERLAP,
        Operator.CONTAINS_ALL,
        Operator.CONTAINS_NONE,
    }
)
NULL_OPERATORS = frozenset({Operator.IS_NULL, Operator.IS_NOT_NULL})
LIKE_OPERATORS = frozenset({Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH})

_TEXT_OPERATORS = (
    Operator.EQUALS,
    Operator.NOT_EQUALS,
    Operator.CONTAINS,
    Operator.STARTS_WITH,
    Operator.ENDS_WITH,
    Operator.IN,
    Operator.NOT_IN,
    Operator.IS_NULL,
    Operator.IS_NOT_NULL,
)
_ORDERED_OPERATORS = (
    Operator.EQUALS,
    Operator.NOT_EQUALS,
    Operator.GT,
    Operator.GTE,
    Operator.LT,
    Operator.LTE,
    Operator.BETWEEN,
    Operator.IN,
    Operator.NOT_IN,
    Operator.IS_NULL,
    Operator.IS_NOT_NULL,
)
_ENUM_OPERATORS = (
    Operator.EQUALS,
    Operator.NOT_EQUALS,
    Operator.IN,
    Operator.NOT_IN,
    Operator.IS_NULL,
    Operator.IS_NOT_NULL,
)
_BASE_OPERATORS = (
    Operator.EQUALS,
    Operator.NOT_EQUALS,
    Operator.IS_NULL,
    Operator.IS_NOT_NULL,
)

DEFAULT_OPERATORS = {
    FieldType.TEXT: frozenset(_TEXT_OPERATORS),
    FieldType.EMAIL: frozenset(_TEXT_OPERATORS),
    FieldType.BIG_TEXT: frozenset(_TEXT_OPERATORS),
    FieldType.INTEGER: frozenset(_ORDERED_OPERATORS),
    FieldType.FLOAT: frozenset(_ORDERED_OPERATORS),
    FieldType.DATE: frozenset(_ORDERED_OPERATORS),
    FieldType.DATETIME: frozenset(_ORDERED_OPERATORS),
    FieldType.BOOLEAN: frozenset(_BASE_OPERATORS),
    FieldType.ENUM: frozenset(_ENUM_OPERATORS),
    FieldType.RADIO_BUTTON_SET: frozenset(_ENUM_OPERATORS),
    FieldType.MULTI_ENUM: frozenset(
        _ENUM_OPERATORS + (Operator.OVERLAP, Operator.CONTAINS_ALL, Operator.CONTAINS_NONE)
    ),
    # Secrets can only be checked for presence, never matched
    FieldType.PASSWORD: frozenset({Operator.IS_NULL, Operator.IS_NOT_NULL}),
    FieldType.RELATED_RECORD: frozenset(_ENUM_OPERATORS),
    FieldType.ID: frozenset(_ENUM_OPERATORS),
    FieldType.IMAGE: frozenset(_BASE_OPERATORS),
}

OPERATOR_DESCRIPTIONS = {
    Operator.EQUALS: "Exact match",
    Operator.NOT_EQUALS: "Not equal to",
    Operator.CONTAINS: "Text contains value",
    Operator.STARTS_WITH: "Text starts with value",
    Operator.ENDS_WITH: "Text ends with value",
    Operator.IN: "Value is in list",
    Operator.NOT_IN: "Value is not in list",
    Operator.GT: "Greater than",
    Operator.GTE: "Greater than or equal to",
    Operator.LT: "Less than",
    Operator.LTE: "Less than or equal to",
    Operator.BETWEEN: "Between two values",
    Operator.IS_NULL: "Field is empty/null",
    Operator.IS_NOT_NULL: "Field is not empty/null",
    Operator.OVERLAP: "Array values overlap",
    Operator.CONTAINS_ALL: "Array contains all values",
    Operator.CONTAINS_NONE: "Array contains none of the values",
}

# Canonical order used when listing operators back to clients
_OPERATOR_ORDER = {op: i for i, op in enumerate(Operator)}


def normalize_operator(name):
    """
    Convert a client operator name to an Operator, or None if unknown.

    Examples:
        >>> normalize_operator("gte")
        <Operator.GTE: 'gte'>
        >>> normalize_operator("greaterThanOrEqual")
        <Operator.GTE: 'gte'>
        >>> normalize_operator("regex") is None
        True
    """
    if isinstance(name, Operator):
        return name
    if not isinstance(name, str):
        return None
    if name in OPERATOR_ALIASES:
        return OPERATOR_ALIASES[name]
    try:
        return Operator(name)
    except ValueError:
        return None


def supported_operators(field_type):
    """Default operator set for a field type."""
    return DEFAULT_OPERATORS[FieldType.from_metadata(field_type)]


def supports_operator(field_type, operator):
    op = normalize_operator(operator)
    return op is not None and op in supported_operators(field_type)


def sorted_operators(operators):
    """Operators in canonical declaration order, as plain strings."""
    return [op.value for op in sorted(operators, key=_OPERATOR_ORDER.__getitem__)]


def describe_operators(operators):
    """
    Map each operator to its human-readable description.

    Example:
        >>> describe_operators({Operator.IS_NULL})
        {'isNull': 'Field is empty/null'}
    """
    return {op.value: OPERATOR_DESCRIPTIONS.get(op, "Custom operator") for op in sorted(operators, key=_OPERATOR_ORDER.__getitem__)}

"""
Django-Criteria Exceptions

Error taxonomy for the criteria pipeline.

Per-criterion problems (FieldNotFound, OperatorNotSupported,
ValueShapeInvalid) are normally recorded as rejections rather than raised;
see django_criteria.validation. SchemaNotFound and JoinPlanningError are
always fatal.
"""


class CriteriaError(Exception):
    """Base class for all django-criteria errors."""

    code = "BAD_REQUEST"


class SchemaNotFound(CriteriaError):
    """Unknown model or relationship name."""

    code = "NOT_FOUND"

    def __init__(self, name, kind="model"):
        self.name = name
        self.kind = kind
        super().__init__(f"Unknown {kind}: '{name}'")


class CriterionError(CriteriaError):
    """
    A single filter or search entry that cannot be used.

    Attributes:
        key: The criterion key as sent by the client (e.g. "movie.name")
        operator: The requested operator, if any
        reason: Machine readable reason code
        suggestions: Valid alternatives (operators or field names)
    """

    reason = "invalid"

    def __init__(self, key, message, operator=None, suggestions=None):
        self.key = key
        self.operator = operator
        self.suggestions = list(suggestions or [])
        super().__init__(message)

    def to_dict(self):
        data = {
            "key": self.key,
            "reason": self.reason,
            "message": str(self),
        }
        if self.operator is not None:
            data["operator"] = self.operator
        if self.suggestions:
            data["suggestions"] = self.suggestions
        return data


class FieldNotFound(CriterionError):
    reason = "field_not_found"


class OperatorNotSupported(CriterionError):
    reason = "operator_not_supported"


class ValueShapeInvalid(CriterionError):
    reason = "value_shape_invalid"


class PaginationOutOfRange(CriteriaError):
    """Page or offset beyond the last addressable row; parsers clamp to the last page."""


class JoinPlanningError(CriteriaError):
    """
    The compiler asked for an alias or identifier that cannot be planned.

    This indicates a defect in query construction, not bad client input.
    """

    code = "INTERNAL_ERROR"


class CriteriaValidationError(CriteriaError):
    """
    Raised in strict mode when one or more criteria were rejected.

    Carries every rejection so the client sees all problems at once.
    """

    def __init__(self, rejected):
        self.rejected = list(rejected)
        keys = ", ".join(r.key for r in self.rejected)
        super().__init__(f"Invalid filters: {keys}")

    def to_list(self):
        return [r.to_dict() for r in self.rejected]

"""
Django-Criteria Query Descriptors

Normalized, format-independent representation of one inbound list request.
Every request parser produces a QueryDescriptor; the validator narrows it
and the compiler turns it into SQL.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Tuple

from django_criteria.exceptions import PaginationOutOfRange
from django_criteria.operators import Operator

# Criterion value meaning "IS NOT NULL" when passed as a bare criteria map value
NOT_NULL = "__NOT_NULL__"

# OFFSET + LIMIT must fit a signed 64-bit integer
MAX_OFFSET = 2**63 - 1


@dataclass(frozen=True)
class CriteriaEntry:
    """
    One filter: dot-notation key, operator and value.

    Key depth: 0 = field on the primary model, 1 = relationship.field,
    2+ = relationship.relatedModel.field.

    Parsers may leave an unrecognized operator as a plain string; the
    validator rejects it.
    """

    key: str
    operator: Any = Operator.EQUALS
    value: Any = None

    @property
    def path(self):
        return self.key.split(".")

    @property
    def depth(self):
        return self.key.count(".")

    @property
    def operator_name(self):
        return getattr(self.operator, "value", self.operator)

    def to_dict(self):
        return {"field": self.key, "operator": self.operator_name, "value": self.value}

    @classmethod
    def from_value(cls, key, value):
        """
        Build an entry from a bare criteria map value.

        None means IS NULL, NOT_NULL means IS NOT NULL, a list or tuple
        means IN, anything else means equality.
        """
        if value is None:
            return cls(key, Operator.IS_NULL)
        if isinstance(value, str) and value == NOT_NULL:
            return cls(key, Operator.IS_NOT_NULL)
        if isinstance(value, (list, tuple, set, frozenset)):
            return cls(key, Operator.IN, list(value))
        return cls(key, Operator.EQUALS, value)


@dataclass(frozen=True)
class SortSpec:
    field: str
    direction: str = "asc"

    def to_dict(self):
        return {"field": self.field, "direction": self.direction}


@dataclass(frozen=True)
class SearchSpec:
    term: str
    fields: Tuple[str, ...] = ()
    operator: str = "contains"

    def to_dict(self):
        return {"term": self.term, "fields": list(self.fields), "operator": self.operator}


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    page_size: int = 20
    offset: Optional[int] = None

    def __post_init__(self):
        if self.offset is None:
            object.__setattr__(self, "offset", (self.page - 1) * self.page_size)
        if self.offset + self.page_size > MAX_OFFSET:
            raise PaginationOutOfRange(
                f"Page {self.page} of size {self.page_size} (offset {self.offset}) is beyond the last addressable row"
            )

    @property
    def limit(self):
        return self.page_size

    def to_dict(self):
        return {
            "page": self.page,
            "pageSize": self.page_size,
            "offset": self.offset,
            "limit": self.limit,
        }


@dataclass
class QueryDescriptor:
    """
    One parsed request.

    Attributes:
        model: ModelSchema the query targets
        criteria: Ordered CriteriaEntry tuple
        search: SearchSpec or None
        sort: Ordered SortSpec tuple
        pagination: Pagination
        response_format: Format tag of the originating request
        options: Extra flags (include_total, include, ...)
        meta: Parsing metadata (detected format, param count)
        rejected: CriterionError instances recorded by validation
        include_deleted: Skip the soft-delete condition
    """

    model: Any
    criteria: Tuple[CriteriaEntry, ...] = ()
    search: Optional[SearchSpec] = None
    sort: Tuple[SortSpec, ...] = ()
    pagination: Pagination = field(default_factory=Pagination)
    response_format: str = "simple"
    options: dict = field(default_factory=dict)
    meta: dict = field(default_factory=dict)
    rejected: list = field(default_factory=list)
    include_deleted: bool = False

    def replace(self, **changes):
        return replace(self, **changes)

    def criteria_map(self):
        """Criteria grouped by key, as {key: [(operator, value), ...]}."""
        grouped = {}
        for entry in self.criteria:
            grouped.setdefault(entry.key, []).append((entry.operator, entry.value))
        return grouped

    def summary(self):
        """Applied filters/sort/search, as returned to clients."""
        return {
            "filters": [c.to_dict() for c in self.criteria],
            "sorting": [s.to_dict() for s in self.sort],
            "search": self.search.to_dict() if self.search else {},
        }


@dataclass(frozen=True)
class PaginationResult:
    total: int
    row_count: int
    offset: int
    limit: int
    page: int = 1

    @property
    def page_size(self):
        return self.limit

    @property
    def page_count(self):
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit

    @property
    def has_next_page(self):
        return self.offset + self.row_count < self.total

    @property
    def has_previous_page(self):
        return self.offset > 0

    def to_dict(self):
        return {
            "page": self.page,
            "pageSize": self.page_size,
            "total": self.total,
            "pageCount": self.page_count,
            "hasNextPage": self.has_next_page,
            "hasPreviousPage": self.has_previous_page,
            "offset": self.offset,
            "limit": self.limit,
        }

    @classmethod
    def from_pagination(cls, pagination, total, row_count):
        return cls(
            total=total,
            row_count=row_count,
            offset=pagination.offset,
            limit=pagination.limit,
            page=pagination.page,
        )

"""
Django-Criteria Response Utilities

Shapes query results for the client that asked for them.

Features:
- One body shape per request format (ag-grid, mui-datagrid, simple,
  advanced/standard, infinite-scroll, cursor)
- Rejected filters reported under warnings.rejected_filters
- Response code management and JsonResponse conversion
"""

import base64
import binascii
import uuid
from decimal import Decimal

from django_criteria.conf import criteria_settings


def serialize_value(value):
    """
    Serialize a value for JSON response.

    Handles the types database drivers return:
    - date, datetime, time -> ISO format string
    - UUID -> string
    - Decimal -> float
    - bytes -> text (utf-8, replacing undecodable bytes)
    """
    if value is None:
        return None

    if hasattr(value, "isoformat"):
        return value.isoformat()

    if isinstance(value, uuid.UUID):
        return str(value)

    if isinstance(value, Decimal):
        return float(value)

    if isinstance(value, (bytes, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")

    return value


def serialize_row(row):
    return {key: serialize_value(value) for key, value in row.items()}


def encode_cursor(offset):
    """
    Opaque cursor for a row offset.

    Examples:
        >>> encode_cursor(20)
        'b2Zmc2V0OjIw'
        >>> decode_cursor(encode_cursor(20))
        20
    """
    return base64.urlsafe_b64encode(f"offset:{int(offset)}".encode()).decode()


def decode_cursor(cursor):
    """Row offset for a cursor, or None if the cursor is not one of ours."""
    try:
        text = base64.urlsafe_b64decode(str(cursor).encode()).decode()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    prefix, _, value = text.partition(":")
    if prefix != "offset" or not value.isdigit():
        return None
    return int(value)


class ResponseFormatter:
    """
    Reshapes rows and a PaginationResult into a response body.

    No business logic lives here; the format tag normally comes from the
    request parser so request and response shapes stay paired.

    Example:
        formatter = ResponseFormatter()
        body = formatter.format(rows, pagination, "mui-datagrid")
        # {'rows': [...], 'rowCount': 42, 'meta': {...}}
    """

    FORMATS = {
        "standard": "Standard REST API format",
        "advanced": "Standard REST API format",
        "structured": "Standard REST API format",
        "simple": "Flat list with total, page and per_page",
        "ag-grid": "AG-Grid server-side data source",
        "mui": "Material-UI DataGrid server-side",
        "mui-datagrid": "Material-UI DataGrid server-side",
        "infinite-scroll": "Infinite scroll pagination",
        "cursor": "Cursor-based pagination",
    }

    def format(self, rows, pagination, format_tag, rejected=(), summary=None, extra_meta=None):
        """
        Build the response body.

        Args:
            rows: List of row dicts
            pagination: PaginationResult
            format_tag: Response format; unknown tags get the standard shape
            rejected: CriterionError instances to report as warnings
            summary: Applied filters/sorting/search (QueryDescriptor.summary())
            extra_meta: Additional entries for the standard meta block

        Returns:
            Dict ready for JSON serialization
        """
        data = [serialize_row(row) for row in rows]
        summary = summary or {}

        builders = {
            "ag-grid": self.format_ag_grid,
            "mui": self.format_mui,
            "mui-datagrid": self.format_mui,
            "simple": self.format_simple,
            "infinite-scroll": self.format_infinite_scroll,
            "cursor": self.format_cursor,
        }
        builder = builders.get(format_tag, self.format_standard)
        if builder == self.format_standard:
            body = builder(data, pagination, summary, extra_meta or {})
        else:
            body = builder(data, pagination, summary)

        if rejected:
            body["warnings"] = {"rejected_filters": [r.to_dict() for r in rejected]}
        return body

    def is_valid_format(self, format_tag):
        return format_tag in self.FORMATS

    def format_ag_grid(self, data, pagination, summary):
        # lastRow is known once the block reaches the end of the result set
        last_row = pagination.total if not pagination.has_next_page else None
        body = {
            "rowData": data,
            "rowCount": pagination.total,
            "lastRow": last_row,
        }
        if criteria_settings.DEBUG_META:
            body["meta"] = {
                "pagination": pagination.to_dict(),
                "filters": summary.get("filters", []),
                "sorting": summary.get("sorting", []),
                "search": summary.get("search", {}),
            }
        return body

    def format_mui(self, data, pagination, summary):
        return {
            "rows": data,
            "rowCount": pagination.total,
            "meta": {
                # MUI pages are 0-based
                "page": pagination.page - 1,
                "pageSize": pagination.page_size,
                "total": pagination.total,
                "hasNextPage": pagination.has_next_page,
                "hasPreviousPage": pagination.has_previous_page,
            },
            "filters": summary.get("filters", []),
            "sorting": summary.get("sorting", []),
        }

    def format_simple(self, data, pagination, summary):
        return {
            "data": data,
            "total": pagination.total,
            "page": pagination.page,
            "per_page": pagination.page_size,
        }

    def format_infinite_scroll(self, data, pagination, summary):
        next_cursor = None
        if pagination.has_next_page:
            next_cursor = encode_cursor(pagination.offset + pagination.row_count)
        return {
            "data": data,
            "pagination": {
                "hasNextPage": pagination.has_next_page,
                "nextCursor": next_cursor,
                "pageSize": pagination.page_size,
            },
            "meta": {
                "total": pagination.total,
                "filters": summary.get("filters", []),
                "search": summary.get("search", {}),
            },
        }

    def format_cursor(self, data, pagination, summary):
        start_cursor = encode_cursor(pagination.offset) if data else None
        end_cursor = encode_cursor(pagination.offset + len(data)) if data else None
        return {
            "data": data,
            "pageInfo": {
                "hasNextPage": pagination.has_next_page,
                "hasPreviousPage": pagination.has_previous_page,
                "startCursor": start_cursor,
                "endCursor": end_cursor,
            },
            "meta": {
                "total": pagination.total,
                "filters": summary.get("filters", []),
                "sorting": summary.get("sorting", []),
            },
        }

    def format_standard(self, data, pagination, summary, extra_meta):
        meta = {
            "pagination": pagination.to_dict(),
            "filters": summary.get("filters", []),
            "sorting": summary.get("sorting", []),
            "search": summary.get("search", {}),
        }
        meta.update(extra_meta)
        return {"data": data, "meta": meta}


def format_response(rows, pagination, format_tag, rejected=(), **kwargs):
    """Shortcut for ResponseFormatter().format()."""
    return ResponseFormatter().format(rows, pagination, format_tag, rejected=rejected, **kwargs)


class CriteriaResponse:
    """
    Response builder for django-criteria endpoints.

    Success/error is indicated by HTTP status codes. When ALWAYS_HTTP_200=True,
    every response is HTTP 200 with status_code in the payload.

    Example:
        >>> response = CriteriaResponse.ok(data=[], total=0)
        >>> response.to_dict()
        {'data': [], 'total': 0}

        >>> response = CriteriaResponse.error("NOT_FOUND", "Unknown model: 'Foo'")
        >>> response.to_dict()
        {'error': "Unknown model: 'Foo'"}
    """

    STATUS_MAP = {
        "OK": 200,
        "OK_QUERY": 200,
        "BAD_REQUEST": 400,
        "INVALID_FILTERS": 400,
        "NOT_FOUND": 404,
        "METHOD_NOT_ALLOWED": 405,
        "INTERNAL_ERROR": 500,
    }

    MSG_MAP = {
        "OK": "Success",
        "OK_QUERY": "Query successful",
        "BAD_REQUEST": "Bad request",
        "INVALID_FILTERS": "Invalid filters",
        "NOT_FOUND": "Not found",
        "METHOD_NOT_ALLOWED": "Method not allowed",
        "INTERNAL_ERROR": "Internal server error",
    }

    def __init__(self, code="OK", warning=False, error_message=None, **data):
        self.code = code
        self.warning = warning
        self.error_message = error_message
        self.data = data

    @property
    def success(self):
        return self.code in ("OK", "OK_QUERY")

    @property
    def http_status(self):
        return self.STATUS_MAP.get(self.code, 500)

    @classmethod
    def ok(cls, **data):
        return cls(code="OK", **data)

    @classmethod
    def ok_query(cls, body, rejected=()):
        """Successful query; flagged as a warning when filters were dropped."""
        return cls(code="OK_QUERY", warning=bool(rejected), **body)

    @classmethod
    def error(cls, code, message=None, **data):
        return cls(code=code, error_message=message, **data)

    @classmethod
    def from_exception(cls, exc):
        """Map a CriteriaError to its response."""
        rejected = getattr(exc, "rejected", None)
        if rejected is not None:
            return cls.error("INVALID_FILTERS", str(exc), rejected_filters=exc.to_list())
        return cls.error(getattr(exc, "code", "INTERNAL_ERROR"), str(exc))

    def to_dict(self, include_status_code=False):
        """
        Convert response to dictionary for JSON serialization.

        When include_status_code is True (ALWAYS_HTTP_200 mode):
            - status_code: HTTP status code (200, 400, ...)
            - success: True/False
            - error: Error message (for error responses)
            - warning: Warning message (for warning responses)
            Plus any additional data fields.
        """
        result = {}

        if include_status_code:
            result["status_code"] = self.http_status
            result["success"] = self.success

            if self.error_message:
                result["error"] = self.error_message
            elif not self.success:
                result["error"] = self.MSG_MAP.get(self.code, "An error occurred")

            if self.warning:
                result["warning"] = "Some filters were rejected"

        elif self.error_message:
            result["error"] = self.error_message

        result.update(self.data)
        return result

    def to_json_response(self):
        """
        Convert to Django JsonResponse.

        ALWAYS_HTTP_200=True returns 200 with status_code in the body;
        otherwise the HTTP status carries the outcome.
        """
        from django.http import JsonResponse

        if criteria_settings.ALWAYS_HTTP_200:
            return JsonResponse(self.to_dict(include_status_code=True), status=200)
        return JsonResponse(self.to_dict(), status=self.http_status)

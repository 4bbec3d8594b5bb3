"""
Django-Criteria Request Parsers

Turns raw request parameters into a QueryDescriptor.

Supported request shapes, detected in priority order (most specific first):
- ag-grid: startRow/endRow with filters/sort or a JSON filterModel
- mui-datagrid: JSON filterModel/sortModel using MUI operator names
- advanced: per_page, search_fields, include_* flags, sort=field:dir
- structured: filter[field][operator]=value, sort[0][field]=...
- simple: flat field=value, page/limit, sort=field (always matches)

Raw parameters may be a plain dict or a Django QueryDict. Bracketed keys
such as "filter[age][gte]" are expanded into nested dicts before detection.
"""

import json
import logging
import re

from django_criteria.conf import criteria_settings
from django_criteria.descriptors import MAX_OFFSET, CriteriaEntry, Pagination, QueryDescriptor, SearchSpec, SortSpec
from django_criteria.exceptions import PaginationOutOfRange
from django_criteria.operators import Operator, normalize_operator
from django_criteria.response import decode_cursor

logger = logging.getLogger("django_criteria")

_BRACKET_KEY_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")
_BRACKET_PART_RE = re.compile(r"\[([^\[\]]*)\]")

TRUE_VALUES = {"true", "1", "yes", "on"}
SPLIT_OPERATORS = {"in", "notIn", "between", "overlap", "containsAll", "containsNone"}


# ---------------------------------------------------------------------------
# Raw parameter helpers
# ---------------------------------------------------------------------------


def flatten_params(raw_params):
    """
    Convert a QueryDict (or any mapping) into a plain dict.

    Keys sent once map to their single value; repeated keys map to a list.
    """
    if raw_params is None:
        return {}
    if hasattr(raw_params, "lists"):
        return {key: values[0] if len(values) == 1 else list(values) for key, values in raw_params.lists()}
    return dict(raw_params)


def expand_brackets(params):
    """
    Expand bracketed keys into nested dicts.

    Examples:
        >>> expand_brackets({"filter[age][gte]": "18", "page": "2"})
        {'filter': {'age': {'gte': '18'}}, 'page': '2'}
        >>> expand_brackets({"sort[0][colId]": "name", "sort[0][sort]": "desc"})
        {'sort': {'0': {'colId': 'name', 'sort': 'desc'}}}
    """
    expanded = {}
    for key, value in params.items():
        match = _BRACKET_KEY_RE.match(key) if isinstance(key, str) else None
        if not match:
            existing = expanded.get(key)
            if isinstance(existing, dict) and isinstance(value, dict):
                existing.update(value)
            else:
                expanded[key] = value
            continue

        parts = [match.group(1)] + _BRACKET_PART_RE.findall(match.group(2))
        is_list = parts[-1] == ""
        if is_list:
            # key[]=a&key[]=b -> list under key
            parts = parts[:-1]
            value = value if isinstance(value, list) else [value]

        current = expanded
        for part in parts[:-1]:
            child = current.get(part)
            if not isinstance(child, dict):
                child = {}
                current[part] = child
            current = child
        current[parts[-1]] = value
    return expanded


def normalize_params(raw_params):
    return expand_brackets(flatten_params(raw_params))


def parse_json_param(value, fallback=None):
    """
    Decode a JSON-encoded parameter.

    Already-decoded dicts/lists pass through; malformed JSON yields fallback.
    """
    if isinstance(value, (dict, list)):
        return value
    if not isinstance(value, str) or not value.strip():
        return fallback
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Failed to parse JSON parameter: %.200s", value)
        return fallback


def to_int(value, default):
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            # inf, nan, 1e999
            return default


def parse_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in TRUE_VALUES
    return bool(value)


def split_list(value):
    """Split a comma-separated string into a list of trimmed, non-empty items."""
    if isinstance(value, (list, tuple)):
        return [v for v in value if v != ""]
    if isinstance(value, dict):
        return [value[k] for k in sorted(value, key=lambda k: to_int(k, 0))]
    return [item.strip() for item in str(value).split(",") if item.strip()]


def constrain_page_size(page_size):
    """
    Clamp a page size to [1, MAX_PAGE_SIZE].

    Non-positive or unparsable sizes fall back to DEFAULT_PAGE_SIZE.
    """
    default = criteria_settings.DEFAULT_PAGE_SIZE
    max_size = criteria_settings.MAX_PAGE_SIZE
    if page_size is None or page_size <= 0:
        return default
    if page_size > max_size:
        logger.warning("Page size %s exceeds maximum, constraining to %s", page_size, max_size)
        return max_size
    return page_size


def constrain_page(page):
    if page is None or page < 1:
        return 1
    return page


def parse_sort_direction(direction):
    direction = str(direction or "").strip().lower()
    return direction if direction in ("asc", "desc") else "asc"


def make_pagination(page, page_size, offset=None):
    page = constrain_page(page)
    page_size = constrain_page_size(page_size)
    if offset is not None and offset < 0:
        offset = None
    try:
        return Pagination(page=page, page_size=page_size, offset=offset)
    except PaginationOutOfRange as e:
        last_page = (MAX_OFFSET - page_size) // page_size + 1
        logger.warning("%s, constraining to page %d", e, last_page)
        return Pagination(page=last_page, page_size=page_size)


def make_criterion(field_name, operator, value=None):
    """
    Build a CriteriaEntry; unknown operators are kept as plain strings.
    """
    name = str(field_name).strip()
    op = normalize_operator(operator)
    if op is not None and op.value in SPLIT_OPERATORS and isinstance(value, str):
        value = split_list(value)
    return CriteriaEntry(name, op if op is not None else str(operator), value)


def make_sort(field_name, direction="asc"):
    return SortSpec(str(field_name).strip(), parse_sort_direction(direction))


def parse_sort_string(value):
    """
    Parse "created_at:desc,name" into SortSpecs.

    Examples:
        >>> parse_sort_string("created_at:desc,name")
        [SortSpec(field='created_at', direction='desc'), SortSpec(field='name', direction='asc')]
    """
    sorting = []
    for pair in split_list(value):
        if not isinstance(pair, str):
            continue
        name, _, direction = pair.partition(":")
        name = name.strip()
        if name.startswith("-") and not direction:
            name, direction = name[1:], "desc"
        if name:
            sorting.append(make_sort(name, direction or "asc"))
    return sorting


# ---------------------------------------------------------------------------
# Format-specific parsers
# ---------------------------------------------------------------------------


class FormatParser:
    """
    Base class for one request shape.

    Subclasses implement can_handle() and the parse_* hooks; parse()
    assembles the QueryDescriptor.
    """

    format_name = None

    def can_handle(self, params):
        raise NotImplementedError

    def parse(self, params, schema):
        descriptor = QueryDescriptor(
            model=schema,
            criteria=tuple(self.parse_filters(params)),
            search=self.parse_search(params),
            sort=tuple(s for s in self.parse_sorting(params) if s.field),
            pagination=self.parse_pagination(params),
            response_format=self.response_format(params),
            options=self.parse_options(params),
            include_deleted=parse_bool(params.get("include_deleted", False)),
        )
        logger.debug(
            "Parsed %s request: %d filters, %d sorts, search=%s",
            self.format_name,
            len(descriptor.criteria),
            len(descriptor.sort),
            bool(descriptor.search),
        )
        return descriptor

    def response_format(self, params):
        return self.format_name

    def parse_filters(self, params):
        return []

    def parse_sorting(self, params):
        return []

    def parse_pagination(self, params):
        return make_pagination(to_int(params.get("page"), 1), to_int(params.get("pageSize"), None))

    def parse_search(self, params):
        term = params.get("search") or params.get("q") or ""
        if isinstance(term, list):
            term = " ".join(str(t) for t in term)
        term = str(term).strip()
        if not term:
            return None
        fields = params.get("search_fields") or params.get("searchFields") or ()
        operator = params.get("search_operator") or "contains"
        return SearchSpec(
            term=term,
            fields=tuple(str(f).strip() for f in split_list(fields) if str(f).strip()) if fields else (),
            operator=str(operator),
        )

    def parse_options(self, params):
        return {}


class AgGridParser(FormatParser):
    """
    AG-Grid server-side row model.

    Filters arrive as filters[field][type]/filters[field][filter] keys or as
    a JSON filterModel; sort as sort[i][colId]/sort[i][sort] or a JSON sortModel.
    """

    format_name = "ag-grid"

    TYPE_MAP = {
        "equals": "equals",
        "notEqual": "notEquals",
        "contains": "contains",
        "notContains": "notContains",
        "startsWith": "startsWith",
        "endsWith": "endsWith",
        "lessThan": "lt",
        "lessThanOrEqual": "lte",
        "greaterThan": "gt",
        "greaterThanOrEqual": "gte",
        "inRange": "between",
        "empty": "isNull",
        "notEmpty": "isNotNull",
        "blank": "isNull",
        "notBlank": "isNotNull",
    }

    def can_handle(self, params):
        return "startRow" in params and "endRow" in params

    def parse_pagination(self, params):
        start_row = max(0, to_int(params.get("startRow"), 0))
        end_row = to_int(params.get("endRow"), start_row + criteria_settings.DEFAULT_PAGE_SIZE)
        page_size = constrain_page_size(end_row - start_row)
        return make_pagination(start_row // page_size + 1, page_size, offset=start_row)

    def parse_sorting(self, params):
        sort = params.get("sort")
        if isinstance(sort, dict):
            entries = [sort[k] for k in sorted(sort, key=lambda k: to_int(k, 0))]
        else:
            entries = parse_json_param(params.get("sortModel"), []) or []
        sorting = []
        for entry in entries:
            if isinstance(entry, dict) and entry.get("colId"):
                sorting.append(make_sort(entry["colId"], entry.get("sort", "asc")))
        return sorting

    def parse_filters(self, params):
        model = params.get("filters")
        if not isinstance(model, dict):
            model = parse_json_param(params.get("filterModel"), {}) or {}
        filters = []
        for field_name, column_filter in model.items():
            if not isinstance(column_filter, dict):
                continue
            if column_filter.get("filterType") == "set":
                values = column_filter.get("values")
                if isinstance(values, list):
                    filters.append(make_criterion(field_name, Operator.IN, values))
                continue
            operator = self.TYPE_MAP.get(column_filter.get("type"), "equals")
            value = column_filter.get("filter", column_filter.get("dateFrom"))
            if operator == "between":
                value = [value, column_filter.get("filterTo", column_filter.get("dateTo"))]
            elif operator in ("isNull", "isNotNull"):
                value = None
            elif value in (None, ""):
                continue
            filters.append(make_criterion(field_name, operator, value))
        return filters

    def parse_search(self, params):
        if params.get("globalFilter"):
            params = dict(params, search=params["globalFilter"])
        return super().parse_search(params)


class MuiDataGridParser(FormatParser):
    """MUI DataGrid server-side mode: 0-based page, JSON filterModel/sortModel."""

    format_name = "mui-datagrid"

    OPERATOR_MAP = {
        # String operators
        "contains": "contains",
        "equals": "equals",
        "startsWith": "startsWith",
        "endsWith": "endsWith",
        "isEmpty": "isNull",
        "isNotEmpty": "isNotNull",
        "isAnyOf": "in",
        # Number operators
        "=": "equals",
        "!=": "notEquals",
        ">": "gt",
        ">=": "gte",
        "gte": "gte",
        "<": "lt",
        "<=": "lte",
        "lte": "lte",
        # Date operators
        "is": "equals",
        "not": "notEquals",
        "after": "gt",
        "onOrAfter": "gte",
        "before": "lt",
        "onOrBefore": "lte",
    }

    def can_handle(self, params):
        return "filterModel" in params or "sortModel" in params

    def map_operator(self, operator):
        return self.OPERATOR_MAP.get(operator, operator if normalize_operator(operator) else "equals")

    def parse_pagination(self, params):
        page = to_int(params.get("page"), 0) + 1
        return make_pagination(page, to_int(params.get("pageSize"), None))

    def parse_sorting(self, params):
        sorting = []
        for entry in parse_json_param(params.get("sortModel"), []) or []:
            if isinstance(entry, dict) and entry.get("field") and entry.get("sort"):
                sorting.append(make_sort(entry["field"], entry["sort"]))
        return sorting

    def parse_filters(self, params):
        model = parse_json_param(params.get("filterModel"), {}) or {}
        if not isinstance(model, dict):
            return []

        filters = []
        items = model.get("items")
        if isinstance(items, list):
            for item in items:
                if not isinstance(item, dict):
                    continue
                field_name = item.get("field") or item.get("columnField")
                operator = self.map_operator(item.get("operator") or item.get("operatorValue") or "equals")
                if not field_name:
                    continue
                if operator in ("isNull", "isNotNull"):
                    filters.append(make_criterion(field_name, operator))
                elif item.get("value") not in (None, "", []):
                    filters.append(make_criterion(field_name, operator, item["value"]))
            return filters

        # Alternative format: direct field -> value or field -> {op: value}
        for field_name, value in model.items():
            if field_name in ("logicOperator", "quickFilterValues") or value in (None, "", [], {}):
                continue
            if isinstance(value, dict):
                for op, op_value in value.items():
                    filters.append(make_criterion(field_name, self.map_operator(op), op_value))
            else:
                filters.append(make_criterion(field_name, "equals", value))
        return filters

    def parse_search(self, params):
        model = parse_json_param(params.get("filterModel"), {}) or {}
        quick = model.get("quickFilterValues") if isinstance(model, dict) else None
        if quick and not (params.get("search") or params.get("q")):
            params = dict(params, search=" ".join(str(v) for v in quick))
        return super().parse_search(params)


def _parse_filter_block(block):
    """Parse filter[field][op]=value (and filter[field]=value) blocks."""
    filters = []
    if not isinstance(block, dict):
        return filters
    for field_name, field_filters in block.items():
        if not str(field_name).strip():
            continue
        if isinstance(field_filters, dict):
            for operator, value in field_filters.items():
                if normalize_operator(operator) is None:
                    logger.warning("Unknown operator '%s' for filter '%s', skipping", operator, field_name)
                    continue
                filters.append(make_criterion(field_name, operator, value))
        else:
            filters.append(make_criterion(field_name, "equals", field_filters))
    return filters


class AdvancedParser(FormatParser):
    """Advanced REST format: per_page, search_fields, include_* flags, sort=field:dir."""

    format_name = "advanced"

    MARKER_PARAMS = ("per_page", "search_fields", "include_total", "include_available_filters", "include_metadata")

    def can_handle(self, params):
        if any(p in params for p in self.MARKER_PARAMS):
            return True
        sort = params.get("sort")
        return isinstance(sort, str) and ":" in sort

    def parse_pagination(self, params):
        page_size = to_int(params.get("per_page", params.get("pageSize")), None)
        return make_pagination(to_int(params.get("page"), 1), page_size)

    def parse_filters(self, params):
        return _parse_filter_block(params.get("filter"))

    def parse_sorting(self, params):
        sort = params.get("sort")
        return parse_sort_string(sort) if isinstance(sort, str) else []

    def parse_options(self, params):
        options = {}
        for param, key in (
            ("include_total", "includeTotal"),
            ("include_available_filters", "includeAvailableFilters"),
            ("include_metadata", "includeMetadata"),
        ):
            if param in params:
                options[key] = parse_bool(params[param])
        if params.get("include"):
            options["include"] = split_list(params["include"])
        return options


class StructuredParser(FormatParser):
    """Bracketed filter[field][operator]=value without the advanced extras."""

    format_name = "structured"

    def can_handle(self, params):
        block = params.get("filter")
        if isinstance(block, dict):
            for field_filters in block.values():
                if isinstance(field_filters, dict) and any(normalize_operator(k) for k in field_filters):
                    return True
        sort = params.get("sort")
        if isinstance(sort, dict):
            sort = list(sort.values())
        if isinstance(sort, list):
            return any(isinstance(s, dict) and "field" in s for s in sort)
        return False

    def parse_pagination(self, params):
        if "startRow" in params and "endRow" in params:
            start_row = max(0, to_int(params.get("startRow"), 0))
            page_size = constrain_page_size(to_int(params.get("endRow"), 0) - start_row)
            return make_pagination(start_row // page_size + 1, page_size, offset=start_row)
        return make_pagination(to_int(params.get("page"), 1), to_int(params.get("pageSize"), None))

    def parse_filters(self, params):
        return _parse_filter_block(params.get("filter"))

    def parse_sorting(self, params):
        sort = params.get("sort")
        if isinstance(sort, dict):
            sort = [sort[k] for k in sorted(sort, key=lambda k: to_int(k, 0))]
        if isinstance(sort, str):
            return parse_sort_string(sort)
        sorting = []
        for entry in sort or ():
            if isinstance(entry, dict) and entry.get("field"):
                sorting.append(make_sort(entry["field"], entry.get("direction", "asc")))
        return sorting


class SimpleParser(FormatParser):
    """Flat field=value filters, page/limit pagination, sort=field[:dir]. Always matches."""

    format_name = "simple"

    RESERVED_PARAMS = {
        "page",
        "pageSize",
        "per_page",
        "offset",
        "limit",
        "sortBy",
        "sortOrder",
        "sort",
        "search",
        "search_fields",
        "searchFields",
        "search_operator",
        "q",
        "include_total",
        "include_available_filters",
        "include_metadata",
        "include",
        "include_deleted",
        "responseFormat",
        "format",
        "filter",
        "strict",
        "cursor",
        "after",
    }

    def can_handle(self, params):
        return True

    def response_format(self, params):
        requested = params.get("responseFormat") or params.get("format")
        if isinstance(requested, str) and requested in RESPONSE_FORMAT_OVERRIDES:
            return requested
        return self.format_name

    def parse_pagination(self, params):
        page_size = to_int(params.get("pageSize", params.get("per_page", params.get("limit"))), None)
        offset = to_int(params.get("offset"), None) if "offset" in params else None
        cursor = params.get("cursor") or params.get("after")
        if cursor:
            offset = decode_cursor(cursor)
            if offset is None:
                logger.warning("Ignoring unrecognized cursor: %.100s", cursor)
        return make_pagination(to_int(params.get("page"), 1), page_size, offset)

    def parse_sorting(self, params):
        sorting = []
        if params.get("sortBy"):
            sorting.append(make_sort(params["sortBy"], params.get("sortOrder", "asc")))
        if isinstance(params.get("sort"), str):
            sorting.extend(parse_sort_string(params["sort"]))
        return sorting

    def parse_filters(self, params):
        filters = _parse_filter_block(params.get("filter"))
        for key, value in params.items():
            if key in self.RESERVED_PARAMS or value in ("", None):
                continue
            if isinstance(value, dict):
                continue
            if isinstance(value, list):
                filters.append(make_criterion(key, Operator.IN, value))
            else:
                filters.append(make_criterion(key, Operator.EQUALS, value))
        return filters


# Format tags a simple request may ask for explicitly
RESPONSE_FORMAT_OVERRIDES = {"simple", "advanced", "infinite-scroll", "cursor", "mui-datagrid", "ag-grid"}


class RequestParameterParser:
    """
    Chain of format parsers tried in priority order; first match wins.

    A parser that claims a request but fails on malformed input is skipped
    and the next one is tried. SimpleParser is always the final fallback.

    Example:
        parser = RequestParameterParser()
        descriptor = parser.parse({"status": "active", "page": "2"}, schema)
        descriptor.response_format  # 'simple'
    """

    def __init__(self, parsers=None):
        self.parsers = list(parsers) if parsers is not None else default_parsers()

    @property
    def available_formats(self):
        return [p.format_name for p in self.parsers]

    def detect_format(self, raw_params):
        params = normalize_params(raw_params)
        for parser in self.parsers:
            if parser.can_handle(params):
                return parser.format_name
        return SimpleParser.format_name

    def parse(self, raw_params, schema):
        params = normalize_params(raw_params)
        descriptor = None
        for parser in self.parsers:
            if not parser.can_handle(params):
                continue
            try:
                descriptor = parser.parse(params, schema)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("Parser %s could not parse request: %s", parser.format_name, e)
                continue
            break

        if descriptor is None:
            descriptor = SimpleParser().parse(params, schema)

        descriptor.meta = {
            "detectedFormat": descriptor.response_format,
            "originalParamCount": len(params),
        }
        logger.info(
            "Request parsing completed: format=%s filters=%d sorts=%d search=%s page=%d",
            descriptor.meta["detectedFormat"],
            len(descriptor.criteria),
            len(descriptor.sort),
            bool(descriptor.search),
            descriptor.pagination.page,
        )
        return descriptor


def default_parsers():
    # Order matters: most specific first, simple always last
    return [AgGridParser(), MuiDataGridParser(), AdvancedParser(), StructuredParser(), SimpleParser()]

"""
Tests for django_criteria.parsers module.
"""

import json

import pytest


class TestParamHelpers:
    """Tests for raw parameter helpers."""

    def test_expand_nested_brackets(self):
        from django_criteria.parsers import expand_brackets

        result = expand_brackets({"filter[age][gte]": "18", "filter[age][lte]": "65", "page": "2"})
        assert result == {"filter": {"age": {"gte": "18", "lte": "65"}}, "page": "2"}

    def test_expand_list_brackets(self):
        from django_criteria.parsers import expand_brackets

        assert expand_brackets({"ids[]": ["1", "2"]}) == {"ids": ["1", "2"]}
        assert expand_brackets({"ids[]": "1"}) == {"ids": ["1"]}

    def test_flatten_query_dict(self):
        from django.http import QueryDict

        from django_criteria.parsers import flatten_params

        params = flatten_params(QueryDict("status=a&status=b&page=2"))
        assert params == {"status": ["a", "b"], "page": "2"}

    def test_raw_field_name_kept(self):
        """Should keep a key exactly as sent so validation can reject it."""
        from django_criteria.parsers import make_criterion, make_sort

        assert make_criterion("user-id", "equals", "1").key == "user-id"
        assert make_criterion(" name ", "equals", "x").key == "name"
        assert make_sort("name; DROP TABLE x").field == "name; DROP TABLE x"

    def test_to_int_non_finite(self):
        from django_criteria.parsers import to_int

        assert to_int("inf", 1) == 1
        assert to_int("-inf", 1) == 1
        assert to_int("nan", 1) == 1
        assert to_int("1e999", 1) == 1
        assert to_int("2.5", 1) == 2

    def test_parse_json_param_malformed(self):
        from django_criteria.parsers import parse_json_param

        assert parse_json_param("{not json", fallback={}) == {}
        assert parse_json_param('[{"a": 1}]') == [{"a": 1}]

    def test_parse_sort_string(self):
        from django_criteria.descriptors import SortSpec
        from django_criteria.parsers import parse_sort_string

        assert parse_sort_string("created_at:desc,name") == [
            SortSpec("created_at", "desc"),
            SortSpec("name", "asc"),
        ]
        assert parse_sort_string("-year") == [SortSpec("year", "desc")]

    def test_split_operator_values(self):
        from django_criteria.operators import Operator
        from django_criteria.parsers import make_criterion

        entry = make_criterion("status", "in", "draft, published")
        assert entry.operator == Operator.IN
        assert entry.value == ["draft", "published"]

    def test_unknown_operator_kept_as_string(self):
        from django_criteria.parsers import make_criterion

        assert make_criterion("name", "regex", "x").operator == "regex"


class TestPageConstraints:
    """Tests for page and page size clamping."""

    def test_page_size_clamped_to_max(self, settings):
        from django_criteria.conf import criteria_settings
        from django_criteria.parsers import constrain_page_size

        settings.DJANGO_CRITERIA = {"MAX_PAGE_SIZE": 50, "DEFAULT_PAGE_SIZE": 10}
        criteria_settings.reload()

        assert constrain_page_size(500) == 50
        assert constrain_page_size(0) == 10
        assert constrain_page_size(-3) == 10
        assert constrain_page_size(None) == 10
        assert constrain_page_size(25) == 25

    def test_page_below_one(self):
        from django_criteria.parsers import make_pagination

        pagination = make_pagination(0, 10)
        assert pagination.page == 1
        assert pagination.offset == 0

    def test_page_beyond_addressable_rows(self):
        """Should clamp to the last page whose OFFSET + LIMIT fits 64 bits."""
        from django_criteria.descriptors import MAX_OFFSET
        from django_criteria.parsers import make_pagination

        pagination = make_pagination(10**23, 20)
        assert pagination.page_size == 20
        assert pagination.offset + pagination.limit <= MAX_OFFSET
        assert pagination.offset > MAX_OFFSET - 40

    def test_offset_beyond_addressable_rows(self):
        from django_criteria.descriptors import MAX_OFFSET
        from django_criteria.parsers import make_pagination

        pagination = make_pagination(1, 50, offset=2**64)
        assert pagination.offset + pagination.limit <= MAX_OFFSET

    def test_pagination_rejects_huge_page(self):
        from django_criteria.descriptors import Pagination
        from django_criteria.exceptions import PaginationOutOfRange

        with pytest.raises(PaginationOutOfRange):
            Pagination(page=10**23, page_size=20)

    @pytest.mark.parametrize(
        "params",
        [
            {"page": "inf", "status": "draft"},
            {"page": "99999999999999999999999"},
            {"limit": "1e999"},
            {"page": "nan", "limit": "-inf"},
            {"startRow": "0", "endRow": "inf"},
            {"startRow": "1e30", "endRow": "2e30"},
            {"filter[name][contains]": "a", "page": "1e999"},
        ],
    )
    def test_non_finite_and_huge_params(self, quotes, params):
        """Should never raise while parsing page parameters."""
        from django_criteria.descriptors import MAX_OFFSET
        from django_criteria.parsers import RequestParameterParser

        pagination = RequestParameterParser().parse(params, quotes).pagination
        assert pagination.page >= 1
        assert 1 <= pagination.page_size
        assert 0 <= pagination.offset <= MAX_OFFSET - pagination.page_size


class TestFormatDetection:
    """Tests for first-match-wins format detection."""

    def test_ag_grid(self):
        from django_criteria.parsers import RequestParameterParser

        parser = RequestParameterParser()
        assert parser.detect_format({"startRow": "0", "endRow": "100"}) == "ag-grid"

    def test_mui(self):
        from django_criteria.parsers import RequestParameterParser

        parser = RequestParameterParser()
        assert parser.detect_format({"filterModel": "{}", "page": "0"}) == "mui-datagrid"

    def test_advanced(self):
        from django_criteria.parsers import RequestParameterParser

        parser = RequestParameterParser()
        assert parser.detect_format({"per_page": "10"}) == "advanced"
        assert parser.detect_format({"sort": "name:desc"}) == "advanced"

    def test_structured(self):
        from django_criteria.parsers import RequestParameterParser

        parser = RequestParameterParser()
        assert parser.detect_format({"filter[year][gte]": "1980"}) == "structured"

    def test_simple_fallback(self):
        from django_criteria.parsers import RequestParameterParser

        parser = RequestParameterParser()
        assert parser.detect_format({"status": "active"}) == "simple"
        assert parser.detect_format({}) == "simple"

    def test_available_formats_order(self):
        from django_criteria.parsers import RequestParameterParser

        assert RequestParameterParser().available_formats == [
            "ag-grid",
            "mui-datagrid",
            "advanced",
            "structured",
            "simple",
        ]

    def test_failing_parser_falls_through(self, movies):
        """Should skip a parser that raises and use the next match."""
        from django_criteria.parsers import FormatParser, RequestParameterParser, SimpleParser

        class BrokenParser(FormatParser):
            format_name = "broken"

            def can_handle(self, params):
                return True

            def parse_filters(self, params):
                raise ValueError("boom")

        parser = RequestParameterParser([BrokenParser(), SimpleParser()])
        descriptor = parser.parse({"name": "Alien"}, movies)
        assert descriptor.response_format == "simple"
        assert descriptor.meta["detectedFormat"] == "simple"


class TestSimpleParser:
    """Tests for the flat query-string format."""

    def test_reference_request(self, quotes):
        from django_criteria.descriptors import CriteriaEntry, SortSpec
        from django_criteria.operators import Operator
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse(
            {"status": "active", "page": "2", "limit": "10", "sort": "name"}, quotes
        )

        assert descriptor.response_format == "simple"
        assert descriptor.pagination.page == 2
        assert descriptor.pagination.page_size == 10
        assert descriptor.pagination.offset == 10
        assert descriptor.sort == (SortSpec("name", "asc"),)
        assert descriptor.criteria == (CriteriaEntry("status", Operator.EQUALS, "active"),)
        assert descriptor.meta == {"detectedFormat": "simple", "originalParamCount": 4}

    def test_repeated_keys_become_in(self, quotes):
        from django.http import QueryDict

        from django_criteria.operators import Operator
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse(QueryDict("status=draft&status=published"), quotes)
        entry = descriptor.criteria[0]
        assert entry.operator == Operator.IN
        assert entry.value == ["draft", "published"]

    def test_sort_by_and_order(self, movies):
        from django_criteria.descriptors import SortSpec
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse({"sortBy": "year", "sortOrder": "DESC"}, movies)
        assert descriptor.sort == (SortSpec("year", "desc"),)

    def test_search_term(self, movies):
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse({"q": "alien", "searchFields": "name,synopsis"}, movies)
        assert descriptor.search.term == "alien"
        assert descriptor.search.fields == ("name", "synopsis")

    def test_cursor_sets_offset(self, movies):
        from django_criteria.parsers import RequestParameterParser
        from django_criteria.response import encode_cursor

        descriptor = RequestParameterParser().parse(
            {"cursor": encode_cursor(40), "limit": "20", "responseFormat": "cursor"}, movies
        )
        assert descriptor.pagination.offset == 40
        assert descriptor.response_format == "cursor"
        assert descriptor.criteria == ()

    def test_bad_cursor_ignored(self, movies):
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse({"cursor": "not-a-cursor", "page": "3", "limit": "5"}, movies)
        assert descriptor.pagination.offset == 10

    def test_unknown_response_format_ignored(self, movies):
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse({"format": "xml"}, movies)
        assert descriptor.response_format == "simple"

    def test_include_deleted(self, movies):
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse({"include_deleted": "true"}, movies)
        assert descriptor.include_deleted is True
        assert descriptor.criteria == ()


class TestStructuredParser:
    """Tests for filter[field][operator]=value requests."""

    def test_range_operators_stay_separate(self, movies):
        from django_criteria.operators import Operator
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse({"filter[year][gte]": "18", "filter[year][lte]": "65"}, movies)

        assert descriptor.response_format == "structured"
        assert [(c.key, c.operator, c.value) for c in descriptor.criteria] == [
            ("year", Operator.GTE, "18"),
            ("year", Operator.LTE, "65"),
        ]

    def test_sort_entries(self, movies):
        from django_criteria.descriptors import SortSpec
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse(
            {"sort[0][field]": "year", "sort[0][direction]": "desc", "sort[1][field]": "name"}, movies
        )
        assert descriptor.response_format == "structured"
        assert descriptor.sort == (SortSpec("year", "desc"), SortSpec("name", "asc"))

    def test_unknown_operator_skipped(self, movies):
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse(
            {"filter[year][gte]": "1980", "filter[name][regex]": "^A"}, movies
        )
        assert [c.key for c in descriptor.criteria] == ["year"]


class TestAdvancedParser:
    """Tests for the advanced REST format."""

    def test_pagination_and_sort(self, movies):
        from django_criteria.descriptors import SortSpec
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse(
            {"per_page": "25", "page": "3", "sort": "year:desc,name"}, movies
        )
        assert descriptor.response_format == "advanced"
        assert descriptor.pagination.page_size == 25
        assert descriptor.pagination.offset == 50
        assert descriptor.sort == (SortSpec("year", "desc"), SortSpec("name", "asc"))

    def test_options(self, movies):
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse(
            {"include_available_filters": "true", "include_total": "0", "include": "created_by"}, movies
        )
        assert descriptor.options == {
            "includeAvailableFilters": True,
            "includeTotal": False,
            "include": ["created_by"],
        }

    def test_filter_block(self, movies):
        from django_criteria.operators import Operator
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse(
            {"per_page": "10", "filter[name][contains]": "alien", "filter[year]": "1979"}, movies
        )
        assert [(c.key, c.operator) for c in descriptor.criteria] == [
            ("name", Operator.CONTAINS),
            ("year", Operator.EQUALS),
        ]


class TestAgGridParser:
    """Tests for the AG-Grid server-side row model."""

    def test_pagination_from_rows(self, movies):
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse({"startRow": "100", "endRow": "150"}, movies)
        assert descriptor.response_format == "ag-grid"
        assert descriptor.pagination.offset == 100
        assert descriptor.pagination.page_size == 50
        assert descriptor.pagination.page == 3

    def test_filter_model(self, movies):
        from django_criteria.operators import Operator
        from django_criteria.parsers import RequestParameterParser

        filter_model = {
            "name": {"filterType": "text", "type": "contains", "filter": "run"},
            "year": {"filterType": "number", "type": "inRange", "filter": 1980, "filterTo": 1990},
            "genres": {"filterType": "set", "values": ["drama"]},
            "synopsis": {"filterType": "text", "type": "contains", "filter": ""},
        }
        descriptor = RequestParameterParser().parse(
            {"startRow": "0", "endRow": "20", "filterModel": json.dumps(filter_model)}, movies
        )

        assert [(c.key, c.operator, c.value) for c in descriptor.criteria] == [
            ("name", Operator.CONTAINS, "run"),
            ("year", Operator.BETWEEN, [1980, 1990]),
            ("genres", Operator.IN, ["drama"]),
        ]

    def test_bracketed_sort_and_filters(self, movies):
        from django_criteria.descriptors import SortSpec
        from django_criteria.operators import Operator
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse(
            {
                "startRow": "0",
                "endRow": "10",
                "sort[0][colId]": "year",
                "sort[0][sort]": "desc",
                "filters[year][type]": "greaterThan",
                "filters[year][filter]": "1980",
            },
            movies,
        )
        assert descriptor.sort == (SortSpec("year", "desc"),)
        assert descriptor.criteria[0].operator == Operator.GT

    def test_malformed_filter_model(self, movies):
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse({"startRow": "0", "endRow": "10", "filterModel": "{oops"}, movies)
        assert descriptor.response_format == "ag-grid"
        assert descriptor.criteria == ()

    def test_global_filter(self, movies):
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse({"startRow": "0", "endRow": "10", "globalFilter": "alien"}, movies)
        assert descriptor.search.term == "alien"


class TestMuiDataGridParser:
    """Tests for MUI DataGrid server-side mode."""

    def test_zero_based_page(self, movies):
        from django_criteria.parsers import RequestParameterParser

        descriptor = RequestParameterParser().parse({"page": "0", "pageSize": "25", "sortModel": "[]"}, movies)
        assert descriptor.response_format == "mui-datagrid"
        assert descriptor.pagination.page == 1
        assert descriptor.pagination.offset == 0

    def test_items(self, movies):
        from django_criteria.descriptors import SortSpec
        from django_criteria.operators import Operator
        from django_criteria.parsers import RequestParameterParser

        filter_model = {
            "items": [
                {"field": "year", "operator": ">=", "value": "1980"},
                {"field": "poster", "operator": "isEmpty"},
                {"columnField": "name", "operatorValue": "contains", "value": ""},
            ],
            "quickFilterValues": ["blade", "runner"],
        }
        sort_model = [{"field": "rating", "sort": "desc"}]
        descriptor = RequestParameterParser().parse(
            {"page": "1", "pageSize": "10", "filterModel": json.dumps(filter_model), "sortModel": json.dumps(sort_model)},
            movies,
        )

        assert [(c.key, c.operator, c.value) for c in descriptor.criteria] == [
            ("year", Operator.GTE, "1980"),
            ("poster", Operator.IS_NULL, None),
        ]
        assert descriptor.sort == (SortSpec("rating", "desc"),)
        assert descriptor.search.term == "blade runner"
        assert descriptor.pagination.offset == 10

"""
Django-Criteria SQL Compiler

Turns a validated QueryDescriptor into parameterized SQL.

Output:
- sql: SELECT with JOINs, WHERE, ORDER BY (stable primary key tie-break),
  LIMIT/OFFSET
- params: bound values, in placeholder order
- count_sql: COUNT over the identical JOIN/WHERE plan, sharing params

Values are always bound, never interpolated. Identifiers come from schema
metadata and are checked before being emitted. Every alias is obtained
from the query's JoinPlanner.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Tuple

from django_criteria.conf import PARAMSTYLES, criteria_settings
from django_criteria.descriptors import SortSpec
from django_criteria.exceptions import FieldNotFound, OperatorNotSupported
from django_criteria.filters import classify_criteria
from django_criteria.joins import JoinPlanner, check_identifier
from django_criteria.operators import FieldType, Operator, normalize_operator
from django_criteria.validation import resolve_key

logger = logging.getLogger("django_criteria")

_PHRASE_RE = re.compile(r'"([^"]+)"')


class ParamSink:
    """
    Collects bound values and returns the placeholder for each.

    - 'qmark'  -> ?  (sqlite3 and most DB-API drivers)
    - 'format' -> %s (Django cursors)
    """

    def __init__(self, paramstyle="qmark"):
        if paramstyle not in PARAMSTYLES:
            raise ValueError("paramstyle must be 'qmark' or 'format'")
        self.paramstyle = paramstyle
        self.params = []

    def add(self, value):
        self.params.append(value)
        return "?" if self.paramstyle == "qmark" else "%s"


def escape_like(value):
    """Escape LIKE wildcards; patterns are emitted with ESCAPE '\\'."""
    return str(value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def like_pattern(value, operator):
    literal = escape_like(value)
    if operator == Operator.STARTS_WITH:
        return f"{literal}%"
    if operator == Operator.ENDS_WITH:
        return f"%{literal}"
    return f"%{literal}%"


def tokenize_search(term, min_word_length=None):
    """
    Split a search term into quoted phrases and individual words.

    Words shorter than min_word_length are dropped; phrases are kept whole.
    A term made only of short words is searched as a single token.

    Examples:
        >>> tokenize_search('"star wars" hope a')
        ['star wars', 'hope']
    """
    if min_word_length is None:
        min_word_length = criteria_settings.SEARCH_MIN_WORD_LENGTH
    term = term.strip()
    phrases = [p.strip() for p in _PHRASE_RE.findall(term) if p.strip()]
    remainder = _PHRASE_RE.sub(" ", term)
    words = [w for w in remainder.split() if len(w) >= min_word_length and w not in phrases]
    tokens = phrases + words
    if not tokens and term:
        tokens = [term.strip('"').strip()]
    return [t for t in tokens if t]


@dataclass(frozen=True)
class CompiledQuery:
    """
    Result of compiling one QueryDescriptor.

    Unpacks as (sql, params, count_sql):

        sql, params, count_sql = compiler.compile(descriptor)

    sort_only lists column labels selected only to order the rows; they
    are dropped from fetched rows.
    """

    sql: str
    params: List[Any]
    count_sql: str
    joins: Tuple = ()
    select: Tuple[str, ...] = ()
    paramstyle: str = "qmark"
    limit: int = 0
    offset: int = 0
    distinct: bool = False
    sort_only: Tuple[str, ...] = ()

    def __iter__(self):
        return iter((self.sql, self.params, self.count_sql))


class SQLCriteriaCompiler:
    """
    Compiles QueryDescriptors into SQL.

    A compiler can be reused across requests; each compile() call creates
    its own JoinPlanner and parameter sink.

    Example:
        compiler = SQLCriteriaCompiler(registry)
        sql, params, count_sql = compiler.compile(descriptor)
    """

    def __init__(self, registry=None, paramstyle=None, dialect=None):
        self.registry = registry
        self.paramstyle = paramstyle or criteria_settings.PARAMSTYLE
        self.dialect = (dialect or criteria_settings.DIALECT or "ansi").lower()
        if self.paramstyle not in PARAMSTYLES:
            raise ValueError("paramstyle must be 'qmark' or 'format'")

    def compile(self, descriptor):
        schema = descriptor.model
        planner = JoinPlanner(schema, self.registry, include_deleted=descriptor.include_deleted)
        sink = ParamSink(self.paramstyle)
        main = planner.main_alias

        where = []
        if not descriptor.include_deleted and schema.has_field("deleted_at"):
            where.append(f"{planner.column(main, 'deleted_at')} IS NULL")

        where.extend(self._compile_criteria(descriptor, planner, sink))

        if descriptor.search is not None:
            search_sql = self._compile_search(descriptor.search, schema, planner, sink)
            if search_sql:
                where.append(search_sql)

        order_by, sort_projections = self._compile_sort(descriptor, planner)

        # Criteria joins through relationship tables may repeat primary rows
        distinct = any(j.key[0] != "record" for j in planner.joins)

        select = [planner.column(main, f.name) for f in schema.db_fields if f.type != FieldType.PASSWORD]
        sort_only = [(label, sql) for (label, sql), distinct_only in sort_projections if distinct or not distinct_only]
        select.extend(sql for _label, sql in sort_only)
        select.extend(self._display_projections(schema, planner))

        pagination = descriptor.pagination
        limit = int(pagination.limit)
        offset = int(pagination.offset)

        from_sql = self._from_clause(schema, planner)
        where_sql = f" WHERE {' AND '.join(where)}" if where else ""

        sql = (
            f"SELECT {'DISTINCT ' if distinct else ''}{', '.join(select)}"
            f"{from_sql}{where_sql}"
            f" ORDER BY {', '.join(order_by)}"
            f" LIMIT {limit} OFFSET {offset}"
        )
        count_sql = (
            f"SELECT COUNT(DISTINCT {planner.column(main, schema.primary_key)}) AS total"
            f"{from_sql}{where_sql}"
        )

        logger.info(
            "Compiled query for %s: %d conditions, %d joins, %d params",
            schema.name,
            len(where),
            len(planner.joins),
            len(sink.params),
        )
        logger.debug("SQL: %s", sql)

        return CompiledQuery(
            sql=sql,
            params=sink.params,
            count_sql=count_sql,
            joins=tuple(planner.joins),
            select=tuple(select),
            paramstyle=self.paramstyle,
            limit=limit,
            offset=offset,
            distinct=distinct,
            sort_only=tuple(label for label, _sql in sort_only),
        )

    # -- FROM / SELECT ------------------------------------------------------

    def _from_clause(self, schema, planner):
        table = check_identifier(schema.table)
        sql = f" FROM {table}" if table == planner.main_alias else f" FROM {table} AS {planner.main_alias}"
        joins = planner.to_sql()
        return f"{sql} {joins}" if joins else sql

    def _display_projections(self, schema, planner):
        """Label expressions for RelatedRecord fields, one LEFT JOIN each."""
        projections = []
        for descriptor in schema.db_fields:
            if descriptor.type != FieldType.RELATED_RECORD or not descriptor.related_model:
                continue
            if self.registry is None or not self.registry.has_model(descriptor.related_model):
                logger.debug(
                    "No schema for %s, skipping display projection of %s",
                    descriptor.related_model,
                    descriptor.name,
                )
                continue

            alias, related = planner.plan_record_join(descriptor)
            columns = [planner.column(alias, c) for c in related.resolved_display_columns()]
            label = check_identifier(descriptor.display_field_name or f"{descriptor.name}_display")
            projections.append(f"{self.concat(columns)} AS {label}")
        return projections

    def concat(self, columns):
        """Space-joined, NULL-safe label expression for the dialect."""
        if len(columns) == 1:
            return f"COALESCE({columns[0]}, '')"
        if self.dialect == "mysql":
            return f"CONCAT_WS(' ', {', '.join(columns)})"
        joined = " || ' ' || ".join(f"COALESCE({c}, '')" for c in columns)
        return f"TRIM({joined})"

    # -- WHERE --------------------------------------------------------------

    def _compile_criteria(self, descriptor, planner, sink):
        schema = descriptor.model
        direct, relationship, related = classify_criteria(descriptor.criteria)
        conditions = []

        for field_name, entries in direct.items():
            target = schema.get_field(field_name)
            if target is None:
                raise FieldNotFound(field_name, f"Field '{field_name}' does not exist on model '{schema.name}'")
            column = planner.column(planner.main_alias, field_name)
            for entry in entries:
                conditions.append(self.condition(column, target, entry.operator, entry.value, sink))

        for rel_name, fields in relationship.items():
            for field_name, entries in fields.items():
                resolved = resolve_key(f"{rel_name}.{field_name}", schema, self.registry)
                if resolved.on_relationship_table:
                    alias = planner.plan_relationship_join(rel_name)
                else:
                    alias = planner.plan_related_model_join(rel_name)
                column = planner.column(alias, resolved.field.name)
                for entry in entries:
                    conditions.append(self.condition(column, resolved.field, entry.operator, entry.value, sink))

        for (rel_name, model_name), fields in related.items():
            for field_name, entries in fields.items():
                resolved = resolve_key(f"{rel_name}.{model_name}.{field_name}", schema, self.registry)
                alias = planner.plan_related_model_join(rel_name, model_name)
                column = planner.column(alias, resolved.field.name)
                for entry in entries:
                    conditions.append(self.condition(column, resolved.field, entry.operator, entry.value, sink))

        return conditions

    def condition(self, column, descriptor, operator, value, sink):
        """
        One WHERE fragment for column <operator> value.

        Examples:
            >>> compiler.condition("movies.name", name_field, Operator.CONTAINS, "star", sink)
            "movies.name LIKE ? ESCAPE '\\\\'"
            >>> compiler.condition("movies.id", id_field, Operator.IN, [], sink)
            '1=0'
        """
        op = normalize_operator(operator)
        if op is None:
            raise OperatorNotSupported(column, f"Unknown operator '{operator}'", operator=str(operator))

        if op == Operator.IS_NULL:
            return f"{column} IS NULL"
        if op == Operator.IS_NOT_NULL:
            return f"{column} IS NOT NULL"

        if descriptor is not None and descriptor.type == FieldType.MULTI_ENUM:
            return self._multi_enum_condition(column, descriptor, op, value, sink)

        if op in (Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH):
            return f"{column} LIKE {sink.add(like_pattern(value, op))} ESCAPE '\\'"

        if op in (Operator.IN, Operator.NOT_IN):
            values = list(value or ())
            if not values:
                # IN () is always false; NOT IN () is always true
                return "1=0" if op == Operator.IN else "1=1"
            placeholders = ", ".join(sink.add(v) for v in values)
            negate = "NOT " if op == Operator.NOT_IN else ""
            return f"{column} {negate}IN ({placeholders})"

        if op == Operator.BETWEEN:
            low, high = value
            return f"{column} BETWEEN {sink.add(low)} AND {sink.add(high)}"

        comparisons = {
            Operator.EQUALS: "=",
            Operator.NOT_EQUALS: "<>",
            Operator.GT: ">",
            Operator.GTE: ">=",
            Operator.LT: "<",
            Operator.LTE: "<=",
        }
        if op in comparisons:
            return f"{column} {comparisons[op]} {sink.add(value)}"

        raise OperatorNotSupported(column, f"Operator '{op.value}' cannot be applied here", operator=op.value)

    def _multi_enum_condition(self, column, descriptor, op, value, sink):
        """
        MultiEnum values are JSON arrays stored as text; membership of one
        option is a LIKE on its JSON-encoded form.

        equals/notEquals compare sets: with declared options, every requested
        option is present and every other option absent, whatever order the
        array was stored in. Without options the sorted compact JSON array is
        compared, so such columns must be stored sorted.
        """
        values = value if isinstance(value, (list, tuple)) else [value]

        def member(v, negate=False):
            pattern = f"%{escape_like(json.dumps(v))}%"
            return f"{column} {'NOT ' if negate else ''}LIKE {sink.add(pattern)} ESCAPE '\\'"

        if op in (Operator.EQUALS, Operator.NOT_EQUALS):
            requested = set(values)
            if descriptor.options:
                if requested - set(descriptor.options):
                    return "1=0" if op == Operator.EQUALS else "1=1"
                parts = [member(v) for v in descriptor.options if v in requested]
                parts.extend(member(v, negate=True) for v in descriptor.options if v not in requested)
                if not requested:
                    parts.insert(0, f"{column} IS NOT NULL")
                same_set = "(" + " AND ".join(parts) + ")"
                return same_set if op == Operator.EQUALS else f"({column} IS NULL OR NOT {same_set})"
            comparator = "=" if op == Operator.EQUALS else "<>"
            encoded = json.dumps(sorted(requested, key=str), separators=(",", ":"))
            return f"{column} {comparator} {sink.add(encoded)}"

        if not values:
            return "1=0" if op in (Operator.IN, Operator.OVERLAP) else "1=1"

        if op in (Operator.OVERLAP, Operator.IN):
            return "(" + " OR ".join(member(v) for v in values) + ")"
        if op == Operator.CONTAINS_ALL:
            return "(" + " AND ".join(member(v) for v in values) + ")"
        if op in (Operator.CONTAINS_NONE, Operator.NOT_IN):
            return f"({column} IS NULL OR (" + " AND ".join(member(v, negate=True) for v in values) + "))"

        raise OperatorNotSupported(column, f"Operator '{op.value}' is not supported for MultiEnum", operator=op.value)

    def _compile_search(self, search, schema, planner, sink):
        """
        Tokens are AND-combined; each token is OR-combined across fields.
        """
        columns = []
        for name in search.fields:
            if not schema.has_field(name):
                logger.warning("Search field '%s' not on %s, skipping", name, schema.name)
                continue
            columns.append(planner.column(planner.main_alias, name))
        if not columns:
            return None

        operator = normalize_operator(search.operator) or Operator.CONTAINS
        token_sql = []
        for token in tokenize_search(search.term):
            alternatives = []
            for column in columns:
                if operator == Operator.EQUALS:
                    alternatives.append(f"{column} = {sink.add(token)}")
                else:
                    alternatives.append(f"{column} LIKE {sink.add(like_pattern(token, operator))} ESCAPE '\\'")
            token_sql.append("(" + " OR ".join(alternatives) + ")")

        if not token_sql:
            return None
        return token_sql[0] if len(token_sql) == 1 else "(" + " AND ".join(token_sql) + ")"

    # -- ORDER BY -----------------------------------------------------------

    def _sort_target(self, spec, schema, planner):
        """
        Resolve a sort field to (order expression, (label, projection) or
        None, project only under DISTINCT), or None if it cannot be sorted.

        A to-many relationship column is reduced to one value per row
        (MIN ascending, MAX descending) so sorting never repeats rows.
        """
        if "." in spec.field:
            try:
                resolved = resolve_key(spec.field, schema, self.registry)
            except FieldNotFound as e:
                logger.warning("Ignoring sort on '%s': %s", spec.field, e)
                return None
            rel_name = spec.field.split(".")[0]
            label = check_identifier(spec.field.replace(".", "__"))

            if resolved.relationship.fans_out_from(schema.name):
                aggregate = "MAX" if spec.direction == "desc" else "MIN"
                expression = planner.plan_aggregate_subquery(
                    rel_name,
                    resolved.field.name,
                    aggregate,
                    on_relationship_table=resolved.on_relationship_table,
                )
                return label, (label, f"{expression} AS {label}"), False

            if resolved.on_relationship_table:
                alias = planner.plan_relationship_join(rel_name)
            else:
                alias = planner.plan_related_model_join(rel_name)
            column = planner.column(alias, resolved.field.name)
            return column, (label, f"{column} AS {label}"), True

        descriptor = schema.get_field(spec.field)
        if descriptor is None or not descriptor.is_db_field:
            logger.warning("Ignoring sort on '%s': no such field on %s", spec.field, schema.name)
            return None
        allowed = schema.sortable_fields
        if allowed is not None and spec.field not in allowed and spec.field != schema.primary_key:
            logger.warning("Ignoring sort on '%s': not a sortable field of %s", spec.field, schema.name)
            return None
        return planner.column(planner.main_alias, spec.field), None, False

    def _compile_sort(self, descriptor, planner):
        """
        ORDER BY terms and the projections they need, as ((label, sql),
        distinct_only) pairs.

        Falls back to the model's default sort; always ends with the
        primary key so page boundaries are stable.
        """
        schema = descriptor.model
        terms = []
        seen = set()
        projections = []

        def add(spec):
            target = self._sort_target(spec, schema, planner)
            if target is None or target[0] in seen:
                return
            expression, projection, distinct_only = target
            seen.add(expression)
            direction = "DESC" if spec.direction == "desc" else "ASC"
            terms.append(f"{expression} {direction}")
            if projection is not None:
                projections.append((projection, distinct_only))

        for spec in descriptor.sort:
            add(spec)

        if not terms:
            for field_name, direction in schema.default_sort:
                add(SortSpec(field_name, direction))

        pk_column = planner.column(planner.main_alias, schema.primary_key)
        if pk_column not in seen:
            terms.append(f"{pk_column} ASC")
        return terms, projections

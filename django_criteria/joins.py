"""
Django-Criteria JOIN Planning

Decides which LEFT JOINs a query needs and names them.

Every JoinPlanner belongs to exactly one query build: its alias counter
and dedup map start empty and are discarded with the planner. Asking
twice for the same relationship (or relationship + related model) returns
the alias planned the first time, so one logical join is emitted once.

Alias pattern: {table}_rel_{n}. A relationship table and the related
model table joined through it share the same n, read once from the counter.
"""

import logging
import re
from dataclasses import dataclass
from typing import Tuple

from django_criteria.exceptions import JoinPlanningError, SchemaNotFound

logger = logging.getLogger("django_criteria")

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_identifier(name):
    """
    Ensure a table, alias or column name is safe to emit unquoted.

    Raises:
        JoinPlanningError: if the name is not a plain SQL identifier
    """
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        logger.error("Refusing to emit invalid SQL identifier: %r", name)
        raise JoinPlanningError(f"Invalid SQL identifier: {name!r}")
    return name


@dataclass(frozen=True)
class JoinPlanEntry:
    """
    One planned JOIN.

    Attributes:
        key: Dedup key, e.g. ("relationship", "movies_movie_quotes")
        alias: Alias unique within the query
        table: Joined table
        on: ON-clause expression
        join_type: LEFT
    """

    key: Tuple
    alias: str
    table: str
    on: str
    join_type: str = "LEFT"

    def to_sql(self):
        return f"{self.join_type} JOIN {self.table} AS {self.alias} ON {self.on}"


class JoinPlanner:
    """
    Plans deduplicated JOINs for one query build.

    Example:
        planner = JoinPlanner(schema, registry)
        alias = planner.plan_related_model_join("movies_movie_quotes", "Movies")
        alias == planner.plan_related_model_join("movies_movie_quotes", "Movies")  # True
        planner.to_sql()
        # 'LEFT JOIN rel_1_movies_M_movie_quotes AS rel_1_movies_M_movie_quotes_rel_0 ON ... '
        # 'LEFT JOIN movies AS movies_rel_0 ON ...'
    """

    def __init__(self, schema, registry, include_deleted=False):
        self.schema = schema
        self.registry = registry
        self.include_deleted = include_deleted
        self.main_alias = check_identifier(schema.alias)
        self._counter = 0
        self._planned = {}
        self._joins = []

    # -- public API ---------------------------------------------------------

    @property
    def joins(self):
        return list(self._joins)

    @property
    def aliases(self):
        """Every alias usable in SELECT/WHERE/ORDER BY: the main table plus each JOIN."""
        return {self.main_alias} | {j.alias for j in self._joins}

    def column(self, alias, column):
        """
        Qualified column reference, refusing aliases that were never planned.

        Raises:
            JoinPlanningError: for an unplanned alias or unsafe column name
        """
        if alias not in self.aliases:
            logger.error("Column %s requested on unplanned alias %s", column, alias)
            raise JoinPlanningError(f"Alias '{alias}' was not joined in this query")
        return f"{alias}.{check_identifier(column)}"

    def plan_relationship_join(self, relationship_name):
        """
        JOIN the relationship table itself; returns its alias.

        ON: main.pk = rel.<near key> (and the link row is not soft-deleted)
        """
        key = ("relationship", relationship_name)
        if key in self._planned:
            logger.debug("Reusing join %s for %s", self._planned[key], relationship_name)
            return self._planned[key]

        relationship = self._relationship(relationship_name)
        n = self._next_index()
        alias = self._add_relationship_join(key, relationship, n)
        return alias

    def plan_related_model_join(self, relationship_name, model_name=None):
        """
        JOIN main -> relationship table -> related model table; returns the
        related model's alias.

        model_name may be given as the model name, its table name or any
        casing of its name; it is resolved to the model across the
        relationship so "rel.field" and "rel.Model.field" share one JOIN.
        """
        relationship = self._relationship(relationship_name)
        related = self._other_schema(relationship)
        if model_name is not None and model_name not in (related.name, related.table):
            if model_name.lower() != related.name.lower():
                logger.error("Model %s is not across relationship %s", model_name, relationship_name)
                raise JoinPlanningError(f"'{model_name}' is not related through '{relationship_name}'")

        key = ("related", relationship_name, related.name)
        if key in self._planned:
            logger.debug("Reusing join %s for %s.%s", self._planned[key], relationship_name, related.name)
            return self._planned[key]

        # Single counter read shared by both aliases of this chain
        n = self._next_index()
        rel_key = ("relationship", relationship_name)
        rel_alias = self._planned.get(rel_key)
        if rel_alias is None:
            rel_alias = self._add_relationship_join(rel_key, relationship, n)

        _near, far = relationship.keys_from(self.schema.name)
        alias = check_identifier(f"{related.table}_rel_{n}")
        on = f"{rel_alias}.{check_identifier(far)} = {alias}.{check_identifier(related.primary_key)}"
        self._add(JoinPlanEntry(key=key, alias=alias, table=check_identifier(related.table), on=on))
        return alias

    def plan_record_join(self, descriptor):
        """
        JOIN the model a RelatedRecord field on the main table points to;
        returns (alias, related schema).

        ON: main.<field> = related.pk
        """
        key = ("record", descriptor.name)
        related = self._model_schema(descriptor.related_model)
        if key in self._planned:
            return self._planned[key], related

        n = self._next_index()
        alias = check_identifier(f"{related.table}_rel_{n}")
        on = f"{self.main_alias}.{check_identifier(descriptor.name)} = {alias}.{check_identifier(related.primary_key)}"
        self._add(JoinPlanEntry(key=key, alias=alias, table=check_identifier(related.table), on=on))
        return alias, related

    def plan_aggregate_subquery(self, relationship_name, field_name, aggregate, on_relationship_table=False):
        """
        Correlated subquery reducing a column across a to-many relationship
        to one value per main row; returns the SQL expression.

        Its aliases are drawn from this planner's counter but live only
        inside the subquery, so no JOIN is added to the main query.

        Example:
            (SELECT MIN(movie_quotes_rel_0.quote)
             FROM rel_1_movies_M_movie_quotes AS rel_1_movies_M_movie_quotes_rel_0
             JOIN movie_quotes AS movie_quotes_rel_0 ON ...
             WHERE rel_1_movies_M_movie_quotes_rel_0.one_movies_id = movies.id ...)
        """
        if aggregate not in ("MIN", "MAX"):
            raise JoinPlanningError(f"Unsupported aggregate: {aggregate!r}")

        relationship = self._relationship(relationship_name)
        near, far = relationship.keys_from(self.schema.name)
        n = self._next_index()
        rel_alias = check_identifier(f"{relationship.table}_rel_{n}")
        if rel_alias in self.aliases:
            raise JoinPlanningError(f"Alias '{rel_alias}' is already in use")

        from_sql = f"FROM {check_identifier(relationship.table)} AS {rel_alias}"
        if on_relationship_table:
            target = f"{rel_alias}.{check_identifier(field_name)}"
        else:
            related = self._other_schema(relationship)
            alias = check_identifier(f"{related.table}_rel_{n}")
            if alias in self.aliases:
                raise JoinPlanningError(f"Alias '{alias}' is already in use")
            from_sql += (
                f" JOIN {check_identifier(related.table)} AS {alias}"
                f" ON {rel_alias}.{check_identifier(far)} = {alias}.{check_identifier(related.primary_key)}"
            )
            target = f"{alias}.{check_identifier(field_name)}"

        where = [f"{rel_alias}.{check_identifier(near)} = {self.main_alias}.{check_identifier(self.schema.primary_key)}"]
        if not self.include_deleted:
            where.append(f"{rel_alias}.deleted_at IS NULL")

        sql = f"(SELECT {aggregate}({target}) {from_sql} WHERE {' AND '.join(where)})"
        logger.debug("Planned aggregate subquery %s", sql)
        return sql

    def to_sql(self):
        return " ".join(j.to_sql() for j in self._joins)

    # -- internals ----------------------------------------------------------

    def _next_index(self):
        n = self._counter
        self._counter += 1
        return n

    def _add(self, entry):
        if entry.alias in self.aliases:
            logger.error("Alias collision while planning %s: %s", entry.key, entry.alias)
            raise JoinPlanningError(f"Alias '{entry.alias}' is already in use")
        self._planned[entry.key] = entry.alias
        self._joins.append(entry)
        logger.debug("Planned %s", entry.to_sql())
        return entry.alias

    def _add_relationship_join(self, key, relationship, n):
        near, _far = relationship.keys_from(self.schema.name)
        alias = check_identifier(f"{relationship.table}_rel_{n}")
        on = f"{self.main_alias}.{check_identifier(self.schema.primary_key)} = {alias}.{check_identifier(near)}"
        if not self.include_deleted:
            on += f" AND {alias}.deleted_at IS NULL"
        return self._add(JoinPlanEntry(key=key, alias=alias, table=check_identifier(relationship.table), on=on))

    def _relationship(self, relationship_name):
        if self.registry is None:
            logger.error("Join on %s requested without a schema registry", relationship_name)
            raise JoinPlanningError(f"No registry available to resolve '{relationship_name}'")
        try:
            return self.registry.get_relationship(self.schema, relationship_name)
        except SchemaNotFound as e:
            logger.error("Join on unknown relationship %s: %s", relationship_name, e)
            raise JoinPlanningError(str(e)) from e

    def _other_schema(self, relationship):
        return self._model_schema(self.registry.resolve_other_model(relationship, self.schema))

    def _model_schema(self, model_name):
        if self.registry is None or not model_name:
            raise JoinPlanningError(f"Cannot resolve related model {model_name!r}")
        try:
            return self.registry.get_model_schema(model_name)
        except SchemaNotFound as e:
            logger.error("Join on unknown model %s: %s", model_name, e)
            raise JoinPlanningError(str(e)) from e

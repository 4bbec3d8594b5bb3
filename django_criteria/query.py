"""
Django-Criteria Core Query Engine

Ties the pipeline together:

    raw params -> parse -> validate -> classify/plan/compile -> execute -> format

Provides:
- build_query / compile / format / execute functions for procedural usage
- CriteriaQuery class running the whole pipeline for one model
"""

import logging

from django.apps import apps
from django.db import DatabaseError, connections

from django_criteria.compiler import SQLCriteriaCompiler
from django_criteria.conf import criteria_settings
from django_criteria.descriptors import PaginationResult
from django_criteria.exceptions import CriteriaError, JoinPlanningError, SchemaNotFound
from django_criteria.fields import schema_for_model
from django_criteria.parsers import RequestParameterParser
from django_criteria.response import CriteriaResponse, ResponseFormatter
from django_criteria.schema import SchemaRegistry, get_registry
from django_criteria.validation import CriteriaValidator, available_filters, default_search_fields

logger = logging.getLogger("django_criteria")


def get_model_by_name(model_name):
    """
    Get an installed Django model class by its exact class name.

    Returns:
        Model class or None if not found
    """
    for app_config in apps.get_app_configs():
        for model in app_config.get_models():
            if model.__name__ == model_name:
                return model
    return None


def build_query(raw_params, model_schema, *, registry=None, strict=None, require_criteria=False):
    """
    Parse and validate request parameters for a model.

    Args:
        raw_params: Request parameters (dict or QueryDict)
        model_schema: ModelSchema being queried
        registry: SchemaRegistry for relationship lookups (settings by default)
        strict: Raise on any rejected criterion (STRICT_FILTERS by default)
        require_criteria: Raise when criteria were sent but none are usable

    Returns:
        Validated QueryDescriptor; rejected criteria are on .rejected

    Raises:
        CriteriaValidationError: in strict mode, if anything was rejected

    Example:
        descriptor = build_query({"status": "active", "page": "2"}, schema)
        descriptor.pagination.page  # 2
    """
    if registry is None:
        registry = get_registry()
    descriptor = RequestParameterParser().parse(raw_params, model_schema)
    return CriteriaValidator(registry, strict=strict).validate(descriptor, require_criteria=require_criteria)


def infer_dialect(using="default"):
    """SQL dialect for projections: DIALECT setting, else the connection vendor."""
    if criteria_settings.DIALECT:
        return criteria_settings.DIALECT
    return connections[using].vendor


def compile(query_descriptor, *, paramstyle=None, dialect=None, registry=None):
    """
    Compile a validated QueryDescriptor.

    Returns:
        CompiledQuery, which unpacks as (sql, params, count_sql)
    """
    if registry is None:
        registry = get_registry()
    compiler = SQLCriteriaCompiler(registry, paramstyle=paramstyle, dialect=dialect)
    return compiler.compile(query_descriptor)


def format(rows, pagination, format_tag, rejected=(), **kwargs):
    """Shape rows and a PaginationResult for the requesting client."""
    return ResponseFormatter().format(rows, pagination, format_tag, rejected=rejected, **kwargs)


def execute(compiled, using="default"):
    """
    Run a compiled query and its count through a Django connection.

    Args:
        compiled: CompiledQuery built with paramstyle='format'
        using: Database alias

    Returns:
        Tuple of (rows as dicts, total matching count)
    """
    if compiled.paramstyle != "format":
        raise ValueError("Django cursors require queries compiled with paramstyle='format'")

    try:
        with connections[using].cursor() as cursor:
            cursor.execute(compiled.count_sql, compiled.params)
            total = cursor.fetchone()[0]

            cursor.execute(compiled.sql, compiled.params)
            columns = [col[0] for col in cursor.description]
            rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
    except DatabaseError:
        logger.exception("Query execution failed: %s", compiled.sql)
        raise

    for row in rows:
        for label in compiled.sort_only:
            row.pop(label, None)

    logger.debug("Fetched %d of %d rows", len(rows), total)
    return rows, total


class CriteriaQuery:
    """
    Runs the full criteria pipeline for one model.

    Example:
        # Schema from DJANGO_CRITERIA['MODELS']
        response = CriteriaQuery("Movie_Quotes").run(request.GET)

        # Schema introspected from a Django model
        response = CriteriaQuery(Booking).run({"status": "confirmed"})

        response.to_json_response()
    """

    def __init__(self, model, registry=None, using="default", strict=None):
        """
        Args:
            model: Model name (exact case), ModelSchema, or Django model class
            registry: SchemaRegistry (built from settings when omitted)
            using: Database alias for execution
            strict: Override STRICT_FILTERS
        """
        self.registry = registry if registry is not None else get_registry()
        self.using = using
        self.strict = strict
        self.model = model
        self._schema = None

    @property
    def schema(self):
        """
        Resolve the target ModelSchema.

        Raises:
            SchemaNotFound: if a model name is neither configured nor installed
        """
        if self._schema is None:
            self._schema = self._resolve_schema(self.model)
        return self._schema

    def _resolve_schema(self, model):
        if isinstance(model, str):
            if self.registry.has_model(model):
                return self.registry.get_model_schema(model)
            model_class = get_model_by_name(model)
            if model_class is None:
                raise SchemaNotFound(model)
            model = model_class

        if hasattr(model, "_meta"):
            schema = schema_for_model(model)
            if not self.registry.has_model(schema.name):
                self.registry.register_model(schema)
            return self.registry.get_model_schema(schema.name)

        return model

    def build(self, raw_params):
        return build_query(raw_params, self.schema, registry=self.registry, strict=self.strict)

    def run(self, raw_params):
        """
        Execute the pipeline and build the response.

        Returns:
            CriteriaResponse; errors become error responses (400/404/500)
        """
        try:
            descriptor = self.build(raw_params)
            compiled = compile(
                descriptor,
                paramstyle="format",
                dialect=infer_dialect(self.using),
                registry=self.registry,
            )
            rows, total = execute(compiled, using=self.using)
        except JoinPlanningError as e:
            logger.error("Join planning failed for %s: %s", self.model, e)
            return CriteriaResponse.from_exception(e)
        except CriteriaError as e:
            logger.warning("Query on %s refused: %s", self.model, e)
            return CriteriaResponse.from_exception(e)

        pagination = PaginationResult.from_pagination(descriptor.pagination, total, len(rows))
        body = format(
            rows,
            pagination,
            descriptor.response_format,
            rejected=descriptor.rejected,
            summary=descriptor.summary(),
            extra_meta=self._extra_meta(descriptor),
        )
        return CriteriaResponse.ok_query(body, rejected=descriptor.rejected)

    def _extra_meta(self, descriptor):
        options = descriptor.options
        meta = {}
        if options.get("includeAvailableFilters"):
            meta["available_filters"] = available_filters(self.schema)
        if options.get("includeMetadata"):
            meta["model"] = self.schema.name
            meta["searchable_fields"] = default_search_fields(self.schema)
            meta["request"] = descriptor.meta
        return meta


def execute_query(model, raw_params, registry=None, using="default"):
    """
    Run a criteria query on a model.

    Convenience function that wraps CriteriaQuery.

    Example:
        result = execute_query("Movies", {"name": "Alien"})
    """
    return CriteriaQuery(model, registry=registry, using=using).run(raw_params)


def registry_for_models(*models):
    """Registry holding introspected schemas for the given Django model classes."""
    return SchemaRegistry(models=[schema_for_model(m) for m in models])

"""
Django-Criteria: Criteria-to-SQL Compiler for Django

Turns list requests from data grids and REST clients (AG-Grid, MUI
DataGrid, advanced, structured and simple query strings) into
parameterized SQL with deduplicated relationship JOINs, validated against
model metadata.

Example:
    from django_criteria import build_query, compile

    descriptor = build_query(request.GET, schema)
    sql, params, count_sql = compile(descriptor)
"""

__version__ = "26.10.0"

# Pipeline
from django_criteria.query import CriteriaQuery, build_query, compile, execute, execute_query, format

# Schema objects
from django_criteria.schema import (
    FieldDescriptor,
    ModelSchema,
    RelationshipDescriptor,
    RelationshipKind,
    SchemaRegistry,
    get_registry,
)
from django_criteria.fields import schema_for_model

# Operators
from django_criteria.operators import FieldType, Operator, supported_operators, supports_operator

# Descriptors
from django_criteria.descriptors import (
    NOT_NULL,
    CriteriaEntry,
    Pagination,
    PaginationResult,
    QueryDescriptor,
    SearchSpec,
    SortSpec,
)

# Stages
from django_criteria.parsers import RequestParameterParser
from django_criteria.validation import CriteriaValidator, available_filters
from django_criteria.filters import classify_criteria
from django_criteria.joins import JoinPlanEntry, JoinPlanner
from django_criteria.compiler import CompiledQuery, SQLCriteriaCompiler

# Views
from django_criteria.views import CriteriaListView, CriteriaModelView

# Response utilities
from django_criteria.response import CriteriaResponse, ResponseFormatter

# Errors
from django_criteria.exceptions import (
    CriteriaError,
    CriteriaValidationError,
    FieldNotFound,
    JoinPlanningError,
    OperatorNotSupported,
    PaginationOutOfRange,
    SchemaNotFound,
    ValueShapeInvalid,
)

# Configuration
from django_criteria.conf import criteria_settings

__all__ = [
    # Version
    "__version__",
    # Pipeline
    "CriteriaQuery",
    "build_query",
    "compile",
    "execute",
    "execute_query",
    "format",
    # Schema
    "FieldDescriptor",
    "ModelSchema",
    "RelationshipDescriptor",
    "RelationshipKind",
    "SchemaRegistry",
    "get_registry",
    "schema_for_model",
    # Operators
    "FieldType",
    "Operator",
    "supported_operators",
    "supports_operator",
    # Descriptors
    "NOT_NULL",
    "CriteriaEntry",
    "Pagination",
    "PaginationResult",
    "QueryDescriptor",
    "SearchSpec",
    "SortSpec",
    # Stages
    "RequestParameterParser",
    "CriteriaValidator",
    "available_filters",
    "classify_criteria",
    "JoinPlanEntry",
    "JoinPlanner",
    "CompiledQuery",
    "SQLCriteriaCompiler",
    # Views
    "CriteriaListView",
    "CriteriaModelView",
    # Response
    "CriteriaResponse",
    "ResponseFormatter",
    # Errors
    "CriteriaError",
    "CriteriaValidationError",
    "FieldNotFound",
    "JoinPlanningError",
    "OperatorNotSupported",
    "PaginationOutOfRange",
    "SchemaNotFound",
    "ValueShapeInvalid",
    # Settings
    "criteria_settings",
]

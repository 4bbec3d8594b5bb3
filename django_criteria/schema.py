"""
Django-Criteria Schema Objects

Read-only descriptions of models, fields and relationships, built once
from metadata and shared by every stage of the criteria pipeline.

Provides:
- FieldDescriptor, ModelSchema, RelationshipDescriptor value objects
- SchemaRegistry for model/relationship lookup
- Builders from metadata dicts (DJANGO_CRITERIA['MODELS'] / ['RELATIONSHIPS'])

Example:
    registry = SchemaRegistry.from_metadata(
        models={
            "Movies": {"table": "movies", "fields": {"name": {"type": "Text"}}},
        },
    )
    schema = registry.get_model_schema("Movies")
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from django_criteria.conf import criteria_settings
from django_criteria.exceptions import SchemaNotFound
from django_criteria.operators import FieldType, normalize_operator, supported_operators

# Types that can take part in a free-text search
SEARCHABLE_TYPES = frozenset(
    {FieldType.TEXT, FieldType.EMAIL, FieldType.BIG_TEXT, FieldType.ENUM, FieldType.RADIO_BUTTON_SET}
)
# Types that are never searched, whatever the configuration says
NEVER_SEARCHABLE_TYPES = frozenset({FieldType.PASSWORD, FieldType.IMAGE})

MAX_TABLE_NAME_LENGTH = 64


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    type: FieldType
    operators: Optional[frozenset] = None
    is_db_field: bool = True
    options: Tuple = ()
    related_model: Optional[str] = None
    display_field_name: Optional[str] = None
    is_searchable: Optional[bool] = None

    @property
    def supported_operators(self):
        """Operators for this field: the per-instance override, else the type default."""
        if self.operators is not None:
            return self.operators
        return supported_operators(self.type)

    def supports(self, operator):
        op = normalize_operator(operator)
        return op is not None and op in self.supported_operators

    @property
    def searchable(self):
        """
        Whether a free-text search may target this field.

        Password and Image fields never qualify. BigText is opt-in through
        the isSearchable metadata flag; other non-text types may opt in too.
        """
        if not self.is_db_field or self.type in NEVER_SEARCHABLE_TYPES:
            return False
        if self.type == FieldType.BIG_TEXT:
            return bool(self.is_searchable)
        if self.type in SEARCHABLE_TYPES:
            return self.is_searchable is not False
        return bool(self.is_searchable)

    @classmethod
    def from_metadata(cls, name, metadata):
        metadata = metadata or {}
        operators = metadata.get("operators")
        if operators is not None:
            resolved = set()
            for op in operators:
                normalized = normalize_operator(op)
                if normalized is None:
                    raise ValueError(f"Unknown operator '{op}' declared on field '{name}'")
                resolved.add(normalized)
            operators = frozenset(resolved)

        options = metadata.get("options") or ()
        if isinstance(options, dict):
            options = tuple(options.keys())

        return cls(
            name=metadata.get("name", name),
            type=FieldType.from_metadata(metadata.get("type", "Text")),
            operators=operators,
            is_db_field=metadata.get("isDBField", True),
            options=tuple(options),
            related_model=metadata.get("relatedModel"),
            display_field_name=metadata.get("displayFieldName"),
            is_searchable=metadata.get("isSearchable", metadata.get("searchable")),
        )


def _index_fields(owner, fields):
    by_name = {}
    for descriptor in fields:
        if descriptor.name in by_name:
            raise ValueError(f"Duplicate field '{descriptor.name}' on '{owner}'")
        by_name[descriptor.name] = descriptor
    return by_name


@dataclass(frozen=True)
class ModelSchema:
    name: str
    table: str
    fields: Tuple[FieldDescriptor, ...]
    relationships: Tuple[str, ...] = ()
    display_columns: Tuple[str, ...] = ()
    searchable_fields: Optional[Tuple[str, ...]] = None
    sortable_fields: Optional[Tuple[str, ...]] = None
    default_sort: Tuple[Tuple[str, str], ...] = ()
    primary_key: str = "id"
    _by_name: dict = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_by_name", _index_fields(self.name, self.fields))

    @property
    def alias(self):
        """SQL alias of the model's own table."""
        return self.table

    def get_field(self, name):
        return self._by_name.get(name)

    def has_field(self, name):
        return name in self._by_name

    @property
    def field_names(self):
        return [f.name for f in self.fields]

    @property
    def db_fields(self):
        return [f for f in self.fields if f.is_db_field]

    def resolved_display_columns(self):
        """
        Display columns that exist and are stored in the database.

        Falls back to 'name', then to the primary key.
        """
        columns = [c for c in self.display_columns if self._is_db_column(c)]
        if columns:
            return columns
        if self._is_db_column("name"):
            return ["name"]
        return [self.primary_key]

    def _is_db_column(self, name):
        descriptor = self.get_field(name)
        return descriptor is not None and descriptor.is_db_field

    @classmethod
    def from_metadata(cls, name, metadata):
        """
        Build a schema from a metadata dict.

        Expected keys: table, fields (name -> field metadata), and optionally
        relationships, displayColumns, searchableFields, sortableFields,
        defaultSort ([{"field": ..., "direction": ...}]) and primaryKey.
        A primary key ID field is added when the metadata does not declare one.
        """
        metadata = metadata or {}
        primary_key = metadata.get("primaryKey", "id")
        field_meta = metadata.get("fields") or {}

        fields = []
        if primary_key not in field_meta:
            fields.append(FieldDescriptor(name=primary_key, type=FieldType.ID))
        for field_name, meta in field_meta.items():
            fields.append(FieldDescriptor.from_metadata(field_name, meta))

        default_sort = tuple(
            (item["field"], str(item.get("direction", "asc")).lower())
            for item in metadata.get("defaultSort") or ()
            if isinstance(item, dict) and item.get("field")
        )

        def optional_tuple(key):
            value = metadata.get(key)
            return tuple(value) if isinstance(value, (list, tuple)) else None

        return cls(
            name=metadata.get("name", name),
            table=metadata.get("table", name.lower()),
            fields=tuple(fields),
            relationships=tuple(metadata.get("relationships") or ()),
            display_columns=tuple(metadata.get("displayColumns") or ()),
            searchable_fields=optional_tuple("searchableFields"),
            sortable_fields=optional_tuple("sortableFields"),
            default_sort=default_sort,
            primary_key=primary_key,
        )


class RelationshipKind(str, Enum):
    ONE_TO_ONE = "OneToOne"
    ONE_TO_MANY = "OneToMany"
    MANY_TO_MANY = "ManyToMany"


# Columns every relationship table carries besides its key columns
RELATIONSHIP_CORE_FIELDS = (
    FieldDescriptor(name="id", type=FieldType.ID),
    FieldDescriptor(name="created_at", type=FieldType.DATETIME),
    FieldDescriptor(name="updated_at", type=FieldType.DATETIME),
    FieldDescriptor(name="deleted_at", type=FieldType.DATETIME),
)


@dataclass(frozen=True)
class RelationshipDescriptor:
    name: str
    kind: RelationshipKind
    model_a: str
    model_b: str
    table: str
    key_a: str
    key_b: str
    additional_fields: Tuple[FieldDescriptor, ...] = ()
    _by_name: dict = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        key_fields = (
            FieldDescriptor(name=self.key_a, type=FieldType.ID),
            FieldDescriptor(name=self.key_b, type=FieldType.ID),
        )
        object.__setattr__(
            self,
            "_by_name",
            _index_fields(self.name, RELATIONSHIP_CORE_FIELDS + key_fields + tuple(self.additional_fields)),
        )

    @property
    def fields(self):
        return list(self._by_name.values())

    def get_field(self, name):
        return self._by_name.get(name)

    def has_field(self, name):
        return name in self._by_name

    def involves(self, model_name):
        return model_name in (self.model_a, self.model_b)

    def other_model(self, from_model):
        """
        The model on the other side of this relationship.

        Raises:
            SchemaNotFound: if from_model does not take part in the relationship
        """
        if from_model == self.model_a:
            return self.model_b
        if from_model == self.model_b:
            return self.model_a
        raise SchemaNotFound(f"{self.name} (from {from_model})", kind="relationship")

    def fans_out_from(self, from_model):
        """True when one from_model row can link to several rows across this relationship."""
        if self.kind == RelationshipKind.MANY_TO_MANY:
            return True
        if self.kind == RelationshipKind.ONE_TO_MANY:
            return from_model == self.model_a
        return False

    def keys_from(self, from_model):
        """
        Relationship-table key columns as (near, far) seen from from_model.

        'near' references from_model's primary key, 'far' the other model's.
        """
        if from_model == self.model_a:
            return self.key_a, self.key_b
        if from_model == self.model_b:
            return self.key_b, self.key_a
        raise SchemaNotFound(f"{self.name} (from {from_model})", kind="relationship")

    @classmethod
    def from_metadata(cls, name, metadata):
        """
        Build a relationship from metadata.

        OneToMany uses modelOne/modelMany, the other kinds modelA/modelB.
        Table and key names follow the rel_1_a_1_b / rel_1_one_M_many /
        rel_N_a_M_b convention unless given explicitly.
        """
        metadata = metadata or {}
        try:
            kind = RelationshipKind(metadata.get("type"))
        except ValueError:
            raise ValueError(f"Unknown relationship type for '{name}': {metadata.get('type')!r}")

        if kind == RelationshipKind.ONE_TO_MANY:
            if "modelOne" not in metadata or "modelMany" not in metadata:
                raise ValueError("OneToMany relationships require 'modelOne' and 'modelMany'")
            model_a, model_b = metadata["modelOne"], metadata["modelMany"]
            table = f"rel_1_{model_a.lower()}_M_{model_b.lower()}"
            key_a, key_b = f"one_{model_a.lower()}_id", f"many_{model_b.lower()}_id"
        else:
            if "modelA" not in metadata or "modelB" not in metadata:
                raise ValueError(f"{kind.value} relationships require 'modelA' and 'modelB'")
            model_a, model_b = metadata["modelA"], metadata["modelB"]
            prefix = "rel_1_{}_1_{}" if kind == RelationshipKind.ONE_TO_ONE else "rel_N_{}_M_{}"
            table = prefix.format(model_a.lower(), model_b.lower())
            key_a, key_b = f"{model_a.lower()}_id", f"{model_b.lower()}_id"

        table = metadata.get("table", table)[:MAX_TABLE_NAME_LENGTH]
        additional = tuple(
            FieldDescriptor.from_metadata(field_name, meta)
            for field_name, meta in (metadata.get("additionalFields") or {}).items()
        )

        return cls(
            name=metadata.get("name", name),
            kind=kind,
            model_a=model_a,
            model_b=model_b,
            table=table,
            key_a=metadata.get("keyA", key_a),
            key_b=metadata.get("keyB", key_b),
            additional_fields=additional,
        )


class SchemaRegistry:
    """
    Lookup of model schemas and relationships by exact name.

    The registry is read-only once built; the query pipeline never mutates it.
    """

    def __init__(self, models=None, relationships=None):
        self._models = {}
        self._relationships = {}
        for schema in models or ():
            self.register_model(schema)
        for relationship in relationships or ():
            self.register_relationship(relationship)

    def register_model(self, schema):
        self._models[schema.name] = schema
        return schema

    def register_relationship(self, relationship):
        self._relationships[relationship.name] = relationship
        return relationship

    @property
    def model_names(self):
        return list(self._models)

    def has_model(self, model_name):
        return model_name in self._models

    def get_model_schema(self, model_name):
        """
        Get a model schema by name (exact case, no fallback lookup).

        Raises:
            SchemaNotFound: if the model is not registered
        """
        try:
            return self._models[model_name]
        except KeyError:
            raise SchemaNotFound(model_name)

    def get_relationship(self, model, relationship_name):
        """
        Get a relationship the model takes part in.

        Args:
            model: ModelSchema or model name
            relationship_name: Relationship name

        Raises:
            SchemaNotFound: if the relationship is unknown or not declared on the model
        """
        schema = model if isinstance(model, ModelSchema) else self.get_model_schema(model)
        relationship = self._relationships.get(relationship_name)
        if relationship is None or relationship_name not in schema.relationships:
            raise SchemaNotFound(relationship_name, kind="relationship")
        if not relationship.involves(schema.name):
            raise SchemaNotFound(relationship_name, kind="relationship")
        return relationship

    def resolve_other_model(self, relationship, from_model):
        """Name of the model across the relationship from from_model."""
        if isinstance(from_model, ModelSchema):
            from_model = from_model.name
        return relationship.other_model(from_model)

    @classmethod
    def from_metadata(cls, models=None, relationships=None):
        registry = cls()
        for name, metadata in (models or {}).items():
            registry.register_model(ModelSchema.from_metadata(name, metadata))
        for name, metadata in (relationships or {}).items():
            registry.register_relationship(RelationshipDescriptor.from_metadata(name, metadata))
        return registry


def get_registry():
    """Build a registry from DJANGO_CRITERIA['MODELS'] and ['RELATIONSHIPS']."""
    return SchemaRegistry.from_metadata(
        models=criteria_settings.MODELS,
        relationships=criteria_settings.RELATIONSHIPS,
    )

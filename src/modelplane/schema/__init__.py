"""Schema model, document loading and resolution."""

from modelplane.schema.document import load_schema
from modelplane.schema.physical import (
    ConstraintKind,
    PhysicalColumn,
    PhysicalConstraint,
    PhysicalSchema,
    PhysicalTable,
)
from modelplane.schema.registry import SchemaRegistry
from modelplane.schema.resolver import resolve_model, resolve_schema
from modelplane.schema.types import (
    AUTOINCREMENT,
    NOW,
    UUID,
    Cardinality,
    CompositeId,
    CompositeUnique,
    Default,
    DefaultFunction,
    Field,
    Index,
    MapTo,
    Model,
    PrimaryKey,
    ReferentialAction,
    Relation,
    ScalarType,
    Unique,
    UpdatedAt,
)

__all__ = [
    # Declarative model
    "ScalarType",
    "Field",
    "Model",
    "Relation",
    "Cardinality",
    "ReferentialAction",
    "PrimaryKey",
    "Unique",
    "UpdatedAt",
    "Default",
    "DefaultFunction",
    "MapTo",
    "CompositeId",
    "CompositeUnique",
    "Index",
    "AUTOINCREMENT",
    "NOW",
    "UUID",
    # Registry and loading
    "SchemaRegistry",
    "load_schema",
    # Resolution
    "resolve_model",
    "resolve_schema",
    "PhysicalSchema",
    "PhysicalTable",
    "PhysicalColumn",
    "PhysicalConstraint",
    "ConstraintKind",
]

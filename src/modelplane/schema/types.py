"""Declarative schema model: models, fields, attributes and relations.

These are the authored objects. They carry no physical naming decisions;
the resolver turns them into a PhysicalSchema.

Example::

    Book = Model(
        "Book",
        fields=[
            Field("id", ScalarType.INTEGER, attributes=[PrimaryKey(), Default(AUTOINCREMENT)]),
            Field("title", ScalarType.TEXT),
            Field("publishedYear", ScalarType.INTEGER),
        ],
    )
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ScalarType(str, Enum):
    """Column types a field may declare."""

    TEXT = "text"
    INTEGER = "integer"
    BIGINT = "bigint"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    BYTES = "bytes"
    JSON = "json"
    UUID = "uuid"


INTEGER_TYPES = frozenset({ScalarType.INTEGER, ScalarType.BIGINT})
NUMERIC_TYPES = frozenset(
    {ScalarType.INTEGER, ScalarType.BIGINT, ScalarType.FLOAT, ScalarType.DECIMAL}
)


class Cardinality(str, Enum):
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_MANY = "many_to_many"


class ReferentialAction(str, Enum):
    CASCADE = "cascade"
    RESTRICT = "restrict"
    SET_NULL = "set_null"
    NO_ACTION = "no_action"


class DefaultFunction(str, Enum):
    """Default expressions evaluated by the database or at write time."""

    AUTOINCREMENT = "autoincrement"
    NOW = "now"
    UUID = "uuid"


AUTOINCREMENT = DefaultFunction.AUTOINCREMENT
NOW = DefaultFunction.NOW
UUID = DefaultFunction.UUID


# ============================================================================
# FIELD ATTRIBUTES
# ============================================================================


@dataclass(frozen=True, slots=True)
class PrimaryKey:
    """Marks a single-field primary key (``@id``)."""


@dataclass(frozen=True, slots=True)
class Unique:
    """Marks a single-field uniqueness constraint (``@unique``)."""


@dataclass(frozen=True, slots=True)
class UpdatedAt:
    """Field is set to the current time on every write (``@updatedAt``)."""


@dataclass(frozen=True, slots=True)
class Default:
    """Default value: a literal, or one of the DefaultFunction expressions."""

    value: Any

    @property
    def function(self) -> DefaultFunction | None:
        return self.value if isinstance(self.value, DefaultFunction) else None


@dataclass(frozen=True, slots=True)
class MapTo:
    """Physical column name override (``@map``)."""

    name: str


Attribute = PrimaryKey | Unique | UpdatedAt | Default | MapTo


# ============================================================================
# RELATIONS
# ============================================================================


@dataclass(frozen=True, slots=True)
class Relation:
    """Directional link from the owning model to ``target``.

    ``fields`` are scalar fields on the owning model holding the foreign key,
    ``references`` the key fields on the target. Many-to-many relations
    declare neither; an implicit join table is generated instead.
    """

    target: str
    fields: tuple[str, ...] = ()
    references: tuple[str, ...] = ()
    cardinality: Cardinality = Cardinality.ONE_TO_MANY
    on_delete: ReferentialAction = ReferentialAction.RESTRICT
    on_update: ReferentialAction = ReferentialAction.CASCADE

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))
        object.__setattr__(self, "references", tuple(self.references))


# ============================================================================
# FIELDS AND MODELS
# ============================================================================


@dataclass(frozen=True, slots=True)
class Field:
    """One declared field.

    A field with ``relation`` set is a relation field: it has no column of
    its own and ``type`` must be None.
    """

    name: str
    type: ScalarType | None = None
    nullable: bool = False
    attributes: tuple[Attribute, ...] = ()
    relation: Relation | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", tuple(self.attributes))
        if isinstance(self.type, str) and not isinstance(self.type, ScalarType):
            object.__setattr__(self, "type", ScalarType(self.type))

    @property
    def is_relation(self) -> bool:
        return self.relation is not None

    def has(self, kind: type) -> bool:
        return any(isinstance(a, kind) for a in self.attributes)

    def attribute(self, kind: type[Any]) -> Any:
        for attr in self.attributes:
            if isinstance(attr, kind):
                return attr
        return None

    @property
    def is_id(self) -> bool:
        return self.has(PrimaryKey)

    @property
    def is_unique(self) -> bool:
        return self.has(Unique)

    @property
    def is_updated_at(self) -> bool:
        return self.has(UpdatedAt)

    @property
    def default(self) -> Default | None:
        return self.attribute(Default)  # type: ignore[no-any-return]

    @property
    def column_name(self) -> str:
        mapped = self.attribute(MapTo)
        return mapped.name if mapped else self.name


@dataclass(frozen=True, slots=True)
class CompositeId:
    """Model-level primary key over several fields (``@@id``)."""

    fields: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


@dataclass(frozen=True, slots=True)
class CompositeUnique:
    """Model-level uniqueness over several fields (``@@unique``)."""

    fields: tuple[str, ...]
    name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


@dataclass(frozen=True, slots=True)
class Index:
    """Non-unique index over one or more fields (``@@index``)."""

    fields: tuple[str, ...]
    name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


ModelConstraint = CompositeId | CompositeUnique | Index


@dataclass(frozen=True)
class Model:
    """Declarative definition of one entity."""

    name: str
    fields: tuple[Field, ...] = ()
    constraints: tuple[ModelConstraint, ...] = ()
    table_name: str | None = None
    _by_name: dict[str, Field] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))
        object.__setattr__(self, "constraints", tuple(self.constraints))
        # First declaration wins; duplicates are rejected by the registry.
        by_name: dict[str, Field] = {}
        for f in self.fields:
            by_name.setdefault(f.name, f)
        object.__setattr__(self, "_by_name", by_name)

    def __iter__(self) -> Iterator[Field]:
        return iter(self.fields)

    def field(self, name: str) -> Field | None:
        return self._by_name.get(name)

    @property
    def scalar_fields(self) -> list[Field]:
        return [f for f in self.fields if not f.is_relation]

    @property
    def relation_fields(self) -> list[Field]:
        return [f for f in self.fields if f.is_relation]

    @property
    def composite_id(self) -> CompositeId | None:
        for c in self.constraints:
            if isinstance(c, CompositeId):
                return c
        return None

    @property
    def id_fields(self) -> tuple[str, ...]:
        """Names of the primary-key fields, single or composite."""
        composite = self.composite_id
        if composite is not None:
            return composite.fields
        return tuple(f.name for f in self.fields if f.is_id)

    @property
    def physical_name(self) -> str:
        return self.table_name or self.name

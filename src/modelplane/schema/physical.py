"""Resolved physical schema: the unit diffed by the migration planner.

A PhysicalSchema is immutable. Editing the schema produces a new snapshot;
snapshots round-trip through ``to_dict()`` / ``from_dict()`` so they can be
persisted alongside migration artifacts.
"""

from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import cached_property
from typing import Any

from modelplane.schema.types import Default, DefaultFunction, ScalarType
from modelplane.schema.values import coerce


class ConstraintKind(str, Enum):
    PRIMARY_KEY = "primary_key"
    UNIQUE = "unique"
    INDEX = "index"
    FOREIGN_KEY = "foreign_key"


@dataclass(frozen=True)
class PhysicalColumn:
    """One resolved column. ``field`` is the logical name, ``name`` the physical one."""

    field: str
    name: str
    type: ScalarType
    nullable: bool = False
    primary_key: bool = False
    autoincrement: bool = False
    updated_at: bool = False
    default: Default | None = None

    @property
    def has_default(self) -> bool:
        return self.default is not None or self.autoincrement or self.updated_at

    @property
    def required(self) -> bool:
        """Must be supplied on create: non-nullable and nothing fills it in."""
        return not self.nullable and not self.has_default

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "name": self.name,
            "type": self.type.value,
            "nullable": self.nullable,
            "primary_key": self.primary_key,
            "autoincrement": self.autoincrement,
            "updated_at": self.updated_at,
            "default": _default_to_dict(self.default, self.type),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhysicalColumn:
        return cls(
            field=data["field"],
            name=data["name"],
            type=ScalarType(data["type"]),
            nullable=bool(data.get("nullable", False)),
            primary_key=bool(data.get("primary_key", False)),
            autoincrement=bool(data.get("autoincrement", False)),
            updated_at=bool(data.get("updated_at", False)),
            default=_default_from_dict(data.get("default"), ScalarType(data["type"])),
        )

    def structure(self) -> tuple[Any, ...]:
        return (self.name, self.type.value, self.nullable)


@dataclass(frozen=True)
class PhysicalConstraint:
    """Primary key, unique index, plain index or foreign key. Columns are physical names."""

    kind: ConstraintKind
    name: str
    columns: tuple[str, ...]
    ref_table: str | None = None
    ref_columns: tuple[str, ...] = ()
    on_delete: str | None = None
    on_update: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "name": self.name,
            "columns": list(self.columns),
        }
        if self.kind is ConstraintKind.FOREIGN_KEY:
            data["ref_table"] = self.ref_table
            data["ref_columns"] = list(self.ref_columns)
            data["on_delete"] = self.on_delete
            data["on_update"] = self.on_update
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhysicalConstraint:
        return cls(
            kind=ConstraintKind(data["kind"]),
            name=data["name"],
            columns=tuple(data["columns"]),
            ref_table=data.get("ref_table"),
            ref_columns=tuple(data.get("ref_columns", ())),
            on_delete=data.get("on_delete"),
            on_update=data.get("on_update"),
        )

    def structure(self) -> tuple[Any, ...]:
        # Backends do not all report primary-key or foreign-key names
        if self.kind is ConstraintKind.PRIMARY_KEY:
            return (self.kind.value, self.columns)
        if self.kind is ConstraintKind.FOREIGN_KEY:
            return (self.kind.value, self.columns, self.ref_table, self.ref_columns)
        return (self.kind.value, self.name, self.columns)


@dataclass(frozen=True)
class PhysicalTable:
    """One resolved model (or implicit join table)."""

    model: str
    name: str
    columns: tuple[PhysicalColumn, ...]
    constraints: tuple[PhysicalConstraint, ...] = ()
    implicit: bool = False

    @cached_property
    def _by_field(self) -> dict[str, PhysicalColumn]:
        return {c.field: c for c in self.columns}

    @cached_property
    def _by_column(self) -> dict[str, PhysicalColumn]:
        return {c.name: c for c in self.columns}

    def column(self, field: str) -> PhysicalColumn | None:
        """Look up a column by logical field name."""
        return self._by_field.get(field)

    def column_named(self, name: str) -> PhysicalColumn | None:
        """Look up a column by physical column name."""
        return self._by_column.get(name)

    @property
    def fields(self) -> list[str]:
        return [c.field for c in self.columns]

    @property
    def primary_key(self) -> PhysicalConstraint:
        for c in self.constraints:
            if c.kind is ConstraintKind.PRIMARY_KEY:
                return c
        raise LookupError(f"table {self.name} has no primary key")

    @property
    def primary_key_columns(self) -> list[PhysicalColumn]:
        return [self._by_column[name] for name in self.primary_key.columns]

    def constraints_of(self, kind: ConstraintKind) -> list[PhysicalConstraint]:
        return [c for c in self.constraints if c.kind is kind]

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "name": self.name,
            "implicit": self.implicit,
            "columns": [c.to_dict() for c in self.columns],
            "constraints": [c.to_dict() for c in self.constraints],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhysicalTable:
        return cls(
            model=data["model"],
            name=data["name"],
            implicit=bool(data.get("implicit", False)),
            columns=tuple(PhysicalColumn.from_dict(c) for c in data["columns"]),
            constraints=tuple(PhysicalConstraint.from_dict(c) for c in data["constraints"]),
        )

    def structure(self) -> dict[str, Any]:
        return {
            "columns": sorted(c.structure() for c in self.columns),
            "constraints": sorted(c.structure() for c in self.constraints),
        }


@dataclass(frozen=True)
class PhysicalSchema:
    """Validated snapshot of every table, in declaration order."""

    tables: tuple[PhysicalTable, ...] = ()

    @cached_property
    def _by_model(self) -> dict[str, PhysicalTable]:
        return {t.model: t for t in self.tables}

    @cached_property
    def _by_name(self) -> dict[str, PhysicalTable]:
        return {t.name: t for t in self.tables}

    def table(self, model: str) -> PhysicalTable | None:
        """Look up a table by model name."""
        return self._by_model.get(model)

    def table_named(self, name: str) -> PhysicalTable | None:
        """Look up a table by physical table name."""
        return self._by_name.get(name)

    @property
    def models(self) -> list[str]:
        return [t.model for t in self.tables]

    def to_dict(self) -> dict[str, Any]:
        return {"tables": [t.to_dict() for t in self.tables]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhysicalSchema:
        return cls(tables=tuple(PhysicalTable.from_dict(t) for t in data.get("tables", ())))

    def canonical_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    def fingerprint(self) -> str:
        """sha256 over the canonical JSON form."""
        return hashlib.sha256(self.canonical_json().encode()).hexdigest()

    def structure(self) -> dict[str, Any]:
        """Storage-level shape, keyed by table name.

        Drops what a live database cannot report back: logical names,
        write-time defaults and primary/foreign key constraint names.
        """
        return {t.name: t.structure() for t in self.tables}


def _default_to_dict(default: Default | None, scalar_type: ScalarType) -> dict[str, Any] | None:
    if default is None:
        return None
    if default.function is not None:
        return {"function": default.function.value}
    return {"value": _literal_to_json(scalar_type, default.value)}


def _default_from_dict(data: dict[str, Any] | None, scalar_type: ScalarType) -> Default | None:
    if data is None:
        return None
    if "function" in data:
        return Default(DefaultFunction(data["function"]))
    return Default(_literal_from_json(scalar_type, data["value"]))


def _literal_to_json(scalar_type: ScalarType, value: Any) -> Any:
    """Encode a literal default whose Python form JSON cannot carry."""
    if value is None:
        return None
    if scalar_type is ScalarType.BYTES:
        return base64.b64encode(value).decode("ascii")
    if scalar_type is ScalarType.TIMESTAMP and isinstance(value, datetime):
        return value.isoformat()
    if scalar_type in (ScalarType.DECIMAL, ScalarType.UUID):
        return str(value)
    return value


def _literal_from_json(scalar_type: ScalarType, value: Any) -> Any:
    if value is None:
        return None
    if scalar_type is ScalarType.BYTES:
        return base64.b64decode(value)
    if scalar_type in (ScalarType.DECIMAL, ScalarType.TIMESTAMP, ScalarType.UUID):
        return coerce(scalar_type, value)
    return value

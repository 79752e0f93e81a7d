"""Read a live database back into a PhysicalSchema.

Introspection only recovers what the database stores: physical names,
column types, nullability and constraints. Logical field names, write-time
defaults and model names are not recoverable, so compare the result with
``PhysicalSchema.structure()`` rather than equality.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect
from sqlalchemy import types as sqltypes

from modelplane.config.constants import MIGRATIONS_TABLE, SQLITE_INTERNAL_PREFIX
from modelplane.schema.physical import (
    ConstraintKind,
    PhysicalColumn,
    PhysicalConstraint,
    PhysicalSchema,
    PhysicalTable,
)
from modelplane.schema.types import ScalarType
from modelplane.store.ddl import REBUILD_PREFIX

if TYPE_CHECKING:
    from modelplane.store.database import Store

_ACTIONS = {
    "CASCADE": "cascade",
    "RESTRICT": "restrict",
    "SET NULL": "set_null",
    "NO ACTION": "no_action",
}


def scalar_type(sa_type: Any) -> ScalarType:
    """Map a reflected column type back to a scalar type."""
    # Uuid renders as CHAR(32) where the backend has no native type
    if isinstance(sa_type, sqltypes.Uuid):
        return ScalarType.UUID
    if isinstance(sa_type, sqltypes.CHAR) and sa_type.length == 32:
        return ScalarType.UUID
    if isinstance(sa_type, sqltypes.BigInteger):
        return ScalarType.BIGINT
    if isinstance(sa_type, sqltypes.Integer):
        return ScalarType.INTEGER
    if isinstance(sa_type, sqltypes.Float):
        return ScalarType.FLOAT
    if isinstance(sa_type, sqltypes.Numeric):
        return ScalarType.DECIMAL
    if isinstance(sa_type, sqltypes.DateTime):
        return ScalarType.TIMESTAMP
    if isinstance(sa_type, sqltypes.Boolean):
        return ScalarType.BOOLEAN
    if isinstance(sa_type, sqltypes.JSON):
        return ScalarType.JSON
    if isinstance(sa_type, sqltypes.LargeBinary):
        return ScalarType.BYTES
    if isinstance(sa_type, sqltypes.String):
        return ScalarType.TEXT
    raise ValueError(f"unmapped column type: {sa_type!r}")


def introspect(store: Store) -> PhysicalSchema:
    """Snapshot every user table in the store's namespace.

    The applied-migration ledger and SQLite's internal tables are skipped.
    """
    namespace = store.namespace
    tables: list[PhysicalTable] = []
    with store.connect() as conn:
        inspector = inspect(conn)
        for name in inspector.get_table_names(schema=namespace):
            if _skipped(name):
                continue
            tables.append(_table(inspector, name, namespace))
    return PhysicalSchema(tables=tuple(tables))


def _skipped(name: str) -> bool:
    return (
        name == MIGRATIONS_TABLE
        or name.startswith(SQLITE_INTERNAL_PREFIX)
        or name.startswith(REBUILD_PREFIX)
    )


def _table(inspector: Any, name: str, namespace: str | None) -> PhysicalTable:
    pk = inspector.get_pk_constraint(name, schema=namespace)
    pk_columns = tuple(pk.get("constrained_columns") or ())

    columns = tuple(
        PhysicalColumn(
            field=col["name"],
            name=col["name"],
            type=scalar_type(col["type"]),
            nullable=bool(col["nullable"]),
            primary_key=col["name"] in pk_columns,
        )
        for col in inspector.get_columns(name, schema=namespace)
    )

    constraints: list[PhysicalConstraint] = []
    if pk_columns:
        constraints.append(
            PhysicalConstraint(
                ConstraintKind.PRIMARY_KEY, pk.get("name") or f"{name}_pkey", pk_columns
            )
        )

    seen: set[str] = set()
    for index in inspector.get_indexes(name, schema=namespace):
        seen.add(index["name"])
        kind = ConstraintKind.UNIQUE if index["unique"] else ConstraintKind.INDEX
        constraints.append(PhysicalConstraint(kind, index["name"], tuple(index["column_names"])))
    for unique in inspector.get_unique_constraints(name, schema=namespace):
        if unique.get("name") and unique["name"] not in seen:
            constraints.append(
                PhysicalConstraint(
                    ConstraintKind.UNIQUE, unique["name"], tuple(unique["column_names"])
                )
            )

    for fk in inspector.get_foreign_keys(name, schema=namespace):
        options = fk.get("options") or {}
        fk_columns = tuple(fk["constrained_columns"])
        constraints.append(
            PhysicalConstraint(
                ConstraintKind.FOREIGN_KEY,
                fk.get("name") or f"{name}_{'_'.join(fk_columns)}_fkey",
                fk_columns,
                ref_table=fk["referred_table"],
                ref_columns=tuple(fk["referred_columns"]),
                on_delete=_ACTIONS.get(str(options.get("ondelete", "")).upper()),
                on_update=_ACTIONS.get(str(options.get("onupdate", "")).upper()),
            )
        )

    return PhysicalTable(model=name, name=name, columns=columns, constraints=tuple(constraints))

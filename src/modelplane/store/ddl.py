"""PhysicalSchema -> SQLAlchemy Core objects.

Builds ``sqlalchemy.Table`` objects for the executor (whole schema, one
MetaData) and for migration DDL (single table plus stub tables for its
foreign-key targets, so constraints compile without the full schema).

Columns are keyed by physical name; callers map logical field names
through PhysicalTable.column().
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKeyConstraint,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    Numeric,
    PrimaryKeyConstraint,
    Table,
    Text,
    Uuid,
    false,
    literal,
    text,
    true,
)
from sqlalchemy.schema import (
    AddConstraint,
    CreateColumn,
    CreateIndex,
    DropConstraint,
    DropIndex,
    DropTable,
)
from sqlalchemy.types import TypeEngine

from modelplane.schema.physical import (
    ConstraintKind,
    PhysicalColumn,
    PhysicalConstraint,
    PhysicalSchema,
    PhysicalTable,
)
from modelplane.schema.types import ScalarType

if TYPE_CHECKING:
    from sqlalchemy import Connection

REBUILD_PREFIX = "_modelplane_new_"

_ACTIONS = {
    "cascade": "CASCADE",
    "restrict": "RESTRICT",
    "set_null": "SET NULL",
    "no_action": "NO ACTION",
}


def sa_type(scalar_type: ScalarType, *, autoincrement: bool = False) -> TypeEngine[Any]:
    """SQLAlchemy type for a scalar type."""
    if scalar_type is ScalarType.TEXT:
        return Text()
    if scalar_type is ScalarType.INTEGER:
        return Integer()
    if scalar_type is ScalarType.BIGINT:
        # SQLite only autoincrements a column declared exactly INTEGER
        if autoincrement:
            return BigInteger().with_variant(Integer(), "sqlite")
        return BigInteger()
    if scalar_type is ScalarType.FLOAT:
        return Float()
    if scalar_type is ScalarType.DECIMAL:
        return Numeric(asdecimal=True)
    if scalar_type is ScalarType.BOOLEAN:
        return Boolean()
    if scalar_type is ScalarType.TIMESTAMP:
        return DateTime(timezone=True)
    if scalar_type is ScalarType.BYTES:
        return LargeBinary()
    if scalar_type is ScalarType.JSON:
        return JSON()
    if scalar_type is ScalarType.UUID:
        return Uuid()
    raise ValueError(f"unmapped scalar type: {scalar_type}")


def server_default(column: PhysicalColumn) -> Any:
    """DDL default for literal defaults the database can apply itself.

    Function defaults (now(), uuid()) are evaluated at write time instead.
    """
    default = column.default
    if default is None or default.function is not None or default.value is None:
        return None
    value = default.value
    if column.type is ScalarType.BOOLEAN:
        return true() if value else false()
    if column.type in (ScalarType.INTEGER, ScalarType.BIGINT, ScalarType.FLOAT):
        return text(repr(value))
    if column.type is ScalarType.DECIMAL:
        return text(str(Decimal(str(value))))
    if column.type is ScalarType.TEXT:
        return value
    return None


def build_column(column: PhysicalColumn) -> Column[Any]:
    return Column(
        column.name,
        sa_type(column.type, autoincrement=column.autoincrement),
        nullable=column.nullable,
        autoincrement=column.autoincrement,
        server_default=server_default(column),
    )


def build_constraint(constraint: PhysicalConstraint, namespace: str | None) -> Any:
    """Constraint object for primary and foreign keys, Index for the rest."""
    if constraint.kind is ConstraintKind.PRIMARY_KEY:
        return PrimaryKeyConstraint(*constraint.columns, name=constraint.name)
    if constraint.kind is ConstraintKind.FOREIGN_KEY:
        prefix = f"{namespace}." if namespace else ""
        return ForeignKeyConstraint(
            list(constraint.columns),
            [f"{prefix}{constraint.ref_table}.{col}" for col in constraint.ref_columns],
            name=constraint.name,
            ondelete=_ACTIONS.get(constraint.on_delete or ""),
            onupdate=_ACTIONS.get(constraint.on_update or ""),
        )
    return Index(
        constraint.name,
        *constraint.columns,
        unique=constraint.kind is ConstraintKind.UNIQUE,
    )


def build_table(
    metadata: MetaData,
    table: PhysicalTable,
    namespace: str | None = None,
    *,
    name: str | None = None,
    constraints: Iterable[PhysicalConstraint] | None = None,
) -> Table:
    """Add ``table`` to ``metadata``.

    ``name`` overrides the physical table name (used for rebuild copies);
    ``constraints`` restricts which constraints are attached.
    """
    chosen = table.constraints if constraints is None else tuple(constraints)
    items: list[Any] = [build_column(c) for c in table.columns]
    items.extend(build_constraint(c, namespace) for c in chosen)
    return Table(name or table.name, metadata, *items, schema=namespace)


def add_stub(metadata: MetaData, name: str, columns: Iterable[str], namespace: str | None) -> None:
    """Make ``name`` resolvable as a foreign-key target inside ``metadata``."""
    key = f"{namespace}.{name}" if namespace else name
    existing = metadata.tables.get(key)
    if existing is None:
        Table(name, metadata, *[Column(c, Integer()) for c in columns], schema=namespace)
        return
    for c in columns:
        if c not in existing.c:
            existing.append_column(Column(c, Integer()))


def standalone_table(
    table: PhysicalTable,
    namespace: str | None = None,
    *,
    name: str | None = None,
    constraints: Iterable[PhysicalConstraint] | None = None,
) -> Table:
    """Table in a private MetaData with stubs for every foreign-key target."""
    metadata = MetaData()
    chosen = table.constraints if constraints is None else tuple(constraints)
    for c in chosen:
        if c.kind is ConstraintKind.FOREIGN_KEY and c.ref_table != (name or table.name):
            assert c.ref_table is not None
            add_stub(metadata, c.ref_table, c.ref_columns, namespace)
    return build_table(metadata, table, namespace, name=name, constraints=chosen)


class TableMap:
    """SQLAlchemy tables for a whole PhysicalSchema, keyed by model name."""

    def __init__(self, schema: PhysicalSchema, namespace: str | None = None) -> None:
        self.metadata = MetaData()
        self._tables: dict[str, Table] = {}
        for table in schema.tables:
            self._tables[table.model] = build_table(self.metadata, table, namespace)

    def __getitem__(self, model: str) -> Table:
        return self._tables[model]

    def __contains__(self, model: object) -> bool:
        return model in self._tables


# =============================================================================
# DDL statements
# =============================================================================


def _qualified(conn: Connection, name: str, namespace: str | None) -> str:
    preparer = conn.dialect.identifier_preparer
    if namespace:
        return f"{preparer.quote_schema(namespace)}.{preparer.quote(name)}"
    return preparer.quote(name)


def _find(sa_table: Table, constraint: PhysicalConstraint) -> Any:
    if constraint.kind is ConstraintKind.PRIMARY_KEY:
        return sa_table.primary_key
    if constraint.kind is ConstraintKind.FOREIGN_KEY:
        pool: Iterable[Any] = sa_table.foreign_key_constraints
    else:
        pool = sa_table.indexes
    return next(c for c in pool if c.name == constraint.name)


def create_table(conn: Connection, table: PhysicalTable, namespace: str | None = None) -> None:
    """CREATE TABLE with every constraint ``table`` carries inline."""
    standalone_table(table, namespace).create(conn)


def drop_table(conn: Connection, name: str, namespace: str | None = None) -> None:
    conn.execute(DropTable(Table(name, MetaData(), schema=namespace)))


def add_column(
    conn: Connection, table: str, column: PhysicalColumn, namespace: str | None = None
) -> None:
    sa_table = Table(table, MetaData(), build_column(column), schema=namespace)
    spec = CreateColumn(sa_table.c[column.name]).compile(dialect=conn.dialect)
    conn.exec_driver_sql(f"ALTER TABLE {_qualified(conn, table, namespace)} ADD COLUMN {spec}")


def drop_column(conn: Connection, table: str, column: str, namespace: str | None = None) -> None:
    quoted = conn.dialect.identifier_preparer.quote(column)
    conn.exec_driver_sql(f"ALTER TABLE {_qualified(conn, table, namespace)} DROP COLUMN {quoted}")


def alter_column_default(
    conn: Connection, table: str, column: PhysicalColumn, namespace: str | None = None
) -> None:
    """SET or DROP the column's DDL default to match ``column``."""
    quoted = conn.dialect.identifier_preparer.quote(column.name)
    target = f"ALTER TABLE {_qualified(conn, table, namespace)} ALTER COLUMN {quoted}"
    default = server_default(column)
    if default is None:
        conn.exec_driver_sql(f"{target} DROP DEFAULT")
        return
    if isinstance(default, str):
        default = literal(default)
    rendered = default.compile(dialect=conn.dialect, compile_kwargs={"literal_binds": True})
    conn.exec_driver_sql(f"{target} SET DEFAULT {rendered}")


def add_constraint(
    conn: Connection,
    table: PhysicalTable,
    constraint: PhysicalConstraint,
    namespace: str | None = None,
) -> None:
    """CREATE INDEX for unique/plain indexes, ALTER TABLE ADD CONSTRAINT for keys."""
    sa_table = standalone_table(table, namespace, constraints=[constraint])
    target = _find(sa_table, constraint)
    if constraint.kind in (ConstraintKind.UNIQUE, ConstraintKind.INDEX):
        conn.execute(CreateIndex(target))
    else:
        conn.execute(AddConstraint(target))


def drop_constraint(
    conn: Connection,
    table: PhysicalTable,
    constraint: PhysicalConstraint,
    namespace: str | None = None,
) -> None:
    sa_table = standalone_table(table, namespace, constraints=[constraint])
    target = _find(sa_table, constraint)
    if constraint.kind in (ConstraintKind.UNIQUE, ConstraintKind.INDEX):
        conn.execute(DropIndex(target))
    else:
        conn.execute(DropConstraint(target))


def rebuild_table(conn: Connection, before: PhysicalTable, after: PhysicalTable) -> None:
    """Recreate ``before`` as ``after``, keeping the rows of shared columns.

    SQLite cannot alter keys or add a NOT NULL column without a default in
    place. The new table is created under a temporary name, filled, and
    renamed over the old one. Foreign key enforcement must be off.
    """
    preparer = conn.dialect.identifier_preparer
    temp = f"{REBUILD_PREFIX}{after.name}"
    keys = [
        c
        for c in after.constraints
        if c.kind in (ConstraintKind.PRIMARY_KEY, ConstraintKind.FOREIGN_KEY)
    ]
    standalone_table(after, name=temp, constraints=keys).create(conn)

    shared = [c.name for c in after.columns if before.column_named(c.name) is not None]
    if shared:
        columns = ", ".join(preparer.quote(name) for name in shared)
        conn.exec_driver_sql(
            f"INSERT INTO {preparer.quote(temp)} ({columns}) "
            f"SELECT {columns} FROM {preparer.quote(before.name)}"
        )
    conn.exec_driver_sql(f"DROP TABLE {preparer.quote(before.name)}")
    conn.exec_driver_sql(
        f"ALTER TABLE {preparer.quote(temp)} RENAME TO {preparer.quote(after.name)}"
    )
    for c in after.constraints:
        if c.kind in (ConstraintKind.UNIQUE, ConstraintKind.INDEX):
            add_constraint(conn, after, c)

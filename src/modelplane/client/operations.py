"""Backend-agnostic operation descriptors and their SQLAlchemy statements.

An Operation captures one CRUD intent after validation: target model,
predicate, payload rows and paging. The executor turns it into Core
statements with the helpers below and dispatches them on the store.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import Delete, Select, Table, Update, and_, delete, func, select, update
from sqlalchemy.sql.elements import ColumnElement

from modelplane.core.errors import FieldNotFoundError, InvalidFilterError
from modelplane.query.compiler import compile_predicate
from modelplane.query.predicate import TRUE, PredicateNode
from modelplane.schema.physical import PhysicalTable


class OperationKind(str, Enum):
    CREATE = "create"
    CREATE_MANY = "create_many"
    FIND_MANY = "find_many"
    FIND_UNIQUE = "find_unique"
    COUNT = "count"
    UPDATE = "update"
    UPDATE_MANY = "update_many"
    DELETE = "delete"
    DELETE_MANY = "delete_many"

    @property
    def writes(self) -> bool:
        return self not in (OperationKind.FIND_MANY, OperationKind.FIND_UNIQUE, OperationKind.COUNT)

    @property
    def single_target(self) -> bool:
        """Must match exactly one existing record."""
        return self in (OperationKind.UPDATE, OperationKind.DELETE)


@dataclass(frozen=True)
class Ordering:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Operation:
    """One validated CRUD intent. ``rows`` are keyed by physical column name."""

    kind: OperationKind
    model: str
    where: PredicateNode = TRUE
    rows: tuple[dict[str, Any], ...] = ()
    order_by: tuple[Ordering, ...] = ()
    skip: int = 0
    take: int | None = None


OrderBy = str | Mapping[str, str] | Sequence[str | Mapping[str, str]] | None


def parse_order(table: PhysicalTable, order_by: OrderBy) -> tuple[Ordering, ...]:
    """Accept ``"field"``, ``{"field": "asc" | "desc"}`` or a list of either.

    The primary key is appended ascending as a tiebreaker so paging is stable.
    """
    if order_by is None:
        entries: list[str | Mapping[str, str]] = []
    elif isinstance(order_by, str | Mapping):
        entries = [order_by]
    else:
        entries = list(order_by)

    result: list[Ordering] = []
    for entry in entries:
        items = [(entry, "asc")] if isinstance(entry, str) else list(entry.items())
        for field, direction in items:
            if table.column(field) is None:
                raise FieldNotFoundError.for_field(table.model, field)
            if direction not in ("asc", "desc"):
                raise InvalidFilterError.malformed(
                    f"order direction for '{field}' must be 'asc' or 'desc', got {direction!r}"
                )
            result.append(Ordering(field, descending=direction == "desc"))

    ordered = {o.field for o in result}
    for column in table.primary_key_columns:
        if column.field not in ordered:
            result.append(Ordering(column.field))
    return tuple(result)


def check_page(skip: int, take: int | None, max_take: int) -> None:
    if isinstance(skip, bool) or not isinstance(skip, int) or skip < 0:
        raise InvalidFilterError.malformed(f"skip must be a non-negative integer, got {skip!r}")
    if take is None:
        return
    if isinstance(take, bool) or not isinstance(take, int) or take < 0:
        raise InvalidFilterError.malformed(f"take must be a non-negative integer, got {take!r}")
    if take > max_take:
        raise InvalidFilterError.malformed(f"take {take} exceeds the maximum of {max_take}")


# =============================================================================
# Statements
# =============================================================================


def where_clause(op: Operation, table: PhysicalTable, sa_table: Table) -> ColumnElement[bool]:
    return compile_predicate(op.where, table, sa_table)


def key_clause(
    table: PhysicalTable, sa_table: Table, key: Sequence[Any]
) -> ColumnElement[bool]:
    """Match one row by primary key values, in primary-key column order."""
    columns = table.primary_key.columns
    return and_(*(sa_table.c[name] == value for name, value in zip(columns, key, strict=True)))


def key_of(table: PhysicalTable, row: Mapping[str, Any]) -> tuple[Any, ...]:
    return tuple(row[name] for name in table.primary_key.columns)


def select_statement(op: Operation, table: PhysicalTable, sa_table: Table) -> Select[Any]:
    stmt = select(sa_table).where(where_clause(op, table, sa_table))
    for ordering in op.order_by:
        column = table.column(ordering.field)
        assert column is not None
        sa_column = sa_table.c[column.name]
        stmt = stmt.order_by(sa_column.desc() if ordering.descending else sa_column.asc())
    if op.skip:
        stmt = stmt.offset(op.skip)
    if op.take is not None:
        stmt = stmt.limit(op.take)
    return stmt


def count_statement(op: Operation, table: PhysicalTable, sa_table: Table) -> Select[Any]:
    return select(func.count()).select_from(sa_table).where(where_clause(op, table, sa_table))


def target_statement(op: Operation, table: PhysicalTable, sa_table: Table) -> Select[Any]:
    """Rows a single-target operation would touch. Two are enough to detect ambiguity."""
    return select(sa_table).where(where_clause(op, table, sa_table)).limit(2)


def update_statement(op: Operation, table: PhysicalTable, sa_table: Table) -> Update:
    assert len(op.rows) == 1
    return update(sa_table).where(where_clause(op, table, sa_table)).values(op.rows[0])


def delete_statement(op: Operation, table: PhysicalTable, sa_table: Table) -> Delete:
    return delete(sa_table).where(where_clause(op, table, sa_table))

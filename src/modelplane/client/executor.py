"""Operation Executor: CRUD calls against the store.

Every call takes an explicit ExecutionContext (schema + store + settings);
there is no ambient client. Each call validates its inputs completely
before touching the store, runs its writes in one transaction, and maps
result rows back into Records.

createMany is all-or-nothing by default. In ``best_effort`` mode every
item runs under its own savepoint inside the one transaction: failing items
are reported in ``CreateManyResult.errors`` and the rest commit.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import insert
from sqlalchemy.exc import DBAPIError

from modelplane.client.operations import (
    Operation,
    OperationKind,
    OrderBy,
    check_page,
    count_statement,
    delete_statement,
    key_clause,
    key_of,
    parse_order,
    select_statement,
    target_statement,
    update_statement,
)
from modelplane.client.payload import prepare_create, prepare_update, utcnow
from modelplane.client.records import Record
from modelplane.config.models import CreateManyMode, ExecutorConfig, ModelPlaneConfig
from modelplane.core.errors import (
    AmbiguousTargetError,
    ModelPlaneError,
    RecordNotFoundError,
    StoreError,
    UnknownModelError,
)
from modelplane.core.logging import operation_scope
from modelplane.query.builder import FilterExpression, build
from modelplane.schema.physical import PhysicalSchema, PhysicalTable
from modelplane.store.database import Store
from modelplane.store.ddl import TableMap

if TYPE_CHECKING:
    from sqlalchemy import Connection, Table

logger = structlog.get_logger()


@dataclass
class ExecutionContext:
    """Explicit handle passed to every executor call."""

    schema: PhysicalSchema
    store: Store
    config: ExecutorConfig = field(default_factory=ExecutorConfig)
    tables: TableMap = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.tables = TableMap(self.schema, self.store.namespace)

    @classmethod
    def from_config(cls, schema: PhysicalSchema, config: ModelPlaneConfig) -> ExecutionContext:
        return cls(schema, Store.from_config(config.database), config.executor)

    def resolve(self, model: str) -> tuple[PhysicalTable, Table]:
        table = self.schema.table(model)
        if table is None:
            raise UnknownModelError.for_model(model)
        return table, self.tables[model]

    def close(self) -> None:
        self.store.dispose()


@dataclass(frozen=True)
class ItemError:
    """One failed createMany item (best-effort mode)."""

    index: int
    error: ModelPlaneError


@dataclass
class CreateManyResult:
    count: int = 0
    records: list[Record] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)


# =============================================================================
# Create
# =============================================================================


def create(ctx: ExecutionContext, model: str, values: Mapping[str, Any]) -> Record:
    """Insert one record and return it with generated keys and defaults.

    Raises:
        MissingFieldError: A required field without default is absent.
        InvalidValueError: A value does not fit its field.
        StoreError: The backend rejected the insert.
    """
    with operation_scope():
        table, sa_table = ctx.resolve(model)
        op = Operation(OperationKind.CREATE, model, rows=(prepare_create(table, values),))
        _dispatched(op)
        with ctx.store.transaction() as conn:
            record = _insert(conn, table, sa_table, op.rows[0])
        logger.debug("record_created", model=model)
        return record


def create_many(
    ctx: ExecutionContext,
    model: str,
    items: Iterable[Mapping[str, Any]],
    *,
    mode: CreateManyMode | None = None,
) -> CreateManyResult:
    """Insert many records.

    ``transactional`` (default): every item is validated first, then all
    inserts share one transaction; the first failure raises and nothing is
    written. ``best_effort``: invalid or rejected items are collected as
    ItemErrors and the remaining items commit.
    """
    mode = mode or ctx.config.create_many_mode
    with operation_scope():
        table, sa_table = ctx.resolve(model)
        now = utcnow()
        result = CreateManyResult()

        prepared: list[tuple[int, dict[str, Any]]] = []
        for index, values in enumerate(items):
            try:
                prepared.append((index, prepare_create(table, values, now=now)))
            except ModelPlaneError as e:
                if mode == "transactional":
                    raise
                result.errors.append(ItemError(index, e))

        op = Operation(OperationKind.CREATE_MANY, model, rows=tuple(row for _, row in prepared))
        _dispatched(op, mode=mode)

        with ctx.store.transaction() as conn:
            for index, row in prepared:
                if mode == "transactional":
                    result.records.append(_insert(conn, table, sa_table, row))
                    continue
                try:
                    with conn.begin_nested():
                        record = _insert(conn, table, sa_table, row)
                except DBAPIError as e:
                    result.errors.append(ItemError(index, StoreError.from_dbapi(e)))
                else:
                    result.records.append(record)

        result.count = len(result.records)
        result.errors.sort(key=lambda item: item.index)
        if result.errors:
            logger.warning(
                "create_many_partial", model=model, created=result.count, failed=len(result.errors)
            )
        else:
            logger.debug("create_many_done", model=model, created=result.count)
        return result


def _insert(conn: Connection, table: PhysicalTable, sa_table: Table, row: dict[str, Any]) -> Record:
    result = conn.execute(insert(sa_table).values(row))
    key = tuple(result.inserted_primary_key or ())
    stmt = sa_table.select().where(key_clause(table, sa_table, key))
    fetched = conn.execute(stmt).mappings().one()
    return Record.from_row(table, fetched)


# =============================================================================
# Read
# =============================================================================


def find_many(
    ctx: ExecutionContext,
    model: str,
    where: FilterExpression = None,
    *,
    order_by: OrderBy = None,
    skip: int = 0,
    take: int | None = None,
) -> Iterator[Record]:
    """Lazily stream matching records, ordered by primary key unless told otherwise.

    Validation happens on the call; the store is only touched once iteration
    starts. Closing the iterator early releases the connection.
    """
    table, sa_table = ctx.resolve(model)
    check_page(skip, take, ctx.config.max_take)
    op = Operation(
        OperationKind.FIND_MANY,
        model,
        where=build(table, where),
        order_by=parse_order(table, order_by),
        skip=skip,
        take=take,
    )
    with operation_scope():
        _dispatched(op)
    return _stream(ctx, op, table, sa_table)


def _stream(
    ctx: ExecutionContext, op: Operation, table: PhysicalTable, sa_table: Table
) -> Iterator[Record]:
    stmt = select_statement(op, table, sa_table)
    with ctx.store.connect() as conn:
        result = conn.execution_options(yield_per=ctx.config.batch_size).execute(stmt)
        for row in result.mappings():
            yield Record.from_row(table, row)


def find_unique(ctx: ExecutionContext, model: str, where: FilterExpression) -> Record | None:
    """The one record matching ``where``, or None.

    Raises:
        AmbiguousTargetError: More than one record matches.
    """
    with operation_scope():
        table, sa_table = ctx.resolve(model)
        op = Operation(OperationKind.FIND_UNIQUE, model, where=build(table, where))
        _dispatched(op)
        with ctx.store.connect() as conn:
            rows = conn.execute(target_statement(op, table, sa_table)).mappings().all()
        if len(rows) > 1:
            raise AmbiguousTargetError.for_model(model, op.kind.value)
        return Record.from_row(table, rows[0]) if rows else None


def count(ctx: ExecutionContext, model: str, where: FilterExpression = None) -> int:
    with operation_scope():
        table, sa_table = ctx.resolve(model)
        op = Operation(OperationKind.COUNT, model, where=build(table, where))
        _dispatched(op)
        with ctx.store.connect() as conn:
            return int(conn.execute(count_statement(op, table, sa_table)).scalar_one())


# =============================================================================
# Update / delete
# =============================================================================


def update(
    ctx: ExecutionContext, model: str, where: FilterExpression, values: Mapping[str, Any]
) -> Record:
    """Update the single record matching ``where`` and return its new state.

    Raises:
        RecordNotFoundError: Nothing matches. The store is left untouched.
        AmbiguousTargetError: More than one record matches.
    """
    with operation_scope():
        table, sa_table = ctx.resolve(model)
        op = Operation(
            OperationKind.UPDATE,
            model,
            where=build(table, where),
            rows=(prepare_update(table, values),),
        )
        _dispatched(op)
        with ctx.store.transaction() as conn:
            current = _single_target(conn, op, table, sa_table)
            key = key_of(table, current)
            changes = op.rows[0]
            if changes:
                conn.execute(
                    sa_table.update().where(key_clause(table, sa_table, key)).values(changes)
                )
            new_key = tuple(
                changes.get(name, old)
                for name, old in zip(table.primary_key.columns, key, strict=True)
            )
            row = conn.execute(
                sa_table.select().where(key_clause(table, sa_table, new_key))
            ).mappings().one()
        logger.debug("record_updated", model=model)
        return Record.from_row(table, row)


def update_many(
    ctx: ExecutionContext, model: str, where: FilterExpression, values: Mapping[str, Any]
) -> int:
    """Update every matching record. Returns the number of rows changed."""
    with operation_scope():
        table, sa_table = ctx.resolve(model)
        op = Operation(
            OperationKind.UPDATE_MANY,
            model,
            where=build(table, where),
            rows=(prepare_update(table, values),),
        )
        _dispatched(op)
        if not op.rows[0]:
            return count(ctx, model, op.where)
        with ctx.store.transaction() as conn:
            changed = conn.execute(update_statement(op, table, sa_table)).rowcount
        logger.debug("records_updated", model=model, count=changed)
        return changed


def delete(ctx: ExecutionContext, model: str, where: FilterExpression) -> Record:
    """Delete the single record matching ``where`` and return it.

    Raises:
        RecordNotFoundError: Nothing matches.
        AmbiguousTargetError: More than one record matches.
    """
    with operation_scope():
        table, sa_table = ctx.resolve(model)
        op = Operation(OperationKind.DELETE, model, where=build(table, where))
        _dispatched(op)
        with ctx.store.transaction() as conn:
            current = _single_target(conn, op, table, sa_table)
            key = key_of(table, current)
            conn.execute(sa_table.delete().where(key_clause(table, sa_table, key)))
        logger.debug("record_deleted", model=model)
        return Record.from_row(table, current)


def delete_many(ctx: ExecutionContext, model: str, where: FilterExpression = None) -> int:
    """Delete every matching record. Returns the number of rows removed."""
    with operation_scope():
        table, sa_table = ctx.resolve(model)
        op = Operation(OperationKind.DELETE_MANY, model, where=build(table, where))
        _dispatched(op)
        with ctx.store.transaction() as conn:
            removed = conn.execute(delete_statement(op, table, sa_table)).rowcount
        logger.debug("records_deleted", model=model, count=removed)
        return removed


def _single_target(
    conn: Connection, op: Operation, table: PhysicalTable, sa_table: Table
) -> Mapping[str, Any]:
    rows = conn.execute(target_statement(op, table, sa_table)).mappings().all()
    if not rows:
        raise RecordNotFoundError.for_model(op.model, op.kind.value)
    if len(rows) > 1:
        raise AmbiguousTargetError.for_model(op.model, op.kind.value)
    return rows[0]


def _dispatched(op: Operation, **extra: Any) -> None:
    logger.debug(
        "operation_dispatched",
        kind=op.kind.value,
        model=op.model,
        rows=len(op.rows),
        **extra,
    )


"""Apply a MigrationPlan to a store.

The whole plan runs in one transaction, steps in plan order. Any failure
rolls the store back to its state before the first step and is reported
as MigrationError carrying the failing step's index and the StoreError
behind it.

SQLite cannot change keys or column defaults in place. Adding or dropping
a primary or foreign key, altering a column's DDL default or autoincrement,
and adding a column SQLite cannot ALTER in, rebuild the table from the
in-memory state the plan produces at that step.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.sql import table as table_clause

from modelplane.core.errors import MigrationError, StoreError
from modelplane.migrate.planner import MigrationPlan, MigrationStep, StepKind, apply_step
from modelplane.schema.physical import (
    ConstraintKind,
    PhysicalColumn,
    PhysicalSchema,
    PhysicalTable,
)
from modelplane.schema.types import Default
from modelplane.store import ddl

if TYPE_CHECKING:
    from sqlalchemy import Connection

    from modelplane.store.database import Store

logger = structlog.get_logger()

_KEYS = (ConstraintKind.PRIMARY_KEY, ConstraintKind.FOREIGN_KEY)


def apply_plan(
    store: Store,
    plan: MigrationPlan,
    previous: PhysicalSchema | None,
    *,
    accept_data_loss: bool = False,
    before_commit: Callable[[Connection], None] | None = None,
) -> PhysicalSchema:
    """Run every step of ``plan`` against ``store`` atomically.

    ``previous`` is the snapshot the store currently holds (None for an
    empty store). ``before_commit`` runs on the migration's connection after
    the last step, inside the same transaction.

    Returns:
        The snapshot the store holds afterwards.

    Raises:
        MigrationError: Destructive steps without ``accept_data_loss``, a
            required column added to a table that has rows, or a failing step.
    """
    destructive = plan.destructive_steps
    if destructive and not accept_data_loss:
        raise MigrationError.destructive_not_accepted([s.describe() for s in destructive])

    state: dict[str, PhysicalTable] = {t.name: t for t in (previous or PhysicalSchema()).tables}
    with store.ddl_transaction() as conn:
        for index, step in enumerate(plan):
            after = apply_step(state, step)
            if step.destructive:
                logger.warning("destructive_step", index=index, step=step.describe())
            try:
                if step.requires_backfill:
                    logger.warning("backfill_required", index=index, step=step.describe())
                    if _has_rows(conn, step.table, store.namespace):
                        raise MigrationError.backfill_required([step.describe()])
                _execute(conn, store, step, state, after)
            except DBAPIError as e:
                raise MigrationError.step_failed(
                    index, step.describe(), StoreError.from_dbapi(e)
                ) from e
            except StoreError as e:
                raise MigrationError.step_failed(index, step.describe(), e) from e
            logger.debug("migration_step_applied", index=index, step=step.describe())
            state = after
        if before_commit is not None:
            before_commit(conn)

    logger.info("migration_plan_applied", steps=len(plan), fingerprint=plan.next_fingerprint[:12])
    return PhysicalSchema(tables=tuple(state.values()))


def _has_rows(conn: Connection, name: str, namespace: str | None) -> bool:
    target = table_clause(name, schema=namespace)
    return bool(conn.execute(select(func.count()).select_from(target)).scalar())


def _execute(
    conn: Connection,
    store: Store,
    step: MigrationStep,
    before: dict[str, PhysicalTable],
    after: dict[str, PhysicalTable],
) -> None:
    namespace = store.namespace
    sqlite = store.is_sqlite

    if step.kind is StepKind.CREATE_TABLE:
        assert step.definition is not None
        ddl.create_table(conn, step.definition, namespace)
        return
    if step.kind is StepKind.DROP_TABLE:
        ddl.drop_table(conn, step.table, namespace)
        return

    if step.kind is StepKind.ADD_COLUMN:
        column = step.column
        assert column is not None
        in_place = not column.primary_key and (
            column.nullable or ddl.server_default(column) is not None
        )
        if sqlite and not in_place:
            _rebuild(conn, before[step.table], after[step.table])
        else:
            ddl.add_column(conn, step.table, column, namespace)
        return
    if step.kind is StepKind.DROP_COLUMN:
        assert step.column is not None
        ddl.drop_column(conn, step.table, step.column.name, namespace)
        return
    if step.kind is StepKind.ALTER_COLUMN:
        _alter_column(conn, store, step, before[step.table], after[step.table])
        return

    constraint = step.constraint
    assert constraint is not None
    if sqlite and constraint.kind in _KEYS:
        _rebuild(conn, before[step.table], after[step.table])
    elif step.kind is StepKind.ADD_CONSTRAINT:
        ddl.add_constraint(conn, after[step.table], constraint, namespace)
    else:
        ddl.drop_constraint(conn, before[step.table], constraint, namespace)


def _alter_column(
    conn: Connection,
    store: Store,
    step: MigrationStep,
    before: PhysicalTable,
    after: PhysicalTable,
) -> None:
    """Bring a kept column's DDL default and key generation in line with ``step``.

    Logical names, auto-update and write-time defaults live only in the
    snapshot and need no DDL.
    """
    column = step.column
    assert column is not None
    old = before.column_named(column.name)
    assert old is not None
    if (_ddl_default(old), old.autoincrement) == (_ddl_default(column), column.autoincrement):
        return
    if store.is_sqlite:
        _rebuild(conn, before, after)
    elif old.autoincrement != column.autoincrement:
        raise StoreError.backend_error(
            f"switching autoincrement on {step.table}.{column.name} requires SQLite"
        )
    else:
        ddl.alter_column_default(conn, step.table, column, store.namespace)


def _ddl_default(column: PhysicalColumn) -> Default | None:
    return column.default if ddl.server_default(column) is not None else None


def _rebuild(conn: Connection, before: PhysicalTable, after: PhysicalTable) -> None:
    ddl.rebuild_table(conn, before, after)
    quoted = conn.dialect.identifier_preparer.quote(after.name)
    violations = conn.exec_driver_sql(f"PRAGMA foreign_key_check({quoted})").fetchall()
    if violations:
        raise StoreError.constraint_violation(
            f"FOREIGN KEY constraint failed ({len(violations)} row(s) in {after.name})"
        )

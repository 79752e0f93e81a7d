"""Applied-migration ledger stored next to the user's tables.

One row per applied artifact, inserted on the same connection and in the
same transaction as the artifact's steps: a rolled-back migration leaves
no ledger row behind.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import inspect, insert
from sqlmodel import Field, Session, SQLModel, select

from modelplane.config.constants import MIGRATIONS_TABLE

if TYPE_CHECKING:
    from sqlalchemy import Connection

    from modelplane.store.database import Store


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppliedMigration(SQLModel, table=True):
    """One applied migration artifact."""

    __tablename__ = MIGRATIONS_TABLE

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    checksum: str
    steps: int
    applied_at: datetime = Field(default_factory=_utcnow)


def _scoped(conn: Connection, namespace: str | None) -> Connection:
    """Route the ledger table into ``namespace``."""
    if namespace is None:
        return conn
    return conn.execution_options(schema_translate_map={None: namespace})


def ensure_ledger(conn: Connection, namespace: str | None = None) -> None:
    ledger_table = AppliedMigration.__table__  # type: ignore[attr-defined]
    ledger_table.create(_scoped(conn, namespace), checkfirst=True)


def record(
    conn: Connection,
    name: str,
    checksum: str,
    steps: int,
    namespace: str | None = None,
) -> None:
    """Insert a ledger row. Must run inside the migration's transaction."""
    ensure_ledger(conn, namespace)
    _scoped(conn, namespace).execute(
        insert(AppliedMigration.__table__).values(  # type: ignore[arg-type]
            name=name, checksum=checksum, steps=steps, applied_at=_utcnow()
        )
    )


def applied(store: Store) -> list[AppliedMigration]:
    """Ledger rows in application order. Empty when no migration ever ran."""
    with store.connect() as conn:
        if not inspect(conn).has_table(MIGRATIONS_TABLE, schema=store.namespace):
            return []
        with Session(bind=_scoped(conn, store.namespace)) as session:
            order = AppliedMigration.id
            return list(session.exec(select(AppliedMigration).order_by(order)).all())

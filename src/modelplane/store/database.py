"""Store handle: the opaque connection to the backing relational database.

This module provides:
- Store: engine owner created from a single connection string
- Transaction scopes for writes, with backend errors translated to StoreError
- A DDL transaction for migrations (SQLite: foreign keys suspended and
  re-checked before commit, as table rebuilds require)

SQLite runs with WAL mode for concurrent readers and with transactional DDL:
pysqlite's implicit transaction handling is disabled and every SQLAlchemy
transaction emits its own BEGIN, so schema changes roll back with the rest.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError

from modelplane.core.errors import ConfigError, StoreError

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine
    from sqlalchemy.engine import URL

    from modelplane.config.models import DatabaseConfig

logger = structlog.get_logger()

NAMESPACE_PARAM = "schema"


def split_namespace(url: str) -> tuple[URL, str | None]:
    """Strip the ``?schema=<name>`` parameter from a connection string."""
    parsed = make_url(url)
    namespace = parsed.query.get(NAMESPACE_PARAM)
    if isinstance(namespace, tuple):
        namespace = namespace[-1]
    if namespace is not None:
        parsed = parsed.difference_update_query([NAMESPACE_PARAM])
    return parsed, namespace


@contextmanager
def translate_errors() -> Generator[None, None, None]:
    """Re-raise SQLAlchemy DBAPI errors as StoreError, original chained."""
    try:
        yield
    except DBAPIError as e:
        raise StoreError.from_dbapi(e) from e


class Store:
    """Connection owner for one database.

    The core never retries: backend failures surface as StoreError and
    any retry policy belongs to the caller.
    """

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        busy_timeout_ms: int = 30000,
    ) -> None:
        self.url, self.namespace = split_namespace(url)
        self._busy_timeout_ms = busy_timeout_ms
        if self.is_sqlite and self.namespace is not None:
            raise ConfigError.invalid_value(
                "database.url", url, "SQLite does not support a schema namespace"
            )
        self.engine = self._create_engine(echo)

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> Store:
        return cls(config.url, echo=config.echo, busy_timeout_ms=config.busy_timeout_ms)

    @property
    def dialect(self) -> str:
        return self.url.get_backend_name()

    @property
    def is_sqlite(self) -> bool:
        return self.dialect == "sqlite"

    def _create_engine(self, echo: bool) -> Engine:
        if not self.is_sqlite:
            return create_engine(self.url, echo=echo, pool_pre_ping=True)

        engine = create_engine(
            self.url,
            echo=echo,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        busy_timeout = self._busy_timeout_ms

        def _on_connect(dbapi_conn: Any, _connection_record: Any) -> None:
            _configure_pragmas(dbapi_conn, busy_timeout)

        def _on_begin(conn: Connection) -> None:
            conn.exec_driver_sql("BEGIN")

        event.listen(engine, "connect", _on_connect)
        event.listen(engine, "begin", _on_begin)
        return engine

    @contextmanager
    def connect(self) -> Generator[Connection, None, None]:
        """Read connection. Never commits."""
        with translate_errors(), self.engine.connect() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Generator[Connection, None, None]:
        """
        Connection inside one transaction.

        Commits on successful exit and rolls back on exception, so a
        cancelled or failed write leaves no partial state.
        """
        with translate_errors(), self.engine.begin() as conn:
            yield conn

    @contextmanager
    def ddl_transaction(self) -> Generator[Connection, None, None]:
        """
        Transaction for schema changes.

        On SQLite, foreign key enforcement is switched off outside the
        transaction (it cannot change inside one) so tables can be rebuilt,
        and ``PRAGMA foreign_key_check`` must come back clean before commit.
        """
        if not self.is_sqlite:
            with self.transaction() as conn:
                yield conn
            return

        with translate_errors(), self.engine.connect() as conn:
            raw = conn.connection.dbapi_connection
            assert raw is not None
            raw.execute("PRAGMA foreign_keys=OFF")
            try:
                with conn.begin():
                    yield conn
                    violations = conn.exec_driver_sql("PRAGMA foreign_key_check").fetchall()
                    if violations:
                        table = violations[0][0]
                        raise StoreError.constraint_violation(
                            f"FOREIGN KEY constraint failed ({len(violations)} row(s), "
                            f"first in {table})"
                        )
            finally:
                raw.execute("PRAGMA foreign_keys=ON")

    def execute_raw(self, sql: str, params: dict[str, Any] | None = None) -> Any:
        """Execute raw SQL in its own transaction, returning all rows if any."""
        with self.transaction() as conn:
            result = conn.execute(text(sql), params or {})
            return result.fetchall() if result.returns_rows else result.rowcount

    def dispose(self) -> None:
        self.engine.dispose()
        logger.debug("store_disposed", dialect=self.dialect)


def _configure_pragmas(dbapi_conn: Any, busy_timeout_ms: int) -> None:
    """Configure SQLite for concurrent access and transactional DDL."""
    # Let SQLAlchemy's begin event own transaction boundaries
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA case_sensitive_like=ON")
    cursor.close()

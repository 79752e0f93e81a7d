"""Store layer: SQLAlchemy engine handle, DDL generation and introspection."""

from modelplane.store.database import Store, split_namespace, translate_errors
from modelplane.store.ddl import TableMap, build_table, sa_type
from modelplane.store.introspect import introspect

__all__ = [
    "Store",
    "split_namespace",
    "translate_errors",
    "TableMap",
    "build_table",
    "sa_type",
    "introspect",
]

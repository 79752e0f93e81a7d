"""Operation Executor and typed records."""

from modelplane.client.executor import (
    CreateManyResult,
    ExecutionContext,
    ItemError,
    count,
    create,
    create_many,
    delete,
    delete_many,
    find_many,
    find_unique,
    update,
    update_many,
)
from modelplane.client.operations import Operation, OperationKind, Ordering
from modelplane.client.records import Record

__all__ = [
    "ExecutionContext",
    "Record",
    "CreateManyResult",
    "ItemError",
    "Operation",
    "OperationKind",
    "Ordering",
    "create",
    "create_many",
    "find_many",
    "find_unique",
    "count",
    "update",
    "update_many",
    "delete",
    "delete_many",
]

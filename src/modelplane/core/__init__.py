"""Core module exports."""

from modelplane.core.errors import (
    ConfigError,
    DataError,
    ErrorCode,
    InternalError,
    MigrationError,
    ModelPlaneError,
    QueryError,
    SchemaError,
    StoreError,
    TypeMismatchError,
)
from modelplane.core.logging import (
    clear_operation_id,
    configure_logging,
    get_logger,
    get_operation_id,
    operation_scope,
    set_operation_id,
)

__all__ = [
    # Errors
    "ModelPlaneError",
    "ErrorCode",
    "ConfigError",
    "SchemaError",
    "QueryError",
    "DataError",
    "StoreError",
    "MigrationError",
    "InternalError",
    "TypeMismatchError",
    # Logging
    "clear_operation_id",
    "configure_logging",
    "get_logger",
    "get_operation_id",
    "operation_scope",
    "set_operation_id",
]

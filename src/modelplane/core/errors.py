"""ModelPlane error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Schema (fatal at schema-load time)
- 4xxx: Query (per call, schema stays usable)
- 5xxx: Data (per call, never retried)
- 6xxx: Store (backend failures, propagated to the caller)
- 7xxx: Migration
- 9xxx: Internal
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sqlalchemy.exc import DBAPIError


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING_REQUIRED = 2003

    # Schema (3xxx)
    SCHEMA_DUPLICATE_MODEL = 3001
    SCHEMA_DUPLICATE_FIELD = 3002
    SCHEMA_INVALID_ATTRIBUTES = 3003
    SCHEMA_UNKNOWN_FIELD = 3004
    SCHEMA_TYPE_MISMATCH = 3005
    SCHEMA_UNKNOWN_MODEL = 3006
    SCHEMA_INVALID_RELATION = 3007
    SCHEMA_LOCKED = 3008
    SCHEMA_DOCUMENT_INVALID = 3009

    # Query (4xxx)
    QUERY_FIELD_NOT_FOUND = 4001
    QUERY_TYPE_MISMATCH = 4002
    QUERY_UNKNOWN_OPERATOR = 4003
    QUERY_INVALID_EXPRESSION = 4004

    # Data (5xxx)
    DATA_MISSING_FIELD = 5001
    DATA_RECORD_NOT_FOUND = 5002
    DATA_AMBIGUOUS_TARGET = 5003
    DATA_INVALID_VALUE = 5004

    # Store (6xxx)
    STORE_CONSTRAINT_VIOLATION = 6001
    STORE_CONNECTION_LOST = 6002
    STORE_BACKEND_ERROR = 6003

    # Migration (7xxx)
    MIGRATION_STEP_FAILED = 7001
    MIGRATION_DESTRUCTIVE = 7002
    MIGRATION_BACKFILL_REQUIRED = 7003
    MIGRATION_CHECKSUM_MISMATCH = 7004
    MIGRATION_ARTIFACT_EXISTS = 7005
    MIGRATION_UNSUPPORTED = 7006
    MIGRATION_ARTIFACT_INVALID = 7007

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(eq=False)
class ModelPlaneError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'SCHEMA_UNKNOWN_FIELD')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


# =============================================================================
# Categories
# =============================================================================


class ConfigError(ModelPlaneError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_required(cls, field: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
            message=f"Missing required config field: {field}",
            details={"field": field},
        )


class SchemaError(ModelPlaneError):
    """Schema definition errors. Fatal at schema-load time."""


class QueryError(ModelPlaneError):
    """Filter and query construction errors, raised per call."""


class DataError(ModelPlaneError):
    """Record payload and target-selection errors, raised per call."""


class StoreError(ModelPlaneError):
    """Failure reported by the backing store, message kept verbatim."""

    @classmethod
    def from_dbapi(cls, exc: DBAPIError) -> StoreError:
        """Translate a SQLAlchemy DBAPIError into the matching StoreError."""
        from sqlalchemy.exc import IntegrityError

        reason = str(exc.orig) if exc.orig is not None else str(exc)
        if isinstance(exc, IntegrityError):
            return cls.constraint_violation(reason)
        if exc.connection_invalidated:
            return cls.connection_lost(reason)
        return cls.backend_error(reason)

    @classmethod
    def constraint_violation(cls, reason: str) -> StoreError:
        return cls(
            code=ErrorCode.STORE_CONSTRAINT_VIOLATION,
            message=reason,
            details={"reason": reason},
        )

    @classmethod
    def connection_lost(cls, reason: str) -> StoreError:
        return cls(
            code=ErrorCode.STORE_CONNECTION_LOST,
            message=reason,
            retryable=True,
            details={"reason": reason},
        )

    @classmethod
    def backend_error(cls, reason: str) -> StoreError:
        return cls(
            code=ErrorCode.STORE_BACKEND_ERROR,
            message=reason,
            details={"reason": reason},
        )


class MigrationError(ModelPlaneError):
    """Migration planning, artifact, and application errors."""

    @classmethod
    def step_failed(cls, index: int, description: str, cause: StoreError) -> MigrationError:
        return cls(
            code=ErrorCode.MIGRATION_STEP_FAILED,
            message=f"Step {index} ({description}) failed: {cause.message}",
            details={"step_index": index, "step": description, "store_error": cause.to_dict()},
        )

    @classmethod
    def destructive_not_accepted(cls, steps: Sequence[str]) -> MigrationError:
        return cls(
            code=ErrorCode.MIGRATION_DESTRUCTIVE,
            message=(
                f"Plan contains {len(steps)} destructive step(s); pass accept_data_loss to apply"
            ),
            details={"steps": list(steps)},
        )

    @classmethod
    def backfill_required(cls, steps: Sequence[str]) -> MigrationError:
        return cls(
            code=ErrorCode.MIGRATION_BACKFILL_REQUIRED,
            message=(
                f"Plan adds {len(steps)} required column(s) without a default; "
                "backfill existing rows manually"
            ),
            details={"steps": list(steps)},
        )

    @classmethod
    def checksum_mismatch(cls, name: str, expected: str, actual: str) -> MigrationError:
        return cls(
            code=ErrorCode.MIGRATION_CHECKSUM_MISMATCH,
            message=f"Migration '{name}' was modified after it was written",
            details={"name": name, "expected": expected, "actual": actual},
        )

    @classmethod
    def artifact_exists(cls, path: str) -> MigrationError:
        return cls(
            code=ErrorCode.MIGRATION_ARTIFACT_EXISTS,
            message=f"Migration artifact already exists: {path}",
            details={"path": path},
        )

    @classmethod
    def invalid_artifact(cls, path: str, reason: str) -> MigrationError:
        return cls(
            code=ErrorCode.MIGRATION_ARTIFACT_INVALID,
            message=f"Invalid migration artifact {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def unsupported(cls, description: str, dialect: str) -> MigrationError:
        return cls(
            code=ErrorCode.MIGRATION_UNSUPPORTED,
            message=f"Step '{description}' is not supported on {dialect}",
            details={"step": description, "dialect": dialect},
        )


class InternalError(ModelPlaneError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> InternalError:
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )


# =============================================================================
# Schema errors
# =============================================================================


class DuplicateModelError(SchemaError):
    @classmethod
    def for_model(cls, model: str) -> DuplicateModelError:
        return cls(
            code=ErrorCode.SCHEMA_DUPLICATE_MODEL,
            message=f"Model '{model}' is already defined",
            details={"model": model},
        )


class DuplicateFieldError(SchemaError):
    @classmethod
    def for_field(cls, model: str, field: str) -> DuplicateFieldError:
        return cls(
            code=ErrorCode.SCHEMA_DUPLICATE_FIELD,
            message=f"Field '{field}' is declared more than once on model '{model}'",
            details={"model": model, "field": field},
        )


class InvalidAttributeCombination(SchemaError):
    @classmethod
    def conflict(
        cls, model: str, reason: str, field: str | None = None
    ) -> InvalidAttributeCombination:
        where = f"{model}.{field}" if field else model
        return cls(
            code=ErrorCode.SCHEMA_INVALID_ATTRIBUTES,
            message=f"Invalid attributes on {where}: {reason}",
            details={"model": model, "field": field, "reason": reason},
        )


class UnknownFieldError(SchemaError):
    @classmethod
    def in_constraint(cls, model: str, field: str, context: str) -> UnknownFieldError:
        return cls(
            code=ErrorCode.SCHEMA_UNKNOWN_FIELD,
            message=f"{context} on model '{model}' references unknown field '{field}'",
            details={"model": model, "field": field, "context": context},
        )


class UnknownModelError(SchemaError):
    @classmethod
    def for_model(cls, model: str) -> UnknownModelError:
        return cls(
            code=ErrorCode.SCHEMA_UNKNOWN_MODEL,
            message=f"Model '{model}' is not defined",
            details={"model": model},
        )


class InvalidRelationError(SchemaError):
    @classmethod
    def for_field(cls, model: str, field: str, reason: str) -> InvalidRelationError:
        return cls(
            code=ErrorCode.SCHEMA_INVALID_RELATION,
            message=f"Invalid relation {model}.{field}: {reason}",
            details={"model": model, "field": field, "reason": reason},
        )


class SchemaLockedError(SchemaError):
    @classmethod
    def for_model(cls, model: str) -> SchemaLockedError:
        return cls(
            code=ErrorCode.SCHEMA_LOCKED,
            message=f"Cannot define model '{model}': schema registry is frozen",
            details={"model": model},
        )


class SchemaDocumentError(SchemaError):
    @classmethod
    def invalid(cls, location: str, reason: str) -> SchemaDocumentError:
        return cls(
            code=ErrorCode.SCHEMA_DOCUMENT_INVALID,
            message=f"Invalid schema document at '{location}': {reason}",
            details={"location": location, "reason": reason},
        )


class TypeMismatchError(ModelPlaneError):
    """Raised when a type does not fit an attribute or operator.

    Concrete errors are split per category so schema-time and query-time
    mismatches keep their fatal / per-call semantics.
    """


class FieldTypeMismatchError(TypeMismatchError, SchemaError):
    @classmethod
    def for_field(
        cls, model: str, field: str, field_type: str, reason: str
    ) -> FieldTypeMismatchError:
        return cls(
            code=ErrorCode.SCHEMA_TYPE_MISMATCH,
            message=f"{model}.{field} ({field_type}): {reason}",
            details={"model": model, "field": field, "type": field_type, "reason": reason},
        )


# =============================================================================
# Query errors
# =============================================================================


class FieldNotFoundError(QueryError):
    @classmethod
    def for_field(cls, model: str, field: str) -> FieldNotFoundError:
        return cls(
            code=ErrorCode.QUERY_FIELD_NOT_FOUND,
            message=f"Model '{model}' has no field '{field}'",
            details={"model": model, "field": field},
        )


class OperatorTypeMismatchError(TypeMismatchError, QueryError):
    @classmethod
    def for_operator(
        cls, model: str, field: str, field_type: str, operator: str, reason: str
    ) -> OperatorTypeMismatchError:
        return cls(
            code=ErrorCode.QUERY_TYPE_MISMATCH,
            message=f"Operator '{operator}' on {model}.{field} ({field_type}): {reason}",
            details={
                "model": model,
                "field": field,
                "type": field_type,
                "operator": operator,
                "reason": reason,
            },
        )


class UnknownOperatorError(QueryError):
    @classmethod
    def for_operator(cls, field: str, operator: str) -> UnknownOperatorError:
        return cls(
            code=ErrorCode.QUERY_UNKNOWN_OPERATOR,
            message=f"Unknown operator '{operator}' for field '{field}'",
            details={"field": field, "operator": operator},
        )


class InvalidFilterError(QueryError):
    @classmethod
    def malformed(cls, reason: str) -> InvalidFilterError:
        return cls(
            code=ErrorCode.QUERY_INVALID_EXPRESSION,
            message=f"Malformed filter expression: {reason}",
            details={"reason": reason},
        )


# =============================================================================
# Data errors
# =============================================================================


class MissingFieldError(DataError):
    @classmethod
    def for_fields(cls, model: str, fields: Sequence[str]) -> MissingFieldError:
        names = ", ".join(fields)
        return cls(
            code=ErrorCode.DATA_MISSING_FIELD,
            message=f"Missing required field(s) for '{model}': {names}",
            details={"model": model, "fields": list(fields)},
        )


class InvalidValueError(DataError):
    @classmethod
    def for_field(cls, model: str, field: str, value: Any, reason: str) -> InvalidValueError:
        return cls(
            code=ErrorCode.DATA_INVALID_VALUE,
            message=f"Invalid value for {model}.{field}: {reason}",
            details={"model": model, "field": field, "value": repr(value), "reason": reason},
        )


class RecordNotFoundError(DataError):
    @classmethod
    def for_model(cls, model: str, operation: str) -> RecordNotFoundError:
        return cls(
            code=ErrorCode.DATA_RECORD_NOT_FOUND,
            message=f"{operation} on '{model}': no record matches the filter",
            details={"model": model, "operation": operation},
        )


class AmbiguousTargetError(DataError):
    @classmethod
    def for_model(cls, model: str, operation: str) -> AmbiguousTargetError:
        return cls(
            code=ErrorCode.DATA_AMBIGUOUS_TARGET,
            message=f"{operation} on '{model}': filter matches more than one record",
            details={"model": model, "operation": operation},
        )

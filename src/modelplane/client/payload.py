"""Record payload validation and default application.

Payloads are keyed by logical field name; prepared rows are keyed by
physical column name, ready for an INSERT or UPDATE.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from modelplane.core.errors import FieldNotFoundError, InvalidValueError, MissingFieldError
from modelplane.schema.physical import PhysicalColumn, PhysicalTable
from modelplane.schema.types import DefaultFunction, ScalarType
from modelplane.schema.values import coerce


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def prepare_create(
    table: PhysicalTable, values: Mapping[str, Any], *, now: datetime | None = None
) -> dict[str, Any]:
    """Validate a create payload and fill in defaults.

    Autoincrement keys are left to the database. ``now()`` defaults and
    auto-update timestamps share one instant per call.

    Raises:
        FieldNotFoundError: The payload names a field the model lacks.
        InvalidValueError: A value does not fit its field.
        MissingFieldError: Required fields are absent.
    """
    _reject_unknown(table, values)
    now = now or utcnow()
    row: dict[str, Any] = {}
    missing: list[str] = []
    for column in table.columns:
        if column.field in values:
            row[column.name] = _value(table, column, values[column.field])
        elif column.updated_at:
            row[column.name] = now
        elif column.autoincrement:
            continue
        elif column.default is not None:
            row[column.name] = _default(column, now)
        elif not column.nullable:
            missing.append(column.field)
    if missing:
        raise MissingFieldError.for_fields(table.model, missing)
    return row


def prepare_update(
    table: PhysicalTable, values: Mapping[str, Any], *, now: datetime | None = None
) -> dict[str, Any]:
    """Validate an update payload. Auto-update timestamps not given are set to now."""
    _reject_unknown(table, values)
    now = now or utcnow()
    row: dict[str, Any] = {}
    for column in table.columns:
        if column.field in values:
            row[column.name] = _value(table, column, values[column.field])
        elif column.updated_at:
            row[column.name] = now
    return row


def _reject_unknown(table: PhysicalTable, values: Mapping[str, Any]) -> None:
    for name in values:
        if table.column(name) is None:
            raise FieldNotFoundError.for_field(table.model, name)


def _value(table: PhysicalTable, column: PhysicalColumn, value: Any) -> Any:
    if value is None:
        if not column.nullable:
            raise InvalidValueError.for_field(table.model, column.field, value, "not nullable")
        return None
    try:
        value = coerce(column.type, value)
    except ValueError as e:
        raise InvalidValueError.for_field(table.model, column.field, value, str(e)) from None
    return value


def _default(column: PhysicalColumn, now: datetime) -> Any:
    assert column.default is not None
    function = column.default.function
    if function is DefaultFunction.NOW:
        return now
    if function is DefaultFunction.UUID:
        generated = uuid.uuid4()
        return generated if column.type is ScalarType.UUID else str(generated)
    return coerce(column.type, column.default.value)

"""Python value checks per scalar type.

``coerce`` is the single place deciding whether a Python value fits a
column type. It returns the value in the form SQLAlchemy expects, with aware
timestamps converted to UTC, and raises ValueError with a human-readable
reason otherwise.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from modelplane.schema.types import ScalarType


def coerce(scalar_type: ScalarType, value: Any) -> Any:
    """Coerce ``value`` to ``scalar_type``. None is passed through unchanged."""
    if value is None:
        return None
    checker = _COERCERS[scalar_type]
    return checker(value)


def fits(scalar_type: ScalarType, value: Any) -> bool:
    try:
        coerce(scalar_type, value)
    except ValueError:
        return False
    return True


def _text(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {type(value).__name__}")
    return value


def _integer(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"expected an integer, got {type(value).__name__}")
    return value


def _float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"expected a number, got {type(value).__name__}")
    return float(value)


def _decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("expected a decimal, got bool")
    if isinstance(value, int | float | str):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"not a decimal: {value!r}") from None
    raise ValueError(f"expected a decimal, got {type(value).__name__}")


def _boolean(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"expected a boolean, got {type(value).__name__}")
    return value


def _timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValueError(f"not an ISO-8601 timestamp: {value!r}") from None
    if not isinstance(value, datetime):
        raise ValueError(f"expected a datetime, got {type(value).__name__}")
    # Stored and compared in UTC; naive values are taken as already UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value


def _bytes(value: Any) -> bytes:
    if isinstance(value, bytes | bytearray | memoryview):
        return bytes(value)
    raise ValueError(f"expected bytes, got {type(value).__name__}")


def _json(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"not JSON-serialisable: {e}") from None
    return value


def _uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, str):
        try:
            return uuid.UUID(value)
        except ValueError:
            raise ValueError(f"not a UUID: {value!r}") from None
    raise ValueError(f"expected a UUID, got {type(value).__name__}")


_COERCERS = {
    ScalarType.TEXT: _text,
    ScalarType.INTEGER: _integer,
    ScalarType.BIGINT: _integer,
    ScalarType.FLOAT: _float,
    ScalarType.DECIMAL: _decimal,
    ScalarType.BOOLEAN: _boolean,
    ScalarType.TIMESTAMP: _timestamp,
    ScalarType.BYTES: _bytes,
    ScalarType.JSON: _json,
    ScalarType.UUID: _uuid,
}

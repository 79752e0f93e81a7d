"""Typed records returned by the executor."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from typing import Any

from modelplane.schema.physical import PhysicalTable
from modelplane.schema.types import ScalarType


class Record(Mapping[str, Any]):
    """One row of a model, keyed by logical field name.

    Read-only. Fields are reachable by key or attribute::

        book["title"] == book.title
    """

    __slots__ = ("_model", "_data")

    def __init__(self, model: str, data: Mapping[str, Any]) -> None:
        self._model = model
        self._data = dict(data)

    @property
    def model(self) -> str:
        return self._model

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._data[name]
        except KeyError:
            raise AttributeError(f"{self._model} record has no field '{name}'") from None

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Record):
            return self._model == other._model and self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self._data.items())
        return f"{self._model}({fields})"

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    @classmethod
    def from_row(cls, table: PhysicalTable, row: Mapping[str, Any]) -> Record:
        """Build a record from a result row keyed by physical column name."""
        data: dict[str, Any] = {}
        for column in table.columns:
            value = row[column.name]
            # Backends without zone support hand timestamps back naive; they are stored as UTC
            if (
                column.type is ScalarType.TIMESTAMP
                and isinstance(value, datetime)
                and value.tzinfo is None
            ):
                value = value.replace(tzinfo=timezone.utc)
            data[column.field] = value
        return cls(table.model, data)

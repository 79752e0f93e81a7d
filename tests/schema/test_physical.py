"""Tests for PhysicalSchema snapshots and value coercion."""

import json
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from modelplane.schema import Default, PhysicalColumn, PhysicalSchema, PhysicalTable, ScalarType
from modelplane.schema.values import coerce, fits


class TestSnapshot:
    """Serialisation and fingerprints."""

    def test_dict_round_trip_preserves_schema(self, library_schema: PhysicalSchema) -> None:
        # Given
        data = json.loads(library_schema.canonical_json())

        # When
        restored = PhysicalSchema.from_dict(data)

        # Then
        assert restored == library_schema
        assert restored.fingerprint() == library_schema.fingerprint()

    def test_given_typed_literal_defaults_when_serialised_then_restored(self) -> None:
        """Decimal, timestamp, UUID and bytes defaults survive the JSON snapshot."""
        # Given
        literals = {
            ScalarType.DECIMAL: Decimal("9.99"),
            ScalarType.TIMESTAMP: datetime(2024, 5, 1, 10, tzinfo=timezone.utc),
            ScalarType.UUID: uuid.UUID("12345678-1234-5678-1234-567812345678"),
            ScalarType.BYTES: b"\x00\xff",
        }
        columns = tuple(
            PhysicalColumn(field=t.value, name=t.value, type=t, default=Default(v))
            for t, v in literals.items()
        )
        table = PhysicalTable(model="Item", name="Item", columns=columns)
        schema = PhysicalSchema(tables=(table,))

        # When
        encoded = schema.canonical_json()
        restored = PhysicalSchema.from_dict(json.loads(encoded))

        # Then
        assert restored == schema
        assert restored.fingerprint() == schema.fingerprint()
        assert '"value":"9.99"' in encoded
        assert '"value":"AP8="' in encoded

    def test_fingerprint_changes_with_schema(
        self, book_schema: PhysicalSchema, library_schema: PhysicalSchema
    ) -> None:
        assert book_schema.fingerprint() != library_schema.fingerprint()
        assert len(book_schema.fingerprint()) == 64

    def test_lookup_by_model_and_table_name(self, library_schema: PhysicalSchema) -> None:
        assert library_schema.table_named("books") is library_schema.table("Book")
        assert library_schema.table("books") is None
        assert library_schema.models == ["Author", "Book"]

    def test_structure_uses_physical_names_only(self, library_schema: PhysicalSchema) -> None:
        structure = library_schema.structure()

        assert set(structure) == {"Author", "books"}
        columns = [c[0] for c in structure["books"]["columns"]]
        assert "published_year" in columns
        assert "publishedYear" not in columns
        assert ("primary_key", ("id",)) in structure["books"]["constraints"]


class TestCoerce:
    """Python values per scalar type."""

    @pytest.mark.parametrize(
        ("scalar_type", "value", "expected"),
        [
            (ScalarType.TEXT, "x", "x"),
            (ScalarType.INTEGER, 3, 3),
            (ScalarType.FLOAT, 3, 3.0),
            (ScalarType.DECIMAL, "1.50", Decimal("1.50")),
            (ScalarType.BOOLEAN, True, True),
            (ScalarType.BYTES, bytearray(b"ab"), b"ab"),
            (ScalarType.JSON, {"a": [1, 2]}, {"a": [1, 2]}),
            (
                ScalarType.TIMESTAMP,
                "2024-05-01T10:00:00+00:00",
                datetime(2024, 5, 1, 10, tzinfo=timezone.utc),
            ),
            (
                ScalarType.UUID,
                "12345678-1234-5678-1234-567812345678",
                uuid.UUID("12345678-1234-5678-1234-567812345678"),
            ),
        ],
    )
    def test_accepted_values(
        self, scalar_type: ScalarType, value: object, expected: object
    ) -> None:
        assert coerce(scalar_type, value) == expected

    @pytest.mark.parametrize(
        ("scalar_type", "value"),
        [
            (ScalarType.TEXT, 1),
            (ScalarType.INTEGER, True),
            (ScalarType.INTEGER, "3"),
            (ScalarType.FLOAT, False),
            (ScalarType.DECIMAL, "abc"),
            (ScalarType.BOOLEAN, 1),
            (ScalarType.TIMESTAMP, "yesterday"),
            (ScalarType.BYTES, "ab"),
            (ScalarType.JSON, {1, 2}),
            (ScalarType.UUID, "not-a-uuid"),
        ],
    )
    def test_rejected_values(self, scalar_type: ScalarType, value: object) -> None:
        with pytest.raises(ValueError):
            coerce(scalar_type, value)
        assert not fits(scalar_type, value)

    def test_none_passes_through(self) -> None:
        assert coerce(ScalarType.INTEGER, None) is None

    def test_aware_timestamp_converted_to_utc(self) -> None:
        value = coerce(ScalarType.TIMESTAMP, "2024-05-01T12:00:00+02:00")

        assert value == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
        assert value.utcoffset() == timedelta(0)
        assert value.hour == 10

    def test_naive_timestamp_left_naive(self) -> None:
        assert coerce(ScalarType.TIMESTAMP, "2024-05-01T12:00:00").tzinfo is None

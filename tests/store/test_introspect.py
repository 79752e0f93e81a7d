"""Tests for reading a live store back into a PhysicalSchema."""

import pytest
from sqlalchemy import types as sqltypes

from modelplane.config.constants import MIGRATIONS_TABLE
from modelplane.migrate import apply_plan, plan
from modelplane.schema import ConstraintKind, PhysicalSchema, ScalarType
from modelplane.store import Store, introspect
from modelplane.store.ddl import REBUILD_PREFIX
from modelplane.store.introspect import scalar_type


class TestScalarType:
    @pytest.mark.parametrize(
        ("reflected", "expected"),
        [
            (sqltypes.TEXT(), ScalarType.TEXT),
            (sqltypes.VARCHAR(40), ScalarType.TEXT),
            (sqltypes.INTEGER(), ScalarType.INTEGER),
            (sqltypes.BIGINT(), ScalarType.BIGINT),
            (sqltypes.FLOAT(), ScalarType.FLOAT),
            (sqltypes.NUMERIC(), ScalarType.DECIMAL),
            (sqltypes.BOOLEAN(), ScalarType.BOOLEAN),
            (sqltypes.DATETIME(), ScalarType.TIMESTAMP),
            (sqltypes.BLOB(), ScalarType.BYTES),
            (sqltypes.JSON(), ScalarType.JSON),
            (sqltypes.CHAR(32), ScalarType.UUID),
            (sqltypes.Uuid(), ScalarType.UUID),
        ],
    )
    def test_reflected_types(self, reflected, expected: ScalarType) -> None:
        assert scalar_type(reflected) is expected

    def test_unmapped_type(self) -> None:
        with pytest.raises(ValueError):
            scalar_type(sqltypes.NullType())


class TestIntrospect:
    """Live tables back to snapshots."""

    def test_empty_store(self, store: Store) -> None:
        assert introspect(store) == PhysicalSchema()

    def test_given_applied_schema_when_introspected_then_structure_matches(
        self, store: Store, library_schema: PhysicalSchema
    ) -> None:
        # Given
        apply_plan(store, plan(None, library_schema), None)

        # When
        live = introspect(store)

        # Then
        assert live.structure() == library_schema.structure()
        books = live.table("books")
        assert books is not None
        fk = next(c for c in books.constraints if c.kind is ConstraintKind.FOREIGN_KEY)
        assert fk.ref_table == "Author"
        assert fk.on_delete == "set_null"

    def test_bookkeeping_tables_skipped(self, store: Store) -> None:
        store.execute_raw(f'CREATE TABLE "{MIGRATIONS_TABLE}" (id INTEGER PRIMARY KEY)')
        store.execute_raw(f'CREATE TABLE "{REBUILD_PREFIX}books" (id INTEGER PRIMARY KEY)')
        store.execute_raw('CREATE TABLE "kept" (id INTEGER PRIMARY KEY)')

        assert [t.name for t in introspect(store).tables] == ["kept"]

"""Tests for migration planning."""

import json

import pytest

from modelplane.migrate import MigrationPlan, MigrationStep, StepKind, plan, replay
from modelplane.migrate.planner import (
    RANK_ADD_COLUMN,
    RANK_ADD_FOREIGN_KEY,
    RANK_ADD_INDEX,
    RANK_CREATE_TABLE,
    RANK_DROP_TABLE,
)
from modelplane.schema import ConstraintKind, PhysicalSchema, load_schema, resolve_schema

BOOK_V2 = """
models:
  - name: Book
    fields:
      - {name: id, type: integer, id: true, default: autoincrement()}
      - {name: title, type: text}
      - {name: publishedYear, type: integer}
      - {name: pages, type: integer}
      - {name: subtitle, type: text, nullable: true}
      - {name: isbn, type: text, unique: true}
      - {name: rating, type: integer, default: 0}
"""

CYCLE = """
models:
  - name: Left
    fields:
      - {name: id, type: integer, id: true}
      - {name: rightId, type: integer, nullable: true}
      - name: right
        relation: {target: Right, fields: [rightId], references: [id], on_delete: set_null}
  - name: Right
    fields:
      - {name: id, type: integer, id: true}
      - {name: leftId, type: integer, nullable: true}
      - name: left
        relation: {target: Left, fields: [leftId], references: [id], on_delete: set_null}
"""


def _schema(document: str) -> PhysicalSchema:
    return resolve_schema(load_schema(document))


class TestIdempotence:
    """Equal snapshots give empty plans."""

    def test_given_same_schema_when_planned_then_no_steps(
        self, library_schema: PhysicalSchema
    ) -> None:
        # When
        result = plan(library_schema, library_schema)

        # Then
        assert len(result) == 0
        assert result.previous_fingerprint == result.next_fingerprint

    def test_given_applied_plan_when_replanned_then_no_steps(
        self, library_schema: PhysicalSchema
    ) -> None:
        # Given
        reached = replay(None, plan(None, library_schema))

        # When
        again = plan(reached, library_schema)

        # Then
        assert [s.describe() for s in again] == []


class TestInitialPlan:
    """Planning from an empty store."""

    def test_creates_tables_then_indexes(self, library_schema: PhysicalSchema) -> None:
        result = plan(None, library_schema)

        assert [s.describe() for s in result] == [
            "create table Author",
            "create table books",
            "add unique Author_email_key on Author(email)",
            "add index books_title_idx on books(title)",
        ]
        assert result.previous_fingerprint is None
        assert result.next_fingerprint == library_schema.fingerprint()

    def test_new_table_carries_primary_and_foreign_keys(
        self, library_schema: PhysicalSchema
    ) -> None:
        create_books = plan(None, library_schema)[1]

        assert create_books.definition is not None
        kinds = [c.kind for c in create_books.definition.constraints]
        assert kinds == [ConstraintKind.PRIMARY_KEY, ConstraintKind.FOREIGN_KEY]

    def test_referenced_table_created_first(self) -> None:
        schema = _schema(
            """
models:
  - name: Book
    fields:
      - {name: id, type: integer, id: true}
      - {name: authorId, type: integer}
      - name: author
        relation: {target: Author, fields: [authorId], references: [id]}
  - name: Author
    fields:
      - {name: id, type: integer, id: true}
"""
        )

        tables = [s.table for s in plan(None, schema) if s.kind is StepKind.CREATE_TABLE]

        assert tables == ["Author", "Book"]

    def test_cycle_defers_one_foreign_key(self) -> None:
        result = plan(None, _schema(CYCLE))

        assert [(s.kind, s.table) for s in result] == [
            (StepKind.CREATE_TABLE, "Left"),
            (StepKind.CREATE_TABLE, "Right"),
            (StepKind.ADD_CONSTRAINT, "Left"),
        ]
        assert result[2].rank == RANK_ADD_FOREIGN_KEY
        assert result[2].constraint is not None
        assert result[2].constraint.name == "Left_rightId_fkey"

    def test_replay_reaches_target_structure(self) -> None:
        schema = _schema(CYCLE)
        assert replay(None, plan(None, schema)).structure() == schema.structure()


class TestEvolution:
    """Plans between two non-empty snapshots."""

    def test_added_columns_and_constraints(self, book_schema: PhysicalSchema) -> None:
        # When
        result = plan(book_schema, _schema(BOOK_V2))

        # Then
        assert [s.describe() for s in result] == [
            "add column Book.subtitle",
            "add column Book.isbn",
            "add column Book.rating",
            "add unique Book_isbn_key on Book(isbn)",
        ]
        assert [s.rank for s in result] == [RANK_ADD_COLUMN] * 3 + [RANK_ADD_INDEX]

    def test_backfill_flag_only_for_required_without_default(
        self, book_schema: PhysicalSchema
    ) -> None:
        result = plan(book_schema, _schema(BOOK_V2))

        assert [s.column.name for s in result.backfill_steps if s.column] == ["isbn"]
        assert result.destructive_steps == []

    def test_removed_table_and_column_are_destructive(self, book_schema: PhysicalSchema) -> None:
        # Given
        smaller = _schema(
            """
models:
  - name: Author
    fields:
      - {name: id, type: integer, id: true}
"""
        )
        wider = plan(None, book_schema)

        # When
        result = plan(replay(None, wider), smaller)

        # Then
        assert [(s.kind, s.table) for s in result] == [
            (StepKind.DROP_TABLE, "Book"),
            (StepKind.CREATE_TABLE, "Author"),
        ]
        assert result[0].rank == RANK_DROP_TABLE
        assert result[1].rank == RANK_CREATE_TABLE
        assert result.destructive_steps == [result[0]]

    def test_type_change_is_drop_plus_add(self, book_schema: PhysicalSchema) -> None:
        changed = _schema(
            """
models:
  - name: Book
    fields:
      - {name: id, type: integer, id: true, default: autoincrement()}
      - {name: title, type: text}
      - {name: publishedYear, type: integer}
      - {name: pages, type: text}
"""
        )

        result = plan(book_schema, changed)

        assert [s.describe() for s in result] == [
            "drop column Book.pages",
            "add column Book.pages",
        ]
        assert result[0].destructive
        assert result[1].requires_backfill

    @pytest.mark.parametrize(
        ("before_field", "after_field"),
        [
            pytest.param(
                "{name: rating, type: integer, default: 1}",
                "{name: rating, type: integer, default: 5}",
                id="literal-default",
            ),
            pytest.param(
                "{name: rating, type: integer, default: 1}",
                "{name: rating, type: integer}",
                id="default-removed",
            ),
            pytest.param(
                "{name: seenAt, type: timestamp}",
                "{name: seenAt, type: timestamp, updated_at: true}",
                id="auto-update",
            ),
        ],
    )
    def test_given_kept_column_changed_when_planned_then_altered(
        self, before_field: str, after_field: str
    ) -> None:
        """Changes that keep type and nullability never produce an empty plan."""
        # Given
        base = "models:\n  - name: Book\n    fields:\n      - {name: id, type: integer, id: true}\n"
        before = _schema(f"{base}      - {before_field}\n")
        after = _schema(f"{base}      - {after_field}\n")
        assert before.fingerprint() != after.fingerprint()

        # When
        result = plan(before, after)

        # Then
        assert [(s.kind, s.rank) for s in result] == [(StepKind.ALTER_COLUMN, RANK_ADD_COLUMN)]
        assert result[0].describe().startswith("alter column Book.")
        assert result.destructive_steps == []
        assert result.backfill_steps == []
        assert replay(before, result) == after

    def test_autoincrement_switch_is_altered(self) -> None:
        manual = _schema(
            "models:\n  - name: Book\n    fields:\n      - {name: id, type: integer, id: true}\n"
        )
        automatic = _schema(
            "models:\n  - name: Book\n    fields:\n"
            "      - {name: id, type: integer, id: true, default: autoincrement()}\n"
        )

        result = plan(manual, automatic)

        assert [s.describe() for s in result] == ["alter column Book.id"]
        assert replay(manual, result) == automatic

    def test_dropping_index_column_drops_index_first(self) -> None:
        before = _schema(BOOK_V2)
        after = _schema(BOOK_V2.replace("      - {name: isbn, type: text, unique: true}\n", ""))

        result = plan(before, after)

        assert [s.describe() for s in result] == [
            "drop unique Book_isbn_key on Book(isbn)",
            "drop column Book.isbn",
        ]


class TestSerialisation:
    """Plans persist deterministically."""

    def test_to_json_is_deterministic(self, library_registry) -> None:
        first = plan(None, resolve_schema(library_registry)).to_json()
        second = plan(None, resolve_schema(library_registry)).to_json()

        assert first == second

    def test_round_trip(self, library_schema: PhysicalSchema) -> None:
        original = plan(None, library_schema)

        restored = MigrationPlan.from_dict(json.loads(original.to_json()))

        assert restored == original

    @pytest.mark.parametrize("kind", list(StepKind))
    def test_step_flags_omitted_when_false(self, kind: StepKind) -> None:
        data = MigrationStep(kind=kind, table="t", rank=0).to_dict()
        assert "destructive" not in data
        assert "requires_backfill" not in data

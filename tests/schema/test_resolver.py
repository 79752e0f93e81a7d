"""Tests for attribute/constraint resolution."""

import json
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from modelplane.core.errors import (
    FieldTypeMismatchError,
    InvalidAttributeCombination,
    InvalidRelationError,
    UnknownFieldError,
    UnknownModelError,
)
from modelplane.schema import (
    AUTOINCREMENT,
    NOW,
    UUID,
    Cardinality,
    CompositeId,
    CompositeUnique,
    ConstraintKind,
    Default,
    Field,
    Index,
    MapTo,
    PhysicalSchema,
    PrimaryKey,
    ReferentialAction,
    Relation,
    ScalarType,
    SchemaRegistry,
    Unique,
    UpdatedAt,
    resolve_schema,
)


def _id(scalar_type: ScalarType = ScalarType.INTEGER) -> Field:
    if scalar_type is ScalarType.INTEGER:
        return Field("id", scalar_type, attributes=(PrimaryKey(), Default(AUTOINCREMENT)))
    return Field("id", scalar_type, attributes=(PrimaryKey(),))


def _resolve(*models: tuple) -> PhysicalSchema:
    registry = SchemaRegistry()
    for entry in models:
        name, fields, *rest = entry
        registry.define_model(name, fields, rest[0] if rest else ())
    return resolve_schema(registry)


class TestColumns:
    """Column resolution."""

    def test_given_book_when_resolved_then_columns_follow_declaration(
        self, book_schema: PhysicalSchema
    ) -> None:
        # Given
        table = book_schema.table("Book")

        # Then
        assert table is not None
        assert table.name == "Book"
        assert table.fields == ["id", "title", "publishedYear", "pages"]
        assert table.primary_key.name == "Book_pkey"
        assert table.primary_key.columns == ("id",)

    def test_autoincrement_marks_column_and_clears_default(
        self, book_schema: PhysicalSchema
    ) -> None:
        column = book_schema.table("Book").column("id")  # type: ignore[union-attr]

        assert column.autoincrement
        assert column.default is None
        assert not column.required

    def test_map_and_table_name_used_physically(self, library_schema: PhysicalSchema) -> None:
        table = library_schema.table("Book")

        assert table is not None
        assert table.name == "books"
        column = table.column("publishedYear")
        assert column is not None and column.name == "published_year"
        assert table.column_named("published_year") == column

    def test_write_time_defaults_recorded_as_expressions(
        self, library_schema: PhysicalSchema
    ) -> None:
        table = library_schema.table("Book")
        assert table is not None

        created = table.column("createdAt")
        updated = table.column("updatedAt")

        assert created is not None and created.default == Default(NOW)
        assert updated is not None and updated.updated_at
        assert not created.required and not updated.required

    def test_relation_fields_have_no_column(self, library_schema: PhysicalSchema) -> None:
        table = library_schema.table("Book")
        assert table is not None
        assert table.column("author") is None

    @pytest.mark.parametrize(
        ("scalar_type", "literal", "expected"),
        [
            (ScalarType.DECIMAL, Decimal("9.99"), Decimal("9.99")),
            (ScalarType.DECIMAL, "0.10", Decimal("0.10")),
            (
                ScalarType.TIMESTAMP,
                datetime(2024, 1, 1, 2, tzinfo=timezone(timedelta(hours=2))),
                datetime(2024, 1, 1, tzinfo=timezone.utc),
            ),
            (
                ScalarType.UUID,
                "12345678-1234-5678-1234-567812345678",
                uuid.UUID("12345678-1234-5678-1234-567812345678"),
            ),
            (ScalarType.BYTES, b"\x00\xff", b"\x00\xff"),
        ],
    )
    def test_given_non_json_literal_default_when_resolved_then_kept_typed(
        self, scalar_type: ScalarType, literal: object, expected: object
    ) -> None:
        """Literal defaults are stored in their column's Python form."""
        # When
        schema = _resolve(
            ("Item", [_id(), Field("value", scalar_type, attributes=(Default(literal),))])
        )

        # Then
        column = schema.table("Item").column("value")  # type: ignore[union-attr]
        assert column is not None
        assert column.default == Default(expected)
        assert type(column.default.value) is type(expected)
        assert PhysicalSchema.from_dict(json.loads(schema.canonical_json())) == schema

    def test_resolution_is_deterministic(self, library_registry: SchemaRegistry) -> None:
        first = resolve_schema(library_registry)
        second = resolve_schema(library_registry)

        assert first == second
        assert first.fingerprint() == second.fingerprint()


class TestConstraints:
    """Constraint naming and relations."""

    def test_unique_index_and_fk_names(self, library_schema: PhysicalSchema) -> None:
        author = library_schema.table("Author")
        books = library_schema.table("Book")
        assert author is not None and books is not None

        assert [c.name for c in author.constraints_of(ConstraintKind.UNIQUE)] == [
            "Author_email_key"
        ]
        assert [c.name for c in books.constraints_of(ConstraintKind.INDEX)] == ["books_title_idx"]

        (fk,) = books.constraints_of(ConstraintKind.FOREIGN_KEY)
        assert fk.name == "books_author_id_fkey"
        assert fk.columns == ("author_id",)
        assert fk.ref_table == "Author"
        assert fk.ref_columns == ("id",)
        assert fk.on_delete == "set_null"
        assert fk.on_update == "cascade"

    def test_composite_id_and_unique(self) -> None:
        schema = _resolve(
            (
                "Seat",
                [
                    Field("row", ScalarType.TEXT),
                    Field("number", ScalarType.INTEGER, attributes=(MapTo("num"),)),
                    Field("code", ScalarType.TEXT),
                    Field("zone", ScalarType.TEXT),
                ],
                (CompositeId(("row", "number")), CompositeUnique(("code", "zone"))),
            )
        )
        table = schema.table("Seat")
        assert table is not None

        assert table.primary_key.columns == ("row", "num")
        assert [c.name for c in table.primary_key_columns] == ["row", "num"]
        assert table.constraints_of(ConstraintKind.UNIQUE)[0].name == "Seat_code_zone_key"

    def test_named_index_kept(self) -> None:
        schema = _resolve(
            ("Log", [_id(), Field("at", ScalarType.TIMESTAMP)], (Index(("at",), name="log_at"),))
        )
        table = schema.table("Log")
        assert table is not None
        assert table.constraints_of(ConstraintKind.INDEX)[0].name == "log_at"

    def test_one_to_one_adds_unique(self) -> None:
        schema = _resolve(
            ("User", [_id()]),
            (
                "Profile",
                [
                    _id(),
                    Field("userId", ScalarType.INTEGER),
                    Field(
                        "user",
                        relation=Relation(
                            "User", ("userId",), ("id",), cardinality=Cardinality.ONE_TO_ONE
                        ),
                    ),
                ],
            ),
        )
        profile = schema.table("Profile")
        assert profile is not None
        assert [c.name for c in profile.constraints_of(ConstraintKind.UNIQUE)] == [
            "Profile_userId_key"
        ]

    def test_many_to_many_builds_join_table(self) -> None:
        schema = _resolve(
            (
                "Post",
                [
                    _id(),
                    Field(
                        "tags", relation=Relation("Tag", cardinality=Cardinality.MANY_TO_MANY)
                    ),
                ],
            ),
            ("Tag", [_id(ScalarType.TEXT)]),
        )
        join = schema.table("_PostToTag")

        assert join is not None
        assert join.implicit
        assert [(c.name, c.type) for c in join.columns] == [
            ("A", ScalarType.INTEGER),
            ("B", ScalarType.TEXT),
        ]
        assert join.primary_key.columns == ("A", "B")
        fks = join.constraints_of(ConstraintKind.FOREIGN_KEY)
        assert [(fk.columns, fk.ref_table) for fk in fks] == [(("A",), "Post"), (("B",), "Tag")]
        assert all(fk.on_delete == ReferentialAction.CASCADE.value for fk in fks)
        assert join.constraints_of(ConstraintKind.INDEX)[0].columns == ("B",)


class TestResolutionErrors:
    """Type-dependent and cross-model errors."""

    @pytest.mark.parametrize(
        "field",
        [
            pytest.param(
                Field("title", ScalarType.TEXT, attributes=(Default(NOW),)), id="now-on-text"
            ),
            pytest.param(
                Field("n", ScalarType.INTEGER, attributes=(Default(UUID),)), id="uuid-on-int"
            ),
            pytest.param(
                Field("at", ScalarType.TEXT, attributes=(UpdatedAt(),)), id="updated-at-on-text"
            ),
            pytest.param(
                Field("pages", ScalarType.INTEGER, attributes=(Default("many"),)),
                id="literal-does-not-fit",
            ),
        ],
    )
    def test_attribute_type_mismatch(self, field: Field) -> None:
        with pytest.raises(FieldTypeMismatchError):
            _resolve(("Book", [_id(), field]))

    def test_autoincrement_on_text_is_type_mismatch(self) -> None:
        with pytest.raises(FieldTypeMismatchError):
            _resolve(
                (
                    "Book",
                    [
                        Field(
                            "id", ScalarType.TEXT, attributes=(PrimaryKey(), Default(AUTOINCREMENT))
                        )
                    ],
                )
            )

    def test_autoincrement_off_primary_key_is_conflict(self) -> None:
        with pytest.raises(InvalidAttributeCombination):
            _resolve(
                (
                    "Book",
                    [_id(), Field("seq", ScalarType.INTEGER, attributes=(Default(AUTOINCREMENT),))],
                )
            )

    def test_unique_on_missing_field(self) -> None:
        with pytest.raises(UnknownFieldError):
            _resolve(("Book", [_id()], (CompositeUnique(("isbn", "id")),)))

    def test_relation_to_unknown_model(self) -> None:
        with pytest.raises(UnknownModelError):
            _resolve(
                (
                    "Book",
                    [
                        _id(),
                        Field("authorId", ScalarType.INTEGER),
                        Field("author", relation=Relation("Author", ("authorId",), ("id",))),
                    ],
                )
            )

    def test_relation_key_type_mismatch(self) -> None:
        with pytest.raises(FieldTypeMismatchError):
            _resolve(
                ("Author", [_id()]),
                (
                    "Book",
                    [
                        _id(),
                        Field("authorId", ScalarType.TEXT),
                        Field("author", relation=Relation("Author", ("authorId",), ("id",))),
                    ],
                ),
            )

    def test_relation_to_non_unique_field(self) -> None:
        with pytest.raises(InvalidRelationError):
            _resolve(
                ("Author", [_id(), Field("name", ScalarType.TEXT)]),
                (
                    "Book",
                    [
                        _id(),
                        Field("authorName", ScalarType.TEXT),
                        Field("author", relation=Relation("Author", ("authorName",), ("name",))),
                    ],
                ),
            )

    def test_set_null_on_required_field(self) -> None:
        with pytest.raises(InvalidRelationError):
            _resolve(
                ("Author", [_id(), Field("email", ScalarType.TEXT, attributes=(Unique(),))]),
                (
                    "Book",
                    [
                        _id(),
                        Field("authorEmail", ScalarType.TEXT),
                        Field(
                            "author",
                            relation=Relation(
                                "Author",
                                ("authorEmail",),
                                ("email",),
                                on_delete=ReferentialAction.SET_NULL,
                            ),
                        ),
                    ],
                ),
            )

    def test_duplicate_table_name(self) -> None:
        registry = SchemaRegistry()
        registry.define_model("A", [_id()], table_name="shared")
        registry.define_model("B", [_id()], table_name="shared")

        with pytest.raises(InvalidAttributeCombination):
            resolve_schema(registry)

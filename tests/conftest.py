"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages,
and provides the schemas and stores shared across test packages.
"""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local modelplane package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of modelplane modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("modelplane"):
        del sys.modules[module_name]

from modelplane.client import ExecutionContext  # noqa: E402
from modelplane.migrate import apply_plan, plan  # noqa: E402
from modelplane.schema import (  # noqa: E402
    AUTOINCREMENT,
    Default,
    Field,
    PhysicalSchema,
    PrimaryKey,
    ScalarType,
    SchemaRegistry,
    load_schema,
    resolve_schema,
)
from modelplane.store import Store  # noqa: E402

LIBRARY_DOCUMENT = """
models:
  - name: Author
    fields:
      - {name: id, type: integer, id: true, default: autoincrement()}
      - {name: email, type: text, unique: true}
      - {name: name, type: text, nullable: true}
  - name: Book
    table: books
    fields:
      - {name: id, type: integer, id: true, default: autoincrement()}
      - {name: title, type: text}
      - {name: publishedYear, type: integer, map: published_year}
      - {name: pages, type: integer}
      - {name: authorId, type: integer, nullable: true, map: author_id}
      - name: author
        relation: {target: Author, fields: [authorId], references: [id], on_delete: set_null}
      - {name: createdAt, type: timestamp, default: now()}
      - {name: updatedAt, type: timestamp, updated_at: true}
    indexes:
      - [title]
"""


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Per-test scratch directory."""
    return tmp_path


@pytest.fixture
def book_registry() -> SchemaRegistry:
    """The single-model Book schema."""
    registry = SchemaRegistry()
    registry.define_model(
        "Book",
        [
            Field("id", ScalarType.INTEGER, attributes=(PrimaryKey(), Default(AUTOINCREMENT))),
            Field("title", ScalarType.TEXT),
            Field("publishedYear", ScalarType.INTEGER),
            Field("pages", ScalarType.INTEGER),
        ],
    )
    registry.freeze()
    return registry


@pytest.fixture
def book_schema(book_registry: SchemaRegistry) -> PhysicalSchema:
    return resolve_schema(book_registry)


@pytest.fixture
def library_registry() -> SchemaRegistry:
    """Author / Book with a relation, defaults, a mapped column and an index."""
    return load_schema(LIBRARY_DOCUMENT)


@pytest.fixture
def library_schema(library_registry: SchemaRegistry) -> PhysicalSchema:
    return resolve_schema(library_registry)


@pytest.fixture
def store(temp_dir: Path) -> Generator[Store, None, None]:
    """Empty SQLite store on disk."""
    s = Store(f"sqlite:///{temp_dir / 'test.db'}")
    yield s
    s.dispose()


def create_tables(store: Store, schema: PhysicalSchema) -> None:
    """Bring an empty store up to ``schema``."""
    apply_plan(store, plan(None, schema), None)


@pytest.fixture
def book_ctx(store: Store, book_schema: PhysicalSchema) -> ExecutionContext:
    create_tables(store, book_schema)
    return ExecutionContext(book_schema, store)


@pytest.fixture
def library_ctx(store: Store, library_schema: PhysicalSchema) -> ExecutionContext:
    create_tables(store, library_schema)
    return ExecutionContext(library_schema, store)

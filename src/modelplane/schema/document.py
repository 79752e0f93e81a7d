"""Schema document loading.

A schema document is the parsed form of a declarative schema: YAML text or
an equivalent mapping. It is validated with pydantic, then registered model
by model into a fresh SchemaRegistry which is frozen before it is returned.

Document layout::

    models:
      - name: Author
        fields:
          - {name: id, type: integer, id: true, default: autoincrement()}
          - {name: email, type: text, unique: true}
      - name: Book
        table: books
        fields:
          - {name: id, type: integer, id: true, default: autoincrement()}
          - {name: title, type: text}
          - {name: authorId, type: integer, map: author_id}
          - name: author
            relation: {target: Author, fields: [authorId], references: [id]}
          - {name: updatedAt, type: timestamp, updated_at: true}
        indexes:
          - [title]
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from modelplane.core.errors import SchemaDocumentError
from modelplane.schema import types as t
from modelplane.schema.registry import SchemaRegistry

_FUNCTIONS = {
    "autoincrement()": t.DefaultFunction.AUTOINCREMENT,
    "now()": t.DefaultFunction.NOW,
    "uuid()": t.DefaultFunction.UUID,
}


class RelationDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target: str
    fields: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    cardinality: t.Cardinality = t.Cardinality.ONE_TO_MANY
    on_delete: t.ReferentialAction = t.ReferentialAction.RESTRICT
    on_update: t.ReferentialAction = t.ReferentialAction.CASCADE


class FieldDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    type: t.ScalarType | None = None
    nullable: bool = False
    id: bool = False
    unique: bool = False
    updated_at: bool = False
    default: Any = None
    map: str | None = None
    relation: RelationDocument | None = None

    def to_field(self) -> t.Field:
        attributes: list[t.Attribute] = []
        if self.id:
            attributes.append(t.PrimaryKey())
        if self.unique:
            attributes.append(t.Unique())
        if self.updated_at:
            attributes.append(t.UpdatedAt())
        if "default" in self.model_fields_set:
            value = self.default
            if isinstance(value, str) and value in _FUNCTIONS:
                value = _FUNCTIONS[value]
            attributes.append(t.Default(value))
        if self.map is not None:
            attributes.append(t.MapTo(self.map))

        relation = None
        if self.relation is not None:
            r = self.relation
            relation = t.Relation(
                target=r.target,
                fields=tuple(r.fields),
                references=tuple(r.references),
                cardinality=r.cardinality,
                on_delete=r.on_delete,
                on_update=r.on_update,
            )
        return t.Field(
            name=self.name,
            type=self.type,
            nullable=self.nullable,
            attributes=tuple(attributes),
            relation=relation,
        )


class ModelDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    table: str | None = None
    fields: list[FieldDocument]
    id: list[str] | None = None
    unique: list[list[str]] = Field(default_factory=list)
    indexes: list[list[str]] = Field(default_factory=list)

    def constraints(self) -> list[t.ModelConstraint]:
        result: list[t.ModelConstraint] = []
        if self.id is not None:
            result.append(t.CompositeId(tuple(self.id)))
        result.extend(t.CompositeUnique(tuple(fields)) for fields in self.unique)
        result.extend(t.Index(tuple(fields)) for fields in self.indexes)
        return result


class SchemaDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    models: list[ModelDocument] = Field(default_factory=list)


def load_schema(source: str | Path | dict[str, Any]) -> SchemaRegistry:
    """Load a schema document into a frozen registry.

    ``source`` is a mapping, a path to a YAML file, or YAML text.

    Raises:
        SchemaDocumentError: The document is not valid YAML or has the wrong shape.
        SchemaError: Any registration error (duplicate models, conflicting attributes).
    """
    data = _read(source)
    try:
        document = SchemaDocument.model_validate(data)
    except ValidationError as e:
        err = e.errors()[0]
        location = ".".join(str(loc) for loc in err["loc"])
        raise SchemaDocumentError.invalid(location, err["msg"]) from e

    registry = SchemaRegistry()
    for model in document.models:
        registry.define_model(
            model.name,
            [f.to_field() for f in model.fields],
            model.constraints(),
            table_name=model.table,
        )
    registry.freeze()
    return registry


def _read(source: str | Path | dict[str, Any]) -> Any:
    if isinstance(source, dict):
        return source
    if isinstance(source, Path):
        text = source.read_text()
        origin = str(source)
    else:
        text = source
        origin = "<string>"
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SchemaDocumentError.invalid(origin, str(e)) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SchemaDocumentError.invalid(origin, "top-level value must be a mapping")
    return data

"""Schema registry: the set of models loaded for one application run.

Models are registered once at startup and the registry is then frozen.
Registration checks structural consistency only (names, attribute
combinations); type-dependent rules are applied by the resolver.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

import structlog

from modelplane.core.errors import (
    DuplicateFieldError,
    DuplicateModelError,
    InvalidAttributeCombination,
    SchemaLockedError,
    UnknownModelError,
)
from modelplane.schema.types import (
    Attribute,
    CompositeId,
    Default,
    Field,
    MapTo,
    Model,
    ModelConstraint,
    PrimaryKey,
    UpdatedAt,
)

logger = structlog.get_logger()


class SchemaRegistry:
    """Ordered collection of models, in declaration order."""

    def __init__(self) -> None:
        self._models: dict[str, Model] = {}
        self._frozen = False

    def define_model(
        self,
        name: str,
        fields: Iterable[Field],
        constraints: Iterable[ModelConstraint] = (),
        *,
        table_name: str | None = None,
    ) -> Model:
        """Validate and register a model.

        Raises:
            SchemaLockedError: The registry was frozen.
            DuplicateModelError: ``name`` is already registered.
            DuplicateFieldError: A field name repeats within the model.
            InvalidAttributeCombination: Attributes conflict.
        """
        if self._frozen:
            raise SchemaLockedError.for_model(name)
        if name in self._models:
            raise DuplicateModelError.for_model(name)

        model = Model(
            name=name,
            fields=tuple(fields),
            constraints=tuple(constraints),
            table_name=table_name,
        )
        _check_model(model)
        self._models[name] = model
        logger.debug("model_defined", model=name, fields=len(model.fields))
        return model

    def add(self, model: Model) -> Model:
        """Register an already-built Model."""
        return self.define_model(
            model.name, model.fields, model.constraints, table_name=model.table_name
        )

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Model:
        try:
            return self._models[name]
        except KeyError:
            raise UnknownModelError.for_model(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __iter__(self) -> Iterator[Model]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    @property
    def names(self) -> list[str]:
        return list(self._models)


def _check_model(model: Model) -> None:
    seen: set[str] = set()
    for f in model.fields:
        if f.name in seen:
            raise DuplicateFieldError.for_field(model.name, f.name)
        seen.add(f.name)
        _check_field(model, f)

    id_markers = [f.name for f in model.fields if f.is_id]
    composite_ids = [c for c in model.constraints if isinstance(c, CompositeId)]

    if len(composite_ids) > 1:
        raise InvalidAttributeCombination.conflict(model.name, "more than one composite id")
    if composite_ids and id_markers:
        raise InvalidAttributeCombination.conflict(
            model.name,
            f"composite id declared alongside field-level primary key(s): {', '.join(id_markers)}",
        )
    if len(id_markers) > 1:
        raise InvalidAttributeCombination.conflict(
            model.name,
            f"multiple primary-key fields ({', '.join(id_markers)}) without a composite id",
        )
    if not composite_ids and not id_markers:
        raise InvalidAttributeCombination.conflict(model.name, "no primary key declared")
    if composite_ids and len(composite_ids[0].fields) < 2:
        raise InvalidAttributeCombination.conflict(
            model.name, "composite id must name at least two fields"
        )

    physical: dict[str, str] = {}
    for f in model.scalar_fields:
        column = f.column_name
        if column in physical:
            raise InvalidAttributeCombination.conflict(
                model.name,
                f"fields '{physical[column]}' and '{f.name}' map to the same column '{column}'",
                field=f.name,
            )
        physical[column] = f.name


def _check_field(model: Model, f: Field) -> None:
    kinds: set[type[Attribute]] = set()
    for attr in f.attributes:
        kind = type(attr)
        if kind in kinds:
            raise InvalidAttributeCombination.conflict(
                model.name, f"attribute {kind.__name__} given twice", field=f.name
            )
        kinds.add(kind)

    if f.is_relation:
        if f.type is not None:
            raise InvalidAttributeCombination.conflict(
                model.name, "relation field cannot declare a scalar type", field=f.name
            )
        if f.attributes:
            raise InvalidAttributeCombination.conflict(
                model.name, "relation field cannot carry column attributes", field=f.name
            )
        return

    if f.type is None:
        raise InvalidAttributeCombination.conflict(
            model.name, "scalar field needs a type", field=f.name
        )
    if PrimaryKey in kinds and f.nullable:
        raise InvalidAttributeCombination.conflict(
            model.name, "primary-key field cannot be nullable", field=f.name
        )
    if PrimaryKey in kinds and UpdatedAt in kinds:
        raise InvalidAttributeCombination.conflict(
            model.name, "primary-key field cannot be auto-updated", field=f.name
        )
    mapped = f.attribute(MapTo)
    if mapped is not None and not mapped.name:
        raise InvalidAttributeCombination.conflict(
            model.name, "column name override is empty", field=f.name
        )
    default = f.attribute(Default)
    if default is not None and default.value is None and not f.nullable:
        raise InvalidAttributeCombination.conflict(
            model.name, "null default on a non-nullable field", field=f.name
        )

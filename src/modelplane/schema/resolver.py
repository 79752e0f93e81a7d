"""Attribute/constraint resolution: declarative models -> PhysicalSchema.

Resolution is a pure function of the registry contents. Physical names
follow fixed conventions so two resolutions of the same schema are equal:

- primary key:   ``<table>_pkey``
- unique index:  ``<table>_<col>[_<col>...]_key``
- plain index:   ``<table>_<col>[_<col>...]_idx``
- foreign key:   ``<table>_<col>[_<col>...]_fkey``

"Current time" and UUID defaults are recorded as expressions here and only
evaluated at write time by the executor.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from modelplane.core.errors import (
    FieldTypeMismatchError,
    InvalidAttributeCombination,
    InvalidRelationError,
    UnknownFieldError,
    UnknownModelError,
)
from modelplane.schema.physical import (
    ConstraintKind,
    PhysicalColumn,
    PhysicalConstraint,
    PhysicalSchema,
    PhysicalTable,
)
from modelplane.schema.registry import SchemaRegistry
from modelplane.schema.types import (
    INTEGER_TYPES,
    Cardinality,
    CompositeUnique,
    Default,
    DefaultFunction,
    Field,
    Index,
    Model,
    ReferentialAction,
    ScalarType,
)
from modelplane.schema.values import coerce

logger = structlog.get_logger()


def resolve_schema(registry: SchemaRegistry) -> PhysicalSchema:
    """Resolve every registered model, then the implicit join tables."""
    tables = [resolve_model(model, registry) for model in registry]
    tables.extend(_join_tables(registry))

    seen: dict[str, str] = {}
    for table in tables:
        if table.name in seen:
            raise InvalidAttributeCombination.conflict(
                table.model, f"table name '{table.name}' is already used by '{seen[table.name]}'"
            )
        seen[table.name] = table.model

    schema = PhysicalSchema(tables=tuple(tables))
    logger.debug("schema_resolved", tables=len(tables), fingerprint=schema.fingerprint()[:12])
    return schema


def resolve_model(model: Model, registry: SchemaRegistry) -> PhysicalTable:
    """Resolve one model into its PhysicalSchema entry.

    Raises:
        FieldTypeMismatchError: An attribute does not fit the field's type.
        UnknownFieldError: A constraint or relation names a missing field.
        UnknownModelError: A relation targets an unregistered model.
        InvalidRelationError: A relation's keys are not usable.
        InvalidAttributeCombination: Constraint names collide.
    """
    table = model.physical_name
    id_fields = model.id_fields
    for name in id_fields:
        _scalar_field(model, name, "primary key")

    columns = tuple(_resolve_column(model, f, f.name in id_fields) for f in model.scalar_fields)
    by_field = {c.field: c for c in columns}

    def cols(names: Sequence[str]) -> tuple[str, ...]:
        return tuple(by_field[n].name for n in names)

    constraints: list[PhysicalConstraint] = []
    pk_columns = cols(id_fields)
    for name in id_fields:
        if by_field[name].nullable:
            raise InvalidAttributeCombination.conflict(
                model.name, "primary-key field cannot be nullable", field=name
            )
    constraints.append(
        PhysicalConstraint(ConstraintKind.PRIMARY_KEY, f"{table}_pkey", pk_columns)
    )

    for f in model.scalar_fields:
        if f.is_unique:
            column = by_field[f.name].name
            constraints.append(
                PhysicalConstraint(ConstraintKind.UNIQUE, f"{table}_{column}_key", (column,))
            )

    for constraint in model.constraints:
        if isinstance(constraint, CompositeUnique):
            for name in constraint.fields:
                _scalar_field(model, name, "unique constraint")
            columns_ = cols(constraint.fields)
            constraints.append(
                PhysicalConstraint(
                    ConstraintKind.UNIQUE,
                    constraint.name or f"{table}_{'_'.join(columns_)}_key",
                    columns_,
                )
            )
        elif isinstance(constraint, Index):
            for name in constraint.fields:
                _scalar_field(model, name, "index")
            columns_ = cols(constraint.fields)
            constraints.append(
                PhysicalConstraint(
                    ConstraintKind.INDEX,
                    constraint.name or f"{table}_{'_'.join(columns_)}_idx",
                    columns_,
                )
            )

    for f in model.relation_fields:
        constraints.extend(_resolve_relation(model, f, registry, constraints))

    names: set[str] = set()
    for c in constraints:
        if c.name in names:
            raise InvalidAttributeCombination.conflict(
                model.name, f"constraint name '{c.name}' is used twice"
            )
        names.add(c.name)

    return PhysicalTable(
        model=model.name,
        name=table,
        columns=columns,
        constraints=tuple(constraints),
    )


def _scalar_field(model: Model, name: str, context: str) -> Field:
    f = model.field(name)
    if f is None or f.is_relation:
        raise UnknownFieldError.in_constraint(model.name, name, context)
    return f


def _resolve_column(model: Model, f: Field, primary_key: bool) -> PhysicalColumn:
    assert f.type is not None
    scalar_type = f.type
    default = f.default
    autoincrement = False

    def mismatch(reason: str) -> FieldTypeMismatchError:
        return FieldTypeMismatchError.for_field(model.name, f.name, scalar_type.value, reason)

    if f.is_updated_at and scalar_type is not ScalarType.TIMESTAMP:
        raise mismatch("auto-update-on-write requires a timestamp field")

    if default is not None:
        function = default.function
        if function is DefaultFunction.AUTOINCREMENT:
            if scalar_type not in INTEGER_TYPES:
                raise mismatch("autoincrement() requires an integer or bigint field")
            if not primary_key or len(model.id_fields) != 1:
                raise InvalidAttributeCombination.conflict(
                    model.name,
                    "autoincrement() is only valid on a single-field primary key",
                    field=f.name,
                )
            autoincrement = True
            default = None
        elif function is DefaultFunction.NOW:
            if scalar_type is not ScalarType.TIMESTAMP:
                raise mismatch("now() requires a timestamp field")
        elif function is DefaultFunction.UUID:
            if scalar_type not in (ScalarType.TEXT, ScalarType.UUID):
                raise mismatch("uuid() requires a text or uuid field")
        elif default.value is not None:
            try:
                default = Default(coerce(scalar_type, default.value))
            except ValueError as e:
                raise mismatch(f"default {default.value!r} does not fit: {e}") from e

    return PhysicalColumn(
        field=f.name,
        name=f.column_name,
        type=scalar_type,
        nullable=f.nullable,
        primary_key=primary_key,
        autoincrement=autoincrement,
        updated_at=f.is_updated_at,
        default=default,
    )


def _resolve_relation(
    model: Model,
    f: Field,
    registry: SchemaRegistry,
    existing: list[PhysicalConstraint],
) -> list[PhysicalConstraint]:
    relation = f.relation
    assert relation is not None

    if relation.target not in registry:
        raise UnknownModelError.for_model(relation.target)
    target = registry.get(relation.target)

    if relation.cardinality is Cardinality.MANY_TO_MANY:
        if relation.fields or relation.references:
            raise InvalidRelationError.for_field(
                model.name, f.name, "many-to-many relations use an implicit join table"
            )
        return []

    if not relation.fields:
        raise InvalidRelationError.for_field(model.name, f.name, "no foreign-key fields given")
    if len(relation.fields) != len(relation.references):
        raise InvalidRelationError.for_field(
            model.name, f.name, "fields and references differ in length"
        )

    local = [_scalar_field(model, name, f"relation '{f.name}'") for name in relation.fields]
    remote = [
        _scalar_field(target, name, f"relation '{model.name}.{f.name}'")
        for name in relation.references
    ]

    for lf, rf in zip(local, remote, strict=True):
        if lf.type is not rf.type:
            assert lf.type is not None and rf.type is not None
            raise FieldTypeMismatchError.for_field(
                model.name,
                lf.name,
                lf.type.value,
                f"references {target.name}.{rf.name} of type {rf.type.value}",
            )

    if not _is_unique_key(target, relation.references):
        raise InvalidRelationError.for_field(
            model.name,
            f.name,
            f"referenced fields ({', '.join(relation.references)}) are not unique on {target.name}",
        )

    if relation.on_delete is ReferentialAction.SET_NULL or (
        relation.on_update is ReferentialAction.SET_NULL
    ):
        not_null = [lf.name for lf in local if not lf.nullable]
        if not_null:
            raise InvalidRelationError.for_field(
                model.name, f.name, f"set_null needs nullable fields: {', '.join(not_null)}"
            )

    table = model.physical_name
    columns = tuple(lf.column_name for lf in local)
    joined = "_".join(columns)
    result = [
        PhysicalConstraint(
            ConstraintKind.FOREIGN_KEY,
            f"{table}_{joined}_fkey",
            columns,
            ref_table=target.physical_name,
            ref_columns=tuple(rf.column_name for rf in remote),
            on_delete=relation.on_delete.value,
            on_update=relation.on_update.value,
        )
    ]

    if relation.cardinality is Cardinality.ONE_TO_ONE:
        already_unique = any(
            c.kind in (ConstraintKind.UNIQUE, ConstraintKind.PRIMARY_KEY)
            and set(c.columns) == set(columns)
            for c in existing
        )
        if not already_unique:
            result.append(
                PhysicalConstraint(ConstraintKind.UNIQUE, f"{table}_{joined}_key", columns)
            )
    return result


def _is_unique_key(model: Model, names: Sequence[str]) -> bool:
    wanted = set(names)
    if wanted == set(model.id_fields):
        return True
    if len(names) == 1:
        f = model.field(names[0])
        if f is not None and f.is_unique:
            return True
    return any(
        isinstance(c, CompositeUnique) and set(c.fields) == wanted for c in model.constraints
    )


def _join_tables(registry: SchemaRegistry) -> list[PhysicalTable]:
    tables: list[PhysicalTable] = []
    seen: set[str] = set()
    for model in registry:
        for f in model.relation_fields:
            relation = f.relation
            assert relation is not None
            if relation.cardinality is not Cardinality.MANY_TO_MANY:
                continue
            first, second = sorted((model.name, relation.target))
            name = f"_{first}To{second}"
            if name in seen:
                continue
            seen.add(name)
            tables.append(_join_table(name, registry.get(first), registry.get(second), f.name))
    return tables


def _join_table(name: str, first: Model, second: Model, via: str) -> PhysicalTable:
    columns = []
    constraints = [PhysicalConstraint(ConstraintKind.PRIMARY_KEY, f"{name}_AB_pkey", ("A", "B"))]
    for column, model in (("A", first), ("B", second)):
        if len(model.id_fields) != 1:
            raise InvalidRelationError.for_field(
                model.name, via, "many-to-many needs a single-field primary key on both sides"
            )
        key = model.field(model.id_fields[0])
        assert key is not None and key.type is not None
        columns.append(
            PhysicalColumn(field=column, name=column, type=key.type, primary_key=True)
        )
        constraints.append(
            PhysicalConstraint(
                ConstraintKind.FOREIGN_KEY,
                f"{name}_{column}_fkey",
                (column,),
                ref_table=model.physical_name,
                ref_columns=(key.column_name,),
                on_delete=ReferentialAction.CASCADE.value,
                on_update=ReferentialAction.CASCADE.value,
            )
        )
    constraints.insert(1, PhysicalConstraint(ConstraintKind.INDEX, f"{name}_B_index", ("B",)))
    return PhysicalTable(
        model=name,
        name=name,
        columns=tuple(columns),
        constraints=tuple(constraints),
        implicit=True,
    )

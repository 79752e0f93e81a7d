"""Migration planning: diff two PhysicalSchema snapshots into ordered steps.

Steps are ordered by rank first, then by table position, then by the
position of the column or constraint inside its table:

    0  drop foreign keys
    1  drop primary keys, unique indexes and indexes
    2  drop columns
    3  drop tables (tables referencing other dropped tables go first)
    4  create tables (referenced tables first, ties in declaration order)
    5  add and alter columns
    6  add primary keys, unique indexes and indexes
    7  add foreign keys

A new table carries its primary key and every foreign key whose target
already exists at that point in the plan. Foreign keys closing a cycle
between new tables become separate steps at rank 7.

Table and column matching is by physical name, so a rename plans as a drop
plus an add. A column whose type or nullability changes plans as a drop
plus an add of the column. Any other change to a kept column (literal
default, autoincrement, auto-update or logical name) plans as a
non-destructive alter_column step.

The planner is pure: it never touches a store. ``replay`` applies a step
sequence to a snapshot without a database.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, overload

from modelplane.schema.physical import (
    ConstraintKind,
    PhysicalColumn,
    PhysicalConstraint,
    PhysicalSchema,
    PhysicalTable,
)


class StepKind(str, Enum):
    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    ADD_COLUMN = "add_column"
    DROP_COLUMN = "drop_column"
    ADD_CONSTRAINT = "add_constraint"
    DROP_CONSTRAINT = "drop_constraint"
    ALTER_COLUMN = "alter_column"


RANK_DROP_FOREIGN_KEY = 0
RANK_DROP_INDEX = 1
RANK_DROP_COLUMN = 2
RANK_DROP_TABLE = 3
RANK_CREATE_TABLE = 4
RANK_ADD_COLUMN = 5
RANK_ADD_INDEX = 6
RANK_ADD_FOREIGN_KEY = 7


@dataclass(frozen=True)
class MigrationStep:
    """One atomic schema change.

    ``definition`` is the table being created (CREATE_TABLE) or the table
    as it was before removal (DROP_TABLE).
    """

    kind: StepKind
    table: str
    rank: int
    column: PhysicalColumn | None = None
    constraint: PhysicalConstraint | None = None
    definition: PhysicalTable | None = None
    destructive: bool = False
    requires_backfill: bool = False

    def describe(self) -> str:
        if self.kind is StepKind.CREATE_TABLE:
            return f"create table {self.table}"
        if self.kind is StepKind.DROP_TABLE:
            return f"drop table {self.table}"
        if self.kind is StepKind.ADD_COLUMN:
            assert self.column is not None
            return f"add column {self.table}.{self.column.name}"
        if self.kind is StepKind.DROP_COLUMN:
            assert self.column is not None
            return f"drop column {self.table}.{self.column.name}"
        if self.kind is StepKind.ALTER_COLUMN:
            assert self.column is not None
            return f"alter column {self.table}.{self.column.name}"
        assert self.constraint is not None
        verb = "add" if self.kind is StepKind.ADD_CONSTRAINT else "drop"
        c = self.constraint
        return f"{verb} {c.kind.value} {c.name} on {self.table}({', '.join(c.columns)})"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "table": self.table, "rank": self.rank}
        if self.column is not None:
            data["column"] = self.column.to_dict()
        if self.constraint is not None:
            data["constraint"] = self.constraint.to_dict()
        if self.definition is not None:
            data["definition"] = self.definition.to_dict()
        if self.destructive:
            data["destructive"] = True
        if self.requires_backfill:
            data["requires_backfill"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationStep:
        return cls(
            kind=StepKind(data["kind"]),
            table=data["table"],
            rank=int(data["rank"]),
            column=PhysicalColumn.from_dict(data["column"]) if "column" in data else None,
            constraint=(
                PhysicalConstraint.from_dict(data["constraint"]) if "constraint" in data else None
            ),
            definition=(
                PhysicalTable.from_dict(data["definition"]) if "definition" in data else None
            ),
            destructive=bool(data.get("destructive", False)),
            requires_backfill=bool(data.get("requires_backfill", False)),
        )


@dataclass(frozen=True)
class MigrationPlan(Sequence[MigrationStep]):
    """Totally ordered step sequence between two snapshots."""

    steps: tuple[MigrationStep, ...]
    previous_fingerprint: str | None
    next_fingerprint: str

    @overload
    def __getitem__(self, index: int) -> MigrationStep: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[MigrationStep]: ...

    def __getitem__(self, index: int | slice) -> MigrationStep | Sequence[MigrationStep]:
        return self.steps[index]

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[MigrationStep]:
        return iter(self.steps)

    @property
    def destructive_steps(self) -> list[MigrationStep]:
        return [s for s in self.steps if s.destructive]

    @property
    def backfill_steps(self) -> list[MigrationStep]:
        return [s for s in self.steps if s.requires_backfill]

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous_fingerprint": self.previous_fingerprint,
            "next_fingerprint": self.next_fingerprint,
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationPlan:
        return cls(
            steps=tuple(MigrationStep.from_dict(s) for s in data["steps"]),
            previous_fingerprint=data.get("previous_fingerprint"),
            next_fingerprint=data["next_fingerprint"],
        )

    def to_json(self) -> str:
        """Canonical form; identical snapshots always give identical bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, indent=2)


_SortKey = tuple[int, int, int]


def plan(previous: PhysicalSchema | None, next: PhysicalSchema) -> MigrationPlan:  # noqa: A002
    """Compute the ordered steps turning ``previous`` into ``next``.

    ``previous`` is None for an empty store.
    """
    prev = previous or PhysicalSchema()
    prev_tables = {t.name: t for t in prev.tables}
    next_tables = {t.name: t for t in next.tables}
    next_pos = {name: i for i, name in enumerate(next_tables)}
    prev_pos = {name: len(next_tables) + i for i, name in enumerate(prev_tables)}

    keyed: list[tuple[_SortKey, MigrationStep]] = []

    # Removed tables
    dropped = [name for name in prev_tables if name not in next_tables]
    for position, name in enumerate(reversed(_dependency_order(dropped, prev_tables))):
        keyed.append(
            (
                (RANK_DROP_TABLE, position, 0),
                MigrationStep(
                    kind=StepKind.DROP_TABLE,
                    table=name,
                    rank=RANK_DROP_TABLE,
                    definition=prev_tables[name],
                    destructive=True,
                ),
            )
        )

    # New tables
    created = [name for name in next_tables if name not in prev_tables]
    order, deferred = _creation_order(created, next_tables)
    for position, name in enumerate(order):
        table = next_tables[name]
        inline = [
            c
            for c in table.constraints
            if c.kind is ConstraintKind.PRIMARY_KEY
            or (c.kind is ConstraintKind.FOREIGN_KEY and (name, c.name) not in deferred)
        ]
        keyed.append(
            (
                (RANK_CREATE_TABLE, position, 0),
                MigrationStep(
                    kind=StepKind.CREATE_TABLE,
                    table=name,
                    rank=RANK_CREATE_TABLE,
                    definition=dataclasses.replace(table, constraints=tuple(inline)),
                ),
            )
        )
        for i, c in enumerate(table.constraints):
            if c.kind in (ConstraintKind.UNIQUE, ConstraintKind.INDEX):
                keyed.append(_constraint_step(StepKind.ADD_CONSTRAINT, name, c, next_pos[name], i))
            elif (name, c.name) in deferred:
                keyed.append(_constraint_step(StepKind.ADD_CONSTRAINT, name, c, next_pos[name], i))

    # Tables present on both sides
    for name in next_tables:
        if name in prev_tables:
            keyed.extend(
                _diff_table(prev_tables[name], next_tables[name], next_pos[name], prev_pos[name])
            )

    keyed.sort(key=lambda item: item[0])
    return MigrationPlan(
        steps=tuple(step for _, step in keyed),
        previous_fingerprint=previous.fingerprint() if previous is not None else None,
        next_fingerprint=next.fingerprint(),
    )


def _diff_table(
    old: PhysicalTable, new: PhysicalTable, position: int, old_position: int
) -> list[tuple[_SortKey, MigrationStep]]:
    result: list[tuple[_SortKey, MigrationStep]] = []
    old_columns = {c.name: (i, c) for i, c in enumerate(old.columns)}
    new_columns = {c.name: (i, c) for i, c in enumerate(new.columns)}

    removed: set[str] = set()
    for name, (i, column) in old_columns.items():
        if name not in new_columns or _redefined(column, new_columns[name][1]):
            removed.add(name)
            result.append(
                (
                    (RANK_DROP_COLUMN, old_position, i),
                    MigrationStep(
                        kind=StepKind.DROP_COLUMN,
                        table=old.name,
                        rank=RANK_DROP_COLUMN,
                        column=column,
                        destructive=True,
                    ),
                )
            )
    for name, (i, column) in new_columns.items():
        if name not in old_columns or name in removed:
            kind = StepKind.ADD_COLUMN
        elif old_columns[name][1] != column:
            kind = StepKind.ALTER_COLUMN
        else:
            continue
        result.append(
            (
                (RANK_ADD_COLUMN, position, i),
                MigrationStep(
                    kind=kind,
                    table=new.name,
                    rank=RANK_ADD_COLUMN,
                    column=column,
                    requires_backfill=kind is StepKind.ADD_COLUMN and _needs_backfill(column),
                ),
            )
        )

    old_constraints = {c.name: (i, c) for i, c in enumerate(old.constraints)}
    new_constraints = {c.name: (i, c) for i, c in enumerate(new.constraints)}
    for name, (i, c) in old_constraints.items():
        kept = new_constraints.get(name)
        if kept is None or kept[1] != c or removed.intersection(c.columns):
            result.append(_constraint_step(StepKind.DROP_CONSTRAINT, old.name, c, old_position, i))
    for name, (i, c) in new_constraints.items():
        kept = old_constraints.get(name)
        if kept is None or kept[1] != c or removed.intersection(c.columns):
            result.append(_constraint_step(StepKind.ADD_CONSTRAINT, new.name, c, position, i))
    return result


def _redefined(old: PhysicalColumn, new: PhysicalColumn) -> bool:
    return (old.type, old.nullable) != (new.type, new.nullable)


def _needs_backfill(column: PhysicalColumn) -> bool:
    return not column.nullable and column.default is None and not column.autoincrement


def _constraint_step(
    kind: StepKind, table: str, constraint: PhysicalConstraint, position: int, index: int
) -> tuple[_SortKey, MigrationStep]:
    is_fk = constraint.kind is ConstraintKind.FOREIGN_KEY
    if kind is StepKind.ADD_CONSTRAINT:
        rank = RANK_ADD_FOREIGN_KEY if is_fk else RANK_ADD_INDEX
    else:
        rank = RANK_DROP_FOREIGN_KEY if is_fk else RANK_DROP_INDEX
    return (
        (rank, position, index),
        MigrationStep(kind=kind, table=table, rank=rank, constraint=constraint),
    )


def _references(table: PhysicalTable) -> list[tuple[str, str]]:
    return [
        (c.name, c.ref_table)
        for c in table.constraints
        if c.kind is ConstraintKind.FOREIGN_KEY and c.ref_table and c.ref_table != table.name
    ]


def _dependency_order(names: list[str], tables: dict[str, PhysicalTable]) -> list[str]:
    """Referenced tables before referencing ones, ties in the given order."""
    order, _ = _creation_order(names, tables)
    return order


def _creation_order(
    names: list[str], tables: dict[str, PhysicalTable]
) -> tuple[list[str], set[tuple[str, str]]]:
    """Stable topological order over ``names``.

    Returns the order and the (table, constraint) pairs of foreign keys that
    had to be deferred to break a cycle.
    """
    pending = list(names)
    members = set(names)
    placed: set[str] = set()
    order: list[str] = []
    deferred: set[tuple[str, str]] = set()

    while pending:
        for name in pending:
            deps = {ref for _, ref in _references(tables[name]) if ref in members}
            if deps <= placed:
                break
        else:
            # Cycle: place the first pending table, deferring its open references
            name = pending[0]
            for constraint_name, ref in _references(tables[name]):
                if ref in members and ref not in placed:
                    deferred.add((name, constraint_name))
        pending.remove(name)
        placed.add(name)
        order.append(name)
    return order, deferred


def replay(previous: PhysicalSchema | None, steps: Sequence[MigrationStep]) -> PhysicalSchema:
    """Apply ``steps`` to ``previous`` in memory and return the resulting snapshot."""
    state: dict[str, PhysicalTable] = {t.name: t for t in (previous or PhysicalSchema()).tables}
    for step in steps:
        state = apply_step(state, step)
    return PhysicalSchema(tables=tuple(state.values()))


def apply_step(state: dict[str, PhysicalTable], step: MigrationStep) -> dict[str, PhysicalTable]:
    """Return a copy of ``state`` with one step applied."""
    result = dict(state)
    if step.kind is StepKind.CREATE_TABLE:
        assert step.definition is not None
        result[step.table] = step.definition
        return result
    if step.kind is StepKind.DROP_TABLE:
        del result[step.table]
        return result

    table = result[step.table]
    if step.kind is StepKind.ADD_COLUMN:
        assert step.column is not None
        table = dataclasses.replace(table, columns=(*table.columns, step.column))
    elif step.kind is StepKind.DROP_COLUMN:
        assert step.column is not None
        gone = step.column.name
        table = dataclasses.replace(
            table, columns=tuple(c for c in table.columns if c.name != gone)
        )
    elif step.kind is StepKind.ALTER_COLUMN:
        altered = step.column
        assert altered is not None
        table = dataclasses.replace(
            table,
            columns=tuple(altered if c.name == altered.name else c for c in table.columns),
        )
    elif step.kind is StepKind.ADD_CONSTRAINT:
        assert step.constraint is not None
        table = dataclasses.replace(table, constraints=(*table.constraints, step.constraint))
    elif step.kind is StepKind.DROP_CONSTRAINT:
        assert step.constraint is not None
        gone = step.constraint.name
        table = dataclasses.replace(
            table, constraints=tuple(c for c in table.constraints if c.name != gone)
        )
    result[step.table] = table
    return result

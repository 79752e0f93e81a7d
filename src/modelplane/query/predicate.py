"""PredicateNode: the normalized, backend-independent filter tree.

Nodes are immutable. ``And(())`` is the universal-true predicate and
``Or(())`` the universal-false one.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Operator(str, Enum):
    """Comparison operators. Values are the keys accepted in filter mappings."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NOT_IN = "not_in"

    @classmethod
    def parse(cls, key: str) -> Operator | None:
        """Look up an operator by its key or one of the camelCase aliases."""
        try:
            return cls(key)
        except ValueError:
            return _ALIASES.get(key)

    @property
    def takes_list(self) -> bool:
        return self in (Operator.IN, Operator.NOT_IN)


_ALIASES = {
    "not": Operator.NOT_EQUALS,
    "notEquals": Operator.NOT_EQUALS,
    "startsWith": Operator.STARTS_WITH,
    "endsWith": Operator.ENDS_WITH,
    "notIn": Operator.NOT_IN,
}


@dataclass(frozen=True)
class Comparison:
    """``field <operator> value``. For IN / NOT_IN, ``value`` is a tuple."""

    field: str
    operator: Operator
    value: Any


@dataclass(frozen=True)
class And:
    children: tuple[PredicateNode, ...] = ()


@dataclass(frozen=True)
class Or:
    children: tuple[PredicateNode, ...] = ()


@dataclass(frozen=True)
class Not:
    child: PredicateNode


PredicateNode = Comparison | And | Or | Not

TRUE = And(())
FALSE = Or(())


def is_true(node: PredicateNode) -> bool:
    return isinstance(node, And) and not node.children


def is_false(node: PredicateNode) -> bool:
    return isinstance(node, Or) and not node.children


def comparisons(node: PredicateNode) -> Iterator[Comparison]:
    """Every Comparison leaf, depth first."""
    if isinstance(node, Comparison):
        yield node
    elif isinstance(node, Not):
        yield from comparisons(node.child)
    else:
        for child in node.children:
            yield from comparisons(child)


def eq(field: str, value: Any) -> Comparison:
    return Comparison(field, Operator.EQUALS, value)


def ne(field: str, value: Any) -> Comparison:
    return Comparison(field, Operator.NOT_EQUALS, value)


def lt(field: str, value: Any) -> Comparison:
    return Comparison(field, Operator.LT, value)


def lte(field: str, value: Any) -> Comparison:
    return Comparison(field, Operator.LTE, value)


def gt(field: str, value: Any) -> Comparison:
    return Comparison(field, Operator.GT, value)


def gte(field: str, value: Any) -> Comparison:
    return Comparison(field, Operator.GTE, value)


def all_of(*children: PredicateNode) -> And:
    return And(tuple(children))


def any_of(*children: PredicateNode) -> Or:
    return Or(tuple(children))


def negate(child: PredicateNode) -> Not:
    return Not(child)

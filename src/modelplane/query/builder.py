"""Query Filter Builder: filter expressions -> validated PredicateNode.

A filter expression is either a PredicateNode tree or a mapping::

    {
        "publishedYear": {"gt": 2000},
        "OR": [{"title": {"contains": "It"}}, {"pages": 320}],
        "NOT": {"title": None},
    }

Keys at one level are ANDed. ``AND`` / ``OR`` take a mapping or a list of
mappings, ``NOT`` a mapping (or list, negating their conjunction). A bare
value is shorthand for ``equals``.

Building is pure: no I/O, values are only checked and coerced against the
field's type.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from modelplane.core.errors import (
    FieldNotFoundError,
    InvalidFilterError,
    OperatorTypeMismatchError,
    UnknownOperatorError,
)
from modelplane.query.predicate import (
    TRUE,
    And,
    Comparison,
    Not,
    Operator,
    Or,
    PredicateNode,
)
from modelplane.schema.physical import PhysicalColumn, PhysicalTable
from modelplane.schema.types import NUMERIC_TYPES, ScalarType
from modelplane.schema.values import coerce

FilterExpression = PredicateNode | Mapping[str, Any] | None

_ORDERED = frozenset(
    {
        Operator.EQUALS,
        Operator.NOT_EQUALS,
        Operator.LT,
        Operator.LTE,
        Operator.GT,
        Operator.GTE,
        Operator.IN,
        Operator.NOT_IN,
    }
)
_EQUALITY = frozenset({Operator.EQUALS, Operator.NOT_EQUALS})
_TEXT_ONLY = frozenset({Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH})

_ALLOWED: dict[ScalarType, frozenset[Operator]] = {
    ScalarType.TEXT: frozenset(Operator),
    ScalarType.TIMESTAMP: _ORDERED,
    ScalarType.UUID: _EQUALITY | {Operator.IN, Operator.NOT_IN},
    ScalarType.BOOLEAN: _EQUALITY,
    ScalarType.BYTES: _EQUALITY,
    ScalarType.JSON: _EQUALITY,
    **{t: _ORDERED for t in NUMERIC_TYPES},
}


def allowed_operators(scalar_type: ScalarType) -> frozenset[Operator]:
    return _ALLOWED[scalar_type]


def build(table: PhysicalTable, expression: FilterExpression) -> PredicateNode:
    """Validate ``expression`` against ``table`` and return a normalized tree.

    Raises:
        FieldNotFoundError: A comparison names a field the model lacks.
        OperatorTypeMismatchError: An operator or value does not fit the field's type.
        UnknownOperatorError: An operator key is not recognised.
        InvalidFilterError: The expression has the wrong shape.
    """
    if expression is None:
        return TRUE
    if isinstance(expression, Comparison | And | Or | Not):
        node = _validate_tree(table, expression)
    elif isinstance(expression, Mapping):
        node = _parse_mapping(table, expression)
    else:
        raise InvalidFilterError.malformed(
            f"expected a mapping or predicate, got {type(expression).__name__}"
        )
    return normalize(node)


def normalize(node: PredicateNode) -> PredicateNode:
    """Flatten nested same-kind groups, unwrap single children, drop double negation."""
    if isinstance(node, Comparison):
        return node
    if isinstance(node, Not):
        child = normalize(node.child)
        if isinstance(child, Not):
            return child.child
        return Not(child)

    kind = type(node)
    flat: list[PredicateNode] = []
    for child in node.children:
        child = normalize(child)
        if type(child) is kind:
            flat.extend(child.children)  # type: ignore[union-attr]
        else:
            flat.append(child)
    if len(flat) == 1:
        return flat[0]
    return kind(tuple(flat))


# =============================================================================
# Mapping form
# =============================================================================


def _parse_mapping(table: PhysicalTable, expression: Mapping[str, Any]) -> PredicateNode:
    children: list[PredicateNode] = []
    for key, value in expression.items():
        if not isinstance(key, str):
            raise InvalidFilterError.malformed(f"keys must be strings, got {key!r}")
        if key == "AND":
            children.append(And(tuple(_parse_group(table, key, value))))
        elif key == "OR":
            children.append(Or(tuple(_parse_group(table, key, value))))
        elif key == "NOT":
            children.append(Not(And(tuple(_parse_group(table, key, value)))))
        else:
            children.extend(_parse_field(table, key, value))
    return And(tuple(children))


def _parse_group(table: PhysicalTable, key: str, value: Any) -> list[PredicateNode]:
    if isinstance(value, Mapping):
        return [_parse_mapping(table, value)]
    if isinstance(value, list | tuple):
        nodes = []
        for item in value:
            if not isinstance(item, Mapping):
                raise InvalidFilterError.malformed(f"{key} entries must be mappings")
            nodes.append(_parse_mapping(table, item))
        return nodes
    raise InvalidFilterError.malformed(f"{key} takes a mapping or a list of mappings")


def _parse_field(table: PhysicalTable, field: str, value: Any) -> list[Comparison]:
    if not isinstance(value, Mapping):
        return [_check(table, Comparison(field, Operator.EQUALS, value))]
    result = []
    for key, operand in value.items():
        operator = Operator.parse(key)
        if operator is None:
            _column(table, field)
            raise UnknownOperatorError.for_operator(field, str(key))
        result.append(_check(table, Comparison(field, operator, operand)))
    return result


# =============================================================================
# Validation
# =============================================================================


def _validate_tree(table: PhysicalTable, node: PredicateNode) -> PredicateNode:
    if isinstance(node, Comparison):
        if not isinstance(node.operator, Operator):
            raise UnknownOperatorError.for_operator(node.field, str(node.operator))
        return _check(table, node)
    if isinstance(node, Not):
        return Not(_validate_tree(table, node.child))
    if isinstance(node, And | Or):
        return type(node)(tuple(_validate_tree(table, c) for c in node.children))
    raise InvalidFilterError.malformed(f"not a predicate node: {node!r}")


def _column(table: PhysicalTable, field: str) -> PhysicalColumn:
    column = table.column(field)
    if column is None:
        raise FieldNotFoundError.for_field(table.model, field)
    return column


def _check(table: PhysicalTable, comparison: Comparison) -> Comparison:
    """Return ``comparison`` with its value coerced to the field's type."""
    column = _column(table, comparison.field)
    operator = comparison.operator

    def mismatch(reason: str) -> OperatorTypeMismatchError:
        return OperatorTypeMismatchError.for_operator(
            table.model, comparison.field, column.type.value, operator.value, reason
        )

    if operator not in _ALLOWED[column.type]:
        if operator in _TEXT_ONLY:
            raise mismatch("only valid on text fields")
        raise mismatch(f"not supported for {column.type.value} fields")

    value = comparison.value
    if value is None:
        if operator not in _EQUALITY:
            raise mismatch("null can only be compared with equals / not_equals")
        if not column.nullable:
            raise mismatch("field is not nullable")
        return comparison
    if column.type is ScalarType.JSON:
        raise mismatch("json fields can only be compared with null")

    if operator.takes_list:
        if isinstance(value, str | bytes | Mapping) or not isinstance(value, Iterable):
            raise InvalidFilterError.malformed(
                f"{operator.value} on '{comparison.field}' takes a list"
            )
        items = tuple(_coerce(column, v, mismatch) for v in value)
        return Comparison(comparison.field, operator, items)
    return Comparison(comparison.field, operator, _coerce(column, value, mismatch))


def _coerce(
    column: PhysicalColumn, value: Any, mismatch: Callable[[str], OperatorTypeMismatchError]
) -> Any:
    if value is None:
        raise mismatch("null is not allowed in a value list")
    try:
        return coerce(column.type, value)
    except ValueError as e:
        raise mismatch(str(e)) from None

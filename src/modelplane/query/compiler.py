"""PredicateNode -> SQLAlchemy boolean expression.

Expects a tree already validated by ``build``; field names are mapped to
physical columns through the PhysicalTable. Comparisons follow SQL null
semantics: a NULL column never matches a comparison against a value.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Table, and_, false, not_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from modelplane.core.errors import InternalError
from modelplane.query.predicate import And, Comparison, Not, Operator, Or, PredicateNode
from modelplane.schema.physical import PhysicalTable


def compile_predicate(
    node: PredicateNode, table: PhysicalTable, sa_table: Table
) -> ColumnElement[bool]:
    if isinstance(node, Comparison):
        return _comparison(node, table, sa_table)
    if isinstance(node, Not):
        return not_(compile_predicate(node.child, table, sa_table))
    if isinstance(node, And):
        if not node.children:
            return true()
        return and_(*(compile_predicate(c, table, sa_table) for c in node.children))
    if isinstance(node, Or):
        if not node.children:
            return false()
        return or_(*(compile_predicate(c, table, sa_table) for c in node.children))
    raise InternalError.unexpected("unknown predicate node", node=repr(node))


def _comparison(node: Comparison, table: PhysicalTable, sa_table: Table) -> ColumnElement[bool]:
    column = table.column(node.field)
    if column is None:
        raise InternalError.unexpected("unvalidated field in predicate", field=node.field)
    col: Any = sa_table.c[column.name]
    value = node.value
    op = node.operator

    if op is Operator.EQUALS:
        return col.is_(None) if value is None else col == value
    if op is Operator.NOT_EQUALS:
        return col.is_not(None) if value is None else col != value
    if op is Operator.LT:
        return col < value
    if op is Operator.LTE:
        return col <= value
    if op is Operator.GT:
        return col > value
    if op is Operator.GTE:
        return col >= value
    if op is Operator.CONTAINS:
        return col.contains(value, autoescape=True)
    if op is Operator.STARTS_WITH:
        return col.startswith(value, autoescape=True)
    if op is Operator.ENDS_WITH:
        return col.endswith(value, autoescape=True)
    if op is Operator.IN:
        return col.in_(list(value))
    if op is Operator.NOT_IN:
        return col.not_in(list(value))
    raise InternalError.unexpected("unhandled operator", operator=str(op))

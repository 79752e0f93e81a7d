"""Query filters: predicate trees, validation and SQL compilation."""

from modelplane.query.builder import FilterExpression, allowed_operators, build, normalize
from modelplane.query.compiler import compile_predicate
from modelplane.query.predicate import (
    FALSE,
    TRUE,
    And,
    Comparison,
    Not,
    Operator,
    Or,
    PredicateNode,
    all_of,
    any_of,
    comparisons,
    eq,
    gt,
    gte,
    is_false,
    is_true,
    lt,
    lte,
    ne,
    negate,
)

__all__ = [
    "PredicateNode",
    "Comparison",
    "And",
    "Or",
    "Not",
    "Operator",
    "TRUE",
    "FALSE",
    "is_true",
    "is_false",
    "comparisons",
    "eq",
    "ne",
    "lt",
    "lte",
    "gt",
    "gte",
    "all_of",
    "any_of",
    "negate",
    "FilterExpression",
    "build",
    "normalize",
    "allowed_operators",
    "compile_predicate",
]

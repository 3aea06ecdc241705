"""Helpers for walking sqlglot trees without recursion."""

from typing import Iterator, Optional, Type, TypeVar

from sqlglot import exp

SET_TYPES = (exp.Union, exp.Intersect, exp.Except)
QUERY_TYPES = (exp.Select,) + SET_TYPES

T = TypeVar("T", bound=exp.Expression)


def children(node: exp.Expression) -> Iterator[exp.Expression]:
    """Yield the direct child expressions of ``node`` in argument order."""
    for value in node.args.values():
        if isinstance(value, exp.Expression):
            yield value
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, exp.Expression):
                    yield item


def clause(node: exp.Expression, kind: Type[T]) -> Optional[T]:
    """Return the direct argument of ``node`` that is an instance of ``kind``."""
    for value in node.args.values():
        if isinstance(value, kind):
            return value
    return None


def unwrap(node: exp.Expression) -> exp.Expression:
    """Strip parentheses and subquery wrappers."""
    while isinstance(node, (exp.Paren, exp.Subquery)) and isinstance(node.this, exp.Expression):
        node = node.this
    return node


def set_operator(node: exp.Expression) -> str:
    name = node.key.upper()
    if node.args.get("distinct") is False:
        name += " ALL"
    return name


def is_query(node: exp.Expression) -> bool:
    return isinstance(node, QUERY_TYPES) or (
        isinstance(node, exp.Subquery) and isinstance(unwrap(node), QUERY_TYPES)
    )

"""Semantic decomposition of bound queries into facets."""

from sql_verifier.facets.decomposer import Decomposer, decompose
from sql_verifier.facets.model import (
    UNBOUNDED,
    Aggregate,
    JoinEdge,
    JoinGraph,
    JoinKind,
    LimitSpec,
    OrderItem,
    Predicate,
    QueryFacets,
    ResolvedExpr,
    SortDirection,
)
from sql_verifier.facets.normalize import Canonicalizer

__all__ = [
    "UNBOUNDED",
    "Aggregate",
    "Canonicalizer",
    "Decomposer",
    "JoinEdge",
    "JoinGraph",
    "JoinKind",
    "LimitSpec",
    "OrderItem",
    "Predicate",
    "QueryFacets",
    "ResolvedExpr",
    "SortDirection",
    "decompose",
]

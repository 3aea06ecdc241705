"""
Query Facets
============

The five independently checkable dimensions of a query's meaning.
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from sql_verifier.parsing.bound import ColumnId


class JoinKind(str, Enum):
    """Join kinds, relative to an edge's (left, right) endpoints."""

    INNER = "inner"
    LEFT = "left"
    RIGHT = "right"
    FULL = "full"
    CROSS = "cross"

    def mirrored(self) -> "JoinKind":
        if self is JoinKind.LEFT:
            return JoinKind.RIGHT
        if self is JoinKind.RIGHT:
            return JoinKind.LEFT
        return self


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class ResolvedExpr:
    """A select-list expression with columns replaced by their identities."""

    text: str
    columns: frozenset[ColumnId] = frozenset()
    is_aggregate: bool = False
    # Set when the expression is a bare column
    column: Optional[ColumnId] = field(default=None, compare=False)
    alias: Optional[str] = field(default=None, compare=False)
    # Text with presentation wrappers (ROUND, CAST, parentheses) removed
    core: str = field(default="", compare=False)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class JoinEdge:
    """
    An undirected join edge.

    Endpoints are stored in lexical order; ``kind`` is expressed relative to
    that order and ``preserved`` names the endpoints whose unmatched rows
    survive the join.
    """

    left: str
    right: str
    kind: JoinKind
    condition: str = ""
    preserved: frozenset[str] = frozenset()

    @classmethod
    def build(
        cls,
        a: str,
        b: str,
        kind: JoinKind,
        condition: str = "",
        preserved: frozenset[str] = frozenset(),
    ) -> "JoinEdge":
        if a > b:
            a, b = b, a
            kind = kind.mirrored()
        return cls(left=a, right=b, kind=kind, condition=condition, preserved=frozenset(preserved))

    @property
    def endpoints(self) -> frozenset[str]:
        return frozenset((self.left, self.right))

    def other(self, node: str) -> str:
        return self.right if node == self.left else self.left

    def __str__(self) -> str:
        text = f"{self.left} {self.kind.value.upper()} JOIN {self.right}"
        if self.condition:
            text += f" ON {self.condition}"
        return text


@dataclass(frozen=True)
class JoinGraph:
    """Row sources of a query and the join edges between them."""

    nodes: frozenset[str] = frozenset()
    edges: frozenset[JoinEdge] = frozenset()

    def edges_of(self, node: str) -> list[JoinEdge]:
        return sorted(
            (edge for edge in self.edges if node in edge.endpoints),
            key=lambda edge: (edge.left, edge.right, edge.condition),
        )

    def edge_between(self, a: str, b: str) -> Optional[JoinEdge]:
        for edge in self.edges_of(a):
            if edge.other(a) == b:
                return edge
        return None

    def path(self, a: str, b: str, include_cross: bool = False) -> Optional[list[JoinEdge]]:
        """Shortest edge path between two nodes, or None when disconnected."""
        if a not in self.nodes or b not in self.nodes:
            return None
        if a == b:
            return []
        previous: dict[str, tuple[str, JoinEdge]] = {}
        visited = {a}
        queue = deque([a])
        while queue:
            current = queue.popleft()
            for edge in self.edges_of(current):
                if edge.kind is JoinKind.CROSS and not include_cross:
                    continue
                neighbour = edge.other(current)
                if neighbour in visited:
                    continue
                visited.add(neighbour)
                previous[neighbour] = (current, edge)
                queue.append(neighbour)
        if b not in visited:
            return None
        path = []
        node = b
        while node != a:
            node, edge = previous[node]
            path.append(edge)
        path.reverse()
        return path

    def connected(self, a: str, b: str) -> bool:
        return self.path(a, b) is not None


@dataclass(frozen=True)
class Predicate:
    """An independent filter condition in canonical form."""

    text: str
    columns: frozenset[ColumnId] = frozenset()
    clause: str = "where"
    # OR groups and other conditions that cannot be split
    compound: bool = False
    op: Optional[str] = None
    left: Optional[str] = None
    right: Optional[str] = None
    # Normalised literal values mentioned by the condition
    literals: tuple[str, ...] = ()
    sources: frozenset[str] = field(default=frozenset(), compare=False)
    # Equality between two bare columns
    equijoin: bool = field(default=False, compare=False)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class Aggregate:
    """An aggregate call; ``COUNT(*)`` keeps ``*`` as its argument."""

    function: str
    argument: str
    distinct: bool = False
    columns: frozenset[ColumnId] = field(default=frozenset(), compare=False)

    def __str__(self) -> str:
        inner = f"DISTINCT {self.argument}" if self.distinct else self.argument
        return f"{self.function}({inner})"


@dataclass(frozen=True)
class OrderItem:
    expression: str
    direction: SortDirection = SortDirection.ASC
    columns: frozenset[ColumnId] = field(default=frozenset(), compare=False)

    def __str__(self) -> str:
        return f"{self.expression} {self.direction.value.upper()}"


@dataclass(frozen=True)
class LimitSpec:
    """Row limit; ``count is None`` and ``raw is None`` means unbounded."""

    count: Optional[int] = None
    offset: int = 0
    # Non-literal limit expression (a parameter, for example)
    raw: Optional[str] = None

    @property
    def bounded(self) -> bool:
        return self.count is not None or self.raw is not None

    def __str__(self) -> str:
        if not self.bounded:
            return "unbounded"
        text = f"LIMIT {self.count if self.count is not None else self.raw}"
        if self.offset:
            text += f" OFFSET {self.offset}"
        return text


UNBOUNDED = LimitSpec()


@dataclass(frozen=True)
class QueryFacets:
    """Facets of one SELECT, plus the facets of its nested queries."""

    projection: tuple[ResolvedExpr, ...] = ()
    joins: JoinGraph = field(default_factory=JoinGraph)
    filters: frozenset[Predicate] = frozenset()
    grouping: frozenset[ColumnId] = frozenset()
    # Non-column GROUP BY keys, in canonical text form
    grouping_expressions: frozenset[str] = frozenset()
    aggregates: frozenset[Aggregate] = frozenset()
    ordering: tuple[OrderItem, ...] = ()
    limit: LimitSpec = UNBOUNDED
    distinct: bool = False
    set_operations: tuple[str, ...] = ()
    branches: tuple["QueryFacets", ...] = ()
    nested: tuple["QueryFacets", ...] = field(default=(), compare=False)
    referenced_sources: frozenset[str] = field(default=frozenset(), compare=False)

    @property
    def has_aggregation(self) -> bool:
        return bool(self.aggregates or self.grouping or self.grouping_expressions)

    @property
    def projected_columns(self) -> frozenset[ColumnId]:
        columns: set[ColumnId] = set()
        for item in self.projection:
            columns.update(item.columns)
        return frozenset(columns)

    def sorted_filters(self) -> list[Predicate]:
        return sorted(self.filters, key=lambda p: (p.clause != "where", p.text))

    def dangling_sources(self) -> frozenset[str]:
        """Referenced sources missing from the join graph (always empty when well formed)."""
        return self.referenced_sources - self.joins.nodes

    @property
    def referenced_columns(self) -> frozenset[ColumnId]:
        columns = set(self.projected_columns) | set(self.grouping)
        for predicate in self.filters:
            columns |= predicate.columns
        for item in self.ordering:
            columns |= item.columns
        return frozenset(columns)

    def walk(self) -> Iterator["QueryFacets"]:
        """Yield these facets and those of every nested query."""
        stack = [self]
        while stack:
            facets = stack.pop()
            yield facets
            stack.extend(reversed(facets.nested + facets.branches))

    def all_aggregates(self) -> list[Aggregate]:
        """Aggregates of this query and every nested query."""
        found: list[Aggregate] = []
        for facets in self.walk():
            found.extend(sorted(facets.aggregates, key=str))
        return found

"""
Intent Shape
============

Expected facet values derived from a natural-language request.

Every facet expectation carries a ``required`` flag. Fields left as ``None``
are wildcards: the request does not constrain them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sql_verifier.facets.model import (
    Aggregate,
    JoinGraph,
    LimitSpec,
    OrderItem,
    Predicate,
    QueryFacets,
    ResolvedExpr,
    SortDirection,
)
from sql_verifier.parsing.bound import ColumnId


class IntentMode(str, Enum):
    REFERENCE = "reference"
    HEURISTIC = "heuristic"


@dataclass(frozen=True)
class IntentUnderspecified:
    """A cue the extractor saw but could not map; lowers confidence."""

    facet: str
    reason: str

    def __str__(self) -> str:
        return f"{self.facet}: {self.reason}"


@dataclass(frozen=True)
class ValueConstraint:
    """A filter value mentioned in the request, optionally tied to a column."""

    value: str
    column: Optional[ColumnId] = None
    op: Optional[str] = None

    def __str__(self) -> str:
        subject = str(self.column) if self.column else "a column"
        op = self.op or "="
        return f"{subject} {op} {self.value}"


@dataclass(frozen=True)
class ProjectionIntent:
    required: bool = False
    # Reference mode: the exact select list
    expressions: Optional[tuple[ResolvedExpr, ...]] = None
    # Heuristic mode: columns and entities that must be visible in the output
    columns: Optional[frozenset[ColumnId]] = None
    entities: Optional[frozenset[str]] = None
    distinct: Optional[bool] = None


@dataclass(frozen=True)
class JoinIntent:
    required: bool = False
    # Tables the query must connect
    tables: Optional[frozenset[str]] = None
    # Tables whose unmatched rows must be kept (outer join)
    preserve: frozenset[str] = frozenset()
    # Reference mode: the exact join graph
    graph: Optional[JoinGraph] = None


@dataclass(frozen=True)
class FilterIntent:
    required: bool = False
    # Reference mode: the exact predicate set
    predicates: Optional[frozenset[Predicate]] = None
    # Heuristic mode: values the query must filter on
    constraints: Optional[tuple[ValueConstraint, ...]] = None


@dataclass(frozen=True)
class AggregationIntent:
    required: bool = False
    # None: unknown; False: plain listing
    expects_aggregation: Optional[bool] = None
    # Heuristic mode
    functions: Optional[frozenset[str]] = None
    grouping_tables: Optional[frozenset[str]] = None
    grouping_columns: Optional[frozenset[ColumnId]] = None
    # Columns the request asks to aggregate ("average price")
    measures: Optional[frozenset[ColumnId]] = None
    # Reference mode
    aggregates: Optional[frozenset[Aggregate]] = None
    grouping: Optional[frozenset[ColumnId]] = None
    grouping_expressions: Optional[frozenset[str]] = None


@dataclass(frozen=True)
class OrderingIntent:
    required: bool = False
    # Reference mode: the exact ORDER BY list
    items: Optional[tuple[OrderItem, ...]] = None
    direction: Optional[SortDirection] = None
    key_columns: Optional[frozenset[ColumnId]] = None
    limit: Optional[LimitSpec] = None
    # Superlative requests ("the most expensive product")
    extremum: bool = False
    # Ties matter: the result must have exactly ``limit`` rows
    exact_cardinality: bool = False

    @property
    def constrained(self) -> bool:
        return (
            self.items is not None
            or self.direction is not None
            or self.key_columns is not None
            or self.limit is not None
            or self.extremum
        )


@dataclass(frozen=True)
class IntentShape:
    """Expected shape of the answer to a request. Immutable once produced."""

    mode: IntentMode
    projection: ProjectionIntent = field(default_factory=ProjectionIntent)
    joins: JoinIntent = field(default_factory=JoinIntent)
    filters: FilterIntent = field(default_factory=FilterIntent)
    aggregation: AggregationIntent = field(default_factory=AggregationIntent)
    ordering: OrderingIntent = field(default_factory=OrderingIntent)
    notes: tuple[IntentUnderspecified, ...] = ()
    reference: Optional[QueryFacets] = field(default=None, compare=False)

    @classmethod
    def from_facets(
        cls, facets: QueryFacets, notes: tuple[IntentUnderspecified, ...] = ()
    ) -> "IntentShape":
        """Treat a reference query's facets as the expected shape; every facet is required."""
        return cls(
            mode=IntentMode.REFERENCE,
            projection=ProjectionIntent(
                required=True,
                expressions=facets.projection,
                columns=facets.projected_columns,
                distinct=facets.distinct,
            ),
            joins=JoinIntent(
                required=True,
                tables=facets.joins.nodes,
                graph=facets.joins,
            ),
            filters=FilterIntent(required=True, predicates=facets.filters),
            aggregation=AggregationIntent(
                required=True,
                expects_aggregation=facets.has_aggregation,
                functions=frozenset(a.function for a in facets.aggregates),
                aggregates=facets.aggregates,
                grouping=facets.grouping,
                grouping_expressions=facets.grouping_expressions,
            ),
            ordering=OrderingIntent(
                required=True,
                items=facets.ordering,
                direction=facets.ordering[0].direction if facets.ordering else None,
                limit=facets.limit,
            ),
            notes=notes,
            reference=facets,
        )

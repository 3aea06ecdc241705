"""
Semantic Decomposer
===================

Walks a bound query and extracts its facets: projection, join graph,
filter predicates, aggregation/grouping and ordering/limit.

The transform is deterministic and side-effect free.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

from sqlglot import exp

from sql_verifier.facets.model import (
    UNBOUNDED,
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
from sql_verifier.facets.normalize import Canonicalizer, core
from sql_verifier.parsing.bound import BoundQuery, Source
from sql_verifier.parsing.tree import clause

_SIDES = {"LEFT": JoinKind.LEFT, "RIGHT": JoinKind.RIGHT, "FULL": JoinKind.FULL}
_OUTER = (JoinKind.LEFT, JoinKind.RIGHT, JoinKind.FULL)


@dataclass
class _EdgeDraft:
    a: str
    b: str
    kind: JoinKind
    conditions: list[str] = field(default_factory=list)
    preserved: set[str] = field(default_factory=set)

    def build(self) -> JoinEdge:
        return JoinEdge.build(
            self.a,
            self.b,
            self.kind,
            condition=" AND ".join(sorted(set(self.conditions))),
            preserved=frozenset(self.preserved),
        )


@dataclass
class _Level:
    """Join graph and filters of one query while derived sources are folded in."""

    graph: JoinGraph
    filters: list[Predicate]
    referenced: set[str]
    # Ids of the bound queries folded into this level
    folded: set[int] = field(default_factory=set)
    nested: list[QueryFacets] = field(default_factory=list)


def decompose(bound: BoundQuery) -> QueryFacets:
    """
    Extract the facets of a bound query.

    Args:
        bound: Root of a bound query tree

    Returns:
        QueryFacets of the root query; nested queries appear in ``nested``
        and set-operation branches in ``branches``
    """
    return Decomposer(bound).facets(bound)


class Decomposer:
    """Facet extraction over one bound query tree."""

    def __init__(self, root: BoundQuery) -> None:
        self.canon = Canonicalizer(root)

    def facets(self, query: BoundQuery) -> QueryFacets:
        select = query.node
        projection = self._projection(query)
        graph, promoted = self._join_graph(query)

        filters: list[Predicate] = []
        where = clause(select, exp.Where)
        if where is not None:
            filters.extend(
                p for p in self.canon.predicates(where.this, "where") if p not in promoted
            )
        having = clause(select, exp.Having)
        if having is not None:
            filters.extend(self.canon.predicates(having.this, "having"))

        grouping, grouping_expressions = self._grouping(query)

        modifiers = query.set_modifiers if query.set_modifiers is not None else select
        order = clause(modifiers, exp.Order) or clause(select, exp.Order)
        ordering = self._ordering(query, order)
        limit = self._limit(modifiers)
        if not limit.bounded and modifiers is not select:
            limit = self._limit(select)

        aggregates = []
        for item in select.expressions:
            aggregates.extend(self.canon.aggregates(item))
        if having is not None:
            aggregates.extend(self.canon.aggregates(having.this))
        if order is not None:
            for ordered in order.expressions:
                aggregates.extend(self.canon.aggregates(ordered.this))

        referenced = set()
        for item in select.expressions:
            referenced |= self.canon.sources(item)
        for predicate in filters:
            referenced |= predicate.sources
        for node in (clause(select, exp.Group), order):
            if node is not None:
                referenced |= self.canon.sources(node)

        level = _Level(graph, filters, referenced)
        for source in query.sources:
            if source.derived is not None:
                self._fold(level, source)
        nested = [
            self.facets(child) for child in query.children if id(child) not in level.folded
        ]
        nested.extend(level.nested)

        return QueryFacets(
            projection=tuple(projection),
            joins=level.graph,
            filters=frozenset(level.filters),
            grouping=frozenset(grouping),
            grouping_expressions=frozenset(grouping_expressions),
            aggregates=frozenset(aggregates),
            ordering=tuple(ordering),
            limit=limit,
            distinct=bool(select.args.get("distinct")),
            set_operations=tuple(operator for operator, _ in query.set_operations),
            branches=tuple(self.facets(branch) for _, branch in query.set_operations),
            nested=tuple(nested),
            referenced_sources=frozenset(level.referenced),
        )

    # ------------------------------------------------------------------
    # Pass-through CTEs and derived tables

    def _fold(self, level: _Level, source: Source) -> None:
        """
        Replace a pass-through CTE or derived table by the tables it reads.

        Column identities already follow lineage through such sources, so
        once the node is replaced by its own join graph and filters, a query
        written through a CTE has the same facets as one written directly.
        Sources that would clash with tables the outer query reads, or
        whose filters sit on the optional side of an outer join, are kept.
        """
        if not _passes_through(source.derived):
            return
        inner = self.facets(source.derived)
        node = source.identity
        graph = level.graph
        others = graph.nodes - {node}
        if not inner.joins.nodes or inner.joins.nodes & others:
            return

        touching = graph.edges_of(node)
        if touching and len(inner.joins.nodes) != 1:
            return
        if inner.filters and any(
            edge.kind in _OUTER and node not in edge.preserved for edge in touching
        ):
            return

        anchor = min(inner.joins.nodes)

        def rename(name: str) -> str:
            return anchor if name == node else name

        edges = {edge for edge in graph.edges if node not in edge.endpoints}
        for edge in touching:
            edges.add(
                JoinEdge.build(
                    rename(edge.left),
                    rename(edge.right),
                    edge.kind,
                    condition=edge.condition,
                    preserved=frozenset(rename(name) for name in edge.preserved),
                )
            )
        edges |= inner.joins.edges
        level.graph = JoinGraph(nodes=others | inner.joins.nodes, edges=frozenset(edges))

        def resolve(predicate: Predicate) -> Predicate:
            if node not in predicate.sources:
                return predicate
            tables = {column.table for column in predicate.columns} & inner.joins.nodes
            sources = (predicate.sources - {node}) | (tables or inner.joins.nodes)
            return replace(predicate, sources=frozenset(sources))

        level.filters = [resolve(p) for p in level.filters] + list(inner.filters)
        if node in level.referenced:
            level.referenced = (level.referenced - {node}) | set(inner.joins.nodes)
        level.folded.add(id(source.derived))
        level.nested.extend(inner.nested)

    # ------------------------------------------------------------------
    # Projection

    def _projection(self, query: BoundQuery) -> list[ResolvedExpr]:
        items = []
        for projection in query.node.expressions:
            if isinstance(projection, exp.Star):
                for source in query.sources:
                    items.extend(_expand_star(source))
                continue
            if isinstance(projection, exp.Column) and isinstance(projection.this, exp.Star):
                source = query.scope.source(projection.table)
                if source is not None:
                    items.extend(_expand_star(source))
                continue

            node = projection.this if isinstance(projection, exp.Alias) else projection
            canonical = self.canon.expression(node)
            items.append(
                ResolvedExpr(
                    text=canonical.sql(),
                    columns=self.canon.columns(node),
                    is_aggregate=bool(self.canon.aggregates(node)),
                    column=self.canon.column_id(node),
                    alias=projection.alias if isinstance(projection, exp.Alias) else None,
                    core=core(canonical).sql(),
                )
            )
        return items

    def _projection_node(self, query: BoundQuery, key: exp.Expression) -> exp.Expression:
        """Map an ordinal GROUP BY / ORDER BY key to its select-list expression."""
        if isinstance(key, exp.Literal) and not key.is_string:
            try:
                index = int(key.this) - 1
            except ValueError:
                return key
            expressions = query.node.expressions
            if 0 <= index < len(expressions):
                target = expressions[index]
                return target.this if isinstance(target, exp.Alias) else target
        return key

    # ------------------------------------------------------------------
    # Joins

    def _join_graph(self, query: BoundQuery) -> tuple[JoinGraph, set[Predicate]]:
        select = query.node
        by_node = {id(source.node): source for source in query.sources}
        drafts: dict[frozenset[str], _EdgeDraft] = {}
        seen: list[Source] = []
        comma_sources: set[str] = set()

        def add(a: str, b: str, kind: JoinKind, condition: Optional[str] = None) -> _EdgeDraft:
            key = frozenset((a, b))
            draft = drafts.get(key)
            if draft is None:
                draft = drafts[key] = _EdgeDraft(a, b, kind)
            if condition:
                draft.conditions.append(condition)
            return draft

        def cross(source: Source) -> None:
            if seen:
                add(seen[-1].identity, source.identity, JoinKind.CROSS)
                comma_sources.update((seen[-1].identity, source.identity))

        from_ = clause(select, exp.From)
        if from_ is not None:
            for node in [from_.this] + list(from_.args.get("expressions") or []):
                source = by_node.get(id(node))
                if source is not None:
                    cross(source)
                    seen.append(source)

        for join in select.args.get("joins") or []:
            source = by_node.get(id(join.this))
            if source is None:
                continue
            side = (join.side or "").upper()
            kind_name = (join.kind or "").upper()
            on = join.args.get("on")
            using = [item.name for item in join.args.get("using") or []]
            natural = (join.args.get("method") or "").upper() == "NATURAL"
            if natural:
                using = _common_columns(seen, source)

            if kind_name == "CROSS" or (on is None and not using):
                cross(source)
                seen.append(source)
                continue

            kind = _SIDES.get(side, JoinKind.INNER)
            partnered: dict[str, list[str]] = {}
            loose: list[str] = []
            if on is not None:
                for predicate in self.canon.predicates(on, "join"):
                    partners = [s.identity for s in seen if s.identity in predicate.sources]
                    if partners:
                        partnered.setdefault(partners[0], []).append(predicate.text)
                    else:
                        loose.append(predicate.text)
            for name in using:
                condition = _using_condition(seen, source, name)
                if condition is not None:
                    partnered.setdefault(condition[0], []).append(condition[1])

            if not partnered and seen:
                partnered[seen[-1].identity] = []
            for index, (partner, conditions) in enumerate(partnered.items()):
                draft = add(partner, source.identity, kind)
                draft.conditions.extend(conditions)
                if index == 0:
                    draft.conditions.extend(loose)
                if kind in (JoinKind.LEFT, JoinKind.FULL):
                    draft.preserved.add(partner)
                if kind in (JoinKind.RIGHT, JoinKind.FULL):
                    draft.preserved.add(source.identity)
            seen.append(source)

        promoted = self._promote_where_equalities(select, drafts, comma_sources)

        # Comma joins made redundant by promoted equalities
        for key, draft in list(drafts.items()):
            if draft.kind is JoinKind.CROSS and _connected(drafts, draft.a, draft.b):
                del drafts[key]

        graph = JoinGraph(
            nodes=frozenset(source.identity for source in query.sources),
            edges=frozenset(draft.build() for draft in drafts.values()),
        )
        return graph, promoted

    def _promote_where_equalities(
        self,
        select: exp.Select,
        drafts: dict[frozenset[str], _EdgeDraft],
        comma_sources: set[str],
    ) -> set[Predicate]:
        """Turn ``WHERE a.x = b.y`` between comma-joined sources into join edges."""
        promoted: set[Predicate] = set()
        where = clause(select, exp.Where)
        if where is None or not comma_sources:
            return promoted
        for predicate in self.canon.predicates(where.this, "where"):
            if not predicate.equijoin or len(predicate.sources) != 2:
                continue
            a, b = sorted(predicate.sources)
            if a not in comma_sources and b not in comma_sources:
                continue
            key = frozenset((a, b))
            draft = drafts.get(key)
            if draft is None:
                draft = drafts[key] = _EdgeDraft(a, b, JoinKind.INNER)
            elif draft.kind is JoinKind.CROSS:
                draft.kind = JoinKind.INNER
            elif draft.kind is not JoinKind.INNER:
                continue
            draft.conditions.append(predicate.text)
            promoted.add(predicate)
        return promoted

    # ------------------------------------------------------------------
    # Grouping, ordering and limits

    def _grouping(self, query: BoundQuery):
        group = clause(query.node, exp.Group)
        columns = set()
        expressions = set()
        if group is None:
            return columns, expressions
        for key in group.expressions:
            node = self._projection_node(query, key)
            column = self.canon.column_id(node)
            if column is not None:
                columns.add(column)
            else:
                expressions.add(self.canon.text(node))
        return columns, expressions

    def _ordering(self, query: BoundQuery, order: Optional[exp.Order]) -> list[OrderItem]:
        if order is None:
            return []
        items = []
        for ordered in order.expressions:
            node = ordered.this if isinstance(ordered, exp.Ordered) else ordered
            node = self._projection_node(query, node)
            descending = isinstance(ordered, exp.Ordered) and bool(ordered.args.get("desc"))
            items.append(
                OrderItem(
                    expression=self.canon.text(node),
                    direction=SortDirection.DESC if descending else SortDirection.ASC,
                    columns=self.canon.columns(node),
                )
            )
        return items

    def _limit(self, node: exp.Expression) -> LimitSpec:
        limit = clause(node, exp.Limit)
        fetch = clause(node, exp.Fetch)
        offset_node = clause(node, exp.Offset)

        count_node = None
        if limit is not None:
            count_node = limit.args.get("expression") or limit.args.get("this")
        elif fetch is not None:
            count_node = fetch.args.get("count")
            if count_node is None:
                return LimitSpec(count=1, offset=self._offset(offset_node, None))
        if count_node is None:
            if offset_node is not None:
                return LimitSpec(offset=self._offset(offset_node, None))
            return UNBOUNDED

        count = _int_literal(count_node)
        offset = self._offset(offset_node, limit)
        if count is None:
            return LimitSpec(offset=offset, raw=self.canon.text(count_node))
        return LimitSpec(count=count, offset=offset)

    def _offset(
        self, offset_node: Optional[exp.Expression], limit: Optional[exp.Expression]
    ) -> int:
        value = None
        if offset_node is not None:
            value = offset_node.args.get("expression") or offset_node.args.get("this")
        elif limit is not None:
            value = limit.args.get("offset")
        if value is None:
            return 0
        return _int_literal(value) or 0


def _expand_star(source: Source) -> list[ResolvedExpr]:
    names = source.column_names()
    if not names:
        return [ResolvedExpr(text=f"{source.identity}.*", core=f"{source.identity}.*")]
    items = []
    for name in names:
        bound = source.resolve(name)
        if bound is None:
            continue
        text = str(bound.id)
        items.append(
            ResolvedExpr(text=text, columns=frozenset([bound.id]), column=bound.id, core=text)
        )
    return items


def _int_literal(node: exp.Expression) -> Optional[int]:
    if isinstance(node, exp.Literal) and not node.is_string:
        try:
            return int(node.this)
        except ValueError:
            return None
    return None


def _common_columns(seen: list[Source], source: Source) -> list[str]:
    names = []
    earlier = {name.lower() for s in seen for name in s.column_names()}
    for name in source.column_names():
        if name.lower() in earlier:
            names.append(name)
    return names


def _using_condition(seen: list[Source], source: Source, name: str) -> Optional[tuple[str, str]]:
    right = source.resolve(name)
    if right is None:
        return None
    for candidate in seen:
        left = candidate.resolve(name)
        if left is not None:
            a, b = sorted((str(left.id), str(right.id)))
            return candidate.identity, f"{a} = {b}"
    return None


def _connected(drafts: dict[frozenset[str], _EdgeDraft], a: str, b: str) -> bool:
    """Whether ``a`` and ``b`` are linked through non-cross edges."""
    adjacency: dict[str, set[str]] = {}
    for draft in drafts.values():
        if draft.kind is JoinKind.CROSS:
            continue
        adjacency.setdefault(draft.a, set()).add(draft.b)
        adjacency.setdefault(draft.b, set()).add(draft.a)
    visited = {a}
    stack = [a]
    while stack:
        node = stack.pop()
        if node == b:
            return True
        for neighbour in adjacency.get(node, ()):
            if neighbour not in visited:
                visited.add(neighbour)
                stack.append(neighbour)
    return False


def _passes_through(query: BoundQuery) -> bool:
    """Whether a derived query only filters and renames columns of its sources."""
    select = query.node
    if query.set_operations or select.args.get("distinct"):
        return False
    for clause_type in (exp.Group, exp.Having, exp.Limit, exp.Fetch, exp.Offset):
        if clause(select, clause_type) is not None:
            return False
    if any(item.find(exp.AggFunc, exp.Window) for item in select.expressions):
        return False
    return bool(query.outputs) and all(lineage is not None for _, lineage in query.outputs)

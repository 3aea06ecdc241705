"""
Join Verifier
=============

Checks the query's join topology: which tables are connected, on what
condition and with which join kind.
"""

from collections import Counter
from typing import Optional

from sql_verifier.facets.model import JoinEdge, JoinGraph, JoinKind, Predicate, QueryFacets
from sql_verifier.intent.shape import IntentMode, IntentShape, JoinIntent
from sql_verifier.models import Facet, FacetResult
from sql_verifier.schema import ForeignKey, SchemaModel
from sql_verifier.verifiers.base import (
    FacetVerifier,
    base_table,
    covers_table,
    fk_condition,
    join_texts,
)

OUTER_KINDS = (JoinKind.LEFT, JoinKind.RIGHT, JoinKind.FULL)

DERIVED = "(derived table)"


class JoinVerifier(FacetVerifier):
    """
    Compares the join graph with the tables the request involves.

    Required tables must be connected by a direct edge or a transitive path
    (comma joins without a condition do not count). Where the request keeps
    unmatched rows ("including those with no orders"), every edge on the path
    away from the preserved table must keep it, and WHERE conditions on the
    optional side must not discard the NULL rows the outer join produced.
    """

    facet = Facet.FROM_JOINS

    @property
    def name(self) -> str:
        return "JoinVerifier"

    def compare(
        self, facets: QueryFacets, intent: IntentShape, schema: SchemaModel
    ) -> FacetResult:
        wanted = intent.joins
        note = describe(facets.joins)
        if intent.mode is IntentMode.REFERENCE and wanted.graph is not None:
            return self._compare_reference(facets, wanted, schema, note)
        return self._compare_heuristic(facets, wanted, schema, note)

    # ------------------------------------------------------------------
    # Reference mode

    def _compare_reference(
        self, facets: QueryFacets, wanted: JoinIntent, schema: SchemaModel, note: str
    ) -> FacetResult:
        expected, found = wanted.graph, facets.joins
        mismatches, partials, improvements = [], [], []

        def label(node: str) -> str:
            return node if schema.resolve_table(base_table(node)) is not None else DERIVED

        expected_nodes = Counter(label(node) for node in expected.nodes)
        found_nodes = Counter(label(node) for node in found.nodes)
        for node in sorted((expected_nodes - found_nodes).elements()):
            mismatches.append(f"Join mismatch: missing table {node}")
            improvements.append(f"Add {node} to the FROM clause")
        for node in sorted((found_nodes - expected_nodes).elements()):
            partials.append(f"Join partial: the query also reads {node}")
            improvements.append(f"Remove {node} unless it is needed")

        for edge in _sorted_edges(expected.edges):
            derived = DERIVED in (label(edge.left), label(edge.right))
            actual = found.edge_between(edge.left, edge.right)
            if actual is None:
                if edge.left in found.nodes and edge.right in found.nodes:
                    mismatches.append(f"Join mismatch: expected {edge}")
                    improvements.append(f"Join {edge.left} and {edge.right}" + _on(edge))
                continue
            if actual.kind is not edge.kind:
                mismatches.append(
                    f"Join mismatch: expected {_kind(edge)} between {edge.left} and "
                    f"{edge.right} but found {_kind(actual)}"
                )
                improvements.append(f"Use {_kind(edge)} between {edge.left} and {edge.right}")
            if not derived and actual.condition != edge.condition:
                mismatches.append(
                    f"Join mismatch: expected {edge.left} and {edge.right} joined on "
                    f"{edge.condition or 'no condition'} but found "
                    f"{actual.condition or 'no condition'}"
                )
                if edge.condition:
                    improvements.append(f"Join {edge.left} and {edge.right} ON {edge.condition}")

        for edge in _sorted_edges(found.edges):
            if expected.edge_between(edge.left, edge.right) is not None:
                continue
            if edge.left in expected.nodes and edge.right in expected.nodes:
                partials.append(f"Join partial: extra join {edge}")

        return self.result(
            note,
            mismatches=mismatches,
            partials=partials,
            improvements=improvements,
            required=wanted.required,
        )

    # ------------------------------------------------------------------
    # Heuristic mode

    def _compare_heuristic(
        self, facets: QueryFacets, wanted: JoinIntent, schema: SchemaModel, note: str
    ) -> FacetResult:
        graph = facets.joins
        mismatches, partials, improvements = [], [], []

        # Tables count as referenced when any query level reads them, or
        # when a foreign key column into them is used
        present = {base_table(node) for level in facets.walk() for node in level.joins.nodes}
        columns = frozenset().union(*(level.referenced_columns for level in facets.walk()))
        tables = sorted(wanted.tables or ())
        for table in tables:
            if table in present or covers_table(columns, table, schema):
                continue
            mismatches.append(
                f"Join mismatch: the request involves {table} but the query does not reference it"
            )
            path = _path_from(present, table, schema)
            if path:
                improvements.append(
                    f"Join {table} via " + " and ".join(fk_condition(fk) for fk in path)
                )
            else:
                improvements.append(f"Add {table} to the FROM clause")

        self._check_connectivity(graph, schema, mismatches, improvements)
        self._check_conditions(graph, schema, mismatches, improvements)
        if wanted.preserve:
            self._check_preserved(graph, wanted, mismatches, improvements)
        self._check_outer_filters(facets, wanted, mismatches, partials, improvements)

        return self.result(
            note,
            mismatches=mismatches,
            partials=partials,
            improvements=improvements,
            required=wanted.required,
        )

    def _check_connectivity(
        self,
        graph: JoinGraph,
        schema: SchemaModel,
        mismatches: list[str],
        improvements: list[str],
    ) -> None:
        """Schema tables in one FROM clause must be joined on a condition."""
        nodes = sorted(n for n in graph.nodes if schema.resolve_table(base_table(n)) is not None)
        for index, a in enumerate(nodes):
            for b in nodes[index + 1 :]:
                if graph.connected(a, b):
                    continue
                if graph.path(a, b, include_cross=True) is not None:
                    mismatches.append(
                        f"Join mismatch: {a} and {b} are combined by a cross join without "
                        "a join condition"
                    )
                else:
                    mismatches.append(f"Join mismatch: {a} and {b} are not joined")
                path = schema.foreign_key_path(base_table(a), base_table(b))
                if path:
                    identities = {base_table(a): a, base_table(b): b}
                    conditions = [fk_condition(fk, identities) for fk in path]
                    improvements.append(f"Join {a} and {b} on " + " and ".join(conditions))
                # Report each disconnected table once
                break

    def _check_conditions(
        self,
        graph: JoinGraph,
        schema: SchemaModel,
        mismatches: list[str],
        improvements: list[str],
    ) -> None:
        """Edges between tables related by a foreign key must use it."""
        for edge in _sorted_edges(graph.edges):
            if edge.kind is JoinKind.CROSS or not edge.condition:
                continue
            keys = _direct_keys(edge, schema)
            if not keys:
                continue
            identities = {base_table(edge.left): edge.left, base_table(edge.right): edge.right}
            expected = [fk_condition(fk, identities) for fk in keys]
            conditions = {part.lower() for part in edge.condition.split(" AND ")}
            if any(text.lower() in conditions for text in expected):
                continue
            mismatches.append(
                f"Join mismatch: {edge.left} and {edge.right} are joined on {edge.condition} "
                f"instead of the foreign key {keys[0]}"
            )
            improvements.append(f"Join {edge.left} and {edge.right} ON {expected[0]}")

    def _check_preserved(
        self,
        graph: JoinGraph,
        wanted: JoinIntent,
        mismatches: list[str],
        improvements: list[str],
    ) -> None:
        """Walk away from each preserved table; every edge must keep its rows."""
        targets = sorted(
            node for node in graph.nodes if base_table(node) in (wanted.tables or frozenset())
        )
        for table in sorted(wanted.preserve):
            origins = sorted(node for node in graph.nodes if base_table(node) == table)
            for origin in origins:
                for target in targets:
                    if target == origin:
                        continue
                    path = graph.path(origin, target)
                    if path is None:
                        continue
                    current = origin
                    for edge in path:
                        if current not in edge.preserved:
                            other = edge.other(current)
                            mismatches.append(
                                f"Join mismatch: {_kind(edge)} between {current} and {other} "
                                f"drops {table} rows without a match; use LEFT JOIN to keep them"
                            )
                            improvements.append(
                                f"Use {current} LEFT JOIN {other} to keep every {table} row"
                            )
                            break
                        current = edge.other(current)

    def _check_outer_filters(
        self,
        facets: QueryFacets,
        wanted: JoinIntent,
        mismatches: list[str],
        partials: list[str],
        improvements: list[str],
    ) -> None:
        """WHERE conditions on the optional side turn an outer join into an inner one."""
        optional = set()
        for edge in facets.joins.edges:
            if edge.kind in OUTER_KINDS:
                optional |= edge.endpoints - edge.preserved
        if not optional:
            return
        for predicate in sorted(facets.filters, key=lambda p: p.text):
            if predicate.clause != "where" or keeps_nulls(predicate):
                continue
            touched = sorted(predicate.sources & optional)
            if not touched:
                continue
            issue = (
                f"WHERE condition {predicate} on {touched[0]} discards the rows the "
                "outer join keeps"
            )
            if wanted.preserve:
                mismatches.append(f"Join mismatch: {issue}")
            else:
                partials.append(f"Join partial: {issue}")
            improvements.append(
                f"Move {predicate} into the ON clause of the join with {touched[0]}"
            )


def describe(graph: JoinGraph) -> str:
    """One-line summary of a join graph."""
    if not graph.nodes:
        return "No tables read"
    if not graph.edges:
        return "Reads from " + join_texts(sorted(graph.nodes))
    linked = set().union(*(edge.endpoints for edge in graph.edges))
    parts = [str(edge) for edge in _sorted_edges(graph.edges)]
    parts.extend(f"reads {node}" for node in sorted(graph.nodes - linked))
    return "; ".join(parts)


def keeps_nulls(predicate: Predicate) -> bool:
    """Whether a condition can hold for the NULL row of an unmatched outer join."""
    text = predicate.text.upper()
    if "COALESCE(" in text or "IFNULL(" in text:
        return True
    return " IS NULL" in text and not text.startswith("NOT ")


def _sorted_edges(edges) -> list[JoinEdge]:
    return sorted(edges, key=lambda edge: (edge.left, edge.right, edge.condition))


def _kind(edge: JoinEdge) -> str:
    return f"{edge.kind.value.upper()} JOIN"


def _on(edge: JoinEdge) -> str:
    return f" ON {edge.condition}" if edge.condition else ""


def _direct_keys(edge: JoinEdge, schema: SchemaModel) -> list[ForeignKey]:
    a, b = base_table(edge.left), base_table(edge.right)
    if a == b:
        return []
    return [fk for fk in schema.foreign_keys() if {fk.table, fk.ref_table} == {a, b}]


def _path_from(present: set[str], table: str, schema: SchemaModel) -> Optional[list[ForeignKey]]:
    best = None
    for start in sorted(present):
        path = schema.foreign_key_path(start, table)
        if path and (best is None or len(path) < len(best)):
            best = path
    return best

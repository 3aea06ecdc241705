"""
Filter Verifier
===============

Checks that every requested condition is implied by a query predicate.
"""

from typing import Optional

from sql_verifier.facets.model import JoinGraph, JoinKind, Predicate, QueryFacets
from sql_verifier.facets.normalize import normalize_number
from sql_verifier.intent.shape import FilterIntent, IntentMode, IntentShape, ValueConstraint
from sql_verifier.models import Facet, FacetResult
from sql_verifier.parsing.bound import ColumnId
from sql_verifier.schema import SchemaModel
from sql_verifier.verifiers.base import FacetVerifier, base_table, join_texts, same_column

_DIRECTIONS = {">": "up", ">=": "up", "<": "down", "<=": "down", "=": "eq", "<>": "ne"}


class FilterVerifier(FacetVerifier):
    """
    Compares WHERE and HAVING predicates with the requested conditions.

    Predicates are compared in canonical form, so ``5 < x`` and ``x > 5``
    are the same condition. Missing or different conditions are mismatches;
    extra conditions only make the query more restrictive and are partial.
    """

    facet = Facet.FILTERS

    @property
    def name(self) -> str:
        return "FilterVerifier"

    def compare(
        self, facets: QueryFacets, intent: IntentShape, schema: SchemaModel
    ) -> FacetResult:
        filter_intent = intent.filters
        if intent.mode is IntentMode.REFERENCE and filter_intent.predicates is not None:
            expected_graph = intent.joins.graph or JoinGraph()
            return self._compare_reference(facets, filter_intent, expected_graph)
        return self._compare_heuristic(facets, filter_intent, schema)

    # ------------------------------------------------------------------
    # Reference mode

    def _compare_reference(
        self, facets: QueryFacets, filter_intent: FilterIntent, expected_graph: JoinGraph
    ) -> FacetResult:
        expected = {p.text: p for p in filter_intent.predicates}
        found = {p.text: p for p in facets.filters}
        # An equality written in WHERE is the same condition as an inner join ON
        found_joins = _inner_conditions(facets.joins)
        expected_joins = _inner_conditions(expected_graph)

        missing = [
            p
            for text, p in sorted(expected.items())
            if text not in found and text not in found_joins
        ]
        extra = [
            p
            for text, p in sorted(found.items())
            if text not in expected and text not in expected_joins
        ]

        mismatches, partials, improvements = [], [], []
        for predicate in missing:
            replacement = next(
                (p for p in extra if p.left is not None and p.left == predicate.left), None
            )
            if replacement is not None:
                extra.remove(replacement)
                mismatches.append(
                    f"Filter mismatch: expected {predicate} but found {replacement}"
                )
                improvements.append(f"Change {replacement} to {predicate}")
            else:
                mismatches.append(f"Filter mismatch: missing condition {predicate}")
                improvements.append(f"Add {_clause(predicate)} {predicate}")
        for predicate in extra:
            partials.append(
                f"Filter partial: extra condition {predicate} makes the query more restrictive"
            )
            improvements.append(f"Remove {predicate} unless it is intended")

        if facets.filters:
            note = "Filters on " + join_texts(p.text for p in facets.sorted_filters())
        else:
            note = "No filter conditions"
        return self.result(
            note,
            mismatches=mismatches,
            partials=partials,
            improvements=improvements,
            required=filter_intent.required,
        )

    # ------------------------------------------------------------------
    # Heuristic mode

    def _compare_heuristic(
        self, facets: QueryFacets, filter_intent: FilterIntent, schema: SchemaModel
    ) -> FacetResult:
        # Conditions inside subqueries and set-operation branches also restrict
        # the result, so they may satisfy a requested value
        pool = [p for level in facets.walk() for p in sorted(level.filters, key=lambda p: p.text)]
        conditions = [edge.condition for level in facets.walk() for edge in level.joins.edges]
        mismatches, partials, improvements = [], [], []
        used: set[Predicate] = set()
        satisfied = []

        for constraint in filter_intent.constraints or ():
            candidates = [p for p in pool if _value_matches(constraint, p)]
            if not candidates:
                if any(_mentions(constraint.value, text) for text in conditions):
                    satisfied.append(str(constraint))
                    continue
                mismatches.append(f"Filter mismatch: missing condition {constraint}")
                improvements.append(f"Add a WHERE condition {constraint}")
                continue
            used.update(candidates)
            predicate = candidates[0]

            if constraint.column is not None and not any(
                _same_or_linked(constraint.column, column, schema)
                for candidate in candidates
                for column in candidate.columns
            ):
                found_on = join_texts(sorted(str(c) for c in predicate.columns)) or "a constant"
                mismatches.append(
                    f"Filter mismatch: expected {constraint} but the value is compared "
                    f"with {found_on}"
                )
                improvements.append(f"Filter on {constraint.column} instead of {found_on}")
                continue

            verdict = _operator_fit(constraint, candidates)
            if verdict == "mismatch":
                mismatches.append(f"Filter mismatch: expected {constraint} but found {predicate}")
                improvements.append(f"Use {constraint.op} in {predicate}")
            elif verdict == "partial":
                partials.append(
                    f"Filter partial: {predicate} uses {predicate.op} where the request "
                    f"implies {constraint.op}"
                )
                improvements.append(f"Check the boundary of {predicate}")
            else:
                satisfied.append(str(predicate))

        top_level = [p for level in [facets, *facets.branches] for p in level.sorted_filters()]
        for predicate in top_level:
            if predicate in used or predicate.equijoin:
                continue
            partials.append(
                f"Filter partial: extra condition {predicate} is not mentioned in the request"
            )
            improvements.append(f"Remove {predicate} unless it is intended")

        if not filter_intent.constraints:
            note = "No filter conditions requested"
        elif satisfied:
            note = f"Filters on {join_texts(satisfied)} match the requested conditions"
        else:
            note = "Filters checked against the requested conditions"
        return self.result(
            note,
            mismatches=mismatches,
            partials=partials,
            improvements=improvements,
            required=filter_intent.required,
        )


def _inner_conditions(graph: JoinGraph) -> set[str]:
    conditions = set()
    for edge in graph.edges:
        if edge.kind is JoinKind.INNER and edge.condition:
            conditions.update(edge.condition.split(" AND "))
    return conditions


def _clause(predicate: Predicate) -> str:
    return "HAVING" if predicate.clause == "having" else "WHERE"


def _value_matches(constraint: ValueConstraint, predicate: Predicate) -> bool:
    year = _year(constraint.value)
    for literal in predicate.literals:
        if _same_value(constraint.value, literal, fuzzy=constraint.op is None):
            return True
        if year is not None:
            found = _year(literal[:4])
            if found is not None and abs(found - year) <= 1:
                return True
    return False


def _same_value(expected: str, literal: str, fuzzy: bool) -> bool:
    if normalize_number(expected) == normalize_number(literal):
        return True
    wanted, text = expected.lower(), literal.lower()
    if wanted == text or wanted == text.strip("%"):
        return True
    return fuzzy and bool(wanted) and wanted in text


def _mentions(value: str, condition: str) -> bool:
    return f"'{value.lower()}'" in condition.lower() or f" {normalize_number(value)}" in condition


def _year(value: str) -> Optional[int]:
    if len(value) != 4 or not value.isdigit():
        return None
    number = int(value)
    return number if 1900 <= number <= 2099 else None


def _same_or_linked(expected: ColumnId, column: ColumnId, schema: SchemaModel) -> bool:
    """Same column, or the two ends of one foreign key."""
    if same_column(expected, column):
        return True
    for fk in schema.foreign_keys():
        ends = {
            (fk.table, fk.column.lower()),
            (fk.ref_table, fk.ref_column.lower()),
        }
        if {
            (base_table(expected.table), expected.column.lower()),
            (base_table(column.table), column.column.lower()),
        } == ends:
            return True
    return False


def _operator_fit(constraint: ValueConstraint, candidates: list[Predicate]) -> str:
    """Rate the best candidate's operator against the requested one."""
    if constraint.op is None or _year(constraint.value) is not None:
        return "match"
    best = "mismatch"
    for predicate in candidates:
        if predicate.op is None or predicate.op == constraint.op:
            return "match"
        if _DIRECTIONS.get(predicate.op) == _DIRECTIONS.get(constraint.op):
            best = "partial"
    return best

"""
Aggregation Verifier
====================

Checks aggregate functions and the GROUP BY key set.
"""

from sql_verifier.facets.model import Aggregate, JoinKind, QueryFacets
from sql_verifier.intent.shape import AggregationIntent, IntentMode, IntentShape
from sql_verifier.models import Facet, FacetResult
from sql_verifier.schema import SchemaModel
from sql_verifier.verifiers.base import (
    FacetVerifier,
    base_table,
    covers_table,
    join_texts,
    key_hint,
    same_column,
)

OUTER_KINDS = (JoinKind.LEFT, JoinKind.RIGHT, JoinKind.FULL)


class AggregationVerifier(FacetVerifier):
    """
    Compares aggregation and grouping with the request.

    ``COUNT(*)`` and ``COUNT(col)`` are different aggregates: the former
    counts rows, the latter skips NULLs in ``col``.
    """

    facet = Facet.AGGREGATIONS

    @property
    def name(self) -> str:
        return "AggregationVerifier"

    def compare(
        self, facets: QueryFacets, intent: IntentShape, schema: SchemaModel
    ) -> FacetResult:
        wanted = intent.aggregation
        if intent.mode is IntentMode.REFERENCE and wanted.aggregates is not None:
            return self._compare_reference(facets, wanted)
        return self._compare_heuristic(facets, intent, schema)

    # ------------------------------------------------------------------
    # Reference mode

    def _compare_reference(self, facets: QueryFacets, wanted: AggregationIntent) -> FacetResult:
        mismatches, partials, improvements = [], [], []
        expected_aggs = sorted(wanted.aggregates, key=str)

        if wanted.expects_aggregation and not facets.has_aggregation:
            mismatches.append(
                f"Aggregation mismatch: expected {join_texts(expected_aggs) or 'grouping'} "
                "but the query does not aggregate"
            )
            improvements.append("Aggregate the rows as the request asks")
        elif not wanted.expects_aggregation and facets.has_aggregation:
            mismatches.append(
                "Aggregation mismatch: a plain listing is expected but the query aggregates "
                f"with {_describe(facets)}"
            )
            improvements.append("Remove the aggregation and GROUP BY")
        elif facets.has_aggregation:
            missing = [a for a in expected_aggs if a not in facets.aggregates]
            extra = [a for a in sorted(facets.aggregates, key=str) if a not in wanted.aggregates]
            for aggregate in missing:
                replacement = next((a for a in extra if a.function == aggregate.function), None)
                if replacement is not None:
                    extra.remove(replacement)
                    mismatches.append(
                        f"Aggregation mismatch: expected {aggregate} but found {replacement}"
                    )
                    improvements.append(f"Use {aggregate} instead of {replacement}")
                else:
                    mismatches.append(f"Aggregation mismatch: missing aggregate {aggregate}")
                    improvements.append(f"Compute {aggregate}")
            for aggregate in extra:
                partials.append(f"Aggregation partial: extra aggregate {aggregate}")

            expected_keys = _keys(wanted.grouping, wanted.grouping_expressions)
            found_keys = _keys(facets.grouping, facets.grouping_expressions)
            if expected_keys != found_keys:
                expected_text = join_texts(expected_keys) or "no GROUP BY"
                found_text = join_texts(found_keys) or "no GROUP BY"
                same_tables = {base_table(c.table) for c in wanted.grouping} == {
                    base_table(c.table) for c in facets.grouping
                }
                if same_tables and wanted.grouping and facets.grouping:
                    partials.append(
                        f"Aggregation partial: grouped by {found_text} instead of {expected_text}"
                    )
                else:
                    mismatches.append(
                        f"Aggregation mismatch: expected GROUP BY {expected_text} "
                        f"but found {found_text}"
                    )
                improvements.append(f"GROUP BY {expected_text}")

        return self.result(
            _note(facets),
            mismatches=mismatches,
            partials=partials,
            improvements=improvements,
            required=wanted.required,
        )

    # ------------------------------------------------------------------
    # Heuristic mode

    def _compare_heuristic(
        self, facets: QueryFacets, intent: IntentShape, schema: SchemaModel
    ) -> FacetResult:
        wanted = intent.aggregation
        note = _note(facets)
        if wanted.expects_aggregation is None:
            return self.result(note, required=wanted.required)

        mismatches, partials, improvements = [], [], []
        aggregates = facets.all_aggregates()
        grouping = [column for level in facets.walk() for column in level.grouping]
        grouping_expressions = [e for level in facets.walk() for e in level.grouping_expressions]

        if not wanted.expects_aggregation:
            if any(item.is_aggregate for item in facets.projection):
                mismatches.append(
                    "Aggregation mismatch: the request asks for a plain listing but the query "
                    f"aggregates with {_describe(facets)}"
                )
                improvements.append("Return the rows themselves instead of aggregates")
            elif facets.has_aggregation:
                partials.append(
                    f"Aggregation partial: the query groups rows with {_describe(facets)} "
                    "although the request asks for a plain listing"
                )
            return self.result(
                note,
                mismatches=mismatches,
                partials=partials,
                improvements=improvements,
                required=wanted.required,
            )

        functions = sorted(wanted.functions or ())
        if not aggregates and not grouping and not grouping_expressions:
            asked = join_texts(functions) or "an aggregate"
            mismatches.append(
                f"Aggregation mismatch: the request asks for {asked} but the query does not "
                "aggregate"
            )
            improvements.append(f"Use {asked} with a GROUP BY on the requested entity")
            return self.result(
                note, mismatches=mismatches, improvements=improvements, required=wanted.required
            )

        found_functions = {aggregate.function for aggregate in aggregates}
        for function in functions:
            if function in found_functions:
                continue
            found = join_texts(sorted(found_functions)) or "no aggregate"
            mismatches.append(
                f"Aggregation mismatch: the request asks for {function} but the query uses {found}"
            )
            improvements.append(f"Use {function}(...) for the requested value")

        for table in sorted(wanted.grouping_tables or ()):
            if covers_table(grouping, table, schema):
                continue
            if grouping or grouping_expressions:
                keys = join_texts(_keys(frozenset(grouping), frozenset(grouping_expressions)))
                mismatches.append(
                    f"Aggregation mismatch: expected grouping per {table} but the query groups "
                    f"by {keys}"
                )
            else:
                mismatches.append(
                    f"Aggregation mismatch: expected grouping per {table} but the query has "
                    "no GROUP BY"
                )
            improvements.append(f"GROUP BY {key_hint(table, schema)}")

        for column in sorted(wanted.grouping_columns or (), key=str):
            if any(same_column(column, key) for key in grouping):
                continue
            if any(str(column) in text for text in grouping_expressions):
                continue
            mismatches.append(f"Aggregation mismatch: expected GROUP BY {column}")
            improvements.append(f"GROUP BY {column}")

        aggregated = frozenset().union(*(a.columns for a in aggregates)) if aggregates else ()
        for measure in sorted(wanted.measures or (), key=str):
            if not any(same_column(measure, column) for column in aggregated):
                partials.append(f"Aggregation partial: {measure} is not aggregated")
                improvements.append(f"Aggregate {measure}")

        self._check_outer_count(facets, intent, aggregates, mismatches, improvements, schema)

        return self.result(
            f"{note} matches the requested aggregation",
            mismatches=mismatches,
            partials=partials,
            improvements=improvements,
            required=wanted.required,
        )

    def _check_outer_count(
        self,
        facets: QueryFacets,
        intent: IntentShape,
        aggregates: list[Aggregate],
        mismatches: list[str],
        improvements: list[str],
        schema: SchemaModel,
    ) -> None:
        """COUNT(*) over an outer join counts the NULL row of unmatched entities as 1."""
        if not intent.joins.preserve:
            return
        optional = set()
        for edge in facets.joins.edges:
            if edge.kind in OUTER_KINDS:
                optional |= edge.endpoints - edge.preserved
        if not optional:
            return
        for aggregate in aggregates:
            if aggregate.function == "COUNT" and aggregate.argument == "*":
                side = sorted(optional)[0]
                mismatches.append(
                    f"Aggregation mismatch: COUNT(*) counts unmatched "
                    f"{join_texts(sorted(intent.joins.preserve))} rows as 1"
                )
                improvements.append(
                    f"Count a column of {side} instead, e.g. COUNT({_column_hint(side, schema)})"
                )
                return


def _keys(columns, expressions) -> list[str]:
    return sorted(str(column) for column in columns) + sorted(expressions)


def _describe(facets: QueryFacets) -> str:
    parts = []
    if facets.aggregates:
        parts.append(join_texts(sorted(facets.aggregates, key=str)))
    keys = _keys(facets.grouping, facets.grouping_expressions)
    if keys:
        parts.append(f"GROUP BY {join_texts(keys)}")
    return " ".join(parts) or "aggregates in a subquery"


def _note(facets: QueryFacets) -> str:
    if not facets.has_aggregation:
        nested = facets.all_aggregates()
        if nested:
            return "Aggregates only inside subqueries: " + join_texts(nested)
        return "No aggregation"
    aggregates = join_texts(sorted(facets.aggregates, key=str))
    keys = _keys(facets.grouping, facets.grouping_expressions)
    if aggregates and keys:
        return f"{aggregates} with GROUP BY {join_texts(keys)}"
    if aggregates:
        return f"{aggregates} over all rows"
    return f"GROUP BY {join_texts(keys)}"


def _column_hint(identity: str, schema: SchemaModel) -> str:
    hint = key_hint(base_table(identity), schema)
    return identity + hint[hint.index(".") :]

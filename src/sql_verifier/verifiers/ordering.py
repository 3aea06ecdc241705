"""
Ordering Verifier
=================

Checks ORDER BY direction, sort keys and the row limit.
"""

from sql_verifier.facets.model import LimitSpec, OrderItem, QueryFacets, SortDirection
from sql_verifier.intent.shape import IntentMode, IntentShape, OrderingIntent
from sql_verifier.models import Facet, FacetResult
from sql_verifier.schema import SchemaModel
from sql_verifier.verifiers.base import FacetVerifier, join_texts, same_column

_DIRECTION_WORDS = {SortDirection.ASC: "ascending", SortDirection.DESC: "descending"}
_EXTREMUM_WORDS = {SortDirection.ASC: "lowest", SortDirection.DESC: "highest"}
_EXTREMUM_FUNCTIONS = {SortDirection.ASC: "MIN", SortDirection.DESC: "MAX"}


class OrderingVerifier(FacetVerifier):
    """
    Compares ordering and limiting with the request.

    A rank or extremum request needs the matching sort direction and row
    limit. An extremum can also be computed with MAX/MIN, which returns
    ties; that only matters when the request asks for exactly one row.
    """

    facet = Facet.SORTING

    @property
    def name(self) -> str:
        return "OrderingVerifier"

    def compare(
        self, facets: QueryFacets, intent: IntentShape, schema: SchemaModel
    ) -> FacetResult:
        wanted = intent.ordering
        if intent.mode is IntentMode.REFERENCE and wanted.items is not None:
            return self._compare_reference(facets, wanted)
        return self._compare_heuristic(facets, wanted)

    # ------------------------------------------------------------------
    # Reference mode

    def _compare_reference(self, facets: QueryFacets, wanted: OrderingIntent) -> FacetResult:
        expected, found = wanted.items, facets.ordering
        mismatches, partials, improvements = [], [], []

        note = _note(facets)
        if not expected:
            if found:
                note += "; the reference query does not require an order"
        else:
            if not found:
                mismatches.append(
                    f"Sorting mismatch: expected ORDER BY {join_texts(expected)} "
                    "but the query has no ORDER BY"
                )
                improvements.append(f"Add ORDER BY {join_texts(expected)}")
            for index, item in enumerate(expected if found else ()):
                actual = found[index] if index < len(found) else None
                if actual is None:
                    mismatches.append(f"Sorting mismatch: missing sort key {item}")
                    improvements.append(f"Add {item} to the ORDER BY")
                elif actual.expression != item.expression:
                    mismatches.append(
                        f"Sorting mismatch: expected sort key {item.expression} "
                        f"but found {actual.expression}"
                    )
                    improvements.append(f"ORDER BY {item}")
                elif actual.direction is not item.direction:
                    mismatches.append(
                        f"Sorting mismatch: expected {item.expression} "
                        f"{_DIRECTION_WORDS[item.direction]} but the query sorts "
                        f"{_DIRECTION_WORDS[actual.direction]}"
                    )
                    improvements.append(f"ORDER BY {item}")
            for item in found[len(expected) :]:
                partials.append(f"Sorting partial: extra sort key {item}")

        expected_limit = wanted.limit or LimitSpec()
        if expected_limit != facets.limit:
            mismatches.append(_limit_issue(expected_limit, facets.limit))
            improvements.append(_limit_fix(expected_limit))

        return self.result(
            note,
            mismatches=mismatches,
            partials=partials,
            improvements=improvements,
            required=wanted.required,
        )

    # ------------------------------------------------------------------
    # Heuristic mode

    def _compare_heuristic(self, facets: QueryFacets, wanted: OrderingIntent) -> FacetResult:
        note = _note(facets)
        mismatches, partials, improvements = [], [], []
        found, limit = facets.ordering, facets.limit

        if not wanted.constrained:
            if limit.bounded:
                partials.append(
                    f"Sorting partial: the query applies {limit} but the request asks for no limit"
                )
                improvements.append("Remove the LIMIT unless it is intended")
            return self.result(
                note, partials=partials, improvements=improvements, required=wanted.required
            )

        direction = wanted.direction
        if wanted.extremum and direction is not None:
            self._check_extremum(facets, wanted, mismatches, improvements)
        else:
            if (direction is not None or wanted.key_columns) and not found:
                asked = (
                    f"{_DIRECTION_WORDS[direction]} order"
                    if direction is not None
                    else f"order of {join_texts(sorted(wanted.key_columns, key=str))}"
                )
                mismatches.append(
                    f"Sorting mismatch: expected results in {asked} but the query has no ORDER BY"
                )
                improvements.append(_order_fix(facets, wanted))
            elif found:
                first = found[0]
                if direction is not None and first.direction is not direction:
                    mismatches.append(
                        f"Sorting mismatch: expected {_DIRECTION_WORDS[direction]} order but "
                        f"the query sorts {first.expression} {_DIRECTION_WORDS[first.direction]}"
                    )
                    improvements.append(f"ORDER BY {first.expression} {direction.value.upper()}")
                self._check_keys(found, wanted, mismatches, improvements)

            if wanted.limit is not None and wanted.limit.count != limit.count:
                mismatches.append(_limit_issue(wanted.limit, limit))
                improvements.append(_limit_fix(wanted.limit))
            elif wanted.limit is None and limit.bounded:
                partials.append(
                    f"Sorting partial: the query applies {limit} but the request asks for no limit"
                )
                improvements.append("Remove the LIMIT unless it is intended")

        if found and direction is not None:
            note = (
                f"Results sorted by {found[0].expression} {_DIRECTION_WORDS[found[0].direction]}"
            )
            if limit.bounded:
                note += f", {limit}"
            note += ", as requested"
        return self.result(
            note,
            mismatches=mismatches,
            partials=partials,
            improvements=improvements,
            required=wanted.required,
        )

    def _check_extremum(
        self,
        facets: QueryFacets,
        wanted: OrderingIntent,
        mismatches: list[str],
        improvements: list[str],
    ) -> None:
        """The single highest/lowest row: ORDER BY ... LIMIT 1, or MAX/MIN."""
        direction = wanted.direction
        found, limit = facets.ordering, facets.limit
        word = _EXTREMUM_WORDS[direction]

        if found and limit.count == 1 and not limit.offset:
            if found[0].direction is not direction:
                mismatches.append(
                    f"Sorting mismatch: expected the {word} value but the query sorts "
                    f"{found[0].expression} {_DIRECTION_WORDS[found[0].direction]}"
                )
                improvements.append(
                    f"ORDER BY {found[0].expression} {direction.value.upper()} LIMIT 1"
                )
            self._check_keys(found, wanted, mismatches, improvements)
            return

        functions = {aggregate.function for aggregate in facets.all_aggregates()}
        if _EXTREMUM_FUNCTIONS[direction] in functions:
            if wanted.exact_cardinality and not limit.bounded:
                mismatches.append(
                    "Sorting mismatch: expected exactly one row but "
                    f"{_EXTREMUM_FUNCTIONS[direction]} returns every tied row"
                )
                improvements.append(f"Add ORDER BY ... {direction.value.upper()} LIMIT 1")
            return
        opposite = _EXTREMUM_FUNCTIONS[
            SortDirection.ASC if direction is SortDirection.DESC else SortDirection.DESC
        ]
        if opposite in functions and not found:
            mismatches.append(
                f"Sorting mismatch: expected the {word} value but the query uses {opposite}"
            )
            improvements.append(f"Use {_EXTREMUM_FUNCTIONS[direction]} instead of {opposite}")
            return

        if not found:
            mismatches.append(
                f"Sorting mismatch: expected the {word} value but the query neither sorts "
                f"nor uses {_EXTREMUM_FUNCTIONS[direction]}"
            )
            improvements.append(f"Add ORDER BY ... {direction.value.upper()} LIMIT 1")
        elif not limit.bounded:
            mismatches.append(
                f"Sorting mismatch: expected only the {word} row but the query has no LIMIT"
            )
            improvements.append("Add LIMIT 1")
        else:
            mismatches.append(_limit_issue(LimitSpec(count=1), limit))
            improvements.append("Use LIMIT 1")

    def _check_keys(
        self,
        found: tuple[OrderItem, ...],
        wanted: OrderingIntent,
        mismatches: list[str],
        improvements: list[str],
    ) -> None:
        if not wanted.key_columns:
            return
        columns = [column for item in found for column in item.columns]
        for key in sorted(wanted.key_columns, key=str):
            if any(same_column(key, column) for column in columns):
                continue
            mismatches.append(
                f"Sorting mismatch: expected results sorted by {key} but the query sorts by "
                f"{join_texts(item.expression for item in found)}"
            )
            improvements.append(f"ORDER BY {key}")


def _note(facets: QueryFacets) -> str:
    if facets.ordering:
        note = f"Sorted by {join_texts(facets.ordering)}"
    else:
        note = "No ORDER BY"
    if facets.limit.bounded:
        note += f", {facets.limit}"
    return note


def _limit_issue(expected: LimitSpec, found: LimitSpec) -> str:
    if not expected.bounded:
        return f"Sorting mismatch: the query applies {found} but all rows are expected"
    if not found.bounded:
        return f"Sorting mismatch: expected {expected} but the query returns all rows"
    return f"Sorting mismatch: expected {expected} but found {found}"


def _limit_fix(expected: LimitSpec) -> str:
    return f"Use {expected}" if expected.bounded else "Remove the LIMIT"


def _order_fix(facets: QueryFacets, wanted: OrderingIntent) -> str:
    direction = f" {wanted.direction.value.upper()}" if wanted.direction is not None else ""
    if wanted.key_columns:
        keys = join_texts(sorted(wanted.key_columns, key=str))
        return f"Add ORDER BY {keys}{direction}"
    aggregates = [item for item in facets.projection if item.is_aggregate]
    if aggregates:
        return f"Add ORDER BY {aggregates[0]}{direction}"
    return f"Add ORDER BY <sort key>{direction}"

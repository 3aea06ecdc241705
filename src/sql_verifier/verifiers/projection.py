"""
Projection Verifier
===================

Checks that the query returns the requested output attributes.
"""

from typing import Optional

from sql_verifier.facets.model import QueryFacets, ResolvedExpr
from sql_verifier.intent.shape import IntentMode, IntentShape, ProjectionIntent
from sql_verifier.models import Facet, FacetResult
from sql_verifier.schema import SchemaModel
from sql_verifier.verifiers.base import (
    FacetVerifier,
    covers_table,
    join_texts,
    key_hint,
    same_column,
)


class ProjectionVerifier(FacetVerifier):
    """
    Compares the SELECT list with the expected outputs.

    Outputs are compared by resolved column identity, so ``c.name`` and
    ``customers.name`` are the same attribute. Extra columns, rounding or
    casting differences and a DISTINCT disagreement are partial matches.
    """

    facet = Facet.SELECT

    @property
    def name(self) -> str:
        return "ProjectionVerifier"

    def compare(
        self, facets: QueryFacets, intent: IntentShape, schema: SchemaModel
    ) -> FacetResult:
        wanted = intent.projection
        note = "Returns " + (join_texts(facets.projection) or "no columns")
        if intent.mode is IntentMode.REFERENCE and wanted.expressions is not None:
            return self._compare_reference(facets, wanted, note)
        return self._compare_heuristic(facets, wanted, schema, note)

    def _compare_reference(
        self, facets: QueryFacets, wanted: ProjectionIntent, note: str
    ) -> FacetResult:
        found = list(facets.projection)
        used: set[int] = set()
        mismatches, partials, improvements = [], [], []

        for expected in wanted.expressions:
            index = _find(found, used, lambda item: item.text == expected.text)
            if index is not None:
                used.add(index)
                continue
            index = _find(found, used, lambda item: bool(item.core) and item.core == expected.core)
            if index is not None:
                used.add(index)
                partials.append(
                    f"Projection partial: {found[index]} differs from {expected} "
                    "only in rounding or casting"
                )
                improvements.append(f"Return {expected} instead of {found[index]}")
                continue
            mismatches.append(f"Projection mismatch: missing output {expected}")
            improvements.append(f"Add {expected} to the SELECT list")

        extras = [item for index, item in enumerate(found) if index not in used]
        if extras:
            partials.append(f"Projection partial: extra output columns {join_texts(extras)}")
            improvements.append(f"Remove {join_texts(extras)} from the SELECT list unless needed")

        if wanted.distinct is not None and wanted.distinct != facets.distinct:
            if wanted.distinct:
                partials.append("Projection partial: DISTINCT expected but duplicates are kept")
                improvements.append("Use SELECT DISTINCT")
            else:
                partials.append(
                    "Projection partial: the query uses DISTINCT but duplicates are expected"
                )
                improvements.append("Remove DISTINCT")

        return self.result(
            note,
            mismatches=mismatches,
            partials=partials,
            improvements=improvements,
            required=wanted.required,
        )

    def _compare_heuristic(
        self,
        facets: QueryFacets,
        wanted: ProjectionIntent,
        schema: SchemaModel,
        note: str,
    ) -> FacetResult:
        projected = facets.projected_columns
        # Columns the query filters or sorts on count as addressed
        referenced = facets.referenced_columns
        mismatches, improvements = [], []

        for column in sorted(wanted.columns or (), key=str):
            if any(same_column(column, found) for found in referenced):
                continue
            mismatches.append(
                f"Projection mismatch: the request mentions {column} "
                "but the query does not return it"
            )
            improvements.append(f"Add {column} to the SELECT list")

        for entity in sorted(wanted.entities or ()):
            if covers_table(projected, entity, schema):
                continue
            mismatches.append(
                f"Projection mismatch: the request asks for {entity} "
                f"but the query returns no {entity} column"
            )
            improvements.append(f"Select an identifying column such as {key_hint(entity, schema)}")

        if wanted.distinct and not facets.distinct:
            mismatches.append("Projection mismatch: duplicates are not removed")
            improvements.append("Use SELECT DISTINCT")

        return self.result(
            note,
            mismatches=mismatches,
            improvements=improvements,
            required=wanted.required,
        )


def _find(items: list[ResolvedExpr], used: set[int], predicate) -> Optional[int]:
    for index, item in enumerate(items):
        if index not in used and predicate(item):
            return index
    return None

"""
Base Facet Verifier Classes
===========================

Abstract base class for facet comparators and the chain that runs them.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from sql_verifier.facets.model import QueryFacets
from sql_verifier.intent.shape import IntentShape
from sql_verifier.models import Facet, FacetResult, MatchStatus
from sql_verifier.parsing.bound import ColumnId
from sql_verifier.schema import ForeignKey, SchemaModel


class FacetVerifier(ABC):
    """Base class for all facet comparators."""

    facet: Facet

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for this verifier."""
        pass

    @abstractmethod
    def compare(
        self, facets: QueryFacets, intent: IntentShape, schema: SchemaModel
    ) -> FacetResult:
        """
        Compare one facet of the query with the expected shape.

        Args:
            facets: Facets of the candidate query
            intent: Expected shape of the answer
            schema: Schema the query is bound to

        Returns:
            FacetResult with match, partial or mismatch status
        """
        pass

    def result(
        self,
        note: str,
        mismatches: Iterable[str] = (),
        partials: Iterable[str] = (),
        improvements: Iterable[str] = (),
        required: bool = True,
    ) -> FacetResult:
        """
        Build a result; any mismatch issue wins over partial ones.

        ``note`` describes the facet when it matches. Mismatches replace it,
        partial differences are appended to it.
        """
        mismatches, partials = _unique(list(mismatches)), _unique(list(partials))
        if mismatches:
            status = MatchStatus.MISMATCH
            note = "; ".join(mismatches)
        elif partials:
            status = MatchStatus.PARTIAL
            note = "; ".join([note] + partials)
        else:
            status = MatchStatus.MATCH
        return FacetResult(
            facet=self.facet,
            status=status,
            note=note,
            issues=tuple(_unique(mismatches + partials)),
            improvements=tuple(_unique(improvements)),
            required=required,
        )


class FacetChain:
    """Runs every facet comparator; facets are independent, so none stops the chain."""

    def __init__(self, verifiers: Optional[list[FacetVerifier]] = None) -> None:
        """
        Initialize the chain.

        Args:
            verifiers: Comparators to run. Defaults to one per facet.
        """
        if verifiers is not None:
            self.verifiers = verifiers
        else:
            # Lazy import to avoid circular imports
            from sql_verifier.verifiers.aggregation import AggregationVerifier
            from sql_verifier.verifiers.filters import FilterVerifier
            from sql_verifier.verifiers.joins import JoinVerifier
            from sql_verifier.verifiers.ordering import OrderingVerifier
            from sql_verifier.verifiers.projection import ProjectionVerifier

            self.verifiers = [
                ProjectionVerifier(),
                JoinVerifier(),
                FilterVerifier(),
                AggregationVerifier(),
                OrderingVerifier(),
            ]

    def run(
        self, facets: QueryFacets, intent: IntentShape, schema: SchemaModel
    ) -> list[FacetResult]:
        """
        Run all comparators.

        Returns:
            One FacetResult per comparator, in chain order
        """
        return [verifier.compare(facets, intent, schema) for verifier in self.verifiers]


def _unique(items: list[str]) -> list[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def join_texts(items: Iterable[object]) -> str:
    return ", ".join(str(item) for item in items)


def base_table(identity: str) -> str:
    """Table name behind a join-graph node (``orders#2`` -> ``orders``)."""
    return identity.split("#", 1)[0]


def covers_table(columns: Iterable[ColumnId], table: str, schema: SchemaModel) -> bool:
    """Whether any column belongs to ``table`` or is a foreign key into it."""
    for column in columns:
        if base_table(column.table) == table:
            return True
        owner = schema.resolve_table(base_table(column.table))
        if owner is not None and owner.references(column.column, table):
            return True
    return False


def same_column(a: ColumnId, b: ColumnId) -> bool:
    """Compare column identities, ignoring self-join suffixes and case."""
    return (
        base_table(a.table) == base_table(b.table)
        and a.column.lower() == b.column.lower()
    )


def key_hint(table: str, schema: SchemaModel) -> str:
    """A column that identifies rows of ``table``, for suggestions."""
    resolved = schema.resolve_table(table)
    if resolved is None:
        return f"{table}.id"
    if resolved.primary_key:
        return f"{resolved.name}.{sorted(resolved.primary_key)[0]}"
    return f"{resolved.name}.{resolved.columns[0].name}"


def fk_condition(fk: ForeignKey, identities: Optional[dict[str, str]] = None) -> str:
    """Canonical equality text for a foreign key, as join conditions render it."""
    identities = identities or {}
    left = f"{identities.get(fk.table, fk.table)}.{fk.column}"
    right = f"{identities.get(fk.ref_table, fk.ref_table)}.{fk.ref_column}"
    return " = ".join(sorted((left, right)))

"""
Judgment Aggregator
===================

Folds per-facet results into the final verdict.
"""

from dataclasses import replace
from typing import Optional

from sql_verifier.config import VerifierConfig
from sql_verifier.intent.shape import IntentMode, IntentShape
from sql_verifier.models import Facet, FacetResult, MatchStatus, Verdict


class JudgmentAggregator:
    """
    Combines facet results into a Verdict.

    A mismatch on a facet the request does not constrain is reported as a
    partial match. ``correct`` holds when no facet is a mismatch. Confidence
    grows with the share of clean matches and is capped lower when the
    intent was inferred from wording instead of a reference query.
    """

    def __init__(self, config: Optional[VerifierConfig] = None) -> None:
        self.config = config or VerifierConfig()

    def aggregate(self, results: list[FacetResult], intent: IntentShape) -> Verdict:
        """
        Build the verdict for one evaluation.

        Args:
            results: One FacetResult per facet
            intent: Expected shape the results were compared against

        Returns:
            Verdict with components keyed by facet
        """
        results = [_settle(result) for result in _in_facet_order(results)]
        mismatched = [r for r in results if r.status is MatchStatus.MISMATCH]
        partial = [r for r in results if r.status is MatchStatus.PARTIAL]

        issues: list[str] = []
        improvements: list[str] = []
        for result in results:
            issues.extend(i for i in result.issues if i not in issues)
            improvements.extend(i for i in result.improvements if i not in improvements)

        return Verdict(
            correct=not mismatched,
            explanation=self._explain(mismatched, partial, intent),
            components={result.facet.value: result.note for result in results},
            issues=tuple(issues),
            improvements=tuple(improvements),
            confidence=self.confidence(results, intent),
            facet_results=tuple(results),
        )

    def confidence(self, results: list[FacetResult], intent: IntentShape) -> float:
        if intent.mode is IntentMode.REFERENCE:
            cap = self.config.reference_confidence_cap
        else:
            cap = self.config.heuristic_confidence_cap
        clean = sum(1 for result in results if result.clean) / len(results) if results else 1.0
        score = cap * (0.5 + 0.5 * clean) - self.config.underspecified_penalty * len(intent.notes)
        return round(min(1.0, max(0.0, score)), 4)

    def _explain(
        self,
        mismatched: list[FacetResult],
        partial: list[FacetResult],
        intent: IntentShape,
    ) -> str:
        source = (
            "the reference query"
            if intent.mode is IntentMode.REFERENCE
            else "the intent inferred from the request"
        )
        if mismatched:
            labels = ", ".join(result.facet.label.lower() for result in mismatched)
            text = (
                f"The query does not correctly answer the request: compared with {source}, "
                f"it disagrees on {labels}. {_first_issue(mismatched[0])}."
            )
        elif partial:
            labels = ", ".join(result.facet.label.lower() for result in partial)
            text = (
                f"The query answers the request; compared with {source} it differs only "
                f"in minor ways ({labels})."
            )
        else:
            text = f"The query answers the request; every facet matches {source}."
        if intent.notes:
            text += " Some parts of the request could not be interpreted: " + "; ".join(
                str(note) for note in intent.notes
            ) + "."
        return text


def _settle(result: FacetResult) -> FacetResult:
    """Report mismatches on unconstrained facets as partial matches."""
    if result.required or result.status is not MatchStatus.MISMATCH:
        return result
    return replace(
        result,
        status=MatchStatus.PARTIAL,
        note=result.note.replace(" mismatch:", " partial:"),
        issues=tuple(issue.replace(" mismatch:", " partial:", 1) for issue in result.issues),
    )


def _in_facet_order(results: list[FacetResult]) -> list[FacetResult]:
    order = {facet: index for index, facet in enumerate(Facet)}
    return sorted(results, key=lambda result: order[result.facet])


def _first_issue(result: FacetResult) -> str:
    return result.issues[0] if result.issues else result.note

"""
Data Models
===========

Core data structures for the SQL semantic verifier.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from sql_verifier.errors import FailureKind, VerificationError
from sql_verifier.facets.model import QueryFacets
from sql_verifier.intent.shape import IntentShape
from sql_verifier.schema import SchemaModel


class Facet(str, Enum):
    """Checkable dimensions of a query, keyed by their verdict component name."""

    SELECT = "select"
    FROM_JOINS = "from_joins"
    FILTERS = "filters"
    AGGREGATIONS = "aggregations"
    SORTING = "sorting"

    @property
    def label(self) -> str:
        return _FACET_LABELS[self]


_FACET_LABELS = {
    Facet.SELECT: "Projection",
    Facet.FROM_JOINS: "Joins",
    Facet.FILTERS: "Filters",
    Facet.AGGREGATIONS: "Aggregation",
    Facet.SORTING: "Sorting",
}


class MatchStatus(str, Enum):
    """Outcome of comparing one facet with the expected shape."""

    MATCH = "match"
    PARTIAL = "partial"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class FacetResult:
    """Result of a single facet comparison."""

    facet: Facet
    status: MatchStatus
    note: str
    issues: tuple[str, ...] = ()
    improvements: tuple[str, ...] = ()
    required: bool = True

    @property
    def clean(self) -> bool:
        return self.status is MatchStatus.MATCH


class Stage(str, Enum):
    """States of one evaluation."""

    PARSING = "parsing"
    BINDING = "binding"
    DECOMPOSING = "decomposing"
    INTENT_EXTRACTION = "intent_extraction"
    COMPARING = "comparing"
    AGGREGATED = "aggregated"
    FAILED = "failed"


@dataclass(frozen=True)
class Verdict:
    """Final judgment for one evaluation. Never mutated after creation."""

    correct: bool
    explanation: str
    components: Mapping[str, str]
    issues: tuple[str, ...] = ()
    improvements: tuple[str, ...] = ()
    confidence: float = 0.0
    facet_results: tuple[FacetResult, ...] = field(default=(), compare=False)
    failure: Optional[FailureKind] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "components", MappingProxyType(dict(self.components)))

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the documented JSON contract."""
        return {
            "correct": self.correct,
            "explanation": self.explanation,
            "components": {facet.value: self.components.get(facet.value, "") for facet in Facet},
            "issues": list(self.issues),
            "improvements": list(self.improvements),
            "confidence": self.confidence,
        }

    @classmethod
    def from_failure(cls, error: VerificationError, confidence: float = 1.0) -> "Verdict":
        """Surface a fatal evaluation error as an incorrect verdict."""
        note = f"Not evaluated: {error.kind.value.replace('_', ' ')}"
        return cls(
            correct=False,
            explanation=f"The query could not be analysed. {error.message}",
            components={facet.value: note for facet in Facet},
            issues=(error.message,),
            improvements=(error.suggestion,),
            confidence=confidence,
            failure=error.kind,
        )


@dataclass
class EvaluationRequest:
    """Input to one evaluation."""

    schema: Union[SchemaModel, dict]
    nl_query: str
    sql_query: str
    reference_query: Optional[str] = None


@dataclass
class EvaluationOutcome:
    """Terminal state of an evaluation with the intermediate artefacts."""

    stage: Stage
    verdict: Verdict
    error: Optional[VerificationError] = None
    facets: Optional[QueryFacets] = None
    intent: Optional[IntentShape] = None
    stages: list[Stage] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.stage is Stage.FAILED

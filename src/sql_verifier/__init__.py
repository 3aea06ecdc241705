"""
SQL Semantic Verifier
=====================

Last-mile verification that a SQL query answers a natural-language request.
"""

from sql_verifier.config import VerifierConfig
from sql_verifier.errors import (
    AmbiguousReferenceError,
    FailureKind,
    SchemaError,
    SQLSyntaxError,
    TooComplexError,
    UnresolvedReferenceError,
    VerificationError,
)
from sql_verifier.models import (
    EvaluationOutcome,
    EvaluationRequest,
    Facet,
    FacetResult,
    MatchStatus,
    Stage,
    Verdict,
)
from sql_verifier.schema import SAMPLE_SCHEMA, SchemaModel
from sql_verifier.intent import (
    DefaultIntentExtractor,
    HeuristicIntentExtractor,
    IntentExtractor,
    IntentShape,
    ReferenceIntentExtractor,
)
from sql_verifier.verifiers import FacetChain, FacetVerifier, JudgmentAggregator
from sql_verifier.verifier import SemanticVerifier
from sql_verifier.extraction import extract_sql_from_response

__version__ = "0.1.0"

__all__ = [
    # Models
    "Facet",
    "MatchStatus",
    "FacetResult",
    "Stage",
    "Verdict",
    "EvaluationRequest",
    "EvaluationOutcome",
    # Errors
    "FailureKind",
    "SchemaError",
    "VerificationError",
    "SQLSyntaxError",
    "UnresolvedReferenceError",
    "AmbiguousReferenceError",
    "TooComplexError",
    # Configuration and schema
    "VerifierConfig",
    "SchemaModel",
    "SAMPLE_SCHEMA",
    # Intent
    "IntentExtractor",
    "IntentShape",
    "DefaultIntentExtractor",
    "HeuristicIntentExtractor",
    "ReferenceIntentExtractor",
    # Verification
    "FacetVerifier",
    "FacetChain",
    "JudgmentAggregator",
    "SemanticVerifier",
    "extract_sql_from_response",
]

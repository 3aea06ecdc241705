"""
Intent Module
=============

Strategies that turn a natural-language request into an expected shape.
"""

from sql_verifier.intent.base import IntentExtractor
from sql_verifier.intent.default import DefaultIntentExtractor
from sql_verifier.intent.heuristic import HeuristicIntentExtractor
from sql_verifier.intent.reference import ReferenceIntentExtractor
from sql_verifier.intent.shape import (
    AggregationIntent,
    FilterIntent,
    IntentMode,
    IntentShape,
    IntentUnderspecified,
    JoinIntent,
    OrderingIntent,
    ProjectionIntent,
    ValueConstraint,
)

__all__ = [
    "AggregationIntent",
    "DefaultIntentExtractor",
    "FilterIntent",
    "HeuristicIntentExtractor",
    "IntentExtractor",
    "IntentMode",
    "IntentShape",
    "IntentUnderspecified",
    "JoinIntent",
    "OrderingIntent",
    "ProjectionIntent",
    "ReferenceIntentExtractor",
    "ValueConstraint",
]

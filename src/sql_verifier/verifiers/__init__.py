"""
Verifiers Module
================

Facet comparators and the judgment aggregator.
"""

from sql_verifier.verifiers.base import FacetChain, FacetVerifier
from sql_verifier.verifiers.projection import ProjectionVerifier
from sql_verifier.verifiers.joins import JoinVerifier
from sql_verifier.verifiers.filters import FilterVerifier
from sql_verifier.verifiers.aggregation import AggregationVerifier
from sql_verifier.verifiers.ordering import OrderingVerifier
from sql_verifier.verifiers.aggregator import JudgmentAggregator

__all__ = [
    "FacetVerifier",
    "FacetChain",
    "ProjectionVerifier",
    "JoinVerifier",
    "FilterVerifier",
    "AggregationVerifier",
    "OrderingVerifier",
    "JudgmentAggregator",
]

"""
Verifier Configuration
======================

Limits and scoring constants, overridable from the environment.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class VerifierConfig:
    """Configuration shared by the parser, binder and aggregator."""

    dialect: Optional[str] = None
    # Maximum query nesting (subqueries, CTE bodies, derived tables)
    max_depth: int = 16
    # Maximum number of row sources across the whole query tree
    max_tables: int = 64
    heuristic_confidence_cap: float = 0.85
    reference_confidence_cap: float = 1.0
    underspecified_penalty: float = 0.05
    failure_confidence: float = 1.0

    def __post_init__(self) -> None:
        if self.max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        if self.max_tables < 1:
            raise ValueError("max_tables must be at least 1")
        if not 0.0 < self.heuristic_confidence_cap < 0.9:
            raise ValueError("heuristic_confidence_cap must be in (0, 0.9)")
        if not 0.0 < self.reference_confidence_cap <= 1.0:
            raise ValueError("reference_confidence_cap must be in (0, 1]")
        if not 0.0 <= self.failure_confidence <= 1.0:
            raise ValueError("failure_confidence must be in [0, 1]")

    @classmethod
    def from_env(cls) -> "VerifierConfig":
        """
        Build a configuration from environment variables.

        Unset variables keep their defaults.
        """
        defaults = cls()
        return cls(
            dialect=os.getenv("SQL_VERIFIER_DIALECT") or defaults.dialect,
            max_depth=int(os.getenv("SQL_VERIFIER_MAX_DEPTH", defaults.max_depth)),
            max_tables=int(os.getenv("SQL_VERIFIER_MAX_TABLES", defaults.max_tables)),
            heuristic_confidence_cap=float(
                os.getenv("SQL_VERIFIER_HEURISTIC_CAP", defaults.heuristic_confidence_cap)
            ),
            underspecified_penalty=float(
                os.getenv(
                    "SQL_VERIFIER_UNDERSPECIFIED_PENALTY", defaults.underspecified_penalty
                )
            ),
        )

"""
Default Intent Extractor
========================

Reference mode when a usable gold query is supplied, heuristic mode
otherwise.
"""

from dataclasses import replace
from typing import Optional

import structlog

from sql_verifier.config import VerifierConfig
from sql_verifier.errors import VerificationError
from sql_verifier.intent.base import IntentExtractor
from sql_verifier.intent.heuristic import HeuristicIntentExtractor
from sql_verifier.intent.reference import ReferenceIntentExtractor
from sql_verifier.intent.shape import IntentShape, IntentUnderspecified
from sql_verifier.schema import SchemaModel

logger = structlog.get_logger(__name__)


class DefaultIntentExtractor(IntentExtractor):
    """
    Picks the extraction mode per request.

    A reference query that fails to parse or bind does not fail the
    evaluation: the heuristic shape is used and the failure is recorded as
    an underspecification note.
    """

    def __init__(
        self,
        config: Optional[VerifierConfig] = None,
        heuristic: Optional[IntentExtractor] = None,
    ) -> None:
        self.reference = ReferenceIntentExtractor(config)
        self.heuristic = heuristic or HeuristicIntentExtractor()

    @property
    def name(self) -> str:
        return "default"

    def extract(
        self,
        nl_query: str,
        schema: SchemaModel,
        reference: Optional[str] = None,
    ) -> IntentShape:
        if not reference or not reference.strip():
            return self.heuristic.extract(nl_query, schema)

        try:
            return self.reference.extract(nl_query, schema, reference)
        except VerificationError as e:
            logger.warning(
                "reference_query_unusable",
                failure=e.kind.value,
                error=e.message,
            )
            shape = self.heuristic.extract(nl_query, schema)
            note = IntentUnderspecified(
                "reference", f"reference query could not be analysed ({e.kind.value})"
            )
            return replace(shape, notes=shape.notes + (note,))

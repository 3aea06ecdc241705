"""
Reference Intent Extractor
==========================

Uses a gold query's facets as the expected shape.
"""

from typing import Optional

import structlog

from sql_verifier.config import VerifierConfig
from sql_verifier.facets import decompose
from sql_verifier.intent.base import IntentExtractor
from sql_verifier.intent.shape import IntentShape
from sql_verifier.parsing import Binder, parse_sql
from sql_verifier.schema import SchemaModel

logger = structlog.get_logger(__name__)


class ReferenceIntentExtractor(IntentExtractor):
    """
    Runs the reference query through the parser, binder and decomposer.

    Errors in the reference query propagate as ``VerificationError``.
    """

    def __init__(self, config: Optional[VerifierConfig] = None) -> None:
        self.config = config or VerifierConfig()

    @property
    def name(self) -> str:
        return "reference"

    def extract(
        self,
        nl_query: str,
        schema: SchemaModel,
        reference: Optional[str] = None,
    ) -> IntentShape:
        if not reference:
            raise ValueError("ReferenceIntentExtractor needs a reference query")

        tree = parse_sql(reference, dialect=self.config.dialect)
        bound = Binder(schema, self.config).bind(tree)
        facets = decompose(bound)
        logger.debug(
            "reference_intent_extracted",
            tables=sorted(facets.joins.nodes),
            filters=len(facets.filters),
        )
        return IntentShape.from_facets(facets)

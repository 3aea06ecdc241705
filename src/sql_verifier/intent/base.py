"""
Base Intent Extractor
=====================

Abstract base class for intent extraction strategies.
"""

from abc import ABC, abstractmethod
from typing import Optional

from sql_verifier.intent.shape import IntentShape
from sql_verifier.schema import SchemaModel


class IntentExtractor(ABC):
    """
    Abstract base class for intent extractors.

    An extractor turns a natural-language request into the expected shape
    of its answer. Implementations are stateless and can be swapped for a
    model-backed strategy without touching the comparators.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of this extractor."""
        pass

    @abstractmethod
    def extract(
        self,
        nl_query: str,
        schema: SchemaModel,
        reference: Optional[str] = None,
    ) -> IntentShape:
        """
        Derive the expected shape of the answer.

        Args:
            nl_query: Natural-language request
            schema: Schema the request is about
            reference: Optional gold SQL query

        Returns:
            IntentShape for the request
        """
        pass

"""
SQL Semantic Verifier
=====================

Runs one evaluation through parsing, binding, decomposition, intent
extraction, facet comparison and aggregation.
"""

import time
from typing import Optional, Union

import structlog
from opentelemetry import trace

from sql_verifier.config import VerifierConfig
from sql_verifier.errors import VerificationError
from sql_verifier.facets import decompose
from sql_verifier.intent import DefaultIntentExtractor, IntentExtractor
from sql_verifier.models import EvaluationOutcome, EvaluationRequest, Stage, Verdict
from sql_verifier.parsing import Binder, parse_sql
from sql_verifier.schema import SAMPLE_SCHEMA, SchemaModel
from sql_verifier.verifiers import FacetChain, JudgmentAggregator

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class SemanticVerifier:
    """
    Decides whether a SQL query answers a natural-language request.

    The verifier:
    1. Parses the candidate query
    2. Binds every table and column reference to the schema
    3. Decomposes the bound query into facets
    4. Extracts the expected shape from the request (or a reference query)
    5. Compares each facet and aggregates the results into a Verdict

    Parse and bind errors end the evaluation in the FAILED stage; the verdict
    then reports the error as its only issue. Evaluations share no mutable
    state, so one verifier can serve concurrent requests.
    """

    def __init__(
        self,
        schema: Union[SchemaModel, dict, None] = None,
        config: Optional[VerifierConfig] = None,
        intent_extractor: Optional[IntentExtractor] = None,
        chain: Optional[FacetChain] = None,
    ) -> None:
        """
        Initialize the verifier.

        Args:
            schema: Default schema for requests (defaults to the sample schema)
            config: Limits and scoring constants
            intent_extractor: Intent strategy (defaults to reference-or-heuristic)
            chain: Facet comparators (defaults to one per facet)
        """
        self.config = config or VerifierConfig()
        self.schema = _as_schema(schema if schema is not None else SAMPLE_SCHEMA)
        self.intent_extractor = intent_extractor or DefaultIntentExtractor(self.config)
        self.chain = chain or FacetChain()
        self.aggregator = JudgmentAggregator(self.config)

    def verify(
        self,
        nl_query: str,
        sql_query: str,
        reference_query: Optional[str] = None,
        schema: Union[SchemaModel, dict, None] = None,
    ) -> Verdict:
        """Convenience wrapper around ``evaluate``."""
        request = EvaluationRequest(
            schema=schema if schema is not None else self.schema,
            nl_query=nl_query,
            sql_query=sql_query,
            reference_query=reference_query,
        )
        return self.evaluate(request)

    def evaluate(self, request: EvaluationRequest) -> Verdict:
        """Return the verdict for one request."""
        return self.run(request).verdict

    def run(self, request: EvaluationRequest) -> EvaluationOutcome:
        """
        Run one evaluation and keep its intermediate artefacts.

        Args:
            request: Schema, request text, candidate SQL and optional reference

        Returns:
            EvaluationOutcome in the AGGREGATED or FAILED stage

        Raises:
            SchemaError: If ``request.schema`` is an invalid schema mapping
        """
        schema = _as_schema(request.schema)
        stages: list[Stage] = []
        start = time.perf_counter()
        log = logger.bind(reference=request.reference_query is not None)

        with tracer.start_as_current_span("sql_verifier.evaluate") as root:
            root.set_attribute("verifier.reference_mode", request.reference_query is not None)
            try:
                with self._stage(Stage.PARSING, stages):
                    tree = parse_sql(request.sql_query, dialect=self.config.dialect)
                with self._stage(Stage.BINDING, stages):
                    bound = Binder(schema, self.config).bind(tree)
                with self._stage(Stage.DECOMPOSING, stages):
                    facets = decompose(bound)
                with self._stage(Stage.INTENT_EXTRACTION, stages):
                    intent = self.intent_extractor.extract(
                        request.nl_query, schema, request.reference_query
                    )
            except VerificationError as error:
                stages.append(Stage.FAILED)
                root.set_attribute("verifier.failure", error.kind.value)
                log.warning(
                    "evaluation_failed",
                    stage=stages[-2].value,
                    failure=error.kind.value,
                    error=error.message,
                )
                return EvaluationOutcome(
                    stage=Stage.FAILED,
                    verdict=Verdict.from_failure(error, self.config.failure_confidence),
                    error=error,
                    stages=stages,
                )

            with self._stage(Stage.COMPARING, stages):
                results = self.chain.run(facets, intent, schema)

            verdict = self.aggregator.aggregate(results, intent)
            stages.append(Stage.AGGREGATED)
            root.set_attribute("verifier.correct", verdict.correct)
            root.set_attribute("verifier.confidence", verdict.confidence)

        log.info(
            "evaluation_completed",
            mode=intent.mode.value,
            correct=verdict.correct,
            confidence=verdict.confidence,
            issues=len(verdict.issues),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return EvaluationOutcome(
            stage=Stage.AGGREGATED,
            verdict=verdict,
            facets=facets,
            intent=intent,
            stages=stages,
        )

    def _stage(self, stage: Stage, stages: list[Stage]):
        stages.append(stage)
        logger.debug("evaluation_stage", stage=stage.value)
        return tracer.start_as_current_span(f"sql_verifier.{stage.value}")


def _as_schema(schema: Union[SchemaModel, dict]) -> SchemaModel:
    if isinstance(schema, SchemaModel):
        return schema
    return SchemaModel.from_dict(schema)

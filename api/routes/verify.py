"""
Verify Routes
=============

Main API endpoints for SQL semantic verification.
"""

import time

import structlog
from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from api.schemas import (
    BatchSummary,
    BatchVerifyRequest,
    BatchVerifyResponse,
    ComponentsResponse,
    ErrorResponse,
    VerifyRequest,
    VerifyResponse,
)
from observability.metrics import track_verdict_metrics
from observability.tracing import get_tracer
from sql_verifier import EvaluationOutcome, EvaluationRequest, SchemaModel, SemanticVerifier
from sql_verifier.extraction import extract_sql_from_response

router = APIRouter(prefix="/api/v1", tags=["Verify"])
logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request or schema"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}


def get_verifier(request: Request) -> SemanticVerifier:
    """Dependency to get the configured verifier from app state."""
    return request.app.state.verifier


def to_evaluation_request(body: VerifyRequest, verifier: SemanticVerifier) -> EvaluationRequest:
    """
    Convert an API request into an evaluation request.

    Args:
        body: Validated request body
        verifier: Verifier whose schema and dialect act as defaults

    Returns:
        EvaluationRequest ready for ``SemanticVerifier.run``

    Raises:
        SchemaError: If the schema DDL cannot be parsed
    """
    if body.db_schema is None:
        schema = verifier.schema
    elif isinstance(body.db_schema, str):
        schema = SchemaModel.from_ddl(body.db_schema, dialect=verifier.config.dialect)
    else:
        schema = body.db_schema

    sql_query = body.sql_query
    if body.extract_sql:
        sql_query = extract_sql_from_response(sql_query)

    return EvaluationRequest(
        schema=schema,
        nl_query=body.nl_query,
        sql_query=sql_query,
        reference_query=body.reference_query,
    )


def _evaluate(
    verifier: SemanticVerifier, body: VerifyRequest
) -> tuple[EvaluationOutcome, float]:
    start_time = time.perf_counter()
    outcome = verifier.run(to_evaluation_request(body, verifier))
    duration = time.perf_counter() - start_time
    track_verdict_metrics(outcome.verdict, duration)
    return outcome, duration


def _to_response(
    outcome: EvaluationOutcome, duration: float, request_id: str | None
) -> VerifyResponse:
    verdict = outcome.verdict.to_dict()
    return VerifyResponse(
        correct=verdict["correct"],
        explanation=verdict["explanation"],
        components=ComponentsResponse(**verdict["components"]),
        issues=verdict["issues"],
        improvements=verdict["improvements"],
        confidence=verdict["confidence"],
        stage=outcome.stage.value,
        failure=outcome.verdict.failure.value if outcome.verdict.failure else None,
        request_id=request_id,
        processing_time_ms=round(duration * 1000, 3),
    )


@router.post(
    "/verify",
    response_model=VerifyResponse,
    responses=ERROR_RESPONSES,
    summary="Verify a SQL query against a natural-language request",
    description=(
        "Returns a verdict with per-facet notes, issues, improvements and a confidence. "
        "Queries that cannot be parsed or bound yield an incorrect verdict, not an error."
    ),
)
async def verify_query(
    body: VerifyRequest,
    request: Request,
    verifier: SemanticVerifier = Depends(get_verifier),
) -> VerifyResponse:
    """
    Verify one query.

    Args:
        body: Schema, request text, candidate SQL and optional reference
        request: Incoming request (carries the request ID)
        verifier: Injected SemanticVerifier instance

    Returns:
        VerifyResponse with the verdict and timing
    """
    request_id = getattr(request.state, "request_id", None)
    outcome, duration = await run_in_threadpool(_evaluate, verifier, body)

    logger.info(
        "verify_completed",
        correct=outcome.verdict.correct,
        stage=outcome.stage.value,
        confidence=outcome.verdict.confidence,
    )
    return _to_response(outcome, duration, request_id)


@router.post(
    "/verify/batch",
    response_model=BatchVerifyResponse,
    responses=ERROR_RESPONSES,
    summary="Verify several SQL queries",
    description="Evaluates each item independently and returns verdicts in request order",
)
async def verify_batch(
    body: BatchVerifyRequest,
    request: Request,
    verifier: SemanticVerifier = Depends(get_verifier),
) -> BatchVerifyResponse:
    """Verify a batch of queries."""
    request_id = getattr(request.state, "request_id", None)

    def run_batch() -> list[tuple[EvaluationOutcome, float]]:
        with tracer.start_as_current_span("sql_verifier.batch") as span:
            span.set_attribute("batch.size", len(body.items))
            return [_evaluate(verifier, item) for item in body.items]

    evaluated = await run_in_threadpool(run_batch)
    results = [_to_response(outcome, duration, request_id) for outcome, duration in evaluated]

    failed = sum(1 for outcome, _ in evaluated if outcome.failed)
    correct = sum(1 for result in results if result.correct)
    summary = BatchSummary(
        total=len(results),
        correct=correct,
        incorrect=len(results) - correct - failed,
        failed=failed,
    )

    logger.info("verify_batch_completed", total=summary.total, correct=summary.correct)
    return BatchVerifyResponse(results=results, summary=summary, request_id=request_id)

"""
Prometheus Metrics
==================

Application metrics for monitoring and alerting.
"""

import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

from sql_verifier import __version__
from sql_verifier.models import MatchStatus, Verdict

# Create a custom registry for this application
REGISTRY = CollectorRegistry()

APP_INFO = Info(
    "sql_verifier",
    "SQL semantic verifier information",
    registry=REGISTRY,
)

# Verdict metrics
VERDICTS_TOTAL = Counter(
    "sql_verifier_verdicts_total",
    "Total number of evaluations by outcome",
    ["outcome"],  # correct, incorrect, failed
    registry=REGISTRY,
)

FACET_MISMATCHES = Counter(
    "sql_verifier_facet_mismatches_total",
    "Total facet mismatches by facet",
    ["facet"],
    registry=REGISTRY,
)

FAILURES_TOTAL = Counter(
    "sql_verifier_failures_total",
    "Evaluations that ended in the failed stage, by failure kind",
    ["kind"],
    registry=REGISTRY,
)

EVALUATION_DURATION = Histogram(
    "sql_verifier_evaluation_duration_seconds",
    "Evaluation duration in seconds",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
    registry=REGISTRY,
)

VERDICT_CONFIDENCE = Histogram(
    "sql_verifier_verdict_confidence",
    "Confidence of produced verdicts",
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.85, 0.9, 0.95, 1.0],
    registry=REGISTRY,
)

# HTTP metrics
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)

ACTIVE_EVALUATIONS = Gauge(
    "sql_verifier_active_evaluations",
    "Number of evaluations currently being processed",
    registry=REGISTRY,
)

VERIFY_PATHS = ("/api/v1/verify", "/api/v1/verify/batch")


def setup_metrics(app: FastAPI, environment: str = "development") -> None:
    """
    Set up Prometheus metrics for the FastAPI application.

    Args:
        app: FastAPI application instance
        environment: Deployment environment reported in the info metric
    """
    APP_INFO.info({
        "version": __version__,
        "environment": environment,
    })

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next: Callable) -> Response:
        """Middleware to track HTTP metrics."""
        start_time = time.perf_counter()

        is_verify_endpoint = request.url.path in VERIFY_PATHS
        if is_verify_endpoint:
            ACTIVE_EVALUATIONS.inc()

        try:
            response = await call_next(request)
            duration = time.perf_counter() - start_time

            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                endpoint=request.url.path,
                status=response.status_code,
            ).inc()

            HTTP_REQUEST_DURATION.labels(
                method=request.method,
                endpoint=request.url.path,
            ).observe(duration)

            return response
        finally:
            if is_verify_endpoint:
                ACTIVE_EVALUATIONS.dec()


def track_verdict_metrics(verdict: Verdict, duration_seconds: float) -> None:
    """
    Track metrics for a completed evaluation.

    Args:
        verdict: Verdict of the evaluation
        duration_seconds: Total processing time
    """
    if verdict.failure is not None:
        VERDICTS_TOTAL.labels(outcome="failed").inc()
        FAILURES_TOTAL.labels(kind=verdict.failure.value).inc()
    else:
        VERDICTS_TOTAL.labels(outcome="correct" if verdict.correct else "incorrect").inc()
    EVALUATION_DURATION.observe(duration_seconds)
    VERDICT_CONFIDENCE.observe(verdict.confidence)

    for result in verdict.facet_results:
        if result.status is MatchStatus.MISMATCH:
            FACET_MISMATCHES.labels(facet=result.facet.value).inc()


async def metrics_endpoint(request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    # Handle multiprocess mode if using gunicorn
    try:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        metrics = generate_latest(registry)
    except ValueError:
        # Not in multiprocess mode
        metrics = generate_latest(REGISTRY)

    return Response(
        content=metrics,
        media_type=CONTENT_TYPE_LATEST,
    )

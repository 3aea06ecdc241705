"""
API Schemas
===========

Pydantic models for API request/response validation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field


class VerifyRequest(BaseModel):
    """Request body for verifying one SQL query against a natural-language request."""

    model_config = ConfigDict(populate_by_name=True)

    db_schema: Union[dict[str, Any], str, None] = Field(
        default=None,
        alias="schema",
        description=(
            "Table mapping or CREATE TABLE statements. "
            "Defaults to the service's configured schema."
        ),
    )
    nl_query: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Natural-language request the query should answer",
        examples=["Show the total spend per customer, highest first"],
    )
    sql_query: str = Field(
        ...,
        min_length=1,
        max_length=20000,
        description="Candidate SQL query",
        examples=[
            "SELECT c.name, SUM(o.total) FROM customers c "
            "JOIN orders o ON o.customer_id = c.id GROUP BY c.name ORDER BY 2 DESC"
        ],
    )
    reference_query: str | None = Field(
        default=None,
        max_length=20000,
        description="Known-correct SQL; switches the comparison to reference mode",
    )
    extract_sql: bool = Field(
        default=False,
        description="Pull the SQL out of raw model output (code fences, prose) first",
    )


class BatchVerifyRequest(BaseModel):
    """Request body for verifying several queries at once."""

    items: list[VerifyRequest] = Field(..., min_length=1, max_length=100)


class ComponentsResponse(BaseModel):
    """Per-facet notes of a verdict."""

    select: str = ""
    from_joins: str = ""
    filters: str = ""
    aggregations: str = ""
    sorting: str = ""


class VerifyResponse(BaseModel):
    """Verdict for one query."""

    correct: bool = Field(..., description="Whether the query answers the request")
    explanation: str = Field(..., description="Human-readable summary of the judgment")
    components: ComponentsResponse
    issues: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    stage: str = Field(..., description="Terminal evaluation stage (aggregated or failed)")
    failure: str | None = Field(None, description="Failure kind when the query was not analysed")
    request_id: str | None = Field(None, description="Request ID if available")
    processing_time_ms: float = Field(..., description="Processing time in milliseconds")


class BatchSummary(BaseModel):
    """Counts over a batch of verdicts."""

    total: int
    correct: int
    incorrect: int
    failed: int


class BatchVerifyResponse(BaseModel):
    """Verdicts for a batch, in request order."""

    results: list[VerifyResponse]
    summary: BatchSummary
    request_id: str | None = None


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Health check response."""

    status: HealthStatus = Field(..., description="Overall health status")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Individual component health checks",
    )


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service is ready to handle requests")
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Individual readiness checks",
    )


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    request_id: str | None = Field(None, description="Request ID if available")
    details: dict[str, Any] | None = Field(None, description="Additional error details")

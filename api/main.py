"""
FastAPI Application
===================

Main FastAPI application for the SQL semantic verification service.
"""

import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from api import __version__
from api.middleware.telemetry import TelemetryMiddleware
from api.routes.health import router as health_router
from api.routes.verify import router as verify_router
from api.schemas import ErrorResponse
from observability.logging_config import get_logger, setup_logging
from observability.metrics import metrics_endpoint, setup_metrics
from observability.tracing import setup_tracing
from sql_verifier import SchemaError, SemanticVerifier, VerifierConfig


def create_verifier() -> SemanticVerifier:
    """Create the verifier from environment configuration."""
    return SemanticVerifier(config=VerifierConfig.from_env())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler."""
    setup_logging()
    logger = get_logger(__name__)
    logger.info("Starting SQL verifier API", version=__version__)

    if getattr(app.state, "verifier", None) is None:
        app.state.verifier = create_verifier()

    yield

    logger.info("Shutting down SQL verifier API")


def _error(status_code: int, request: Request, error: str, message: str, details=None):
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            request_id=getattr(request.state, "request_id", None),
            details=details,
        ).model_dump(),
    )


def create_app(verifier: Optional[SemanticVerifier] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        verifier: Verifier to serve (default: built from the environment at startup)
    """
    app = FastAPI(
        title="SQL Semantic Verifier API",
        description=(
            "Last-mile verification for generated SQL. "
            "Judges whether a query answers a natural-language request."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.verifier = verifier

    # Add middleware
    app.add_middleware(TelemetryMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add routes
    app.include_router(health_router)
    app.include_router(verify_router)

    setup_metrics(app, environment=os.getenv("ENVIRONMENT", "development"))
    app.add_route("/metrics", metrics_endpoint)

    if os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
        setup_tracing(app)

    @app.exception_handler(SchemaError)
    async def schema_error_handler(request: Request, exc: SchemaError) -> JSONResponse:
        """Handle invalid schema definitions."""
        return _error(400, request, "InvalidSchema", str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle malformed request bodies."""
        errors = [
            {"loc": [str(part) for part in error["loc"]], "msg": error["msg"]}
            for error in exc.errors()
        ]
        return _error(
            400, request, "ValidationError", "Request validation failed", {"errors": errors}
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        get_logger(__name__).exception("unhandled_exception", path=request.url.path)
        return _error(500, request, "InternalServerError", "An unexpected error occurred")

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )

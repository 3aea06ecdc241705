"""API Routes."""

from api.routes.verify import router as verify_router
from api.routes.health import router as health_router

__all__ = ["verify_router", "health_router"]

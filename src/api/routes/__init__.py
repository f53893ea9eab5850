"""API routes package."""

from .event_routes import router as event_router
from .health_routes import router as health_router
from .scraping_routes import router as scraping_router

__all__ = ["event_router", "health_router", "scraping_router"]

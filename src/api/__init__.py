"""API endpoints package - export only."""

from .routes import event_router, health_router, scraping_router

__all__ = ["event_router", "health_router", "scraping_router"]

"""FastAPI dependency providers

Services are built once in the app lifespan and kept on ``app.state``;
tests replace them through ``app.dependency_overrides``.
"""
from typing import Callable, Generator

from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session, sessionmaker

from src.core.logging import logger
from src.core.security import get_client_identifier
from src.engine.orchestrator import SearchOrchestrator
from src.services.impl.batch_scraping_service import BatchScrapingService
from src.services.impl.cache_service import CacheService
from src.services.impl.rate_limit_service import RateLimitClass, RateLimiter


def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        logger.error(f"[API] {name} is not initialized")
        raise HTTPException(status_code=503, detail=f"{name} is not available")
    return service


def get_cache_service(request: Request) -> CacheService:
    return _state(request, "cache_service")


def get_rate_limiter(request: Request) -> RateLimiter:
    return _state(request, "rate_limiter")


def get_orchestrator(request: Request) -> SearchOrchestrator:
    return _state(request, "orchestrator")


def get_batch_service(request: Request) -> BatchScrapingService:
    return _state(request, "batch_service")


def get_session_factory(request: Request) -> sessionmaker:
    return _state(request, "session_factory")


def get_db(session_factory: sessionmaker = Depends(get_session_factory)) -> Generator[Session, None, None]:
    """Yields a DB session from the app's session factory"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def rate_limited(limit_class: RateLimitClass) -> Callable:
    """Dependency enforcing one rate-limit class

    Sets the X-RateLimit-* headers on the response, or raises 429 with
    Retry-After when the client is over its window.
    """

    async def dependency(
        request: Request,
        response: Response,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        result = limiter.check(limit_class, get_client_identifier(request))
        headers = RateLimiter.headers(result)
        if not result.allowed:
            raise HTTPException(
                status_code=429,
                detail={"error": "Too many requests", "retryAfter": result.retry_after},
                headers=headers,
            )
        for key, value in headers.items():
            response.headers[key] = value

    return dependency

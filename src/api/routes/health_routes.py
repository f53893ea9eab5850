"""Health check endpoints"""
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from src import __version__
from src.api.dependencies import get_cache_service, get_db
from src.core.config import settings
from src.core.logging import logger
from src.schemas.event_schema import HealthResponse
from src.services.impl.cache_service import CacheService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    cache_service: CacheService = Depends(get_cache_service),
    db: Session = Depends(get_db),
):
    """Server, cache and DB status

    ok: both answer, degraded: one answers, error: neither
    """
    try:
        cache_ok = cache_service.health_check()
    except Exception as e:
        logger.error(f"[API] Unexpected cache error: {e}")
        cache_ok = False

    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.error(f"[API] Database connection error: {e}")
        db_ok = False

    status = "ok" if cache_ok and db_ok else ("degraded" if cache_ok or db_ok else "error")

    return HealthResponse(
        status=status,
        timestamp=datetime.utcnow(),
        version=__version__,
        cache=cache_service.backend_name if cache_ok else "unavailable",
        database="ok" if db_ok else "unavailable",
    )


@router.get("/")
async def root():
    return {
        "service": settings.api_title,
        "version": __version__,
        "docs": "/docs",
    }

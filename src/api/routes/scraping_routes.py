"""Batch scraping routes (cron trigger and job history)"""
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException

from src.api.dependencies import get_batch_service, rate_limited
from src.core.config import settings
from src.core.exceptions import DatabaseException
from src.core.logging import logger
from src.core.security import SecurityValidator
from src.schemas.event_schema import (
    JobSummary,
    ScrapingStatusResponse,
    TriggerRequest,
    TriggerResponse,
)
from src.services.impl.batch_scraping_service import BatchScrapingService
from src.services.impl.rate_limit_service import RateLimitClass

router = APIRouter(prefix="/api/v1/scraping", tags=["scraping"])


async def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Bearer check against cron_secret (open when no secret is set)"""
    if not SecurityValidator.verify_bearer(authorization, settings.cron_secret):
        logger.warning("[API] Rejected batch trigger with a bad or missing bearer token")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post(
    "/trigger",
    response_model=TriggerResponse,
    dependencies=[Depends(verify_cron_secret), Depends(rate_limited(RateLimitClass.SCRAPING))],
)
async def trigger_scraping(
    body: Optional[TriggerRequest] = Body(None),
    service: BatchScrapingService = Depends(get_batch_service),
):
    """Start a batch crawl over the configured (or given) cities"""
    body = body or TriggerRequest()
    try:
        started = await service.trigger(
            cities=body.cities,
            platforms=body.platforms,
            max_events=body.max_events,
            query=body.query,
        )
    except DatabaseException as e:
        logger.error(f"[API] Batch trigger failed: {e}")
        raise HTTPException(status_code=503, detail="Job store unavailable")

    return TriggerResponse(
        success=True,
        job_id=started.job_id,
        status=started.status,
        message=f"Batch crawl started for {len(started.cities)} cities",
        cities=started.cities,
        platforms=started.platforms,
    )


@router.get(
    "/status",
    response_model=ScrapingStatusResponse,
    dependencies=[Depends(rate_limited(RateLimitClass.API))],
)
async def scraping_status(service: BatchScrapingService = Depends(get_batch_service)):
    """Ten most recent jobs, newest first"""
    try:
        jobs = service.status()
    except DatabaseException as e:
        logger.error(f"[API] Job history lookup failed: {e}")
        raise HTTPException(status_code=503, detail="Job store unavailable")
    return ScrapingStatusResponse(
        jobs=[JobSummary.model_validate(job) for job in jobs],
        total=len(jobs),
    )

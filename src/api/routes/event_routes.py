"""Event search routes

HTTP layer only: request validation, rate limiting and the text/event-stream
framing. The search itself runs in the SearchOrchestrator.
"""

import asyncio
import json
import math
from typing import AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from src.api.dependencies import get_cache_service, get_db, get_orchestrator, get_rate_limiter, rate_limited
from src.core.config import settings
from src.core.exceptions import CacheException, DatabaseConnectionException, DatabaseException
from src.core.logging import logger, sanitize_for_log
from src.core.security import SecurityValidator, get_client_identifier
from src.engine.orchestrator import SearchOrchestrator
from src.engine.result import StreamMessage
from src.jobs.state import JobStatus
from src.repositories.impl.event_repository import EventRepository
from src.repositories.impl.scraping_job_repository import ScrapingJobRepository
from src.schemas.event_schema import (
    EventListResponse,
    JobStatusResponse,
    Pagination,
    SearchFilters,
    SearchRequest,
    serialize_event,
)
from src.services.impl.cache_service import CacheService, build_events_page_cache_key
from src.services.impl.rate_limit_service import RateLimitClass, RateLimiter

router = APIRouter(prefix="/api/v1/events", tags=["events"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
DISCONNECT_POLL_S = 0.5


def _sse_error(
    status_code: int,
    message: str,
    error: str,
    headers: Optional[Dict[str, str]] = None,
) -> StreamingResponse:
    """Single error event, for requests rejected before the pipeline"""
    body = StreamMessage.error(message, error).to_sse()
    return StreamingResponse(
        iter([body]),
        status_code=status_code,
        media_type="text/event-stream",
        headers={**SSE_HEADERS, **(headers or {})},
    )


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(parts) or "invalid request"


@router.post("/search")
async def search_events(
    request: Request,
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Streaming event search

    Flow:
        1. Empty body -> 400
        2. Rate limit (search class) -> 429
        3. JSON / schema validation -> 400 with an error event
        4. Stream orchestrator messages until search_complete
    """
    raw = await request.body()
    if not raw or not raw.strip():
        return _sse_error(400, "Request body is required", "EMPTY_BODY")

    identifier = get_client_identifier(request)
    limit = limiter.check(RateLimitClass.SEARCH, identifier)
    limit_headers = RateLimiter.headers(limit)
    if not limit.allowed:
        return JSONResponse(
            status_code=429,
            content={"error": "Too many requests", "retryAfter": limit.retry_after},
            headers=limit_headers,
        )

    try:
        payload = json.loads(raw)
    except ValueError as e:
        logger.warning(f"[API] Invalid JSON body from {identifier}: {e}")
        return _sse_error(400, "Invalid JSON body", "INVALID_JSON", limit_headers)

    try:
        search = SearchRequest.model_validate(payload)
    except ValidationError as e:
        detail = _describe_validation_error(e)
        logger.warning(f"[API] Invalid search request from {identifier}: {sanitize_for_log(detail)}")
        return _sse_error(400, "Invalid search request", detail, limit_headers)

    logger.info(f"[API] Search request: query (length: {len(search.query)}) from {identifier}")
    abort = asyncio.Event()
    return StreamingResponse(
        _stream(request, orchestrator, search, abort),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, **limit_headers},
    )


async def _stream(
    request: Request,
    orchestrator: SearchOrchestrator,
    search: SearchRequest,
    abort: asyncio.Event,
) -> AsyncIterator[str]:
    watcher = asyncio.create_task(_watch_abort(request, abort, settings.live_scraping_timeout_s))
    try:
        async for message in orchestrator.search(search, abort):
            yield message.to_sse()
    finally:
        watcher.cancel()


async def _watch_abort(request: Request, abort: asyncio.Event, timeout_s: float) -> None:
    """Set ``abort`` on client disconnect or when the live timeout elapses"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not abort.is_set():
        if await request.is_disconnected():
            logger.info("[API] Client disconnected, stopping stream")
            abort.set()
            return
        if loop.time() >= deadline:
            logger.info(f"[API] Live search timeout ({timeout_s}s) reached")
            abort.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_S)


@router.get(
    "/search/status",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limited(RateLimitClass.API))],
)
async def search_status(
    job_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Job status for clients that poll instead of streaming

    Events are included only once the job has completed.
    """
    if not job_id or not job_id.strip():
        raise HTTPException(status_code=400, detail="job_id is required")

    try:
        job = ScrapingJobRepository(db).get(job_id.strip())
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")

        response = JobStatusResponse(
            job_id=job.id,
            status=job.status,
            events_scraped=job.events_scraped or 0,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )
        if job.status == JobStatus.COMPLETED.value:
            events = EventRepository(db).events_for_job(job, after_id=0, limit=settings.search_max_results)
            response.events = [serialize_event(event) for event in events]
            response.total = len(response.events)
        elif job.status == JobStatus.FAILED.value:
            response.error = job.error_message or "Job failed"
        return response
    except DatabaseException as e:
        logger.error(f"[API] Job status lookup failed for {sanitize_for_log(job_id)}: {e}")
        raise HTTPException(status_code=503, detail="Job store unavailable")


@router.get(
    "",
    response_model=EventListResponse,
    dependencies=[Depends(rate_limited(RateLimitClass.API))],
)
async def list_events(
    query: Optional[str] = Query(None, max_length=100),
    city: Optional[str] = Query(None),
    event_type: Optional[str] = Query(None, alias="eventType"),
    price: Optional[str] = Query(None),
    date: Optional[str] = Query(None),
    platforms: Optional[str] = Query(None, description="Comma separated, e.g. luma,eventbrite"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.events_page_size, ge=1, le=100),
    db: Session = Depends(get_db),
    cache_service: CacheService = Depends(get_cache_service),
):
    """Paginated browse over stored events

    Never starts a crawl. Pages are cached briefly per filter set; an
    unreachable store yields an empty page.
    """
    term = ""
    if query and query.strip():
        try:
            term = SecurityValidator.validate_query(query)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    platform_list = [p.strip().lower() for p in (platforms or "").split(",") if p.strip()]
    try:
        filters = SearchFilters.model_validate({
            "city": city,
            "eventType": event_type,
            "price": price,
            "date": date,
            "platforms": platform_list or None,
        })
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=_describe_validation_error(e))

    key = build_events_page_cache_key(
        term, filters.city, filters.event_type, filters.price, filters.date, filters.platforms, page, limit
    )
    try:
        cached = cache_service.get_json(key)
    except CacheException as e:
        logger.warning(f"[API] Ignoring unreadable events page cache entry: {e}")
        cached = None
    if isinstance(cached, dict) and "pagination" in cached:
        return cached

    try:
        events, total = EventRepository(db).search(
            term,
            city=filters.city,
            event_type=filters.event_type,
            price=filters.price,
            date=filters.date,
            platforms=filters.platforms,
            limit=limit,
            offset=(page - 1) * limit,
        )
        payloads = [serialize_event(event) for event in events]
    except DatabaseConnectionException as e:
        logger.error(f"[API] Event store unreachable, returning an empty page: {e}")
        return EventListResponse(events=[], pagination=Pagination(page=page, limit=limit, total=0, pages=0))
    except DatabaseException as e:
        logger.error(f"[API] Event listing failed: {e}")
        raise HTTPException(status_code=503, detail="Event store unavailable")

    response = EventListResponse(
        events=payloads,
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )
    try:
        cache_service.set_json(key, response.model_dump(by_alias=True, mode="json"), settings.events_list_cache_ttl)
    except CacheException as e:
        logger.warning(f"[API] Could not cache events page: {e}")
    return response

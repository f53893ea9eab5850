"""Search Orchestrator - streaming search entry point

Pipeline per request:
1. Cache lookup (identical query + filters)
2. Store lookup (active, future events, best first)
3. Live crawl: start a job in the background and poll it for new events

Every stream ends with exactly one ``search_complete`` message.
"""

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from src.core.config import settings
from src.core.database import get_db_context
from src.core.exceptions import DatabaseException, JobException
from src.core.logging import logger, sanitize_for_log
from src.jobs.dispatcher import JobDispatcher
from src.jobs.state import JobStatus
from src.repositories.impl.event_repository import EventRepository
from src.repositories.impl.scraping_job_repository import ScrapingJobRepository
from src.schemas.event_schema import SearchRequest, serialize_event

from .budget import StreamBudget, StreamBudgetConfig
from .cache_adapter import CacheAdapter
from .result import PlatformStatus, ResultSource, StreamMessage, StreamMessageType


class LivePhase(str, Enum):
    POLLING = "polling"
    DRAINING = "draining"
    DONE = "done"


@dataclass
class _Progress:
    """Bookkeeping shared between the stream wrapper and the live loop"""

    source: ResultSource = ResultSource.DATABASE
    sent: int = 0
    completed: bool = False


@dataclass
class _LiveState:
    job_id: str
    platforms: List[str]
    statuses: Dict[str, PlatformStatus] = field(default_factory=dict)
    cursor: int = 0
    job_status: str = JobStatus.QUEUED.value
    job_error: Optional[str] = None
    timeout: bool = False
    streamed: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self):
        for platform in self.platforms:
            self.statuses.setdefault(platform, PlatformStatus(platform, "running"))

    def status_message(self) -> StreamMessage:
        return StreamMessage.platform_status(list(self.statuses.values()))


class SearchOrchestrator:
    """Store-first search with a live-crawl fallback

    The crawl job runs independently of the stream: closing the stream
    (client disconnect, timeout) never cancels it.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: CacheAdapter,
        dispatcher: JobDispatcher,
        budget_config: Optional[StreamBudgetConfig] = None,
        max_events: Optional[int] = None,
        job_events_batch: Optional[int] = None,
    ):
        if session_factory is None:
            raise ValueError("session_factory must not be None")
        if cache is None:
            raise ValueError("cache must not be None")
        if dispatcher is None:
            raise ValueError("dispatcher must not be None")

        self.session_factory = session_factory
        self.cache = cache
        self.dispatcher = dispatcher
        self.budget_config = budget_config or StreamBudgetConfig.from_settings()
        self.max_events = max_events or settings.stream_max_events
        self.job_events_batch = job_events_batch or settings.stream_job_events_batch

    async def search(
        self,
        request: SearchRequest,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamMessage]:
        """Stream messages for one search

        Args:
            request: validated search request
            abort: set by the HTTP layer on disconnect or its own timeout

        Yields:
            StreamMessage: events, statuses and heartbeats, then one
            search_complete
        """
        budget = StreamBudget(self.budget_config)
        budget.start()
        progress = _Progress()
        logger.info(
            f"[SSE] started: query='{sanitize_for_log(request.query)}' "
            f"platforms={request.effective_platforms}"
        )

        try:
            async with aclosing(self._run(request, budget, abort, progress)) as messages:
                async for message in messages:
                    budget.mark_sent()
                    if message.type == StreamMessageType.EVENT:
                        progress.sent += 1
                    if message.is_terminal:
                        progress.completed = True
                    yield message
                    if progress.completed:
                        break
        except Exception as e:
            logger.error(
                f"[SSE] failed: query='{sanitize_for_log(request.query)}', error={type(e).__name__}",
                exc_info=True,
            )
            if not progress.completed:
                progress.completed = True
                yield StreamMessage.error("Search failed", str(e))
                yield StreamMessage.search_complete(progress.sent, progress.source)
            return

        if not progress.completed:
            # inner pipeline returned without a terminal message
            yield StreamMessage.search_complete(progress.sent, progress.source)

        budget.checkpoint("done")
        logger.info(
            f"[SSE] done: source={progress.source.value} events={progress.sent} "
            f"elapsed={budget.elapsed():.2f}s"
        )
        logger.debug(f"[SSE] budget report: {budget.get_report()}")

    async def _run(
        self,
        request: SearchRequest,
        budget: StreamBudget,
        abort: Optional[asyncio.Event],
        progress: _Progress,
    ) -> AsyncIterator[StreamMessage]:
        cached = await self._try_cache(request, budget)
        if cached is not None:
            progress.source = ResultSource.CACHE
            for event in cached:
                yield StreamMessage.event(event, ResultSource.CACHE, event.get("sourcePlatform"))
            yield StreamMessage.search_complete(len(cached), ResultSource.CACHE, cached=True)
            return

        stored = self._try_store(request, budget)
        if stored:
            progress.source = ResultSource.DATABASE
            for event in stored:
                yield StreamMessage.event(event, ResultSource.DATABASE, event.get("sourcePlatform"))
            await self.cache.set_search(request, stored)
            yield StreamMessage.search_complete(len(stored), ResultSource.DATABASE, cached=False)
            return

        progress.source = ResultSource.LIVE_SCRAPING
        async with aclosing(self._live(request, budget, abort)) as messages:
            async for message in messages:
                yield message

    async def _try_cache(self, request: SearchRequest, budget: StreamBudget) -> Optional[List[Dict[str, Any]]]:
        """Cached events, or None on miss (the adapter already fails open)"""
        cached = await self.cache.get_search(request)
        budget.checkpoint("cache_hit" if cached is not None else "cache_miss")
        return cached

    def _try_store(self, request: SearchRequest, budget: StreamBudget) -> Optional[List[Dict[str, Any]]]:
        """Matching stored events, or None when the store is unreachable"""
        filters = request.filters
        try:
            with get_db_context(self.session_factory) as db:
                events, total = EventRepository(db).search(
                    request.query,
                    city=filters.city,
                    event_type=filters.event_type,
                    price=filters.price,
                    date=filters.date,
                    platforms=filters.platforms,
                    limit=request.max_results,
                )
                payloads = [serialize_event(event) for event in events]
        except DatabaseException as e:
            logger.warning(f"[SSE] Store lookup failed, falling back to live crawl: {e}")
            budget.checkpoint("store_error")
            return None

        budget.checkpoint("store_hit" if payloads else "store_miss")
        if payloads:
            logger.info(f"[SSE] store hit: {len(payloads)}/{total} events")
        return payloads

    # ------------------------------------------------------------------
    # live crawl
    # ------------------------------------------------------------------
    async def _live(
        self,
        request: SearchRequest,
        budget: StreamBudget,
        abort: Optional[asyncio.Event],
    ) -> AsyncIterator[StreamMessage]:
        platforms = request.effective_platforms
        try:
            job_id = self.dispatcher.create_job(
                "search",
                query=request.query,
                city=request.crawl_city,
                platforms=platforms,
            )
            self.dispatcher.dispatch(job_id, early_stop=True, max_items=request.max_results)
        except (DatabaseException, JobException) as e:
            logger.error(f"[SSE] Could not start live crawl: {e}")
            yield StreamMessage.error("Failed to start live search", str(e))
            yield StreamMessage.search_complete(
                0,
                ResultSource.LIVE_SCRAPING,
                timeout=False,
                job_status=JobStatus.FAILED.value,
                platforms_scraped=platforms,
            )
            return

        state = _LiveState(job_id=job_id, platforms=platforms)
        logger.info(f"[SSE] live crawl started: job={job_id} city={request.crawl_city}")
        yield state.status_message()

        phase = LivePhase.POLLING
        while phase != LivePhase.DONE:
            if phase == LivePhase.POLLING:
                if self._should_stop(budget, abort):
                    state.timeout = True
                    logger.info(
                        f"[SSE] job={job_id} stream deadline reached after {budget.elapsed():.1f}s "
                        f"with {len(state.streamed)} events"
                    )
                    phase = LivePhase.DONE
                    continue

                events = self._poll(state)
                for message in self._emit(state, events):
                    yield message
                if events:
                    yield state.status_message()

                if len(state.streamed) >= self.max_events:
                    logger.info(f"[SSE] job={job_id} hit the {self.max_events} event cap")
                    phase = LivePhase.DONE
                elif JobStatus(state.job_status).is_terminal:
                    phase = LivePhase.DRAINING
                else:
                    if budget.heartbeat_due():
                        budget.mark_sent()
                        yield StreamMessage.heartbeat()
                    await self._sleep(budget.next_sleep(), abort)

            elif phase == LivePhase.DRAINING:
                while len(state.streamed) < self.max_events:
                    events = self._poll(state)
                    if not events:
                        break
                    for message in self._emit(state, events):
                        yield message

                succeeded = state.job_status == JobStatus.COMPLETED.value
                for status in state.statuses.values():
                    status.status = "completed" if succeeded else "failed"
                    if not succeeded:
                        status.error = state.job_error
                yield state.status_message()
                phase = LivePhase.DONE

        if state.job_status == JobStatus.COMPLETED.value and state.streamed and not state.timeout:
            await self.cache.set_search(request, state.streamed)

        yield StreamMessage.search_complete(
            len(state.streamed),
            ResultSource.LIVE_SCRAPING,
            timeout=state.timeout,
            job_status=state.job_status,
            platforms_scraped=platforms,
        )

    def _poll(self, state: _LiveState) -> List[Dict[str, Any]]:
        """Refresh the job status and fetch events past the cursor

        A store error counts as an empty batch; the deadline still ends
        the loop.
        """
        try:
            status, error, events = self._read_job(state)
        except DatabaseException as e:
            logger.warning(f"[SSE] job={state.job_id} poll failed: {e}")
            return []
        state.job_status = status
        state.job_error = error
        return events

    def _read_job(self, state: _LiveState) -> Tuple[str, Optional[str], List[Dict[str, Any]]]:
        with get_db_context(self.session_factory) as db:
            job = ScrapingJobRepository(db).require(state.job_id)
            remaining = self.max_events - len(state.streamed)
            batch = EventRepository(db).events_for_job(
                job,
                after_id=state.cursor,
                limit=max(0, min(self.job_events_batch, remaining)),
            )
            return job.status, job.error_message, [serialize_event(event) for event in batch]

    def _emit(self, state: _LiveState, events: List[Dict[str, Any]]) -> List[StreamMessage]:
        messages = []
        for event in events:
            state.cursor = max(state.cursor, event["id"])
            if len(state.streamed) >= self.max_events:
                break
            platform = event.get("sourcePlatform")
            state.streamed.append(event)
            status = state.statuses.get(platform)
            if status is not None:
                status.events_found += 1
            messages.append(StreamMessage.event(event, ResultSource.LIVE_SCRAPING, platform))
        return messages

    @staticmethod
    def _should_stop(budget: StreamBudget, abort: Optional[asyncio.Event]) -> bool:
        return budget.is_exhausted() or (abort is not None and abort.is_set())

    @staticmethod
    async def _sleep(seconds: float, abort: Optional[asyncio.Event]) -> None:
        """Sleep until the next poll, waking early when aborted"""
        if seconds <= 0:
            return
        if abort is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(abort.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

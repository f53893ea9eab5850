"""Batch scraping - scheduled/triggered crawls over several cities"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from src.core.config import settings
from src.core.database import get_db_context
from src.core.logging import logger
from src.crawlers.adapter import SUPPORTED_PLATFORMS
from src.jobs.dispatcher import JobDispatcher
from src.repositories.impl.event_repository import EventRepository
from src.repositories.models import ScrapingJob
from src.repositories.impl.scraping_job_repository import ScrapingJobRepository


@dataclass
class BatchTrigger:
    job_id: str
    status: str
    cities: List[str]
    platforms: List[str]
    max_events: int
    query: str


class BatchScrapingService:
    """Starts multi-city crawl jobs and runs the retention sweep

    A batch job visits every city and platform (no early stop). Its events
    land in the store and serve later store-first searches.
    """

    def __init__(self, session_factory: sessionmaker, dispatcher: JobDispatcher):
        self.session_factory = session_factory
        self.dispatcher = dispatcher

    async def trigger(
        self,
        cities: Optional[Sequence[str]] = None,
        platforms: Optional[Sequence[str]] = None,
        max_events: Optional[int] = None,
        query: Optional[str] = None,
    ) -> BatchTrigger:
        """Create and dispatch a batch job

        Raises:
            DatabaseException: the job row could not be created
        """
        cities = [c.strip() for c in (cities or settings.batch_scrape_cities) if c and c.strip()]
        if not cities:
            cities = [settings.default_city]
        platforms = [p for p in (platforms or SUPPORTED_PLATFORMS) if p in SUPPORTED_PLATFORMS]
        max_events = max_events or settings.batch_scrape_max_events
        query = query if query is not None else settings.batch_scrape_query

        job_id = self.dispatcher.create_job(
            "scraping",
            query=query,
            city=",".join(cities),
            platforms=platforms,
        )
        self.dispatcher.dispatch(job_id, early_stop=False, max_items=max_events)
        logger.info(
            f"[JOB] Batch {job_id} triggered: cities={cities} platforms={platforms} "
            f"max_events={max_events} query='{query}'"
        )
        return BatchTrigger(
            job_id=job_id,
            status="queued",
            cities=cities,
            platforms=list(platforms),
            max_events=max_events,
            query=query,
        )

    def status(self, limit: int = 10) -> List[ScrapingJob]:
        """Most recent jobs, newest first (detached from the session)"""
        with get_db_context(self.session_factory) as db:
            jobs = ScrapingJobRepository(db).recent(limit)
            db.expunge_all()
            return jobs

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Delete events dated more than retention_days ago"""
        cutoff = (now or datetime.utcnow()) - timedelta(days=settings.retention_days)
        with get_db_context(self.session_factory) as db:
            deleted = EventRepository(db).delete_expired(cutoff)
        logger.info(f"[JOB] Retention sweep removed {deleted} events older than {cutoff:%Y-%m-%d}")
        return deleted

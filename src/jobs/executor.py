"""Job executor - runs one scraping job end to end

Platforms run one after another. A search job stops at the first platform
that saved anything (latency over completeness); batch jobs sweep every
city and platform. Crawl and pipeline failures are already folded into
counts by the layers below, so anything reaching this level is
unexpected and fails the job.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from src.core.config import settings
from src.core.database import get_db_context
from src.core.logging import logger
from src.crawlers.adapter import SUPPORTED_PLATFORMS, CrawlAdapter
from src.pipeline.processor import EventProcessor, RejectTally
from src.repositories.impl.scraping_job_repository import ScrapingJobRepository


@dataclass
class PlatformRun:
    platform: str
    city: str
    backend: str = "none"
    tally: RejectTally = field(default_factory=RejectTally)

    @property
    def saved(self) -> int:
        return self.tally.saved


@dataclass
class JobReport:
    job_id: str
    status: str
    events_scraped: int = 0
    runs: List[PlatformRun] = field(default_factory=list)
    skipped_platforms: List[str] = field(default_factory=list)

    @property
    def tally(self) -> RejectTally:
        total = RejectTally()
        for run in self.runs:
            total.merge(run.tally)
        return total


@dataclass(frozen=True)
class JobSpec:
    """Snapshot of the job row taken when the run starts"""

    query: str
    cities: List[str]
    platforms: List[str]


class JobExecutor:
    """Drives a job through running -> completed/failed

    Args:
        session_factory: sessionmaker for job and event writes
        adapter: crawl adapter (backend fallback per platform)
        processor: event pipeline
    """

    def __init__(self, session_factory: sessionmaker, adapter: CrawlAdapter, processor: EventProcessor):
        self.session_factory = session_factory
        self.adapter = adapter
        self.processor = processor

    async def run(
        self,
        job_id: str,
        final_attempt: bool = True,
        early_stop: bool = True,
        max_items: Optional[int] = None,
    ) -> JobReport:
        """Execute a job

        Args:
            job_id: job to run (pending, queued, or running on a retry)
            final_attempt: mark the job failed on error; otherwise only
                record the error so a retry can pick the job up again
            early_stop: stop after the first platform that saved events
            max_items: records requested per platform crawl

        Raises:
            Exception: anything unexpected, after the job row is updated
        """
        max_items = max_items or settings.search_max_results
        spec = self._start(job_id)
        report = JobReport(job_id=job_id, status="running")

        try:
            for platform in spec.platforms:
                if platform not in SUPPORTED_PLATFORMS:
                    logger.warning(f"[JOB] {job_id}: skipping unsupported platform '{platform}'")
                    report.skipped_platforms.append(platform)
                    continue

                platform_saved = 0
                for city in spec.cities:
                    run = await self._run_platform(job_id, platform, spec.query, city, max_items)
                    report.runs.append(run)
                    platform_saved += run.saved

                if early_stop and platform_saved > 0:
                    remaining = [p for p in spec.platforms if p not in {r.platform for r in report.runs}]
                    if remaining:
                        logger.info(f"[JOB] {job_id}: {platform} saved {platform_saved}, skipping {remaining}")
                        report.skipped_platforms.extend(remaining)
                    break

            report.events_scraped = sum(run.saved for run in report.runs)
            with get_db_context(self.session_factory) as db:
                ScrapingJobRepository(db).mark_completed(job_id, report.events_scraped)
            report.status = "completed"
            logger.info(f"[JOB] {job_id} completed: {report.tally.summary()}")
            return report

        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            logger.error(f"[JOB] {job_id} failed (final_attempt={final_attempt}): {message}")
            self._record_failure(job_id, message, final_attempt)
            raise

    def _start(self, job_id: str) -> JobSpec:
        with get_db_context(self.session_factory) as db:
            job = ScrapingJobRepository(db).mark_running(job_id)
            cities = [c.strip() for c in (job.city or settings.default_city).split(",") if c.strip()]
            platforms = list(job.platforms or settings.default_platforms)
            spec = JobSpec(query=job.query or "", cities=cities, platforms=platforms)
        logger.info(
            f"[JOB] {job_id} running (query='{spec.query}', cities={spec.cities}, platforms={spec.platforms})"
        )
        return spec

    async def _run_platform(self, job_id: str, platform: str, query: str, city: str, max_items: int) -> PlatformRun:
        run = PlatformRun(platform=platform, city=city)
        backends = self.adapter.backend_names(platform)
        logger.info(f"[JOB] {job_id}: crawling {platform} in {city} (backends={backends})")

        async for record in self.adapter.stream(platform, query, city, max_items):
            run.backend = record.backend
            run.tally.add(await self.processor.process(record, platform, city))

        logger.info(f"[JOB] {job_id}: {platform}/{city} via {run.backend}: {run.tally.summary()}")
        return run

    def fail(self, job_id: str, message: str) -> None:
        """Mark a job failed outside of a run (it could not be scheduled)"""
        logger.error(f"[JOB] {job_id} failed: {message}")
        self._record_failure(job_id, message, final_attempt=True)

    def _record_failure(self, job_id: str, message: str, final_attempt: bool) -> None:
        try:
            with get_db_context(self.session_factory) as db:
                repository = ScrapingJobRepository(db)
                if final_attempt:
                    repository.mark_failed(job_id, message)
                else:
                    repository.record_error(job_id, message)
        except Exception as e:
            logger.error(f"[JOB] {job_id}: could not record failure: {type(e).__name__}: {e}")

"""Background scheduler: retention sweep and periodic batch crawls"""

import asyncio
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.core.config import settings
from src.core.logging import logger
from src.services.impl.batch_scraping_service import BatchScrapingService

BATCH_TRIGGER_TIMEOUT_S = 30.0


class RetentionScheduler:
    """APScheduler jobs run in worker threads

    The batch crawl is handed back to the application's event loop so its
    job runs in the same worker pool as search-triggered crawls.
    """

    def __init__(
        self,
        batch_service: BatchScrapingService,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.batch_service = batch_service
        self.loop = loop
        self.scheduler: Optional[BackgroundScheduler] = None

    def run_retention(self) -> Optional[int]:
        try:
            logger.info("[Scheduler] Starting retention sweep...")
            deleted = self.batch_service.cleanup_expired()
            logger.info(f"[Scheduler] Retention sweep completed: {deleted} events removed")
            return deleted
        except Exception as e:
            logger.error(f"[Scheduler] Retention sweep failed: {e}", exc_info=True)
            return None

    def run_batch_crawl(self) -> Optional[str]:
        if self.loop is None or self.loop.is_closed():
            logger.warning("[Scheduler] No event loop for the batch crawl, skipping")
            return None
        try:
            future = asyncio.run_coroutine_threadsafe(
                self.batch_service.trigger(cities=settings.batch_scrape_cities),
                self.loop,
            )
            started = future.result(timeout=BATCH_TRIGGER_TIMEOUT_S)
            logger.info(f"[Scheduler] Batch crawl {started.job_id} started")
            return started.job_id
        except Exception as e:
            logger.error(f"[Scheduler] Batch crawl trigger failed: {e}", exc_info=True)
            return None

    def build(self) -> BackgroundScheduler:
        scheduler = BackgroundScheduler()

        scheduler.add_job(
            self.run_retention,
            trigger=CronTrigger(hour=settings.retention_cron_hour, minute=0),
            id="event_retention",
            name="Expired event retention sweep",
            replace_existing=True,
        )
        logger.info(f"[Scheduler] Retention sweep scheduled daily at {settings.retention_cron_hour:02d}:00")

        if settings.batch_scrape_enabled:
            scheduler.add_job(
                self.run_batch_crawl,
                trigger=IntervalTrigger(hours=settings.batch_scrape_interval_hours),
                id="batch_crawl",
                name="Periodic batch crawl",
                replace_existing=True,
            )
            logger.info(
                f"[Scheduler] Batch crawl scheduled every {settings.batch_scrape_interval_hours}h "
                f"for {settings.batch_scrape_cities}"
            )

        self.scheduler = scheduler
        return scheduler

    def start(self) -> None:
        if self.scheduler is None:
            self.build()
        self.scheduler.start()

    def shutdown(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("[Scheduler] Stopped")

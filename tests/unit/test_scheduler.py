"""Retention / batch-crawl scheduler"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.config import settings
from src.scheduler.retention import RetentionScheduler


class TestRetentionScheduler:
    def test_build_registers_jobs(self, monkeypatch):
        monkeypatch.setattr(settings, "batch_scrape_enabled", False)
        scheduler = RetentionScheduler(MagicMock()).build()
        assert [job.id for job in scheduler.get_jobs()] == ["event_retention"]

        monkeypatch.setattr(settings, "batch_scrape_enabled", True)
        scheduler = RetentionScheduler(MagicMock()).build()
        assert sorted(job.id for job in scheduler.get_jobs()) == ["batch_crawl", "event_retention"]

    def test_retention_errors_are_contained(self):
        service = MagicMock()
        service.cleanup_expired.return_value = 4
        assert RetentionScheduler(service).run_retention() == 4

        service.cleanup_expired.side_effect = RuntimeError("db down")
        assert RetentionScheduler(service).run_retention() is None

    def test_batch_crawl_without_loop_is_skipped(self):
        service = MagicMock()
        assert RetentionScheduler(service, loop=None).run_batch_crawl() is None
        service.trigger.assert_not_called()

    @pytest.mark.asyncio
    async def test_batch_crawl_runs_on_app_loop(self):
        service = MagicMock()
        service.trigger = AsyncMock(return_value=SimpleNamespace(job_id="scraping-1"))
        scheduler = RetentionScheduler(service, loop=asyncio.get_running_loop())

        # scheduler jobs run on a worker thread
        job_id = await asyncio.to_thread(scheduler.run_batch_crawl)

        assert job_id == "scraping-1"
        service.trigger.assert_awaited_once_with(cities=settings.batch_scrape_cities)

    @pytest.mark.asyncio
    async def test_batch_crawl_failure_returns_none(self):
        service = MagicMock()
        service.trigger = AsyncMock(side_effect=RuntimeError("no db"))
        scheduler = RetentionScheduler(service, loop=asyncio.get_running_loop())

        assert await asyncio.to_thread(scheduler.run_batch_crawl) is None

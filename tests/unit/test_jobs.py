"""Job lifecycle, executor, worker pool, queue and dispatcher"""
import asyncio
import re
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import FakeBackend, make_eventbrite, make_luma
from src.core.exceptions import InvalidJobTransitionException, JobException, JobNotFoundException
from src.crawlers.adapter import CrawlAdapter
from src.jobs.dispatcher import JobDispatcher, new_job_id
from src.jobs.executor import JobExecutor
from src.jobs.queue import DELAYED_KEY, QUEUE_KEY, JobQueue, QueuedJob, QueueWorker, retry_delay
from src.jobs.state import JobStatus, can_transition, ensure_transition
from src.jobs.worker_pool import BackgroundWorkerPool
from src.pipeline import EventProcessor
from src.repositories.impl.scraping_job_repository import ScrapingJobRepository


def create_job(session_factory, job_id="search-1", platforms=("luma", "eventbrite"), city="San Francisco"):
    db = session_factory()
    try:
        ScrapingJobRepository(db).create(job_id, query="python", city=city, platforms=platforms)
    finally:
        db.close()
    return job_id


def load_job(session_factory, job_id):
    db = session_factory()
    try:
        job = ScrapingJobRepository(db).require(job_id)
        db.expunge(job)
        return job
    finally:
        db.close()


class TestJobState:
    def test_monotonic_transitions(self):
        assert can_transition(JobStatus.QUEUED, JobStatus.RUNNING)
        assert can_transition(JobStatus.RUNNING, JobStatus.RUNNING)
        assert not can_transition(JobStatus.COMPLETED, JobStatus.RUNNING)
        assert not can_transition(JobStatus.FAILED, JobStatus.COMPLETED)
        assert not can_transition(JobStatus.RUNNING, JobStatus.QUEUED)
        assert can_transition(JobStatus.QUEUED, JobStatus.FAILED)
        assert not can_transition(JobStatus.QUEUED, JobStatus.COMPLETED)

    def test_terminal_states(self):
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.RUNNING.is_terminal

    def test_ensure_transition_rejects_unknown_status(self):
        with pytest.raises(InvalidJobTransitionException):
            ensure_transition("job-1", "exploded", JobStatus.RUNNING)


class TestScrapingJobRepository:
    def test_lifecycle(self, session_factory):
        create_job(session_factory)
        db = session_factory()
        try:
            repository = ScrapingJobRepository(db)
            running = repository.mark_running("search-1")
            assert running.status == "running"
            assert running.started_at is not None
            assert running.attempts == 1

            done = repository.mark_completed("search-1", events_scraped=4)
            assert done.status == "completed"
            assert done.events_scraped == 4
            assert done.completed_at is not None

            with pytest.raises(InvalidJobTransitionException):
                repository.mark_running("search-1")
            with pytest.raises(InvalidJobTransitionException):
                repository.mark_failed("search-1", "late failure")

            audited = repository.record_error("search-1", "late failure")
            assert audited.status == "completed"
            assert audited.error_message == "late failure"
        finally:
            db.close()

    def test_new_jobs_cannot_start_running(self, session_factory):
        db = session_factory()
        try:
            with pytest.raises(ValueError):
                ScrapingJobRepository(db).create("x", status=JobStatus.RUNNING)
        finally:
            db.close()

    def test_unknown_job(self, session_factory):
        db = session_factory()
        try:
            repository = ScrapingJobRepository(db)
            assert repository.get("missing") is None
            with pytest.raises(JobNotFoundException):
                repository.mark_running("missing")
        finally:
            db.close()

    def test_recent_is_newest_first(self, session_factory):
        create_job(session_factory, "a")
        create_job(session_factory, "b")
        db = session_factory()
        try:
            assert [job.id for job in ScrapingJobRepository(db).recent(limit=1)] == ["b"]
        finally:
            db.close()


class TestJobExecutor:
    def build(self, session_factory, luma_records=(), eventbrite_records=()):
        luma = FakeBackend("direct", records=list(luma_records))
        eventbrite = FakeBackend("direct", records=list(eventbrite_records))
        adapter = CrawlAdapter({"luma": [luma], "eventbrite": [eventbrite]})
        executor = JobExecutor(session_factory, adapter, EventProcessor(session_factory))
        return executor, luma, eventbrite

    @pytest.mark.asyncio
    async def test_search_job_stops_after_first_productive_platform(self, session_factory):
        executor, luma, eventbrite = self.build(session_factory, [make_luma()], [make_eventbrite()])
        create_job(session_factory)

        report = await executor.run("search-1", early_stop=True)

        assert report.status == "completed"
        assert report.events_scraped == 1
        assert report.skipped_platforms == ["eventbrite"]
        assert eventbrite.calls == 0
        job = load_job(session_factory, "search-1")
        assert job.status == "completed"
        assert job.events_scraped == 1

    @pytest.mark.asyncio
    async def test_batch_job_sweeps_every_platform_and_city(self, session_factory):
        executor, luma, eventbrite = self.build(session_factory, [make_luma()], [make_eventbrite()])
        create_job(session_factory, city="San Francisco, Seattle")

        report = await executor.run("search-1", early_stop=False)

        assert [(run.platform, run.city) for run in report.runs] == [
            ("luma", "San Francisco"),
            ("luma", "Seattle"),
            ("eventbrite", "San Francisco"),
            ("eventbrite", "Seattle"),
        ]
        # the same record seen again for the second city is a duplicate
        assert report.events_scraped == 2
        assert report.tally.rejected["duplicate"] == 2

    @pytest.mark.asyncio
    async def test_empty_crawl_still_completes(self, session_factory):
        executor, _, _ = self.build(session_factory)
        create_job(session_factory, platforms=("meetup", "luma"))

        report = await executor.run("search-1")

        assert report.status == "completed"
        assert report.events_scraped == 0
        assert report.skipped_platforms == ["meetup"]

    @pytest.mark.asyncio
    async def test_failure_on_final_attempt_fails_job(self, session_factory):
        executor, _, _ = self.build(session_factory)
        create_job(session_factory)

        with patch.object(executor, "_run_platform", AsyncMock(side_effect=RuntimeError("boom"))):
            with pytest.raises(RuntimeError):
                await executor.run("search-1", final_attempt=True)

        job = load_job(session_factory, "search-1")
        assert job.status == "failed"
        assert job.error_message == "RuntimeError: boom"

    @pytest.mark.asyncio
    async def test_failure_before_final_attempt_only_records_error(self, session_factory):
        executor, _, _ = self.build(session_factory)
        create_job(session_factory)

        with patch.object(executor, "_run_platform", AsyncMock(side_effect=RuntimeError("boom"))):
            with pytest.raises(RuntimeError):
                await executor.run("search-1", final_attempt=False)

        job = load_job(session_factory, "search-1")
        assert job.status == "running"
        assert job.error_message == "RuntimeError: boom"

        # the retry re-enters running and can still complete
        await executor.run("search-1")
        job = load_job(session_factory, "search-1")
        assert job.status == "completed"
        assert job.attempts == 2


class TestBackgroundWorkerPool:
    @pytest.mark.asyncio
    async def test_failures_are_contained(self):
        pool = BackgroundWorkerPool(concurrency=2)
        done = []

        async def ok():
            done.append("ok")

        async def broken():
            raise RuntimeError("boom")

        pool.submit("a", ok)
        pool.submit("b", broken)

        assert await pool.wait_idle(timeout=1) is True
        assert done == ["ok"]
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_concurrency_cap(self):
        pool = BackgroundWorkerPool(concurrency=1)
        running = []
        peak = []

        async def job():
            running.append(1)
            peak.append(len(running))
            await asyncio.sleep(0.01)
            running.pop()

        for i in range(3):
            pool.submit(f"job-{i}", job)
        await pool.wait_idle(timeout=1)

        assert max(peak) == 1

    @pytest.mark.asyncio
    async def test_shutdown_cancels_stragglers_and_refuses_work(self):
        pool = BackgroundWorkerPool(concurrency=1)

        async def hang():
            await asyncio.sleep(10)

        task = pool.submit("slow", hang)
        await asyncio.sleep(0)
        await pool.shutdown(timeout=0.05)

        assert task.cancelled()
        with pytest.raises(RuntimeError):
            pool.submit("late", hang)


class TestJobQueue:
    def test_retry_delay_is_exponential(self):
        assert [retry_delay(n, 5) for n in (1, 2, 3)] == [5, 10, 20]

    def test_in_memory_fifo(self):
        queue = JobQueue()
        queue.enqueue(QueuedJob("a"))
        queue.enqueue(QueuedJob("b", max_items=7))

        first, second = queue.dequeue(), queue.dequeue()

        assert (first.job_id, second.job_id) == ("a", "b")
        assert second.max_items == 7
        assert queue.dequeue() is None

    def test_delayed_jobs_wait_for_backoff(self):
        queue = JobQueue()
        queue.enqueue(QueuedJob("a", attempt=2), delay_s=60)

        assert queue.dequeue() is None
        assert queue.size() == (0, 1)
        assert queue.promote_due(now=time.time() + 120) == 1
        assert queue.dequeue().attempt == 2

    def test_malformed_message_is_dropped(self):
        queue = JobQueue()
        queue._ready.appendleft("not json")
        assert queue.dequeue() is None

    def test_redis_layout(self):
        redis_client = MagicMock()
        queue = JobQueue(redis_client)

        queue.enqueue(QueuedJob("a"))
        queue.enqueue(QueuedJob("b"), delay_s=5)

        assert redis_client.lpush.call_args.args[0] == QUEUE_KEY
        assert redis_client.zadd.call_args.args[0] == DELAYED_KEY
        assert queue.backend_name == "redis"


class TestQueueWorker:
    def worker(self, error=None):
        executor = MagicMock()
        executor.run = AsyncMock(side_effect=error)
        queue = JobQueue()
        return QueueWorker(queue, executor, max_attempts=2, backoff_base_s=1), queue, executor

    @pytest.mark.asyncio
    async def test_success(self):
        worker, queue, executor = self.worker()

        assert await worker.handle(QueuedJob("a", early_stop=False, max_items=5)) is True
        executor.run.assert_awaited_once_with("a", final_attempt=False, early_stop=False, max_items=5)

    @pytest.mark.asyncio
    async def test_failed_attempt_is_requeued_with_backoff(self):
        worker, queue, executor = self.worker(RuntimeError("boom"))

        assert await worker.handle(QueuedJob("a")) is False

        assert queue.size() == (0, 1)
        queue.promote_due(now=time.time() + 5)
        retried = queue.dequeue()
        assert (retried.job_id, retried.attempt) == ("a", 2)

    @pytest.mark.asyncio
    async def test_final_attempt_is_not_requeued(self):
        worker, queue, executor = self.worker(RuntimeError("boom"))

        assert await worker.handle(QueuedJob("a", attempt=2)) is False
        assert executor.run.call_args.kwargs["final_attempt"] is True
        assert queue.size() == (0, 0)

    @pytest.mark.asyncio
    async def test_unknown_job_is_dropped(self):
        worker, queue, _ = self.worker(JobNotFoundException("gone"))

        assert await worker.handle(QueuedJob("gone")) is False
        assert queue.size() == (0, 0)

    @pytest.mark.asyncio
    async def test_unqueueable_retry_fails_the_job(self, session_factory):
        create_job(session_factory)
        executor = JobExecutor(session_factory, CrawlAdapter({}), EventProcessor(session_factory))
        queue = JobQueue()
        queue.enqueue = MagicMock(side_effect=ConnectionError("redis down"))
        worker = QueueWorker(queue, executor, max_attempts=2, backoff_base_s=1)

        with patch.object(executor, "_run_platform", AsyncMock(side_effect=RuntimeError("boom"))):
            assert await worker.handle(QueuedJob("search-1")) is False

        job = load_job(session_factory, "search-1")
        assert job.status == "failed"
        assert job.error_message.startswith("RuntimeError: boom")
        assert "retry not queued: ConnectionError" in job.error_message

    @pytest.mark.asyncio
    async def test_loop_survives_a_handler_error(self):
        worker, queue, _ = self.worker()
        worker.poll_interval_s = 0.01
        queue.enqueue(QueuedJob("job-1"))
        queue.enqueue(QueuedJob("job-2"))
        worker.handle = AsyncMock(side_effect=[ConnectionError("redis down"), True])

        worker.start()
        for _ in range(100):
            if worker.handle.await_count == 2:
                break
            await asyncio.sleep(0.01)
        running = not worker._task.done()
        await worker.stop()

        assert [c.args[0].job_id for c in worker.handle.await_args_list] == ["job-1", "job-2"]
        assert running


class TestJobDispatcher:
    def test_job_id_format(self):
        assert re.fullmatch(r"search-\d{13}-[0-9a-f]{9}", new_job_id("search"))

    def test_queue_mode_needs_queue(self, session_factory):
        with pytest.raises(ValueError):
            JobDispatcher(session_factory, MagicMock(), MagicMock(), queue=None, mode="queue")

    def test_create_job_row(self, session_factory):
        dispatcher = JobDispatcher(session_factory, MagicMock(), MagicMock(), mode="inline")

        job_id = dispatcher.create_job("scraping", query="ai", city="Seattle", platforms=["luma"])

        job = load_job(session_factory, job_id)
        assert job_id.startswith("scraping-")
        assert job.status == "queued"
        assert job.platform == "multi"
        assert job.platforms == ["luma"]

    def test_queue_mode_enqueue_failure_fails_the_job(self, session_factory):
        executor = JobExecutor(session_factory, CrawlAdapter({}), EventProcessor(session_factory))
        queue = JobQueue()
        queue.enqueue = MagicMock(side_effect=ConnectionError("redis down"))
        dispatcher = JobDispatcher(session_factory, executor, MagicMock(), queue=queue, mode="queue")
        job_id = dispatcher.create_job("search", query="ai", city="Seattle", platforms=["luma"])

        with pytest.raises(JobException):
            dispatcher.dispatch(job_id)

        job = load_job(session_factory, job_id)
        assert job.status == "failed"
        assert "ConnectionError" in job.error_message

    def test_queue_mode_enqueues(self, session_factory):
        queue = JobQueue()
        pool = MagicMock()
        dispatcher = JobDispatcher(session_factory, MagicMock(), pool, queue=queue, mode="queue")

        dispatcher.dispatch("job-1", early_stop=False, max_items=3)

        queued = queue.dequeue()
        assert (queued.job_id, queued.early_stop, queued.max_items) == ("job-1", False, 3)
        pool.submit.assert_not_called()

    @pytest.mark.asyncio
    async def test_inline_mode_runs_in_pool(self, session_factory):
        executor = MagicMock()
        executor.run = AsyncMock()
        pool = BackgroundWorkerPool(concurrency=1)
        dispatcher = JobDispatcher(session_factory, executor, pool, mode="inline")

        dispatcher.dispatch("job-1", max_items=3)
        await pool.wait_idle(timeout=1)

        executor.run.assert_awaited_once_with("job-1", final_attempt=True, early_stop=True, max_items=3)

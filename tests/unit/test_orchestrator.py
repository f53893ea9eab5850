"""Streaming search: cache, store-first and live-crawl paths end to end

The live path runs the real dispatcher, executor and pipeline against an
in-memory database; only the crawl backends and the result cache are fakes.
"""
import asyncio
from unittest.mock import MagicMock, patch

import pytest

from conftest import DummyCache, FakeBackend, future, make_eventbrite, make_luma
from src.core.exceptions import DatabaseQueryException
from src.crawlers.adapter import CrawlAdapter
from src.engine import SearchOrchestrator, StreamBudgetConfig
from src.engine.result import ResultSource, StreamMessage
from src.jobs.dispatcher import JobDispatcher
from src.jobs.executor import JobExecutor
from src.jobs.worker_pool import BackgroundWorkerPool
from src.pipeline import EventProcessor
from src.repositories.impl.scraping_job_repository import ScrapingJobRepository
from src.schemas.event_schema import SearchRequest

FAST = StreamBudgetConfig(max_duration_s=3.0, heartbeat_s=10.0, poll_interval_s=0.02)


class Harness:
    def __init__(self, session_factory, cache, luma=(), eventbrite=(), hang_s=0.0, budget=FAST, max_events=None):
        self.session_factory = session_factory
        self.cache = cache
        self.luma = FakeBackend("direct", records=list(luma), hang_s=hang_s)
        self.eventbrite = FakeBackend("direct", records=list(eventbrite))
        adapter = CrawlAdapter({"luma": [self.luma], "eventbrite": [self.eventbrite]})
        self.executor = JobExecutor(session_factory, adapter, EventProcessor(session_factory))
        self.pool = BackgroundWorkerPool(concurrency=2)
        self.dispatcher = JobDispatcher(session_factory, self.executor, self.pool, mode="inline")
        self.orchestrator = SearchOrchestrator(
            session_factory, cache, self.dispatcher, budget_config=budget, max_events=max_events
        )

    async def collect(self, request, abort=None):
        return [message.to_dict() async for message in self.orchestrator.search(request, abort)]

    async def close(self):
        await self.pool.shutdown(timeout=0.1)

    def job_summary(self):
        return [(job.status, job.events_scraped) for job in self.jobs()]

    def jobs(self):
        db = self.session_factory()
        try:
            return ScrapingJobRepository(db).recent(limit=10)
        finally:
            db.close()


async def seed(session_factory, records):
    processor = EventProcessor(session_factory)
    for record in records:
        assert (await processor.process(record, "luma", "San Francisco")).saved


def of_type(messages, kind):
    return [m for m in messages if m["type"] == kind]


def assert_single_terminal(messages):
    assert len(of_type(messages, "search_complete")) == 1
    assert messages[-1]["type"] == "search_complete"


class TestCachedAndStored:
    @pytest.mark.asyncio
    async def test_cache_hit_short_circuits(self, session_factory):
        cache = DummyCache(hit=[{"id": 7, "title": "Cached", "sourcePlatform": "eventbrite"}])
        harness = Harness(session_factory, cache)

        messages = await harness.collect(SearchRequest(query="python"))

        assert [m["type"] for m in messages] == ["event", "search_complete"]
        assert messages[0]["data"] == {
            "event": {"id": 7, "title": "Cached", "sourcePlatform": "eventbrite"},
            "source": "cache",
            "platform": "eventbrite",
        }
        assert messages[1]["data"] == {"totalEvents": 1, "source": "cache", "cached": True}
        assert harness.jobs() == []

    @pytest.mark.asyncio
    async def test_store_first_in_ranking_order(self, session_factory, dummy_cache):
        await seed(session_factory, [
            make_luma("alpha", start=future(days=8)),
            make_luma("bravo", start=future(days=3), name="Python Data Workshop"),
            make_luma("charlie", start=future(days=5), name="Python Web Workshop"),
        ])
        harness = Harness(session_factory, dummy_cache)

        messages = await harness.collect(SearchRequest(query="python"))

        events = of_type(messages, "event")
        assert [m["data"]["event"]["sourceId"] for m in events] == ["bravo", "charlie", "alpha"]
        assert {m["data"]["source"] for m in events} == {"database"}
        assert messages[-1]["data"] == {"totalEvents": 3, "source": "database", "cached": False}
        assert len(dummy_cache.saved) == 1
        assert len(dummy_cache.saved[0]) == 3
        assert harness.jobs() == []
        assert_single_terminal(messages)

    @pytest.mark.asyncio
    async def test_store_filters_apply(self, session_factory, dummy_cache):
        await seed(session_factory, [make_luma("alpha")])
        harness = Harness(session_factory, dummy_cache)

        messages = await harness.collect(SearchRequest(query="python", filters={"city": "Seattle"}))

        # nothing stored for Seattle, so the search goes live
        assert messages[-1]["data"]["source"] == "live_scraping"
        await harness.close()


class TestLiveCrawl:
    @pytest.mark.asyncio
    async def test_empty_live_run(self, session_factory, dummy_cache):
        harness = Harness(session_factory, dummy_cache)

        messages = await harness.collect(SearchRequest(query="python"))
        await harness.close()

        statuses = of_type(messages, "platform_status")
        assert statuses[0]["data"]["platforms"] == [
            {"platform": "luma", "status": "running", "eventsFound": 0},
            {"platform": "eventbrite", "status": "running", "eventsFound": 0},
        ]
        assert statuses[-1]["data"]["platforms"] == [
            {"platform": "luma", "status": "completed", "eventsFound": 0},
            {"platform": "eventbrite", "status": "completed", "eventsFound": 0},
        ]
        assert messages[-1]["data"] == {
            "totalEvents": 0,
            "source": "live_scraping",
            "timeout": False,
            "jobStatus": "completed",
            "platformsScraped": ["luma", "eventbrite"],
        }
        assert dummy_cache.saved == []
        assert_single_terminal(messages)

    @pytest.mark.asyncio
    async def test_live_events_are_streamed_and_cached(self, session_factory, dummy_cache):
        harness = Harness(
            session_factory,
            dummy_cache,
            luma=[make_luma("alpha"), make_luma("bravo", name="Python Data Workshop")],
            eventbrite=[make_eventbrite()],
        )

        messages = await harness.collect(SearchRequest(query="python"))
        await harness.close()

        events = of_type(messages, "event")
        assert [m["data"]["event"]["sourceId"] for m in events] == ["alpha", "bravo"]
        assert {(m["data"]["source"], m["data"]["platform"]) for m in events} == {("live_scraping", "luma")}
        final_status = of_type(messages, "platform_status")[-1]["data"]["platforms"]
        assert final_status[0] == {"platform": "luma", "status": "completed", "eventsFound": 2}
        assert messages[-1]["data"]["totalEvents"] == 2
        assert messages[-1]["data"]["jobStatus"] == "completed"
        # luma saved events, so eventbrite was never crawled
        assert harness.eventbrite.calls == 0
        assert [len(saved) for saved in dummy_cache.saved] == [2]
        assert_single_terminal(messages)

    @pytest.mark.asyncio
    async def test_deadline_ends_stream_with_partial_results(self, session_factory, dummy_cache):
        budget = StreamBudgetConfig(max_duration_s=0.6, heartbeat_s=10.0, poll_interval_s=0.05)
        harness = Harness(
            session_factory,
            dummy_cache,
            luma=[make_luma("alpha"), make_luma("bravo", name="Python Data Workshop")],
            hang_s=1.0,
            budget=budget,
        )

        messages = await harness.collect(SearchRequest(query="python"))

        assert len(of_type(messages, "event")) == 2
        final = messages[-1]["data"]
        assert final["timeout"] is True
        assert final["totalEvents"] == 2
        assert final["jobStatus"] == "running"
        assert dummy_cache.saved == []
        assert_single_terminal(messages)

        # the crawl outlives the stream and finishes on its own
        assert await harness.pool.wait_idle(timeout=3.0) is True
        assert harness.job_summary() == [("completed", 2)]
        await harness.close()

    @pytest.mark.asyncio
    async def test_abort_stops_polling(self, session_factory, dummy_cache):
        harness = Harness(session_factory, dummy_cache)
        abort = asyncio.Event()
        abort.set()

        messages = await harness.collect(SearchRequest(query="python"), abort)
        await harness.close()

        assert [m["type"] for m in messages] == ["platform_status", "search_complete"]
        assert messages[-1]["data"]["timeout"] is True
        assert messages[-1]["data"]["totalEvents"] == 0

    @pytest.mark.asyncio
    async def test_event_cap(self, session_factory, dummy_cache):
        harness = Harness(
            session_factory,
            dummy_cache,
            luma=[make_luma("alpha"), make_luma("bravo", name="Python Data Workshop")],
            max_events=1,
        )

        messages = await harness.collect(SearchRequest(query="python"))
        await harness.close()

        assert len(of_type(messages, "event")) == 1
        assert messages[-1]["data"]["totalEvents"] == 1
        assert messages[-1]["data"]["timeout"] is False
        assert_single_terminal(messages)

    @pytest.mark.asyncio
    async def test_failed_job_marks_platforms_failed(self, session_factory, dummy_cache):
        harness = Harness(session_factory, dummy_cache)

        with patch.object(JobExecutor, "_run_platform", side_effect=RuntimeError("boom")):
            messages = await harness.collect(SearchRequest(query="python", platforms=["luma"]))
            await harness.close()

        assert of_type(messages, "platform_status")[-1]["data"]["platforms"] == [
            {"platform": "luma", "status": "failed", "eventsFound": 0, "error": "RuntimeError: boom"},
        ]
        assert messages[-1]["data"]["jobStatus"] == "failed"
        assert messages[-1]["data"]["platformsScraped"] == ["luma"]
        assert_single_terminal(messages)


class TestFailures:
    @pytest.mark.asyncio
    async def test_job_creation_failure(self, session_factory, dummy_cache):
        dispatcher = MagicMock()
        dispatcher.create_job.side_effect = DatabaseQueryException("insert", "disk full")
        orchestrator = SearchOrchestrator(session_factory, dummy_cache, dispatcher, budget_config=FAST)

        messages = [m.to_dict() async for m in orchestrator.search(SearchRequest(query="python"))]

        assert [m["type"] for m in messages] == ["error", "search_complete"]
        assert messages[-1]["data"]["jobStatus"] == "failed"
        assert messages[-1]["data"]["totalEvents"] == 0
        dispatcher.dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_error_still_completes(self, session_factory):
        cache = MagicMock()
        cache.get_search.side_effect = RuntimeError("cache exploded")
        orchestrator = SearchOrchestrator(session_factory, cache, MagicMock(), budget_config=FAST)

        messages = [m.to_dict() async for m in orchestrator.search(SearchRequest(query="python"))]

        assert [m["type"] for m in messages] == ["error", "search_complete"]
        assert messages[0]["data"] == {"message": "Search failed", "error": "cache exploded"}

    def test_requires_collaborators(self, session_factory):
        with pytest.raises(ValueError):
            SearchOrchestrator(session_factory, None, MagicMock())

    @pytest.mark.asyncio
    async def test_inner_stream_is_closed_after_terminal(self, session_factory, dummy_cache):
        orchestrator = SearchOrchestrator(session_factory, dummy_cache, MagicMock(), budget_config=FAST)
        finalized = []

        async def run(request, budget, abort, progress):
            try:
                yield StreamMessage.search_complete(0, ResultSource.CACHE, cached=True)
                yield StreamMessage.heartbeat()
            finally:
                finalized.append(True)

        with patch.object(orchestrator, "_run", run):
            messages = [m.to_dict() async for m in orchestrator.search(SearchRequest(query="python"))]

        assert [m["type"] for m in messages] == ["search_complete"]
        assert finalized == [True]

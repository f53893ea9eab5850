"""Event pipeline: reject reasons, deduplication tiers, enrichment, backfill"""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import LONG_DESCRIPTION, future, make_eventbrite, make_luma
from src.core.config import settings
from src.core.exceptions import DatabaseConnectionException
from src.crawlers.details import EventDetails
from src.pipeline import DuplicateTier, EventProcessor, RejectReason
from src.pipeline.dedup import normalize_source_id, normalize_url
from src.repositories.impl.event_repository import EventRepository
from src.repositories.models import Event

CITY = "San Francisco"


@pytest.fixture
def processor(session_factory):
    return EventProcessor(session_factory)


def stored_events(session_factory):
    db = session_factory()
    try:
        return db.query(Event).order_by(Event.id).all()
    finally:
        db.close()


class TestRejectReasons:
    @pytest.mark.asyncio
    async def test_complete_event_is_saved_with_categories(self, processor, session_factory):
        result = await processor.process(make_luma(), "luma", CITY)

        assert result.saved is True
        db = session_factory()
        try:
            event = db.query(Event).one()
            assert event.id == result.event_id
            assert event.completeness_score == 90
            assert event.event_type == "workshop"
            assert event.tech_stack == ["python", "docker", "kubernetes"]
            pairs = {(c.category, c.value) for c in event.categories}
            assert ("technology", "python") in pairs
            assert ("event_type", "workshop") in pairs
        finally:
            db.close()

    @pytest.mark.asyncio
    async def test_incomplete_event(self, processor, session_factory):
        result = await processor.process(
            make_luma(name="Party", description="Short", organizer=None), "luma", CITY
        )

        assert result.saved is False
        assert result.reason == RejectReason.COMPLETENESS.value
        assert stored_events(session_factory) == []

    @pytest.mark.asyncio
    async def test_schema_violation(self, processor):
        result = await processor.process(make_luma(name="Python and Rust meetup", description=""), "luma", CITY)
        assert result.reason == RejectReason.VALIDATION.value

    @pytest.mark.asyncio
    async def test_old_date(self, processor):
        result = await processor.process(make_luma(start=datetime(2024, 6, 1, 18)), "luma", CITY)
        assert result.reason == RejectReason.OLD_DATE.value

    @pytest.mark.asyncio
    async def test_past_event_after_cutoff_is_saved(self, processor):
        result = await processor.process(make_luma(start=future(days=-10)), "luma", CITY)
        assert result.saved is True

    @pytest.mark.asyncio
    async def test_past_event_filter_is_opt_in(self, processor, monkeypatch):
        monkeypatch.setattr(settings, "past_event_filter_enabled", True)

        stale = await processor.process(make_luma("stale", start=future(days=-30)), "luma", CITY)
        recent = await processor.process(make_luma("recent", start=future(days=-2)), "luma", CITY)

        assert stale.reason == RejectReason.PAST_EVENT.value
        assert recent.saved is True

    @pytest.mark.asyncio
    async def test_non_tech_only_when_filter_enabled(self, processor, monkeypatch):
        record = make_luma(
            name="Wine tasting evening",
            description=(
                "A relaxed evening of wine tasting with local producers from across the valley, "
                "plus cheese and live music all night."
            ),
        )
        monkeypatch.setattr(settings, "tech_filter_enabled", True)
        result = await processor.process(record, "luma", CITY)
        assert result.reason == RejectReason.NON_TECH.value

        monkeypatch.setattr(settings, "tech_filter_enabled", False)
        assert (await processor.process(record, "luma", CITY)).saved is True

    @pytest.mark.asyncio
    async def test_unreachable_store(self, processor):
        with patch.object(EventRepository, "find_by_source", side_effect=DatabaseConnectionException("down")):
            result = await processor.process(make_luma(), "luma", CITY)
        assert result.reason == RejectReason.DB_ERROR.value

    @pytest.mark.asyncio
    async def test_unexpected_error_never_escapes(self, processor):
        with patch("src.pipeline.processor.to_draft", side_effect=ValueError("bad record")):
            result = await processor.process(make_luma(), "luma", CITY)
        assert result.saved is False
        assert result.reason == RejectReason.ERROR.value


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_same_record_twice_is_idempotent(self, processor, session_factory):
        first = await processor.process(make_luma(), "luma", CITY)
        second = await processor.process(make_luma(), "luma", CITY)

        assert second.reason == RejectReason.DUPLICATE.value
        assert second.duplicate_tier == DuplicateTier.SOURCE_ID
        assert second.event_id == first.event_id
        assert second.enriched is False
        assert len(stored_events(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_eventbrite_affiliate_suffix_is_same_event(self, processor, session_factory):
        await processor.process(make_eventbrite("555"), "eventbrite", CITY)
        result = await processor.process(make_eventbrite("555?aff=ebdssbdestsearch"), "eventbrite", CITY)

        assert result.duplicate_tier == DuplicateTier.SOURCE_ID
        assert len(stored_events(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_similar_event_inside_window(self, processor):
        start = future(days=12)
        await processor.process(make_luma("alpha", start=start), "luma", CITY)

        close = await processor.process(make_luma("bravo", start=start + timedelta(minutes=90)), "luma", CITY)
        far = await processor.process(make_luma("charlie", start=start + timedelta(hours=3)), "luma", CITY)

        assert close.duplicate_tier == DuplicateTier.SIMILAR
        assert far.saved is True

    @pytest.mark.asyncio
    async def test_url_prefix_match_is_counted(self, processor):
        await processor.process(make_luma("alpha-long", name="Rust Systems Workshop"), "luma", CITY)

        tally = await processor.process_batch([make_luma("alpha")], "luma", CITY)

        assert tally.saved == 0
        assert tally.rejected[RejectReason.DUPLICATE.value] == 1
        assert tally.url_prefix_matches == 1

    @pytest.mark.asyncio
    async def test_richer_duplicate_enriches_existing_row(self, processor, session_factory):
        first = await processor.process(make_luma(organizer=None), "luma", CITY)
        second = await processor.process(make_luma(), "luma", CITY)

        assert second.reason == RejectReason.DUPLICATE.value
        assert second.enriched is True
        events = stored_events(session_factory)
        assert len(events) == 1
        assert events[0].id == first.event_id
        assert events[0].organizer_name == "SF Python"
        assert events[0].completeness_score == 90

    def test_normalizers(self):
        assert normalize_source_id("555?aff=x&y=1", "eventbrite") == "555"
        assert normalize_source_id(" evt-1 ", "luma") == "evt-1"
        assert normalize_url("https://lu.ma/abc?utm=x#top") == "https://lu.ma/abc"
        assert normalize_url("") == ""


class TestBatch:
    @pytest.mark.asyncio
    async def test_tally_counts_every_outcome(self, processor):
        records = [
            make_luma("alpha"),
            make_luma("bravo", name="Party", description="Short", organizer=None),
            make_luma("alpha"),
        ]

        tally = await processor.process_batch(records, "luma", CITY)

        assert tally.saved == 1
        assert tally.total_rejected == 2
        assert tally.rejected[RejectReason.COMPLETENESS.value] == 1
        assert tally.rejected[RejectReason.DUPLICATE.value] == 1
        assert "saved=1 rejected=2" in tally.summary()


class TestBackfill:
    @pytest.mark.asyncio
    async def test_stub_description_is_backfilled(self, session_factory):
        fetcher = MagicMock()
        fetcher.fetch = AsyncMock(return_value=EventDetails(description=LONG_DESCRIPTION, organizer_name="PyBay"))
        processor = EventProcessor(session_factory, detail_fetcher=fetcher)

        result = await processor.process(
            make_luma(description="Technology event: Python", organizer=None), "luma", CITY
        )

        assert result.saved is True
        fetcher.fetch.assert_awaited_once_with("https://lu.ma/evt-abc123")
        event = stored_events(session_factory)[0]
        assert event.description == LONG_DESCRIPTION
        assert event.organizer_name == "PyBay"

    @pytest.mark.asyncio
    async def test_full_description_skips_fetch(self, session_factory):
        fetcher = MagicMock()
        fetcher.fetch = AsyncMock(return_value=None)
        processor = EventProcessor(session_factory, detail_fetcher=fetcher)

        await processor.process(make_luma(), "luma", CITY)

        fetcher.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_draft(self, session_factory):
        fetcher = MagicMock()
        fetcher.fetch = AsyncMock(return_value=None)
        processor = EventProcessor(session_factory, detail_fetcher=fetcher)

        result = await processor.process(make_luma(description="Technology event: Python"), "luma", CITY)

        # short description keeps completeness at 70, still above the gate
        assert result.saved is True
        assert stored_events(session_factory)[0].description == "Technology event: Python"

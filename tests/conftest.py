"""Shared test setup

Role:
- test environment (in-memory SQLite, no Redis, no Apify token)
- shared fakes: crawl backends, cache, record builders
- an isolated session factory per test

Environment variables are set before any ``src`` import because
settings and the default engine are built at import time.
"""

from __future__ import annotations

import asyncio
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, List, Optional

os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "INFO"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["APIFY_API_TOKEN"] = ""
os.environ["CRON_SECRET"] = ""

# project root on the import path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.database import Base
from src.crawlers.base import BaseCrawlBackend
from src.crawlers.records import EventbriteRecord, LumaRecord
from src.repositories import models  # noqa: F401

LONG_DESCRIPTION = (
    "Hands-on session for developers covering Python services, Docker images and "
    "Kubernetes deployments, with plenty of time for questions and networking afterwards."
)


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test (one shared connection)"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


def future(days: int = 10, hour: int = 18) -> datetime:
    base = datetime.utcnow().replace(hour=hour, minute=0, second=0, microsecond=0)
    return base + timedelta(days=days)


def iso(value: datetime) -> str:
    return value.isoformat() + "Z"


def make_luma(
    api_id: str = "evt-abc123",
    name: str = "Python Developers Workshop",
    start: Optional[datetime] = None,
    description: str = LONG_DESCRIPTION,
    organizer: Optional[str] = "SF Python",
    url: Optional[str] = None,
    backend: str = "direct",
) -> LumaRecord:
    return LumaRecord(
        api_id=api_id,
        name=name,
        backend=backend,
        description=description,
        start_at=iso(start or future()),
        url=url if url is not None else api_id,
        venue_name="Moscone Center",
        venue_address="747 Howard St",
        organizer_name=organizer,
    )


def make_eventbrite(
    event_id: str = "123456789",
    name: str = "AI Engineering Summit",
    start: Optional[datetime] = None,
    description: str = LONG_DESCRIPTION,
    organizer: Optional[str] = "Bay Area AI",
    backend: str = "direct",
) -> EventbriteRecord:
    start = start or future()
    return EventbriteRecord(
        id=event_id,
        name=name,
        backend=backend,
        url=f"https://www.eventbrite.com/e/ai-engineering-summit-{event_id}",
        start_date=start.strftime("%Y-%m-%d"),
        start_time=start.strftime("%H:%M"),
        full_description=description,
        venue_name="Pier 27",
        organizer_name=organizer,
    )


class FakeBackend(BaseCrawlBackend):
    """Crawl backend double

    Args:
        records: records to return / stream
        error: raised instead of returning records
        hang_s: after streaming every record, sleep this long (slow crawl)
    """

    def __init__(
        self,
        name: str = "direct",
        records: Optional[List[Any]] = None,
        error: Optional[Exception] = None,
        configured: bool = True,
        hang_s: float = 0.0,
    ):
        self.name = name
        self.records = list(records or [])
        self.error = error
        self.configured = configured
        self.hang_s = hang_s
        self.calls = 0

    def is_configured(self) -> bool:
        return self.configured

    async def fetch(self, query: str, city: str, max_items: int) -> List[Any]:
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.records[:max_items])

    async def stream(self, query: str, city: str, max_items: int):
        self.calls += 1
        if self.error:
            raise self.error
        for record in self.records[:max_items]:
            await asyncio.sleep(0)
            yield record
        if self.hang_s:
            await asyncio.sleep(self.hang_s)


class DummyCache:
    """Search-result cache double with the CacheAdapter surface"""

    def __init__(self, hit: Optional[List[dict]] = None):
        self.hit = hit
        self.saved: List[List[dict]] = []

    async def get_search(self, request) -> Optional[List[dict]]:
        return self.hit

    async def set_search(self, request, events: List[dict]) -> bool:
        self.saved.append(list(events))
        return True


@pytest.fixture
def dummy_cache() -> DummyCache:
    return DummyCache()

"""Crawl adapter - preferred backend with a direct fallback

Per platform: try the managed backend (when configured); if it raises or
returns nothing, try the direct backend; if that fails too, return an
empty outcome. Nothing raises past this boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Sequence

from src.core.logging import logger

from .apify_backend import ApifyBackend
from .base import CrawlBackend
from .eventbrite_backend import DirectEventbriteBackend
from .http_client import SharedHttpClient
from .luma_backend import DirectLumaBackend
from .records import RawRecord

SUPPORTED_PLATFORMS = ("luma", "eventbrite")


@dataclass
class CrawlOutcome:
    records: List[RawRecord] = field(default_factory=list)
    backend: str = "none"  # apify | direct | none

    @classmethod
    def empty(cls) -> "CrawlOutcome":
        return cls()

    @property
    def count(self) -> int:
        return len(self.records)


class CrawlAdapter:
    """Routes a platform crawl through its backend chain

    Example:
        adapter = CrawlAdapter.from_settings(http_client)
        outcome = await adapter.crawl("luma", "react", "Seattle", 20)
    """

    def __init__(self, backends: Dict[str, Sequence[CrawlBackend]]):
        self.backends = {platform: list(chain) for platform, chain in backends.items()}

    @classmethod
    def from_settings(cls, http_client: SharedHttpClient) -> "CrawlAdapter":
        return cls({
            "luma": [ApifyBackend("luma", http_client), DirectLumaBackend(http_client)],
            "eventbrite": [ApifyBackend("eventbrite", http_client), DirectEventbriteBackend()],
        })

    def _chain(self, platform: str) -> List[CrawlBackend]:
        chain = self.backends.get(platform)
        if chain is None:
            logger.warning(f"[CRAWL] Unknown platform '{platform}'")
            return []
        return [backend for backend in chain if backend.is_configured()]

    async def crawl(self, platform: str, query: str, city: str, max_items: int) -> CrawlOutcome:
        for backend in self._chain(platform):
            try:
                records = await backend.fetch(query, city, max_items)
            except Exception as e:
                logger.warning(f"[CRAWL] {platform}/{backend.name} failed, trying next backend: {type(e).__name__}: {e}")
                continue
            if records:
                logger.info(f"[CRAWL] {platform}/{backend.name}: {len(records)} records")
                return CrawlOutcome(records=list(records[:max_items]), backend=backend.name)
            logger.info(f"[CRAWL] {platform}/{backend.name} returned no records, trying next backend")

        logger.info(f"[CRAWL] {platform}: all backends exhausted, no records")
        return CrawlOutcome.empty()

    async def stream(
        self,
        platform: str,
        query: str,
        city: str,
        max_items: int,
    ) -> AsyncIterator[RawRecord]:
        """Yield records one at a time with the same fallback policy

        A backend that fails after yielding some records ends the stream;
        the next backend is only tried when nothing was yielded.
        """
        for backend in self._chain(platform):
            yielded = 0
            try:
                async for record in backend.stream(query, city, max_items):
                    yielded += 1
                    yield record
                    if yielded >= max_items:
                        break
            except Exception as e:
                logger.warning(f"[CRAWL] {platform}/{backend.name} stream failed after {yielded} records: {type(e).__name__}: {e}")
            if yielded:
                logger.info(f"[CRAWL] {platform}/{backend.name}: streamed {yielded} records")
                return
            logger.info(f"[CRAWL] {platform}/{backend.name} yielded nothing, trying next backend")

    def backend_names(self, platform: str) -> List[str]:
        return [backend.name for backend in self._chain(platform)]

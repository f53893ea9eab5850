"""Crawl backend interface

Every platform has a preferred (managed) backend and a direct fallback.
Both implement this interface and emit typed raw records.
"""

from typing import AsyncIterator, List, Protocol, runtime_checkable

from .records import RawRecord


@runtime_checkable
class CrawlBackend(Protocol):
    """Contract shared by managed and direct backends

    Example:
        class DirectLumaBackend(BaseCrawlBackend):
            name = "direct"

            async def fetch(self, query, city, max_items):
                ...
    """

    name: str

    def is_configured(self) -> bool:
        ...

    async def fetch(self, query: str, city: str, max_items: int) -> List[RawRecord]:
        """Fetch raw records

        Raises:
            CrawlerException: backend failed (caller falls back)
        """
        ...

    def stream(self, query: str, city: str, max_items: int) -> AsyncIterator[RawRecord]:
        ...


class BaseCrawlBackend:
    """Default ``stream`` built on ``fetch`` for backends that only page once"""

    name = "direct"

    def is_configured(self) -> bool:
        return True

    async def fetch(self, query: str, city: str, max_items: int) -> List[RawRecord]:
        raise NotImplementedError

    async def stream(self, query: str, city: str, max_items: int) -> AsyncIterator[RawRecord]:
        records = await self.fetch(query, city, max_items)
        for record in records[:max_items]:
            yield record


def slugify(value: str) -> str:
    """Eventbrite path segment: lowercase, whitespace runs become dashes"""
    return "-".join(value.strip().lower().split())

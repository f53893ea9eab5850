"""Managed crawl backend (Apify actors)

Runs an actor synchronously and reads its dataset items in one call:
POST {base}/acts/{actor_id}/run-sync-get-dataset-items?token=...
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from src.core.config import settings
from src.core.exceptions import (
    BackendNotConfiguredException,
    BlockedException,
    CrawlerException,
    ParsingException,
)
from src.core.logging import logger

from .base import BaseCrawlBackend, slugify
from .http_client import SharedHttpClient
from .records import EventbriteRecord, LumaRecord, RawRecord, parse_records

EVENTBRITE_SEARCH_BASE = "https://www.eventbrite.com/d"


def eventbrite_search_url(query: str, city: str) -> str:
    location = slugify(city) or "online"
    path = slugify(query) if query and query.strip() else "all-events"
    return f"{EVENTBRITE_SEARCH_BASE}/{location}/{path}/?page=1"


def build_actor_input(platform: str, query: str, city: str, max_items: int) -> Dict[str, Any]:
    """Actor input payload for each platform's actor"""
    if platform == "eventbrite":
        return {
            "start_urls": [{"url": eventbrite_search_url(query, city)}],
            "max_depth": 1,
            "maxItems": max_items,
        }
    if platform == "luma":
        return {
            "query": query,
            "searchQuery": query,
            "maxItems": max_items,
            "maxResults": max_items,
            "limit": max_items,
            "includeOnline": True,
            "sortBy": "date",
        }
    raise ValueError(f"Unknown platform: {platform}")


class ApifyBackend(BaseCrawlBackend):
    """One platform's actor behind the crawl backend interface"""

    name = "apify"

    def __init__(
        self,
        platform: str,
        http_client: SharedHttpClient,
        token: Optional[str] = None,
        actor_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ):
        if platform not in ("luma", "eventbrite"):
            raise ValueError(f"Unknown platform: {platform}")
        self.platform = platform
        self.http_client = http_client
        self.token = settings.apify_api_token if token is None else token
        if actor_id is None:
            actor_id = settings.apify_luma_actor_id if platform == "luma" else settings.apify_eventbrite_actor_id
        self.actor_id = actor_id
        self.base_url = (base_url or settings.apify_base_url).rstrip("/")
        self.timeout_s = timeout_s or settings.apify_timeout_s

    def is_configured(self) -> bool:
        return bool(self.token and self.actor_id)

    @property
    def run_url(self) -> str:
        return f"{self.base_url}/acts/{self.actor_id}/run-sync-get-dataset-items"

    async def fetch(self, query: str, city: str, max_items: int) -> List[RawRecord]:
        """Run the actor and parse its dataset items

        Raises:
            BackendNotConfiguredException: no API token
            BlockedException: 403/429 from the service
            CrawlerException: transport failure or other non-2xx status
            ParsingException: body is not a list of items
        """
        if not self.is_configured():
            raise BackendNotConfiguredException(f"apify:{self.platform}")

        payload = build_actor_input(self.platform, query, city, max_items)
        logger.info(f"[APIFY] Running {self.platform} actor {self.actor_id} (query='{query}', city='{city}')")

        result = await self.http_client.post_json(
            self.run_url,
            payload,
            timeout_s=self.timeout_s,
            params={"token": self.token, "timeout": int(self.timeout_s)},
        )
        if result is None:
            raise CrawlerException(
                f"Apify {self.platform} actor request failed",
                details={"actor_id": self.actor_id},
            )

        status, body = result
        if status in (403, 429):
            raise BlockedException(f"apify:{self.platform}", status)
        if status < 200 or status >= 300:
            raise CrawlerException(
                f"Apify {self.platform} actor returned HTTP {status}",
                details={"actor_id": self.actor_id, "status_code": status},
            )
        if not isinstance(body, list):
            raise ParsingException(f"expected dataset item list from {self.platform} actor")

        records = self._parse_items(body)
        logger.info(f"[APIFY] {self.platform}: {len(records)} records from {len(body)} items")
        return records[:max_items]

    def _parse_items(self, items: List[Any]) -> List[RawRecord]:
        record_cls = LumaRecord if self.platform == "luma" else EventbriteRecord
        return parse_records(items, record_cls, self.name)

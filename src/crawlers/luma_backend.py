"""Direct Luma backend (public discover API)"""

from __future__ import annotations

from typing import List, Optional

from src.core.config import settings
from src.core.exceptions import BlockedException, CrawlerException, ParsingException
from src.core.logging import logger

from .base import BaseCrawlBackend
from .http_client import SharedHttpClient
from .records import LumaRecord, RawRecord, parse_records


class DirectLumaBackend(BaseCrawlBackend):
    """GET {luma_api_url}?latitude=..&longitude=..&pagination_limit=..&slug=query

    Events come back in ``entries``. The discover API has no city filter,
    so the configured coordinates anchor the search.
    """

    name = "direct"
    platform = "luma"

    def __init__(
        self,
        http_client: SharedHttpClient,
        api_url: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        timeout_s: Optional[float] = None,
    ):
        self.http_client = http_client
        self.api_url = api_url or settings.luma_api_url
        self.latitude = settings.luma_latitude if latitude is None else latitude
        self.longitude = settings.luma_longitude if longitude is None else longitude
        self.timeout_s = timeout_s or settings.crawler_http_timeout_s

    async def fetch(self, query: str, city: str, max_items: int) -> List[RawRecord]:
        params = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "pagination_limit": max_items,
            "slug": query,
        }
        logger.info(f"[LUMA] Discover API (query='{query}', city='{city}', limit={max_items})")

        result = await self.http_client.get_json(self.api_url, timeout_s=self.timeout_s, params=params)
        if result is None:
            raise CrawlerException("Luma discover API request failed")

        status, body = result
        if status in (403, 429):
            raise BlockedException("luma", status)
        if status < 200 or status >= 300:
            raise CrawlerException(f"Luma discover API returned HTTP {status}", details={"status_code": status})
        if not isinstance(body, dict) or not isinstance(body.get("entries"), list):
            raise ParsingException("Luma response has no entries list")

        records = parse_records(body["entries"], LumaRecord, self.name)
        logger.info(f"[LUMA] {len(records)} entries")
        return records[:max_items]

"""Direct Eventbrite backend (rendered search page)

Eventbrite's search page is client-rendered, so it is loaded in the
shared headless browser and the resulting markup is parsed offline.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional
from urllib.parse import quote

from src.core.config import settings
from src.core.exceptions import BlockedException, BrowserException, CrawlerException, NetworkTimeoutException
from src.core.logging import logger

from .base import BaseCrawlBackend, slugify
from .parsing import eventbrite_cards, json_ld_events, json_ld_to_eventbrite_item
from .playwright import configure_page, new_page
from .records import EventbriteRecord, RawRecord, parse_records

BLOCK_MARKERS = ("captcha", "access denied", "are you a robot")


def direct_search_url(query: str, city: str) -> str:
    return f"https://www.eventbrite.com/d/{slugify(city) or 'online'}/?q={quote(query)}&page=1"


class DirectEventbriteBackend(BaseCrawlBackend):
    name = "direct"
    platform = "eventbrite"

    def __init__(self, page_timeout_ms: Optional[int] = None, settle_s: float = 2.0):
        self.page_timeout_ms = page_timeout_ms or settings.crawler_timeout
        self.settle_s = settle_s

    async def fetch(self, query: str, city: str, max_items: int) -> List[RawRecord]:
        url = direct_search_url(query, city)
        html = await self._load(url)

        lowered = html[:5000].lower()
        if any(marker in lowered for marker in BLOCK_MARKERS):
            raise BlockedException("eventbrite")

        items = [json_ld_to_eventbrite_item(event) for event in json_ld_events(html)]
        if not items:
            logger.info("[EVENTBRITE] No JSON-LD events, reading cards")
            items = eventbrite_cards(html, max_items)

        records = parse_records((item for item in items if item.get("id")), EventbriteRecord, self.name)
        logger.info(f"[EVENTBRITE] {len(records)} events from {url}")
        return records[:max_items]

    async def _load(self, url: str) -> str:
        """Render the page and return its HTML

        Raises:
            BrowserException: browser could not be started
            NetworkTimeoutException: navigation timed out
            CrawlerException: any other navigation failure
        """
        page = await new_page()
        try:
            await configure_page(page)
            logger.info(f"[EVENTBRITE] Navigating to {url}")
            await page.goto(url, wait_until="domcontentloaded", timeout=self.page_timeout_ms)
            await asyncio.sleep(self.settle_s)
            return await page.content()
        except BrowserException:
            raise
        except Exception as e:
            if "Timeout" in type(e).__name__:
                raise NetworkTimeoutException("eventbrite search", self.page_timeout_ms / 1000) from e
            raise CrawlerException(f"Eventbrite page load failed: {e}") from e
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"[EVENTBRITE] page close failed: {e}")

"""Event detail backfill

Fetches an event's own page when the crawl only produced a stub
description. Sources, in order: JSON-LD Event, description containers,
then og:description / meta description.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from selectolax.parser import HTMLParser

from src.core.config import settings
from src.core.logging import logger

from .http_client import SharedHttpClient
from .parsing import iter_json_ld, meta_content

DESCRIPTION_SELECTORS = (
    '[data-testid="event-description"]',
    '[data-automation="event-description"]',
    '[class*="event-description"]',
)
ORGANIZER_SELECTORS = (
    '[data-testid="organizer-name"]',
    'a[href*="/organizer/"]',
)


@dataclass
class EventDetails:
    description: Optional[str] = None
    organizer_name: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.description and not self.organizer_name


class DetailFetcher:
    """Best-effort detail fetch; returns None on any failure, never raises"""

    def __init__(self, http_client: SharedHttpClient, timeout_s: Optional[float] = None):
        self.http_client = http_client
        self.timeout_s = timeout_s or settings.crawler_http_timeout_s

    async def fetch(self, url: str) -> Optional[EventDetails]:
        try:
            result = await self.http_client.get_text(url, timeout_s=self.timeout_s)
        except Exception as e:
            logger.warning(f"[DETAILS] Fetch failed for {url[:80]}: {e}")
            return None

        if result is None:
            return None
        status, html = result
        if status != 200 or not html:
            logger.info(f"[DETAILS] HTTP {status} for {url[:80]}")
            return None

        try:
            details = parse_event_details(html)
        except Exception as e:
            logger.warning(f"[DETAILS] Parse failed for {url[:80]}: {type(e).__name__}: {e}")
            return None
        return None if details.is_empty else details


def parse_event_details(html: str) -> EventDetails:
    details = EventDetails()

    for obj in iter_json_ld(html):
        kind = str(obj.get("@type") or "")
        if not kind.endswith("Event"):
            continue
        description = obj.get("description")
        if isinstance(description, str) and description.strip():
            details.description = description.strip()
        organizer = obj.get("organizer")
        if isinstance(organizer, list):
            organizer = organizer[0] if organizer else None
        if isinstance(organizer, dict) and organizer.get("name"):
            details.organizer_name = str(organizer["name"]).strip()
        elif isinstance(organizer, str) and organizer.strip():
            details.organizer_name = organizer.strip()
        break

    parser = HTMLParser(html)
    if not details.description:
        for selector in DESCRIPTION_SELECTORS:
            node = parser.css_first(selector)
            text = node.text(separator=" ", strip=True) if node else ""
            if len(text) > 100:
                details.description = text
                break

    if not details.organizer_name:
        for selector in ORGANIZER_SELECTORS:
            node = parser.css_first(selector)
            text = node.text(strip=True) if node else ""
            if 0 < len(text) < 100:
                details.organizer_name = text
                break

    if not details.description:
        details.description = meta_content(
            html,
            'meta[property="og:description"]',
            'meta[name="description"]',
        )
    return details

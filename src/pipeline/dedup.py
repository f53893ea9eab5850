"""Three-tier duplicate detection against the store

Tiers are checked in order and the first hit wins:

1. SOURCE_ID - same platform and normalized source id
2. SIMILAR   - same title (case-insensitive), city and platform, dated
               within +/- the dedup window
3. URL_PREFIX - an existing event URL starts with the normalized URL

The URL tier is a heuristic (platforms reuse path prefixes), so its hits
are logged at WARNING and counted on their own.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from src.core.config import settings
from src.core.logging import logger
from src.crawlers.records import EventDraft
from src.repositories.impl.event_repository import EventRepository
from src.repositories.models import Event


class DuplicateTier(str, Enum):
    SOURCE_ID = "source_id"
    SIMILAR = "similar"
    URL_PREFIX = "url_prefix"


@dataclass
class DuplicateMatch:
    tier: DuplicateTier
    event: Event

    @property
    def event_id(self) -> int:
        return self.event.id


def normalize_source_id(source_id: str, platform: str) -> str:
    """Strip query-string residue (Eventbrite affiliate codes) from an id"""
    if not source_id:
        return source_id
    if platform == "eventbrite":
        return source_id.split("?")[0].split("&")[0].strip()
    return source_id.strip()


def normalize_url(url: Optional[str]) -> str:
    """scheme://host/path, without query string or fragment"""
    if not url:
        return ""
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url.split("?")[0].split("#")[0].strip()
    if not parts.scheme or not parts.netloc:
        return url.split("?")[0].split("#")[0].strip()
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


class Deduplicator:
    def __init__(self, repository: EventRepository, window: Optional[timedelta] = None):
        self.repository = repository
        self.window = window or timedelta(minutes=settings.dedup_window_minutes)

    def find_duplicate(self, draft: EventDraft) -> Optional[DuplicateMatch]:
        """First matching tier, or None

        Raises:
            DatabaseException: store lookup failed
        """
        existing = self.repository.find_by_source(draft.source_platform, draft.source_id)
        if existing is not None:
            return DuplicateMatch(DuplicateTier.SOURCE_ID, existing)

        if draft.event_date is not None:
            existing = self.repository.find_similar(
                draft.title,
                draft.city,
                draft.source_platform,
                draft.event_date,
                self.window,
            )
            if existing is not None:
                return DuplicateMatch(DuplicateTier.SIMILAR, existing)

        url = normalize_url(draft.external_url)
        if url:
            existing = self.repository.find_by_url_prefix(url)
            if existing is not None:
                logger.warning(
                    f"[DEDUP] URL-prefix match (heuristic): '{draft.title}' -> event {existing.id} ({url})"
                )
                return DuplicateMatch(DuplicateTier.URL_PREFIX, existing)

        return None

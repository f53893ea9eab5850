"""Event platform crawlers (managed service + direct fallback)

Public API is exported from this file only.
"""

from .adapter import CrawlAdapter, CrawlOutcome, SUPPORTED_PLATFORMS
from .base import CrawlBackend, BaseCrawlBackend
from .details import DetailFetcher, EventDetails
from .http_client import SharedHttpClient
from .records import EventDraft, EventbriteRecord, LumaRecord, RawRecord, to_draft

__all__ = [
    "CrawlAdapter",
    "CrawlOutcome",
    "SUPPORTED_PLATFORMS",
    "CrawlBackend",
    "BaseCrawlBackend",
    "DetailFetcher",
    "EventDetails",
    "SharedHttpClient",
    "EventDraft",
    "EventbriteRecord",
    "LumaRecord",
    "RawRecord",
    "to_draft",
]

"""Cache adapter - search-result memoization for the orchestrator

Async facade over the synchronous CacheService. Never raises: any cache
problem is a miss on read and a no-op on write.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from src.core.config import settings
from src.core.logging import logger
from src.schemas.event_schema import SearchRequest
from src.services.impl.cache_service import CacheService, build_search_cache_key


def search_cache_key(request: SearchRequest) -> str:
    filters = request.filters
    return build_search_cache_key(
        request.query,
        filters.city,
        filters.event_type,
        filters.price,
        filters.date,
        filters.platforms,
    )


class CacheAdapter:
    def __init__(self, cache_service: CacheService, ttl_seconds: Optional[int] = None):
        self.cache_service = cache_service
        self.ttl_seconds = ttl_seconds or settings.search_cache_ttl

    async def get_search(self, request: SearchRequest) -> Optional[List[Dict[str, Any]]]:
        """Cached events for an identical request, or None on miss/error"""
        key = search_cache_key(request)
        try:
            cached = self.cache_service.get_json(key)
        except Exception as e:
            logger.warning(f"[CACHE] Search lookup failed for {key}: {type(e).__name__}: {e}")
            return None

        if cached is None:
            return None
        events = cached.get("events") if isinstance(cached, dict) else cached
        if not isinstance(events, list) or not events:
            logger.warning(f"[CACHE] Ignoring malformed search entry {key}")
            return None
        if not all(isinstance(event, dict) for event in events):
            logger.warning(f"[CACHE] Ignoring search entry with non-object events {key}")
            return None
        logger.info(f"[CACHE] hit: {key} ({len(events)} events)")
        return events

    async def set_search(self, request: SearchRequest, events: List[Dict[str, Any]]) -> bool:
        if not events:
            return False
        key = search_cache_key(request)
        payload = {
            "events": events,
            "total": len(events),
            "cachedAt": datetime.utcnow().isoformat() + "Z",
        }
        try:
            return self.cache_service.set_json(key, payload, self.ttl_seconds)
        except Exception as e:
            logger.warning(f"[CACHE] Search write failed for {key}: {type(e).__name__}: {e}")
            return False

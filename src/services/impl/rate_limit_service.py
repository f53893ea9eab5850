"""Per-endpoint-class rate limiting on top of the cache counters"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from src.core.config import settings
from src.core.logging import logger
from src.services.impl.cache_service import CacheService, RateLimitResult


class RateLimitClass(str, Enum):
    SEARCH = "search"
    API = "api"
    SCRAPING = "scraping"


@dataclass(frozen=True)
class RateLimitConfig:
    limit: int
    window_s: int


def default_rate_limits() -> Dict[RateLimitClass, RateLimitConfig]:
    return {
        RateLimitClass.SEARCH: RateLimitConfig(settings.rate_limit_search_limit, settings.rate_limit_search_window_s),
        RateLimitClass.API: RateLimitConfig(settings.rate_limit_api_limit, settings.rate_limit_api_window_s),
        RateLimitClass.SCRAPING: RateLimitConfig(
            settings.rate_limit_scraping_limit, settings.rate_limit_scraping_window_s
        ),
    }


class RateLimiter:
    """Sliding-window limiter keyed by endpoint class and client identifier"""

    def __init__(self, cache: CacheService, configs: Optional[Dict[RateLimitClass, RateLimitConfig]] = None):
        self.cache = cache
        self.configs = configs or default_rate_limits()

    def check(self, limit_class: RateLimitClass, identifier: str) -> RateLimitResult:
        config = self.configs[limit_class]
        result = self.cache.check_rate_limit(f"{limit_class.value}:{identifier}", config.limit, config.window_s)
        if not result.allowed:
            logger.warning(
                f"[RATE_LIMIT] {limit_class.value} limit hit for {identifier} "
                f"({config.limit}/{config.window_s}s, retry after {result.retry_after}s)"
            )
        return result

    @staticmethod
    def headers(result: RateLimitResult) -> Dict[str, str]:
        """X-RateLimit-* headers, plus Retry-After when blocked"""
        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": result.reset_at.isoformat() + "Z",
        }
        if not result.allowed:
            headers["Retry-After"] = str(result.retry_after)
        return headers

"""Services implementation package."""

from .batch_scraping_service import BatchScrapingService, BatchTrigger
from .cache_service import CacheService, InMemoryCache, RateLimitResult
from .rate_limit_service import RateLimitClass, RateLimitConfig, RateLimiter

__all__ = [
    "BatchScrapingService",
    "BatchTrigger",
    "CacheService",
    "InMemoryCache",
    "RateLimitResult",
    "RateLimitClass",
    "RateLimitConfig",
    "RateLimiter",
]

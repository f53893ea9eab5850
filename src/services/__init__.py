"""Application services - export only."""

from .impl import BatchScrapingService, CacheService, RateLimitClass, RateLimiter

__all__ = ["BatchScrapingService", "CacheService", "RateLimitClass", "RateLimiter"]

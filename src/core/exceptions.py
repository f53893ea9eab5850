"""Custom exception hierarchy"""
from typing import Any, Optional


class EventDiscoveryException(Exception):
    """Base class for every application exception"""
    def __init__(self, message: str, error_code: str = "UNKNOWN_ERROR", details: Optional[dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# Crawling
class CrawlerException(EventDiscoveryException):
    """Base class for crawl backend failures"""
    def __init__(self, message: str, error_code: str = "CRAWLER_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message, error_code or "CRAWLER_ERROR", details)


class BackendNotConfiguredException(CrawlerException):
    """Managed backend has no credentials"""
    def __init__(self, backend: str, details: Optional[dict[str, Any]] = None):
        message = f"Crawl backend '{backend}' is not configured"
        super().__init__(message, "BACKEND_NOT_CONFIGURED", details or {"backend": backend})


class BrowserException(CrawlerException):
    """Headless browser could not be started or driven"""
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, "BROWSER_ERROR", details)


class NetworkTimeoutException(CrawlerException):
    def __init__(self, operation: str, timeout_s: float, details: Optional[dict[str, Any]] = None):
        message = f"Network timeout during '{operation}' after {timeout_s}s"
        super().__init__(message, "NETWORK_TIMEOUT",
                        details or {"operation": operation, "timeout_s": timeout_s})


class ParsingException(CrawlerException):
    """Upstream payload could not be parsed"""
    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Failed to parse response: {reason}"
        super().__init__(message, "PARSING_ERROR", details or {"reason": reason})


class BlockedException(CrawlerException):
    """Upstream refused the request (bot detection, 403, 429)"""
    def __init__(self, source: str, status_code: Optional[int] = None, details: Optional[dict[str, Any]] = None):
        message = f"Request blocked by {source} (status: {status_code})"
        super().__init__(message, "BLOCKED", details or {"source": source, "status_code": status_code})


# Cache
class CacheException(EventDiscoveryException):
    def __init__(self, message: str, error_code: str = "CACHE_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message, error_code or "CACHE_ERROR", details)


class CacheConnectionException(CacheException):
    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Failed to connect to cache: {reason}"
        super().__init__(message, "CACHE_CONNECTION_ERROR", details)


class CacheSerializationException(CacheException):
    def __init__(self, operation: str, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Cache {operation} failed: {reason}"
        super().__init__(message, "CACHE_SERIALIZATION_ERROR",
                        details or {"operation": operation, "reason": reason})


# Database
class DatabaseException(EventDiscoveryException):
    def __init__(self, message: str, error_code: str = "DB_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message, error_code or "DB_ERROR", details)


class DatabaseConnectionException(DatabaseException):
    """Store is unreachable"""
    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Database connection failed: {reason}"
        super().__init__(message, "DB_CONNECTION_ERROR", details)


class DatabaseQueryException(DatabaseException):
    def __init__(self, query: str, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Database query failed: {reason}"
        super().__init__(message, "DB_QUERY_ERROR",
                        details or {"query": query, "reason": reason})


# Validation
class ValidationException(EventDiscoveryException):
    def __init__(self, field: str, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Validation failed for '{field}': {reason}"
        super().__init__(message, "VALIDATION_ERROR",
                        details or {"field": field, "reason": reason})


class InvalidQueryException(ValidationException):
    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        super().__init__("query", reason, details)


# Jobs
class JobException(EventDiscoveryException):
    def __init__(self, message: str, error_code: str = "JOB_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message, error_code or "JOB_ERROR", details)


class JobNotFoundException(JobException):
    def __init__(self, job_id: str, details: Optional[dict[str, Any]] = None):
        super().__init__(f"Scraping job not found: {job_id}", "JOB_NOT_FOUND", details or {"job_id": job_id})


class InvalidJobTransitionException(JobException):
    """Requested status change violates the job lifecycle"""
    def __init__(self, job_id: str, current: str, target: str, details: Optional[dict[str, Any]] = None):
        message = f"Job {job_id} cannot move from '{current}' to '{target}'"
        super().__init__(message, "INVALID_JOB_TRANSITION",
                        details or {"job_id": job_id, "current": current, "target": target})


# Rate limiting
class RateLimitExceededException(EventDiscoveryException):
    def __init__(self, identifier: str, retry_after: int, details: Optional[dict[str, Any]] = None):
        message = f"Rate limit exceeded for {identifier}, retry after {retry_after}s"
        super().__init__(message, "RATE_LIMITED",
                        details or {"identifier": identifier, "retry_after": retry_after})

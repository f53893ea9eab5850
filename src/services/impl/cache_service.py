"""Cache service - Redis with an in-process fallback

Used for search-result memoization and rate-limit counters. Any Redis
error degrades the call to the local backend instead of surfacing.
"""
import json
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, Optional, Tuple

from redis import Redis

from src.core.config import settings
from src.core.logging import logger
from src.core.exceptions import CacheSerializationException


@dataclass
class RateLimitResult:
    """Outcome of one rate-limit check"""

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after: int = 0


class InMemoryCache:
    """Process-local key/TTL store with a sliding-window rate counter

    Expired keys and idle rate windows are swept on write, at most once
    per ``sweep_interval_s``.
    """

    def __init__(self, sweep_interval_s: float = 60.0):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._windows: Dict[str, Tuple[Deque[float], int]] = {}
        self._lock = threading.Lock()
        self.sweep_interval_s = sweep_interval_s
        self._last_sweep = time.time()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and expires_at <= time.time():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        now = time.time()
        expires_at = now + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._sweep(now)
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def hit(self, key: str, limit: int, window_s: int) -> RateLimitResult:
        now = time.time()
        with self._lock:
            self._sweep(now)
            entry = self._windows.get(key)
            window = entry[0] if entry else deque()
            self._windows[key] = (window, window_s)
            while window and window[0] <= now - window_s:
                window.popleft()
            window.append(now)
            count = len(window)
            oldest = window[0]
        return _build_result(count, limit, window_s, oldest)

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        if now - self._last_sweep < self.sweep_interval_s:
            return
        self._last_sweep = now

        expired = [k for k, (_, expires_at) in self._data.items() if expires_at is not None and expires_at <= now]
        for key in expired:
            del self._data[key]

        idle = []
        for key, (window, window_s) in self._windows.items():
            while window and window[0] <= now - window_s:
                window.popleft()
            if not window:
                idle.append(key)
        for key in idle:
            del self._windows[key]

        if expired or idle:
            logger.debug(f"[CACHE] Swept {len(expired)} expired key(s), {len(idle)} idle window(s)")

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._windows.clear()


def _build_result(count: int, limit: int, window_s: int, oldest: float) -> RateLimitResult:
    reset_epoch = oldest + window_s
    retry_after = max(1, int(round(reset_epoch - time.time()))) if count > limit else 0
    return RateLimitResult(
        allowed=count <= limit,
        limit=limit,
        remaining=max(0, limit - count),
        reset_at=datetime.utcfromtimestamp(reset_epoch),
        retry_after=retry_after,
    )


class CacheService:
    """Dual-backend cache

    Redis when ``redis_url`` is configured and reachable, otherwise (and on
    any later Redis error) the in-process store.
    """

    def __init__(self, redis_url: Optional[str] = None, memory: Optional[InMemoryCache] = None):
        self.memory = memory or InMemoryCache()
        self.redis_client: Optional[Redis] = None

        url = settings.redis_url if redis_url is None else redis_url
        if not url:
            logger.info("[CACHE] Redis not configured, using in-memory cache")
            return

        try:
            client = Redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            client.ping()
            self.redis_client = client
            logger.info("[CACHE] Redis connection established")
        except Exception as e:
            logger.warning(f"[CACHE] Redis unavailable, falling back to in-memory cache: {e}")
            self.redis_client = None

    @property
    def backend_name(self) -> str:
        return "redis" if self.redis_client is not None else "memory"

    def get_json(self, key: str) -> Optional[Any]:
        """Read and decode a cached JSON value

        Raises:
            CacheSerializationException: stored value is not valid JSON
        """
        raw = self._get_raw(key)
        if raw is None:
            logger.debug(f"[CACHE] miss: {key}")
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise CacheSerializationException("get", str(e), details={"key": key})

    def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Encode and store a JSON value

        Raises:
            CacheSerializationException: value cannot be encoded
        """
        try:
            payload = json.dumps(value, ensure_ascii=False, default=_json_default)
        except (TypeError, ValueError) as e:
            raise CacheSerializationException("set", str(e), details={"key": key})

        ttl = ttl_seconds or settings.search_cache_ttl
        if self.redis_client is not None:
            try:
                self.redis_client.setex(key, ttl, payload)
                logger.info(f"[CACHE] set {key} (redis, TTL: {ttl}s)")
                return True
            except Exception as e:
                logger.warning(f"[CACHE] Redis write failed, using memory: {e}")

        self.memory.set(key, payload, ttl)
        logger.info(f"[CACHE] set {key} (memory, TTL: {ttl}s)")
        return True

    def delete(self, key: str) -> bool:
        removed = self.memory.delete(key)
        if self.redis_client is not None:
            try:
                removed = bool(self.redis_client.delete(key)) or removed
            except Exception as e:
                logger.warning(f"[CACHE] Redis delete failed: {e}")
        return removed

    def check_rate_limit(self, identifier: str, limit: int, window_s: int) -> RateLimitResult:
        """Record one hit and report whether it fits in the sliding window

        Fails open: if no backend can count, the request is allowed.
        """
        key = f"rate_limit:{identifier}"
        if self.redis_client is not None:
            try:
                return self._redis_hit(key, limit, window_s)
            except Exception as e:
                logger.warning(f"[RATE_LIMIT] Redis counter failed, using memory: {e}")

        try:
            return self.memory.hit(key, limit, window_s)
        except Exception as e:
            logger.error(f"[RATE_LIMIT] Counter unavailable, allowing request: {e}")
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=limit,
                reset_at=datetime.utcfromtimestamp(time.time() + window_s),
            )

    def _redis_hit(self, key: str, limit: int, window_s: int) -> RateLimitResult:
        now = time.time()
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"
        pipe = self.redis_client.pipeline()
        pipe.zremrangebyscore(key, 0, now - window_s)
        pipe.zadd(key, {member: now})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, window_s)
        _, _, count, oldest, _ = pipe.execute()
        oldest_score = float(oldest[0][1]) if oldest else now
        return _build_result(int(count), limit, window_s, oldest_score)

    def _get_raw(self, key: str) -> Optional[str]:
        if self.redis_client is not None:
            try:
                return self.redis_client.get(key)
            except Exception as e:
                logger.warning(f"[CACHE] Redis read failed, using memory: {e}")
        return self.memory.get(key)

    def health_check(self) -> bool:
        """True when the active backend answers"""
        if self.redis_client is None:
            return True
        try:
            self.redis_client.ping()
            return True
        except Exception:
            return False

    def close(self) -> None:
        if self.redis_client is not None:
            try:
                self.redis_client.close()
            except Exception as e:
                logger.debug(f"[CACHE] Redis close failed: {e}")


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def build_search_cache_key(
    query: str,
    city: Optional[str] = None,
    event_type: Optional[str] = None,
    price: Optional[str] = None,
    date: Optional[str] = None,
    platforms: Optional[list] = None,
) -> str:
    """search:{query}:{city}:{eventType}:{price}:{date}:{platforms}, 'all' for unset parts"""
    def part(value: Optional[str]) -> str:
        return value.strip().lower() if value and value.strip() else "all"

    platform_part = ",".join(sorted(p.lower() for p in platforms)) if platforms else "all"
    return ":".join([
        "search",
        part(query),
        part(city),
        part(event_type),
        part(price),
        part(date),
        platform_part,
    ])


def build_events_page_cache_key(
    query: Optional[str],
    city: Optional[str] = None,
    event_type: Optional[str] = None,
    price: Optional[str] = None,
    date: Optional[str] = None,
    platforms: Optional[list] = None,
    page: int = 1,
    limit: int = 20,
) -> str:
    """events:{search key parts}:{page}:{limit} for the paginated listing"""
    search_key = build_search_cache_key(query or "", city, event_type, price, date, platforms)
    return f"events:{search_key[len('search:'):]}:{page}:{limit}"

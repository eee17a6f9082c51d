"""Cache-aside overlay for analytics sources.

``CachedAnalyticsSource`` wraps any ``AnalyticsSource``. The wrapped
aggregation never sees the cache: a failing or unreachable cache behaves as a
miss, and failed writes are logged and dropped.
"""

import fnmatch
import logging
import time
from typing import Any, Dict, Optional, Protocol, Tuple

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .analytics import AnalyticsObserver, AnalyticsSource, parse_driver_id
from .errors import AnalyticsError
from .schemas import DriverAnalytics

logger = logging.getLogger(__name__)

CACHE_ERRORS = (RedisError, OSError)


class AnalyticsCache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisAnalyticsCache:
    """Redis-backed cache with per-key TTL."""

    def __init__(self, client: Redis):
        self._client = client

    @classmethod
    def from_config(cls, cfg) -> "RedisAnalyticsCache":
        client = Redis(
            host=cfg.redis_host,
            port=cfg.redis_port,
            password=cfg.redis_password,
            db=cfg.redis_db,
            decode_responses=True,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.setex(key, ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def delete_pattern(self, pattern: str) -> int:
        keys = [key async for key in self._client.scan_iter(match=pattern)]
        if not keys:
            return 0
        return await self._client.delete(*keys)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except CACHE_ERRORS:
            return False

    async def close(self) -> None:
        await self._client.aclose()


class MemoryAnalyticsCache:
    """In-process cache for single-instance deployments and tests."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        keys = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()


def build_cache(cfg) -> Optional[AnalyticsCache]:
    """Cache backend selected by ``CACHE_BACKEND``; None disables caching."""
    if cfg.cache_backend == "redis":
        return RedisAnalyticsCache.from_config(cfg)
    if cfg.cache_backend == "memory":
        return MemoryAnalyticsCache()
    if cfg.cache_backend in ("none", "off", ""):
        return None
    raise ValueError(f"Unknown cache backend: {cfg.cache_backend}")


class CachedAnalyticsSource:
    """Cache-aside wrapper around an ``AnalyticsSource``."""

    name = "cached-analytics"

    def __init__(self,
                 source: AnalyticsSource,
                 cache: AnalyticsCache,
                 ttl_seconds: int = 300,
                 key_prefix: str = "driver",
                 observer: Optional[AnalyticsObserver] = None):
        self.source = source
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.observer = observer

    def cache_key(self, driver_id: int) -> str:
        return f"{self.key_prefix}:{driver_id}:analytics"

    async def get_driver_analytics(self, driver_id: Any, timeout: Optional[float] = None) -> DriverAnalytics:
        driver_id = parse_driver_id(driver_id)
        started = time.perf_counter()
        key = self.cache_key(driver_id)

        cached = await self._read(key)
        if cached is not None:
            self._notify(driver_id, started, is_cached=True)
            return cached

        try:
            result = await self.source.get_driver_analytics(driver_id, timeout)
        except AnalyticsError as e:
            self._notify(driver_id, started, error=e)
            raise

        await self._write(key, result)
        self._notify(driver_id, started)
        return result

    async def invalidate(self, driver_id: Any) -> None:
        key = self.cache_key(parse_driver_id(driver_id))
        try:
            await self.cache.delete(key)
        except CACHE_ERRORS as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    async def clear(self, pattern: Optional[str] = None) -> int:
        pattern = pattern or f"{self.key_prefix}:*"
        try:
            return await self.cache.delete_pattern(pattern)
        except CACHE_ERRORS as e:
            logger.warning("Cache clear failed for pattern %s: %s", pattern, e)
            return 0

    async def _read(self, key: str) -> Optional[DriverAnalytics]:
        try:
            raw = await self.cache.get(key)
        except CACHE_ERRORS as e:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return DriverAnalytics.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding undecodable cache entry %s: %s", key, e)
            return None

    async def _write(self, key: str, value: DriverAnalytics) -> None:
        try:
            await self.cache.set(key, value.model_dump_json(), self.ttl_seconds)
        except CACHE_ERRORS as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    def _notify(self, driver_id: int, started: float, is_cached: bool = False, error: Optional[Exception] = None):
        if self.observer is None:
            return
        self.observer.record(
            self.name,
            (time.perf_counter() - started) * 1000,
            driver_id=driver_id,
            is_error=error is not None,
            is_cached=is_cached,
            error=str(error) if error is not None else None,
        )

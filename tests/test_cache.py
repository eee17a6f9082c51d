from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from trip_analytics.cache import (
    CachedAnalyticsSource,
    MemoryAnalyticsCache,
    RedisAnalyticsCache,
    build_cache,
)
from trip_analytics.config import Config
from trip_analytics.errors import DriverNotFound, InvalidDriverId
from trip_analytics.monitoring import MetricsCollector
from trip_analytics.schemas import DriverAnalytics, TripDetail


def make_analytics(driver_id=1):
    return DriverAnalytics(
        driver_id=driver_id,
        driver_name="Abdul Rahman",
        phone_number="+8801712345678",
        onboarding_date=date(2023, 6, 1),
        total_trips=1,
        total_earnings=Decimal("150.00"),
        average_rating=Decimal("4.5"),
        trips=[TripDetail(trip_id=1, start_location="Dhaka", end_location="Sylhet",
                          trip_date=date(2024, 1, 15), amount=Decimal("150.00"),
                          rating_value=Decimal("4.5"), comment="Great service!")],
    )


class CountingSource:
    """Analytics source stand-in counting calls."""

    name = "fan-out"

    def __init__(self, result=None, error=None):
        self.result = result or make_analytics()
        self.error = error
        self.calls = 0

    async def get_driver_analytics(self, driver_id, timeout=None):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


class FailingCache(MemoryAnalyticsCache):
    """Cache whose every operation fails like an unreachable Redis."""

    async def get(self, key):
        raise RedisConnectionError("redis down")

    async def set(self, key, value, ttl_seconds):
        raise RedisConnectionError("redis down")

    async def delete(self, key):
        raise RedisConnectionError("redis down")

    async def delete_pattern(self, pattern):
        raise RedisConnectionError("redis down")


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestMemoryCache:
    """In-process cache backend."""

    @pytest.mark.asyncio
    async def test_set_get_and_expiry(self):
        clock = FakeClock()
        cache = MemoryAnalyticsCache(clock=clock)

        await cache.set("driver:1:analytics", "value", 300)
        assert await cache.get("driver:1:analytics") == "value"

        clock.now += 301
        assert await cache.get("driver:1:analytics") is None

    @pytest.mark.asyncio
    async def test_delete_pattern(self):
        cache = MemoryAnalyticsCache()
        await cache.set("driver:1:analytics", "a", 300)
        await cache.set("driver:2:analytics", "b", 300)
        await cache.set("location:dhaka", "c", 300)

        assert await cache.delete_pattern("driver:*") == 2
        assert await cache.get("location:dhaka") == "c"


class TestRedisCache:
    """Redis backend against a mocked client."""

    @pytest.mark.asyncio
    async def test_set_uses_setex(self):
        client = MagicMock()
        client.setex = AsyncMock()
        cache = RedisAnalyticsCache(client)

        await cache.set("driver:1:analytics", "{}", 300)

        client.setex.assert_awaited_once_with("driver:1:analytics", 300, "{}")

    @pytest.mark.asyncio
    async def test_delete_pattern_scans_then_deletes(self):
        client = MagicMock()

        async def scan_iter(match):
            for key in ("driver:1:analytics", "driver:2:analytics"):
                yield key

        client.scan_iter = scan_iter
        client.delete = AsyncMock(return_value=2)
        cache = RedisAnalyticsCache(client)

        assert await cache.delete_pattern("driver:*") == 2
        client.delete.assert_awaited_once_with("driver:1:analytics", "driver:2:analytics")

    @pytest.mark.asyncio
    async def test_ping_failure_is_unhealthy(self):
        client = MagicMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("down"))
        assert await RedisAnalyticsCache(client).ping() is False


class TestBuildCache:
    """Backend selection from configuration."""

    def test_backends(self):
        cfg = Config()
        cfg.update_cache_settings(backend="memory")
        assert isinstance(build_cache(cfg), MemoryAnalyticsCache)

        cfg.update_cache_settings(backend="none")
        assert build_cache(cfg) is None

        cfg.update_cache_settings(backend="redis")
        assert isinstance(build_cache(cfg), RedisAnalyticsCache)

    def test_unknown_backend(self):
        cfg = Config()
        cfg.update_cache_settings(backend="memcached")
        with pytest.raises(ValueError):
            build_cache(cfg)


class TestCachedAnalyticsSource:
    """Cache-aside wrapper."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self):
        source = CountingSource()
        cached = CachedAnalyticsSource(source, MemoryAnalyticsCache(), ttl_seconds=300)

        first = await cached.get_driver_analytics(1)
        second = await cached.get_driver_analytics("1")

        assert source.calls == 1
        assert first == second
        assert second.total_earnings == Decimal("150.00")
        assert second.trips[0].comment == "Great service!"

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        source = CountingSource()
        cached = CachedAnalyticsSource(source, MemoryAnalyticsCache(clock=clock), ttl_seconds=300)

        await cached.get_driver_analytics(1)
        clock.now += 301
        await cached.get_driver_analytics(1)

        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_cache_failure_degrades_to_miss(self):
        source = CountingSource()
        cached = CachedAnalyticsSource(source, FailingCache())

        result = await cached.get_driver_analytics(1)
        await cached.get_driver_analytics(1)

        assert result.driver_id == 1
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_a_miss(self):
        cache = MemoryAnalyticsCache()
        await cache.set("driver:1:analytics", "not json", 300)
        source = CountingSource()

        result = await CachedAnalyticsSource(source, cache).get_driver_analytics(1)

        assert result.driver_id == 1
        assert source.calls == 1
        assert "total_trips" in await cache.get("driver:1:analytics")

    @pytest.mark.asyncio
    async def test_errors_are_not_cached(self):
        source = CountingSource(error=DriverNotFound(999999))
        cache = MemoryAnalyticsCache()
        cached = CachedAnalyticsSource(source, cache)

        for _ in range(2):
            with pytest.raises(DriverNotFound):
                await cached.get_driver_analytics(999999)

        assert source.calls == 2
        assert await cache.get("driver:999999:analytics") is None

    @pytest.mark.asyncio
    async def test_invalid_id_rejected_before_cache(self):
        cache = MagicMock()
        cache.get = AsyncMock()
        source = CountingSource()

        with pytest.raises(InvalidDriverId):
            await CachedAnalyticsSource(source, cache).get_driver_analytics("abc")

        cache.get.assert_not_called()
        assert source.calls == 0

    @pytest.mark.asyncio
    async def test_invalidate_and_clear(self):
        source = CountingSource()
        cached = CachedAnalyticsSource(source, MemoryAnalyticsCache(), key_prefix="driver")

        await cached.get_driver_analytics(1)
        await cached.invalidate(1)
        await cached.get_driver_analytics(1)
        assert source.calls == 2

        assert await cached.clear() == 1
        assert await CachedAnalyticsSource(source, FailingCache()).clear() == 0

    @pytest.mark.asyncio
    async def test_observer_records_hits(self):
        metrics = MetricsCollector()
        cached = CachedAnalyticsSource(CountingSource(), MemoryAnalyticsCache(), observer=metrics)

        await cached.get_driver_analytics(1)
        await cached.get_driver_analytics(1)

        recorded = metrics.get_endpoint_metrics("cached-analytics")
        assert recorded.total_requests == 2
        assert recorded.cache_hits == 1
        assert recorded.cache_hit_rate == 0.5


if __name__ == "__main__":
    pytest.main([__file__])

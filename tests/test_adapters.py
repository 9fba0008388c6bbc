import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from application.ports.rate_limiter import RateLimiter
from application.ports.view_cache import CacheUnavailableError, ViewDedupCache
from infrastructure.adapters.rate_limiter import InMemoryRateLimiter, RedisRateLimiter
from infrastructure.adapters.view_cache import InMemoryViewDedupCache, RedisViewDedupCache
from infrastructure.external.cache import RedisClient


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class StubAsyncRedis:
    """Just enough of redis.asyncio.Redis for the RedisClient wrapper."""

    def __init__(self, *, hang: bool = False, error: Exception = None):
        self.hang = hang
        self.error = error
        self.data = {}

    async def set(self, key, value, ex=None, nx=False, xx=False, keepttl=False):
        if self.hang:
            await asyncio.sleep(10)
        if self.error:
            raise self.error
        if nx and key in self.data:
            return None
        if xx and key not in self.data:
            return None
        if keepttl:
            ex = self.data[key][1]
        self.data[key] = (value, ex)
        return True

    async def get(self, key):
        entry = self.data.get(key)
        return entry[0] if entry else None

    async def delete(self, *keys):
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    async def ping(self):
        if self.error:
            raise self.error
        return True


class StubWindowClient:
    def __init__(self, responses=None, error: Exception = None):
        self.responses = list(responses or [])
        self.error = error
        self.keys = []

    async def incr_window(self, key, window_seconds):
        self.keys.append(key)
        if self.error:
            raise self.error
        return self.responses.pop(0)


def test_adapters_satisfy_ports():
    assert isinstance(InMemoryViewDedupCache(), ViewDedupCache)
    assert isinstance(InMemoryRateLimiter(), RateLimiter)


@pytest.mark.asyncio
async def test_redis_client_set_if_absent_uses_namespace():
    raw = StubAsyncRedis()
    client = RedisClient(raw, namespace="vlogsphere", operation_timeout=0.5)

    assert await client.set_if_absent("view:1:7", "1", 300) is True
    assert await client.set_if_absent("view:1:7", "1", 300) is False
    assert raw.data["vlogsphere:view:1:7"] == ("1", 300)


@pytest.mark.asyncio
async def test_redis_client_timeout_is_cache_unavailable():
    client = RedisClient(StubAsyncRedis(hang=True), namespace="t", operation_timeout=0.01)

    with pytest.raises(CacheUnavailableError):
        await client.set_if_absent("k", "1", 10)
    assert client.metrics.timeouts == 1


@pytest.mark.asyncio
async def test_redis_client_error_is_cache_unavailable():
    client = RedisClient(StubAsyncRedis(error=RedisConnectionError("refused")), namespace="t", operation_timeout=0.5)

    with pytest.raises(CacheUnavailableError):
        await client.set_if_absent("k", "1", 10)
    assert await client.health_check() is False


@pytest.mark.asyncio
async def test_redis_view_cache_marks_once():
    raw = StubAsyncRedis()
    cache = RedisViewDedupCache(RedisClient(raw, namespace="ns", operation_timeout=0.5))

    assert await cache.mark_viewed(3, "sid:x", 60) is True
    assert await cache.mark_viewed(3, "sid:x", 60) is False
    await cache.forget(3, "sid:x")
    assert await cache.mark_viewed(3, "sid:x", 60) is True
    assert raw.data["ns:view:3:sid:x"] == ("pending", 60)


@pytest.mark.asyncio
async def test_redis_view_cache_publishes_count_keeping_ttl():
    raw = StubAsyncRedis()
    cache = RedisViewDedupCache(RedisClient(raw, namespace="ns", operation_timeout=0.5))

    await cache.mark_viewed(3, "7", 60)
    assert await cache.read_count(3, "7") is None

    await cache.publish_count(3, "7", 15)
    assert raw.data["ns:view:3:7"] == ("15", 60)
    assert await cache.read_count(3, "7") == 15

    # Never resurrects an expired or forgotten marker
    await cache.publish_count(3, "8", 15)
    assert "ns:view:3:8" not in raw.data


@pytest.mark.asyncio
async def test_memory_view_cache_expiry():
    clock = FakeClock()
    cache = InMemoryViewDedupCache(clock=clock)

    assert await cache.mark_viewed(1, "a", 5) is True
    clock.now = 4.9
    assert await cache.mark_viewed(1, "a", 5) is False
    clock.now = 5.0
    assert await cache.mark_viewed(1, "a", 5) is True


@pytest.mark.asyncio
async def test_memory_view_cache_publish_keeps_expiry():
    clock = FakeClock()
    cache = InMemoryViewDedupCache(clock=clock)

    await cache.mark_viewed(1, "a", 5)
    clock.now = 3.0
    await cache.publish_count(1, "a", 9)
    assert await cache.read_count(1, "a") == 9

    clock.now = 5.0
    assert await cache.read_count(1, "a") is None
    await cache.publish_count(1, "a", 10)
    assert await cache.mark_viewed(1, "a", 5) is True


@pytest.mark.asyncio
async def test_memory_view_cache_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        await InMemoryViewDedupCache().mark_viewed(1, "a", 0)


@pytest.mark.asyncio
async def test_memory_rate_limiter_sliding_window():
    clock = FakeClock(100.0)
    limiter = InMemoryRateLimiter(clock=clock)

    decisions = [await limiter.hit("k", 3, 60) for _ in range(3)]
    assert [d.remaining for d in decisions] == [2, 1, 0]

    denied = await limiter.hit("k", 3, 60)
    assert denied.allowed is False
    assert denied.retry_after == 61

    # Other keys are independent
    assert (await limiter.hit("other", 3, 60)).allowed is True

    clock.now = 160.5
    assert (await limiter.hit("k", 3, 60)).allowed is True


@pytest.mark.asyncio
async def test_redis_rate_limiter_counts_in_windows():
    client = StubWindowClient(responses=[(1, 60), (2, 59), (3, 12)])
    limiter = RedisRateLimiter(client)

    assert (await limiter.hit("view:1.2.3.4:anonymous", 2, 60)).remaining == 1
    assert (await limiter.hit("view:1.2.3.4:anonymous", 2, 60)).remaining == 0
    denied = await limiter.hit("view:1.2.3.4:anonymous", 2, 60)

    assert denied.allowed is False
    assert denied.retry_after == 12
    assert client.keys[0] == "ratelimit:view:1.2.3.4:anonymous"


@pytest.mark.asyncio
async def test_redis_rate_limiter_fails_open():
    limiter = RedisRateLimiter(StubWindowClient(error=CacheUnavailableError("down")))

    decision = await limiter.hit("auth:login:1.2.3.4", 10, 900)

    assert decision.allowed is True
    assert decision.remaining == 10

"""Rate limiter adapters (Redis fixed window, in-memory sliding window)."""
from __future__ import annotations

import asyncio
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict

from application.ports.rate_limiter import RateLimitDecision, RateLimiter
from application.ports.view_cache import CacheUnavailableError
from core.logging_config import get_logger
from infrastructure.external.cache import RedisClient

logger = get_logger(__name__)


class RedisRateLimiter(RateLimiter):
    """Fixed-window counter shared by every app instance.

    Fails open: when Redis is unavailable the request is allowed and the
    failure is logged. Throttling is burst protection, not correctness.
    """

    def __init__(self, client: RedisClient, prefix: str = "ratelimit"):
        self.client = client
        self.prefix = prefix

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        try:
            count, reset_in = await self.client.incr_window(f"{self.prefix}:{key}", window_seconds)
        except CacheUnavailableError as exc:
            logger.warning("rate_limiter_unavailable", key=key, error=str(exc))
            return RateLimitDecision(allowed=True, limit=limit, remaining=limit)
        if count > limit:
            return RateLimitDecision(allowed=False, limit=limit, remaining=0, retry_after=max(1, reset_in))
        return RateLimitDecision(allowed=True, limit=limit, remaining=limit - count)


class InMemoryRateLimiter(RateLimiter):
    """Sliding-window limiter for single-process deployments and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, cleanup_interval: int = 300):
        self._clock = clock
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        async with self._lock:
            now = self._clock()
            self._cleanup_expired(now, window_seconds)

            timestamps = self._requests[key]
            cutoff = now - window_seconds
            while timestamps and timestamps[0] <= cutoff:
                timestamps.popleft()

            if len(timestamps) >= limit:
                retry_after = int(timestamps[0] + window_seconds - now) + 1
                return RateLimitDecision(allowed=False, limit=limit, remaining=0, retry_after=max(1, retry_after))

            timestamps.append(now)
            return RateLimitDecision(allowed=True, limit=limit, remaining=limit - len(timestamps))

    def reset(self) -> None:
        self._requests.clear()

    def _cleanup_expired(self, now: float, window_seconds: int) -> None:
        if now - self._last_cleanup < self._cleanup_interval:
            return
        cutoff = now - window_seconds
        for key in [k for k, ts in self._requests.items() if not ts or ts[-1] <= cutoff]:
            del self._requests[key]
        self._last_cleanup = now

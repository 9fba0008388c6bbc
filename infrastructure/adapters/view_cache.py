"""Infrastructure adapters implementing the application ViewDedupCache port."""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional, Tuple

from application.ports.view_cache import PENDING_MARKER, ViewDedupCache, parse_marker, view_key
from infrastructure.external.cache import RedisClient


class RedisViewDedupCache(ViewDedupCache):
    """Dedup markers backed by Redis ``SET NX EX`` (one atomic round trip)."""

    backend = "redis"

    def __init__(self, client: RedisClient):
        self.client = client

    async def mark_viewed(self, content_id, viewer_id: str, ttl_seconds: int) -> bool:
        return await self.client.set_if_absent(view_key(content_id, viewer_id), PENDING_MARKER, ttl_seconds)

    async def publish_count(self, content_id, viewer_id: str, views: int) -> None:
        await self.client.replace_keep_ttl(view_key(content_id, viewer_id), views)

    async def read_count(self, content_id, viewer_id: str) -> Optional[int]:
        return parse_marker(await self.client.get(view_key(content_id, viewer_id)))

    async def forget(self, content_id, viewer_id: str) -> None:
        await self.client.delete(view_key(content_id, viewer_id))


class InMemoryViewDedupCache(ViewDedupCache):
    """Process-local dedup markers with expiry.

    Insert-if-absent runs under an asyncio.Lock so concurrent callers on the
    same event loop observe exactly one winner per key and window. Only
    suitable for single-process deployments and tests.
    """

    backend = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 1000):
        self._clock = clock
        # key -> (marker value, expires_at)
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._sweep_every = sweep_every
        self._ops = 0

    def _live(self, key: str, now: float) -> Optional[Tuple[str, float]]:
        entry = self._entries.get(key)
        if entry is None or entry[1] <= now:
            return None
        return entry

    async def mark_viewed(self, content_id, viewer_id: str, ttl_seconds: int) -> bool:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        key = view_key(content_id, viewer_id)
        async with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            if self._live(key, now) is not None:
                return False
            self._entries[key] = (PENDING_MARKER, now + ttl_seconds)
            return True

    async def publish_count(self, content_id, viewer_id: str, views: int) -> None:
        key = view_key(content_id, viewer_id)
        async with self._lock:
            entry = self._live(key, self._clock())
            if entry is not None:
                self._entries[key] = (str(views), entry[1])

    async def read_count(self, content_id, viewer_id: str) -> Optional[int]:
        async with self._lock:
            entry = self._live(view_key(content_id, viewer_id), self._clock())
        return parse_marker(entry[0]) if entry else None

    async def forget(self, content_id, viewer_id: str) -> None:
        async with self._lock:
            self._entries.pop(view_key(content_id, viewer_id), None)

    def __len__(self) -> int:
        return len(self._entries)

    def _maybe_sweep(self, now: float) -> None:
        self._ops += 1
        if self._ops % self._sweep_every:
            return
        expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
        for k in expired:
            del self._entries[k]

"""Application-owned port for view deduplication.

The view pipeline needs an atomic insert-if-absent with expiry keyed by
(content, viewer). The first writer stores a pending marker, then replaces
it with the counter value it produced so concurrent duplicates can report
the same count.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


PENDING_MARKER = "pending"


class CacheUnavailableError(Exception):
    """Raised when the cache tier cannot answer (connection error, timeout)."""


def view_key(content_id: int | str, viewer_id: str) -> str:
    return f"view:{content_id}:{viewer_id}"


def parse_marker(value: Optional[str]) -> Optional[int]:
    """Counter value held by a settled marker; None while pending or absent."""
    if value is None or value == PENDING_MARKER:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@runtime_checkable
class ViewDedupCache(Protocol):
    backend: str

    async def mark_viewed(self, content_id: int | str, viewer_id: str, ttl_seconds: int) -> bool:
        """Return True when the key was absent and is now set (pending), False if present.

        Raises CacheUnavailableError on operational failure.
        """
        ...

    async def publish_count(self, content_id: int | str, viewer_id: str, views: int) -> None:
        """Replace a pending marker with the counter value, keeping its expiry."""
        ...

    async def read_count(self, content_id: int | str, viewer_id: str) -> Optional[int]:
        """Published counter value, or None while the marker is pending or gone."""
        ...

    async def forget(self, content_id: int | str, viewer_id: str) -> None:
        """Drop the dedup marker (used to simulate window expiry in ops/tests)."""
        ...

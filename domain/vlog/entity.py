"""Domain entity representing a published vlog.

Only the fields the view pipeline needs live here; content CRUD is handled
elsewhere.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from domain.common.exceptions import DomainValidationException


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Vlog:
    """Aggregate root carrying the durable view counter."""

    id: Optional[int]
    author_id: int
    title: str
    views: int = 0
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.views < 0:
            raise DomainValidationException(
                "views 不能为负数",
                field="views",
                details={"views": self.views},
            )
        self.title = (self.title or "").strip()
        if not self.title:
            raise DomainValidationException("title 不能为空", field="title")
        self.created_at = _ensure_utc(self.created_at)

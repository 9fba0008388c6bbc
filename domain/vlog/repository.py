"""Repository contract for vlog view counters."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .entity import Vlog


class VlogRepository(ABC):
    """Persistence operations used by the view pipeline."""

    @abstractmethod
    async def create(self, vlog: Vlog) -> Vlog:
        ...

    @abstractmethod
    async def get_by_id(self, vlog_id: int) -> Optional[Vlog]:
        ...

    @abstractmethod
    async def get_views(self, vlog_id: int) -> Optional[int]:
        """Return the current counter, or None when the vlog does not exist."""

    @abstractmethod
    async def increment_views(self, vlog_id: int, amount: int = 1) -> Optional[int]:
        """Atomically add ``amount`` in the store and return the new value.

        Implementations must push the addition down to the store
        (``views = views + :amount``) rather than read-modify-write.
        Returns None when the vlog does not exist.
        """

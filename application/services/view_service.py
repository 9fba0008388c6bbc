"""
浏览量应用服务 - 去重缓存 + 原子计数
"""
from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from typing import Callable, Optional

from application.dto import VlogResponseDTO
from application.ports.view_cache import CacheUnavailableError, ViewDedupCache
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import VlogNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


@dataclass(frozen=True)
class ViewResult:
    views: int
    incremented: bool
    degraded: bool = False


def derive_viewer_id(
    user_id: Optional[int] = None,
    session_id: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> str:
    """
    推导去重用的观看者标识

    优先级：登录用户ID > 客户端会话ID > IP 的 SHA-256 前 16 位（不保存原始 IP）
    """
    if user_id is not None:
        return str(user_id)
    if session_id:
        return f"sid:{session_id}"
    digest = hashlib.sha256((client_ip or "unknown").encode("utf-8")).hexdigest()[:16]
    return f"ip:{digest}"


class ViewApplicationService:
    """浏览量应用服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        cache: Optional[ViewDedupCache],
        *,
        ttl_seconds: Optional[int] = None,
        count_wait_attempts: Optional[int] = None,
        count_wait_interval: Optional[float] = None,
    ):
        self._uow_factory = uow_factory
        self._cache = cache
        self._ttl = ttl_seconds or settings.VIEW_TTL_SECONDS
        self._wait_attempts = (
            settings.VIEW_COUNT_WAIT_ATTEMPTS if count_wait_attempts is None else count_wait_attempts
        )
        self._wait_interval = count_wait_interval or settings.VIEW_COUNT_WAIT_INTERVAL_SECONDS

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    async def get_vlog(self, vlog_id: int) -> VlogResponseDTO:
        """只读获取，绝不触发浏览计数"""
        async with self._uow_factory(readonly=True) as uow:
            vlog = await uow.vlog_repository.get_by_id(vlog_id)
        if vlog is None:
            raise VlogNotFoundException(vlog_id)
        return VlogResponseDTO(
            id=vlog.id,
            author_id=vlog.author_id,
            title=vlog.title,
            views=vlog.views,
            created_at=vlog.created_at,
        )

    async def record_view(self, vlog_id: int, viewer_id: str) -> ViewResult:
        """
        记录一次浏览

        1. 原子地写入去重标记（SET NX EX，值为 pending）
        2. 写入成功：新浏览，计数器原子 +1，提交后把新计数写回标记（保留 TTL）
        3. 标记已存在：等待首个请求写回计数，再读取已提交的计数
        4. 缓存不可用：直接 +1 并标记 degraded（宁可多计也不阻塞用户）
        """
        # 先确认 vlog 存在，避免为不存在的内容写入去重标记
        async with self._uow_factory(readonly=True) as uow:
            current = await uow.vlog_repository.get_views(vlog_id)
        if current is None:
            raise VlogNotFoundException(vlog_id)

        degraded = False
        if self._cache is None:
            logger.warning("view_cache_unavailable", vlog_id=vlog_id, reason="not_configured")
            degraded = True
            first_view = True
        else:
            try:
                first_view = await self._cache.mark_viewed(vlog_id, viewer_id, self._ttl)
            except CacheUnavailableError as exc:
                logger.warning("view_cache_unavailable", vlog_id=vlog_id, error=str(exc))
                degraded = True
                first_view = True

        if not first_view:
            published = await self._wait_for_published_count(vlog_id, viewer_id)
            # 首个请求先提交再写回计数，已提交的值不会小于写回的值
            views = max(await self._read_views(vlog_id), published or 0)
            logger.debug("view_deduplicated", vlog_id=vlog_id, viewer_id=viewer_id)
            return ViewResult(views=views, incremented=False)

        try:
            async with self._uow_factory() as uow:
                views = await uow.vlog_repository.increment_views(vlog_id)
            if views is None:
                raise VlogNotFoundException(vlog_id)
        except Exception:
            if not degraded:
                await self._discard_marker(vlog_id, viewer_id)
            raise

        if not degraded:
            await self._publish_count(vlog_id, viewer_id, views)

        logger.info("view_recorded", vlog_id=vlog_id, views=views, degraded=degraded)
        return ViewResult(views=views, incremented=True, degraded=degraded)

    async def _read_views(self, vlog_id: int) -> int:
        async with self._uow_factory(readonly=True) as uow:
            views = await uow.vlog_repository.get_views(vlog_id)
        if views is None:
            raise VlogNotFoundException(vlog_id)
        return views

    async def _wait_for_published_count(self, vlog_id: int, viewer_id: str) -> Optional[int]:
        """轮询标记直到首个请求写回计数；超时或缓存故障时返回 None，由调用方回读数据库"""
        for attempt in range(self._wait_attempts + 1):
            try:
                published = await self._cache.read_count(vlog_id, viewer_id)
            except CacheUnavailableError as exc:
                logger.warning("view_cache_unavailable", vlog_id=vlog_id, error=str(exc))
                return None
            if published is not None:
                return published
            if attempt < self._wait_attempts:
                await asyncio.sleep(self._wait_interval)
        logger.warning("view_count_wait_timeout", vlog_id=vlog_id, attempts=self._wait_attempts)
        return None

    async def _publish_count(self, vlog_id: int, viewer_id: str, views: int) -> None:
        try:
            await self._cache.publish_count(vlog_id, viewer_id, views)
        except CacheUnavailableError as exc:
            logger.warning("view_count_publish_failed", vlog_id=vlog_id, error=str(exc))

    async def _discard_marker(self, vlog_id: int, viewer_id: str) -> None:
        # 计数失败时撤掉标记，下次浏览仍可计入
        try:
            await self._cache.forget(vlog_id, viewer_id)
        except CacheUnavailableError as exc:
            logger.warning("view_marker_discard_failed", vlog_id=vlog_id, error=str(exc))

"""SQLAlchemy implementation of the vlog view-counter repository."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.vlog.entity import Vlog
from domain.vlog.repository import VlogRepository
from infrastructure.models.vlog import VlogModel


class SQLAlchemyVlogRepository(VlogRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: VlogModel) -> Vlog:
        return Vlog(
            id=model.id,
            author_id=model.author_id,
            title=model.title,
            views=model.views or 0,
            created_at=model.created_at,
        )

    async def create(self, vlog: Vlog) -> Vlog:
        model = VlogModel(
            id=vlog.id,
            author_id=vlog.author_id,
            title=vlog.title,
            views=vlog.views,
            created_at=vlog.created_at,
        )
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get_by_id(self, vlog_id: int) -> Optional[Vlog]:
        result = await self.session.execute(select(VlogModel).where(VlogModel.id == vlog_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_views(self, vlog_id: int) -> Optional[int]:
        result = await self.session.execute(select(VlogModel.views).where(VlogModel.id == vlog_id))
        return result.scalar_one_or_none()

    async def increment_views(self, vlog_id: int, amount: int = 1) -> Optional[int]:
        # 计数在数据库侧完成，避免应用层读改写丢失并发更新
        stmt = (
            update(VlogModel)
            .where(VlogModel.id == vlog_id)
            .values(views=VlogModel.views + amount)
            .returning(VlogModel.views)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

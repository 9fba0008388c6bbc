"""
Vlog 数据库模型（只包含浏览计数相关字段）
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from datetime import datetime, timezone

from .base import Base


class VlogModel(Base):
    __tablename__ = "vlogs"
    __table_args__ = (
        CheckConstraint("views >= 0", name="views_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True, comment="作者ID")
    title = Column(String(200), nullable=False, comment="标题")
    views = Column(Integer, default=0, server_default="0", nullable=False, comment="浏览量")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    def __repr__(self):
        return f"<VlogModel(id={self.id}, views={self.views})>"

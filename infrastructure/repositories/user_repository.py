"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError

from domain.user.entity import User
from domain.user.repository import UserRepository
from domain.user.session import SessionState
from infrastructure.models.user import UserModel
from core.logging_config import get_logger
from domain.common.exceptions import (
    UsernameAlreadyExistsException,
    UserAlreadyExistsException,
    UserNotFoundException,
)


logger = get_logger(__name__)


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        """将数据库模型转换为领域实体"""
        return User(
            id=model.id,
            username=model.username,
            email=model.email,
            hashed_password=model.hashed_password,
            avatar=model.avatar,
            bio=model.bio,
            is_active=model.is_active,
            is_verified=model.is_verified,
            verification_token_hash=model.verification_token_hash,
            created_at=model.created_at,
            updated_at=model.updated_at,
            last_login=model.last_login,
            session=SessionState(
                token_family_id=model.token_family_id or "",
                token_version=model.token_version or 0,
                refresh_token_hash=model.refresh_token_hash or "",
                revoked_at=model.revoked_at,
            ),
        )

    def _to_model(self, entity: User) -> UserModel:
        """将领域实体转换为数据库模型"""
        return UserModel(
            id=entity.id,
            username=entity.username,
            email=entity.email,
            hashed_password=entity.hashed_password,
            avatar=entity.avatar,
            bio=entity.bio,
            is_active=entity.is_active,
            is_verified=entity.is_verified,
            verification_token_hash=entity.verification_token_hash,
            token_family_id=entity.session.token_family_id,
            token_version=entity.session.token_version,
            refresh_token_hash=entity.session.refresh_token_hash,
            revoked_at=entity.session.revoked_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            last_login=entity.last_login,
        )

    def _raise_conflict(self, exc: IntegrityError, user: User, action: str) -> None:
        # 只看驱动返回的约束信息，完整异常文本里还带着 INSERT 语句的列名
        msg = str(exc.orig).lower()
        if "username" in msg:
            logger.warning(f"{action}_user_conflict", field="username", username=user.username)
            raise UsernameAlreadyExistsException(user.username)
        if "email" in msg:
            logger.warning(f"{action}_user_conflict", field="email", email=user.email)
            raise UserAlreadyExistsException(user.email)

    async def create(self, user: User) -> User:
        """创建用户"""
        try:
            db_user = self._to_model(user)
            self.session.add(db_user)
            await self.session.flush()  # 获取生成的ID
            await self.session.refresh(db_user)
            return self._to_entity(db_user)
        except IntegrityError as e:
            await self.session.rollback()
            self._raise_conflict(e, user, "create")
            raise

    async def get_by_id(self, user_id: int) -> Optional[User]:
        """根据ID获取用户"""
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user_id)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def get_for_update(self, user_id: int) -> Optional[User]:
        """根据ID获取用户并加行锁（SQLite 会忽略 FOR UPDATE，依赖条件写兜底）"""
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def get_by_username(self, username: str) -> Optional[User]:
        """根据用户名获取用户"""
        result = await self.session.execute(
            select(UserModel).where(UserModel.username == username)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def get_by_email(self, email: str) -> Optional[User]:
        """根据邮箱获取用户"""
        result = await self.session.execute(
            select(UserModel).where(UserModel.email == email.lower())
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def get_by_verification_token_hash(self, token_hash: str) -> Optional[User]:
        """根据邮箱验证令牌哈希获取用户"""
        result = await self.session.execute(
            select(UserModel).where(UserModel.verification_token_hash == token_hash)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def update(self, user: User) -> User:
        """更新用户资料字段（会话状态只经由 save_session 写入）"""
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user.id)
        )
        db_user = result.scalar_one_or_none()

        if not db_user:
            raise UserNotFoundException(str(user.id))

        db_user.username = user.username
        db_user.email = user.email
        db_user.avatar = user.avatar
        db_user.bio = user.bio
        db_user.hashed_password = user.hashed_password
        db_user.is_active = user.is_active
        db_user.is_verified = user.is_verified
        db_user.verification_token_hash = user.verification_token_hash
        db_user.last_login = user.last_login

        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            self._raise_conflict(e, user, "update")
            raise
        await self.session.refresh(db_user)
        return self._to_entity(db_user)

    async def save_session(
        self,
        user_id: int,
        session: SessionState,
        *,
        expected_family_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> bool:
        """单条 UPDATE 写入完整会话元组；带 expected_* 时为比较并交换"""
        stmt = update(UserModel).where(UserModel.id == user_id)
        if expected_family_id is not None:
            stmt = stmt.where(UserModel.token_family_id == expected_family_id)
        if expected_version is not None:
            stmt = stmt.where(UserModel.token_version == expected_version)
        stmt = stmt.values(
            token_family_id=session.token_family_id,
            token_version=session.token_version,
            refresh_token_hash=session.refresh_token_hash,
            revoked_at=session.revoked_at,
        ).execution_options(synchronize_session=False)

        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def exists_by_username(self, username: str) -> bool:
        """检查用户名是否存在"""
        result = await self.session.execute(
            select(func.count()).select_from(UserModel)
            .where(UserModel.username == username)
        )
        count = result.scalar()
        return count > 0

    async def exists_by_email(self, email: str) -> bool:
        """检查邮箱是否存在"""
        result = await self.session.execute(
            select(func.count()).select_from(UserModel)
            .where(UserModel.email == email.lower())
        )
        count = result.scalar()
        return count > 0

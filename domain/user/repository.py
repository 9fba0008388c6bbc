"""
用户仓储接口 - 定义数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional
from .entity import User
from .session import SessionState


class UserRepository(ABC):
    """用户仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, user: User) -> User:
        """创建用户（连同初始会话状态）"""
        pass

    @abstractmethod
    async def get_by_id(self, user_id: int) -> Optional[User]:
        """根据ID获取用户"""
        pass

    @abstractmethod
    async def get_for_update(self, user_id: int) -> Optional[User]:
        """根据ID获取用户并锁定该行，直到事务结束"""
        pass

    @abstractmethod
    async def get_by_username(self, username: str) -> Optional[User]:
        """根据用户名获取用户"""
        pass

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[User]:
        """根据邮箱获取用户"""
        pass

    @abstractmethod
    async def get_by_verification_token_hash(self, token_hash: str) -> Optional[User]:
        """根据邮箱验证令牌的哈希获取用户"""
        pass

    @abstractmethod
    async def update(self, user: User) -> User:
        """更新用户资料字段（不含会话状态）"""
        pass

    @abstractmethod
    async def save_session(
        self,
        user_id: int,
        session: SessionState,
        *,
        expected_family_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> bool:
        """
        一次性写入完整的会话状态元组

        传入 expected_* 时为条件写（比较并交换）：只有当前持久化的家族与版本
        仍与预期一致才写入。返回是否写入成功。
        """
        pass

    @abstractmethod
    async def exists_by_username(self, username: str) -> bool:
        """检查用户名是否存在"""
        pass

    @abstractmethod
    async def exists_by_email(self, email: str) -> bool:
        """检查邮箱是否存在"""
        pass

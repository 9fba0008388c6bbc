"""
用户领域服务 - 处理复杂的业务逻辑
"""
from typing import Optional, List
from datetime import datetime, timezone
import hashlib
import secrets

import bcrypt

from .entity import User
from .repository import UserRepository
from .events import UserRegistered, UserLoggedIn
from domain.common.exceptions import (
    DomainValidationException,
    InvalidCredentialsException,
    InvalidVerificationTokenException,
    UserAlreadyExistsException,
    UserInactiveException,
    UsernameAlreadyExistsException,
)


# bcrypt 只处理前 72 字节
BCRYPT_MAX_BYTES = 72


def hash_verification_token(token: str) -> str:
    """邮箱验证令牌只保存 SHA-256 摘要"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class PasswordService:
    """密码服务 - 处理密码相关的业务逻辑"""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash_password(self, password: str) -> str:
        """密码哈希（bcrypt，自带随机盐）"""
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("ascii")

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """验证密码"""
        if not hashed_password:
            return False
        encoded = plain_password.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, hashed_password.encode("ascii"))
        except ValueError:
            # 存储的哈希格式损坏
            return False

    @staticmethod
    def validate_password_strength(password: str) -> None:
        """业务规则：密码强度验证"""
        if len(password) < 6:
            raise DomainValidationException("Password must be at least 6 characters", field="password")
        if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
            raise DomainValidationException("Password must be at most 72 bytes", field="password")
        if not any(c.isupper() for c in password):
            raise DomainValidationException("Password must contain an uppercase letter", field="password")
        if not any(c.islower() for c in password):
            raise DomainValidationException("Password must contain a lowercase letter", field="password")
        if not any(c.isdigit() for c in password):
            raise DomainValidationException("Password must contain a number", field="password")


class UserDomainService:
    """用户领域服务 - 编排注册与认证流程"""

    def __init__(self, user_repository: UserRepository, password_service: Optional[PasswordService] = None):
        self.user_repository = user_repository
        self.password_service = password_service or PasswordService()
        self.events: List = []  # 领域事件收集

    async def register_user(self, username: str, email: str, password: str) -> User:
        """用户注册的业务流程（会话由令牌服务在同一事务内开启）"""
        self.password_service.validate_password_strength(password)

        email = email.strip().lower()
        if await self.user_repository.exists_by_username(username):
            raise UsernameAlreadyExistsException(username)
        if await self.user_repository.exists_by_email(email):
            raise UserAlreadyExistsException(email)

        verification_token = secrets.token_hex(32)
        now = datetime.now(timezone.utc)
        try:
            user = User(
                id=None,
                username=username,
                email=email,
                hashed_password=self.password_service.hash_password(password),
                verification_token_hash=hash_verification_token(verification_token),
                created_at=now,
                updated_at=now,
            )
        except ValueError as exc:
            raise DomainValidationException(str(exc)) from exc

        created_user = await self.user_repository.create(user)

        self.events.append(UserRegistered(
            user_id=created_user.id,
            username=created_user.username,
            email=created_user.email,
            verification_token=verification_token,
        ))
        return created_user

    async def authenticate_user(self, email: str, password: str) -> User:
        """用户认证的业务流程（邮箱 + 密码）"""
        user = await self.user_repository.get_by_email(email.strip().lower())

        # 用户不存在与密码错误返回同一异常，避免枚举账户
        if not user or not self.password_service.verify_password(password, user.hashed_password):
            raise InvalidCredentialsException()

        if not user.is_active:
            raise UserInactiveException()

        first_login = user.is_first_login
        user.record_login()
        user = await self.user_repository.update(user)

        self.events.append(UserLoggedIn(
            user_id=user.id,
            username=user.username,
            email=user.email,
            first_login=first_login,
        ))
        return user

    async def verify_email(self, token: str) -> User:
        """邮箱验证：令牌摘要匹配则标记已验证并作废令牌"""
        user = await self.user_repository.get_by_verification_token_hash(hash_verification_token(token))
        if user is None:
            raise InvalidVerificationTokenException()
        user.mark_verified()
        return await self.user_repository.update(user)

    def get_domain_events(self) -> List:
        """获取并清空领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events

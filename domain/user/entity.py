"""
用户领域实体 - 包含核心业务规则
"""
from datetime import datetime, timezone
from typing import Optional
from dataclasses import dataclass, field
import re

from .session import SessionState


EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
USERNAME_PATTERN = re.compile(r'^[a-zA-Z0-9_]+$')


@dataclass
class User:
    """用户实体 - 领域核心"""

    id: Optional[int]
    username: str
    email: str
    hashed_password: str
    avatar: Optional[str] = None
    bio: Optional[str] = None
    is_active: bool = True
    is_verified: bool = False
    verification_token_hash: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    session: SessionState = field(default_factory=SessionState)

    def __post_init__(self):
        """初始化后的业务规则验证"""
        self.email = self.email.strip().lower()
        self.validate_email()
        self.validate_username()

    def validate_email(self) -> None:
        """业务规则：邮箱格式验证"""
        if not EMAIL_PATTERN.match(self.email):
            raise ValueError(f"无效的邮箱格式: {self.email}")

    def validate_username(self) -> None:
        """业务规则：用户名验证"""
        if len(self.username) < 3:
            raise ValueError("用户名至少需要3个字符")
        if len(self.username) > 30:
            raise ValueError("用户名不能超过30个字符")
        if not USERNAME_PATTERN.match(self.username):
            raise ValueError("用户名只能包含字母、数字和下划线")

    @property
    def is_first_login(self) -> bool:
        return self.last_login is None

    def record_login(self) -> None:
        """业务规则：记录登录时间"""
        self.last_login = datetime.now(timezone.utc)

    def mark_verified(self) -> None:
        """业务规则：验证通过后令牌作废，同一链接不能再次使用"""
        self.is_verified = True
        self.verification_token_hash = None
        self.touch()

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

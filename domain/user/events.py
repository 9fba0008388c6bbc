"""
用户领域事件 - 记录重要的业务事件
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class UserRegistered:
    """用户注册事件（携带一次性的邮箱验证令牌，仅用于发送通知）"""
    user_id: int
    username: str
    email: str
    verification_token: str
    event_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class UserLoggedIn:
    """用户登录事件"""
    user_id: int
    username: str
    email: str
    first_login: bool = False
    event_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

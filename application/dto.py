"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from pydantic import BaseModel, EmailStr, Field, field_validator, model_serializer, ConfigDict
from typing import Optional
from datetime import datetime, timezone
import re


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class RegisterDTO(DTOBase):
    """注册DTO"""
    username: str = Field(..., min_length=3, max_length=30,
                          description="用户名，3-30个字符")
    email: EmailStr = Field(..., max_length=100, description="邮箱地址")
    password: str = Field(..., min_length=6, max_length=72,
                          description="密码，6-72位，需包含大小写字母和数字")

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        v = v.strip()
        if not re.match(r'^[a-zA-Z0-9_]+$', v):
            raise ValueError('用户名只能包含字母、数字和下划线')
        return v

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return str(v).strip().lower()


class LoginDTO(DTOBase):
    """登录DTO"""
    email: EmailStr = Field(..., description="邮箱")
    password: str = Field(..., min_length=1, description="密码")


class RefreshTokenDTO(DTOBase):
    """刷新令牌请求 DTO（缺省时从 Cookie 读取）"""
    refresh_token: Optional[str] = None


class TokenDTO(DTOBase):
    """令牌DTO"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # 秒


class UserResponseDTO(DTOBase):
    """用户公开资料"""
    id: int
    username: str
    email: str
    avatar: Optional[str] = None
    bio: Optional[str] = None
    is_verified: bool
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AuthResponseDTO(TokenDTO):
    """登录/注册响应：令牌对 + 用户资料"""
    user: UserResponseDTO


class VlogResponseDTO(DTOBase):
    """Vlog 只读视图（不触发浏览量）"""
    id: int
    author_id: int
    title: str
    views: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ViewResultDTO(DTOBase):
    """记录浏览的结果"""
    views: int
    has_viewed: bool = True
    incremented: bool
    degraded: bool = False
    ttl: int = Field(..., description="去重窗口（秒）")

"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


# 会话失效与令牌重用对外使用同一条提示，只在内部日志中区分
SESSION_INVALID_MESSAGE = "Session is no longer valid. Please log in again."


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class UserNotFoundException(BusinessException):
    def __init__(self, user_id: Optional[str] = None):
        details = {"user_id": user_id} if user_id else None
        super().__init__(
            code=BusinessCode.USER_NOT_FOUND,
            message="User not found",
            error_type="UserNotFound",
            details=details,
        )


class UserAlreadyExistsException(BusinessException):
    def __init__(self, email: str):
        super().__init__(
            code=BusinessCode.USER_ALREADY_EXISTS,
            message=f"Email {email} already registered",
            error_type="UserAlreadyExists",
            details={"email": email},
            field="email",
        )


class UsernameAlreadyExistsException(BusinessException):
    def __init__(self, username: str):
        super().__init__(
            code=BusinessCode.USER_ALREADY_EXISTS,
            message=f"Username {username} already exists",
            error_type="UsernameAlreadyExists",
            details={"username": username},
            field="username",
        )


class InvalidCredentialsException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.PASSWORD_ERROR,
            message="Invalid email or password",
            error_type="InvalidCredentials",
        )


class UserInactiveException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message="User account is inactive",
            error_type="UserInactive",
        )


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class InvalidTokenException(BusinessException):
    """令牌无效：格式错误、签名错误、过期、家族或哈希不匹配、版本不一致"""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(
            code=BusinessCode.TOKEN_INVALID,
            message=message,
            error_type="InvalidToken",
        )


class SessionRevokedException(BusinessException):
    """会话已被撤销（登出或此前检测到重用），整个令牌家族失效"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.SESSION_INVALID,
            message=SESSION_INVALID_MESSAGE,
            error_type="SessionInvalid",
        )


class TokenReuseDetectedException(BusinessException):
    """检测到已轮转的刷新令牌被重放；抛出前会话已被撤销并提交"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.SESSION_INVALID,
            message=SESSION_INVALID_MESSAGE,
            error_type="SessionInvalid",
        )


class InvalidVerificationTokenException(BusinessException):
    """邮箱验证令牌无效或已被使用"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.VERIFICATION_TOKEN_INVALID,
            message="Invalid verification token",
            error_type="InvalidVerificationToken",
        )


class VlogNotFoundException(BusinessException):
    def __init__(self, vlog_id: Optional[int] = None):
        details = {"vlog_id": vlog_id} if vlog_id is not None else None
        super().__init__(
            code=BusinessCode.VLOG_NOT_FOUND,
            message="Vlog not found",
            error_type="VlogNotFound",
            details=details,
        )

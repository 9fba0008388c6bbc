"""
API依赖项 - 认证、服务装配与限流
"""
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from application.ports.notifications import NotificationPort
from application.ports.rate_limiter import RateLimiter
from application.services.auth_service import AuthApplicationService
from application.services.view_service import ViewApplicationService, derive_viewer_id
from application.dto import UserResponseDTO
from core.config import settings
from core.exceptions import RateLimitException
from core.logging_config import get_logger
from domain.common.exceptions import InvalidTokenException
from domain.common.unit_of_work import AbstractUnitOfWork

from api.utils.cookies import ACCESS_COOKIE

logger = get_logger(__name__)

SESSION_HEADER = "X-Session-ID"
SESSION_COOKIE = "sid"

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


# ============= 服务装配（资源由 lifespan 挂在 app.state 上） =============

def get_uow_factory(request: Request) -> Callable[..., AbstractUnitOfWork]:
    return request.app.state.uow_factory


def get_notifier(request: Request) -> Optional[NotificationPort]:
    return getattr(request.app.state, "notifier", None)


def get_rate_limiter(request: Request) -> Optional[RateLimiter]:
    return getattr(request.app.state, "rate_limiter", None)


async def get_auth_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    notifier: Optional[NotificationPort] = Depends(get_notifier),
) -> AuthApplicationService:
    return AuthApplicationService(uow_factory=uow_factory, notifier=notifier)


async def get_view_service(
    request: Request,
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> ViewApplicationService:
    return ViewApplicationService(
        uow_factory=uow_factory,
        cache=getattr(request.app.state, "view_cache", None),
        ttl_seconds=settings.VIEW_TTL_SECONDS,
    )


# ============= 认证 =============

async def get_optional_token(
    request: Request,
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Optional[str]:
    """从 Bearer 头或 access_token Cookie 中提取访问令牌"""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    return request.cookies.get(ACCESS_COOKIE) or None


async def get_token(token: Optional[str] = Depends(get_optional_token)) -> str:
    if not token:
        raise InvalidTokenException("Authentication credentials were not provided")
    return token


async def get_current_user_id(
    token: str = Depends(get_token),
    service: AuthApplicationService = Depends(get_auth_service),
) -> int:
    user_id = service.verify_token(token)
    if user_id is None:
        raise InvalidTokenException()
    return user_id


async def get_optional_user_id(
    token: Optional[str] = Depends(get_optional_token),
    service: AuthApplicationService = Depends(get_auth_service),
) -> Optional[int]:
    """匿名可访问的接口：令牌无效或过期时按匿名处理"""
    if not token:
        return None
    try:
        return service.verify_token(token)
    except InvalidTokenException:
        return None


async def get_current_user(
    user_id: int = Depends(get_current_user_id),
    service: AuthApplicationService = Depends(get_auth_service),
) -> UserResponseDTO:
    """获取当前登录用户"""
    return await service.get_user(user_id)


# ============= 观看者标识与限流 =============

def client_ip_of(request: Request) -> str:
    ip = getattr(request.state, "client_ip", None)
    if ip:
        return ip
    return request.client.host if request.client else "unknown"


async def get_viewer_id(
    request: Request,
    user_id: Optional[int] = Depends(get_optional_user_id),
) -> str:
    session_id = request.headers.get(SESSION_HEADER) or request.cookies.get(SESSION_COOKIE)
    return derive_viewer_id(user_id=user_id, session_id=session_id, client_ip=client_ip_of(request))


async def _enforce(limiter: Optional[RateLimiter], key: str, limit: int, window_seconds: int) -> None:
    if limiter is None:
        return
    decision = await limiter.hit(key, limit, window_seconds)
    if not decision.allowed:
        logger.warning("rate_limit_exceeded", key=key, limit=limit, retry_after=decision.retry_after)
        raise RateLimitException(retry_after=decision.retry_after)


async def view_rate_limit(
    request: Request,
    user_id: Optional[int] = Depends(get_optional_user_id),
    limiter: Optional[RateLimiter] = Depends(get_rate_limiter),
) -> None:
    """浏览计数限流：按 (IP, 用户ID 或 anonymous) 计数"""
    key = f"view:{client_ip_of(request)}:{user_id if user_id is not None else 'anonymous'}"
    await _enforce(limiter, key, settings.VIEW_RATE_LIMIT_MAX, settings.VIEW_RATE_LIMIT_WINDOW_SECONDS)


async def auth_rate_limit(
    request: Request,
    limiter: Optional[RateLimiter] = Depends(get_rate_limiter),
) -> None:
    """登录/注册/刷新/邮箱验证限流：按 (接口, IP) 计数"""
    # 按端点函数名归类，路径参数（如验证令牌）不进入限流键
    endpoint = request.scope.get("endpoint")
    scope = getattr(endpoint, "__name__", None) or request.url.path.rstrip("/").rsplit("/", 1)[-1]
    key = f"auth:{scope}:{client_ip_of(request)}"
    await _enforce(limiter, key, settings.AUTH_RATE_LIMIT_MAX, settings.AUTH_RATE_LIMIT_WINDOW_SECONDS)

"""
认证API路由 - 注册、登录、刷新令牌轮转与登出
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Request, Response, status

from application.dto import (
    AuthResponseDTO,
    LoginDTO,
    RefreshTokenDTO,
    RegisterDTO,
    TokenDTO,
    UserResponseDTO,
)
from application.services.auth_service import AuthApplicationService
from api.dependencies import (
    auth_rate_limit,
    get_auth_service,
    get_current_user,
    get_current_user_id,
)
from api.utils.cookies import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/auth",
    tags=["认证"]
)


@router.post(
    "/register",
    summary="用户注册",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[AuthResponseDTO],
    dependencies=[Depends(auth_rate_limit)],
)
async def register(
    data: RegisterDTO,
    response: Response,
    service: AuthApplicationService = Depends(get_auth_service),
):
    """
    注册新用户并直接开启会话

    - **username**: 3-30 个字符，只能包含字母、数字和下划线
    - **email**: 邮箱地址（验证邮件异步发送）
    - **password**: 至少 6 位，包含大小写字母和数字
    """
    result = await service.register(data)
    set_auth_cookies(response, result)
    return success_response(data=result, message="User registered successfully")


@router.post(
    "/login",
    summary="用户登录",
    response_model=ApiResponse[AuthResponseDTO],
    dependencies=[Depends(auth_rate_limit)],
)
async def login(
    data: LoginDTO,
    response: Response,
    service: AuthApplicationService = Depends(get_auth_service),
):
    """邮箱+密码登录；每次登录开启新的令牌家族，旧家族的刷新令牌随之失效"""
    result = await service.login(data)
    set_auth_cookies(response, result)
    return success_response(data=result, message="Login successful")


@router.post(
    "/refresh",
    summary="刷新访问令牌",
    response_model=ApiResponse[TokenDTO],
    dependencies=[Depends(auth_rate_limit)],
)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenDTO] = None,
    service: AuthApplicationService = Depends(get_auth_service),
):
    """
    使用刷新令牌换取新的令牌对

    刷新令牌轮转（Refresh Token Rotation）：
    - 每个刷新令牌只能使用一次，成功后返回同一家族的新令牌
    - 旧令牌被再次使用视为泄露，整个会话立即撤销
    - 令牌可放在请求体 `refresh_token` 字段或 `refresh_token` Cookie 中
    """
    token = body.refresh_token if body and body.refresh_token else request.cookies.get(REFRESH_COOKIE)
    tokens = await service.refresh(token)
    set_auth_cookies(response, tokens)
    return success_response(data=tokens, message="Token refreshed")


@router.post("/logout", summary="登出", response_model=ApiResponse[Any])
async def logout(
    response: Response,
    user_id: int = Depends(get_current_user_id),
    service: AuthApplicationService = Depends(get_auth_service),
):
    """撤销当前会话（幂等），并清除认证 Cookie"""
    await service.logout(user_id)
    clear_auth_cookies(response)
    return success_response(data=None, message="Logged out")


@router.get(
    "/verify/{token}",
    summary="邮箱验证",
    response_model=ApiResponse[UserResponseDTO],
    dependencies=[Depends(auth_rate_limit)],
)
async def verify_email(
    token: str = Path(..., min_length=1, max_length=128),
    service: AuthApplicationService = Depends(get_auth_service),
):
    """验证注册邮件中的链接令牌；令牌只能使用一次"""
    user = await service.verify_email(token)
    return success_response(data=user, message="Email verified successfully")


@router.get("/me", summary="获取当前用户信息", response_model=ApiResponse[UserResponseDTO])
async def get_current_user_info(
    current_user: UserResponseDTO = Depends(get_current_user)
):
    """获取当前登录用户的信息"""
    return success_response(data=current_user)

"""
认证应用服务（application/services）- 编排注册、登录、令牌轮转与登出
"""
from typing import Callable, Iterable, Optional

from application.dto import (
    AuthResponseDTO,
    LoginDTO,
    RegisterDTO,
    TokenDTO,
    UserResponseDTO,
)
from application.ports.notifications import NotificationPort
from application.services.token_service import TokenService
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import InvalidTokenException, UserNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import User
from domain.user.events import UserLoggedIn, UserRegistered
from domain.user.service import PasswordService, UserDomainService


logger = get_logger(__name__)


class AuthApplicationService:
    """认证应用服务 - 处理应用层逻辑"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        notifier: Optional[NotificationPort] = None,
        token_service: Optional[TokenService] = None,
        password_service: Optional[PasswordService] = None,
    ):
        self._uow_factory = uow_factory
        self._notifier = notifier
        self._token_service = token_service or TokenService(uow_factory, notifier=notifier)
        self._password_service = password_service or PasswordService(rounds=settings.PASSWORD_HASH_ROUNDS)

    @property
    def token_service(self) -> TokenService:
        return self._token_service

    async def register(self, data: RegisterDTO) -> AuthResponseDTO:
        """注册新用户并在同一事务内开启会话"""
        async with self._uow_factory() as uow:
            domain_service = UserDomainService(uow.user_repository, self._password_service)
            user = await domain_service.register_user(
                username=data.username,
                email=data.email,
                password=data.password,
            )
            tokens = await self._token_service.begin_session(user, uow=uow)
            events = domain_service.get_domain_events()

        logger.info("user_registered", user_id=user.id, username=user.username)
        self._dispatch_events(events)
        return self._auth_response(tokens, user)

    async def login(self, data: LoginDTO) -> AuthResponseDTO:
        """邮箱+密码登录，开启新的令牌家族（取代旧家族）"""
        async with self._uow_factory() as uow:
            domain_service = UserDomainService(uow.user_repository, self._password_service)
            user = await domain_service.authenticate_user(email=data.email, password=data.password)
            tokens = await self._token_service.begin_session(user, uow=uow)
            events = domain_service.get_domain_events()

        logger.info("user_logged_in", user_id=user.id)
        self._dispatch_events(events)
        return self._auth_response(tokens, user)

    async def refresh(self, refresh_token: Optional[str]) -> TokenDTO:
        """使用刷新令牌换取新令牌对"""
        if not refresh_token:
            raise InvalidTokenException("Refresh token required")
        try:
            return await self._token_service.rotate(refresh_token)
        except UserNotFoundException:
            # 签名有效但用户已不存在：对外不暴露用户ID
            raise InvalidTokenException() from None

    async def logout(self, user_id: int) -> None:
        """登出：撤销当前用户的令牌家族（幂等）"""
        await self._token_service.end_session(user_id)

    async def verify_email(self, token: str) -> UserResponseDTO:
        """使用邮件中的一次性令牌完成邮箱验证"""
        async with self._uow_factory() as uow:
            domain_service = UserDomainService(uow.user_repository, self._password_service)
            user = await domain_service.verify_email(token)

        logger.info("email_verified", user_id=user.id)
        return self._to_response_dto(user)

    async def get_user(self, user_id: int) -> UserResponseDTO:
        """获取用户信息"""
        async with self._uow_factory(readonly=True) as uow:
            user = await uow.user_repository.get_by_id(user_id)
            if not user:
                raise UserNotFoundException(str(user_id))
            return self._to_response_dto(user)

    def verify_token(self, token: str) -> Optional[int]:
        """验证访问令牌并返回用户ID（委托 TokenService）"""
        return self._token_service.verify_access_token(token)

    def _dispatch_events(self, events: Iterable) -> None:
        """事务提交后把领域事件转成通知；通知失败只记录日志"""
        if self._notifier is None:
            return
        for event in events:
            try:
                if isinstance(event, UserRegistered):
                    self._notifier.send_verification_email(
                        event.user_id, event.email, event.username, event.verification_token
                    )
                elif isinstance(event, UserLoggedIn) and event.first_login:
                    self._notifier.send_welcome_email(event.user_id, event.email, event.username)
            except Exception as exc:
                logger.warning(
                    "notification_dispatch_failed",
                    event_type=type(event).__name__,
                    user_id=getattr(event, "user_id", None),
                    error=str(exc),
                )

    def _auth_response(self, tokens: TokenDTO, user: User) -> AuthResponseDTO:
        return AuthResponseDTO(**tokens.model_dump(), user=self._to_response_dto(user))

    @staticmethod
    def _to_response_dto(user: User) -> UserResponseDTO:
        return UserResponseDTO(
            id=user.id,
            username=user.username,
            email=user.email,
            avatar=user.avatar,
            bio=user.bio,
            is_verified=user.is_verified,
            created_at=user.created_at,
            last_login=user.last_login,
        )

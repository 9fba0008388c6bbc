"""
令牌服务 - 处理JWT令牌和刷新令牌轮转逻辑
"""
from __future__ import annotations

import asyncio
import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import bcrypt
import jwt

from application.dto import TokenDTO
from application.ports.notifications import NotificationPort
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import (
    InvalidTokenException,
    SessionRevokedException,
    TokenReuseDetectedException,
    UserNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import User


logger = get_logger(__name__)


ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class RefreshClaims:
    """已通过签名与过期校验的刷新令牌载荷"""
    user_id: int
    family_id: str
    version: int
    jti: str


class TokenService:
    """
    令牌服务 - 实现刷新令牌轮转（Refresh Token Rotation）

    每个用户只持有一条轮转链（family），会话状态直接保存在用户记录上：
    1. 登录/注册开启新家族，版本号为 1，只保存新刷新令牌的 bcrypt 哈希
    2. 每次轮转版本号 +1，并覆盖哈希，旧令牌因此只能使用一次
    3. 同一家族的旧版本令牌被再次提交视为泄露信号，撤销整个家族
    4. 撤销后的家族拒绝任何令牌，直到重新登录
    """

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        notifier: Optional[NotificationPort] = None,
        hash_rounds: Optional[int] = None,
    ):
        self._uow_factory = uow_factory
        self._notifier = notifier
        self._hash_rounds = hash_rounds or settings.REFRESH_TOKEN_HASH_ROUNDS

    # ============= 工具方法 =============

    @staticmethod
    def _generate_jti() -> str:
        """生成唯一的JWT Token ID（保证相同声明的两枚令牌也互不相同）"""
        return str(uuid.uuid4())

    @staticmethod
    def _generate_family_id() -> str:
        """生成令牌家族ID（128 位随机数）"""
        return secrets.token_hex(16)

    @staticmethod
    def _prehash(token: str) -> bytes:
        # JWT 远超 bcrypt 的 72 字节上限，且同一家族的令牌前缀相同，先做 SHA-256
        return hashlib.sha256(token.encode("utf-8")).hexdigest().encode("ascii")

    def hash_refresh_token(self, token: str) -> str:
        """计算刷新令牌的单向哈希（加盐、慢哈希）"""
        salt = bcrypt.gensalt(rounds=self._hash_rounds)
        return bcrypt.hashpw(self._prehash(token), salt).decode("ascii")

    def verify_refresh_token_hash(self, token: str, stored_hash: str) -> bool:
        """常量时间比较提交的令牌与存储的哈希"""
        if not stored_hash:
            return False
        try:
            return bcrypt.checkpw(self._prehash(token), stored_hash.encode("ascii"))
        except ValueError:
            return False

    # ============= 签发 =============

    def create_access_token(self, user_id: int) -> str:
        """创建访问令牌（无状态，服务端不跟踪）"""
        now = datetime.now(timezone.utc)
        to_encode = {
            "sub": str(user_id),
            "type": ACCESS_TOKEN_TYPE,
            "jti": self._generate_jti(),
            "iat": now,
            "exp": now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        }
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    def create_refresh_token(self, user_id: int, family_id: str, version: int) -> str:
        """创建携带轮转元数据的刷新令牌"""
        now = datetime.now(timezone.utc)
        to_encode = {
            "sub": str(user_id),
            "type": REFRESH_TOKEN_TYPE,
            "family_id": family_id,
            "ver": version,
            "jti": self._generate_jti(),
            "iat": now,
            "exp": now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        }
        return jwt.encode(to_encode, settings.REFRESH_SECRET_KEY, algorithm=settings.ALGORITHM)

    def _token_pair(self, access_token: str, refresh_token: str) -> TokenDTO:
        return TokenDTO(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type="bearer",
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )

    # ============= 校验 =============

    def decode_refresh_token(self, token: str) -> RefreshClaims:
        """校验刷新令牌的签名、过期时间与结构，失败一律抛出 InvalidTokenException"""
        try:
            payload = jwt.decode(
                token,
                settings.REFRESH_SECRET_KEY,
                algorithms=[settings.ALGORITHM],
                options={"require": ["exp", "iat", "sub", "jti"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("refresh_token_expired")
            raise InvalidTokenException()
        except jwt.PyJWTError as e:
            logger.warning("refresh_token_invalid", error=str(e))
            raise InvalidTokenException()

        family_id = payload.get("family_id")
        version = payload.get("ver")
        if (
            payload.get("type") != REFRESH_TOKEN_TYPE
            or not isinstance(family_id, str)
            or not family_id
            or not isinstance(version, int)
            or isinstance(version, bool)
            or version < 1
        ):
            logger.warning("refresh_token_malformed_claims")
            raise InvalidTokenException()

        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError):
            logger.warning("refresh_token_malformed_claims", field="sub")
            raise InvalidTokenException()

        return RefreshClaims(user_id=user_id, family_id=family_id, version=version, jti=payload["jti"])

    def verify_access_token(self, token: str) -> Optional[int]:
        """校验访问令牌并返回用户ID；过期抛出 InvalidTokenException，其余无效情况返回 None"""
        try:
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidTokenException("Access token expired")
        except jwt.InvalidTokenError:
            return None

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            return None

        try:
            return int(payload["sub"])
        except (TypeError, ValueError):
            return None

    # ============= 会话生命周期 =============

    async def begin_session(self, user: User, *, uow: AbstractUnitOfWork) -> TokenDTO:
        """
        开启新的令牌家族并签发令牌对

        必须在持久化用户的同一事务内调用（登录/注册），新家族会取代
        该用户之前的任何家族（包括已撤销的）。
        """
        family_id = self._generate_family_id()
        refresh_token = self.create_refresh_token(user.id, family_id, 1)
        token_hash = await asyncio.to_thread(self.hash_refresh_token, refresh_token)

        user.session.begin(family_id, token_hash)
        await uow.user_repository.save_session(user.id, user.session)

        logger.info("session_started", user_id=user.id, family_id=family_id)
        return self._token_pair(self.create_access_token(user.id), refresh_token)

    async def rotate(self, refresh_token: str) -> TokenDTO:
        """
        刷新令牌轮转 - 核心状态机

        流程：
        1. 校验签名/过期/结构
        2. 加锁读取用户（同一用户的并发轮转在此串行化）
        3. 会话已撤销：拒绝
        4. 家族不一致：拒绝
        5. 比较哈希；若令牌版本落后于当前版本，即为已轮转令牌被重放：
           撤销整个家族并提交后再报错
        6. 版本不一致或哈希不匹配：拒绝
        7. 版本 +1，签发新令牌对，条件写入新的会话状态

        拒绝路径不修改任何状态。
        """
        claims = self.decode_refresh_token(refresh_token)
        log = logger.bind(user_id=claims.user_id, family_id=claims.family_id, presented_version=claims.version)

        async with self._uow_factory() as uow:
            user = await uow.user_repository.get_for_update(claims.user_id)
            if user is None:
                log.warning("refresh_user_not_found")
                raise UserNotFoundException(str(claims.user_id))

            session = user.session
            if session.is_revoked:
                log.warning("refresh_session_revoked", revoked_at=session.revoked_at.isoformat())
                raise SessionRevokedException()

            if claims.family_id != session.token_family_id:
                log.warning("refresh_family_mismatch")
                raise InvalidTokenException()

            hash_matches = await asyncio.to_thread(
                self.verify_refresh_token_hash, refresh_token, session.refresh_token_hash
            )

            if session.token_version > claims.version:
                # 已轮转掉的令牌必然与当前哈希不符（哈希属于它的后继令牌）
                log.error(
                    "refresh_token_reuse_detected",
                    current_version=session.token_version,
                    hash_matches=hash_matches,
                )
                await self._revoke(uow, user, reason="token_reuse")
            elif not hash_matches:
                log.warning("refresh_token_hash_mismatch")
                raise InvalidTokenException()
            elif session.token_version != claims.version:
                log.warning("refresh_version_mismatch", current_version=session.token_version)
                raise InvalidTokenException()
            else:
                new_version = claims.version + 1
                new_refresh_token = self.create_refresh_token(user.id, session.token_family_id, new_version)
                new_hash = await asyncio.to_thread(self.hash_refresh_token, new_refresh_token)
                session.advance(new_hash)

                saved = await uow.user_repository.save_session(
                    user.id,
                    session,
                    expected_family_id=claims.family_id,
                    expected_version=claims.version,
                )
                if saved:
                    log.info("refresh_token_rotated", new_version=new_version)
                    return self._token_pair(self.create_access_token(user.id), new_refresh_token)

                # 条件写未命中：并发轮转已抢先推进版本，按重用处理
                log.error("refresh_token_reuse_detected", reason="concurrent_rotation")
                await self._revoke(uow, user, reason="token_reuse")

        # 只有重用分支会走到这里：撤销已提交，再对外报错
        self._alert(claims.user_id, "token_reuse")
        raise TokenReuseDetectedException()

    async def end_session(self, user_id: int) -> bool:
        """撤销用户的整个令牌家族（登出）。幂等：重复撤销返回 False 且不报错"""
        async with self._uow_factory() as uow:
            user = await uow.user_repository.get_for_update(user_id)
            if user is None:
                raise UserNotFoundException(str(user_id))
            revoked = await self._revoke(uow, user, reason="logout")
        if not revoked:
            logger.info("session_already_revoked", user_id=user_id)
        return revoked

    async def _revoke(self, uow: AbstractUnitOfWork, user: User, *, reason: str) -> bool:
        """撤销动作：清空家族/版本/哈希并记录撤销时间，单次写入并立即提交"""
        if not user.session.revoke():
            return False
        await uow.user_repository.save_session(user.id, user.session)
        await uow.commit()
        logger.info("session_revoked", user_id=user.id, reason=reason)
        return True

    def _alert(self, user_id: int, reason: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.send_security_alert(user_id, reason)
        except Exception as exc:  # 通知失败不能影响认证流程
            logger.warning("security_alert_dispatch_failed", user_id=user_id, error=str(exc))

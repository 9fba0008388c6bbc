"""
会话状态值对象 - 刷新令牌轮转链的持久化状态
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass
class SessionState:
    """
    每个用户一份的会话状态

    - token_family_id: 一条轮转链的标识，每次登录/注册重新生成
    - token_version: 链内版本号，登录时为 1，每次轮转 +1，撤销后为 0
    - refresh_token_hash: 当前唯一有效刷新令牌的单向哈希，从不保存明文
    - revoked_at: 非空表示整条链已失效
    """

    token_family_id: str = ""
    token_version: int = 0
    refresh_token_hash: str = ""
    revoked_at: Optional[datetime] = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def is_active(self) -> bool:
        return not self.is_revoked and bool(self.token_family_id) and self.token_version > 0

    def begin(self, family_id: str, refresh_token_hash: str) -> None:
        """开启新的令牌家族（取代之前的任何家族，包括已撤销的）"""
        if not family_id:
            raise ValueError("family_id 不能为空")
        self.token_family_id = family_id
        self.token_version = 1
        self.refresh_token_hash = refresh_token_hash
        self.revoked_at = None

    def advance(self, refresh_token_hash: str) -> int:
        """轮转到下一个版本，旧令牌哈希被覆盖，返回新版本号"""
        if not self.is_active:
            raise ValueError("会话未激活，不能轮转")
        self.token_version += 1
        self.refresh_token_hash = refresh_token_hash
        return self.token_version

    def revoke(self, now: Optional[datetime] = None) -> bool:
        """撤销整个家族；已撤销时保持原撤销时间并返回 False"""
        if self.is_revoked:
            return False
        self.revoked_at = now or datetime.now(timezone.utc)
        self.token_version = 0
        self.token_family_id = ""
        self.refresh_token_hash = ""
        return True

"""Outbound notification port (fire-and-forget)."""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class NotificationPort(Protocol):
    def send_verification_email(self, user_id: int, email: str, username: str, token: str) -> None: ...

    def send_welcome_email(self, user_id: int, email: str, username: str) -> None: ...

    def send_security_alert(self, user_id: int, reason: str) -> None: ...

"""Notification adapter that hands messages to Celery tasks."""
from __future__ import annotations

from typing import Optional

from application.ports.notifications import NotificationPort
from core.logging_config import get_logger
from infrastructure.tasks import TaskDispatcher

logger = get_logger(__name__)


class CeleryNotificationAdapter(NotificationPort):
    def __init__(self, dispatcher: Optional[TaskDispatcher] = None):
        self.dispatcher = dispatcher or TaskDispatcher()

    def send_verification_email(self, user_id: int, email: str, username: str, token: str) -> None:
        self.dispatcher.send_verification_email(user_id=user_id, email=email, username=username, token=token)

    def send_welcome_email(self, user_id: int, email: str, username: str) -> None:
        self.dispatcher.send_user_welcome_email(user_id=user_id, email=email, username=username)

    def send_security_alert(self, user_id: int, reason: str) -> None:
        logger.info("security_alert_queued", user_id=user_id, reason=reason)
        self.dispatcher.send_security_alert(user_id=user_id, reason=reason)

"""Email related Celery tasks"""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)

_RETRY_OPTIONS = dict(
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)


def build_verification_link(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/verify-email/{token}"


def deliver(to: str, subject: str, body: str) -> None:
    """Mail transport. Replace with SMTP/ESP integration; the body is never logged."""
    logger.info("email_delivered", to=to, subject=subject, body_length=len(body))


@shared_task(**_RETRY_OPTIONS)
def send_verification_email(self, user_id: int, email: str, username: str, token: str) -> None:
    """Send the email-verification link."""
    link = build_verification_link(token)
    deliver(
        email,
        "Verify your VlogSphere email",
        f"Hi {username},\n\nConfirm your email address by opening:\n{link}\n\n"
        "This verification link can be used once.",
    )
    logger.info("send_verification_email", user_id=user_id)


@shared_task(**_RETRY_OPTIONS)
def send_welcome_email(self, user_id: int, email: str, username: str = "") -> None:
    """Send a welcome email after the user's first login."""
    deliver(email, "Welcome to VlogSphere", f"Hi {username or 'there'}, welcome aboard!")
    logger.info("send_welcome_email", user_id=user_id)


@shared_task(**_RETRY_OPTIONS)
def send_security_alert(self, user_id: int, reason: str) -> None:
    """Tell the account owner their sessions were revoked."""
    logger.warning("send_security_alert", user_id=user_id, reason=reason)

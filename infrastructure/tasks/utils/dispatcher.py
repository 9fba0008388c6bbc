"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from ..tasks import email as email_tasks


class TaskDispatcher:
    """Internal facade used by application layer to schedule tasks.

    Task objects are invoked through ``apply_async`` so eager mode (dev/test)
    runs them inline while production publishes to the broker.
    """

    def send_verification_email(self, user_id: int, email: str, username: str, token: str) -> None:
        email_tasks.send_verification_email.apply_async(
            kwargs={"user_id": user_id, "email": email, "username": username, "token": token},
        )

    def send_user_welcome_email(self, user_id: int, email: str, username: str = "") -> None:
        """Fire-and-forget helper for the common welcome email use case."""
        email_tasks.send_welcome_email.apply_async(
            kwargs={"user_id": user_id, "email": email, "username": username},
        )

    def send_security_alert(self, user_id: int, reason: str) -> None:
        email_tasks.send_security_alert.apply_async(kwargs={"user_id": user_id, "reason": reason})

"""Common base task for Celery jobs"""
from __future__ import annotations

from typing import Any, Dict

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)

# Task kwargs that must never reach the logs
REDACTED_KWARGS = frozenset({"token", "verification_token", "refresh_token", "password"})


def redact_kwargs(kwargs: Dict[str, Any] | None) -> Dict[str, Any]:
    return {k: ("***" if k in REDACTED_KWARGS else v) for k, v in (kwargs or {}).items()}


class BaseTask(Task):
    """Structured lifecycle logging for notification tasks.

    Positional args are not logged; the dispatcher always passes kwargs so
    they can be redacted by name.
    """

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            kwargs=redact_kwargs(kwargs),
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            exc=str(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("celery_task_success", task_id=task_id, task_name=self.name)
        super().on_success(retval, task_id, args, kwargs)

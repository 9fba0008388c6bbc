"""Importing this package registers the notification tasks with Celery."""
from . import email  # noqa: F401

__all__ = ["email"]

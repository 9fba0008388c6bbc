"""Convenience entry point for running Celery worker.

Most deployments will invoke the standard Celery CLI, but keeping a small
script makes local testing or Procfile-style runners straightforward.
"""
from __future__ import annotations

from core.logging_config import configure_logging

from .config.celery import celery_app


def main() -> None:
    configure_logging()
    celery_app.worker_main(["worker", "--hostname=worker@%h", "--queues=high,default,low", "--loglevel=INFO"])


if __name__ == "__main__":
    main()

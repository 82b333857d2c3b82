"""Celery application consuming the sync queue."""

from __future__ import annotations

from typing import Any

from celery import Celery
from celery.signals import setup_logging

from ..utils.config import GlobalSettings, get_settings
from ..utils.logging import configure_logging

SYNC_TASK_NAME = "list_mirror.process_sync_message"


def create_celery_app(settings: GlobalSettings | None = None) -> Celery:
    """Build the worker app; one queue, late acknowledgement, JSON only."""

    settings = settings or get_settings()
    broker_url = settings.redis_url or "redis://localhost:6379/0"

    app = Celery("list_mirror", broker=broker_url, backend=broker_url)
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        worker_hijack_root_logger=False,
        # A message is only removed once its step committed or was archived.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        task_default_queue=settings.sync_queue,
        task_routes={SYNC_TASK_NAME: {"queue": settings.sync_queue}},
    )
    return app


@setup_logging.connect
def _configure_worker_logging(**_: Any) -> None:
    configure_logging()


celery_app = create_celery_app()
celery_app.autodiscover_tasks(["list_mirror.tasks"], related_name="sync")

"""Celery task package exposing the configured app and sync task."""

from __future__ import annotations

from .celery_app import celery_app as app
from .sync import enqueue_message, process_sync_message, run_sync_message

__all__ = [
    "app",
    "enqueue_message",
    "process_sync_message",
    "run_sync_message",
]

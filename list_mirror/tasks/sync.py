"""Celery task consuming queued change notifications and continuations."""

from __future__ import annotations

import asyncio
from functools import lru_cache
from pathlib import Path
from typing import Any

from ..exceptions import TaskExecutionError
from ..loading import SchemaRegistry, SchemaRouter, TabularLoader
from ..remote.client import ListChangeFeedClient
from ..schemas.messages import ContinuationPayload, MessageKind
from ..storage.dead_letter import build_dead_letter_store
from ..sync.orchestrator import SyncOrchestrator, SyncOutcome
from ..sync.processor import SyncProcessor
from ..utils.config import (
    GlobalSettings,
    ensure_runtime_configuration,
    get_settings,
    resolve_schema_registry_path,
)
from ..utils.logging import setup_logger
from .celery_app import SYNC_TASK_NAME, celery_app
from .error_handling import build_error_report
from .policies import QueueRetryPolicy

logger = setup_logger(__name__, context={"component": "SyncTask"})


@lru_cache(maxsize=4)
def _load_registry(path: str) -> SchemaRegistry:
    return SchemaRegistry.from_yaml(Path(path))


def get_schema_registry(settings: GlobalSettings | None = None) -> SchemaRegistry:
    """Return the registry for the active configuration, loaded once per path."""

    return _load_registry(str(resolve_schema_registry_path(settings or get_settings())))


def enqueue_message(
    message: str,
    kind: MessageKind | str,
    settings: GlobalSettings | None = None,
) -> None:
    """Send ``message`` to the sync queue tagged with its kind."""

    settings = settings or get_settings()
    kind_value = kind.value if isinstance(kind, MessageKind) else str(kind)
    process_sync_message.apply_async(args=(message, kind_value), queue=settings.sync_queue)


def build_orchestrator(settings: GlobalSettings, client: ListChangeFeedClient) -> SyncOrchestrator:
    """Wire processor, loader and dead-letter store for one task execution."""

    processor = SyncProcessor(
        client=client,
        loader=TabularLoader(SchemaRouter(get_schema_registry(settings))),
        site_id=settings.site_id or "",
        list_id=settings.list_id or "",
        watched_path=settings.watched_path or "",
    )

    def _enqueue(payload: ContinuationPayload) -> None:
        enqueue_message(payload.to_message(), MessageKind.CONTINUATION, settings)

    return SyncOrchestrator(
        processor=processor,
        dead_letters=build_dead_letter_store(settings),
        enqueue_continuation=_enqueue,
        batch_size=settings.batch_size,
    )


async def _handle_message(message: str, kind: str, settings: GlobalSettings) -> SyncOutcome:
    async with ListChangeFeedClient.from_settings(settings) as client:
        orchestrator = build_orchestrator(settings, client)
        return await orchestrator.handle(kind, message)


def run_sync_message(message: str, kind: str) -> dict[str, Any]:
    """Handle one queued message synchronously for Celery workers."""

    settings = ensure_runtime_configuration(get_settings())
    outcome = asyncio.run(_handle_message(message, kind, settings))
    return {"status": outcome.value, "kind": kind}


@celery_app.task(name=SYNC_TASK_NAME, bind=True)
def process_sync_message(
    self, message: str, kind: str = MessageKind.NOTIFICATION.value
) -> dict[str, Any]:
    """Run one bounded sync step; input defects are retried with backoff."""

    try:
        return run_sync_message(message, kind)
    except Exception as exc:
        policy = QueueRetryPolicy.from_settings(get_settings())
        retries = self.request.retries or 0
        report = build_error_report(
            exc,
            kind=kind,
            task_id=self.request.id,
            retryable_override=policy.should_retry(exc, retries),
            extra_details={"retry_policy": policy.to_dict(), "retries": retries},
        )
        logger.error(
            "Sync task failed (%s): %s",
            report.classification,
            report.message,
            extra={"correlation_id": self.request.id or "-", "status": "error"},
        )
        if report.retryable:
            raise self.retry(
                exc=exc,
                countdown=policy.next_countdown(retries),
                max_retries=policy.max_attempts,
            )
        raise TaskExecutionError(report, original_error=exc, retry_policy=policy) from exc

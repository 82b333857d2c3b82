"""Queue-message handling for the list synchronization workflow."""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum

from ..exceptions import DeadLetterError, MessageParseError
from ..monitoring.metrics import (
    observe_step_duration,
    record_continuation_enqueued,
    record_dead_letter,
    record_sync_step,
)
from ..schemas.messages import (
    ContinuationPayload,
    MessageKind,
    NotificationEnvelope,
    parse_message,
)
from ..storage.dead_letter import (
    CONNECTION_FAILED_PREFIX,
    PROCESSING_ERROR_PREFIX,
    DeadLetterStore,
)
from ..utils.logging import setup_logger
from .processor import SyncProcessor, SyncResult

logger = setup_logger(__name__, context={"component": "SyncOrchestrator"})

ContinuationEnqueuer = Callable[[ContinuationPayload], None]


class SyncOutcome(str, Enum):
    """Terminal state of one handled queue message."""

    ARCHIVED = "archived"
    FAILED = "failed"
    COMPLETED = "completed"
    CONTINUED = "continued"


class SyncOrchestrator:
    """Route one queued message through the processor.

    Connectivity failures and failed notification steps are archived and
    swallowed so the queue does not redeliver them. Undecodable messages and
    unexpected errors are archived and re-raised for queue-level retry.
    """

    def __init__(
        self,
        *,
        processor: SyncProcessor,
        dead_letters: DeadLetterStore,
        enqueue_continuation: ContinuationEnqueuer,
        batch_size: int = 200,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._processor = processor
        self._dead_letters = dead_letters
        self._enqueue_continuation = enqueue_continuation
        self._batch_size = batch_size

    async def handle(self, kind: MessageKind | str, raw_message: str) -> SyncOutcome:
        kind_label = kind.value if isinstance(kind, MessageKind) else str(kind)
        started = time.perf_counter()
        try:
            outcome = await self._handle(kind, raw_message)
        except Exception:
            record_sync_step(kind_label, "error")
            raise
        finally:
            observe_step_duration(kind_label, time.perf_counter() - started)

        record_sync_step(kind_label, outcome.value)
        return outcome

    async def _handle(self, kind: MessageKind | str, raw_message: str) -> SyncOutcome:
        if not await self._processor.ensure_connection():
            self._archive(CONNECTION_FAILED_PREFIX, raw_message, reason="connection_failed")
            return SyncOutcome.ARCHIVED

        try:
            message = parse_message(kind, raw_message)
        except MessageParseError:
            logger.exception("Unable to decode queued message", extra={"status": "invalid"})
            self._archive(PROCESSING_ERROR_PREFIX, raw_message, reason="parse_error")
            raise

        try:
            if isinstance(message, NotificationEnvelope):
                return await self._handle_notifications(message, raw_message)
            return await self._handle_continuation(message, raw_message)
        except DeadLetterError:
            raise
        except Exception:
            logger.exception("Unexpected error while synchronizing", extra={"status": "error"})
            self._archive(PROCESSING_ERROR_PREFIX, raw_message, reason="unexpected")
            raise

    async def _handle_notifications(
        self, envelope: NotificationEnvelope, raw_message: str
    ) -> SyncOutcome:
        logger.info("Processing %d change notification(s)", len(envelope.value))

        for notice in envelope.value:
            result = await self._processor.fetch_and_store_delta(
                self._batch_size, subscription_id=notice.subscription_id
            )
            if not result.success:
                logger.error(
                    "Synchronization failed for notification: %s",
                    result.error_reason,
                    extra={"status": "failed"},
                )
                self._archive(PROCESSING_ERROR_PREFIX, raw_message, reason="step_failed")
                return SyncOutcome.FAILED

            if result.has_more_work:
                # The pending cursor already covers any later notices.
                self._continue(result)
                return SyncOutcome.CONTINUED

        return SyncOutcome.COMPLETED

    async def _handle_continuation(
        self, payload: ContinuationPayload, raw_message: str
    ) -> SyncOutcome:
        logger.info("Processing continuation with %d item(s)", len(payload.item_ids))

        result = await self._processor.fetch_and_store_items(
            payload.item_ids, payload.delta_link, self._batch_size
        )
        if not result.success:
            logger.error(
                "Continuation failed: %s", result.error_reason, extra={"status": "failed"}
            )
            self._archive(PROCESSING_ERROR_PREFIX, raw_message, reason="step_failed")
            return SyncOutcome.FAILED

        if result.has_more_work:
            self._continue(result)
            return SyncOutcome.CONTINUED
        return SyncOutcome.COMPLETED

    def _continue(self, result: SyncResult) -> None:
        payload = ContinuationPayload(
            item_ids=result.remaining_item_ids,
            delta_link=result.pending_delta_link,
        )
        self._enqueue_continuation(payload)
        record_continuation_enqueued()
        logger.info(
            "Enqueued continuation for %d remaining item(s)",
            len(payload.item_ids),
            extra={"status": "continued"},
        )

    def _archive(self, prefix: str, raw_message: str, *, reason: str) -> None:
        key = self._dead_letters.archive(prefix, raw_message)
        record_dead_letter(reason)
        logger.warning("Message archived under %s", key, extra={"status": "archived"})

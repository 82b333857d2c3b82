"""One bounded synchronization step against the monitored list."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from urllib.parse import unquote

import httpx
from sqlalchemy.orm import Session

from ..exceptions import (
    ConfigurationError,
    DeltaResyncRequiredError,
    ParseError,
    RemoteServiceError,
)
from ..loading.loader import TabularLoader
from ..models.base import get_session_factory
from ..models.repository import (
    ArtifactRecordCreate,
    ArtifactRepository,
    SyncAttemptCreate,
    SyncAttemptRepository,
    persist_sync_attempt,
)
from ..models.sync_attempt import SyncStatus
from ..monitoring.metrics import record_deduplicated_artifact, record_items
from ..parsing.excel import ParsedTable, is_spreadsheet, parse_workbook_async
from ..remote.client import ListChangeFeedClient
from ..utils.hashing import compute_digest
from ..utils.logging import log_sync_step, setup_logger

logger = setup_logger(__name__, context={"component": "SyncProcessor"})

PROCESS_FLAG_FIELD = "ProcessFlag"
RESYNC_WINDOW = timedelta(minutes=10)

WorkbookParser = Callable[[bytes], Awaitable[list[ParsedTable]]]


def canonical_path(raw: str) -> str:
    """Normalize a drive path for comparison.

    Graph reports parents as ``/drives/<id>/root:/Shared%20Documents/Folder``;
    everything up to the first colon is dropped, the rest URL-decoded, with
    forward slashes, no trailing slash and lower case.
    """

    index = raw.find(":")
    if 0 <= index < len(raw) - 1:
        raw = raw[index + 1 :]
    return unquote(raw).replace("\\", "/").rstrip("/").lower()


@dataclass(slots=True)
class SyncResult:
    """Outcome of one step, including work left for a continuation."""

    success: bool
    error_reason: str | None = None
    successful_items: int = 0
    failed_items: int = 0
    remaining_item_ids: list[str] = field(default_factory=list)
    pending_delta_link: str | None = None

    @property
    def has_more_work(self) -> bool:
        return bool(self.remaining_item_ids)

    @classmethod
    def failed(cls, reason: str) -> SyncResult:
        return cls(success=False, error_reason=reason)


@dataclass(slots=True)
class _BatchTally:
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    last_error: str | None = None


class SyncProcessor:
    """Fetch changed items, deduplicate their content and load new artifacts.

    Each public step runs in its own transaction: the journal entry, artifact
    records and derived rows commit together or not at all. When a step
    fails, a separate Failed journal entry is written after the rollback.
    """

    def __init__(
        self,
        *,
        client: ListChangeFeedClient,
        loader: TabularLoader,
        site_id: str,
        list_id: str,
        watched_path: str,
        session_factory: Callable[[], Session] | None = None,
        parser: WorkbookParser = parse_workbook_async,
    ) -> None:
        if not site_id or not site_id.strip():
            raise ConfigurationError("Site ID cannot be empty")
        if not list_id or not list_id.strip():
            raise ConfigurationError("List ID cannot be empty")
        if not watched_path or not watched_path.strip():
            raise ConfigurationError("Watched folder path cannot be empty")

        self._client = client
        self._loader = loader
        self._site_id = site_id
        self._list_id = list_id
        self._watched_path = canonical_path(watched_path)
        self._session_factory = session_factory
        self._parser = parser

    @property
    def site_id(self) -> str:
        return self._site_id

    @property
    def list_id(self) -> str:
        return self._list_id

    def _new_session(self) -> Session:
        factory = self._session_factory or get_session_factory()
        return factory()

    async def ensure_connection(self) -> bool:
        """Return True when the remote service answers for the configured site."""

        result = await self._client.test_connection(self._site_id)
        if result.is_success:
            logger.debug("Graph connection successful")
            return True

        logger.error(
            "Graph connection failed: %s (code: %s)",
            result.error_reason,
            result.error_code,
            extra=self._context(status="unreachable"),
        )
        if result.error_code == "Forbidden":
            logger.error("Check the application's site permissions")
        elif result.error_code == "AuthenticationFailed":
            logger.error("Check client credentials and tenant configuration")
        return False

    async def fetch_and_store_delta(
        self,
        batch_size: int,
        *,
        subscription_id: str | None = None,
    ) -> SyncResult:
        """Pull changes since the current watermark and process at most ``batch_size`` items."""

        async def _work(session: Session) -> SyncResult:
            journal = SyncAttemptRepository(session)
            watermark = journal.current_watermark(self._site_id, self._list_id)
            item_ids, delta_link = await self._pull(journal, watermark)

            if not item_ids:
                attempt = journal.start(
                    self._site_id, self._list_id, subscription_id=subscription_id
                )
                journal.finalize(
                    attempt,
                    status=SyncStatus.COMPLETED,
                    delta_link=delta_link,
                    successful_items=0,
                    failed_items=0,
                )
                return SyncResult(success=True)

            return await self._process_batch(
                session, item_ids, delta_link, batch_size, subscription_id
            )

        return await self._run_step("delta", _work, subscription_id)

    async def fetch_and_store_items(
        self,
        item_ids: Sequence[str],
        delta_link: str,
        batch_size: int,
        *,
        subscription_id: str | None = None,
    ) -> SyncResult:
        """Process exactly the listed ids (at most ``batch_size``) without enumerating."""

        async def _work(session: Session) -> SyncResult:
            return await self._process_batch(
                session, list(item_ids), delta_link, batch_size, subscription_id
            )

        return await self._run_step("continuation", _work, subscription_id)

    async def _run_step(
        self,
        step: str,
        work: Callable[[Session], Awaitable[SyncResult]],
        subscription_id: str | None,
    ) -> SyncResult:
        started = time.perf_counter()
        session = self._new_session()
        try:
            result = await work(session)
            session.commit()
        except (RemoteServiceError, httpx.HTTPError) as exc:
            session.rollback()
            self._record_failure(exc, subscription_id)
            self._log_step(step, started, "failed", SyncResult.failed(str(exc)), error=str(exc))
            return SyncResult.failed(str(exc))
        except Exception as exc:
            session.rollback()
            self._record_failure(exc, subscription_id)
            self._log_step(step, started, "error", SyncResult.failed(str(exc)), error=str(exc))
            raise
        finally:
            session.close()

        self._log_step(step, started, "success", result)
        return result

    async def _pull(self, journal: SyncAttemptRepository, watermark: str) -> tuple[list[str], str]:
        try:
            page = await self._client.pull_delta(self._site_id, self._list_id, watermark)
            return page.item_ids, page.delta_link
        except DeltaResyncRequiredError:
            logger.warning(
                "Delta cursor expired; attempting windowed resync",
                extra=self._context(status="resync"),
            )

        last_processed_at = journal.last_processed_at(self._site_id, self._list_id)
        if last_processed_at is None:
            logger.warning("No previous processing time recorded; establishing a fresh cursor")
            delta_link = await self._client.get_fresh_delta_link(self._site_id, self._list_id)
            return [], delta_link

        window_start = last_processed_at - RESYNC_WINDOW
        logger.info("Resyncing items modified since %s", window_start.isoformat())
        item_ids = await self._client.pull_items_modified_since(
            self._site_id, self._list_id, window_start
        )
        delta_link = await self._client.get_fresh_delta_link(self._site_id, self._list_id)
        return item_ids, delta_link

    async def _process_batch(
        self,
        session: Session,
        item_ids: list[str],
        delta_link: str,
        batch_size: int,
        subscription_id: str | None,
    ) -> SyncResult:
        batch = item_ids[:batch_size]
        remaining = item_ids[batch_size:]

        journal = SyncAttemptRepository(session)
        attempt = journal.start(self._site_id, self._list_id, subscription_id=subscription_id)

        tally = _BatchTally()
        for item_id in batch:
            await self._fetch_and_store_item(session, item_id, attempt.id, tally)

        # The cursor is only recorded once no ids remain, so the watermark
        # never moves past items that were not processed yet.
        journal.finalize(
            attempt,
            status=SyncStatus.PROCESSING if remaining else SyncStatus.COMPLETED,
            delta_link=None if remaining else delta_link,
            successful_items=tally.successful,
            failed_items=tally.failed,
            last_error=tally.last_error,
        )
        record_items("loaded", tally.successful)
        record_items("failed", tally.failed)
        record_items("skipped", tally.skipped)

        return SyncResult(
            success=True,
            successful_items=tally.successful,
            failed_items=tally.failed,
            remaining_item_ids=remaining,
            pending_delta_link=delta_link if remaining else None,
        )

    async def _fetch_and_store_item(
        self,
        session: Session,
        item_id: str,
        attempt_id: int,
        tally: _BatchTally,
    ) -> None:
        list_item = await self._client.get_list_item(self._site_id, self._list_id, item_id)
        if list_item is None:
            logger.info("Skipping %s: item no longer exists", item_id)
            tally.skipped += 1
            return

        fields = list_item.get("fields") or {}
        if PROCESS_FLAG_FIELD in fields:
            flag = fields.get(PROCESS_FLAG_FIELD)
            if str(flag or "").strip().lower() != "yes":
                logger.info("Skipping %s: %s is %r", item_id, PROCESS_FLAG_FIELD, flag)
                tally.skipped += 1
                return

        drive_item = await self._client.get_drive_item(self._site_id, self._list_id, item_id)
        if drive_item is None:
            logger.info("Skipping %s: no drive item", item_id)
            tally.skipped += 1
            return
        if drive_item.parent_path is None:
            logger.warning("Drive item %s has no parent path", drive_item.id)
            tally.skipped += 1
            return
        if canonical_path(drive_item.parent_path) != self._watched_path:
            logger.info("Skipping item outside watched folder: %s", drive_item.parent_path)
            tally.skipped += 1
            return
        if not is_spreadsheet(drive_item.name):
            logger.info("Skipping non-spreadsheet file: %s", drive_item.name)
            tally.skipped += 1
            return
        if not drive_item.drive_id:
            raise RemoteServiceError(f"Drive item {drive_item.id} carries no drive id")

        content = await self._client.download(drive_item.drive_id, drive_item.id)
        digest = compute_digest(content)

        artifacts = ArtifactRepository(session)
        existing = artifacts.find_by_content(digest)
        if existing is not None:
            if existing.is_processed:
                logger.info(
                    "Duplicate content for %s (sha256=%s, %d bytes); skipping",
                    drive_item.name,
                    digest.sha256,
                    digest.size,
                )
                record_deduplicated_artifact()
                return
            # A failed earlier attempt: drop it and its rows before reloading.
            artifacts.delete(existing)

        record_data = ArtifactRecordCreate(
            digest=digest,
            file_name=drive_item.name,
            source_item_id=item_id,
            sync_attempt_id=attempt_id,
        )

        try:
            tables = await self._parser(content)
        except ParseError as exc:
            logger.error("Parser error for %s: %s", drive_item.name, exc)
            record = artifacts.create(record_data)
            artifacts.mark_failed(record, str(exc))
            tally.failed += 1
            tally.last_error = str(exc)
            return

        record = artifacts.create(record_data)
        summary = self._loader.load(session, tables, artifact_id=record.id)
        artifacts.mark_processed(record, summary.total_rows)
        tally.successful += 1
        logger.info("Processed %s (%d rows)", drive_item.name, summary.total_rows)

    def _record_failure(self, exc: Exception, subscription_id: str | None) -> None:
        try:
            persist_sync_attempt(
                SyncAttemptCreate(
                    site_id=self._site_id,
                    list_id=self._list_id,
                    status=SyncStatus.FAILED,
                    subscription_id=subscription_id,
                    last_error=f"{exc.__class__.__name__}: {exc}",
                ),
                session_factory=self._session_factory or get_session_factory(),
            )
        except Exception:
            # The step's own error is what callers act on.
            logger.exception("Unable to record failed sync attempt", extra=self._context())

    def _context(self, **extra: str) -> dict[str, str]:
        return {"site_id": self._site_id, "list_id": self._list_id, **extra}

    def _log_step(
        self,
        step: str,
        started: float,
        status: str,
        result: SyncResult,
        **extra: str,
    ) -> None:
        log_sync_step(
            logger,
            site_id=self._site_id,
            list_id=self._list_id,
            step=step,
            duration_ms=int((time.perf_counter() - started) * 1000),
            status=status,
            successful_items=result.successful_items,
            failed_items=result.failed_items,
            **extra,
        )

"""Repository helpers for persistence models."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..utils.config import BOOTSTRAP_CURSOR
from ..utils.hashing import ContentDigest
from .artifact import STATUS_FAILED, STATUS_PROCESSED, ArtifactRecord
from .base import get_session
from .sync_attempt import SyncAttempt, SyncStatus


@dataclass(slots=True)
class SyncAttemptCreate:
    """Value object capturing a fully finalized sync attempt."""

    site_id: str
    list_id: str
    status: SyncStatus
    delta_link: str | None = None
    subscription_id: str | None = None
    successful_items: int = 0
    failed_items: int = 0
    last_error: str | None = None


@dataclass(slots=True)
class ArtifactRecordCreate:
    """Value object for a freshly downloaded artifact."""

    digest: ContentDigest
    file_name: str | None = None
    source_item_id: str | None = None
    sync_attempt_id: int | None = None


class SyncAttemptRepository:
    """Data access helpers for :class:`SyncAttempt`."""

    def __init__(self, session: Session):
        self._session = session

    def current_watermark(self, site_id: str, list_id: str) -> str:
        """Return the effective delta cursor for a (site, list) pair.

        The newest attempt carrying a cursor wins; ties on ``created_at`` go to
        the highest id. Without any such attempt the bootstrap cursor is
        returned.
        """

        stmt = (
            select(SyncAttempt.delta_link)
            .where(
                SyncAttempt.site_id == site_id,
                SyncAttempt.list_id == list_id,
                SyncAttempt.delta_link.is_not(None),
            )
            .order_by(SyncAttempt.created_at.desc(), SyncAttempt.id.desc())
            .limit(1)
        )
        delta_link = self._session.scalars(stmt).first()
        return delta_link or BOOTSTRAP_CURSOR

    def last_processed_at(self, site_id: str, list_id: str) -> datetime | None:
        stmt = (
            select(SyncAttempt.last_processed_at)
            .where(
                SyncAttempt.site_id == site_id,
                SyncAttempt.list_id == list_id,
                SyncAttempt.last_processed_at.is_not(None),
            )
            .order_by(SyncAttempt.last_processed_at.desc())
            .limit(1)
        )
        value = self._session.scalars(stmt).first()
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def start(
        self,
        site_id: str,
        list_id: str,
        *,
        subscription_id: str | None = None,
    ) -> SyncAttempt:
        """Insert an in-progress attempt inside the caller's transaction."""

        attempt = SyncAttempt(
            site_id=site_id,
            list_id=list_id,
            subscription_id=subscription_id,
            status=SyncStatus.PROCESSING,
        )
        self._session.add(attempt)
        self._session.flush()
        return attempt

    def finalize(
        self,
        attempt: SyncAttempt,
        *,
        status: SyncStatus,
        delta_link: str | None,
        successful_items: int,
        failed_items: int,
        last_error: str | None = None,
    ) -> SyncAttempt:
        """Close an attempt started in the same transaction."""

        now = datetime.now(timezone.utc)
        attempt.status = status
        attempt.delta_link = delta_link
        attempt.successful_items = successful_items
        attempt.failed_items = failed_items
        attempt.last_error = last_error
        attempt.last_processed_at = now
        attempt.updated_at = now
        self._session.flush()
        return attempt

    def create(self, record_data: SyncAttemptCreate) -> SyncAttempt:
        """Persist an attempt whose outcome is already known."""

        now = datetime.now(timezone.utc)
        attempt = SyncAttempt(
            site_id=record_data.site_id,
            list_id=record_data.list_id,
            status=record_data.status,
            delta_link=record_data.delta_link,
            subscription_id=record_data.subscription_id,
            successful_items=record_data.successful_items,
            failed_items=record_data.failed_items,
            last_error=record_data.last_error,
            last_processed_at=now,
        )
        self._session.add(attempt)
        self._session.flush()
        return attempt

    def recent(self, site_id: str, list_id: str, *, limit: int = 20) -> list[SyncAttempt]:
        """Return the newest attempts for a pair, newest first."""

        stmt = (
            select(SyncAttempt)
            .where(SyncAttempt.site_id == site_id, SyncAttempt.list_id == list_id)
            .order_by(SyncAttempt.created_at.desc(), SyncAttempt.id.desc())
            .limit(limit)
        )
        return list(self._session.scalars(stmt))


class ArtifactRepository:
    """Data access helpers for :class:`ArtifactRecord`."""

    def __init__(self, session: Session):
        self._session = session

    def find_by_content(self, digest: ContentDigest) -> ArtifactRecord | None:
        stmt = select(ArtifactRecord).where(
            ArtifactRecord.content_hash == digest.sha256,
            ArtifactRecord.content_size == digest.size,
        )
        return self._session.scalars(stmt).first()

    def create(self, record_data: ArtifactRecordCreate) -> ArtifactRecord:
        record = ArtifactRecord(
            content_hash=record_data.digest.sha256,
            content_size=record_data.digest.size,
            file_name=record_data.file_name,
            source_item_id=record_data.source_item_id,
            sync_attempt_id=record_data.sync_attempt_id,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def mark_processed(self, record: ArtifactRecord, record_count: int) -> ArtifactRecord:
        record.status = STATUS_PROCESSED
        record.record_count = record_count
        record.error_message = None
        record.processed_at = datetime.now(timezone.utc)
        self._session.flush()
        return record

    def mark_failed(self, record: ArtifactRecord, error_message: str) -> ArtifactRecord:
        record.status = STATUS_FAILED
        record.error_message = error_message
        self._session.flush()
        return record

    def delete(self, record: ArtifactRecord) -> None:
        """Remove a record; the store cascades the delete to its derived rows."""

        self._session.delete(record)
        self._session.flush()


def persist_sync_attempt(
    record_data: SyncAttemptCreate,
    session_factory: Callable[[], Session] | None = None,
) -> SyncAttempt:
    """Record an attempt in its own transaction, independent of any failed step."""

    factory = session_factory or get_session
    session = factory()
    try:
        attempt = SyncAttemptRepository(session).create(record_data)
        session.commit()
        return attempt
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

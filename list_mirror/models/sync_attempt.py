"""Append-only journal of synchronization steps."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import RAW_SCHEMA, Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncStatus(str, enum.Enum):
    """Lifecycle state of a recorded sync attempt."""

    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class SyncAttempt(Base):
    """One orchestration step against a (site, list) pair.

    Rows are inserted and finalized inside a single transaction and never
    updated afterwards. The effective watermark of a pair is derived from the
    newest row carrying a ``delta_link``.
    """

    __tablename__ = "sync_attempts"
    __table_args__ = (
        Index("ix_sync_attempts_site_list_created", "site_id", "list_id", "created_at"),
        {"schema": RAW_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[str] = mapped_column(String(255), nullable=False)
    list_id: Mapped[str] = mapped_column(String(255), nullable=False)
    delta_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[SyncStatus] = mapped_column(
        Enum(SyncStatus, name="sync_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SyncStatus.PENDING,
    )
    successful_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )
    last_processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<SyncAttempt id={self.id} site={self.site_id} list={self.list_id} "
            f"status={self.status.value if self.status else None}>"
        )

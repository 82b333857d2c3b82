"""SQLAlchemy model for downloaded artifacts and their dedup key."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import RAW_SCHEMA, Base

STATUS_PROCESSING = "processing"
STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"


class ArtifactRecord(Base):
    """Content-addressed record of one ingested spreadsheet."""

    __tablename__ = "artifact_records"
    __table_args__ = (
        UniqueConstraint("content_hash", "content_size", name="uq_artifact_content"),
        {"schema": RAW_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    content_size: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    source_item_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=STATUS_PROCESSING, index=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sync_attempt_id: Mapped[int | None] = mapped_column(
        ForeignKey(f"{RAW_SCHEMA}.sync_attempts.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_processed(self) -> bool:
        return self.status == STATUS_PROCESSED

    def __repr__(self) -> str:
        return (
            f"<ArtifactRecord id={self.id} hash={self.content_hash[:12]} "
            f"size={self.content_size} status={self.status}>"
        )

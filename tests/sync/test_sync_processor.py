"""Tests for the bounded sync step against a fake change feed."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy import func, select

from list_mirror.exceptions import (
    ConfigurationError,
    DeltaResyncRequiredError,
    RemoteServiceError,
    SchemaMatchError,
)
from list_mirror.loading import SchemaRouter, TabularLoader
from list_mirror.models.artifact import ArtifactRecord
from list_mirror.models.base import session_scope
from list_mirror.models.contracts import ContractRenewal
from list_mirror.models.repository import (
    SyncAttemptCreate,
    SyncAttemptRepository,
    persist_sync_attempt,
)
from list_mirror.models.sync_attempt import SyncStatus
from list_mirror.remote.client import ConnectionTestResult, DeltaPage, DriveItem
from list_mirror.sync.processor import SyncProcessor, canonical_path

SITE = "site-1"
LIST = "list-1"
WATCHED = "/Shared Documents/Contracts"
WATCHED_PARENT = "/drives/drive-1/root:/Shared%20Documents/Contracts"


class FakeChangeFeed:
    """In-memory stand-in for the Graph client."""

    def __init__(self) -> None:
        self.connection = ConnectionTestResult.success()
        self.deltas: dict[str, DeltaPage | Exception] = {}
        self.items: dict[str, dict[str, Any]] = {}
        self.modified_since: list[str] = []
        self.since: datetime | None = None
        self.fresh_link = "fresh-cursor"
        self.downloads: list[str] = []

    def add_file(
        self,
        item_id: str,
        content: bytes,
        *,
        name: str = "contracts.xlsx",
        parent_path: str | None = WATCHED_PARENT,
        flag: str | None = "Yes",
    ) -> None:
        fields = {} if flag is None else {"ProcessFlag": flag}
        self.items[item_id] = {
            "fields": fields,
            "drive": DriveItem(id=f"d-{item_id}", name=name, drive_id="drive-1", parent_path=parent_path),
            "content": content,
        }

    async def test_connection(self, site_id: str) -> ConnectionTestResult:
        return self.connection

    async def pull_delta(self, site_id: str, list_id: str, cursor: str) -> DeltaPage:
        outcome = self.deltas[cursor]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def get_fresh_delta_link(self, site_id: str, list_id: str) -> str:
        return self.fresh_link

    async def pull_items_modified_since(self, site_id: str, list_id: str, since: datetime) -> list[str]:
        self.since = since
        return list(self.modified_since)

    async def get_list_item(self, site_id: str, list_id: str, item_id: str) -> dict[str, Any] | None:
        item = self.items.get(item_id)
        return None if item is None else {"id": item_id, "fields": item["fields"]}

    async def get_drive_item(self, site_id: str, list_id: str, item_id: str) -> DriveItem | None:
        item = self.items.get(item_id)
        return None if item is None else item["drive"]

    async def download(self, drive_id: str, item_id: str) -> bytes:
        self.downloads.append(item_id)
        return self.items[item_id.removeprefix("d-")]["content"]


@pytest.fixture
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@pytest.fixture
def processor(feed: FakeChangeFeed, schema_registry) -> SyncProcessor:
    return SyncProcessor(
        client=feed,  # type: ignore[arg-type]
        loader=TabularLoader(SchemaRouter(schema_registry)),
        site_id=SITE,
        list_id=LIST,
        watched_path=WATCHED,
    )


@pytest.fixture
def renewal_workbook(workbook_bytes, renewal_row):
    def _build(contract_id: str) -> bytes:
        return workbook_bytes({"Renewals": [dict(renewal_row, **{"Contract ID": contract_id})]})

    return _build


def _seed_watermark(delta_link: str) -> None:
    persist_sync_attempt(
        SyncAttemptCreate(site_id=SITE, list_id=LIST, status=SyncStatus.COMPLETED, delta_link=delta_link)
    )


def _watermark() -> str:
    with session_scope() as session:
        return SyncAttemptRepository(session).current_watermark(SITE, LIST)


def _count(model) -> int:  # type: ignore[no-untyped-def]
    with session_scope() as session:
        return session.scalar(select(func.count()).select_from(model))


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("/drives/abc/root:/Shared%20Documents/Contracts/", "/shared documents/contracts"),
        ("/Shared Documents/Contracts", "/shared documents/contracts"),
        ("\\Shared Documents\\Contracts", "/shared documents/contracts"),
        ("/drive/root:", "/drive/root:"),
    ],
)
def test_canonical_path(raw: str, expected: str) -> None:
    assert canonical_path(raw) == expected


@pytest.mark.parametrize("field", ["site_id", "list_id", "watched_path"])
def test_processor_rejects_blank_configuration(feed, schema_registry, field: str) -> None:
    kwargs = {"site_id": SITE, "list_id": LIST, "watched_path": WATCHED, field: "  "}

    with pytest.raises(ConfigurationError):
        SyncProcessor(client=feed, loader=TabularLoader(SchemaRouter(schema_registry)), **kwargs)


@pytest.mark.asyncio
async def test_ensure_connection_reports_failure(processor: SyncProcessor, feed: FakeChangeFeed) -> None:
    assert await processor.ensure_connection() is True

    feed.connection = ConnectionTestResult.failure("denied", "Forbidden")

    assert await processor.ensure_connection() is False


@pytest.mark.asyncio
async def test_bootstrap_then_incremental_sync(
    processor: SyncProcessor, feed: FakeChangeFeed, renewal_workbook
) -> None:
    feed.deltas["latest"] = DeltaPage(delta_link="C0")

    first = await processor.fetch_and_store_delta(200, subscription_id="sub-1")

    assert first.success and not first.has_more_work
    assert _watermark() == "C0"
    with session_scope() as session:
        bootstrap = SyncAttemptRepository(session).recent(SITE, LIST, limit=1)[0]
        assert bootstrap.status is SyncStatus.COMPLETED
        assert bootstrap.successful_items == 0
        assert bootstrap.subscription_id == "sub-1"

    for index in (1, 2, 3):
        feed.add_file(f"i{index}", renewal_workbook(f"C-{index}"))
    feed.deltas["C0"] = DeltaPage(delta_link="C1", item_ids=["i1", "i2", "i3"])

    second = await processor.fetch_and_store_delta(200)

    assert second.success
    assert second.successful_items == 3
    assert second.failed_items == 0
    assert _watermark() == "C1"
    assert _count(ArtifactRecord) == 3
    assert _count(ContractRenewal) == 3


@pytest.mark.asyncio
async def test_duplicate_content_is_loaded_once(
    processor: SyncProcessor, feed: FakeChangeFeed, renewal_workbook
) -> None:
    _seed_watermark("C0")
    content = renewal_workbook("C-1")
    feed.add_file("i1", content)
    feed.add_file("i2", content, name="copy of contracts.xlsx")
    feed.deltas["C0"] = DeltaPage(delta_link="C1", item_ids=["i1", "i2"])

    result = await processor.fetch_and_store_delta(200)

    assert result.successful_items == 1
    assert feed.downloads == ["d-i1", "d-i2"]
    assert _count(ArtifactRecord) == 1
    assert _count(ContractRenewal) == 1


@pytest.mark.asyncio
async def test_ineligible_items_are_skipped(
    processor: SyncProcessor, feed: FakeChangeFeed, renewal_workbook
) -> None:
    _seed_watermark("C0")
    feed.add_file("flag-no", renewal_workbook("C-1"), flag="No")
    feed.add_file("elsewhere", renewal_workbook("C-2"), parent_path="/drives/drive-1/root:/Archive")
    feed.add_file("no-parent", renewal_workbook("C-3"), parent_path=None)
    feed.add_file("notes", b"plain text", name="notes.txt")
    feed.deltas["C0"] = DeltaPage(
        delta_link="C1", item_ids=["flag-no", "elsewhere", "no-parent", "notes", "deleted"]
    )

    result = await processor.fetch_and_store_delta(200)

    assert result.success
    assert (result.successful_items, result.failed_items) == (0, 0)
    assert feed.downloads == []
    assert _watermark() == "C1"


@pytest.mark.asyncio
async def test_items_without_process_flag_are_eligible(
    processor: SyncProcessor, feed: FakeChangeFeed, renewal_workbook
) -> None:
    _seed_watermark("C0")
    feed.add_file("i1", renewal_workbook("C-1"), flag=None)
    feed.deltas["C0"] = DeltaPage(delta_link="C1", item_ids=["i1"])

    result = await processor.fetch_and_store_delta(200)

    assert result.successful_items == 1


@pytest.mark.asyncio
async def test_unreadable_workbook_counts_as_failed(processor: SyncProcessor, feed: FakeChangeFeed) -> None:
    _seed_watermark("C0")
    feed.add_file("i1", b"not really a workbook")
    feed.deltas["C0"] = DeltaPage(delta_link="C1", item_ids=["i1"])

    result = await processor.fetch_and_store_delta(200)

    assert result.success
    assert (result.successful_items, result.failed_items) == (0, 1)
    with session_scope() as session:
        [record] = session.scalars(select(ArtifactRecord)).all()
        assert record.status == "failed"
        latest = SyncAttemptRepository(session).recent(SITE, LIST, limit=1)[0]
        assert latest.failed_items == 1
        assert latest.last_error


@pytest.mark.asyncio
async def test_batch_remainder_holds_watermark_until_continuation(
    processor: SyncProcessor, feed: FakeChangeFeed, renewal_workbook
) -> None:
    _seed_watermark("C0")
    for index in range(3):
        feed.add_file(f"i{index}", renewal_workbook(f"C-{index}"))
    feed.deltas["C0"] = DeltaPage(delta_link="C1", item_ids=["i0", "i1", "i2"])

    first = await processor.fetch_and_store_delta(2)

    assert first.successful_items == 2
    assert first.remaining_item_ids == ["i2"]
    assert first.pending_delta_link == "C1"
    assert _watermark() == "C0"
    with session_scope() as session:
        latest = SyncAttemptRepository(session).recent(SITE, LIST, limit=1)[0]
        assert latest.status is SyncStatus.PROCESSING
        assert latest.delta_link is None

    second = await processor.fetch_and_store_items(first.remaining_item_ids, "C1", 2)

    assert second.successful_items == 1
    assert not second.has_more_work
    assert second.pending_delta_link is None
    assert _watermark() == "C1"
    assert _count(ContractRenewal) == 3


@pytest.mark.asyncio
async def test_remote_failure_records_failed_attempt(processor: SyncProcessor, feed: FakeChangeFeed) -> None:
    _seed_watermark("C0")
    feed.deltas["C0"] = RemoteServiceError("service unavailable", status_code=503)

    result = await processor.fetch_and_store_delta(200, subscription_id="sub-1")

    assert not result.success
    assert "service unavailable" in (result.error_reason or "")
    assert _watermark() == "C0"
    with session_scope() as session:
        latest = SyncAttemptRepository(session).recent(SITE, LIST, limit=1)[0]
        assert latest.status is SyncStatus.FAILED
        assert latest.subscription_id == "sub-1"
        assert latest.delta_link is None


@pytest.mark.asyncio
async def test_schema_mismatch_rolls_back_and_propagates(
    processor: SyncProcessor, feed: FakeChangeFeed, workbook_bytes, renewal_workbook
) -> None:
    _seed_watermark("C0")
    feed.add_file("good", renewal_workbook("C-1"))
    feed.add_file("bad", workbook_bytes({"Mystery": [{"Unknown": 1}]}))
    feed.deltas["C0"] = DeltaPage(delta_link="C1", item_ids=["good", "bad"])

    with pytest.raises(SchemaMatchError):
        await processor.fetch_and_store_delta(200)

    assert _watermark() == "C0"
    assert _count(ArtifactRecord) == 0
    assert _count(ContractRenewal) == 0
    with session_scope() as session:
        latest = SyncAttemptRepository(session).recent(SITE, LIST, limit=1)[0]
        assert latest.status is SyncStatus.FAILED
        assert "SchemaMatchError" in (latest.last_error or "")


@pytest.mark.asyncio
async def test_expired_cursor_resyncs_recent_window(
    processor: SyncProcessor, feed: FakeChangeFeed, renewal_workbook
) -> None:
    _seed_watermark("C0")
    feed.deltas["C0"] = DeltaResyncRequiredError("gone", status_code=410)
    feed.add_file("i1", renewal_workbook("C-1"))
    feed.modified_since = ["i1"]

    result = await processor.fetch_and_store_delta(200)

    assert result.successful_items == 1
    assert feed.since is not None
    assert feed.since <= datetime.now(timezone.utc) - timedelta(minutes=9)
    assert _watermark() == "fresh-cursor"


@pytest.mark.asyncio
async def test_expired_cursor_without_history_starts_fresh(
    processor: SyncProcessor, feed: FakeChangeFeed
) -> None:
    feed.deltas["latest"] = DeltaResyncRequiredError("gone", status_code=410)

    result = await processor.fetch_and_store_delta(200)

    assert result.success
    assert feed.since is None
    assert _watermark() == "fresh-cursor"

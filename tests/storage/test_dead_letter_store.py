"""Tests for the dead-letter archive backends."""

from __future__ import annotations

import io
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

from list_mirror.exceptions import ConfigurationError, DeadLetterError
from list_mirror.storage import dead_letter
from list_mirror.storage.dead_letter import (
    CONNECTION_FAILED_PREFIX,
    PROCESSING_ERROR_PREFIX,
    FileSystemDeadLetterStore,
    S3DeadLetterStore,
    build_dead_letter_store,
    build_key,
)
from list_mirror.utils.config import get_settings


def test_build_key_uses_millisecond_utc_timestamp() -> None:
    moment = datetime(2024, 5, 1, 12, 30, 45, 123456, tzinfo=timezone.utc)

    assert build_key(CONNECTION_FAILED_PREFIX, moment) == "connection-failed-20240501123045123.json"


def test_filesystem_store_round_trip(tmp_path: Path) -> None:
    store = FileSystemDeadLetterStore(tmp_path / "dead")

    key = store.archive(PROCESSING_ERROR_PREFIX, '{"value": []}')

    assert key.startswith(PROCESSING_ERROR_PREFIX)
    assert store.list_keys() == [key]
    assert store.list_keys(CONNECTION_FAILED_PREFIX) == []
    assert store.read(key) == '{"value": []}'

    store.delete(key)
    assert store.list_keys() == []


def test_filesystem_store_never_overwrites(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(dead_letter, "build_key", lambda prefix: f"{prefix}20240501000000000.json")
    store = FileSystemDeadLetterStore(tmp_path)

    first = store.archive(CONNECTION_FAILED_PREFIX, "one")
    second = store.archive(CONNECTION_FAILED_PREFIX, "two")

    assert first == "connection-failed-20240501000000000.json"
    assert second == "connection-failed-20240501000000000-1.json"
    assert store.read(first) == "one"
    assert store.read(second) == "two"


def test_filesystem_store_reports_missing_key(tmp_path: Path) -> None:
    store = FileSystemDeadLetterStore(tmp_path)

    assert store.list_keys() == []
    with pytest.raises(DeadLetterError, match="not found"):
        store.read("processing-error-missing.json")


class FakeS3Client:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail = False

    def _check(self, operation: str) -> None:
        if self.fail:
            raise ClientError({"Error": {"Code": "500", "Message": "down"}}, operation)

    def put_object(self, *, Bucket: str, Key: str, Body: bytes, ContentType: str) -> None:
        self._check("PutObject")
        self.objects[Key] = Body

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self._check("GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def delete_object(self, *, Bucket: str, Key: str) -> None:
        self._check("DeleteObject")
        self.objects.pop(Key, None)

    def get_paginator(self, name: str) -> FakeS3Client:
        assert name == "list_objects_v2"
        return self

    def paginate(self, *, Bucket: str, Prefix: str):  # type: ignore[no-untyped-def]
        self._check("ListObjectsV2")
        keys = sorted(key for key in self.objects if key.startswith(Prefix))
        yield {"Contents": [{"Key": key} for key in keys[:1]]}
        yield {"Contents": [{"Key": key} for key in keys[1:]]}


def test_s3_store_round_trip() -> None:
    client = FakeS3Client()
    store = S3DeadLetterStore("bucket", prefix="mirror/", client=client)

    key = store.archive(CONNECTION_FAILED_PREFIX, "payload")
    other = store.archive(PROCESSING_ERROR_PREFIX, "other")

    assert f"mirror/{key}" in client.objects
    assert store.list_keys() == sorted([key, other])
    assert store.list_keys(CONNECTION_FAILED_PREFIX) == [key]
    assert store.read(key) == "payload"

    store.delete(key)
    assert store.list_keys() == [other]


def test_s3_store_wraps_client_errors() -> None:
    client = FakeS3Client()
    client.fail = True
    store = S3DeadLetterStore("bucket", client=client)

    with pytest.raises(DeadLetterError, match="archive"):
        store.archive(CONNECTION_FAILED_PREFIX, "payload")
    with pytest.raises(DeadLetterError):
        store.list_keys()


def test_build_store_from_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MIRROR_DEAD_LETTER__DIRECTORY", str(tmp_path))

    store = build_dead_letter_store(get_settings(reload=True))

    assert isinstance(store, FileSystemDeadLetterStore)


def test_build_store_rejects_unknown_backend() -> None:
    settings = get_settings(reload=True).model_copy(deep=True)
    settings.dead_letter.backend = "ftp"  # type: ignore[assignment]

    with pytest.raises(ConfigurationError, match="ftp"):
        build_dead_letter_store(settings)

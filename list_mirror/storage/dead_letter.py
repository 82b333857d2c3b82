"""Archive for queue messages that could not be processed."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from boto3.session import Session
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import ConfigurationError, DeadLetterError
from ..utils.config import GlobalSettings, get_settings
from ..utils.logging import setup_logger

CONNECTION_FAILED_PREFIX = "connection-failed-"
PROCESSING_ERROR_PREFIX = "processing-error-"

logger = setup_logger(__name__, context={"component": "DeadLetterStore"})


def build_key(prefix: str, now: datetime | None = None) -> str:
    """Return ``<prefix><YYYYmmddHHMMSSfff>.json`` for a UTC timestamp."""

    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return f"{prefix}{moment.strftime('%Y%m%d%H%M%S')}{moment.microsecond // 1000:03d}.json"


class DeadLetterStore(ABC):
    """One object per archived message; the value is the original text."""

    @abstractmethod
    def archive(self, prefix: str, message: str) -> str:
        """Store ``message`` and return the key it was written under."""

    @abstractmethod
    def list_keys(self, prefix: str = "") -> list[str]:
        ...

    @abstractmethod
    def read(self, key: str) -> str:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class FileSystemDeadLetterStore(DeadLetterStore):
    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def archive(self, prefix: str, message: str) -> str:
        self._directory.mkdir(parents=True, exist_ok=True)
        key = build_key(prefix)
        stem = key.removesuffix(".json")
        attempt = 0
        while True:
            path = self._directory / key
            try:
                with open(path, "x", encoding="utf-8") as handle:
                    handle.write(message)
                break
            except FileExistsError:
                attempt += 1
                key = f"{stem}-{attempt}.json"
        logger.warning("Archived message as %s", key, extra={"status": "archived"})
        return key

    def list_keys(self, prefix: str = "") -> list[str]:
        if not self._directory.exists():
            return []
        return sorted(
            path.name
            for path in self._directory.iterdir()
            if path.is_file() and path.name.startswith(prefix) and path.suffix == ".json"
        )

    def read(self, key: str) -> str:
        path = self._directory / Path(key).name
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise DeadLetterError(f"Dead letter '{key}' not found") from exc

    def delete(self, key: str) -> None:
        (self._directory / Path(key).name).unlink(missing_ok=True)


class S3DeadLetterStore(DeadLetterStore):
    def __init__(self, bucket: str, *, prefix: str = "", client: Any = None) -> None:
        self._bucket = bucket
        self._prefix = prefix
        self._client = client

    @classmethod
    def from_settings(cls, settings: GlobalSettings) -> S3DeadLetterStore:
        config = settings.dead_letter
        session_kwargs: dict[str, Any] = {}
        if config.region:
            session_kwargs["region_name"] = config.region
        client = Session(**session_kwargs).client("s3", endpoint_url=config.endpoint_url)
        return cls(config.bucket or "", prefix=config.prefix, client=client)

    def _object_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def archive(self, prefix: str, message: str) -> str:
        key = build_key(prefix)
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=self._object_key(key),
                Body=message.encode("utf-8"),
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as exc:
            raise DeadLetterError(f"Unable to archive message to s3://{self._bucket}: {exc}") from exc
        logger.warning(
            "Archived message as s3://%s/%s",
            self._bucket,
            self._object_key(key),
            extra={"status": "archived"},
        )
        return key

    def list_keys(self, prefix: str = "") -> list[str]:
        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self._bucket, Prefix=self._object_key(prefix)):
                for entry in page.get("Contents", []):
                    keys.append(entry["Key"][len(self._prefix):])
        except (BotoCoreError, ClientError) as exc:
            raise DeadLetterError(f"Unable to list s3://{self._bucket}: {exc}") from exc
        return sorted(keys)

    def read(self, key: str) -> str:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=self._object_key(key))
        except (BotoCoreError, ClientError) as exc:
            raise DeadLetterError(f"Unable to read dead letter '{key}': {exc}") from exc
        return response["Body"].read().decode("utf-8")

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=self._object_key(key))
        except (BotoCoreError, ClientError) as exc:
            raise DeadLetterError(f"Unable to delete dead letter '{key}': {exc}") from exc


def build_dead_letter_store(settings: GlobalSettings | None = None) -> DeadLetterStore:
    """Return the archive backend selected in settings."""

    settings = settings or get_settings()
    backend = settings.dead_letter.backend
    if backend == "filesystem":
        return FileSystemDeadLetterStore(settings.dead_letter.directory)
    if backend == "s3":
        return S3DeadLetterStore.from_settings(settings)
    raise ConfigurationError(f"Unsupported dead-letter backend: {backend}")

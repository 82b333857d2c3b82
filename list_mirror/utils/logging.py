"""Structured logging for the sync service.

Every record carries the same pipe-separated context columns so API, worker
and CLI output can be grepped by site, list or message kind.
"""

from __future__ import annotations

import logging
import sys
from threading import Lock
from typing import Any, Final

from .config import get_settings

CONTEXT_FIELDS: Final[tuple[str, ...]] = (
    "component",
    "site_id",
    "list_id",
    "kind",
    "correlation_id",
    "status",
    "duration_ms",
)

LOG_FORMAT: Final[str] = (
    "%(asctime)s | %(levelname)s | %(name)s | "
    + " | ".join(f"{field}=%({field})s" for field in CONTEXT_FIELDS)
    + " | %(message)s"
)

_configured = False
_configure_lock: Final = Lock()


class ContextualFormatter(logging.Formatter):
    """Fill context columns the caller did not supply with ``-``."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, "-")
        return super().format(record)


def configure_logging(level: str | None = None, *, force: bool = False) -> None:
    """Install the contextual formatter on the root logger.

    Runs once per process unless ``force`` is set; the level defaults to
    ``MIRROR_LOG_LEVEL``.
    """

    global _configured
    with _configure_lock:
        if _configured and not force:
            return

        resolved = getattr(logging, (level or get_settings().log_level).upper(), logging.INFO)
        formatter = ContextualFormatter(LOG_FORMAT)

        root = logging.getLogger()
        root.setLevel(resolved)
        if not root.handlers:
            root.addHandler(logging.StreamHandler(sys.stdout))
        for handler in root.handlers:
            handler.setLevel(resolved)
            handler.setFormatter(formatter)

        _configured = True


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Merge per-call ``extra`` over the adapter's bound context."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:  # type: ignore[override]
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def setup_logger(
    name: str,
    *,
    level: str | None = None,
    context: dict[str, Any] | None = None,
) -> logging.LoggerAdapter:
    """Return a module logger bound to default context columns.

    Args:
        name: Logger name, normally ``__name__``.
        level: Optional level override for this logger only.
        context: Columns attached to every entry, e.g. ``{"component": "SyncProcessor"}``.
    """

    configure_logging()
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO) if level else logging.NOTSET)
    return StructuredLoggerAdapter(logger, dict(context or {}))


def log_sync_step(
    logger: logging.Logger | logging.LoggerAdapter,
    *,
    site_id: str,
    list_id: str,
    step: str,
    duration_ms: int,
    status: str,
    successful_items: int = 0,
    failed_items: int = 0,
    **extra_context: Any,
) -> None:
    """
    Write the one-line summary of a synchronization step.

    Args:
        logger: Logger instance
        site_id: Remote site identifier
        list_id: Remote list identifier
        step: Step name (delta, continuation, ...)
        duration_ms: Step duration in milliseconds
        status: Outcome (success, failed, error)
        successful_items: Items loaded during the step
        failed_items: Items that could not be loaded
        **extra_context: Additional context appended to the message
    """
    columns: dict[str, Any] = {
        "site_id": site_id,
        "list_id": list_id,
        "kind": step,
        "duration_ms": duration_ms,
        "status": status,
        "correlation_id": extra_context.pop("correlation_id", None) or "-",
    }
    message = f"Sync step {status}: successful={successful_items} failed={failed_items}"
    if extra_context:
        message = f"{message} | context={extra_context}"

    if status == "success":
        logger.info(message, extra=columns)
    else:
        logger.error(message, extra=columns)

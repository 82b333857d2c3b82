"""Structured error reports for failed sync task executions."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..exceptions import (
    ConfigurationError,
    DeadLetterError,
    InputError,
    ListMirrorError,
    ParseError,
    RemoteServiceError,
)

# First match wins, so subclasses precede their bases. Connectivity failures
# are archived for manual resubmission rather than retried; a message that
# could not be archived is retried so it is never dropped.
ERROR_CLASSES: tuple[tuple[type[Exception], str, bool], ...] = (
    (RemoteServiceError, "connectivity", False),
    (InputError, "input", True),
    (ParseError, "parse", True),
    (DeadLetterError, "storage", True),
    (ConfigurationError, "configuration", False),
    (ListMirrorError, "application", False),
)


@dataclass(slots=True)
class TaskErrorReport:
    """What went wrong with one queued message, in loggable form."""

    kind: str
    task_id: str | None
    error_type: str
    message: str
    classification: str
    retryable: bool
    timestamp: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if not self.details:
            payload.pop("details")
        return payload


def classify_exception(exc: Exception) -> tuple[str, bool]:
    """Return ``(classification, retryable)`` for ``exc``."""

    for error_type, classification, retryable in ERROR_CLASSES:
        if isinstance(exc, error_type):
            return classification, retryable
    return "unexpected", False


def build_error_report(
    exc: Exception,
    *,
    kind: str,
    task_id: str | None = None,
    retryable_override: bool | None = None,
    extra_details: dict[str, Any] | None = None,
) -> TaskErrorReport:
    """Describe ``exc`` for the task log; ``retryable_override`` wins over the class default."""

    classification, retryable = classify_exception(exc)
    details: dict[str, Any] = {"exception_module": type(exc).__module__}
    if exc.args:
        details["args"] = [repr(arg) for arg in exc.args]
    if getattr(exc, "status_code", None) is not None:
        details["status_code"] = exc.status_code  # type: ignore[attr-defined]
    details.update(extra_details or {})

    return TaskErrorReport(
        kind=kind,
        task_id=task_id,
        error_type=type(exc).__name__,
        message=str(exc) or type(exc).__name__,
        classification=classification,
        retryable=retryable if retryable_override is None else retryable_override,
        timestamp=datetime.now(timezone.utc).isoformat(),
        details=details,
    )

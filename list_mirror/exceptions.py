"""Custom exceptions for List_Mirror."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:  # pragma: no cover - type checking only
    from list_mirror.tasks.error_handling import TaskErrorReport
    from list_mirror.tasks.policies import QueueRetryPolicy


class ListMirrorError(Exception):
    """Base exception for all List_Mirror errors."""

    pass


class ConfigurationError(ListMirrorError):
    """Raised when configuration is invalid or missing."""

    pass


class RemoteServiceError(ListMirrorError):
    """Raised when the remote list service rejects or fails a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteAuthenticationError(RemoteServiceError):
    """Raised when an access token cannot be acquired for the remote service."""

    pass


class DeltaResyncRequiredError(RemoteServiceError):
    """Raised when the remote service no longer honours a stored delta cursor."""

    pass


class InputError(ListMirrorError):
    """Base class for defects in the data handed to the service."""

    pass


class MessageParseError(InputError):
    """Raised when a queued message cannot be decoded into its declared kind."""

    pass


class SchemaMatchError(InputError):
    """Raised when no registered target matches a table's header set exactly."""

    def __init__(self, source_name: str, headers: Iterable[str]) -> None:
        self.source_name = source_name
        self.headers = sorted(headers)
        super().__init__(
            f"No strict schema match found for table '{source_name}' "
            f"with headers [{', '.join(self.headers)}]"
        )


class UnmappedColumnError(InputError):
    """Raised when a source column has no counterpart in the target mapping."""

    pass


class CoercionError(InputError):
    """Raised when a cell value cannot be converted to its column's declared type."""

    def __init__(self, column: str, value: Any, reason: str) -> None:
        super().__init__(f"Cannot convert {value!r} for column '{column}': {reason}")
        self.column = column
        self.value = value


class IdentifierError(InputError):
    """Raised when a target table identifier is malformed."""

    pass


class ParseError(ListMirrorError):
    """Raised when an artifact cannot be decoded into tables."""

    pass


class DeadLetterError(ListMirrorError):
    """Raised when the dead-letter backend cannot store or fetch a message."""

    pass


class WebhookAuthError(ListMirrorError):
    """Raised when a webhook call presents no valid endpoint key."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class TaskExecutionError(ListMirrorError):
    """Raised when a Celery task execution fails after structured reporting."""

    def __init__(
        self,
        report: TaskErrorReport,
        *,
        original_error: Exception | None = None,
        retry_policy: QueueRetryPolicy | None = None,
    ) -> None:
        super().__init__(report.message)
        self.report = report
        self.original_error = original_error
        self.retry_policy = retry_policy

    def as_dict(self) -> dict[str, Any]:
        """Return a serializable representation of the task error for logging/tests."""

        return {
            "message": self.report.message,
            "error_type": self.report.error_type,
            "classification": self.report.classification,
            "retryable": self.report.retryable,
        }

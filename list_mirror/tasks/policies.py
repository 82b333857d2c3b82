"""Queue-level retry policy for sync task executions."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from ..exceptions import DeadLetterError, InputError, ParseError
from ..utils.config import GlobalSettings

# Defects in the data itself, plus messages the dead-letter store could not
# take; connectivity failures go to the dead-letter store instead.
DEFAULT_RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    InputError,
    ParseError,
    DeadLetterError,
)


@dataclass(frozen=True, slots=True)
class QueueRetryPolicy:
    """Capped exponential backoff: ``backoff * 2**n`` seconds, at most ``max_backoff``."""

    enabled: bool
    max_attempts: int
    backoff_seconds: float
    max_backoff_seconds: float
    retryable_exceptions: tuple[type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be non-negative")
        if min(self.backoff_seconds, self.max_backoff_seconds) <= 0:
            raise ValueError("backoff values must be greater than zero")
        if self.max_backoff_seconds < self.backoff_seconds:
            raise ValueError("max_backoff_seconds must be >= backoff_seconds")

    def attempts_remaining(self, retries_so_far: int) -> int:
        return max(self.max_attempts - retries_so_far, 0) if self.enabled else 0

    def should_retry(self, exc: Exception, retries_so_far: int = 0) -> bool:
        """True when ``exc`` is a retryable type and attempts remain."""

        return self.attempts_remaining(retries_so_far) > 0 and isinstance(
            exc, self.retryable_exceptions
        )

    def next_countdown(self, retry_number: int) -> int:
        """Seconds to wait before zero-based retry ``retry_number``."""

        return int(min(self.backoff_seconds * 2 ** max(retry_number, 0), self.max_backoff_seconds))

    def to_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "max_attempts": self.max_attempts,
            "backoff_seconds": self.backoff_seconds,
            "max_backoff_seconds": self.max_backoff_seconds,
            "retryable_exceptions": [exc.__name__ for exc in self.retryable_exceptions],
        }

    @classmethod
    def from_settings(
        cls,
        settings: GlobalSettings,
        *,
        retryable_exceptions: Sequence[type[Exception]] | None = None,
    ) -> QueueRetryPolicy:
        """Build the policy from ``MIRROR_QUEUE_*``; zero retries disables it."""

        return cls(
            enabled=settings.queue_max_retries > 0,
            max_attempts=settings.queue_max_retries,
            backoff_seconds=settings.queue_retry_backoff_seconds,
            max_backoff_seconds=settings.queue_retry_max_backoff_seconds,
            retryable_exceptions=tuple(retryable_exceptions or DEFAULT_RETRYABLE_EXCEPTIONS),
        )

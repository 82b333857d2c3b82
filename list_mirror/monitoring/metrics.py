"""Prometheus metrics definitions for List_Mirror."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

SYNC_STEPS = Counter(
    "sync_steps_total",
    "Total synchronization steps by message kind and outcome.",
    labelnames=("kind", "outcome"),
)

SYNC_ITEMS = Counter(
    "sync_items_total",
    "Remote items handled during synchronization, by result.",
    labelnames=("result",),
)

ARTIFACTS_DEDUPLICATED = Counter(
    "artifacts_deduplicated_total",
    "Downloaded artifacts skipped because identical content was already loaded.",
)

ROWS_LOADED = Counter(
    "rows_loaded_total",
    "Rows bulk-written into business tables.",
    labelnames=("table",),
)

DEAD_LETTERS = Counter(
    "dead_letters_total",
    "Queue messages archived to the dead-letter store.",
    labelnames=("reason",),
)

CONTINUATIONS_ENQUEUED = Counter(
    "continuations_enqueued_total",
    "Continuation messages enqueued for remaining item ids.",
)

STEP_DURATION = Histogram(
    "sync_step_duration_seconds",
    "Distribution of synchronization step durations in seconds.",
    labelnames=("kind",),
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)


def record_sync_step(kind: str, outcome: str) -> None:
    """Increment the step counter with the supplied labels."""

    SYNC_STEPS.labels(kind=kind, outcome=outcome).inc()


def record_items(result: str, count: int = 1) -> None:
    if count > 0:
        SYNC_ITEMS.labels(result=result).inc(count)


def record_deduplicated_artifact() -> None:
    ARTIFACTS_DEDUPLICATED.inc()


def record_rows_loaded(table: str, count: int) -> None:
    if count > 0:
        ROWS_LOADED.labels(table=table).inc(count)


def record_dead_letter(reason: str) -> None:
    """Increment the dead-letter counter for the archive reason."""

    DEAD_LETTERS.labels(reason=reason).inc()


def record_continuation_enqueued() -> None:
    CONTINUATIONS_ENQUEUED.inc()


def observe_step_duration(kind: str, duration_seconds: float) -> None:
    """Record the step duration in seconds."""

    STEP_DURATION.labels(kind=kind).observe(max(duration_seconds, 0.0))

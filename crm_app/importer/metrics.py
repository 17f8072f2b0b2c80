"""Prometheus metrics helpers for the client importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_row_outcomes = Counter(
    "importer_client_rows_total",
    "Client import rows by final outcome.",
    ["outcome"],
)
_regions_created = Counter(
    "importer_client_regions_created_total",
    "Regions auto-created by client imports.",
)
_runs = Counter(
    "importer_client_runs_total",
    "Client import runs by final status.",
    ["status"],
)
_run_duration = Histogram(
    "importer_client_run_duration_seconds",
    "Wall-clock duration of client import runs in seconds.",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 900),
)


def record_row_outcome(outcome: Literal["created", "updated", "skipped", "errored"], count: int = 1) -> None:
    """Increment the per-outcome row counter."""

    if count:
        _row_outcomes.labels(outcome=outcome).inc(count)


def record_regions_created(count: int) -> None:
    if count:
        _regions_created.inc(count)


def record_run(*, status: str, duration_seconds: float) -> None:
    """Capture the final status and duration of an import run."""

    _runs.labels(status=status).inc()
    _run_duration.observe(duration_seconds)

"""Monitoring helpers."""

from .metrics import (
    ACTIVE_POLLERS,
    BATCH_SNAPSHOTS_DROPPED_TOTAL,
    CORPUS_LINK_ATTEMPTS_TOTAL,
    JOB_TRANSITIONS_TOTAL,
    POLL_FAILURES_TOTAL,
    POLL_TICKS_TOTAL,
    REQUEST_LATENCY,
    start_metrics_server,
)

__all__ = [
    "ACTIVE_POLLERS",
    "BATCH_SNAPSHOTS_DROPPED_TOTAL",
    "CORPUS_LINK_ATTEMPTS_TOTAL",
    "JOB_TRANSITIONS_TOTAL",
    "POLL_FAILURES_TOTAL",
    "POLL_TICKS_TOTAL",
    "REQUEST_LATENCY",
    "start_metrics_server",
]

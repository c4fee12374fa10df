"""Prometheus metrics for the orchestration core."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

POLL_TICKS_TOTAL = Counter("scrape_orchestrator_poll_ticks_total", "Poll calls issued by the progress poller")
POLL_FAILURES_TOTAL = Counter("scrape_orchestrator_poll_failures_total", "Poll calls that raised")
ACTIVE_POLLERS = Gauge("scrape_orchestrator_active_pollers", "Tracked ids with a live poll task")
JOB_TRANSITIONS_TOTAL = Counter(
    "scrape_orchestrator_job_transitions_total", "Job state transitions applied", ["state"]
)
BATCH_SNAPSHOTS_DROPPED_TOTAL = Counter(
    "scrape_orchestrator_batch_snapshots_dropped_total", "Batch snapshots whose progress counters did not add up"
)
CORPUS_LINK_ATTEMPTS_TOTAL = Counter(
    "scrape_orchestrator_corpus_link_attempts_total", "Batch to corpus link attempts", ["outcome"]
)
REQUEST_LATENCY = Histogram(
    "scrape_orchestrator_request_latency_seconds", "Latency of Job Queue Service calls", ["operation"]
)


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP."""

    start_http_server(port)
    logger.info("Metrics server listening", extra={"port": port})


__all__ = [
    "POLL_TICKS_TOTAL",
    "POLL_FAILURES_TOTAL",
    "ACTIVE_POLLERS",
    "JOB_TRANSITIONS_TOTAL",
    "BATCH_SNAPSHOTS_DROPPED_TOTAL",
    "CORPUS_LINK_ATTEMPTS_TOTAL",
    "REQUEST_LATENCY",
    "start_metrics_server",
]

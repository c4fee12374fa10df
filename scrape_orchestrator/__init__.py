"""Client-side orchestration of crawl and scrape jobs on a Job Queue Service."""

__all__ = [
    "config",
    "errors",
    "logging_utils",
    "client",
    "jobs",
    "batches",
    "orchestrator",
]

__version__ = "0.1.0"

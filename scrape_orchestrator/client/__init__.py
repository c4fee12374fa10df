"""HTTP client for the Job Queue Service."""

from .models import (
    BatchFromDiveRequest,
    CorpusLinkRequest,
    DiveRequest,
    EngineType,
    MassScrapeRequest,
    PreviewRequest,
    ScrapeOptions,
)
from .queue_client import JobQueueClient

__all__ = [
    "JobQueueClient",
    "BatchFromDiveRequest",
    "CorpusLinkRequest",
    "DiveRequest",
    "EngineType",
    "MassScrapeRequest",
    "PreviewRequest",
    "ScrapeOptions",
]

"""Domain models for crawl and scrape jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..timestamps import parse_timestamp


class JobKind(str, Enum):
    FULL_DIVE = "diveFull"
    PREVIEW_DIVE = "divePreview"
    PAGE_SCRAPE = "scrapePage"


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        # completed and failed share a rank: neither may follow the other
        return {"waiting": 0, "active": 1, "completed": 2, "failed": 2}[self.value]

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)

    @classmethod
    def parse(cls, value: Any) -> Optional["JobState"]:
        """Return the matching state, or ``None`` for missing/unknown values."""

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class JobProgress:
    processed: Optional[int] = None
    queued: Optional[int] = None
    visited: Optional[int] = None
    status: Optional[str] = None
    domain: Optional[str] = None
    base_url: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Optional["JobProgress"]:
        progress = cls(
            processed=_optional_int(payload.get("processed")),
            queued=_optional_int(payload.get("queued")),
            visited=_optional_int(payload.get("visited")),
            status=payload.get("status") if isinstance(payload.get("status"), str) else None,
            domain=payload.get("domain"),
            base_url=payload.get("baseUrl"),
        )
        if progress == cls():
            return None
        return progress

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "queued": self.queued,
            "visited": self.visited,
            "status": self.status,
            "domain": self.domain,
            "baseUrl": self.base_url,
        }


@dataclass
class JobSnapshot:
    """One poll response for one job, exactly as reported by the service."""

    job_id: str
    state: Optional[JobState] = None
    progress: Optional[JobProgress] = None
    result: Optional[Any] = None
    error: Optional[str] = None
    name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, job_id: str, payload: Mapping[str, Any]) -> "JobSnapshot":
        # Progress is either nested under "progress" or flattened into the payload.
        nested = payload.get("progress")
        progress = JobProgress.from_payload(nested if isinstance(nested, Mapping) else payload)
        error = payload.get("error") or payload.get("failedReason")
        return cls(
            job_id=str(payload.get("id") or job_id),
            state=JobState.parse(payload.get("state")),
            progress=progress,
            result=payload.get("result"),
            error=str(error) if error else None,
            name=payload.get("name"),
            created_at=parse_timestamp(payload.get("createdAt") or payload.get("timestamp")),
            updated_at=parse_timestamp(payload.get("updatedAt") or payload.get("finishedOn")),
        )


@dataclass(frozen=True)
class NotFound:
    """The service has no job with this id."""

    job_id: str


@dataclass
class JobListing:
    waiting: List[JobSnapshot] = field(default_factory=list)
    active: List[JobSnapshot] = field(default_factory=list)
    completed: List[JobSnapshot] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "JobListing":
        def _group(key: str, default_state: JobState) -> List[JobSnapshot]:
            snapshots = []
            for item in payload.get(key) or []:
                if not isinstance(item, Mapping):
                    continue
                snapshot = JobSnapshot.from_payload(str(item.get("id", "")), item)
                if snapshot.state is None:
                    snapshot.state = default_state
                snapshots.append(snapshot)
            return snapshots

        return cls(
            waiting=_group("waiting", JobState.WAITING),
            active=_group("active", JobState.ACTIVE),
            completed=_group("completed", JobState.COMPLETED),
        )

    @property
    def in_flight(self) -> int:
        return len(self.waiting) + len(self.active)


@dataclass
class DiveValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


__all__ = [
    "JobKind",
    "JobState",
    "JobProgress",
    "JobSnapshot",
    "NotFound",
    "JobListing",
    "DiveValidation",
]

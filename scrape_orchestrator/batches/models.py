"""Domain models for mass-scrape batches."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping, Optional

from ..timestamps import parse_timestamp


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InconsistentProgress(ValueError):
    """Counters that break ``completed + failed + pending == total``."""


def _count(payload: Mapping[str, Any], key: str) -> int:
    value = payload.get(key, 0)
    if isinstance(value, bool):
        raise InconsistentProgress(f"progress.{key} is not a count")
    try:
        count = int(value or 0)
    except (TypeError, ValueError) as exc:
        raise InconsistentProgress(f"progress.{key} is not a count") from exc
    if count < 0:
        raise InconsistentProgress(f"progress.{key} is negative")
    return count


@dataclass(frozen=True)
class BatchProgress:
    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0

    def __post_init__(self) -> None:
        if min(self.total, self.completed, self.failed, self.pending) < 0:
            raise InconsistentProgress("progress counters must not be negative")
        if self.completed + self.failed + self.pending != self.total:
            raise InconsistentProgress(
                f"completed ({self.completed}) + failed ({self.failed}) + pending ({self.pending})"
                f" != total ({self.total})"
            )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, normalize: bool = False) -> "BatchProgress":
        """Read progress counters.

        With ``normalize``, an undercount (jobs removed by a cancel are no longer
        counted anywhere) is folded into ``pending``. Counts above ``total``
        always raise.
        """

        total = _count(payload, "total")
        completed = _count(payload, "completed")
        failed = _count(payload, "failed")
        if "pending" in payload and payload["pending"] is not None:
            pending = _count(payload, "pending")
        else:
            pending = total - completed - failed
        if normalize and completed + failed <= total and completed + failed + pending < total:
            pending = total - completed - failed
        return cls(total=total, completed=completed, failed=failed, pending=pending)

    @property
    def settled(self) -> int:
        return self.completed + self.failed

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 0.0
        return self.settled / self.total * 100


@dataclass
class Batch:
    id: str
    name: str
    status: BatchStatus
    progress: BatchProgress
    urls: List[str] = field(default_factory=list)
    corpus_id: Optional[str] = None
    job_ids: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None

    @property
    def is_settled(self) -> bool:
        return self.progress.completed + self.progress.failed >= self.progress.total

    @property
    def is_finished(self) -> bool:
        """Settled, or stopped by the service (a cancelled batch reports ``failed``)."""
        return self.is_settled or self.status is BatchStatus.FAILED

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, normalize: bool = False) -> "Batch":
        """Build a batch from a service payload.

        Raises ``InconsistentProgress`` when the counters do not add up (after
        folding an undercount into ``pending`` when ``normalize`` is set) and
        ``ValueError`` when the id or status is unusable.
        """

        batch_id = payload.get("id") or payload.get("batchId")
        if not batch_id:
            raise ValueError("batch payload has no id")
        try:
            status = BatchStatus(str(payload.get("status", "pending")).lower())
        except ValueError as exc:
            raise ValueError(f"batch {batch_id} has unknown status {payload.get('status')!r}") from exc
        progress_payload = payload.get("progress")
        if not isinstance(progress_payload, Mapping):
            raise InconsistentProgress(f"batch {batch_id} has no progress object")
        return cls(
            id=str(batch_id),
            name=str(payload.get("name") or ""),
            status=status,
            progress=BatchProgress.from_payload(progress_payload, normalize=normalize),
            urls=[str(url) for url in payload.get("urls") or []],
            corpus_id=payload.get("corpusId") or None,
            job_ids=[str(job_id) for job_id in payload.get("jobIds") or []],
            created_at=parse_timestamp(payload.get("createdAt")),
        )


@dataclass
class BatchCreated:
    batch_id: str
    total: int
    corpus_id: Optional[str] = None
    job_ids: List[str] = field(default_factory=list)
    link_error: Optional[str] = None


__all__ = ["BatchStatus", "BatchProgress", "Batch", "BatchCreated", "InconsistentProgress"]

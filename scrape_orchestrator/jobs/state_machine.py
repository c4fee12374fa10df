"""Lifecycle of a single crawl/scrape job as observed through polling."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from ..monitoring.metrics import JOB_TRANSITIONS_TOTAL
from .models import JobKind, JobProgress, JobSnapshot, JobState, NotFound

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Job failed"
NOT_FOUND_REASON = "Job not found"


class JobStateMachine:
    """Applies service snapshots to one job without ever moving backwards.

    Snapshots with a missing or unknown state, a ``completed`` state without a
    result, or a state ranked below the current one are ignored. Terminal
    machines (completed, failed or removed) ignore everything.
    """

    def __init__(self, job_id: str, kind: JobKind, state: JobState = JobState.WAITING) -> None:
        self.job_id = job_id
        self.kind = kind
        self.state = state
        self.progress: Optional[JobProgress] = None
        self.result: Optional[Any] = None
        self.error: Optional[str] = None
        self.removed = False
        self.created_at: Optional[datetime] = None
        self.updated_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return f"JobStateMachine(job_id={self.job_id!r}, kind={self.kind.value}, state={self.state.value}, removed={self.removed})"

    @property
    def is_terminal(self) -> bool:
        return self.removed or self.state.is_terminal

    def apply(self, snapshot: Union[JobSnapshot, NotFound]) -> bool:
        """Apply one poll response; returns True when the state changed."""

        if self.is_terminal:
            return False
        if isinstance(snapshot, NotFound):
            return self._fail(NOT_FOUND_REASON)

        self.created_at = snapshot.created_at or self.created_at
        self.updated_at = snapshot.updated_at or self.updated_at

        new_state = snapshot.state
        if new_state is None:
            logger.debug("Snapshot without a recognised state", extra={"job_id": self.job_id})
            self._record_progress(snapshot)
            return False
        if new_state.rank < self.state.rank:
            logger.warning(
                "Ignoring backward transition %s -> %s",
                self.state.value,
                new_state.value,
                extra={"job_id": self.job_id},
            )
            return False

        if new_state is JobState.COMPLETED:
            if snapshot.result is None:
                logger.debug("Completed snapshot without a result", extra={"job_id": self.job_id})
                self._record_progress(snapshot)
                return False
            self.result = snapshot.result
            self.progress = None
            return self._transition(JobState.COMPLETED)

        if new_state is JobState.FAILED:
            return self._fail(snapshot.error or DEFAULT_FAILURE_REASON)

        self._record_progress(snapshot)
        if new_state is self.state:
            return False
        return self._transition(new_state)

    def remove(self) -> bool:
        """Stop tracking the job locally; returns False if it was already terminal."""

        if self.is_terminal:
            return False
        self.removed = True
        self.progress = None
        logger.info("Job removed from tracking", extra={"job_id": self.job_id, "state": self.state.value})
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "state": self.state.value,
            "removed": self.removed,
            "progress": self.progress.to_dict() if self.progress else None,
            "error": self.error,
            "has_result": self.result is not None,
        }

    def _record_progress(self, snapshot: JobSnapshot) -> None:
        if snapshot.progress is not None:
            self.progress = snapshot.progress

    def _fail(self, reason: str) -> bool:
        self.error = reason
        self.progress = None
        return self._transition(JobState.FAILED)

    def _transition(self, new_state: JobState) -> bool:
        previous = self.state
        self.state = new_state
        JOB_TRANSITIONS_TOTAL.labels(state=new_state.value).inc()
        logger.info(
            "Job %s: %s -> %s",
            self.job_id,
            previous.value,
            new_state.value,
            extra={"job_id": self.job_id, "kind": self.kind.value},
        )
        return True


__all__ = ["JobStateMachine", "DEFAULT_FAILURE_REASON", "NOT_FOUND_REASON"]

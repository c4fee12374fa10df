"""Error taxonomy shared by the orchestration core."""

from __future__ import annotations

from typing import Iterable, List, Optional


class OrchestratorError(Exception):
    """Base class for every error raised by the orchestration core."""


class ValidationError(OrchestratorError):
    """Input was rejected before (or by) the service; never retried."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors: List[str] = [str(item) for item in errors] or ["Invalid request"]
        super().__init__("; ".join(self.errors))


class TransportError(OrchestratorError):
    """The Job Queue Service could not be reached."""

    def __init__(self, message: str, *, operation: Optional[str] = None) -> None:
        self.operation = operation
        super().__init__(message)


class ServiceRejection(OrchestratorError):
    """The service answered with ``success: false`` or a non-2xx status."""

    def __init__(
        self,
        errors: Iterable[str],
        *,
        status_code: Optional[int] = None,
        not_found: bool = False,
    ) -> None:
        self.errors: List[str] = [str(item) for item in errors] or ["Request rejected by service"]
        self.status_code = status_code
        self.not_found = not_found
        super().__init__("; ".join(self.errors))


class JobFailure(OrchestratorError):
    """A tracked job ended in the ``failed`` state."""

    def __init__(self, job_id: str, reason: str) -> None:
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Job {job_id} failed: {reason}")


class BatchWaitTimeout(OrchestratorError):
    """A batch did not settle within the allotted time."""

    def __init__(self, batch_id: str, timeout: float) -> None:
        self.batch_id = batch_id
        self.timeout = timeout
        super().__init__(f"Batch {batch_id} did not settle within {timeout:g}s")


__all__ = [
    "OrchestratorError",
    "ValidationError",
    "TransportError",
    "ServiceRejection",
    "JobFailure",
    "BatchWaitTimeout",
]

"""Tracking of submitted jobs until they settle or are cancelled."""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import JobFailure
from .models import JobKind, JobState
from .poller import PollHandle, ProgressPoller
from .state_machine import JobStateMachine

if TYPE_CHECKING:
    from ..client.queue_client import JobQueueClient

logger = logging.getLogger(__name__)


class JobTracker:
    """Owns one state machine per job and the poller that feeds it."""

    def __init__(
        self,
        client: "JobQueueClient",
        poller: Optional[ProgressPoller] = None,
        *,
        interval: float = 2.0,
    ) -> None:
        self.client = client
        self.poller = poller if poller is not None else ProgressPoller()
        self.interval = interval
        self._jobs: Dict[str, JobStateMachine] = {}

    @property
    def jobs(self) -> List[JobStateMachine]:
        return list(self._jobs.values())

    def get(self, job_id: str) -> Optional[JobStateMachine]:
        return self._jobs.get(job_id)

    def is_polling(self, job_id: str) -> bool:
        return job_id in self.poller

    def track(self, job_id: str, kind: JobKind) -> JobStateMachine:
        """Start polling a freshly created job from the ``waiting`` state."""

        machine = JobStateMachine(job_id, kind)
        self._jobs[job_id] = machine
        self.poller.start(
            job_id,
            partial(self.client.get_progress, job_id),
            interval=self.interval,
            is_terminal=lambda _response: machine.is_terminal,
            on_response=machine.apply,
        )
        logger.info("Tracking job", extra={"job_id": job_id, "kind": kind.value})
        return machine

    def handle(self, job_id: str) -> Optional[PollHandle]:
        return self.poller.get(job_id)

    async def cancel(self, job_id: str) -> None:
        """Stop tracking ``job_id`` at once, then ask the service to delete it.

        Polling stops and the machine is marked removed before the delete call
        is made; a failed delete is raised to the caller.
        """

        self.poller.cancel(job_id)
        machine = self._jobs.get(job_id)
        if machine is not None:
            machine.remove()
        await self.client.delete_job(job_id)
        logger.info("Job deleted", extra={"job_id": job_id})

    async def wait(self, job_id: str) -> Any:
        """Wait until the job settles and return its result.

        Raises ``JobFailure`` when the job failed. Returns ``None`` when the job
        was removed or is no longer being polled.
        """

        handle = self.poller.get(job_id)
        if handle is not None:
            await handle.wait()
        machine = self._jobs.get(job_id)
        if machine is None:
            raise KeyError(job_id)
        if machine.state is JobState.FAILED and not machine.removed:
            raise JobFailure(job_id, machine.error or "Job failed")
        if machine.state is JobState.COMPLETED:
            return machine.result
        return None

    async def aclose(self) -> None:
        await self.poller.aclose()


__all__ = ["JobTracker"]

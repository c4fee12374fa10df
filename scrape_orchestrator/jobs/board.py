"""Grouped view of every job the service knows about."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from .models import JobListing
from .poller import ProgressPoller

if TYPE_CHECKING:
    from ..client.queue_client import JobQueueClient

logger = logging.getLogger(__name__)

BOARD_POLL_ID = "jobs"


class JobBoard:
    """Keeps the latest ``JobListing``; auto-refreshes while jobs are in flight.

    Auto-refresh stops once nothing is waiting or active. While the board is
    watched (between ``start`` and ``stop``), ``wake`` resumes it after new
    work is submitted.
    """

    def __init__(
        self,
        client: "JobQueueClient",
        poller: Optional[ProgressPoller] = None,
        *,
        interval: float = 3.0,
    ) -> None:
        self.client = client
        self.poller = poller if poller is not None else ProgressPoller()
        self.interval = interval
        self.listing: Optional[JobListing] = None
        self._watching = False

    @property
    def is_running(self) -> bool:
        return BOARD_POLL_ID in self.poller

    @property
    def is_watching(self) -> bool:
        return self._watching

    async def refresh(self) -> JobListing:
        self.listing = await self.client.list_jobs()
        return self.listing

    async def delete(self, job_id: str) -> JobListing:
        await self.client.delete_job(job_id)
        logger.info("Job deleted from board", extra={"job_id": job_id})
        return await self.refresh()

    def start(self) -> None:
        self._watching = True
        self.poller.start(
            BOARD_POLL_ID,
            self.refresh,
            interval=self.interval,
            is_terminal=lambda listing: listing.in_flight == 0,
        )

    def stop(self) -> None:
        self._watching = False
        self.poller.cancel(BOARD_POLL_ID)

    def wake(self) -> bool:
        """Restart an idle auto-refresh; returns True if polling was resumed."""

        if not self._watching or self.is_running:
            return False
        logger.debug("Resuming job board refresh")
        self.start()
        return True

    async def __aenter__(self) -> "JobBoard":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.stop()


__all__ = ["JobBoard"]

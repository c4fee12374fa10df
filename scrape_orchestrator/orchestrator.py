"""Wiring of client, trackers and coordinators into one object."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from .batches import BatchCoordinator, CorpusLinker, LinkLedger
from .client import JobQueueClient
from .config import Settings, get_settings
from .jobs import JobBoard, JobSubmitter, JobTracker, ProgressPoller

logger = logging.getLogger(__name__)


class Orchestrator:
    """Owns every component and tears them all down together.

    Each component gets its own ``ProgressPoller`` so stopping one view never
    touches the polls of another.
    """

    def __init__(
        self,
        client: JobQueueClient,
        *,
        dive_poll_interval: float = 2.0,
        batch_poll_interval: float = 3.0,
        job_list_poll_interval: float = 3.0,
        batch_wait_interval: float = 2.0,
        batch_wait_timeout: Optional[float] = None,
        poll_failure_threshold: Optional[int] = None,
        ledger: Optional[LinkLedger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client

        def _poller() -> ProgressPoller:
            return ProgressPoller(sleep=sleep, failure_threshold=poll_failure_threshold)

        self.linker = CorpusLinker(
            client,
            ledger,
            wait_interval=batch_wait_interval,
            wait_timeout=batch_wait_timeout,
            sleep=sleep,
        )
        self.tracker = JobTracker(client, _poller(), interval=dive_poll_interval)
        self.board = JobBoard(client, _poller(), interval=job_list_poll_interval)
        self.submitter = JobSubmitter(client, self.tracker, self.linker, board=self.board)
        self.batches = BatchCoordinator(client, linker=self.linker, poller=_poller(), interval=batch_poll_interval)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "Orchestrator":
        settings = settings or get_settings()
        client = JobQueueClient(
            settings.service_url,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )
        logger.debug("Building orchestrator", extra={"service_url": settings.service_url})
        return cls(
            client,
            dive_poll_interval=settings.dive_poll_interval_seconds,
            batch_poll_interval=settings.batch_poll_interval_seconds,
            job_list_poll_interval=settings.job_list_poll_interval_seconds,
            batch_wait_interval=settings.batch_wait_interval_seconds,
            batch_wait_timeout=settings.batch_wait_timeout_seconds,
            poll_failure_threshold=settings.poll_failure_threshold,
            ledger=LinkLedger(settings.link_ledger_path),
            sleep=sleep,
        )

    async def aclose(self) -> None:
        for poller in (self.tracker.poller, self.batches.poller, self.board.poller):
            await poller.aclose()
        await self.client.aclose()

    async def __aenter__(self) -> "Orchestrator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


__all__ = ["Orchestrator"]

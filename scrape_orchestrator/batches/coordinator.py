"""Batch list maintenance with two-phase cancel and delete."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import OrchestratorError
from ..jobs.poller import ProgressPoller
from .models import Batch, BatchStatus

if TYPE_CHECKING:
    from ..client.queue_client import JobQueueClient
    from .linker import CorpusLinker

logger = logging.getLogger(__name__)

BATCH_POLL_ID = "mass-scrape"


class PendingAction(str, Enum):
    CANCEL = "cancel"
    DELETE = "delete"


class BatchCoordinator:
    """Owns the authoritative batch list.

    Cancel and delete never edit the list locally. They set a pending marker,
    call the service, and let the next refresh decide what the list holds.
    """

    def __init__(
        self,
        client: "JobQueueClient",
        *,
        linker: Optional["CorpusLinker"] = None,
        poller: Optional[ProgressPoller] = None,
        interval: float = 3.0,
    ) -> None:
        self.client = client
        self.linker = linker
        self.poller = poller if poller is not None else ProgressPoller()
        self.interval = interval
        self._batches: Dict[str, Batch] = {}
        self._pending: Dict[str, PendingAction] = {}

    @property
    def batches(self) -> List[Batch]:
        return list(self._batches.values())

    @property
    def is_running(self) -> bool:
        return BATCH_POLL_ID in self.poller

    def get(self, batch_id: str) -> Optional[Batch]:
        return self._batches.get(batch_id)

    def pending(self, batch_id: str) -> Optional[PendingAction]:
        return self._pending.get(batch_id)

    def visible_batches(self) -> List[Batch]:
        return [batch for batch in self._batches.values() if self._pending.get(batch.id) is not PendingAction.DELETE]

    async def refresh(self) -> List[Batch]:
        batches = await self.client.list_batches()
        self._batches = {batch.id: batch for batch in batches}
        self._reconcile()
        if self.linker is not None:
            await self.linker.observe(batches)
        return batches

    async def cancel(self, batch_id: str) -> None:
        await self._mutate(batch_id, PendingAction.CANCEL)

    async def delete(self, batch_id: str) -> None:
        await self._mutate(batch_id, PendingAction.DELETE)

    def start(self) -> None:
        # Standing poll: the predicate never accepts, only stop() ends it.
        self.poller.start(BATCH_POLL_ID, self.refresh, interval=self.interval, is_terminal=lambda _: False)

    def stop(self) -> None:
        self.poller.cancel(BATCH_POLL_ID)

    async def __aenter__(self) -> "BatchCoordinator":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.stop()

    async def _mutate(self, batch_id: str, action: PendingAction) -> None:
        self._pending[batch_id] = action
        try:
            if action is PendingAction.CANCEL:
                await self.client.cancel_batch(batch_id)
            else:
                await self.client.delete_batch(batch_id)
        except OrchestratorError:
            if self._pending.get(batch_id) is action:
                del self._pending[batch_id]
            logger.warning("Batch %s failed", action.value, extra={"batch_id": batch_id})
            raise
        logger.info("Batch %s accepted", action.value, extra={"batch_id": batch_id})

        try:
            await self.refresh()
        except OrchestratorError as exc:
            # The marker stays until a later refresh succeeds.
            logger.warning("Refresh after batch %s failed: %s", action.value, exc, extra={"batch_id": batch_id})

    def _reconcile(self) -> None:
        for batch_id, action in list(self._pending.items()):
            batch = self._batches.get(batch_id)
            if batch is None:
                del self._pending[batch_id]
            elif action is PendingAction.CANCEL and batch.status not in (BatchStatus.PENDING, BatchStatus.PROCESSING):
                del self._pending[batch_id]


__all__ = ["BatchCoordinator", "PendingAction", "BATCH_POLL_ID"]

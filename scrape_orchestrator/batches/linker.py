"""Linking settled batches into corpora, at most once per batch."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, List, Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    retry_if_result,
    stop_after_delay,
    stop_never,
    wait_fixed,
)

from ..client.models import CorpusLinkRequest
from ..errors import BatchWaitTimeout, OrchestratorError, ServiceRejection, TransportError
from ..monitoring.metrics import CORPUS_LINK_ATTEMPTS_TOTAL
from .ledger import LinkLedger
from .models import Batch, BatchStatus

if TYPE_CHECKING:
    from ..client.queue_client import JobQueueClient

logger = logging.getLogger(__name__)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TransportError):
        return True
    return isinstance(exc, ServiceRejection) and not exc.not_found


async def wait_for_batch_completion(
    client: "JobQueueClient",
    batch_id: str,
    *,
    interval: float = 2.0,
    timeout: Optional[float] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Batch:
    """Poll ``get_batch`` until ``completed + failed >= total`` or the batch failed.

    Transport errors and non-404 rejections are retried on the same schedule.
    A missing batch ends the wait with its ``ServiceRejection``; running out of
    ``timeout`` raises ``BatchWaitTimeout``.
    """

    retrying = AsyncRetrying(
        retry=retry_if_exception(_is_transient) | retry_if_result(lambda batch: not batch.is_finished),
        wait=wait_fixed(interval),
        stop=stop_after_delay(timeout) if timeout else stop_never,
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.DEBUG),
    )
    try:
        batch = await retrying(client.get_batch, batch_id)
    except RetryError as exc:
        raise BatchWaitTimeout(batch_id, timeout or 0.0) from exc
    logger.info(
        "Batch settled",
        extra={"batch_id": batch_id, "completed": batch.progress.completed, "failed": batch.progress.failed},
    )
    return batch


@dataclass
class LinkOutcome:
    batch_id: str
    corpus_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.corpus_id is not None


class CorpusLinker:
    """Links each batch that asked for a corpus exactly once.

    A batch id is written to the ledger before the link call is made, so a
    failed link is never retried automatically.
    """

    def __init__(
        self,
        client: "JobQueueClient",
        ledger: Optional[LinkLedger] = None,
        *,
        wait_interval: float = 2.0,
        wait_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.ledger = ledger if ledger is not None else LinkLedger()
        self.wait_interval = wait_interval
        self.wait_timeout = wait_timeout
        self._sleep = sleep
        self._requests: Dict[str, CorpusLinkRequest] = {}
        self._inflight: Dict[str, "asyncio.Future[str]"] = {}

    def register(self, batch_id: str, request: Optional[CorpusLinkRequest] = None) -> None:
        self._requests[batch_id] = request or CorpusLinkRequest()

    def is_requested(self, batch_id: str) -> bool:
        return batch_id in self._requests

    def is_eligible(self, batch: Batch) -> bool:
        return (
            batch.id in self._requests
            and not batch.corpus_id
            and batch.status is BatchStatus.COMPLETED
            and batch.id not in self.ledger
        )

    async def observe(self, batches: Iterable[Batch]) -> List[LinkOutcome]:
        """Link every eligible batch in one observation of the batch list.

        Link failures and ledger write failures are reported as outcomes
        instead of being raised.
        """

        outcomes: List[LinkOutcome] = []
        for batch in batches:
            if not self.is_eligible(batch):
                continue
            try:
                self.ledger.add(batch.id)
            except OSError as exc:
                # The in-memory claim holds; skip the link so a restart cannot repeat it.
                logger.error("Could not record claim for batch %s: %s", batch.id, exc)
                outcomes.append(LinkOutcome(batch_id=batch.id, error=str(exc)))
                continue
            try:
                corpus_id = await self._link(batch.id)
            except OrchestratorError as exc:
                logger.error("Linking batch %s to a corpus failed: %s", batch.id, exc)
                outcomes.append(LinkOutcome(batch_id=batch.id, error=str(exc)))
            else:
                outcomes.append(LinkOutcome(batch_id=batch.id, corpus_id=corpus_id))
        return outcomes

    async def link_when_settled(self, batch_id: str, request: Optional[CorpusLinkRequest] = None) -> Optional[str]:
        """Wait for ``batch_id`` to settle, then link it once.

        Returns the corpus id. When a link for the batch is already in flight
        (started by ``observe``), its result is awaited and shared. Returns
        ``None`` when an earlier finished attempt did not produce a corpus.
        Errors of the link call propagate.
        """

        if request is not None or batch_id not in self._requests:
            self.register(batch_id, request)

        batch = await wait_for_batch_completion(
            self.client,
            batch_id,
            interval=self.wait_interval,
            timeout=self.wait_timeout,
            sleep=self._sleep,
        )
        if batch.corpus_id:
            return batch.corpus_id
        if not self.ledger.add(batch_id):
            inflight = self._inflight.get(batch_id)
            if inflight is not None:
                logger.info("Joining in-flight corpus link", extra={"batch_id": batch_id})
                return await asyncio.shield(inflight)
            logger.info("Batch already linked", extra={"batch_id": batch_id})
            return self.ledger.corpus_id(batch_id)
        return await self._link(batch_id)

    async def _link(self, batch_id: str) -> str:
        future: "asyncio.Future[str]" = asyncio.get_running_loop().create_future()
        self._inflight[batch_id] = future
        try:
            corpus_id = await self._send_link(batch_id)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved; joiners re-raise it themselves.
            future.exception()
            raise
        else:
            future.set_result(corpus_id)
            return corpus_id
        finally:
            del self._inflight[batch_id]

    async def _send_link(self, batch_id: str) -> str:
        request = self._requests.get(batch_id) or CorpusLinkRequest()
        try:
            corpus_id = await self.client.link_batch_to_corpus(
                batch_id,
                corpus_name=request.corpus_name,
                corpus_description=request.corpus_description,
                tags=request.corpus_tags,
            )
        except OrchestratorError:
            CORPUS_LINK_ATTEMPTS_TOTAL.labels(outcome="failed").inc()
            raise
        CORPUS_LINK_ATTEMPTS_TOTAL.labels(outcome="linked").inc()
        try:
            self.ledger.record(batch_id, corpus_id)
        except OSError as exc:
            logger.error("Could not record corpus %s for batch %s: %s", corpus_id, batch_id, exc)
        logger.info("Linked batch to corpus", extra={"batch_id": batch_id, "corpus_id": corpus_id})
        return corpus_id


__all__ = ["CorpusLinker", "LinkOutcome", "wait_for_batch_completion"]

"""Cancellable periodic polling, one asyncio task per tracked id."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..monitoring.metrics import ACTIVE_POLLERS, POLL_FAILURES_TOTAL, POLL_TICKS_TOTAL

logger = logging.getLogger(__name__)

PollFunction = Callable[[], Awaitable[Any]]
TerminalPredicate = Callable[[Any], bool]
ResponseCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]
SleepFunction = Callable[[float], Awaitable[Any]]


@dataclass
class PollHandle:
    """Bookkeeping for one tracked id."""

    target_id: str
    interval: float
    poll: PollFunction
    is_terminal: TerminalPredicate
    on_response: Optional[ResponseCallback] = None
    on_error: Optional[ErrorCallback] = None
    ticks: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    connection_lost: bool = False
    last_response: Any = None
    last_error: Optional[BaseException] = None
    cancelled: bool = False
    finished: bool = False
    task: Optional["asyncio.Task[Any]"] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.cancelled or self.finished

    async def wait(self) -> Any:
        """Wait for the polling task to end and return the last response seen."""

        if self.task is not None:
            try:
                await asyncio.shield(self.task)
            except asyncio.CancelledError:
                if not self.cancelled:
                    raise
        return self.last_response


class ProgressPoller:
    """Registry mapping each tracked id to exactly one polling task.

    Each task sleeps ``interval``, calls the poll function and repeats until the
    terminal predicate accepts a response or the id is cancelled. Failures of
    the poll function are logged and counted; they never stop the loop.
    ``cancel`` is synchronous: once it returns no further poll call or callback
    happens for that id.
    """

    def __init__(
        self,
        *,
        sleep: SleepFunction = asyncio.sleep,
        failure_threshold: Optional[int] = None,
    ) -> None:
        self._sleep = sleep
        self.failure_threshold = failure_threshold
        self._handles: Dict[str, PollHandle] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._handles

    @property
    def active_ids(self) -> List[str]:
        return list(self._handles)

    def get(self, target_id: str) -> Optional[PollHandle]:
        return self._handles.get(target_id)

    def start(
        self,
        target_id: str,
        poll: PollFunction,
        *,
        interval: float,
        is_terminal: TerminalPredicate,
        on_response: Optional[ResponseCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> PollHandle:
        """Begin polling ``target_id``, replacing any poller already running for it."""

        if interval <= 0:
            raise ValueError("interval must be positive")
        if target_id in self._handles:
            logger.debug("Replacing existing poller", extra={"target_id": target_id})
            self.cancel(target_id)

        handle = PollHandle(
            target_id=target_id,
            interval=interval,
            poll=poll,
            is_terminal=is_terminal,
            on_response=on_response,
            on_error=on_error,
        )
        self._handles[target_id] = handle
        ACTIVE_POLLERS.inc()
        handle.task = asyncio.get_running_loop().create_task(self._run(handle), name=f"poll:{target_id}")
        logger.debug("Started poller", extra={"target_id": target_id, "interval": interval})
        return handle

    def cancel(self, target_id: str) -> bool:
        """Stop polling ``target_id``; returns False when nothing was being polled."""

        handle = self._handles.get(target_id)
        if handle is None:
            return False
        handle.cancelled = True
        self._release(handle)
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        logger.debug("Cancelled poller", extra={"target_id": target_id, "ticks": handle.ticks})
        return True

    def cancel_all(self) -> None:
        for target_id in list(self._handles):
            self.cancel(target_id)

    async def wait(self, target_id: str) -> Any:
        """Wait for the poller of ``target_id`` to finish and return its last response."""

        handle = self._handles.get(target_id)
        if handle is None:
            return None
        return await handle.wait()

    async def aclose(self) -> None:
        tasks = [handle.task for handle in self._handles.values() if handle.task is not None]
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "ProgressPoller":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _release(self, handle: PollHandle) -> None:
        if self._handles.get(handle.target_id) is handle:
            del self._handles[handle.target_id]
            ACTIVE_POLLERS.dec()

    async def _run(self, handle: PollHandle) -> Any:
        try:
            while not handle.cancelled:
                await self._sleep(handle.interval)
                if handle.cancelled:
                    break

                handle.ticks += 1
                POLL_TICKS_TOTAL.inc()
                try:
                    response = await handle.poll()
                except Exception as exc:  # transient: keep polling on schedule
                    if handle.cancelled:
                        break
                    self._record_failure(handle, exc)
                    continue

                if handle.cancelled:
                    break
                if handle.connection_lost:
                    logger.info("Poller reconnected", extra={"target_id": handle.target_id})
                handle.consecutive_failures = 0
                handle.connection_lost = False
                handle.last_response = response

                if handle.on_response is not None:
                    try:
                        handle.on_response(response)
                    except Exception:
                        logger.exception("Poll response handler failed", extra={"target_id": handle.target_id})

                if handle.is_terminal(response):
                    handle.finished = True
                    logger.debug(
                        "Poller reached terminal response",
                        extra={"target_id": handle.target_id, "ticks": handle.ticks},
                    )
                    return response
            return None
        finally:
            self._release(handle)

    def _record_failure(self, handle: PollHandle, exc: Exception) -> None:
        handle.failures += 1
        handle.consecutive_failures += 1
        handle.last_error = exc
        POLL_FAILURES_TOTAL.inc()
        logger.warning(
            "Poll failed for %s: %s",
            handle.target_id,
            exc,
            extra={"target_id": handle.target_id, "consecutive_failures": handle.consecutive_failures},
        )
        if (
            self.failure_threshold is not None
            and not handle.connection_lost
            and handle.consecutive_failures >= self.failure_threshold
        ):
            handle.connection_lost = True
            logger.error(
                "Lost connection while polling %s after %d consecutive failures",
                handle.target_id,
                handle.consecutive_failures,
            )
        if handle.on_error is not None:
            try:
                handle.on_error(exc)
            except Exception:
                logger.exception("Poll error handler failed", extra={"target_id": handle.target_id})


__all__ = ["ProgressPoller", "PollHandle"]

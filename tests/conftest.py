import asyncio
import heapq
import itertools
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from scrape_orchestrator.client.queue_client import JobQueueClient

BASE_URL = "http://queue.test"


class FakeClock:
    """Stand-in for ``asyncio.sleep`` that only moves when ``advance`` is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []
        self._sleepers: List[Any] = []
        self._seq = itertools.count()

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self.now + delay, next(self._seq), future))
        await future

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self.now = deadline
            if not future.done():
                future.set_result(None)
            await self.settle()
        self.now = target

    @staticmethod
    async def settle(rounds: int = 50) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)


class FakeService:
    """Routes ``(method, path)`` to queued responses and records every request."""

    def __init__(self) -> None:
        self.routes: Dict[tuple, List[Any]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, *responses: Any) -> None:
        self.routes.setdefault((method, path), []).extend(responses)

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> List[httpx.Request]:
        return [
            request
            for request in self.requests
            if (method is None or request.method == method) and (path is None or request.url.path == path)
        ]

    def body(self, request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"success": False, "error": "Not found"})
        # The last response repeats once the queue is drained.
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        if isinstance(response, httpx.Response):
            return response
        status, payload = response if isinstance(response, tuple) else (200, response)
        return httpx.Response(status, json=payload)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def make_client(service: FakeService) -> Callable[[], JobQueueClient]:
    def _make() -> JobQueueClient:
        return JobQueueClient(BASE_URL, transport=httpx.MockTransport(service))

    return _make


def batch_payload(batch_id: str, status: str, total: int, completed: int, failed: int = 0, **extra: Any) -> Dict:
    payload = {
        "id": batch_id,
        "name": f"Batch {batch_id}",
        "status": status,
        "progress": {
            "total": total,
            "completed": completed,
            "failed": failed,
            "pending": total - completed - failed,
        },
        "urls": [f"https://example.com/{index}" for index in range(total)],
        "createdAt": "2024-05-01T10:00:00Z",
    }
    payload.update(extra)
    return payload

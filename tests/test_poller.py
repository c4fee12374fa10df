import asyncio
import logging

from scrape_orchestrator.errors import TransportError
from scrape_orchestrator.jobs.poller import ProgressPoller


def test_poller_stops_on_terminal_response(clock):
    calls = []
    responses = iter(["waiting", "active", "completed", "unexpected"])

    async def poll():
        value = next(responses)
        calls.append(value)
        return value

    async def scenario():
        poller = ProgressPoller(sleep=clock.sleep)
        seen = []
        handle = poller.start(
            "job-1",
            poll,
            interval=2.0,
            is_terminal=lambda response: response == "completed",
            on_response=seen.append,
        )
        await clock.advance(20)
        return poller, handle, seen

    poller, handle, seen = asyncio.run(scenario())

    assert calls == ["waiting", "active", "completed"]
    assert seen == calls
    assert handle.finished and handle.ticks == 3
    assert handle.last_response == "completed"
    assert "job-1" not in poller
    assert len(poller) == 0


def test_poller_waits_interval_before_first_tick(clock):
    calls = []

    async def poll():
        calls.append(clock.now)
        return "waiting"

    async def scenario():
        poller = ProgressPoller(sleep=clock.sleep)
        poller.start("job-1", poll, interval=2.0, is_terminal=lambda _: False)
        await clock.advance(1.5)
        before = list(calls)
        await clock.advance(5)
        poller.cancel_all()
        return before

    before = asyncio.run(scenario())

    assert before == []
    assert calls == [2.0, 4.0, 6.0]


def test_cancel_after_first_tick_prevents_second_tick(clock):
    calls = []

    async def poll():
        calls.append("abc")
        return {"state": "active"}

    async def scenario():
        poller = ProgressPoller(sleep=clock.sleep)
        handle = poller.start("abc", poll, interval=2.0, is_terminal=lambda _: False)
        await clock.advance(2.0)
        assert poller.cancel("abc") is True
        await clock.advance(30)
        return poller, handle

    poller, handle = asyncio.run(scenario())

    assert calls == ["abc"]
    assert handle.cancelled and handle.ticks == 1
    assert "abc" not in poller
    assert poller.cancel("abc") is False


def test_response_arriving_after_cancel_is_discarded(clock):
    release = None
    seen = []

    async def poll():
        await release.wait()
        return "completed"

    async def scenario():
        nonlocal release
        release = asyncio.Event()
        poller = ProgressPoller(sleep=clock.sleep)
        handle = poller.start("job-1", poll, interval=1.0, is_terminal=lambda _: True, on_response=seen.append)
        await clock.advance(1.0)
        poller.cancel("job-1")
        release.set()
        await clock.settle()
        return handle

    handle = asyncio.run(scenario())

    assert seen == []
    assert handle.last_response is None


def test_transient_failures_keep_polling(clock, caplog):
    outcomes = [TransportError("connection refused"), TransportError("connection refused"), "completed"]
    errors = []

    async def poll():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def scenario():
        poller = ProgressPoller(sleep=clock.sleep)
        handle = poller.start(
            "job-1",
            poll,
            interval=2.0,
            is_terminal=lambda response: response == "completed",
            on_error=errors.append,
        )
        await clock.advance(10)
        return handle

    caplog.set_level(logging.WARNING)
    handle = asyncio.run(scenario())

    assert handle.finished
    assert handle.ticks == 3
    assert handle.failures == 2
    assert handle.consecutive_failures == 0
    assert len(errors) == 2
    assert any("Poll failed for job-1" in record.getMessage() for record in caplog.records)


def test_failure_threshold_flags_connection_lost_without_stopping(clock, caplog):
    outcomes = [TransportError("down")] * 3 + ["active"]

    async def poll():
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def scenario():
        poller = ProgressPoller(sleep=clock.sleep, failure_threshold=2)
        handle = poller.start("job-1", poll, interval=1.0, is_terminal=lambda _: False)
        await clock.advance(2.0)
        lost_after_two = handle.connection_lost
        await clock.advance(2.0)
        recovered = not handle.connection_lost
        still_polling = "job-1" in poller
        poller.cancel_all()
        return lost_after_two, recovered, still_polling

    caplog.set_level(logging.ERROR)
    lost_after_two, recovered, still_polling = asyncio.run(scenario())

    assert lost_after_two is True
    assert recovered is True
    assert still_polling is True
    errors = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "Lost connection" in errors[0].getMessage()


def test_starting_same_id_replaces_previous_poller(clock):
    calls = []

    def make_poll(label):
        async def poll():
            calls.append(label)
            return label

        return poll

    async def scenario():
        poller = ProgressPoller(sleep=clock.sleep)
        first = poller.start("job-1", make_poll("first"), interval=2.0, is_terminal=lambda _: False)
        second = poller.start("job-1", make_poll("second"), interval=2.0, is_terminal=lambda _: False)
        await clock.advance(6)
        active = poller.active_ids
        second_cancelled = second.cancelled
        poller.cancel_all()
        return first, second_cancelled, active

    first, second_cancelled, active = asyncio.run(scenario())

    assert first.cancelled
    assert second_cancelled is False
    assert active == ["job-1"]
    assert calls == ["second", "second", "second"]


def test_aclose_cancels_every_task(clock):
    async def poll():
        return None

    async def scenario():
        async with ProgressPoller(sleep=clock.sleep) as poller:
            handles = [
                poller.start(f"job-{index}", poll, interval=1.0, is_terminal=lambda _: False) for index in range(3)
            ]
            await clock.advance(1.0)
        return poller, handles

    poller, handles = asyncio.run(scenario())

    assert len(poller) == 0
    assert all(handle.cancelled for handle in handles)
    assert all(handle.task.done() for handle in handles)

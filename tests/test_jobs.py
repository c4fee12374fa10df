import asyncio
from datetime import datetime

import httpx
import pytest

from scrape_orchestrator.batches.coordinator import BatchCoordinator
from scrape_orchestrator.errors import JobFailure, ServiceRejection, ValidationError
from scrape_orchestrator.jobs.board import JobBoard
from scrape_orchestrator.jobs.models import JobKind, JobState
from scrape_orchestrator.jobs.poller import ProgressPoller
from scrape_orchestrator.jobs.submitter import JobSubmitter, default_batch_name
from scrape_orchestrator.jobs.tracker import JobTracker

PROGRESS_PATH = "/api/dive/progress/dive-1"

SITEMAP = {
    "domain": "example.com",
    "totalPages": 5,
    "totalDepth": 1,
    "pages": [{"url": f"https://example.com/page-{index}", "depth": 1} for index in range(5)],
}


def _progress(state, **data):
    return {"success": True, "data": {"state": state, **data}}


def test_dive_is_tracked_until_sitemap_arrives(clock, service, make_client):
    service.add("POST", "/api/dive", {"success": True, "jobId": "dive-1"})
    service.add(
        "GET",
        PROGRESS_PATH,
        _progress("waiting"),
        _progress("waiting", processed=0, queued=1),
        _progress("completed", result={"sitemap": SITEMAP}),
    )

    async def scenario():
        async with make_client() as client:
            tracker = JobTracker(client, ProgressPoller(sleep=clock.sleep), interval=2.0)
            submitter = JobSubmitter(client, tracker)
            machine = await submitter.submit_dive({"url": "https://example.com", "max_depth": 2})
            assert machine.state is JobState.WAITING
            await clock.advance(6.0)
            polls_at_completion = len(service.calls("GET", PROGRESS_PATH))
            await clock.advance(20.0)
            result = await tracker.wait("dive-1")
            return tracker, machine, polls_at_completion, result

    tracker, machine, polls_at_completion, result = asyncio.run(scenario())

    assert polls_at_completion == 3
    assert len(service.calls("GET", PROGRESS_PATH)) == 3
    assert machine.state is JobState.COMPLETED
    assert result["sitemap"]["totalPages"] == 5
    assert len(result["sitemap"]["pages"]) == 5
    assert not tracker.is_polling("dive-1")

    body = service.body(service.calls("POST", "/api/dive")[0])
    assert body["url"] == "https://example.com"
    assert body["maxDepth"] == 2
    assert body["maxPages"] == 50
    assert body["respectRobotsTxt"] is True
    assert "userAgent" not in body


def test_failed_job_raises_on_wait(clock, service, make_client):
    service.add("POST", "/api/dive/preview", {"success": True, "jobId": "preview-1"})
    service.add("GET", "/api/dive/progress/preview-1", _progress("failed", error="DNS lookup failed"))

    async def scenario():
        async with make_client() as client:
            tracker = JobTracker(client, ProgressPoller(sleep=clock.sleep))
            submitter = JobSubmitter(client, tracker)
            await submitter.submit_preview("https://example.com")
            await clock.advance(2.0)
            await tracker.wait("preview-1")

    with pytest.raises(JobFailure, match="DNS lookup failed"):
        asyncio.run(scenario())

    assert service.body(service.calls("POST", "/api/dive/preview")[0]) == {"url": "https://example.com"}


def test_job_missing_on_service_ends_as_failed(clock, service, make_client):
    async def scenario():
        async with make_client() as client:
            tracker = JobTracker(client, ProgressPoller(sleep=clock.sleep))
            machine = tracker.track("ghost", JobKind.FULL_DIVE)
            await clock.advance(2.0)
            return tracker, machine

    tracker, machine = asyncio.run(scenario())

    assert machine.state is JobState.FAILED
    assert machine.error == "Job not found"
    assert not tracker.is_polling("ghost")


def test_cancel_stops_polling_before_delete_completes(clock, service, make_client):
    service.add("GET", PROGRESS_PATH, _progress("active", processed=1))
    service.add("DELETE", "/api/jobs/dive-1", {"success": True})

    async def scenario():
        async with make_client() as client:
            tracker = JobTracker(client, ProgressPoller(sleep=clock.sleep))
            machine = tracker.track("dive-1", JobKind.FULL_DIVE)
            await clock.advance(2.0)
            await tracker.cancel("dive-1")
            await clock.advance(10.0)
            return tracker, machine, await tracker.wait("dive-1")

    tracker, machine, result = asyncio.run(scenario())

    assert len(service.calls("GET", PROGRESS_PATH)) == 1
    assert len(service.calls("DELETE", "/api/jobs/dive-1")) == 1
    assert machine.removed
    assert result is None


def test_failed_delete_is_surfaced_but_tracking_stays_stopped(clock, service, make_client):
    service.add("GET", PROGRESS_PATH, _progress("active"))
    service.add("DELETE", "/api/jobs/dive-1", (500, {"error": "queue unavailable"}))

    async def scenario():
        async with make_client() as client:
            tracker = JobTracker(client, ProgressPoller(sleep=clock.sleep))
            tracker.track("dive-1", JobKind.FULL_DIVE)
            with pytest.raises(ServiceRejection, match="queue unavailable"):
                await tracker.cancel("dive-1")
            return tracker

    tracker = asyncio.run(scenario())

    assert not tracker.is_polling("dive-1")
    assert tracker.get("dive-1").removed


def test_invalid_dive_config_never_reaches_service(service, make_client):
    async def scenario():
        async with make_client() as client:
            submitter = JobSubmitter(client, JobTracker(client))
            await submitter.submit_dive({"url": "example.com", "max_depth": 11})

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(scenario())

    assert "url: Invalid URL format" in excinfo.value.errors
    assert any("depth" in message.lower() for message in excinfo.value.errors)
    assert service.requests == []


def test_service_rejection_of_dive_becomes_validation_error(service, make_client):
    service.add("POST", "/api/dive", (400, {"success": False, "errors": ["Domain is blocked"]}))

    async def scenario():
        async with make_client() as client:
            submitter = JobSubmitter(client, JobTracker(client))
            await submitter.submit_dive({"url": "https://blocked.example"})

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.errors == ["Domain is blocked"]


def test_validate_dive_returns_service_verdict(service, make_client):
    service.add("POST", "/api/dive/validate", {"success": True, "warnings": ["Large crawl"]})

    async def scenario():
        async with make_client() as client:
            submitter = JobSubmitter(client, JobTracker(client))
            return await submitter.validate_dive({"url": "https://example.com", "max_pages": 900})

    verdict = asyncio.run(scenario())

    assert verdict.valid is True
    assert verdict.warnings == ["Large crawl"]


def test_mass_scrape_without_valid_urls_makes_no_request(service, make_client):
    async def scenario():
        async with make_client() as client:
            submitter = JobSubmitter(client, JobTracker(client))
            await submitter.submit_mass_scrape(["not-a-url", ""])

    with pytest.raises(ValidationError, match="Please provide at least one valid URL"):
        asyncio.run(scenario())

    assert service.requests == []


def test_mass_scrape_filters_urls_and_defaults_batch_name(service, make_client):
    service.add("POST", "/api/mass-scrape", {"success": True, "data": {"batchId": "batch-1", "total": 2}})

    async def scenario():
        async with make_client() as client:
            submitter = JobSubmitter(client, JobTracker(client))
            return await submitter.submit_mass_scrape(
                [" https://a.example/x ", "nope", "https://b.example"], options={"screenshot": True}
            )

    created = asyncio.run(scenario())
    body = service.body(service.calls("POST", "/api/mass-scrape")[0])

    assert created.batch_id == "batch-1"
    assert body["urls"] == ["https://a.example/x", "https://b.example"]
    assert body["batchName"].startswith("Batch - ")
    assert body["options"] == {
        "engine": "spider",
        "timeout": 30000,
        "screenshot": True,
        "fullPage": False,
        "waitFor": 1000,
        "userAgent": "WebCrawler/1.0",
    }
    assert "createCorpus" not in body


def test_default_batch_name_uses_local_timestamp():
    assert default_batch_name(datetime(2024, 3, 9, 14, 5, 7)) == "Batch - 2024-03-09 14:05:07"


def test_job_board_stops_when_nothing_in_flight(clock, service, make_client):
    service.add(
        "GET",
        "/api/jobs",
        {"success": True, "data": {"waiting": [{"id": "a"}], "active": [{"id": "b"}], "completed": []}},
        {"success": True, "data": {"waiting": [], "active": [{"id": "b"}], "completed": [{"id": "a"}]}},
        {"success": True, "data": {"waiting": [], "active": [], "completed": [{"id": "a"}, {"id": "b"}]}},
    )

    async def scenario():
        async with make_client() as client:
            board = JobBoard(client, ProgressPoller(sleep=clock.sleep), interval=3.0)
            board.start()
            await clock.advance(30.0)
            return board

    board = asyncio.run(scenario())

    assert len(service.calls("GET", "/api/jobs")) == 3
    assert not board.is_running
    assert [snapshot.job_id for snapshot in board.listing.completed] == ["a", "b"]
    assert board.listing.completed[0].state is JobState.COMPLETED


def test_job_board_delete_refreshes(service, make_client):
    service.add("DELETE", "/api/jobs/a", httpx.Response(204))
    service.add("GET", "/api/jobs", {"success": True, "data": {"waiting": [], "active": [], "completed": []}})

    async def scenario():
        async with make_client() as client:
            return await JobBoard(client).delete("a")

    listing = asyncio.run(scenario())

    assert listing.in_flight == 0
    assert [request.method for request in service.requests] == ["DELETE", "GET"]


def test_idle_job_board_resumes_after_submission(clock, service, make_client):
    idle = {"success": True, "data": {"waiting": [], "active": [], "completed": []}}
    busy = {"success": True, "data": {"waiting": [{"id": "dive-1"}], "active": [], "completed": []}}
    service.add("GET", "/api/jobs", idle, busy, idle)
    service.add("POST", "/api/dive", {"success": True, "jobId": "dive-1"})
    service.add("GET", PROGRESS_PATH, _progress("waiting"))

    async def scenario():
        async with make_client() as client:
            board = JobBoard(client, ProgressPoller(sleep=clock.sleep), interval=3.0)
            tracker = JobTracker(client, ProgressPoller(sleep=clock.sleep))
            submitter = JobSubmitter(client, tracker, board=board)
            board.start()
            await clock.advance(3.0)
            idle_before_submit = not board.is_running
            await submitter.submit_dive({"url": "https://example.com"})
            resumed = board.is_running
            await clock.advance(6.0)
            tracker.poller.cancel_all()
            settled_again = not board.is_running
            board.stop()
            return idle_before_submit, resumed, settled_again, board.wake()

    idle_before_submit, resumed, settled_again, woken_after_stop = asyncio.run(scenario())

    assert idle_before_submit is True
    assert resumed is True
    assert settled_again is True
    assert woken_after_stop is False
    assert len(service.calls("GET", "/api/jobs")) == 3


def test_components_keep_an_empty_injected_poller(make_client):
    async def scenario():
        async with make_client() as client:
            pollers = [ProgressPoller(failure_threshold=3) for _ in range(3)]
            owners = [
                JobTracker(client, pollers[0]),
                BatchCoordinator(client, poller=pollers[1]),
                JobBoard(client, pollers[2]),
            ]
            return pollers, owners

    pollers, owners = asyncio.run(scenario())

    assert all(len(poller) == 0 for poller in pollers)
    assert all(owner.poller is poller for owner, poller in zip(owners, pollers))

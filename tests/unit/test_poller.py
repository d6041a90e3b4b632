"""Tests for the completion poller."""

from unittest.mock import AsyncMock, patch

import pytest

from ciflow.e2e_pipeline.models.circleci import Job
from ciflow.e2e_pipeline.poller import CompletionPoller, DoneReason, PollState

PREFIX = "remix-ide-browser"


def _jobs(*statuses: str) -> list[Job]:
    jobs = [
        Job(name=f"{PREFIX} ({i})", number=i + 1, status=s)
        for i, s in enumerate(statuses)
    ]
    return [*jobs, Job(name="lint", number=99, status="running")]


@pytest.fixture
def client() -> AsyncMock:
    """Create a mock CircleCI client."""
    return AsyncMock()


async def test_pending_then_done(client: AsyncMock) -> None:
    """Two terminal jobs out of three keep polling until the third finishes."""
    client.list_jobs.side_effect = [
        _jobs("success", "failed", "running"),
        _jobs("success", "failed", "success"),
    ]
    poller = CompletionPoller(client, "wf-1", [PREFIX])

    first = await poller.tick()
    assert (first.total, first.done, first.pending) == (3, 2, 1)
    assert poller.state is PollState.POLLING

    second = await poller.tick()
    assert second.pending == 0
    assert poller.state is PollState.DONE
    assert poller.reason is DoneReason.COMPLETED
    client.list_jobs.assert_awaited_with("wf-1")


async def test_wait_sleeps_between_ticks(client: AsyncMock) -> None:
    """wait sleeps the poll interval until every job is terminal."""
    client.list_jobs.side_effect = [
        _jobs("running", "queued"),
        _jobs("success", "queued"),
        _jobs("success", "canceled"),
    ]
    poller = CompletionPoller(client, "wf-1", [PREFIX], poll_interval=7)

    with patch("asyncio.sleep") as sleep:
        outcome = await poller.wait()

    assert outcome.reason is DoneReason.COMPLETED
    assert outcome.ticks == 3
    assert outcome.status.done == 2
    assert [c.args[0] for c in sleep.await_args_list] == [7, 7]


async def test_no_jobs_gives_up_after_cap(client: AsyncMock) -> None:
    """Jobs that never appear end the wait without an error."""
    client.list_jobs.return_value = [Job(name="lint", status="success")]
    poller = CompletionPoller(client, "wf-1", [PREFIX], max_empty_polls=2)

    with patch("asyncio.sleep"):
        outcome = await poller.wait()

    assert outcome.reason is DoneReason.NO_JOBS
    assert outcome.ticks == 3
    assert poller.empty_polls == 3


async def test_deadline_forces_done(client: AsyncMock) -> None:
    """An exceeded deadline ends the wait with jobs still pending."""
    client.list_jobs.return_value = _jobs("running")
    poller = CompletionPoller(client, "wf-1", [PREFIX], timeout=0)

    with patch("asyncio.sleep") as sleep:
        outcome = await poller.wait()

    assert outcome.reason is DoneReason.TIMEOUT
    assert outcome.status.pending == 1
    assert poller.state is PollState.DONE
    sleep.assert_not_awaited()

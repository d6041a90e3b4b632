"""Tests for the sticky PR comment notifier."""

from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from aioresponses import aioresponses

from ciflow.e2e_pipeline.exceptions import ConfigurationError
from ciflow.e2e_pipeline.models.circleci import Artifact
from ciflow.e2e_pipeline.models.provider_config import GitHubConfig
from ciflow.e2e_pipeline.models.report import JobOmission, Summary, SummaryFailure
from ciflow.e2e_pipeline.notifier import (
    PRNotifier,
    escape_md,
    find_report_url,
    format_run_time,
    load_summary,
    parse_pr_number,
    results_body,
)
from ciflow.e2e_pipeline.providers.github import GitHubClient

REPO = "https://api.github.com/repos/acme/app"
COMMENTS = f"{REPO}/issues/5/comments"
LIST_COMMENTS = f"{COMMENTS}?per_page=100&page=1"
MARKER = "<!-- e2e -->"
PR_URLS = ["https://github.com/acme/app/pull/5"]
NOW = datetime(2026, 10, 19, 14, 5, tzinfo=UTC)


def _summary(failures: int = 0) -> Summary:
    return Summary(
        generated_at="2026-10-19T14:00:00Z",
        workflow_name="web",
        failures=[
            SummaryFailure(job_number=11, file=f"t{i}.test.js", name=f"test {i}")
            for i in range(failures)
        ],
    )


def _notifier(set_status: bool = False) -> PRNotifier:
    client = GitHubClient(GitHubConfig(token="ghp_test"))
    return PRNotifier(client, "acme", "app", MARKER, "ci/e2e", set_status)


def _calls(m: aioresponses, method: str, url: str) -> list:
    return [
        call
        for (verb, target), calls in m.requests.items()
        if verb == method and str(target) == url
        for call in calls
    ]


def test_escape_md() -> None:
    """Markdown control characters are backslash-escaped."""
    assert escape_md("a_b [c](d) `e` *f* ~g~") == (
        r"a\_b \[c\]\(d\) \`e\` \*f\* \~g\~"
    )
    assert escape_md(None) == ""


def test_format_run_time() -> None:
    """Run times read like a calendar entry in UTC."""
    assert format_run_time(NOW) == "Mon, Oct 19, 2026, 02:05 PM UTC"


def test_parse_pr_number() -> None:
    """The first PR URL with a number wins."""
    assert parse_pr_number(["", *PR_URLS, ".../pull/9"]) == 5
    assert parse_pr_number(["https://github.com/acme/app"]) is None


def test_load_summary(tmp_path: Path) -> None:
    """Missing summaries are None; malformed ones are configuration errors."""
    path = tmp_path / "summary.json"
    assert load_summary(path) is None

    path.write_text('{"generatedAt": "x", "failures": [{"jobNumber": 3}]}')
    summary = load_summary(path)
    assert summary is not None
    assert summary.failures[0].job_number == 3

    path.write_text('{"failures": []}')
    with pytest.raises(ConfigurationError):
        load_summary(path)


def test_results_body_lists_top_failures() -> None:
    """Only the top ten failures are listed, with escaped names."""
    summary = _summary(12)
    summary.failures[0].name = "a_b"
    summary.omitted_jobs = [JobOmission(job_number=4, reason="boom")]

    body = results_body(MARKER, summary, "now", "https://report")

    assert body.startswith(MARKER)
    assert "[View HTML report](https://report)" in body
    assert "Top failing tests (10/12):" in body
    assert r"- a\_b (t0.test.js)" in body
    assert "test 11" not in body
    assert "1 job(s) could not be inspected" in body


def test_results_body_without_report_url() -> None:
    """Without a report URL the link is left out."""
    assert "View HTML report" not in results_body(MARKER, _summary(1), "now", None)


def test_empty_marker_rejected() -> None:
    """An empty marker cannot identify a comment."""
    with pytest.raises(ConfigurationError):
        PRNotifier(AsyncMock(), "acme", "app", "", "ci/e2e")


async def test_two_runs_leave_one_comment() -> None:
    """The first notification creates the comment and the second patches it."""
    notifier = _notifier()
    with aioresponses() as m:
        m.get(LIST_COMMENTS, payload=[{"id": 1, "body": "unrelated"}])
        m.post(COMMENTS, status=201, payload={"id": 7, "body": MARKER})
        m.get(
            LIST_COMMENTS,
            payload=[{"id": 1, "body": "unrelated"}, {"id": 7, "body": MARKER}],
        )
        m.patch(f"{REPO}/issues/comments/7", payload={"id": 7, "body": MARKER})

        started = await notifier.notify_started(PR_URLS, None, now=NOW)
        finished = await notifier.notify_results(_summary(2), PR_URLS, None, now=NOW)

        posted = _calls(m, "POST", COMMENTS)
        patched = _calls(m, "PATCH", f"{REPO}/issues/comments/7")

    assert started is not None and finished is not None
    assert started.id == finished.id == 7
    assert len(posted) == 1
    assert len(patched) == 1
    assert "tests have started" in posted[0].kwargs["json"]["body"]
    assert "E2E failures detected" in patched[0].kwargs["json"]["body"]


async def test_pr_resolved_from_commit() -> None:
    """Without PR URLs the first open PR containing the commit is used."""
    notifier = _notifier()
    with aioresponses() as m:
        m.get(
            f"{REPO}/commits/abc/pulls",
            payload=[{"number": 3, "state": "closed"}, {"number": 5, "state": "open"}],
        )
        m.get(LIST_COMMENTS, payload=[])
        m.post(COMMENTS, status=201, payload={"id": 8, "body": MARKER})

        comment = await notifier.notify_started([], "abc", now=NOW)

    assert comment is not None
    assert comment.id == 8


async def test_no_pr_makes_no_calls() -> None:
    """With neither a PR URL nor a commit nothing is requested."""
    notifier = _notifier(set_status=True)
    with aioresponses() as m:
        comment = await notifier.notify_results(_summary(1), [], None)
        assert not m.requests

    assert comment is None


async def test_passing_run_skipped_when_no_comment() -> None:
    """A passing run with skip_if_passing never creates a comment."""
    notifier = _notifier()
    with aioresponses() as m:
        m.get(LIST_COMMENTS, payload=[])

        comment = await notifier.notify_results(
            _summary(0), PR_URLS, None, skip_if_passing=True
        )

        assert not _calls(m, "POST", COMMENTS)
    assert comment is None


async def test_passing_run_updates_existing_comment() -> None:
    """A passing run rewrites an existing comment and marks the commit green."""
    notifier = _notifier(set_status=True)
    with aioresponses() as m:
        m.get(LIST_COMMENTS, payload=[{"id": 7, "body": f"{MARKER} old"}])
        m.patch(f"{REPO}/issues/comments/7", payload={"id": 7, "body": MARKER})
        m.post(f"{REPO}/statuses/abc", status=201, payload={})

        await notifier.notify_results(
            _summary(0), PR_URLS, "abc", skip_if_passing=True, now=NOW
        )

        body = _calls(m, "PATCH", f"{REPO}/issues/comments/7")[0].kwargs["json"]
        status = _calls(m, "POST", f"{REPO}/statuses/abc")[0].kwargs["json"]

    assert "E2E tests passed (workflow: web)" in body["body"]
    assert status["state"] == "success"
    assert status["context"] == "ci/e2e"


async def test_failure_status_links_report() -> None:
    """A failing run posts a failure status pointing at the report."""
    notifier = _notifier(set_status=True)
    with aioresponses() as m:
        m.get(LIST_COMMENTS, payload=[])
        m.post(COMMENTS, status=201, payload={"id": 9, "body": MARKER})
        m.post(f"{REPO}/statuses/abc", status=201, payload={})

        await notifier.notify_results(
            _summary(2), PR_URLS, "abc", report_url="https://report", now=NOW
        )

        status = _calls(m, "POST", f"{REPO}/statuses/abc")[0].kwargs["json"]

    assert status == {
        "state": "failure",
        "description": "2 failing E2E test(s)",
        "context": "ci/e2e",
        "target_url": "https://report",
    }


async def test_find_report_url_prefers_report_path() -> None:
    """The report artifact is preferred over any other index.html."""
    client = AsyncMock()
    client.list_artifacts.return_value = [
        Artifact(path="coverage/index.html", url="https://a/coverage"),
        Artifact(path="ci-latest-failed/index.html", url="https://a/report"),
    ]

    assert await find_report_url(client, "gh/acme/app", 42) == "https://a/report"
    client.list_artifacts.assert_awaited_once_with("gh/acme/app", 42)


async def test_find_report_url_missing() -> None:
    """No HTML artifact gives None."""
    client = AsyncMock()
    client.list_artifacts.return_value = [Artifact(path="log.txt", url="u")]

    assert await find_report_url(client, "gh/acme/app", 42) is None


async def test_omitted_jobs_never_report_green() -> None:
    """Uninspected jobs with no failures give an incomplete comment and a red status."""
    notifier = _notifier(set_status=True)
    summary = _summary(0)
    summary.omitted_jobs = [JobOmission(job_number=11, reason="503")]
    with aioresponses() as m:
        m.get(LIST_COMMENTS, payload=[])
        m.post(COMMENTS, status=201, payload={"id": 9, "body": MARKER})
        m.post(f"{REPO}/statuses/abc", status=201, payload={})

        comment = await notifier.notify_results(
            summary, PR_URLS, "abc", skip_if_passing=True, now=NOW
        )

        body = _calls(m, "POST", COMMENTS)[0].kwargs["json"]["body"]
        status = _calls(m, "POST", f"{REPO}/statuses/abc")[0].kwargs["json"]

    assert comment is not None
    assert "E2E results incomplete (workflow: web)" in body
    assert "1 job(s) could not be inspected" in body
    assert "passed" not in body
    assert "Top failing tests" not in body
    assert status["state"] == "failure"
    assert status["description"] == "1 E2E job(s) could not be inspected"

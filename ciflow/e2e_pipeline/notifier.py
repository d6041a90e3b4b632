"""Maintain a single sticky E2E status comment on a pull request."""

import logging
import re
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from ciflow.e2e_pipeline.exceptions import ConfigurationError
from ciflow.e2e_pipeline.models.github import IssueComment
from ciflow.e2e_pipeline.models.report import Summary
from ciflow.e2e_pipeline.providers.circleci import CircleCIClient
from ciflow.e2e_pipeline.providers.github import GitHubClient

logger = logging.getLogger(__name__)

TOP_FAILURES = 10
REPORT_ARTIFACT = "ci-latest-failed/index.html"
_PR_URL = re.compile(r"/pull/(\d+)")
_MD_SPECIAL = re.compile(r"([\[\]()`*_~])")


def escape_md(value: str | None) -> str:
    """Backslash-escape characters that carry meaning in GitHub Markdown."""
    return _MD_SPECIAL.sub(r"\\\1", value or "")


def format_run_time(now: datetime | None = None) -> str:
    """Human readable UTC timestamp, e.g. ``Mon, Oct 19, 2026, 02:05 PM UTC``."""
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).strftime("%a, %b %d, %Y, %I:%M %p UTC")


def parse_pr_number(pr_urls: Iterable[str]) -> int | None:
    """First pull request number found in a list of PR URLs."""
    for url in pr_urls:
        match = _PR_URL.search(url)
        if match:
            return int(match.group(1))
    return None


def load_summary(path: Path) -> Summary | None:
    """Read ``summary.json``; ``None`` if the report stage produced none.

    Raises:
        ConfigurationError: If the file exists but is not a valid summary

    """
    if not path.exists():
        return None
    try:
        return Summary.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid summary file {path}: {e}") from e


def started_body(marker: str, run_time: str) -> str:
    """Comment body while tests are running."""
    return "\n".join(
        [
            marker,
            "🟡 CI: tests have started. Waiting for results…",
            "",
            f"_Last update: {run_time}_",
            "",
            "_This comment will be updated automatically once results are available._",
        ]
    )


def passed_body(marker: str, summary: Summary, run_time: str) -> str:
    """Comment body once every test passes."""
    return "\n".join(
        [
            marker,
            f"✅ E2E tests passed (workflow: {escape_md(summary.workflow_name)})",
            "",
            f"_Last run: {run_time}_",
            "",
            "_All tests are now passing! Previous failures have been resolved._",
        ]
    )


def results_body(
    marker: str, summary: Summary, run_time: str, report_url: str | None
) -> str:
    """Comment body listing the top failing tests and any uninspected jobs."""
    failures = summary.failures
    top = failures[:TOP_FAILURES]
    workflow = escape_md(summary.workflow_name)
    if failures:
        headline = f"❌ E2E failures detected (workflow: {workflow})"
    else:
        headline = f"⚠️ E2E results incomplete (workflow: {workflow})"
    lines = [
        marker,
        headline,
        "",
        f"_Last run: {run_time}_",
        "",
    ]
    if report_url:
        lines += [f"[View HTML report]({report_url})", ""]
    if failures:
        lines.append(f"Top failing tests ({len(top)}/{len(failures)}):")
    for failure in top:
        suffix = f" ({escape_md(failure.file)})" if failure.file else ""
        lines.append(f"- {escape_md(failure.name)}{suffix}")
    if summary.omitted_jobs:
        omitted = len(summary.omitted_jobs)
        if failures:
            lines.append("")
        lines.append(f"_{omitted} job(s) could not be inspected._")
    lines += [
        "",
        "_Report generated by CI; artifacts are retained per CircleCI retention "
        "settings._",
    ]
    return "\n".join(lines)


async def find_report_url(
    client: CircleCIClient, slug: str, job_number: int
) -> str | None:
    """URL of the HTML report stored as an artifact of the current job."""
    artifacts = await client.list_artifacts(slug, job_number)
    for suffix in (REPORT_ARTIFACT, "index.html"):
        for artifact in artifacts:
            if artifact.path.endswith(suffix):
                return artifact.url
    return None


class PRNotifier:
    """Create or update the marker-identified comment on a pull request.

    At most one comment carrying ``marker`` exists on a pull request: the
    first match is always patched in place and a new one is only created
    when none is found.
    """

    def __init__(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        marker: str,
        status_context: str,
        set_status: bool = False,
    ) -> None:
        """Initialize the notifier.

        Args:
            client: Authenticated GitHub client
            owner: Repository owner
            repo: Repository name
            marker: Hidden literal identifying the sticky comment
            status_context: Commit status context name
            set_status: Whether to also post a commit status

        """
        if not marker:
            raise ConfigurationError("Comment marker must not be empty")
        self.client = client
        self.owner = owner
        self.repo = repo
        self.marker = marker
        self.status_context = status_context
        self.set_status = set_status

    async def resolve_pr(self, pr_urls: Iterable[str], sha: str | None) -> int | None:
        """PR number from explicit URLs, else the open PRs containing ``sha``."""
        number = parse_pr_number(pr_urls)
        if number is not None:
            return number
        if not sha:
            return None
        pulls = await self.client.list_pulls_for_commit(self.owner, self.repo, sha)
        open_pulls = [p for p in pulls if p.state == "open"]
        return open_pulls[0].number if open_pulls else None

    async def find_existing(self, pr_number: int) -> IssueComment | None:
        """First comment on the PR whose body contains the marker."""
        comments = await self.client.list_comments(self.owner, self.repo, pr_number)
        return next((c for c in comments if c.contains(self.marker)), None)

    async def upsert(
        self, pr_number: int, body: str, create: bool = True
    ) -> IssueComment | None:
        """Patch the sticky comment, or post it if it does not exist yet.

        Args:
            pr_number: Pull request to comment on
            body: New comment body, starting with the marker
            create: Whether a missing comment may be created

        Returns:
            The written comment, or ``None`` if nothing was written

        """
        existing = await self.find_existing(pr_number)
        if existing is not None:
            updated = await self.client.update_comment(
                self.owner, self.repo, existing.id, body
            )
            logger.info(f"Updated sticky PR comment #{existing.id}")
            return updated
        if not create:
            logger.info("No existing comment; nothing to update")
            return None
        created = await self.client.create_comment(
            self.owner, self.repo, pr_number, body
        )
        logger.info(f"Created sticky PR comment on PR #{pr_number} (id={created.id})")
        return created

    async def notify_started(
        self, pr_urls: Iterable[str], sha: str | None, now: datetime | None = None
    ) -> IssueComment | None:
        """Mark the run as started on its pull request."""
        pr_number = await self.resolve_pr(pr_urls, sha)
        if pr_number is None:
            logger.info("Cannot resolve PR number; skipping comment update")
            return None
        body = started_body(self.marker, format_run_time(now))
        comment = await self.upsert(pr_number, body)
        await self._post_status(sha, "pending", "E2E tests running")
        return comment

    async def notify_results(
        self,
        summary: Summary,
        pr_urls: Iterable[str],
        sha: str | None,
        report_url: str | None = None,
        skip_if_passing: bool = False,
        now: datetime | None = None,
    ) -> IssueComment | None:
        """Publish the outcome of a run on its pull request.

        Args:
            summary: Summary written by the report stage
            pr_urls: Pull request URLs associated with the run
            sha: Commit the run was triggered for
            report_url: Link to the HTML report
            skip_if_passing: Do not create a comment for a passing run
            now: Timestamp shown in the comment

        Returns:
            The written comment, or ``None`` if nothing was written

        """
        pr_number = await self.resolve_pr(pr_urls, sha)
        if pr_number is None:
            logger.info("Cannot resolve PR number; skipping comment update")
            return None

        run_time = format_run_time(now)
        count = len(summary.failures)
        omitted = len(summary.omitted_jobs)
        if count == 0 and omitted == 0:
            body = passed_body(self.marker, summary, run_time)
            comment = await self.upsert(pr_number, body, create=not skip_if_passing)
            await self._post_status(sha, "success", "E2E tests passed")
            return comment

        if not report_url:
            logger.warning("No HTML report URL available; comment will omit the link")
        body = results_body(self.marker, summary, run_time, report_url)
        comment = await self.upsert(pr_number, body)
        if count:
            description = f"{count} failing E2E test(s)"
        else:
            description = f"{omitted} E2E job(s) could not be inspected"
        await self._post_status(sha, "failure", description, report_url)
        return comment

    async def _post_status(
        self,
        sha: str | None,
        state: str,
        description: str,
        target_url: str | None = None,
    ) -> None:
        if not self.set_status or not sha:
            return
        await self.client.create_status(
            self.owner,
            self.repo,
            sha,
            state,
            description,
            self.status_context,
            target_url,
        )

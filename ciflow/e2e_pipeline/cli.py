"""CLI entry point for the E2E pipeline stages."""

import asyncio
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer

from ciflow.e2e_pipeline.aggregator import (
    FailureAggregator,
    extract_workflow_id,
    resolve_run,
)
from ciflow.e2e_pipeline.config_loader import load_settings, split_list
from ciflow.e2e_pipeline.exceptions import ConfigurationError, PipelineError
from ciflow.e2e_pipeline.failed_tests import SelectionMode, collect_failed_tests
from ciflow.e2e_pipeline.models.provider_config import CircleCIConfig, GitHubConfig
from ciflow.e2e_pipeline.models.report import Summary
from ciflow.e2e_pipeline.models.settings import PipelineSettings
from ciflow.e2e_pipeline.notifier import PRNotifier, find_report_url, load_summary
from ciflow.e2e_pipeline.poller import CompletionPoller, PollOutcome
from ciflow.e2e_pipeline.providers.circleci import CircleCIClient
from ciflow.e2e_pipeline.providers.github import GitHubClient
from ciflow.e2e_pipeline.report_renderer import write_report
from ciflow.e2e_pipeline.shard_planner import (
    load_timings,
    parse_test_names,
    plan_shards,
    read_manifest,
    write_manifest,
    write_overview,
)
from ciflow.e2e_pipeline.slug import SlugResolver, split_slug
from ciflow.e2e_pipeline.timings import (
    collect_timings,
    format_proposal,
    format_table,
    propose_shards,
)

# Configure logging - force reconfiguration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,  # Force reconfiguration even if already set up
)
logger = logging.getLogger(__name__)

app = typer.Typer()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    """Shard, watch, report and notify on browser E2E test runs."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@contextmanager
def _exit_on_error() -> Iterator[None]:
    """Map pipeline errors to exit codes: 2 for configuration, 1 otherwise."""
    try:
        yield
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2)
    except PipelineError as e:
        logger.error(f"Pipeline error: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def _settings(config: Path | None, jobs: str | None = None) -> PipelineSettings:
    try:
        settings = load_settings(config)
    except (FileNotFoundError, ValueError) as e:
        raise ConfigurationError(str(e)) from e
    prefixes = split_list(jobs)
    if prefixes:
        settings = settings.model_copy(update={"job_prefixes": prefixes})
    return settings


def _circleci() -> CircleCIClient:
    return CircleCIClient(CircleCIConfig.from_env())


@app.command()
def plan(
    shards: int = typer.Option(..., help="Number of shards"),
    index: int = typer.Option(..., help="Shard index to print (0-based)"),
    timings: Path | None = typer.Option(None, help="Timing store JSON"),  # noqa: B008
    manifest_out: Path | None = typer.Option(  # noqa: B008
        None, help="Write the manifest here"
    ),
    clamp_index: bool = typer.Option(
        False, help="Use shard 0 for an out-of-range index instead of failing"
    ),
) -> None:
    """Read test names from stdin and print the names of one shard."""
    stdin = typer.get_text_stream("stdin")
    names = parse_test_names(stdin.read().splitlines())
    with _exit_on_error():
        manifest = plan_shards(
            names, shards, index, load_timings(timings), clamp_index=clamp_index
        )
        if manifest_out is not None:
            write_manifest(manifest, manifest_out)

    selected = manifest.selected
    logger.info(
        f"Shard {manifest.index}/{shards}: {len(selected.items)} tests, "
        f"{selected.total:.2f}s estimated"
    )
    for name in selected.names:
        typer.echo(name)


@app.command()
def overview(
    manifest: Path = typer.Option(..., help="Manifest written by 'plan'"),  # noqa: B008
    timings: Path | None = typer.Option(None, help="Timing store JSON"),  # noqa: B008
    out_dir: Path = typer.Option(Path("."), help="Output directory"),  # noqa: B008
) -> None:
    """Write per-shard overview files from a persisted manifest."""
    with _exit_on_error():
        data = write_overview(read_manifest(manifest), out_dir, timings)
    logger.info(f"Overview stats: {data['stats']}")


@app.command()
def timings(
    workflow: str = typer.Option(..., help="Workflow name, e.g. web"),
    slug: str | None = typer.Option(None, help="CircleCI project slug gh/org/repo"),
    branch: str | None = typer.Option(None, help="Branch to filter by"),
    jobs: str = typer.Option("remix-ide-browser", help="Job name substring"),
    limit: int = typer.Option(10, help="Max workflow runs to scan"),
    top: int = typer.Option(25, help="Rows to print"),
    shards: int = typer.Option(0, help="Print a shard proposal for N shards"),
    overhead: float = typer.Option(0.0, help="Per-shard overhead seconds"),
    json_out: Path | None = typer.Option(  # noqa: B008
        None, "--json", help="Write timing JSON"
    ),
) -> None:
    """Aggregate historical test durations into a timing store."""
    with _exit_on_error():
        client = _circleci()
        resolver = SlugResolver.discover(slug)
        store = asyncio.run(
            collect_timings(client, resolver, workflow, branch, jobs, limit)
        )

    if not store.files:
        logger.info("No test timing data found")
    for line in format_table(store.files, top):
        typer.echo(line, err=True)
    if shards and store.files:
        with _exit_on_error():
            proposal = propose_shards(store.files, shards)
        for line in format_proposal(proposal, overhead):
            typer.echo(line, err=True)
    if json_out is not None:
        json_out.parent.mkdir(parents=True, exist_ok=True)
        json_out.write_text(store.model_dump_json(indent=2, exclude_none=True))
        logger.info(f"Wrote JSON to {json_out}")


@app.command("failed-tests")
def failed_tests(
    workflow: str = typer.Option(..., help="Workflow name(s), comma-separated"),
    slug: str | None = typer.Option(None, help="CircleCI project slug gh/org/repo"),
    branch: str | None = typer.Option(None, help="Branch to filter by"),
    jobs: str = typer.Option("remix-ide-browser", help="Job name substring"),
    limit: int = typer.Option(1, help="Runs to check per workflow"),
    mode: SelectionMode = typer.Option(  # noqa: B008
        SelectionMode.MOST_RECENT, help="Which runs contribute failures"
    ),
) -> None:
    """Print failing test names from recent runs, one per line."""
    names = split_list(workflow)
    with _exit_on_error():
        if not names:
            raise ConfigurationError("No workflow names provided")
        client = _circleci()
        resolver = SlugResolver.discover(slug)
        failing = asyncio.run(
            collect_failed_tests(client, resolver, names, branch, jobs, limit, mode)
        )
    for name in failing:
        typer.echo(name)


@app.command()
def wait(
    workflow_id: str = typer.Option(
        ..., envvar="CIRCLE_WORKFLOW_ID", help="Workflow to watch"
    ),
    jobs: str | None = typer.Option(None, help="Job name prefixes, comma-separated"),
    interval: float | None = typer.Option(None, help="Seconds between polls"),
    timeout: float | None = typer.Option(None, help="Overall deadline in seconds"),
    config: Path | None = typer.Option(None, help="Settings YAML"),  # noqa: B008
) -> None:
    """Block until every E2E shard job has finished, then exit 0."""
    with _exit_on_error():
        settings = _settings(config, jobs)
        poller = CompletionPoller(
            _circleci(),
            workflow_id,
            settings.job_prefixes,
            poll_interval=interval or settings.poll_interval,
            timeout=timeout or settings.wait_timeout,
            max_empty_polls=settings.max_empty_polls,
        )
        outcome: PollOutcome = asyncio.run(poller.wait())
    logger.info(f"Wait finished: {outcome.reason.value} ({outcome.ticks} ticks)")
    typer.echo(outcome.model_dump_json(exclude={"status": {"jobs"}}))


async def _report(
    settings: PipelineSettings,
    slug: str | None,
    workflow: str,
    workflow_id: str | None,
    branch: str | None,
    limit: int,
    out: Path,
    download: bool,
) -> Summary:
    explicit_id = extract_workflow_id(workflow_id)
    if workflow_id and not explicit_id:
        raise ConfigurationError(f"Invalid workflow id or URL: {workflow_id}")

    client = _circleci()
    resolver = SlugResolver.discover(slug)
    resolved_slug, run = await resolve_run(
        client, resolver, workflow, branch, limit, explicit_id
    )
    if run is None:
        logger.info("No recent workflow found")
    aggregator = FailureAggregator(client, settings, out if download else None)
    result = await aggregator.aggregate(
        resolved_slug, run, settings.job_prefixes, branch
    )
    return write_report(result, out)


@app.command()
def report(
    workflow: str = typer.Option("web", help="Workflow name to report on"),
    workflow_id: str | None = typer.Option(
        None, help="Workflow UUID or CircleCI workflow URL"
    ),
    slug: str | None = typer.Option(None, help="CircleCI project slug gh/org/repo"),
    branch: str | None = typer.Option(
        None, envvar="CIRCLE_BRANCH", help="Branch to search"
    ),
    jobs: str | None = typer.Option(None, help="Job name prefixes, comma-separated"),
    limit: int = typer.Option(15, help="Pipelines to scan back"),
    out: Path = typer.Option(  # noqa: B008
        Path("ci-latest-failed"), help="Report directory"
    ),
    download: bool = typer.Option(True, help="Download matched screenshots"),
    config: Path | None = typer.Option(None, help="Settings YAML"),  # noqa: B008
) -> None:
    """Write an HTML failure report and summary.json for a workflow run."""
    with _exit_on_error():
        settings = _settings(config, jobs)
        summary = asyncio.run(
            _report(settings, slug, workflow, workflow_id, branch, limit, out, download)
        )
    logger.info(f"{len(summary.failures)} failure(s) reported")


def _notifier(
    slug: str | None, settings: PipelineSettings, set_status: bool
) -> PRNotifier:
    owner, repo = split_slug(SlugResolver.discover(slug).candidates[0])
    return PRNotifier(
        GitHubClient(GitHubConfig.from_env()),
        owner,
        repo,
        settings.comment_marker,
        settings.status_context,
        set_status=set_status,
    )


@app.command("notify-started")
def notify_started(
    slug: str | None = typer.Option(None, help="Project slug gh/org/repo"),
    pr_urls: str = typer.Option(
        "",
        envvar=["CIRCLE_PULL_REQUESTS", "CIRCLE_PULL_REQUEST"],
        help="Pull request URLs, comma-separated",
    ),
    sha: str | None = typer.Option(None, envvar="CIRCLE_SHA1", help="Commit SHA"),
    set_status: bool = typer.Option(
        False, envvar="REPORT_SET_STATUS", help="Also set a pending commit status"
    ),
    config: Path | None = typer.Option(None, help="Settings YAML"),  # noqa: B008
) -> None:
    """Create or update the sticky PR comment in its "started" state."""
    with _exit_on_error():
        notifier = _notifier(slug, _settings(config), set_status)
        asyncio.run(notifier.notify_started(split_list(pr_urls), sha))


@app.command("notify-results")
def notify_results(
    summary_path: Path = typer.Option(  # noqa: B008
        Path("ci-latest-failed/summary.json"), "--summary", help="summary.json path"
    ),
    slug: str | None = typer.Option(None, help="Project slug gh/org/repo"),
    pr_urls: str = typer.Option(
        "",
        envvar=["CIRCLE_PULL_REQUESTS", "CIRCLE_PULL_REQUEST"],
        help="Pull request URLs, comma-separated",
    ),
    sha: str | None = typer.Option(None, envvar="CIRCLE_SHA1", help="Commit SHA"),
    report_url: str | None = typer.Option(None, help="Link to the HTML report"),
    job_number: int | None = typer.Option(
        None, envvar="CIRCLE_BUILD_NUM", help="Job that stored the report artifact"
    ),
    set_status: bool = typer.Option(
        False, envvar="REPORT_SET_STATUS", help="Also set a commit status"
    ),
    skip_if_passing: bool = typer.Option(
        False, help="Do not create a comment for a passing run"
    ),
    config: Path | None = typer.Option(None, help="Settings YAML"),  # noqa: B008
) -> None:
    """Update the sticky PR comment with the results in summary.json."""
    with _exit_on_error():
        summary = load_summary(summary_path)
        if summary is None:
            logger.info(f"{summary_path} not found; skipping")
            return
        notifier = _notifier(slug, _settings(config), set_status)
        asyncio.run(
            _notify_results(
                notifier,
                summary,
                slug,
                pr_urls,
                sha,
                report_url,
                job_number,
                skip_if_passing,
            )
        )


async def _notify_results(
    notifier: PRNotifier,
    summary: Summary,
    slug: str | None,
    pr_urls: str,
    sha: str | None,
    report_url: str | None,
    job_number: int | None,
    skip_if_passing: bool,
) -> None:
    degraded = summary.failures or summary.omitted_jobs
    if degraded and not report_url and job_number:
        resolver = SlugResolver.discover(slug)
        report_url = await find_report_url(
            _circleci(), resolver.candidates[0], job_number
        )
    await notifier.notify_results(
        summary, split_list(pr_urls), sha, report_url, skip_if_passing
    )


if __name__ == "__main__":  # pragma: no cover
    app()

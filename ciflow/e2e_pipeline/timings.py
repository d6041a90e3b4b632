"""Collect historical per-file test durations from recent CircleCI runs."""

import logging
import math
from collections.abc import Mapping, Sequence

from pydantic import BaseModel

from ciflow.e2e_pipeline.exceptions import CIRequestError
from ciflow.e2e_pipeline.models.circleci import WorkflowRun
from ciflow.e2e_pipeline.models.shard import Bin, TestItem
from ciflow.e2e_pipeline.models.timing import TimingEntry, TimingStore
from ciflow.e2e_pipeline.providers.circleci import CircleCIClient
from ciflow.e2e_pipeline.shard_planner import pack_bins
from ciflow.e2e_pipeline.slug import SlugResolver

logger = logging.getLogger(__name__)

# Sub-200ms entries are placeholders and would dilute averages
MIN_RUN_TIME = 0.2


class BalanceStats(BaseModel):
    """Spread of shard totals in a proposal."""

    mean: float
    min: float
    max: float
    stddev: float


async def find_workflow_runs(
    client: CircleCIClient,
    slug: str,
    workflow_name: str,
    branch: str | None,
    limit: int,
) -> list[WorkflowRun]:
    """Recent runs of a workflow, newest first.

    Uses the Insights API and falls back to walking pipelines when Insights
    is unavailable for the project.
    """
    try:
        return await client.list_workflow_runs(slug, workflow_name, branch, limit)
    except CIRequestError as e:
        logger.info(f"Insights unavailable for {slug} ({e}); scanning pipelines")

    runs: list[WorkflowRun] = []
    pipelines = await client.list_pipelines(slug, branch, max(50, limit * 5))
    for pipeline in pipelines:
        for workflow in await client.list_workflows(pipeline.id):
            if workflow.name == workflow_name:
                runs.append(
                    WorkflowRun(
                        id=workflow.id,
                        status=workflow.status,
                        created_at=pipeline.created_at,
                        workflow_name=workflow_name,
                    )
                )
            if len(runs) >= limit:
                return runs
    return runs


def aggregate_timings(
    per_job_max: Mapping[str, Mapping[int, float]],
) -> list[TimingEntry]:
    """Fold per-job maxima into per-file statistics, slowest average first."""
    entries: list[TimingEntry] = []
    for file, by_job in per_job_max.items():
        samples = list(by_job.values())
        if not samples:
            continue
        total = sum(samples)
        entries.append(
            TimingEntry(
                file=file,
                total=total,
                count=len(samples),
                min=min(samples),
                max=max(samples),
                avg=total / len(samples),
            )
        )
    entries.sort(key=lambda e: e.average(), reverse=True)
    return entries


async def collect_timings(
    client: CircleCIClient,
    resolver: SlugResolver,
    workflow_name: str,
    branch: str | None = None,
    job_filter: str = "remix-ide-browser",
    limit: int = 10,
) -> TimingStore:
    """Build a timing store from the successful jobs of recent runs.

    Args:
        client: CircleCI client
        resolver: Slug resolver shared by the invocation
        workflow_name: Workflow to scan
        branch: Restrict runs to this branch
        job_filter: Substring a job name must contain
        limit: Maximum number of runs to scan

    Returns:
        Aggregated timings with the query recorded in ``meta``

    """
    slug, runs = await resolver.resolve(
        lambda s: find_workflow_runs(client, s, workflow_name, branch, limit)
    )
    if not runs:
        logger.warning(f"No runs of workflow {workflow_name} found for {slug}")

    per_job_max: dict[str, dict[int, float]] = {}
    scanned = 0
    for run in runs:
        try:
            jobs = await client.list_jobs(run.id)
        except CIRequestError as e:
            logger.warning(f"Could not fetch jobs for workflow {run.id}: {e}")
            continue
        for job in jobs:
            if job_filter not in job.name or not job.number:
                continue
            if job.status and job.status != "success":
                continue
            try:
                tests = await client.list_tests(slug, job.number)
            except CIRequestError as e:
                logger.warning(f"Could not fetch tests for job #{job.number}: {e}")
                continue
            scanned += 1
            for test in tests:
                file = test.source_file
                if not file or (test.outcome and not test.is_success):
                    continue
                if test.run_time <= MIN_RUN_TIME:
                    continue
                by_job = per_job_max.setdefault(file, {})
                by_job[job.number] = max(by_job.get(job.number, 0.0), test.run_time)

    entries = aggregate_timings(per_job_max)
    logger.info(f"Aggregated {len(entries)} files from {scanned} successful job(s)")
    meta: dict[str, object] = {
        "slug": slug,
        "workflow": workflow_name,
        "branch": branch,
        "limit": limit,
        "jobsFilter": job_filter,
    }
    return TimingStore(meta=meta, files=entries)


def propose_shards(entries: Sequence[TimingEntry], shards: int) -> list[Bin]:
    """Pack files into ``shards`` bins by their average duration."""
    items = [TestItem(name=e.file, weight=e.average()) for e in entries]
    return pack_bins(items, shards)


def balance_stats(bins: Sequence[Bin]) -> BalanceStats:
    """Mean, extremes and population standard deviation of bin totals."""
    totals = [b.total for b in bins] or [0.0]
    mean = sum(totals) / len(totals)
    variance = sum((t - mean) ** 2 for t in totals) / len(totals)
    return BalanceStats(
        mean=mean, min=min(totals), max=max(totals), stddev=math.sqrt(variance)
    )


def human(seconds: float) -> str:
    """Format a duration as seconds, minutes or hours."""
    if seconds >= 3600:
        return f"{seconds / 3600:.2f}h"
    if seconds >= 60:
        return f"{seconds / 60:.2f}m"
    return f"{seconds:.2f}s"


def format_table(entries: Sequence[TimingEntry], top: int = 25) -> list[str]:
    """Tab-separated rows for the slowest files."""
    shown = entries[:top]
    lines = [f"Top {len(shown)} files by avg duration:", "avg\tcount\tmin\tmax\tfile"]
    for e in shown:
        lines.append(
            f"{human(e.average())}\t{e.count}\t{human(e.min or 0)}\t"
            f"{human(e.max or 0)}\t{e.file}"
        )
    return lines


def format_proposal(bins: Sequence[Bin], overhead: float = 0.0) -> list[str]:
    """Readable shard balance proposal, with an optional per-shard overhead."""
    lines = [f"Shard balance proposal for {len(bins)} shards:"]
    for i, b in enumerate(bins):
        if overhead:
            label = f"{human(b.total + overhead)} (incl. overhead)"
        else:
            label = human(b.total)
        lines.append(f"#{i}: {label} across {len(b.items)} files")
    stats = balance_stats(bins)
    lines.append(
        f"Summary: mean={human(stats.mean)} min={human(stats.min)} "
        f"max={human(stats.max)} stddev={human(stats.stddev)}"
    )
    if overhead:
        lines.append(f"Assumed per-shard overhead: {human(overhead)}")
    return lines

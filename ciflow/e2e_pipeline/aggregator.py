"""Correlate failing test records with diagnostic screenshots for a run."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Sequence
from pathlib import Path, PurePosixPath
from typing import TypeVar

from pydantic import BaseModel, Field

from ciflow.e2e_pipeline.exceptions import CIRequestError, NotFoundError
from ciflow.e2e_pipeline.models.circleci import Artifact, Job
from ciflow.e2e_pipeline.models.report import (
    AggregationResult,
    FailureRecord,
    JobOmission,
    OrphanArtifact,
    Run,
)
from ciflow.e2e_pipeline.models.settings import PipelineSettings, ScoringPolicy
from ciflow.e2e_pipeline.models.test_result import TestResult
from ciflow.e2e_pipeline.providers.circleci import CircleCIClient
from ciflow.e2e_pipeline.slug import SlugResolver, normalize_slug

logger = logging.getLogger(__name__)

T = TypeVar("T")

_WORKFLOW_URL = re.compile(r"/workflows/([0-9a-fA-F-]{36})")
_UUID = re.compile(r"^[0-9a-fA-F-]{36}$")
_SOURCE_EXTENSION = re.compile(r"\.(js|ts|mjs|cjs|jsx)$", re.IGNORECASE)
_TEST_IN_NAME = re.compile(r"([A-Za-z0-9_\-]+\.(test|spec))", re.IGNORECASE)
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def extract_workflow_id(value: str | None) -> str | None:
    """Accept a raw workflow UUID or a pasted CircleCI workflow URL."""
    if not value:
        return None
    value = value.strip()
    match = _WORKFLOW_URL.search(value)
    if match:
        return match.group(1)
    return value if _UUID.match(value) else None


def normalize(value: str) -> str:
    """Lower-case and drop every non-alphanumeric character."""
    return _NON_ALNUM.sub("", value.lower())


def derive_test_base(test: TestResult) -> str:
    """Best guess at the test file basename behind a test record."""
    source = test.source_file
    if source:
        name = PurePosixPath(source.replace("\\", "/")).name
        base = _SOURCE_EXTENSION.sub("", name)
        if base:
            return base
    match = _TEST_IN_NAME.search(test.name)
    if match:
        return re.sub(r"\.(test|spec)$", "", match.group(1), flags=re.IGNORECASE)
    return test.name.strip()[:80]


def artifact_name(artifact: Artifact) -> str:
    """Basename of an artifact path."""
    return PurePosixPath(artifact.path).name


def is_diagnostic(artifact: Artifact, settings: PipelineSettings) -> bool:
    """Whether the artifact is an image under the diagnostic path convention."""
    path = artifact.path
    extensions = tuple(ext.lower() for ext in settings.image_extensions)
    return settings.artifact_path_pattern in path and path.lower().endswith(extensions)


def select_artifacts(
    artifacts: Sequence[Artifact], failing: Sequence[TestResult], failed_marker: str
) -> list[Artifact]:
    """Keep artifacts related to a failing test or carrying the failure marker."""
    bases = [b for b in (normalize(derive_test_base(t)) for t in failing) if b]
    selected: list[Artifact] = []
    for artifact in artifacts:
        name = artifact_name(artifact)
        normalized = normalize(name)
        if any(base in normalized for base in bases) or failed_marker in name:
            selected.append(artifact)
    return selected


def score_artifact(name: str, base: str, test_name: str, policy: ScoringPolicy) -> int:
    """Additive match score of an artifact name against one failing test."""
    normalized = normalize(name)
    norm_base = normalize(base)
    norm_name = normalize(test_name)
    score = 0
    if norm_base and norm_base in normalized:
        score += policy.basename_weight
    if norm_name and norm_name in normalized:
        score += policy.name_weight
    if any(hint in normalized for hint in policy.hints):
        score += policy.hint_weight
    return score


def pick_best_match(
    candidates: Sequence[Artifact], base: str, test_name: str, policy: ScoringPolicy
) -> Artifact | None:
    """Highest-scoring candidate; the first candidate if nothing scores."""
    best: Artifact | None = None
    best_score = 0
    for artifact in candidates:
        score = score_artifact(artifact_name(artifact), base, test_name, policy)
        if score > best_score:
            best, best_score = artifact, score
    if best is None and candidates:
        return candidates[0]
    return best


def correlate(
    job: Job,
    failing: Sequence[TestResult],
    selected: Sequence[Artifact],
    policy: ScoringPolicy,
) -> tuple[list[FailureRecord], list[OrphanArtifact]]:
    """Pair each failing test with an image and collect unused images."""
    failures: list[FailureRecord] = []
    used: set[str] = set()
    for test in failing:
        image = pick_best_match(selected, derive_test_base(test), test.name, policy)
        failures.append(FailureRecord(job=job, test=test, image=image))
        if image is not None:
            used.add(image.path)
    orphans = [
        OrphanArtifact(job=job, artifact=a) for a in selected if a.path not in used
    ]
    return failures, orphans


async def find_latest_run(
    client: CircleCIClient,
    slug: str,
    workflow_name: str,
    branch: str | None,
    limit: int,
) -> list[Run]:
    """Most recent pipeline on the branch that has a workflow with this name."""
    pipelines = await client.list_pipelines(slug, branch, limit)
    for pipeline in pipelines:
        workflows = await client.list_workflows(pipeline.id)
        matches = [w for w in workflows if w.name == workflow_name]
        if matches:
            matches.sort(key=lambda w: w.created_at or "", reverse=True)
            return [Run(pipeline=pipeline, workflow=matches[0])]
    return []


async def resolve_run(
    client: CircleCIClient,
    resolver: SlugResolver,
    workflow_name: str,
    branch: str | None,
    limit: int = 15,
    workflow_id: str | None = None,
) -> tuple[str, Run | None]:
    """Locate the run to report on.

    Args:
        client: CircleCI client
        resolver: Slug resolver shared by the invocation
        workflow_name: Workflow to look for when no id is given
        branch: Branch to filter pipelines by
        limit: Pipelines to scan back
        workflow_id: Explicit workflow, skipping the branch search

    Returns:
        The slug used and the run, or ``None`` when nothing matches

    """
    if workflow_id:
        slug = resolver.resolved or resolver.candidates[0]
        try:
            workflow = await client.get_workflow(workflow_id)
        except NotFoundError:
            logger.info(f"Workflow {workflow_id} not found")
            return slug, None
        if workflow.project_slug:
            slug = normalize_slug(workflow.project_slug)
            resolver.resolved = slug
            logger.info(f"Resolved project slug from workflow: {slug}")
        pipeline = None
        if workflow.pipeline_id:
            try:
                pipeline = await client.get_pipeline(workflow.pipeline_id)
            except NotFoundError:
                logger.info(f"Pipeline {workflow.pipeline_id} not found")
        return slug, Run(pipeline=pipeline, workflow=workflow)

    slug, runs = await resolver.resolve(
        lambda s: find_latest_run(client, s, workflow_name, branch, limit)
    )
    return slug, runs[0] if runs else None


async def _listing(
    call: Awaitable[list[T]], number: int, what: str
) -> tuple[list[T], str | None]:
    """Await one per-job listing; a failure yields no records and its reason."""
    try:
        return await call, None
    except NotFoundError:
        logger.info(f"Job #{number}: no {what} data")
        return [], None
    except CIRequestError as e:
        logger.warning(f"Job #{number}: {what} unavailable: {e}")
        return [], str(e)


class JobFindings(BaseModel):
    """What one job contributed to the report."""

    job: Job
    failures: list[FailureRecord] = Field(default_factory=list)
    orphans: list[OrphanArtifact] = Field(default_factory=list)
    omission: JobOmission | None = None


class FailureAggregator:
    """Fetch failing tests and screenshots per job and correlate them."""

    def __init__(
        self,
        client: CircleCIClient,
        settings: PipelineSettings,
        download_dir: Path | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            client: CircleCI client
            settings: Artifact conventions, scoring policy and concurrency
            download_dir: Report directory to download selected images into

        """
        self.client = client
        self.settings = settings
        self.download_dir = download_dir

    async def aggregate(
        self,
        slug: str,
        run: Run | None,
        patterns: list[str],
        branch: str | None = None,
    ) -> AggregationResult:
        """Build failure records for every matching terminal job of ``run``."""
        if run is None:
            return AggregationResult(slug=slug, branch=branch)

        jobs = run.jobs or await self.client.list_jobs(run.workflow.id)
        run = run.model_copy(update={"jobs": jobs})
        targets = [
            j
            for j in jobs
            if j.matches(patterns) and j.is_terminal and j.number is not None
        ]
        if not targets:
            logger.info("No completed target jobs in workflow")
        logger.info(
            f"Matched {len(targets)} job(s): "
            + ", ".join(f"{j.name}#{j.number}" for j in targets)
        )

        semaphore = asyncio.Semaphore(self.settings.concurrency)
        findings = await asyncio.gather(
            *(self._collect_job(slug, job, semaphore) for job in targets)
        )
        findings = sorted(findings, key=lambda f: f.job.number or 0)

        result = AggregationResult(
            slug=slug,
            run=run,
            branch=(run.pipeline.branch if run.pipeline else None) or branch,
        )
        for found in findings:
            result.failures.extend(found.failures)
            result.orphans.extend(found.orphans)
            if found.omission is not None:
                result.omissions.append(found.omission)
        return result

    async def _collect_job(
        self, slug: str, job: Job, semaphore: asyncio.Semaphore
    ) -> JobFindings:
        number = job.number or 0
        async with semaphore:
            (tests, tests_error), (artifacts, artifacts_error) = await asyncio.gather(
                _listing(self.client.list_tests(slug, number), number, "tests"),
                _listing(self.client.list_artifacts(slug, number), number, "artifacts"),
            )

            failing = [t for t in tests if t.is_failure]
            diagnostics = [a for a in artifacts if is_diagnostic(a, self.settings)]
            marker = self.settings.failed_marker
            selected = select_artifacts(diagnostics, failing, marker)
            if self.download_dir is not None:
                selected = [
                    await self._download(job, a, self.download_dir) for a in selected
                ]

        logger.info(
            f"Job #{number}: {len(failing)} failing test(s), {len(diagnostics)} "
            f"screenshots found, {len(selected)} selected"
        )
        failures, orphans = correlate(job, failing, selected, self.settings.scoring)
        reasons = [r for r in (tests_error, artifacts_error) if r]
        omission = None
        if reasons:
            omission = JobOmission(
                job_number=job.number, name=job.name, reason="; ".join(reasons)
            )
        return JobFindings(
            job=job, failures=failures, orphans=orphans, omission=omission
        )

    async def _download(self, job: Job, artifact: Artifact, out_dir: Path) -> Artifact:
        pattern = self.settings.artifact_path_pattern
        tail = artifact.path.split(pattern, 1)[-1]
        relative = PurePosixPath(f"job-{job.number}") / "screenshots" / tail
        try:
            await self.client.download(artifact.url, out_dir / relative)
        except CIRequestError as e:
            logger.warning(f"Failed to download {artifact.path}: {e}")
            return artifact
        return artifact.model_copy(update={"local_path": str(relative)})

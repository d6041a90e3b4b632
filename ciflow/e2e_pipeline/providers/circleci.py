"""CircleCI API v2 client."""

import logging
from pathlib import Path

import aiohttp

from ciflow.e2e_pipeline.exceptions import CIRequestError, NotFoundError, PipelineError
from ciflow.e2e_pipeline.models.circleci import (
    Artifact,
    Job,
    Pipeline,
    Workflow,
    WorkflowRun,
)
from ciflow.e2e_pipeline.models.provider_config import CircleCIConfig
from ciflow.e2e_pipeline.models.test_result import TestResult
from ciflow.e2e_pipeline.providers.base import ApiProvider, retrying_call

logger = logging.getLogger(__name__)


class CircleCIClient(ApiProvider):
    """Read-only accessors over pipelines, workflows, jobs, tests and artifacts."""

    def __init__(self, config: CircleCIConfig) -> None:
        """Initialize CircleCI client with configuration."""
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.max_retries = config.max_retries
        self.backoff = config.backoff
        self.timeout = config.timeout

    async def _headers(self) -> dict[str, str]:
        return {"Circle-Token": self.config.token, "Accept": "application/json"}

    def _error(self, path: str, status: int | None, message: str) -> PipelineError:
        if status == 404:
            return NotFoundError(path, status, message)
        return CIRequestError(path, status, message)

    async def list_pipelines(
        self, slug: str, branch: str | None = None, limit: int = 25
    ) -> list[Pipeline]:
        """List the most recent pipelines of a project, optionally by branch."""
        params = {"branch": branch} if branch else {}
        items = await self.get_paged(f"/project/{slug}/pipeline", params, limit=limit)
        return [Pipeline.model_validate(item) for item in items]

    async def get_pipeline(self, pipeline_id: str) -> Pipeline:
        """Fetch one pipeline."""
        data = await self.get_json(f"/pipeline/{pipeline_id}")
        return Pipeline.model_validate(data)

    async def list_workflows(self, pipeline_id: str) -> list[Workflow]:
        """List the workflows of a pipeline."""
        items = await self.get_paged(f"/pipeline/{pipeline_id}/workflow")
        return [Workflow.model_validate(item) for item in items]

    async def get_workflow(self, workflow_id: str) -> Workflow:
        """Fetch one workflow."""
        data = await self.get_json(f"/workflow/{workflow_id}")
        return Workflow.model_validate(data)

    async def list_workflow_runs(
        self, slug: str, workflow_name: str, branch: str | None = None, limit: int = 10
    ) -> list[WorkflowRun]:
        """List historical runs of a named workflow via the Insights API."""
        params = {"branch": branch} if branch else {}
        items = await self.get_paged(
            f"/insights/{slug}/workflows/{workflow_name}/runs", params, limit=limit
        )
        return [
            WorkflowRun.model_validate({**item, "workflow_name": workflow_name})
            for item in items
        ]

    async def list_jobs(self, workflow_id: str) -> list[Job]:
        """List the jobs of a workflow, including matrix children."""
        items = await self.get_paged(f"/workflow/{workflow_id}/job")
        return [Job.model_validate(item) for item in items]

    async def list_tests(self, slug: str, job_number: int) -> list[TestResult]:
        """List the JUnit test results recorded by a job."""
        items = await self.get_paged(f"/project/{slug}/{job_number}/tests")
        return [TestResult.model_validate(item) for item in items]

    async def list_artifacts(self, slug: str, job_number: int) -> list[Artifact]:
        """List the artifacts stored by a job."""
        items = await self.get_paged(f"/project/{slug}/{job_number}/artifacts")
        return [Artifact.model_validate(item) for item in items]

    async def download(self, url: str, dest: Path) -> Path:
        """Download an artifact to ``dest``, creating parent directories."""

        async def fetch() -> bytes:
            headers = await self._headers()
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            try:
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.get(url, headers=headers) as response:
                        if response.status != 200:
                            text = await response.text()
                            raise self._error(url, response.status, text)
                        return await response.read()
            except aiohttp.ClientError as e:
                raise self._error(url, None, str(e)) from e

        content = await retrying_call(
            fetch, retries=self.max_retries, backoff=self.backoff
        )
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)
        logger.debug(f"Downloaded {url} to {dest}")
        return dest

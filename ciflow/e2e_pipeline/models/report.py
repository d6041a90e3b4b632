"""Models for aggregated failures and the machine-readable summary."""

from pydantic import BaseModel, ConfigDict, Field

from ciflow.e2e_pipeline.models.circleci import Artifact, Job, Pipeline, Workflow
from ciflow.e2e_pipeline.models.test_result import TestResult


class Run(BaseModel):
    """A resolved pipeline + workflow pair."""

    pipeline: Pipeline | None = None
    workflow: Workflow
    jobs: list[Job] = Field(default_factory=list)

    @property
    def pipeline_id(self) -> str | None:
        """Pipeline identifier, if the pipeline is known."""
        return self.pipeline.id if self.pipeline else self.workflow.pipeline_id

    @property
    def pipeline_number(self) -> int | None:
        """Pipeline number, if known."""
        if self.pipeline and self.pipeline.number is not None:
            return self.pipeline.number
        return self.workflow.pipeline_number


class FailureRecord(BaseModel):
    """A failing test and its best-matching diagnostic image, if any."""

    job: Job
    test: TestResult
    image: Artifact | None = None


class OrphanArtifact(BaseModel):
    """A selected diagnostic with no matching failing-test record."""

    job: Job
    artifact: Artifact


class JobOmission(BaseModel):
    """A job whose results could not be fetched."""

    job_number: int | None = Field(default=None, alias="jobNumber")
    name: str = ""
    reason: str = ""

    model_config = ConfigDict(populate_by_name=True)


class AggregationResult(BaseModel):
    """Everything the report renderer needs for one run."""

    slug: str
    run: Run | None = None
    branch: str | None = None
    failures: list[FailureRecord] = Field(default_factory=list)
    orphans: list[OrphanArtifact] = Field(default_factory=list)
    omissions: list[JobOmission] = Field(default_factory=list)


class SummaryFailure(BaseModel):
    """One failure entry in ``summary.json``."""

    model_config = ConfigDict(populate_by_name=True)

    job_number: int | None = Field(default=None, alias="jobNumber")
    file: str = ""
    name: str = ""
    image: str | None = None


class Summary(BaseModel):
    """Contents of ``summary.json``, consumed by the PR notifier."""

    model_config = ConfigDict(populate_by_name=True)

    generated_at: str = Field(..., alias="generatedAt")
    pipeline_number: int | None = Field(default=None, alias="pipelineNumber")
    pipeline_id: str | None = Field(default=None, alias="pipelineId")
    workflow_id: str | None = Field(default=None, alias="workflowId")
    branch: str | None = None
    workflow_status: str | None = Field(default=None, alias="workflowStatus")
    workflow_name: str | None = Field(default=None, alias="workflowName")
    failures: list[SummaryFailure] = Field(default_factory=list)
    omitted_jobs: list[JobOmission] = Field(default_factory=list, alias="omittedJobs")

"""Typed records for CircleCI API v2 resources."""

from pydantic import AliasChoices, BaseModel, Field, model_validator

TERMINAL_STATUSES = frozenset({"success", "failed", "error", "canceled", "cancelled"})


class Pipeline(BaseModel):
    """A CircleCI pipeline."""

    id: str
    number: int | None = None
    state: str | None = None
    created_at: str | None = None
    branch: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _lift_branch(cls, data: object) -> object:
        if isinstance(data, dict) and "branch" not in data:
            vcs = data.get("vcs")
            if isinstance(vcs, dict) and vcs.get("branch"):
                return {**data, "branch": vcs["branch"]}
        return data


class Workflow(BaseModel):
    """A workflow belonging to a pipeline."""

    id: str
    name: str = ""
    status: str = ""
    project_slug: str | None = None
    pipeline_id: str | None = None
    pipeline_number: int | None = None
    created_at: str | None = None


class WorkflowRun(BaseModel):
    """A historical workflow run from the Insights API."""

    id: str
    status: str = ""
    created_at: str | None = None
    workflow_name: str | None = None


class Job(BaseModel):
    """A job (possibly a matrix child) inside a workflow."""

    id: str | None = None
    name: str = ""
    number: int | None = Field(
        default=None, validation_alias=AliasChoices("job_number", "number")
    )
    status: str = ""

    @property
    def is_terminal(self) -> bool:
        """Whether the job can no longer change state."""
        return self.status.lower() in TERMINAL_STATUSES

    def matches(self, prefixes: list[str]) -> bool:
        """Whether the job name equals or starts with any of the prefixes."""
        return any(p and self.name.startswith(p) for p in prefixes)


class Artifact(BaseModel):
    """A file stored by a job."""

    path: str
    url: str = ""
    node_index: int | None = None
    local_path: str | None = Field(
        default=None, description="Report-relative path once downloaded"
    )

"""Pipeline settings, loadable from a YAML file."""

from pydantic import BaseModel, Field


class ScoringPolicy(BaseModel):
    """Weights used to pick the best screenshot for a failing test."""

    basename_weight: int = Field(
        default=5, description="Artifact name contains the test file basename"
    )
    name_weight: int = Field(
        default=3, description="Artifact name contains the test display name"
    )
    hint_weight: int = Field(
        default=1, description="Artifact name contains a failure hint"
    )
    hints: list[str] = Field(
        default_factory=lambda: ["fail", "error", "assert", "timeout"],
        description="Failure-indicative substrings",
    )


class PipelineSettings(BaseModel):
    """Tunables shared by the wait, report and notify stages."""

    job_prefixes: list[str] = Field(
        default_factory=lambda: ["remix-ide-browser"],
        description="Job name prefixes that identify E2E shard jobs",
    )
    poll_interval: float = Field(default=10.0, gt=0, description="Seconds per tick")
    wait_timeout: float = Field(default=3600.0, gt=0, description="Wait deadline")
    max_empty_polls: int = Field(
        default=30, ge=0, description="Ticks without matching jobs before giving up"
    )
    artifact_path_pattern: str = Field(
        default="reports/screenshots/",
        description="Path segment that marks diagnostic artifacts",
    )
    image_extensions: list[str] = Field(
        default_factory=lambda: [".png", ".jpg", ".jpeg", ".gif"]
    )
    failed_marker: str = Field(
        default="FAILED", description="Literal marking orphan diagnostics"
    )
    scoring: ScoringPolicy = Field(default_factory=ScoringPolicy)
    concurrency: int = Field(default=4, ge=1, description="Parallel per-job fetches")
    comment_marker: str = Field(
        default="<!-- ciflow-e2e-report -->",
        description="Hidden marker identifying the sticky PR comment",
    )
    status_context: str = Field(default="ciflow/e2e-report")

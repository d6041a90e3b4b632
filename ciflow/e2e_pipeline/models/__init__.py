"""Data models for shards, timings, CI resources, reports and configuration."""

from ciflow.e2e_pipeline.models.circleci import (
    TERMINAL_STATUSES,
    Artifact,
    Job,
    Pipeline,
    Workflow,
    WorkflowRun,
)
from ciflow.e2e_pipeline.models.github import IssueComment, PullRequest
from ciflow.e2e_pipeline.models.provider_config import CircleCIConfig, GitHubConfig
from ciflow.e2e_pipeline.models.report import (
    AggregationResult,
    FailureRecord,
    JobOmission,
    OrphanArtifact,
    Run,
    Summary,
    SummaryFailure,
)
from ciflow.e2e_pipeline.models.settings import PipelineSettings, ScoringPolicy
from ciflow.e2e_pipeline.models.shard import Bin, Manifest, TestItem
from ciflow.e2e_pipeline.models.test_result import TestResult
from ciflow.e2e_pipeline.models.timing import TimingEntry, TimingStore

__all__ = [
    "TERMINAL_STATUSES",
    "AggregationResult",
    "Artifact",
    "Bin",
    "CircleCIConfig",
    "FailureRecord",
    "GitHubConfig",
    "IssueComment",
    "Job",
    "JobOmission",
    "Manifest",
    "OrphanArtifact",
    "Pipeline",
    "PipelineSettings",
    "PullRequest",
    "Run",
    "ScoringPolicy",
    "Summary",
    "SummaryFailure",
    "TestItem",
    "TestResult",
    "TimingEntry",
    "TimingStore",
    "Workflow",
    "WorkflowRun",
]

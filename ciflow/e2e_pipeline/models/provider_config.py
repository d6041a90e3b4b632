"""Configuration models for the CI and code-hosting APIs."""

import os

from pydantic import BaseModel, Field

from ciflow.e2e_pipeline.exceptions import ConfigurationError


def _first_env(*names: str) -> str | None:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


class CircleCIConfig(BaseModel):
    """Configuration for the CircleCI API v2 client."""

    token: str = Field(..., description="CircleCI personal or project API token")
    base_url: str = Field(
        default="https://circleci.com/api/v2", description="CircleCI API base URL"
    )
    max_retries: int = Field(default=3, ge=0, description="Retries per request")
    backoff: float = Field(
        default=0.5, ge=0, description="Linear backoff step in seconds"
    )
    timeout: float = Field(default=20.0, gt=0, description="Per-request timeout")

    @classmethod
    def from_env(cls) -> "CircleCIConfig":
        """Build from ``CIRCLECI_TOKEN`` (or ``CIRCLE_TOKEN``)."""
        token = _first_env("CIRCLECI_TOKEN", "CIRCLE_TOKEN")
        if not token:
            raise ConfigurationError("CIRCLECI_TOKEN env var is required")
        return cls(token=token)


class GitHubConfig(BaseModel):
    """Configuration for the GitHub API, as an App or with a personal token."""

    token: str | None = Field(default=None, description="Personal access token")
    app_id: str | None = Field(default=None, description="GitHub App id")
    installation_id: str | None = Field(
        default=None, description="GitHub App installation id"
    )
    private_key: str | None = Field(
        default=None, description="PEM private key, literal or \\n-escaped"
    )
    base_url: str = Field(
        default="https://api.github.com", description="GitHub API base URL"
    )

    @property
    def has_app_credentials(self) -> bool:
        """Whether all three GitHub App values are present."""
        return bool(self.app_id and self.installation_id and self.private_key)

    @classmethod
    def from_env(cls) -> "GitHubConfig":
        """Build from the PR-bot environment variables."""
        config = cls(
            token=_first_env("GH_PR_COMMENT_TOKEN", "GITHUB_TOKEN", "GH_TOKEN"),
            app_id=_first_env("CI_PR_BOT_APP_ID", "APP_ID"),
            installation_id=_first_env("CI_PR_BOT_INSTALLATION_ID", "INSTALLATION_ID"),
            private_key=_first_env("CI_PR_BOT_PRIVATE_KEY", "APP_PRIVATE_KEY"),
        )
        if "GITHUB_API_URL" in os.environ:
            config.base_url = os.environ["GITHUB_API_URL"]
        if not config.has_app_credentials and not config.token:
            raise ConfigurationError(
                "Missing GitHub auth: set GH_PR_COMMENT_TOKEN or "
                "CI_PR_BOT_APP_ID/CI_PR_BOT_INSTALLATION_ID/CI_PR_BOT_PRIVATE_KEY"
            )
        return config

"""Custom exceptions for the E2E pipeline."""


class PipelineError(Exception):
    """Base exception for pipeline errors."""


class ConfigurationError(PipelineError):
    """Missing token, unresolvable repository identity or bad arguments."""


class CIRequestError(PipelineError):
    """A CI API request kept failing after all retries."""

    def __init__(self, path: str, status: int | None, message: str) -> None:
        """Initialize with the request path and last observed status."""
        self.path = path
        self.status = status
        super().__init__(f"CircleCI request {path} failed ({status}): {message}")


class NotFoundError(CIRequestError):
    """The requested CI resource does not exist."""


class GitHubAPIError(PipelineError):
    """A code-hosting API call returned a non-2xx status."""

    def __init__(self, path: str, status: int, message: str) -> None:
        """Initialize with the request path and response status."""
        self.path = path
        self.status = status
        super().__init__(f"GitHub {status} {path}: {message}")

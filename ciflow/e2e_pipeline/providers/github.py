"""GitHub REST client for pull request comments and commit statuses."""

import logging

from ciflow.e2e_pipeline.exceptions import GitHubAPIError, PipelineError
from ciflow.e2e_pipeline.models.github import IssueComment, PullRequest
from ciflow.e2e_pipeline.models.provider_config import GitHubConfig
from ciflow.e2e_pipeline.providers.base import ApiProvider
from ciflow.e2e_pipeline.providers.github_auth import resolve_auth_header

logger = logging.getLogger(__name__)

COMMENTS_PER_PAGE = 100
MAX_COMMENT_PAGES = 10


class GitHubClient(ApiProvider):
    """Authenticated accessor over the GitHub REST API.

    Failed calls are never retried: a non-2xx response raises
    ``GitHubAPIError`` immediately.
    """

    max_retries = 0

    def __init__(self, config: GitHubConfig) -> None:
        """Initialize GitHub client with configuration."""
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._auth_header: str | None = None

    async def _headers(self) -> dict[str, str]:
        if self._auth_header is None:
            self._auth_header = await resolve_auth_header(self.config)
        return {
            "Authorization": self._auth_header,
            "Accept": "application/vnd.github+json",
        }

    def _error(self, path: str, status: int | None, message: str) -> PipelineError:
        return GitHubAPIError(path, status or 0, message)

    async def list_comments(
        self, owner: str, repo: str, pr_number: int
    ) -> list[IssueComment]:
        """List the issue comments of a pull request, oldest first."""
        comments: list[IssueComment] = []
        for page in range(1, MAX_COMMENT_PAGES + 1):
            data = await self.request(
                "GET",
                f"/repos/{owner}/{repo}/issues/{pr_number}/comments",
                params={"per_page": str(COMMENTS_PER_PAGE), "page": str(page)},
            )
            batch = data if isinstance(data, list) else []
            comments.extend(
                IssueComment.model_validate(c) for c in batch if isinstance(c, dict)
            )
            if len(batch) < COMMENTS_PER_PAGE:
                break
        return comments

    async def create_comment(
        self, owner: str, repo: str, pr_number: int, body: str
    ) -> IssueComment:
        """Post a new comment on a pull request."""
        data = await self.request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{pr_number}/comments",
            payload={"body": body},
        )
        return IssueComment.model_validate(data)

    async def update_comment(
        self, owner: str, repo: str, comment_id: int, body: str
    ) -> IssueComment:
        """Replace the body of an existing comment."""
        data = await self.request(
            "PATCH",
            f"/repos/{owner}/{repo}/issues/comments/{comment_id}",
            payload={"body": body},
        )
        return IssueComment.model_validate(data)

    async def list_pulls_for_commit(
        self, owner: str, repo: str, sha: str
    ) -> list[PullRequest]:
        """List pull requests that contain a commit."""
        data = await self.request("GET", f"/repos/{owner}/{repo}/commits/{sha}/pulls")
        batch = data if isinstance(data, list) else []
        return [PullRequest.model_validate(p) for p in batch if isinstance(p, dict)]

    async def create_status(
        self,
        owner: str,
        repo: str,
        sha: str,
        state: str,
        description: str,
        context: str,
        target_url: str | None = None,
    ) -> None:
        """Set a commit status."""
        payload: dict[str, object] = {
            "state": state,
            "description": description,
            "context": context,
        }
        if target_url:
            payload["target_url"] = target_url
        path = f"/repos/{owner}/{repo}/statuses/{sha}"
        await self.request("POST", path, payload=payload)
        logger.info(f"Set commit status {context}: {state}")

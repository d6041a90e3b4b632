"""Typed records for the GitHub REST resources the notifier touches."""

from pydantic import BaseModel


class IssueComment(BaseModel):
    """A pull request (issue) comment."""

    id: int
    body: str | None = None
    html_url: str | None = None

    def contains(self, marker: str) -> bool:
        """Whether the comment body embeds ``marker``."""
        return isinstance(self.body, str) and marker in self.body


class PullRequest(BaseModel):
    """A pull request associated with a commit."""

    number: int
    state: str = "open"
    html_url: str | None = None

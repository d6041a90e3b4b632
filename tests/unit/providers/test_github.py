"""Tests for the GitHub client."""

import pytest
from aioresponses import aioresponses

from ciflow.e2e_pipeline.exceptions import GitHubAPIError
from ciflow.e2e_pipeline.models.provider_config import GitHubConfig
from ciflow.e2e_pipeline.providers.github import GitHubClient

REPO = "https://api.github.com/repos/acme/app"


@pytest.fixture
def client() -> GitHubClient:
    """Create a GitHub client authenticated with a personal token."""
    return GitHubClient(GitHubConfig(token="ghp_test"))


async def test_list_comments_stops_on_short_page(client: GitHubClient) -> None:
    """list_comments stops paging once a page is not full."""
    with aioresponses() as m:
        m.get(
            f"{REPO}/issues/5/comments?per_page=100&page=1",
            payload=[{"id": 1, "body": "hello"}, {"id": 2, "body": None}],
        )
        comments = await client.list_comments("acme", "app", 5)
        call = next(iter(m.requests.values()))[0]

    assert [c.id for c in comments] == [1, 2]
    assert call.kwargs["headers"]["Authorization"] == "token ghp_test"


async def test_list_comments_reads_next_page(client: GitHubClient) -> None:
    """list_comments fetches the next page after a full one."""
    full = [{"id": i, "body": "x"} for i in range(100)]
    with aioresponses() as m:
        m.get(f"{REPO}/issues/5/comments?per_page=100&page=1", payload=full)
        m.get(
            f"{REPO}/issues/5/comments?per_page=100&page=2",
            payload=[{"id": 100, "body": "last"}],
        )
        comments = await client.list_comments("acme", "app", 5)

    assert len(comments) == 101


async def test_create_and_update_comment(client: GitHubClient) -> None:
    """Comments are created on the issue and patched by id."""
    with aioresponses() as m:
        m.post(f"{REPO}/issues/5/comments", status=201, payload={"id": 9, "body": "a"})
        m.patch(f"{REPO}/issues/comments/9", payload={"id": 9, "body": "b"})
        created = await client.create_comment("acme", "app", 5, "a")
        updated = await client.update_comment("acme", "app", 9, "b")

    assert created.id == 9
    assert updated.body == "b"


async def test_list_pulls_for_commit(client: GitHubClient) -> None:
    """list_pulls_for_commit returns the PRs containing the commit."""
    with aioresponses() as m:
        m.get(
            f"{REPO}/commits/abc/pulls",
            payload=[{"number": 12, "state": "open"}, {"number": 3, "state": "closed"}],
        )
        pulls = await client.list_pulls_for_commit("acme", "app", "abc")

    assert [(p.number, p.state) for p in pulls] == [(12, "open"), (3, "closed")]


async def test_create_status_payload(client: GitHubClient) -> None:
    """create_status posts state, description, context and target URL."""
    with aioresponses() as m:
        m.post(f"{REPO}/statuses/abc", status=201, payload={})
        await client.create_status(
            "acme", "app", "abc", "failure", "2 failing", "ci/e2e", "https://r"
        )
        call = next(iter(m.requests.values()))[0]

    assert call.kwargs["json"] == {
        "state": "failure",
        "description": "2 failing",
        "context": "ci/e2e",
        "target_url": "https://r",
    }


async def test_error_is_not_retried(client: GitHubClient) -> None:
    """A non-2xx response raises GitHubAPIError on the first attempt."""
    with aioresponses() as m:
        m.post(f"{REPO}/issues/5/comments", status=403, body="forbidden")
        with pytest.raises(GitHubAPIError, match="GitHub 403"):
            await client.create_comment("acme", "app", 5, "x")
        assert sum(len(calls) for calls in m.requests.values()) == 1

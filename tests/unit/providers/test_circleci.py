"""Tests for the CircleCI client."""

from pathlib import Path
from unittest.mock import patch

import pytest
from aioresponses import aioresponses

from ciflow.e2e_pipeline.exceptions import CIRequestError, NotFoundError
from ciflow.e2e_pipeline.models.provider_config import CircleCIConfig
from ciflow.e2e_pipeline.providers.circleci import CircleCIClient

BASE = "https://circleci.com/api/v2"
SLUG = "gh/acme/app"


@pytest.fixture
def client() -> CircleCIClient:
    """Create a CircleCI client with fast retries."""
    return CircleCIClient(CircleCIConfig(token="cci-token", backoff=0.01))


async def test_list_pipelines_paginates_by_branch(client: CircleCIClient) -> None:
    """list_pipelines follows next_page_token with the branch filter."""
    with aioresponses() as m:
        m.get(
            f"{BASE}/project/{SLUG}/pipeline?branch=main",
            payload={
                "items": [{"id": "p1", "number": 2, "vcs": {"branch": "main"}}],
                "next_page_token": "t2",
            },
        )
        m.get(
            f"{BASE}/project/{SLUG}/pipeline?branch=main&page-token=t2",
            payload={"items": [{"id": "p0", "number": 1}], "next_page_token": None},
        )
        pipelines = await client.list_pipelines(SLUG, "main")
        call = next(iter(m.requests.values()))[0]

    assert [p.id for p in pipelines] == ["p1", "p0"]
    assert pipelines[0].branch == "main"
    assert call.kwargs["headers"]["Circle-Token"] == "cci-token"


async def test_list_pipelines_limit(client: CircleCIClient) -> None:
    """list_pipelines truncates to the requested limit."""
    with aioresponses() as m:
        m.get(
            f"{BASE}/project/{SLUG}/pipeline",
            payload={"items": [{"id": f"p{i}"} for i in range(5)]},
        )
        pipelines = await client.list_pipelines(SLUG, limit=2)

    assert [p.id for p in pipelines] == ["p0", "p1"]


async def test_list_jobs_maps_job_number(client: CircleCIClient) -> None:
    """list_jobs returns typed jobs with their numbers."""
    with aioresponses() as m:
        m.get(
            f"{BASE}/workflow/wf-1/job",
            payload={
                "items": [
                    {
                        "id": "j1",
                        "name": "remix-ide-browser (0)",
                        "job_number": 11,
                        "status": "success",
                    },
                    {"name": "approve", "status": "on_hold", "type": "approval"},
                ]
            },
        )
        jobs = await client.list_jobs("wf-1")

    assert jobs[0].number == 11
    assert jobs[0].is_terminal
    assert jobs[1].number is None


async def test_list_tests_and_artifacts(client: CircleCIClient) -> None:
    """Test and artifact listings are typed per job number."""
    with aioresponses() as m:
        m.get(
            f"{BASE}/project/{SLUG}/42/tests",
            payload={
                "items": [{"name": "t", "file": "a.test.js", "result": "failure"}]
            },
        )
        m.get(
            f"{BASE}/project/{SLUG}/42/artifacts",
            payload={"items": [{"path": "reports/screenshots/a.png", "url": "u"}]},
        )
        tests = await client.list_tests(SLUG, 42)
        artifacts = await client.list_artifacts(SLUG, 42)

    assert tests[0].is_failure
    assert artifacts[0].path == "reports/screenshots/a.png"


async def test_list_workflow_runs_uses_insights(client: CircleCIClient) -> None:
    """list_workflow_runs reads the Insights runs endpoint."""
    with aioresponses() as m:
        m.get(
            f"{BASE}/insights/{SLUG}/workflows/web/runs?branch=dev",
            payload={"items": [{"id": "r1", "status": "failed"}]},
        )
        runs = await client.list_workflow_runs(SLUG, "web", "dev")

    assert runs[0].id == "r1"
    assert runs[0].workflow_name == "web"


async def test_not_found_is_not_retried(client: CircleCIClient) -> None:
    """A 404 raises NotFoundError without retrying."""
    with aioresponses() as m, patch("asyncio.sleep") as sleep:
        m.get(f"{BASE}/workflow/missing", status=404, body="Not found")
        with pytest.raises(NotFoundError):
            await client.get_workflow("missing")

    sleep.assert_not_awaited()


async def test_server_errors_are_retried(client: CircleCIClient) -> None:
    """A transient 5xx is retried and the next success is returned."""
    with aioresponses() as m, patch("asyncio.sleep"):
        m.get(f"{BASE}/pipeline/p1", status=502)
        m.get(f"{BASE}/pipeline/p1", payload={"id": "p1", "number": 9})
        pipeline = await client.get_pipeline("p1")

    assert pipeline.number == 9


async def test_retries_exhausted(client: CircleCIClient) -> None:
    """After the configured retries the error propagates with its status."""
    with aioresponses() as m, patch("asyncio.sleep") as sleep:
        m.get(f"{BASE}/pipeline/p1/workflow", status=500, repeat=True)
        with pytest.raises(CIRequestError) as exc_info:
            await client.list_workflows("p1")

    assert exc_info.value.status == 500
    assert sleep.await_count == 3


async def test_download_writes_file(client: CircleCIClient, tmp_path: Path) -> None:
    """download stores the artifact bytes, creating parent directories."""
    dest = tmp_path / "job-1" / "screenshots" / "a.png"

    with aioresponses() as m:
        m.get("https://output.circle-artifacts.com/a.png", body=b"PNG")
        await client.download("https://output.circle-artifacts.com/a.png", dest)

    assert dest.read_bytes() == b"PNG"

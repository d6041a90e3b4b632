"""Render aggregated failures as ``summary.json`` and a static HTML page."""

import logging
import re
from datetime import UTC, datetime
from html import escape
from pathlib import Path

from ciflow.e2e_pipeline.aggregator import derive_test_base
from ciflow.e2e_pipeline.models.circleci import Artifact, Job
from ciflow.e2e_pipeline.models.report import (
    AggregationResult,
    FailureRecord,
    JobOmission,
    OrphanArtifact,
    Summary,
    SummaryFailure,
)

logger = logging.getLogger(__name__)

MESSAGE_LINES = 4
MESSAGE_CHARS = 400
_SLUG_PARTS = re.compile(r"^(gh|github|bb|bitbucket|gl|gitlab)/(.*?)/(.*?)$")

_STYLE = """
    body{font-family:system-ui,-apple-system,Segoe UI,Roboto,Ubuntu,Arial,sans-serif;
      margin:20px;background:#0b0e14;color:#e6e6e6}
    a{color:#7cc4ff}
    h1{font-size:20px;margin:0 0 10px}
    h2{font-size:16px;margin:20px 0 10px;color:#c7d2fe}
    .meta-bar{display:flex;gap:10px;flex-wrap:wrap;font-size:12px;color:#a7b0c0}
    .grid{display:grid;gap:14px;
      grid-template-columns:repeat(auto-fill,minmax(420px,1fr))}
    .card{background:#141821;border:1px solid #232a36;border-radius:8px;overflow:hidden}
    .card .meta{padding:12px;border-bottom:1px solid #232a36}
    .card .title{font-weight:600;margin-bottom:6px}
    .card .sub{font-size:12px;color:#a9b1c7;margin-top:2px}
    .card .msg{margin-top:8px;font-family:ui-monospace,monospace;font-size:12px;
      white-space:pre-wrap}
    .card .media{background:#0f131b;max-height:540px;overflow:auto;text-align:center}
    .card img{max-width:100%;height:auto;display:block;margin:0 auto}
    .placeholder{padding:24px;color:#6b7280}
    .empty{opacity:0.7}
"""


def shorten_message(message: str | None) -> str:
    """First few lines of a failure message joined on one line, truncated."""
    lines = re.split(r"\r\n|\r|\n", message or "")[:MESSAGE_LINES]
    return " ".join(lines)[:MESSAGE_CHARS]


def job_link(result: AggregationResult, job: Job) -> str:
    """Link to a job in the CircleCI web app."""
    workflow_id = result.run.workflow.id if result.run else ""
    pipeline_number = result.run.pipeline_number if result.run else None
    slug = result.slug
    match = _SLUG_PARTS.match(slug)
    if not match or pipeline_number is None:
        return (
            f"https://app.circleci.com/pipelines/{slug}"
            f"/workflows/{workflow_id}/jobs/{job.number}"
        )
    vcs, org, repo = match.groups()
    return (
        f"https://app.circleci.com/pipelines/{vcs}/{org}/{repo}/{pipeline_number}"
        f"/workflows/{workflow_id}/jobs/{job.number}"
    )


def image_ref(artifact: Artifact) -> str:
    """Report-relative path of a downloaded image, else its remote URL."""
    return artifact.local_path or artifact.url


def build_summary(
    result: AggregationResult, generated_at: datetime | None = None
) -> Summary:
    """Project an aggregation result onto the machine-readable summary."""
    generated_at = generated_at or datetime.now(UTC)
    run = result.run
    failures = [
        SummaryFailure(
            job_number=f.job.number,
            file=f.test.source_file,
            name=f.test.name or derive_test_base(f.test),
            image=image_ref(f.image) if f.image else None,
        )
        for f in result.failures
    ]
    return Summary(
        generated_at=generated_at.isoformat().replace("+00:00", "Z"),
        pipeline_number=run.pipeline_number if run else None,
        pipeline_id=run.pipeline_id if run else None,
        workflow_id=run.workflow.id if run else None,
        branch=result.branch,
        workflow_status=run.workflow.status if run else None,
        workflow_name=run.workflow.name if run else None,
        failures=failures,
        omitted_jobs=list(result.omissions),
    )


def _media(artifact: Artifact | None) -> str:
    if artifact is None:
        return '<div class="placeholder">No screenshot</div>'
    href = escape(artifact.url or "#")
    src = escape(image_ref(artifact))
    return (
        f'<a href="{href}" target="_blank" rel="noopener">'
        f'<img src="{src}" alt="screenshot" /></a>'
    )


def _failure_card(result: AggregationResult, failure: FailureRecord) -> str:
    test = failure.test
    link = escape(job_link(result, failure.job))
    message = shorten_message(test.message) or "(no failure message)"
    return f"""
      <div class="card">
        <div class="meta">
          <div class="title">{escape(test.name or derive_test_base(test))}</div>
          <div class="sub">File: {escape(test.source_file)}</div>
          <div class="sub">Job #{failure.job.number} &middot;
            <a href="{link}" target="_blank" rel="noopener">Open in CircleCI</a></div>
          <div class="msg">{escape(message)}</div>
        </div>
        <div class="media">{_media(failure.image)}</div>
      </div>"""


def _orphan_card(result: AggregationResult, orphan: OrphanArtifact) -> str:
    link = escape(job_link(result, orphan.job))
    name = orphan.artifact.path.rsplit("/", 1)[-1]
    return f"""
      <div class="card">
        <div class="meta">
          <div class="title">{escape(name)}</div>
          <div class="sub">Job #{orphan.job.number} &middot;
            <a href="{link}" target="_blank" rel="noopener">Open in CircleCI</a></div>
        </div>
        <div class="media">{_media(orphan.artifact)}</div>
      </div>"""


def _omission_card(omission: JobOmission) -> str:
    return f"""
      <div class="card">
        <div class="meta">
          <div class="title">Job #{omission.job_number} {escape(omission.name)}</div>
          <div class="msg">{escape(omission.reason)}</div>
        </div>
      </div>"""


def _section(heading: str, cards: list[str]) -> str:
    body = "\n".join(cards) or '<div class="empty">No items</div>'
    return f"""
    <section>
      <h2>{escape(heading)}</h2>
      <div class="grid">{body}
      </div>
    </section>"""


def render_html(result: AggregationResult, summary: Summary) -> str:
    """Render the static report page.

    Every piece of text coming from the CI provider is HTML-escaped.

    Args:
        result: Aggregated failures, orphans and omissions
        summary: Summary of the same run, used for the header

    Returns:
        The complete HTML document

    """
    if result.run is None:
        title = "No failures found"
        sections = [_section("No recent workflow found", [])]
    else:
        count = len(result.failures)
        title = f"E2E failures: {count} test(s)" if count else "No failing tests found"
        sections = [
            _section(
                "Failing tests", [_failure_card(result, f) for f in result.failures]
            )
        ]
        if result.orphans:
            orphans = [_orphan_card(result, o) for o in result.orphans]
            sections.append(_section("Screenshots (no failure metadata)", orphans))
        if result.omissions:
            omitted = [_omission_card(o) for o in result.omissions]
            sections.append(_section("Omitted jobs", omitted))

    meta = [f"<div>Generated: {escape(summary.generated_at)}</div>"]
    if summary.branch:
        meta.append(f"<div>Branch: {escape(summary.branch)}</div>")
    if summary.pipeline_number is not None:
        meta.append(f"<div>Pipeline: #{summary.pipeline_number}</div>")
    if summary.workflow_status:
        meta.append(f"<div>Workflow: {escape(summary.workflow_status)}</div>")

    meta_bar = "".join(meta)
    body = "".join(sections)
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>{escape(title)}</title>
  <style>{_STYLE}  </style>
</head>
<body>
  <h1>{escape(title)}</h1>
  <div class="meta-bar">
    {meta_bar}
  </div>
  {body}
</body>
</html>
"""


def write_report(result: AggregationResult, out_dir: Path) -> Summary:
    """Write ``index.html`` and ``summary.json`` into ``out_dir``."""
    out_dir.mkdir(parents=True, exist_ok=True)
    summary = build_summary(result)
    (out_dir / "index.html").write_text(render_html(result, summary), encoding="utf-8")
    (out_dir / "summary.json").write_text(
        summary.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
    )
    logger.info(f"Report written to {out_dir / 'index.html'}")
    return summary

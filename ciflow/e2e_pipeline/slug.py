"""Project slug discovery and resolution across candidate sources."""

import json
import logging
import os
import re
import subprocess
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import TypeVar

from ciflow.e2e_pipeline.exceptions import CIRequestError, ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_HTTPS_REPO = re.compile(r"github\.com/([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)")
_SSH_REPO = re.compile(r"github\.com:([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+?)(?:\.git)?$")
_GITHUB_SLUG = re.compile(r"^(?:gh|github)/([^/]+)/([^/]+)$")


def normalize_slug(slug: str) -> str:
    """Map ``github/`` and ``bitbucket/`` prefixes to CircleCI's ``gh/``/``bb/``."""
    slug = slug.strip()
    if slug.startswith("github/"):
        return "gh/" + slug[len("github/") :]
    if slug.startswith("bitbucket/"):
        return "bb/" + slug[len("bitbucket/") :]
    return slug


def parse_repo_url(url: str | None) -> tuple[str, str] | None:
    """Extract ``(org, repo)`` from an HTTPS, SSH or ``git+https`` GitHub URL.

    Supports: https://github.com/org/repo.git, git@github.com:org/repo.git
    """
    if not url:
        return None
    match = _HTTPS_REPO.search(url) or _SSH_REPO.search(url)
    if not match:
        return None
    org, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[:-4]
    return org, repo


def split_slug(slug: str) -> tuple[str, str]:
    """Split a ``gh/<owner>/<repo>`` slug into owner and repository.

    Raises:
        ConfigurationError: If the slug is not a GitHub project slug

    """
    match = _GITHUB_SLUG.match(slug.strip())
    if not match:
        raise ConfigurationError(f"Bad slug: {slug}")
    return match.group(1), match.group(2)


def git_origin_url(cwd: Path | None = None) -> str | None:
    """Return ``remote.origin.url`` of the repository at ``cwd``, if any."""
    try:
        result = subprocess.run(
            ["git", "config", "--get", "remote.origin.url"],  # noqa: S607
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None
    return result.stdout.strip() or None


def package_repo_url(package_json: Path) -> str | None:
    """Return ``repository.url`` from a ``package.json``, if present."""
    try:
        data = json.loads(package_json.read_text())
    except (OSError, ValueError):
        return None
    repository = data.get("repository") if isinstance(data, dict) else None
    if isinstance(repository, dict):
        url = repository.get("url")
        return url if isinstance(url, str) else None
    return repository if isinstance(repository, str) else None


def env_slug() -> str | None:
    """Slug from the CircleCI environment, if one is exported."""
    for name in ("CIRCLECI_PROJECT_SLUG", "CIRCLE_PROJECT_SLUG"):
        value = os.environ.get(name)
        if value:
            return value
    username = os.environ.get("CIRCLE_PROJECT_USERNAME")
    reponame = os.environ.get("CIRCLE_PROJECT_REPONAME")
    if username and reponame:
        return f"gh/{username}/{reponame}"
    return None


def derive_slug_candidates(
    provided: str | None, repo_urls: Sequence[str | None] = ()
) -> list[str]:
    """Build slug candidates in priority order, without duplicates.

    Args:
        provided: Explicitly configured slug (highest priority)
        repo_urls: Repository URLs from VCS remotes or package metadata

    Returns:
        Candidate slugs, the explicit one first

    """
    candidates: list[str] = []

    def add(slug: str) -> None:
        if slug not in candidates:
            candidates.append(slug)

    if provided:
        add(normalize_slug(provided))
    for url in repo_urls:
        parsed = parse_repo_url(url)
        if not parsed:
            continue
        org, repo = parsed
        add(f"gh/{org}/{repo}")
        if org.endswith("-org"):
            add(f"gh/{org[: -len('-org')]}/{repo}")
    return candidates


class SlugResolver:
    """Tries slug candidates in order and memoizes the first that works.

    A resolver instance is the only place the winning slug is remembered;
    stages receive it explicitly.
    """

    def __init__(self, candidates: Sequence[str]) -> None:
        """Initialize with candidates in priority order."""
        if not candidates:
            raise ConfigurationError(
                "No candidate slugs could be derived. Provide --slug gh/<org>/<repo> "
                "or set CIRCLECI_PROJECT_SLUG."
            )
        self.candidates = list(candidates)
        self.resolved: str | None = None

    @classmethod
    def discover(cls, provided: str | None, root: Path | None = None) -> "SlugResolver":
        """Collect candidates from config, environment, git and package.json."""
        root = root or Path.cwd()
        candidates = derive_slug_candidates(
            provided or env_slug(),
            [git_origin_url(root), package_repo_url(root / "package.json")],
        )
        logger.debug(f"Slug candidates: {candidates}")
        return cls(candidates)

    async def resolve(
        self, probe: Callable[[str], Awaitable[list[T]]]
    ) -> tuple[str, list[T]]:
        """Run ``probe`` against candidates until one yields records.

        A candidate that answers with no records is kept as a fallback so an
        empty project still resolves; a candidate whose requests fail is
        skipped.

        Raises:
            ConfigurationError: If every candidate fails

        """
        if self.resolved is not None:
            return self.resolved, await probe(self.resolved)

        tried: list[str] = []
        first_empty: str | None = None
        for slug in self.candidates:
            try:
                records = await probe(slug)
            except CIRequestError as e:
                logger.info(f"Slug candidate {slug} failed: {e}")
                tried.append(f"{slug} -> {e}")
                continue
            if records:
                self.resolved = slug
                logger.info(f"Resolved project slug: {slug}")
                return slug, records
            if first_empty is None:
                first_empty = slug

        if first_empty is not None:
            self.resolved = first_empty
            return first_empty, []

        raise ConfigurationError(
            "Unable to access CircleCI for any candidate slug. Tried: "
            + "; ".join(tried)
        )

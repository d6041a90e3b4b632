"""GitHub authentication: App installation tokens with a personal-token fallback."""

import logging
import time

import aiohttp
import jwt

from ciflow.e2e_pipeline.exceptions import ConfigurationError, GitHubAPIError
from ciflow.e2e_pipeline.models.provider_config import GitHubConfig

logger = logging.getLogger(__name__)


def normalize_private_key(raw: str) -> str:
    """Turn an escaped-newline PEM into a real one and check its header.

    Args:
        raw: Key material as stored in the environment

    Returns:
        PEM text with literal newlines

    Raises:
        ConfigurationError: If the PEM header is missing

    """
    key = raw.strip()
    if "\\n" in key and "\n" not in key:
        key = key.replace("\\n", "\n")
    if "-----BEGIN" not in key:
        raise ConfigurationError(
            "Invalid private key format: missing PEM headers. Ensure "
            "CI_PR_BOT_PRIVATE_KEY contains the full PEM including headers."
        )
    return key


def build_app_jwt(app_id: str, private_key: str, now: float | None = None) -> str:
    """Sign the short-lived RS256 JWT used to request an installation token."""
    issued = int(now if now is not None else time.time())
    payload = {"iat": issued - 60, "exp": issued + 540, "iss": str(app_id)}
    return jwt.encode(payload, private_key, algorithm="RS256")


async def fetch_installation_token(config: GitHubConfig) -> str:
    """Exchange the App JWT for an installation access token."""
    private_key = normalize_private_key(config.private_key or "")
    try:
        app_jwt = build_app_jwt(str(config.app_id), private_key)
    except (ValueError, TypeError, jwt.PyJWTError) as e:
        raise ConfigurationError(
            f"Failed to sign GitHub App JWT (id={config.app_id}): {e}. Check that "
            "CI_PR_BOT_PRIVATE_KEY is a valid PEM-encoded RSA private key."
        ) from e

    path = f"/app/installations/{config.installation_id}/access_tokens"
    headers = {
        "Authorization": f"Bearer {app_jwt}",
        "Accept": "application/vnd.github+json",
    }
    url = f"{config.base_url}{path}"
    async with aiohttp.ClientSession() as session:
        async with session.post(url, headers=headers) as response:
            if response.status != 201:
                text = await response.text()
                raise GitHubAPIError(path, response.status, text)
            data = await response.json()

    token = data.get("token") if isinstance(data, dict) else None
    if not isinstance(token, str) or not token:
        raise GitHubAPIError(path, 201, "installation token missing from response")
    return token


def _presence(value: object) -> str:
    return "set" if value else "missing"


async def resolve_auth_header(config: GitHubConfig) -> str:
    """Return the ``Authorization`` header value, preferring App credentials."""
    logger.info("Auth method detection:")
    logger.info(f"  - App id: {_presence(config.app_id)}")
    logger.info(f"  - Installation id: {_presence(config.installation_id)}")
    logger.info(f"  - Private key: {_presence(config.private_key)}")
    logger.info(f"  - Personal token: {_presence(config.token)}")

    if config.has_app_credentials:
        logger.info("Using GitHub App authentication")
        token = await fetch_installation_token(config)
        logger.info("GitHub App token obtained")
        return f"token {token}"

    if not config.token:
        raise ConfigurationError(
            "GH_PR_COMMENT_TOKEN missing (or configure CI_PR_BOT_APP_ID / "
            "CI_PR_BOT_INSTALLATION_ID / CI_PR_BOT_PRIVATE_KEY)"
        )
    logger.info("Using personal access token")
    return f"token {config.token}"

"""Shared HTTP plumbing for API providers: retrying calls and paged fetches."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from typing import TypeVar

import aiohttp

from ciflow.e2e_pipeline.exceptions import CIRequestError, NotFoundError, PipelineError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_LIMIT = 1000


def is_retryable(error: BaseException) -> bool:
    """Transient request failures are retried, missing resources are not."""
    return isinstance(error, CIRequestError) and not isinstance(error, NotFoundError)


async def retrying_call(
    call: Callable[[], Awaitable[T]],
    *,
    retries: int,
    backoff: float,
    should_retry: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Await ``call`` up to ``retries + 1`` times with a linear backoff.

    Args:
        call: Zero-argument coroutine factory performing one attempt
        retries: Extra attempts after the first failure
        backoff: Delay step; attempt ``n`` waits ``backoff * n`` seconds
        should_retry: Decides whether an error is worth another attempt

    Returns:
        The result of the first successful attempt

    Raises:
        The last error once retries are exhausted or it is not retryable

    """
    attempt = 0
    while True:
        try:
            return await call()
        except Exception as e:
            if attempt >= retries or not should_retry(e):
                raise
            attempt += 1
            delay = backoff * attempt
            logger.warning(
                f"Attempt {attempt}/{retries} failed ({e}); retrying in {delay}s"
            )
            await asyncio.sleep(delay)


async def paged_fetch(
    fetch_page: Callable[[str | None], Awaitable[Mapping[str, object]]],
    *,
    limit: int = DEFAULT_PAGE_LIMIT,
    key: str = "items",
) -> list[dict[str, object]]:
    """Follow ``next_page_token`` cursors, accumulating records in order.

    Args:
        fetch_page: Fetches one page given the cursor (``None`` for the first)
        limit: Safety cap on the number of records returned
        key: Response field holding the page's records

    Returns:
        Records from all pages, at most ``limit`` of them

    """
    items: list[dict[str, object]] = []
    page_token: str | None = None
    while True:
        data = await fetch_page(page_token)
        page = data.get(key)
        if isinstance(page, list):
            items.extend(item for item in page if isinstance(item, dict))
        if len(items) >= limit:
            return items[:limit]
        next_token = data.get("next_page_token")
        if not isinstance(next_token, str) or not next_token:
            return items
        page_token = next_token


class ApiProvider(ABC):
    """Base for JSON-over-HTTP API clients."""

    base_url: str
    max_retries: int = 0
    backoff: float = 0.5
    timeout: float = 20.0

    @abstractmethod
    async def _headers(self) -> dict[str, str]:
        """Authentication and content headers for every request."""

    @abstractmethod
    def _error(self, path: str, status: int | None, message: str) -> PipelineError:
        """Build the provider-specific error for a failed request."""

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    async def _send(
        self,
        method: str,
        path: str,
        params: Mapping[str, str] | None,
        payload: Mapping[str, object] | None,
        extra_headers: Mapping[str, str] | None,
    ) -> object:
        headers = await self._headers()
        if extra_headers:
            headers.update(extra_headers)
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method,
                    self._url(path),
                    headers=headers,
                    params=dict(params) if params else None,
                    json=payload,
                ) as response:
                    if response.status >= 300:
                        text = await response.text()
                        raise self._error(path, response.status, text)
                    if response.status == 204:
                        return None
                    return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise self._error(path, None, str(e) or type(e).__name__) from e

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        payload: Mapping[str, object] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> object:
        """Perform a request, retrying transient failures."""
        return await retrying_call(
            lambda: self._send(method, path, params, payload, headers),
            retries=self.max_retries,
            backoff=self.backoff,
        )

    async def get_json(
        self, path: str, params: Mapping[str, str] | None = None
    ) -> Mapping[str, object]:
        """GET a JSON object; non-object bodies are treated as empty."""
        data = await self.request("GET", path, params=params)
        return data if isinstance(data, dict) else {}

    async def get_paged(
        self,
        path: str,
        params: Mapping[str, str] | None = None,
        *,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> list[dict[str, object]]:
        """GET every page of a cursor-paginated listing."""

        async def fetch_page(page_token: str | None) -> Mapping[str, object]:
            page_params = dict(params or {})
            if page_token:
                page_params["page-token"] = page_token
            return await self.get_json(path, page_params)

        return await paged_fetch(fetch_page, limit=limit)

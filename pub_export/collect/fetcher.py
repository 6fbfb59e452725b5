"""
HTTP fetching with retry and backoff.

Both a synchronous client (used while listing a publication) and an
asynchronous client (used for per-article fetches during export) are
supported. Clients are created from FetchConfig so tests can inject an
httpx transport.
"""

from __future__ import annotations

from dataclasses import dataclass
import asyncio
import time

import httpx

from ..config import FetchConfig


@dataclass
class FetchResult:
    """Result of an HTTP fetch operation.

    Either content will be populated (success) or error will be populated
    (failure), but never both. status_code may be None for network-level
    failures.

    Attributes:
        url: The URL that was fetched
        status_code: HTTP status code, or None if request failed before getting response
        content: The response body bytes, or None on error
        error: Error message if fetch failed, None on success
        media_type: Content-Type of the response without parameters
    """
    url: str
    status_code: int | None
    content: bytes | None
    error: str | None
    media_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.content is not None

    @property
    def text(self) -> str | None:
        if self.content is None:
            return None
        return self.content.decode("utf-8", errors="replace")


def build_client(cfg: FetchConfig, transport: httpx.BaseTransport | None = None) -> httpx.Client:
    return httpx.Client(
        timeout=cfg.timeout_seconds,
        headers={"User-Agent": cfg.user_agent},
        follow_redirects=True,
        trust_env=cfg.trust_env,
        transport=transport,
    )


def build_async_client(
    cfg: FetchConfig, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=cfg.timeout_seconds,
        headers={"User-Agent": cfg.user_agent},
        follow_redirects=True,
        trust_env=cfg.trust_env,
        transport=transport,
    )


def fetch_url(client: httpx.Client, url: str, retries: int) -> FetchResult:
    """Fetch a URL with retry logic.

    Non-2xx responses count as failures and are retried like network
    errors, with a linear backoff between attempts.

    Args:
        client: The httpx client to use
        url: The URL to fetch
        retries: Number of retry attempts after initial failure

    Returns:
        FetchResult with content on success or error message on failure
    """
    last_error: str | None = None
    last_status: int | None = None

    for attempt in range(retries + 1):
        try:
            resp = client.get(url)
            resp.raise_for_status()
            return _result_from_response(url, resp)
        except httpx.HTTPStatusError as exc:
            last_status = exc.response.status_code
            last_error = f"HTTP {last_status} on attempt {attempt + 1}"
        except httpx.HTTPError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
        if attempt < retries:
            time.sleep(_backoff(attempt))

    return FetchResult(url=url, status_code=last_status, content=None, error=last_error)


async def fetch_url_async(client: httpx.AsyncClient, url: str, retries: int) -> FetchResult:
    """Async variant of fetch_url with the same retry semantics."""
    last_error: str | None = None
    last_status: int | None = None

    for attempt in range(retries + 1):
        try:
            resp = await client.get(url)
            resp.raise_for_status()
            return _result_from_response(url, resp)
        except httpx.HTTPStatusError as exc:
            last_status = exc.response.status_code
            last_error = f"HTTP {last_status} on attempt {attempt + 1}"
        except httpx.HTTPError as exc:
            last_error = f"{type(exc).__name__}: {exc}"
        if attempt < retries:
            await asyncio.sleep(_backoff(attempt))

    return FetchResult(url=url, status_code=last_status, content=None, error=last_error)


def _result_from_response(url: str, resp: httpx.Response) -> FetchResult:
    content_type = resp.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower() or None
    return FetchResult(
        url=url,
        status_code=resp.status_code,
        content=resp.content,
        error=None,
        media_type=media_type,
    )


def _backoff(attempt: int) -> float:
    # 0.35s, 0.7s, 1.05s...
    return 0.35 * (attempt + 1)

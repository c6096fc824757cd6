"""Bounded HTTP fetching on top of ``httpx``.

Every outbound request made by the loaders and the HTTP providers goes
through :func:`fetch_with_limits`, which enforces a hard wall-clock timeout
and a maximum response size while streaming the body.  Status codes are
mapped onto :class:`~storyrag.utils.errors.ProviderError` by
:func:`raise_for_status` so the retry helper can tell transient failures
from permanent ones.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from storyrag.utils.errors import ProviderError, RateLimitError

logger = structlog.get_logger(logger_name=__name__)

_ERROR_BODY_PREVIEW = 300


@dataclass(frozen=True)
class FetchResult:
    """A fully-read, size-capped HTTP response."""

    url: str
    status_code: int
    content_type: str | None
    content: bytes
    encoding: str | None = None
    location: str | None = None

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


async def fetch_with_limits(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_s: float,
    max_bytes: int,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json_body: Any = None,
    accept: str | None = None,
    provider_name: str = "http",
) -> FetchResult:
    """Fetch *url*, reading at most *max_bytes* within *timeout_s* seconds.

    Parameters
    ----------
    client:
        Shared ``httpx.AsyncClient``.
    timeout_s:
        Hard wall-clock limit for the whole exchange, body included.
    max_bytes:
        Maximum body size; exceeding it aborts the read.

    Raises
    ------
    ProviderError
        Retryable on timeout or transport failure; non-retryable when the
        body exceeds *max_bytes*.
    """
    request_headers = dict(headers or {})
    if accept:
        request_headers.setdefault("Accept", accept)

    try:
        return await asyncio.wait_for(
            _read_capped(
                client,
                method,
                url,
                headers=request_headers,
                params=params,
                json_body=json_body,
                timeout_s=timeout_s,
                max_bytes=max_bytes,
                provider_name=provider_name,
            ),
            timeout=timeout_s,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        raise ProviderError(
            message=f"Request to {url} timed out after {timeout_s}s",
            provider_name=provider_name,
            retryable=True,
        ) from exc
    except httpx.TransportError as exc:
        raise ProviderError(
            message=f"Request to {url} failed: {exc}",
            provider_name=provider_name,
            retryable=True,
        ) from exc


def raise_for_status(result: FetchResult, provider_name: str) -> None:
    """Raise a classified :class:`ProviderError` for non-2xx responses.

    401/403 are permanent auth failures, 429 and 5xx are retryable, and any
    other non-2xx status is permanent.
    """
    status = result.status_code
    if result.is_success:
        return

    preview = result.text[:_ERROR_BODY_PREVIEW]
    if status == 429:
        raise RateLimitError(
            message=f"Rate limited (HTTP 429): {preview}",
            provider_name=provider_name,
        )
    if status in (401, 403):
        message = f"Authentication failed (HTTP {status}): {preview}"
        retryable = False
    elif status >= 500:
        message = f"Server error (HTTP {status}): {preview}"
        retryable = True
    else:
        message = f"Request failed (HTTP {status}): {preview}"
        retryable = False

    logger.warning(
        "http_request_failed",
        provider=provider_name,
        status_code=status,
        retryable=retryable,
    )
    raise ProviderError(
        message=message,
        provider_name=provider_name,
        status_code=status,
        retryable=retryable,
    )


async def _read_capped(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: dict[str, str],
    params: dict[str, Any] | None,
    json_body: Any,
    timeout_s: float,
    max_bytes: int,
    provider_name: str,
) -> FetchResult:
    async with client.stream(
        method,
        url,
        headers=headers,
        params=params,
        json=json_body,
        timeout=timeout_s,
    ) as response:
        chunks: list[bytes] = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > max_bytes:
                raise ProviderError(
                    message=f"Response from {url} exceeded max_bytes ({max_bytes})",
                    provider_name=provider_name,
                    status_code=response.status_code,
                    retryable=False,
                )
            chunks.append(chunk)

        return FetchResult(
            url=str(response.url),
            status_code=response.status_code,
            content_type=response.headers.get("content-type"),
            content=b"".join(chunks),
            encoding=response.charset_encoding,
            location=response.headers.get("location"),
        )

"""Brave Web Search adapter (``GET {base_url}/web/search``) built on httpx.

Authenticates with the ``X-Subscription-Token`` header.  Results missing a
title or URL are dropped.
"""

from __future__ import annotations

import json

import httpx
import structlog

from storyrag.interfaces.web_search_provider import IWebSearchProvider, WebSearchResult
from storyrag.utils.errors import ProviderError
from storyrag.utils.http import fetch_with_limits, raise_for_status
from storyrag.utils.retry import BackoffConfig, RetryPolicy, with_retry

logger = structlog.get_logger(logger_name=__name__)

_MAX_RESPONSE_BYTES = 2_000_000
_SEARCH_BACKOFF = BackoffConfig(base_ms=300, max_ms=10_000, jitter=0.2)


class BraveSearchProvider(IWebSearchProvider):
    """Web search provider backed by the Brave Search API."""

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        base_url: str = "https://api.search.brave.com/res/v1",
        country: str = "US",
        search_lang: str = "en",
        count: int = 5,
        extra_snippets: bool = True,
        timeout_s: float = 20.0,
        max_retries: int = 2,
    ) -> None:
        self._api_key = api_key
        self._http = http_client
        self._url = f"{base_url.rstrip('/')}/web/search"
        self._country = country
        self._search_lang = search_lang
        self._count = count
        self._extra_snippets = extra_snippets
        self._timeout_s = timeout_s
        self._retry_policy = RetryPolicy(max_retries=max_retries, backoff=_SEARCH_BACKOFF)

    async def search(
        self,
        query: str,
        count: int | None = None,
        search_lang: str | None = None,
    ) -> list[WebSearchResult]:
        params = {
            "q": query,
            "count": count or self._count,
            "country": self._country,
            "search_lang": search_lang or self._search_lang,
            "extra_snippets": "true" if self._extra_snippets else "false",
        }
        results = await with_retry(
            lambda: self._request(params),
            self._retry_policy,
            operation="brave_web_search",
        )
        logger.info("brave_search_complete", query=query[:80], results=len(results))
        return results

    def get_provider_name(self) -> str:
        return "brave"

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def _request(self, params: dict) -> list[WebSearchResult]:
        response = await fetch_with_limits(
            self._http,
            self._url,
            params=params,
            headers={"X-Subscription-Token": self._api_key},
            accept="application/json",
            timeout_s=self._timeout_s,
            max_bytes=_MAX_RESPONSE_BYTES,
            provider_name=self.get_provider_name(),
        )
        raise_for_status(response, self.get_provider_name())

        try:
            body = json.loads(response.text)
        except json.JSONDecodeError as exc:
            raise ProviderError(
                message=f"Search response is not valid JSON: {exc}",
                provider_name=self.get_provider_name(),
                status_code=response.status_code,
            ) from exc

        results: list[WebSearchResult] = []
        for item in (body.get("web") or {}).get("results") or []:
            title = item.get("title") or ""
            url = item.get("url") or ""
            if not title or not url:
                continue
            results.append(
                WebSearchResult(
                    title=title,
                    url=url,
                    description=item.get("description"),
                    extra_snippets=list(item.get("extra_snippets") or []),
                )
            )
        return results

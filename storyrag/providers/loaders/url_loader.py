"""URL loader with an SSRF guard, a byte cap and a hard timeout.

HTML is reduced to its main text with trafilatura (falling back to tag
stripping when trafilatura finds no article body), PDFs are parsed with
PyMuPDF, and anything else is kept as text.  Redirects are followed by
hand so every hop passes the same safety check.
"""

from __future__ import annotations

import asyncio
from urllib.parse import urljoin

import httpx
import structlog
import trafilatura

from storyrag.models.ingest import LoadedDocument
from storyrag.models.rag import ContentType
from storyrag.providers.loaders.pdf import extract_pdf_text
from storyrag.utils.errors import ProviderError, ValidationError
from storyrag.utils.http import FetchResult, fetch_with_limits, raise_for_status
from storyrag.utils.text_normalizer import html_to_text, normalize_text_for_search
from storyrag.utils.url_safety import is_safe_public_http_url

logger = structlog.get_logger(logger_name=__name__)

_ACCEPT = "text/html,application/pdf,text/plain,*/*;q=0.8"
_MAX_REDIRECTS = 5
_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


class UrlLoader:
    """Fetches a public http(s) URL into a :class:`LoadedDocument`.

    Parameters
    ----------
    url:
        Page to fetch.  Non-public or non-http(s) URLs are refused.
    http_client:
        Shared client; must not follow redirects on its own.
    timeout_s, max_bytes:
        Per-request wall-clock and body-size caps.
    max_chars:
        Optional cap on the extracted text.
    """

    def __init__(
        self,
        url: str,
        http_client: httpx.AsyncClient,
        timeout_s: float = 30.0,
        max_bytes: int = 2_000_000,
        max_chars: int | None = None,
    ) -> None:
        self._url = url
        self._http = http_client
        self._timeout_s = timeout_s
        self._max_bytes = max_bytes
        self._max_chars = max_chars

    async def load(self) -> list[LoadedDocument]:
        response = await self._fetch()
        content_type = (response.content_type or "").lower()

        if "application/pdf" in content_type or response.url.lower().endswith(".pdf"):
            try:
                text, page_count = await asyncio.to_thread(
                    extract_pdf_text, response.content, response.url
                )
            except Exception as exc:
                raise ProviderError(
                    message=f"Failed to parse PDF from {response.url}: {exc}",
                    provider_name="http",
                ) from exc
            detected = ContentType.PDF
            extra = {"page_count": page_count}
        elif "html" in content_type or response.text.lstrip()[:15].lower().startswith(
            ("<!doctype html", "<html")
        ):
            text = _extract_html(response.text, response.url)
            detected = ContentType.HTML
            extra = {}
        else:
            text = response.text
            detected = ContentType.TEXT
            extra = {}

        text = normalize_text_for_search(text)
        if self._max_chars is not None:
            text = text[: self._max_chars]

        logger.info(
            "url_loaded",
            url=response.url,
            content_type=detected.value,
            chars=len(text),
        )
        return [
            LoadedDocument(
                page_content=text,
                metadata={
                    "source_type": "url",
                    "source_uri": self._url,
                    "content_type": detected.value,
                    "final_url": response.url,
                    **extra,
                },
            )
        ]

    async def _fetch(self) -> FetchResult:
        url = self._url
        for _ in range(_MAX_REDIRECTS + 1):
            if not is_safe_public_http_url(url):
                raise ValidationError(f"Refusing to fetch non-public or non-http(s) URL: {url}")
            response = await fetch_with_limits(
                self._http,
                url,
                accept=_ACCEPT,
                timeout_s=self._timeout_s,
                max_bytes=self._max_bytes,
            )
            if response.status_code in _REDIRECT_STATUSES and response.location:
                url = urljoin(url, response.location)
                continue
            raise_for_status(response, "http")
            return response

        raise ProviderError(
            message=f"Too many redirects fetching {self._url}",
            provider_name="http",
        )


def _extract_html(html: str, url: str) -> str:
    extracted = trafilatura.extract(html, include_comments=False, include_tables=True)
    if extracted:
        return extracted
    logger.debug("trafilatura_no_content", url=url)
    return html_to_text(html)

"""Jina reranker adapter (``POST {base_url}/rerank``) built on httpx."""

from __future__ import annotations

import json

import httpx
import structlog

from storyrag.interfaces.reranker_provider import IRerankerProvider, RerankResult
from storyrag.utils.errors import ProviderError
from storyrag.utils.http import fetch_with_limits, raise_for_status
from storyrag.utils.retry import BackoffConfig, RetryPolicy, with_retry

logger = structlog.get_logger(logger_name=__name__)

_MAX_RESPONSE_BYTES = 2_000_000
_RERANK_BACKOFF = BackoffConfig(base_ms=300, max_ms=10_000, jitter=0.2)


class JinaRerankerProvider(IRerankerProvider):
    """Cross-encoder reranking via the Jina API.

    Only the first ``max_documents`` documents are sent; returned indices
    refer to positions in the list passed to :meth:`rerank`.
    """

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        base_url: str = "https://api.jina.ai/v1",
        model: str = "jina-reranker-v2-base-multilingual",
        max_documents: int = 50,
        timeout_s: float = 30.0,
        max_retries: int = 2,
    ) -> None:
        self._api_key = api_key
        self._http = http_client
        self._url = f"{base_url.rstrip('/')}/rerank"
        self._model = model
        self._max_documents = max_documents
        self._timeout_s = timeout_s
        self._retry_policy = RetryPolicy(max_retries=max_retries, backoff=_RERANK_BACKOFF)

    async def rerank(self, query: str, documents: list[str], top_n: int) -> list[RerankResult]:
        if not documents:
            return []

        payload = {
            "model": self._model,
            "query": query,
            "documents": documents[: self._max_documents],
            "top_n": min(top_n, len(documents), self._max_documents),
        }
        results = await with_retry(
            lambda: self._request(payload),
            self._retry_policy,
            operation="jina_rerank",
        )
        logger.debug(
            "jina_rerank_complete",
            model=self._model,
            documents=len(payload["documents"]),
            results=len(results),
        )
        return results

    def get_provider_name(self) -> str:
        return "jina"

    def is_available(self) -> bool:
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(self, payload: dict) -> list[RerankResult]:
        response = await fetch_with_limits(
            self._http,
            self._url,
            method="POST",
            headers={"Authorization": f"Bearer {self._api_key}"},
            json_body=payload,
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
                message=f"Rerank response is not valid JSON: {exc}",
                provider_name=self.get_provider_name(),
                status_code=response.status_code,
            ) from exc

        results: list[RerankResult] = []
        for item in body.get("results") or []:
            score = item.get("relevance_score", item.get("score"))
            if score is None or "index" not in item:
                continue
            results.append(RerankResult(index=int(item["index"]), score=float(score)))
        return results

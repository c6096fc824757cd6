"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`
against any OpenAI-compatible ``/embeddings`` endpoint (OpenRouter by
default).  Inputs are truncated to ``max_input_chars`` and vectors are
memoized per exact (truncated) input string, so re-ingesting unchanged
text and repeating a query do not hit the API again.
"""

from __future__ import annotations

import asyncio

import openai
import structlog
from cachetools import LRUCache

from storyrag.interfaces.embedding_provider import IEmbeddingProvider
from storyrag.providers.openai_errors import to_provider_error
from storyrag.utils.errors import ProviderError
from storyrag.utils.retry import BackoffConfig, RetryPolicy, with_retry

logger = structlog.get_logger(logger_name=__name__)

_EMBEDDING_BACKOFF = BackoffConfig(base_ms=250, max_ms=10_000, jitter=0.2)


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Parameters
    ----------
    api_key:
        Bearer token for the endpoint.
    base_url:
        API root, e.g. ``https://openrouter.ai/api/v1``.
    model:
        Embedding model name.
    max_input_chars:
        Per-text character cap applied before the request.
    cache_size:
        Number of memoized vectors; ``0`` disables the cache.
    client:
        Pre-built ``openai.AsyncOpenAI`` (tests inject a mock).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str = "text-embedding-3-small",
        max_input_chars: int = 8000,
        cache_size: int = 10_000,
        timeout_s: float = 60.0,
        max_retries: int = 2,
        provider_name: str = "openrouter",
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_input_chars = max_input_chars
        self._timeout_s = timeout_s
        self._provider_label = provider_name
        self._retry_policy = RetryPolicy(max_retries=max_retries, backoff=_EMBEDDING_BACKOFF)
        # Retries are driven by with_retry so the SDK's own retry loop is off.
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_s,
            max_retries=0,
        )
        self._cache: LRUCache[str, list[float]] | None = (
            LRUCache(maxsize=cache_size) if cache_size > 0 else None
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in one API call, skipping memoized inputs.

        Raises
        ------
        ProviderError
            On API failure, or when the response is missing vectors, has
            the wrong length, or carries base64-encoded embeddings.
        """
        if not texts:
            return []

        inputs = [text[: self._max_input_chars] for text in texts]
        results: list[list[float] | None] = [None] * len(inputs)
        misses: list[str] = []
        miss_indexes: list[int] = []
        for index, key in enumerate(inputs):
            cached = self._cache.get(key) if self._cache is not None else None
            if cached is not None:
                results[index] = cached
            else:
                misses.append(key)
                miss_indexes.append(index)

        if misses:
            vectors = await with_retry(
                lambda: self._request(misses),
                self._retry_policy,
                operation="embed_batch",
            )
            for key, index, vector in zip(misses, miss_indexes, vectors, strict=True):
                results[index] = vector
                if self._cache is not None:
                    self._cache[key] = vector

        logger.debug(
            "embedding_batch",
            model=self._model,
            provider=self._provider_label,
            batch_size=len(inputs),
            cache_hits=len(inputs) - len(misses),
        )
        return [vector for vector in results if vector is not None]

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed_batch([text])
        return result[0]

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(self, inputs: list[str]) -> list[list[float]]:
        try:
            response = await asyncio.wait_for(
                self._client.embeddings.create(
                    input=inputs,
                    model=self._model,
                    encoding_format="float",
                ),
                timeout=self._timeout_s,
            )
        except (openai.APIError, TimeoutError) as exc:
            raise to_provider_error(exc, self._provider_label) from exc

        data = getattr(response, "data", None)
        if not data or len(data) != len(inputs):
            raise ProviderError(
                message=(
                    "Embeddings response is missing data "
                    f"(expected {len(inputs)}, got {len(data) if data else 0})"
                ),
                provider_name=self._provider_label,
                retryable=False,
            )

        vectors: list[list[float]] = []
        for item in data:
            embedding = item.embedding
            if isinstance(embedding, str):
                raise ProviderError(
                    message="Base64 embeddings are not supported",
                    provider_name=self._provider_label,
                    retryable=False,
                )
            vectors.append(list(embedding))
        return vectors

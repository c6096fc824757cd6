"""Abstract base class for text-embedding service providers.

Embeddings are produced once per chunk at ingestion time (from the chunk's
embedding summary) and once per query at search time.  The same provider
and model must be used for both, or vector distances are meaningless.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: OpenAIEmbeddingProvider (storyrag/providers/embedding/)
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and search."""

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            Text strings to embed.  An empty list returns an empty list.

        Returns
        -------
        list[list[float]]
            Vectors corresponding positionally to *texts*.

        Raises
        ------
        storyrag.utils.errors.ProviderError
            If the embeddings API call fails or returns a malformed payload.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Embed one string (e.g. a search query)."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider has the credentials it needs."""

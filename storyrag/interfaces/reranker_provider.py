"""Abstract base class for neural re-ranking providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RerankResult:
    """Relevance of one input document.

    Attributes
    ----------
    index:
        Position of the document in the list passed to :meth:`rerank`.
    score:
        Provider relevance score; higher is more relevant.
    """

    index: int
    score: float


# Concrete implementation: JinaRerankerProvider (storyrag/providers/rerank/)
class IRerankerProvider(ABC):
    """Contract for cross-encoder style re-rankers used after RRF fusion."""

    @abstractmethod
    async def rerank(self, query: str, documents: list[str], top_n: int) -> list[RerankResult]:
        """Score *documents* against *query*.

        Returns at most *top_n* results.  Documents the provider does not
        score are absent from the result.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this reranker."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider has the credentials it needs."""

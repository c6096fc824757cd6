"""Abstract base class for web-search service providers.

Web search seeds the optional research-enrichment stage of ingestion:
result URLs are fetched and stored as ``web_research`` sources.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class WebSearchResult:
    """A single web-search result.

    Attributes
    ----------
    title:
        The page title as returned by the search engine.
    url:
        The URL of the result page.
    description:
        Optional text excerpt from the result.
    extra_snippets:
        Additional excerpts, when the provider returns them.
    """

    title: str
    url: str
    description: str | None = None
    extra_snippets: list[str] = field(default_factory=list)


# Concrete implementation: BraveSearchProvider (storyrag/providers/search/)
class IWebSearchProvider(ABC):
    """Contract for web-search services used during ingestion enrichment."""

    @abstractmethod
    async def search(
        self,
        query: str,
        count: int | None = None,
        search_lang: str | None = None,
    ) -> list[WebSearchResult]:
        """Execute a web search and return the top results.

        Parameters
        ----------
        query:
            The search query string.
        count:
            Maximum number of results; the provider default when ``None``.
        search_lang:
            Language hint for the search engine.

        Raises
        ------
        storyrag.utils.errors.ProviderError
            If the search API call fails.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this search provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider has the credentials it needs."""

"""Abstract provider interfaces.

Every external dependency (embeddings, reranking, web search, chat LLMs,
the chunk store) sits behind one of these ABCs so that services depend only
on the contract and tests can substitute in-memory fakes.
"""

from storyrag.interfaces.chunk_store import FilterValue, IChunkStore
from storyrag.interfaces.embedding_provider import IEmbeddingProvider
from storyrag.interfaces.llm_provider import ChatCompletion, ChatMessage, ILLMProvider
from storyrag.interfaces.reranker_provider import IRerankerProvider, RerankResult
from storyrag.interfaces.web_search_provider import IWebSearchProvider, WebSearchResult

__all__ = [
    "ChatCompletion",
    "ChatMessage",
    "FilterValue",
    "IChunkStore",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IRerankerProvider",
    "IWebSearchProvider",
    "RerankResult",
    "WebSearchResult",
]

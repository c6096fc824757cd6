"""Shared pytest fixtures for the storyrag test suite."""

from __future__ import annotations

import hashlib
import math
import re
from pathlib import Path

import pytest
import pytest_asyncio

from storyrag.interfaces.embedding_provider import IEmbeddingProvider
from storyrag.interfaces.llm_provider import ChatCompletion, ChatMessage, ILLMProvider
from storyrag.models.rag import Chunk, ChunkMetadata, SourceType
from storyrag.providers.vector_store.chromadb_chunk_store import ChromaDBChunkStore
from storyrag.utils.hashing import compute_chunk_id, compute_content_hash, compute_source_id

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_DIMENSION = 32


class FakeEmbeddingProvider(IEmbeddingProvider):
    """Deterministic bag-of-words hashing embedder.

    Texts sharing words get similar vectors, which is enough for the
    vector leg of hybrid search to behave sensibly in tests.
    """

    def __init__(self, dimension: int = _DIMENSION) -> None:
        self.dimension = dimension
        self.calls: list[list[str]] = []

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(text) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    def get_provider_name(self) -> str:
        return "fake"

    def is_available(self) -> bool:
        return True

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        vector[0] = 0.01  # never all-zero
        for word in _WORD_RE.findall(text.lower()):
            slot = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[slot] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector]


def make_chunk(
    text: str,
    chunk_index: int = 0,
    source_uri: str = "/books/chapter-01.md",
    source_type: str = "file",
    language: str = "en",
    paragraph_content_type: str | None = None,
    summary: str | None = None,
    vector: list[float] | None = None,
) -> Chunk:
    """Build a valid :class:`Chunk` with content-derived ids."""
    source_id = compute_source_id(source_type, source_uri)
    content_hash = compute_content_hash(text)
    return Chunk(
        id=compute_chunk_id(source_id, chunk_index, content_hash),
        text=text,
        normalized_text=text,
        summary_for_embedding=summary if summary is not None else text,
        vector=vector if vector is not None else FakeEmbeddingProvider()._vector(text),
        metadata=ChunkMetadata(
            source_type=SourceType(source_type),
            source_id=source_id,
            source_uri=source_uri,
            content_type="markdown",
            language=language,
            chunk_index=chunk_index,
            created_at_ms=1_700_000_000_000,
            hash=content_hash,
            paragraph_content_type=paragraph_content_type,
        ),
    )


@pytest.fixture
def fake_embedder() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def chroma_path(tmp_path: Path) -> str:
    return str(tmp_path / "chromadb")


@pytest_asyncio.fixture
async def chunk_store(chroma_path: str) -> ChromaDBChunkStore:
    """A connected, empty store in a temporary directory."""
    store = ChromaDBChunkStore(persist_directory=chroma_path, collection_name="test_chunks")
    await store.connect()
    return store


@pytest.fixture
def sample_story_text() -> str:
    return (
        "# Chapter One\n\n"
        "The lighthouse keeper climbed the spiral stairs every evening at dusk.\n\n"
        "\"Is the lamp ready?\" asked Mai.\n\n"
        "\"Almost,\" he said.\n\n"
        "Far below, the fishing boats returned to the harbor, their lanterns swaying "
        "against the dark water while gulls circled the breakwater one last time.\n\n"
        "## The Storm\n\n"
        "By midnight the storm had reached the island, and waves broke over the rocks "
        "with a sound like distant thunder rolling across the bay."
    )


class ScriptedLLMProvider(ILLMProvider):
    """Replays a fixed list of replies; an exception in the list is raised."""

    def __init__(self, replies: list[str | Exception], name: str = "scripted") -> None:
        self._replies = list(replies)
        self._name = name
        self.calls: list[dict] = []

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        top_p: float | None = None,
        json_mode: bool = False,
    ) -> ChatCompletion:
        self.calls.append(
            {
                "messages": list(messages),
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "json_mode": json_mode,
            }
        )
        if not self._replies:
            raise AssertionError("ScriptedLLMProvider ran out of replies")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatCompletion(content=reply, model=model or "scripted-model", provider=self._name)

    def get_provider_name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return True

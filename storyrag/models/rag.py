"""Retrieval data models: stored chunks, search results and ingest statistics.

All models are Pydantic v2 and frozen.  The chunk identity fields are
content-derived (see :mod:`storyrag.utils.hashing`):

    metadata.hash = sha256(normalized_text)
    id            = sha256(f"{metadata.source_id}:{metadata.chunk_index}:{metadata.hash}")

so re-ingesting an unchanged source produces the same ids.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SourceType(str, Enum):
    FILE = "file"
    URL = "url"
    WEB_RESEARCH = "web_research"


class ContentType(str, Enum):
    MARKDOWN = "markdown"
    PDF = "pdf"
    TEXT = "text"
    HTML = "html"
    UNKNOWN = "unknown"


class ParagraphContentType(str, Enum):
    """Which side of a translation pair a paragraph belongs to."""

    ORIGINAL = "original"
    TRANSLATED = "translated"


# ---------------------------------------------------------------------------
# Chunk rows
# ---------------------------------------------------------------------------
class ChunkMetadata(BaseModel):
    """Provenance and structure metadata stored next to every chunk."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    source_type: SourceType
    source_id: str = Field(description="sha256 of '<source_type>:<source_uri>'.")
    source_uri: str = Field(description="File path or URL the chunk came from.")
    content_type: ContentType = ContentType.UNKNOWN
    language: str = Field(default="unknown", description="Language code, or 'unknown'.")
    title: str | None = None
    section_path: list[str] = Field(
        default_factory=list,
        description="Markdown heading path enclosing the chunk.",
    )
    chunk_index: int = Field(ge=0, description="Position of the chunk within its source.")
    created_at_ms: int = Field(ge=0)
    version: str = "v1"
    hash: str = Field(description="sha256 of the chunk's normalized text.")

    # Paragraph-strategy fields; ``None`` for other strategies.
    paragraph_content_type: ParagraphContentType | None = None
    total_paragraphs: int | None = None
    has_prev_context: bool | None = None
    has_next_context: bool | None = None
    is_grouped: bool | None = None
    group_size: int | None = None
    group_indices: list[int] | None = None


class Chunk(BaseModel):
    """A chunk row ready to be written to the chunk store.

    Row-level constraints (non-empty id, text and vector) are enforced by
    the store at write time so that a bad batch is rejected as a whole.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    normalized_text: str
    summary_for_embedding: str
    vector: list[float]
    metadata: ChunkMetadata


class StoredChunk(BaseModel):
    """A chunk row read back from the store (without its vector)."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    normalized_text: str = ""
    summary_for_embedding: str = ""
    metadata: ChunkMetadata
    distance: float | None = Field(
        default=None,
        description="Cosine distance to the query vector (vector search only).",
    )
    score: float | None = Field(
        default=None,
        description="BM25 relevance score (full-text search only).",
    )


# ---------------------------------------------------------------------------
# Index / search configuration
# ---------------------------------------------------------------------------
class IndexConfig(BaseModel):
    """Which indexes the chunk store should maintain."""

    model_config = ConfigDict(frozen=True)

    vector_column: str = "vector"
    text_column: str = "text"
    create_vector_index: bool = True
    create_fts_index: bool = True


class SearchFilter(BaseModel):
    """Equality filters applied to both retrieval legs."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    language: str | None = None
    paragraph_content_type: ParagraphContentType | None = None
    source_type: SourceType | None = None
    source_id: str | None = None

    def to_store_filter(self) -> dict[str, str]:
        return {key: value for key, value in self.model_dump().items() if value is not None}


class HybridSearchConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    vector_top_k: int = Field(default=20, gt=0)
    fts_top_k: int = Field(default=20, gt=0)
    rrf_k: int = Field(default=60, gt=0, description="Reciprocal Rank Fusion constant.")
    rerank_top_k: int = Field(default=10, gt=0)
    fts_columns: list[str] | None = None
    filter: SearchFilter | None = None
    enable_metrics: bool = False


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------
class SearchScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    rrf: float
    rerank: float | None = None


class SearchMetrics(BaseModel):
    """Wall-clock timings of one hybrid search, in milliseconds."""

    model_config = ConfigDict(frozen=True)

    embedding_ms: float = 0.0
    vector_search_ms: float = 0.0
    fts_search_ms: float = 0.0
    fusion_ms: float = 0.0
    rerank_ms: float = 0.0
    total_ms: float = 0.0


class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    summary_for_embedding: str = ""
    metadata: ChunkMetadata
    scores: SearchScores
    metrics: SearchMetrics | None = None


# ---------------------------------------------------------------------------
# Ingestion statistics
# ---------------------------------------------------------------------------
class IngestStats(BaseModel):
    """Summary of one ingestion run (possibly partial, see IngestionAbortedError)."""

    model_config = ConfigDict(frozen=True)

    sources: int = Field(default=0, ge=0)
    documents_loaded: int = Field(default=0, ge=0)
    chunks_stored: int = Field(default=0, ge=0)
    web_research_fetched: int = Field(default=0, ge=0)
    elapsed_ms: float = Field(default=0.0, ge=0.0)

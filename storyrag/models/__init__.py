"""storyrag domain models -- re-exports the public model classes.

    - rag.py         -- chunk rows, search configuration and results, stats
    - ingest.py      -- values passed between ingestion stages
    - enrichment.py  -- structured output of the enrichment LLM call
"""

from __future__ import annotations

from storyrag.models.enrichment import ExtractedMetadata
from storyrag.models.ingest import ChunkDraft, LoadedDocument, LoadedSource
from storyrag.models.rag import (
    Chunk,
    ChunkMetadata,
    ContentType,
    HybridSearchConfig,
    IndexConfig,
    IngestStats,
    ParagraphContentType,
    SearchFilter,
    SearchMetrics,
    SearchResult,
    SearchScores,
    SourceType,
    StoredChunk,
)

__all__ = [
    "Chunk",
    "ChunkDraft",
    "ChunkMetadata",
    "ContentType",
    "ExtractedMetadata",
    "HybridSearchConfig",
    "IndexConfig",
    "IngestStats",
    "LoadedDocument",
    "LoadedSource",
    "ParagraphContentType",
    "SearchFilter",
    "SearchMetrics",
    "SearchResult",
    "SearchScores",
    "SourceType",
    "StoredChunk",
]

"""Ingestion pipeline for the storyrag chunk store.

Stages: **load -> web-enrich -> chunk -> embed & store**.

1. **Load** (providers/loaders/) -- files under the configured roots, or
   explicit paths and URLs, become :class:`LoadedSource` objects.

2. **Web-enrich** (optional) -- a web search seeded from each source adds
   fetched research pages as extra sources.

3. **Chunk** (chunker.py / TextChunker) -- markdown sections, recursive
   windows, or paragraphs with a context window.

4. **Enrich, embed, store** (chunk_enricher.py / ChunkEnricher,
   IEmbeddingProvider, IChunkStore) -- optional LLM enrichment, one
   embedding call per batch, then an upsert into the chunk store.
"""

from storyrag.services.ingestion.chunk_enricher import ChunkEnricher
from storyrag.services.ingestion.chunker import TextChunker
from storyrag.services.ingestion.pipeline import IngestionPipeline, IngestState

__all__ = [
    "ChunkEnricher",
    "IngestState",
    "IngestionPipeline",
    "TextChunker",
]

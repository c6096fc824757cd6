"""Unit tests for the retrieval and enrichment data models."""

from __future__ import annotations

import pydantic
import pytest

from storyrag.models.enrichment import ExtractedMetadata
from storyrag.models.rag import (
    ChunkMetadata,
    HybridSearchConfig,
    IngestStats,
    SearchFilter,
)


class TestExtractedMetadata:
    def test_accepts_camel_case_keys(self) -> None:
        metadata = ExtractedMetadata.model_validate(
            {
                "summaryForEmbedding": "A storm reaches the island.",
                "normalizedText": "The storm reached the island.",
                "contentType": "Markdown",
                "language": "en",
            }
        )

        assert metadata.summary_for_embedding == "A storm reaches the island."
        assert metadata.normalized_text == "The storm reached the island."
        assert metadata.content_type == "markdown"

    def test_unknown_content_type_coerced(self) -> None:
        metadata = ExtractedMetadata(
            summary_for_embedding="s", normalized_text="n", content_type="novel"
        )
        assert metadata.content_type == "unknown"

    def test_defaults(self) -> None:
        metadata = ExtractedMetadata(summary_for_embedding="s", normalized_text="n")
        assert metadata.language == "unknown"
        assert metadata.tags == []
        assert metadata.title is None

    @pytest.mark.parametrize("field", ["summary_for_embedding", "normalized_text"])
    def test_required_text_fields(self, field: str) -> None:
        data = {"summary_for_embedding": "s", "normalized_text": "n", field: ""}
        with pytest.raises(pydantic.ValidationError):
            ExtractedMetadata.model_validate(data)


class TestSearchFilter:
    def test_drops_unset_values(self) -> None:
        assert SearchFilter().to_store_filter() == {}

    def test_enum_values_serialized(self) -> None:
        search_filter = SearchFilter(
            language="vi", paragraph_content_type="translated", source_type="web_research"
        )

        assert search_filter.to_store_filter() == {
            "language": "vi",
            "paragraph_content_type": "translated",
            "source_type": "web_research",
        }

    def test_rejects_unknown_enum(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            SearchFilter(paragraph_content_type="summary")


class TestConfigsAndStats:
    def test_search_config_defaults(self) -> None:
        config = HybridSearchConfig()
        assert (config.vector_top_k, config.fts_top_k, config.rrf_k, config.rerank_top_k) == (
            20,
            20,
            60,
            10,
        )
        assert not config.enable_metrics

    @pytest.mark.parametrize("field", ["vector_top_k", "fts_top_k", "rrf_k", "rerank_top_k"])
    def test_search_config_rejects_non_positive(self, field: str) -> None:
        with pytest.raises(pydantic.ValidationError):
            HybridSearchConfig(**{field: 0})

    def test_chunk_metadata_is_frozen(self) -> None:
        metadata = ChunkMetadata(
            source_type="file",
            source_id="s",
            source_uri="/a.md",
            chunk_index=0,
            created_at_ms=0,
            hash="h",
        )
        assert metadata.source_type == "file"
        with pytest.raises(pydantic.ValidationError):
            metadata.chunk_index = 3

    def test_chunk_metadata_rejects_negative_index(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            ChunkMetadata(
                source_type="file",
                source_id="s",
                source_uri="/a.md",
                chunk_index=-1,
                created_at_ms=0,
                hash="h",
            )

    def test_ingest_stats_defaults(self) -> None:
        assert IngestStats().model_dump() == {
            "sources": 0,
            "documents_loaded": 0,
            "chunks_stored": 0,
            "web_research_fetched": 0,
            "elapsed_ms": 0.0,
        }

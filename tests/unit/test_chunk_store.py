"""Unit tests for ChromaDBChunkStore against a real on-disk ChromaDB.

Covers the lifecycle (connect / lazy table creation / persistence), row
validation, idempotent upserts, both retrieval legs, filters, and the
metadata round trip.
"""

from __future__ import annotations

import pytest

from storyrag.models.rag import Chunk, IndexConfig
from storyrag.providers.vector_store.chromadb_chunk_store import (
    ChromaDBChunkStore,
    _build_where,
)
from storyrag.utils.errors import ConfigurationError, ValidationError
from tests.conftest import FakeEmbeddingProvider, make_chunk

_TEXTS = [
    "The lighthouse keeper climbed the spiral stairs at dusk.",
    "Rain lashed the night market while vendors packed their stalls.",
    "A fishing boat drifted past the breakwater under a pale moon.",
]


def _rows(language: str = "en", source_uri: str = "/books/chapter-01.md") -> list[Chunk]:
    return [
        make_chunk(text, chunk_index=i, language=language, source_uri=source_uri)
        for i, text in enumerate(_TEXTS)
    ]


class TestLifecycle:
    def test_provider_name(self, chroma_path: str) -> None:
        assert ChromaDBChunkStore(persist_directory=chroma_path).get_provider_name() == "chromadb"

    @pytest.mark.asyncio
    async def test_operations_before_connect_raise(self, chroma_path: str) -> None:
        store = ChromaDBChunkStore(persist_directory=chroma_path)

        with pytest.raises(ConfigurationError):
            await store.vector_search([0.1, 0.2], limit=5)
        with pytest.raises(ConfigurationError):
            await store.full_text_search("lighthouse", limit=5)
        with pytest.raises(ConfigurationError):
            await store.upsert_chunks(_rows())

    @pytest.mark.asyncio
    async def test_connected_without_table_is_empty_state(self, chunk_store) -> None:
        assert chunk_store.table_exists is False
        assert await chunk_store.count() == 0

        # Index creation is deferred, not an error.
        await chunk_store.ensure_indexes(IndexConfig())

        with pytest.raises(ConfigurationError):
            await chunk_store.vector_search([0.1] * 32, limit=5)
        with pytest.raises(ConfigurationError):
            await chunk_store.full_text_search("lighthouse", limit=5)

    @pytest.mark.asyncio
    async def test_first_upsert_creates_table(self, chunk_store) -> None:
        written = await chunk_store.upsert_chunks(_rows())

        assert written == 3
        assert chunk_store.table_exists is True
        assert await chunk_store.count() == 3

    @pytest.mark.asyncio
    async def test_table_persists_across_instances(self, chunk_store, chroma_path: str) -> None:
        await chunk_store.upsert_chunks(_rows())

        reopened = ChromaDBChunkStore(persist_directory=chroma_path, collection_name="test_chunks")
        await reopened.connect()

        assert reopened.table_exists is True
        assert await reopened.count() == 3

    @pytest.mark.asyncio
    async def test_ensure_indexes_rejects_bad_columns(self, chunk_store) -> None:
        with pytest.raises(ValidationError):
            await chunk_store.ensure_indexes(IndexConfig(text_column="text; DROP TABLE"))
        with pytest.raises(ValidationError):
            await chunk_store.ensure_indexes(IndexConfig(text_column="title"))


class TestUpsert:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, chunk_store) -> None:
        await chunk_store.upsert_chunks(_rows())
        await chunk_store.upsert_chunks(_rows())

        assert await chunk_store.count() == 3

    @pytest.mark.asyncio
    async def test_empty_batch_is_noop(self, chunk_store) -> None:
        assert await chunk_store.upsert_chunks([]) == 0
        assert chunk_store.table_exists is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "update",
        [{"id": ""}, {"text": "   "}, {"vector": []}],
        ids=["empty-id", "empty-text", "empty-vector"],
    )
    async def test_invalid_rows_rejected_before_write(self, chunk_store, update: dict) -> None:
        rows = _rows()
        rows[1] = rows[1].model_copy(update=update)

        with pytest.raises(ValidationError):
            await chunk_store.upsert_chunks(rows)

        assert chunk_store.table_exists is False

    @pytest.mark.asyncio
    async def test_dimension_mismatch_rejected(self, chunk_store) -> None:
        rows = _rows()
        rows[2] = rows[2].model_copy(update={"vector": [0.5] * 8})

        with pytest.raises(ValidationError, match="dim"):
            await chunk_store.upsert_chunks(rows)


class TestVectorSearch:
    @pytest.mark.asyncio
    async def test_nearest_row_first(self, chunk_store) -> None:
        await chunk_store.upsert_chunks(_rows())
        query = FakeEmbeddingProvider()._vector(_TEXTS[1])

        results = await chunk_store.vector_search(query, limit=3)

        assert len(results) == 3
        assert results[0].text == _TEXTS[1]
        distances = [r.distance for r in results]
        assert distances == sorted(distances)
        assert distances[0] == pytest.approx(0.0, abs=1e-4)

    @pytest.mark.asyncio
    async def test_limit_larger_than_table(self, chunk_store) -> None:
        await chunk_store.upsert_chunks(_rows())

        results = await chunk_store.vector_search([0.1] * 32, limit=50)

        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_filter_by_language(self, chunk_store) -> None:
        await chunk_store.upsert_chunks(_rows(language="en"))
        await chunk_store.upsert_chunks(_rows(language="vi", source_uri="/books/vi/chapter-01.md"))

        results = await chunk_store.vector_search([0.1] * 32, limit=10, filter={"language": "vi"})

        assert len(results) == 3
        assert {r.metadata.language for r in results} == {"vi"}

    @pytest.mark.asyncio
    async def test_rejects_bad_input(self, chunk_store) -> None:
        await chunk_store.upsert_chunks(_rows())

        with pytest.raises(ValidationError):
            await chunk_store.vector_search([], limit=3)
        with pytest.raises(ValidationError):
            await chunk_store.vector_search([0.1] * 32, limit=0)


class TestFullTextSearch:
    @pytest.mark.asyncio
    async def test_matching_row_ranked_first(self, chunk_store) -> None:
        await chunk_store.upsert_chunks(_rows())

        results = await chunk_store.full_text_search("lighthouse stairs", limit=3)

        assert results
        assert results[0].text == _TEXTS[0]
        assert all(r.score is not None and r.score > 0 for r in results)
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_no_matching_terms_returns_empty(self, chunk_store) -> None:
        await chunk_store.upsert_chunks(_rows())

        assert await chunk_store.full_text_search("zeppelin", limit=3) == []

    @pytest.mark.asyncio
    async def test_index_refreshes_after_upsert(self, chunk_store) -> None:
        await chunk_store.upsert_chunks(_rows())
        assert await chunk_store.full_text_search("zeppelin", limit=3) == []

        await chunk_store.upsert_chunks([make_chunk("A zeppelin crossed the bay.", chunk_index=9)])

        results = await chunk_store.full_text_search("zeppelin", limit=3)
        assert [r.text for r in results] == ["A zeppelin crossed the bay."]

    @pytest.mark.asyncio
    async def test_filter_applies_to_lexical_leg(self, chunk_store) -> None:
        await chunk_store.upsert_chunks(_rows(language="en"))
        await chunk_store.upsert_chunks(_rows(language="vi", source_uri="/books/vi/chapter-01.md"))

        results = await chunk_store.full_text_search(
            "market", limit=5, filter={"language": "vi"}
        )

        assert len(results) == 1
        assert results[0].metadata.language == "vi"

    @pytest.mark.asyncio
    async def test_alternate_columns(self, chunk_store) -> None:
        row = make_chunk("Plain display text.", summary="A summary about harbors and gulls.")
        await chunk_store.upsert_chunks([row])

        assert await chunk_store.full_text_search("gulls", limit=3) == []
        results = await chunk_store.full_text_search(
            "gulls", limit=3, fts_columns=["summary_for_embedding"]
        )
        assert [r.id for r in results] == [row.id]

    @pytest.mark.asyncio
    async def test_rejects_bad_input(self, chunk_store) -> None:
        await chunk_store.upsert_chunks(_rows())

        with pytest.raises(ValidationError):
            await chunk_store.full_text_search("  ", limit=3)
        with pytest.raises(ValidationError):
            await chunk_store.full_text_search("rain", limit=-1)
        with pytest.raises(ValidationError):
            await chunk_store.full_text_search("rain", limit=3, fts_columns=["vector"])
        with pytest.raises(ValidationError):
            await chunk_store.full_text_search("rain", limit=3, filter={"text": "x"})


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_metadata_round_trip(self, chunk_store) -> None:
        row = make_chunk("Grouped dialogue lines.", chunk_index=4)
        metadata = row.metadata.model_copy(
            update={
                "section_path": ["Part I", "Chapter 2"],
                "title": "Chapter 2",
                "is_grouped": True,
                "group_size": 2,
                "group_indices": [4, 5],
                "paragraph_content_type": "translated",
            }
        )
        row = row.model_copy(update={"metadata": metadata})
        await chunk_store.upsert_chunks([row])

        [stored] = await chunk_store.vector_search(row.vector, limit=1)

        assert stored.id == row.id
        assert stored.text == row.text
        assert stored.normalized_text == row.normalized_text
        assert stored.summary_for_embedding == row.summary_for_embedding
        assert stored.metadata == row.metadata


class TestBuildWhere:
    def test_single_clause(self) -> None:
        assert _build_where({"language": "en"}) == {"language": {"$eq": "en"}}

    def test_conjunction(self) -> None:
        where = _build_where({"language": "vi", "is_grouped": True})

        assert where == {"$and": [{"language": {"$eq": "vi"}}, {"is_grouped": {"$eq": True}}]}

    def test_quotes_are_values_not_syntax(self) -> None:
        where = _build_where({"title": "x' OR '1'='1"})

        assert where == {"title": {"$eq": "x' OR '1'='1"}}

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _build_where({"vector": "x"})

    def test_empty_filter(self) -> None:
        assert _build_where(None) is None
        assert _build_where({}) is None

"""Hybrid retrieval: dense + lexical search fused with Reciprocal Rank Fusion.

Query flow:

1. Embed the query once.
2. Run the vector leg and the full-text leg concurrently.
3. Fuse both ranked lists with RRF (``1 / (k + rank)`` per list, summed
   by chunk id).
4. Keep the top ``rerank_top_k`` fused rows and, when a reranker is
   configured, re-order them by its relevance scores.

Provider calls retry internally, so the engine adds no retries of its own.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from storyrag.interfaces.chunk_store import IChunkStore
from storyrag.interfaces.embedding_provider import IEmbeddingProvider
from storyrag.interfaces.reranker_provider import IRerankerProvider
from storyrag.models.rag import (
    HybridSearchConfig,
    SearchMetrics,
    SearchResult,
    SearchScores,
    StoredChunk,
)
from storyrag.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)


def reciprocal_rank_fusion(
    *ranked_lists: list[StoredChunk],
    k: int = 60,
) -> list[tuple[StoredChunk, float]]:
    """Fuse ranked lists into one list of ``(row, rrf_score)``.

    A row at 1-based rank ``r`` in any list contributes ``1 / (k + r)``.
    Rows are deduplicated by id (the first occurrence is kept) and sorted
    by descending score; ties keep first-encounter order.
    """
    scores: dict[str, float] = {}
    rows: dict[str, StoredChunk] = {}

    for ranked in ranked_lists:
        for rank, row in enumerate(ranked, start=1):
            if row.id not in rows:
                rows[row.id] = row
                scores[row.id] = 0.0
            scores[row.id] += 1.0 / (k + rank)

    # dicts keep insertion order and sorted() is stable
    ordered = sorted(rows, key=lambda chunk_id: scores[chunk_id], reverse=True)
    return [(rows[chunk_id], scores[chunk_id]) for chunk_id in ordered]


class HybridSearchEngine:
    """Runs hybrid searches against an :class:`IChunkStore`.

    Parameters
    ----------
    store:
        Connected chunk store.
    embedding_provider:
        Embeds the query for the vector leg.
    reranker:
        Optional re-ranker applied to the fused candidates.
    default_config:
        Used when :meth:`search` is called without a config.
    """

    def __init__(
        self,
        store: IChunkStore,
        embedding_provider: IEmbeddingProvider,
        reranker: IRerankerProvider | None = None,
        default_config: HybridSearchConfig | None = None,
    ) -> None:
        self._store = store
        self._embedding_provider = embedding_provider
        self._reranker = reranker
        self._default_config = default_config or HybridSearchConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        config: HybridSearchConfig | None = None,
    ) -> list[SearchResult]:
        """Return up to ``rerank_top_k`` results for *query*, best first.

        Raises
        ------
        storyrag.utils.errors.ValidationError
            If *query* is empty or whitespace.
        storyrag.utils.errors.ConfigurationError
            If the store is not connected or has no table yet.
        """
        if not query or not query.strip():
            raise ValidationError("Search query must not be empty")

        cfg = config or self._default_config
        store_filter = cfg.filter.to_store_filter() if cfg.filter else None
        timings: dict[str, float] = {}
        started = time.perf_counter()

        mark = time.perf_counter()
        vector = await self._embedding_provider.embed_single(query)
        timings["embedding_ms"] = _elapsed_ms(mark)

        vector_hits, text_hits = await asyncio.gather(
            self._timed(
                timings,
                "vector_search_ms",
                self._store.vector_search(vector, cfg.vector_top_k, store_filter),
            ),
            self._timed(
                timings,
                "fts_search_ms",
                self._store.full_text_search(
                    query, cfg.fts_top_k, cfg.fts_columns, store_filter
                ),
            ),
        )

        mark = time.perf_counter()
        fused = reciprocal_rank_fusion(vector_hits, text_hits, k=cfg.rrf_k)
        candidates = fused[: cfg.rerank_top_k]
        timings["fusion_ms"] = _elapsed_ms(mark)

        rerank_scores: list[float | None] = [None] * len(candidates)
        if self._reranker is not None and candidates:
            mark = time.perf_counter()
            rerank_scores = await self._rerank(query, candidates, cfg.rerank_top_k)
            timings["rerank_ms"] = _elapsed_ms(mark)

            order = sorted(
                range(len(candidates)),
                key=lambda i: (rerank_scores[i] is None, -(rerank_scores[i] or 0.0)),
            )
            candidates = [candidates[i] for i in order]
            rerank_scores = [rerank_scores[i] for i in order]

        metrics = None
        if cfg.enable_metrics:
            metrics = SearchMetrics(total_ms=_elapsed_ms(started), **timings)

        results = [
            SearchResult(
                id=row.id,
                text=row.text,
                summary_for_embedding=row.summary_for_embedding,
                metadata=row.metadata,
                scores=SearchScores(rrf=rrf, rerank=rerank),
                metrics=metrics,
            )
            for (row, rrf), rerank in zip(candidates, rerank_scores)
        ]

        logger.info(
            "hybrid_search_complete",
            query_chars=len(query),
            vector_hits=len(vector_hits),
            fts_hits=len(text_hits),
            fused=len(fused),
            returned=len(results),
            reranked=self._reranker is not None,
        )
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _rerank(
        self,
        query: str,
        candidates: list[tuple[StoredChunk, float]],
        rerank_top_k: int,
    ) -> list[float | None]:
        documents = [row.summary_for_embedding or row.text for row, _ in candidates]
        top_n = min(len(documents), rerank_top_k)
        reranked = await self._reranker.rerank(query, documents, top_n)

        scores: list[float | None] = [None] * len(candidates)
        for item in reranked:
            if 0 <= item.index < len(scores):
                scores[item.index] = item.score
        return scores

    @staticmethod
    async def _timed(timings: dict[str, float], key: str, awaitable):
        mark = time.perf_counter()
        try:
            return await awaitable
        finally:
            timings[key] = _elapsed_ms(mark)


def _elapsed_ms(mark: float) -> float:
    return (time.perf_counter() - mark) * 1000.0

"""ChromaDB + BM25 chunk store adapter.

Implements :class:`IChunkStore` with two indexes over one table:

* **Dense** -- a ChromaDB collection (cosine HNSW) holding the chunk id,
  its embedding, its text as the document, and the remaining fields as
  flat metadata (lists are stored as JSON strings, ``None`` is omitted).
* **Lexical** -- an in-memory ``bm25s`` index over the configured text
  column(s).  It is built from a snapshot of the collection on the first
  full-text query and rebuilt after any write.

Filters are translated to a ChromaDB ``where`` document for the dense leg
and matched against typed metadata for the lexical leg; values are never
interpolated into query text.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from typing import Any

# Must be set before chromadb is imported.
os.environ.setdefault("ANONYMIZED_TELEMETRY", "False")

import bm25s
import chromadb
import structlog
from chromadb.config import Settings as ChromaSettings
from chromadb.errors import ChromaError

from storyrag.interfaces.chunk_store import FilterValue, IChunkStore
from storyrag.models.rag import Chunk, ChunkMetadata, IndexConfig, StoredChunk
from storyrag.utils.errors import ConfigurationError, RAGError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

_PAGE_SIZE = 5000
_UPSERT_BATCH_SIZE = 500
_STOPWORDS = "en"

# Columns the lexical index can cover.
_TEXT_COLUMNS = frozenset({"text", "normalized_text", "summary_for_embedding"})
# Metadata fields usable in equality filters.
_FILTER_FIELDS = frozenset(
    {
        "source_type",
        "source_id",
        "source_uri",
        "content_type",
        "language",
        "title",
        "chunk_index",
        "created_at_ms",
        "version",
        "hash",
        "paragraph_content_type",
        "total_paragraphs",
        "has_prev_context",
        "has_next_context",
        "is_grouped",
        "group_size",
    }
)
_JSON_FIELDS = ("section_path", "group_indices")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Embedding function that is never called.

    All vectors are computed by the embedding provider and passed to the
    collection explicitly; this keeps ChromaDB from loading its default
    ONNX model.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError("storyrag passes pre-computed embeddings to ChromaDB.")

    def name(self) -> str:
        return "noop_precomputed"


@dataclass
class _LexicalIndex:
    rows: list[StoredChunk]
    retriever: bm25s.BM25 | None


class ChromaDBChunkStore(IChunkStore):
    """Chunk store backed by a persistent ChromaDB collection and BM25.

    Parameters
    ----------
    persist_directory:
        Directory of the ChromaDB persistent client.
    collection_name:
        Name of the chunk table.
    """

    def __init__(
        self,
        persist_directory: str = "data/chromadb",
        collection_name: str = "chunks",
    ) -> None:
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._client: Any = None
        self._collection: Any = None
        self._index_config = IndexConfig()
        self._indexes_pending = False
        self._lexical: dict[tuple[str, ...], _LexicalIndex] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the persistent client and the chunk collection, if present."""
        if self._client is None:
            try:
                self._client = chromadb.PersistentClient(
                    path=self._persist_directory,
                    settings=ChromaSettings(anonymized_telemetry=False),
                )
            except Exception as exc:
                raise RAGError(
                    message=f"Failed to open ChromaDB at {self._persist_directory}: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

        try:
            self._collection = self._client.get_collection(
                name=self._collection_name,
                embedding_function=_NoopEmbeddingFunction(),
            )
        except (ValueError, ChromaError):
            # Missing collection: the store is connected but empty.
            self._collection = None

        logger.info(
            "chunk_store_connected",
            path=self._persist_directory,
            collection=self._collection_name,
            table_exists=self.table_exists,
        )

    async def ensure_indexes(self, config: IndexConfig) -> None:
        self._require_connected()
        for column in (config.vector_column, config.text_column):
            if not _IDENTIFIER_RE.match(column):
                raise ValidationError(f"Invalid index column name: {column!r}")
        if config.text_column not in _TEXT_COLUMNS:
            raise ValidationError(
                f"Full-text column must be one of {sorted(_TEXT_COLUMNS)}, got {config.text_column!r}"
            )

        self._index_config = config
        if self._collection is None:
            # Applied when the first upsert creates the collection.
            self._indexes_pending = True
            logger.info("chunk_store_indexes_deferred", collection=self._collection_name)
            return

        self._indexes_pending = False
        logger.info(
            "chunk_store_indexes_ready",
            collection=self._collection_name,
            vector_index=config.create_vector_index,
            fts_index=config.create_fts_index,
            fts_column=config.text_column,
        )

    @property
    def table_exists(self) -> bool:
        return self._collection is not None

    async def count(self) -> int:
        self._require_connected()
        if self._collection is None:
            return 0
        return self._collection.count()

    def get_provider_name(self) -> str:
        return "chromadb"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_chunks(self, rows: list[Chunk]) -> int:
        """Validate every row, then write them by id (idempotent for equal content)."""
        self._require_connected()
        if not rows:
            return 0
        _validate_rows(rows)

        if self._collection is None:
            self._collection = self._create_collection()

        try:
            for start in range(0, len(rows), _UPSERT_BATCH_SIZE):
                batch = rows[start : start + _UPSERT_BATCH_SIZE]
                self._collection.upsert(
                    ids=[row.id for row in batch],
                    embeddings=[list(row.vector) for row in batch],
                    documents=[row.text for row in batch],
                    metadatas=[_row_to_metadata(row) for row in batch],
                )
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        finally:
            self._lexical.clear()

        logger.info("chunk_store_upsert", count=len(rows), collection=self._collection_name)
        return len(rows)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def vector_search(
        self,
        vector: list[float],
        limit: int,
        filter: dict[str, FilterValue] | None = None,
    ) -> list[StoredChunk]:
        """Nearest rows by cosine distance, ascending."""
        self._require_table()
        if not vector:
            raise ValidationError("Query vector must not be empty")
        if limit <= 0:
            raise ValidationError(f"limit must be positive, got {limit}")
        where = _build_where(filter)

        try:
            total = self._collection.count()
            if total == 0:
                return []
            kwargs: dict[str, Any] = {
                "query_embeddings": [list(vector)],
                "n_results": min(limit, total),
                "include": ["documents", "metadatas", "distances"],
            }
            if where:
                kwargs["where"] = where
            results = self._collection.query(**kwargs)
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB vector search failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        ids = results["ids"][0] if results.get("ids") else []
        documents = results["documents"][0] if results.get("documents") else [""] * len(ids)
        metadatas = results["metadatas"][0] if results.get("metadatas") else [{}] * len(ids)
        distances = results["distances"][0] if results.get("distances") else [None] * len(ids)

        rows = [
            _record_to_row(chunk_id, document, metadata, distance=distance)
            for chunk_id, document, metadata, distance in zip(
                ids, documents, metadatas, distances, strict=True
            )
        ]
        logger.debug("chunk_store_vector_search", limit=limit, results=len(rows), filtered=bool(where))
        return rows

    async def full_text_search(
        self,
        query: str,
        limit: int,
        fts_columns: list[str] | None = None,
        filter: dict[str, FilterValue] | None = None,
    ) -> list[StoredChunk]:
        """BM25-ranked rows, best first; rows scoring zero are excluded."""
        self._require_table()
        if not query or not query.strip():
            raise ValidationError("Full-text query must not be empty")
        if limit <= 0:
            raise ValidationError(f"limit must be positive, got {limit}")
        if not self._index_config.create_fts_index:
            raise ConfigurationError(
                "Full-text index is disabled for this store",
                provider_name=self.get_provider_name(),
            )

        columns = tuple(fts_columns or [self._index_config.text_column])
        unknown = [c for c in columns if c not in _TEXT_COLUMNS]
        if unknown:
            raise ValidationError(f"Unknown full-text column(s): {unknown}")
        _build_where(filter)

        index = self._lexical_index(columns)
        if index.retriever is None or not index.rows:
            return []

        query_tokens = bm25s.tokenize(
            [query], stopwords=_STOPWORDS, return_ids=False, show_progress=False
        )[0]
        vocab = getattr(index.retriever, "vocab_dict", None) or {}
        if not any(token in vocab for token in query_tokens):
            return []

        # With a filter, rank everything so filtered-out rows do not eat the limit.
        k = len(index.rows) if filter else min(limit, len(index.rows))
        try:
            doc_indices, scores = index.retriever.retrieve(
                [query_tokens], k=k, show_progress=False
            )
        except Exception as exc:
            raise RAGError(
                message=f"BM25 search failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        rows: list[StoredChunk] = []
        for position in range(doc_indices.shape[1]):
            score = float(scores[0, position])
            if score <= 0:
                continue
            row = index.rows[int(doc_indices[0, position])]
            if filter and not _matches(row, filter):
                continue
            rows.append(row.model_copy(update={"score": score}))
            if len(rows) >= limit:
                break

        logger.debug(
            "chunk_store_full_text_search",
            columns=list(columns),
            limit=limit,
            results=len(rows),
        )
        return rows

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_connected(self) -> None:
        if self._client is None:
            raise ConfigurationError(
                "Chunk store is not connected; call connect() first",
                provider_name=self.get_provider_name(),
            )

    def _require_table(self) -> None:
        self._require_connected()
        if self._collection is None:
            raise ConfigurationError(
                f"Chunk table '{self._collection_name}' does not exist yet",
                provider_name=self.get_provider_name(),
            )

    def _create_collection(self) -> Any:
        metadata = {"hnsw:space": "cosine"}
        try:
            collection = self._client.get_or_create_collection(
                name=self._collection_name,
                metadata=metadata,
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            # Collection persisted with a different embedding function.
            collection = self._client.get_or_create_collection(
                name=self._collection_name,
                metadata=metadata,
            )

        logger.info("chunk_store_table_created", collection=self._collection_name)
        if self._indexes_pending:
            self._indexes_pending = False
            logger.info(
                "chunk_store_indexes_ready",
                collection=self._collection_name,
                vector_index=self._index_config.create_vector_index,
                fts_index=self._index_config.create_fts_index,
                fts_column=self._index_config.text_column,
            )
        return collection

    def _lexical_index(self, columns: tuple[str, ...]) -> _LexicalIndex:
        cached = self._lexical.get(columns)
        if cached is not None:
            return cached

        rows = self._snapshot_rows()
        corpus = [" ".join(getattr(row, column) or "" for column in columns) for row in rows]
        retriever: bm25s.BM25 | None = None
        if corpus:
            corpus_tokens = bm25s.tokenize(corpus, stopwords=_STOPWORDS, show_progress=False)
            if corpus_tokens.vocab:
                retriever = bm25s.BM25()
                retriever.index(corpus_tokens, show_progress=False)

        index = _LexicalIndex(rows=rows, retriever=retriever)
        self._lexical[columns] = index
        logger.info("chunk_store_lexical_index_built", columns=list(columns), rows=len(rows))
        return index

    def _snapshot_rows(self) -> list[StoredChunk]:
        """Read every row (paged, to stay under SQLite's bind limit)."""
        rows: list[StoredChunk] = []
        offset = 0
        try:
            while True:
                page = self._collection.get(
                    include=["documents", "metadatas"],
                    limit=_PAGE_SIZE,
                    offset=offset,
                )
                ids = page.get("ids") or []
                if not ids:
                    break
                documents = page.get("documents") or [""] * len(ids)
                metadatas = page.get("metadatas") or [{}] * len(ids)
                rows.extend(
                    _record_to_row(chunk_id, document, metadata)
                    for chunk_id, document, metadata in zip(ids, documents, metadatas, strict=True)
                )
                if len(ids) < _PAGE_SIZE:
                    break
                offset += _PAGE_SIZE
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB snapshot read failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        # Stable order so BM25 document indices are reproducible.
        rows.sort(key=lambda row: row.id)
        return rows


# ----------------------------------------------------------------------
# Row / metadata conversion
# ----------------------------------------------------------------------


def _validate_rows(rows: list[Chunk]) -> None:
    dimension: int | None = None
    for position, row in enumerate(rows):
        if not row.id or not row.id.strip():
            raise ValidationError(f"Row {position} has an empty id")
        if not row.text or not row.text.strip():
            raise ValidationError(f"Row {position} ({row.id}) has empty text")
        if not row.vector:
            raise ValidationError(f"Row {position} ({row.id}) has an empty vector")
        if dimension is None:
            dimension = len(row.vector)
        elif len(row.vector) != dimension:
            raise ValidationError(
                f"Row {position} ({row.id}) has a {len(row.vector)}-dim vector, "
                f"expected {dimension}"
            )


def _row_to_metadata(row: Chunk) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    for key, value in row.metadata.model_dump().items():
        if value is None:
            continue
        if key in _JSON_FIELDS:
            metadata[key] = json.dumps(value, ensure_ascii=False)
        else:
            metadata[key] = value
    metadata["normalized_text"] = row.normalized_text
    metadata["summary_for_embedding"] = row.summary_for_embedding
    return metadata


def _record_to_row(
    chunk_id: str,
    document: str | None,
    metadata: dict[str, Any] | None,
    distance: float | None = None,
) -> StoredChunk:
    fields = dict(metadata or {})
    normalized_text = fields.pop("normalized_text", "") or ""
    summary = fields.pop("summary_for_embedding", "") or ""
    for key in _JSON_FIELDS:
        raw = fields.get(key)
        if isinstance(raw, str):
            try:
                fields[key] = json.loads(raw)
            except json.JSONDecodeError:
                fields.pop(key)
    return StoredChunk(
        id=chunk_id,
        text=document or "",
        normalized_text=normalized_text,
        summary_for_embedding=summary,
        metadata=ChunkMetadata.model_validate(fields),
        distance=float(distance) if distance is not None else None,
    )


def _build_where(filter: dict[str, FilterValue] | None) -> dict[str, Any] | None:
    """Translate an equality filter into a ChromaDB ``where`` document."""
    if not filter:
        return None
    clauses: list[dict[str, Any]] = []
    for key, value in filter.items():
        if key not in _FILTER_FIELDS:
            raise ValidationError(f"Unsupported filter field: {key!r}")
        if not isinstance(value, (str, int, float, bool)):
            raise ValidationError(
                f"Filter value for {key!r} must be str, int, float or bool, "
                f"got {type(value).__name__}"
            )
        clauses.append({key: {"$eq": value}})
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


def _matches(row: StoredChunk, filter: dict[str, FilterValue]) -> bool:
    return all(getattr(row.metadata, key, None) == value for key, value in filter.items())

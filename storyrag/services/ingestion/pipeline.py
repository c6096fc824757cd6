"""Staged ingestion pipeline: load -> web-enrich -> chunk -> embed & store.

:class:`IngestionPipeline` coordinates the loaders, the chunker, the
optional LLM enricher, the embedding provider and the chunk store without
any of them knowing about each other.  All collaborators are injected, so
tests can swap any of them for fakes.

Stages run strictly in order over one mutable :class:`IngestState`.  When
a stage raises, the run stops with :class:`IngestionAbortedError` carrying
the statistics gathered so far.  Failures that only affect one item (a
web-research URL, a chunk's LLM enrichment) are logged and skipped.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import structlog

from storyrag.config.schema import AppConfig, IngestRoot
from storyrag.interfaces.chunk_store import IChunkStore
from storyrag.interfaces.embedding_provider import IEmbeddingProvider
from storyrag.interfaces.web_search_provider import IWebSearchProvider
from storyrag.models.enrichment import ExtractedMetadata
from storyrag.models.ingest import ChunkDraft, LoadedSource
from storyrag.models.rag import Chunk, ChunkMetadata, IngestStats, SourceType
from storyrag.providers.loaders.file_loader import FileLoader
from storyrag.providers.loaders.url_loader import UrlLoader
from storyrag.services.ingestion.chunk_enricher import ChunkEnricher
from storyrag.services.ingestion.chunker import TextChunker
from storyrag.services.search.hybrid_search import HybridSearchEngine
from storyrag.utils.concurrency import ConcurrencyLimiter, throttled_gather
from storyrag.utils.errors import ConfigurationError, IngestionAbortedError, ValidationError
from storyrag.utils.hashing import compute_chunk_id, compute_content_hash, compute_source_id
from storyrag.utils.text_normalizer import normalize_text_for_search, truncate
from storyrag.utils.url_safety import is_safe_public_http_url

logger = structlog.get_logger(logger_name=__name__)

_URL_PREFIX_RE = re.compile(r"^https?://", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class IngestState:
    """Mutable state threaded through the pipeline stages."""

    config: AppConfig
    explicit_sources: list[str] | None = None
    chunker: TextChunker | None = None
    sources: list[LoadedSource] = field(default_factory=list)
    web_sources: list[LoadedSource] = field(default_factory=list)
    drafts: list[ChunkDraft] = field(default_factory=list)
    chunks_stored: int = 0
    started: float = field(default_factory=time.monotonic)

    @property
    def documents_loaded(self) -> int:
        return sum(len(source.documents) for source in self.sources)

    def stats(self) -> IngestStats:
        return IngestStats(
            sources=len(self.sources),
            documents_loaded=self.documents_loaded,
            chunks_stored=self.chunks_stored,
            web_research_fetched=len(self.web_sources),
            elapsed_ms=round((time.monotonic() - self.started) * 1000.0, 2),
        )


class IngestionPipeline:
    """Ingests local files and URLs into the chunk store.

    Parameters
    ----------
    store:
        Chunk store; connected at the start of every run.
    embedding_provider:
        Embeds each chunk's ``summary_for_embedding``.
    chunker:
        Overrides the chunker built from ``config.ingest`` on each run.
    enricher:
        Optional LLM enricher; without it the chunk text is used as is.
    web_search:
        Optional web-search provider for the web-enrich stage.
    http_client:
        Shared client for URL sources and web-research fetches.
    search_engine:
        Used for the optional post-ingest smoke query.
    enrichment_limiter:
        Caps concurrent enrichment calls.  Defaults to unlimited, since the
        LLM providers carry their own limiters.
    """

    def __init__(
        self,
        store: IChunkStore,
        embedding_provider: IEmbeddingProvider,
        chunker: TextChunker | None = None,
        enricher: ChunkEnricher | None = None,
        web_search: IWebSearchProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
        search_engine: HybridSearchEngine | None = None,
        enrichment_limiter: ConcurrencyLimiter | None = None,
    ) -> None:
        self._store = store
        self._embedding_provider = embedding_provider
        self._chunker = chunker
        self._enricher = enricher
        self._web_search = web_search
        self._http = http_client
        self._search_engine = search_engine
        self._enrichment_limiter = enrichment_limiter or ConcurrencyLimiter(0)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        config: AppConfig,
        explicit_sources: list[str] | None = None,
    ) -> IngestStats:
        """Run every stage and return the run statistics.

        Parameters
        ----------
        config:
            Application configuration; only ``config.ingest`` and
            ``config.search`` are read.
        explicit_sources:
            File paths and/or http(s) URLs.  When omitted, files are
            discovered under ``config.ingest.roots``.

        Raises
        ------
        storyrag.utils.errors.IngestionAbortedError
            If any stage fails.  ``stats`` holds the partial statistics.
        """
        ingest = config.ingest
        state = IngestState(
            config=config,
            explicit_sources=explicit_sources,
            chunker=self._chunker
            or TextChunker(chunking=ingest.chunk, context=ingest.context, grouping=ingest.grouping),
        )

        stages = (
            ("connect", self._connect),
            ("load_documents", self._load_documents),
            ("web_enrich", self._web_enrich),
            ("chunk", self._chunk),
            ("embed_and_store", self._embed_and_store),
        )
        for name, stage in stages:
            stage_start = time.monotonic()
            try:
                await stage(state)
            except Exception as exc:
                stats = state.stats()
                logger.error(
                    "ingest_stage_failed",
                    stage=name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    chunks_stored=stats.chunks_stored,
                )
                raise IngestionAbortedError(
                    stage=name,
                    stats=stats,
                    message=f"Ingestion aborted in stage '{name}': {exc}",
                ) from exc
            logger.info(
                "ingest_stage_complete",
                stage=name,
                elapsed_ms=round((time.monotonic() - stage_start) * 1000.0, 2),
            )

        stats = state.stats()
        logger.info(
            "ingestion_complete",
            sources=stats.sources,
            documents=stats.documents_loaded,
            chunks=stats.chunks_stored,
            web_research=stats.web_research_fetched,
            elapsed_ms=stats.elapsed_ms,
        )

        if ingest.smoke_query:
            await self._smoke_query(config, ingest.smoke_query)

        return stats

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _connect(self, state: IngestState) -> None:
        await self._store.connect()
        await self._store.ensure_indexes(state.config.ingest.indexing)

    async def _load_documents(self, state: IngestState) -> None:
        ingest = state.config.ingest
        roots = ingest.roots

        if state.explicit_sources:
            targets = list(state.explicit_sources)
        else:
            targets = [str(path) for path in _discover_files(roots, ingest.extensions)]

        for target in targets:
            if _URL_PREFIX_RE.match(target):
                if not is_safe_public_http_url(target):
                    raise ValidationError(f"Refusing non-public URL source: {target}")
                documents = await UrlLoader(
                    target,
                    self._require_http(),
                    timeout_s=ingest.fetch_timeout_s,
                    max_bytes=ingest.max_source_bytes,
                ).load()
                source = LoadedSource(
                    source_type=SourceType.URL,
                    uri=target,
                    content_type=documents[0].metadata.get("content_type", "unknown"),
                    documents=documents,
                )
            else:
                path = Path(target)
                root = _root_for(path, roots)
                loader = FileLoader(path)
                documents = await loader.load()
                source = LoadedSource(
                    source_type=SourceType.FILE,
                    uri=str(path.resolve()),
                    content_type=loader.content_type,
                    documents=documents,
                    language=root.language if root else None,
                    paragraph_content_type=root.paragraph_content_type if root else None,
                )

            state.sources.append(source)
            logger.debug(
                "source_loaded",
                uri=source.uri,
                source_type=source.source_type,
                documents=len(source.documents),
            )

        logger.info(
            "documents_loaded",
            sources=len(state.sources),
            documents=state.documents_loaded,
        )

    async def _web_enrich(self, state: IngestState) -> None:
        settings = state.config.ingest.enrichment
        if not settings.enabled or self._web_search is None:
            return
        if settings.max_urls == 0 or not state.sources:
            return
        http = self._require_http()

        limiter = ConcurrencyLimiter(settings.max_concurrent_fetches)
        # Searches run in windows of at most one limiter's worth, in source
        # order, and stop as soon as enough candidate URLs are collected.
        window = max(settings.max_concurrent_fetches, 0) or len(state.sources)

        queries = [_seed_query(source, settings.seed_query_chars) for source in state.sources]
        known = {source.uri for source in state.sources}
        urls: list[str] = []
        searched = 0
        while searched < len(queries) and len(urls) < settings.max_urls:
            batch = queries[searched : searched + window]
            searched += len(batch)
            search_results = await throttled_gather(
                [self._web_search.search(query) for query in batch],
                limiter=limiter,
                return_exceptions=True,
            )
            for query, result in zip(batch, search_results):
                if isinstance(result, Exception):
                    logger.warning(
                        "web_research_query_failed", query=query[:80], error=str(result)
                    )
                    continue
                for hit in result:
                    if len(urls) >= settings.max_urls:
                        break
                    if hit.url in known or not is_safe_public_http_url(hit.url):
                        continue
                    known.add(hit.url)
                    urls.append(hit.url)

        loaders = [
            UrlLoader(
                url,
                http,
                timeout_s=state.config.ingest.fetch_timeout_s,
                max_bytes=state.config.ingest.max_source_bytes,
                max_chars=settings.max_chars_per_url,
            )
            for url in urls
        ]
        fetched = await throttled_gather(
            [loader.load() for loader in loaders],
            limiter=limiter,
            return_exceptions=True,
        )

        for url, documents in zip(urls, fetched):
            if isinstance(documents, Exception):
                logger.warning("web_research_fetch_failed", url=url, error=str(documents))
                continue
            documents = [doc for doc in documents if doc.page_content]
            if not documents:
                continue
            state.web_sources.append(
                LoadedSource(
                    source_type=SourceType.WEB_RESEARCH,
                    uri=url,
                    content_type=documents[0].metadata.get("content_type", "unknown"),
                    documents=documents,
                )
            )

        logger.info(
            "web_research_complete",
            queries=searched,
            candidate_urls=len(urls),
            fetched=len(state.web_sources),
        )

    async def _chunk(self, state: IngestState) -> None:
        for source in [*state.sources, *state.web_sources]:
            source_id = compute_source_id(str(source.source_type), source.uri)
            offset = 0
            for document in source.documents:
                pieces = state.chunker.chunk(document.page_content)
                if not pieces:
                    continue
                frontmatter = document.metadata.get("frontmatter") or {}
                title = frontmatter.get("title") or document.metadata.get("title")
                content_type = document.metadata.get("content_type") or source.content_type

                highest = -1
                for position, piece in enumerate(pieces):
                    local_index = (
                        piece.paragraph_index if piece.paragraph_index is not None else position
                    )
                    highest = max(highest, local_index)
                    is_paragraph = piece.paragraph_index is not None
                    state.drafts.append(
                        ChunkDraft(
                            source_type=source.source_type,
                            source_uri=source.uri,
                            source_id=source_id,
                            content_type=content_type,
                            chunk_index=offset + local_index,
                            text=piece.text,
                            text_with_context=piece.text_with_context,
                            section_path=piece.section_path,
                            title=str(title) if title else None,
                            language=source.language or "unknown",
                            paragraph_content_type=source.paragraph_content_type,
                            total_paragraphs=piece.total_paragraphs,
                            has_prev_context=piece.has_prev_context if is_paragraph else None,
                            has_next_context=piece.has_next_context if is_paragraph else None,
                            is_grouped=piece.is_grouped if is_paragraph else None,
                            group_size=piece.group_size if is_paragraph else None,
                            group_indices=(
                                [offset + i for i in piece.group_indices] if is_paragraph else None
                            ),
                        )
                    )
                offset += highest + 1

        logger.info("chunking_complete", drafts=len(state.drafts), strategy=state.chunker.strategy)

    async def _embed_and_store(self, state: IngestState) -> None:
        batch_size = state.config.ingest.batch_size
        for start in range(0, len(state.drafts), batch_size):
            batch = state.drafts[start : start + batch_size]
            rows = await self._build_rows(batch, state.config)
            state.chunks_stored += await self._store.upsert_chunks(rows)
            logger.debug(
                "chunk_batch_stored",
                batch_start=start,
                batch_size=len(rows),
                total_stored=state.chunks_stored,
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _build_rows(self, batch: list[ChunkDraft], config: AppConfig) -> list[Chunk]:
        enriched = await self._enrich_batch(batch)

        normalized_texts: list[str] = []
        summaries: list[str] = []
        titles: list[str | None] = []
        languages: list[str] = []
        content_types: list[str] = []
        for draft, metadata in zip(batch, enriched):
            if metadata is None:
                normalized_texts.append(normalize_text_for_search(draft.text))
                summaries.append(
                    truncate(
                        draft.text_with_context or draft.text,
                        config.ingest.fallback_summary_chars,
                    )
                )
                titles.append(draft.title)
                languages.append(draft.language)
                content_types.append(draft.content_type)
            else:
                normalized_texts.append(metadata.normalized_text)
                summaries.append(metadata.summary_for_embedding)
                titles.append(draft.title or metadata.title)
                languages.append(
                    draft.language if draft.language != "unknown" else metadata.language
                )
                content_types.append(
                    draft.content_type
                    if metadata.content_type == "unknown"
                    else metadata.content_type
                )

        vectors = await self._embedding_provider.embed_batch(summaries)

        created_at_ms = int(time.time() * 1000)
        rows: list[Chunk] = []
        for i, draft in enumerate(batch):
            content_hash = compute_content_hash(normalized_texts[i])
            rows.append(
                Chunk(
                    id=compute_chunk_id(draft.source_id, draft.chunk_index, content_hash),
                    text=draft.text,
                    normalized_text=normalized_texts[i],
                    summary_for_embedding=summaries[i],
                    vector=vectors[i],
                    metadata=ChunkMetadata(
                        source_type=draft.source_type,
                        source_id=draft.source_id,
                        source_uri=draft.source_uri,
                        content_type=content_types[i],
                        language=languages[i] or "unknown",
                        title=titles[i],
                        section_path=draft.section_path,
                        chunk_index=draft.chunk_index,
                        created_at_ms=created_at_ms,
                        hash=content_hash,
                        paragraph_content_type=draft.paragraph_content_type,
                        total_paragraphs=draft.total_paragraphs,
                        has_prev_context=draft.has_prev_context,
                        has_next_context=draft.has_next_context,
                        is_grouped=draft.is_grouped,
                        group_size=draft.group_size,
                        group_indices=draft.group_indices,
                    ),
                )
            )
        return rows

    async def _enrich_batch(self, batch: list[ChunkDraft]) -> list[ExtractedMetadata | None]:
        if self._enricher is None:
            return [None] * len(batch)

        results = await throttled_gather(
            [
                self._enricher.enrich(
                    draft.text_with_context or draft.text,
                    draft.source_uri,
                    draft.content_type,
                )
                for draft in batch
            ],
            limiter=self._enrichment_limiter,
            return_exceptions=True,
        )

        enriched: list[ExtractedMetadata | None] = []
        for draft, result in zip(batch, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "chunk_enrichment_failed",
                    source_uri=draft.source_uri,
                    chunk_index=draft.chunk_index,
                    error=str(result),
                )
                enriched.append(None)
            else:
                enriched.append(result)
        return enriched

    async def _smoke_query(self, config: AppConfig, query: str) -> None:
        if self._search_engine is None:
            logger.debug("smoke_query_skipped", reason="no search engine")
            return
        try:
            results = await self._search_engine.search(query, config.search)
        except Exception as exc:
            logger.warning("smoke_query_failed", query=query, error=str(exc))
            return
        logger.info(
            "smoke_query_complete",
            query=query,
            results=len(results),
            top_id=results[0].id if results else None,
        )

    def _require_http(self) -> httpx.AsyncClient:
        if self._http is None:
            raise ConfigurationError("URL sources need an HTTP client")
        return self._http


def _discover_files(roots: list[IngestRoot], extensions: list[str]) -> list[Path]:
    """Return matching files under every root, sorted, without duplicates."""
    wanted = {ext.lower() for ext in extensions}
    seen: set[Path] = set()
    found: list[Path] = []
    for root in roots:
        base = Path(root.path)
        if not base.is_dir():
            logger.warning("ingest_root_missing", path=root.path)
            continue
        for path in sorted(base.rglob("*")):
            resolved = path.resolve()
            if not path.is_file() or path.suffix.lower() not in wanted or resolved in seen:
                continue
            seen.add(resolved)
            found.append(path)
    return found


def _root_for(path: Path, roots: list[IngestRoot]) -> IngestRoot | None:
    resolved = path.resolve()
    for root in roots:
        if resolved.is_relative_to(Path(root.path).resolve()):
            return root
    return None


def _seed_query(source: LoadedSource, max_chars: int) -> str:
    for document in source.documents:
        text = _WHITESPACE_RE.sub(" ", document.page_content).strip()
        if text:
            return text[:max_chars]
    name = source.uri.rstrip("/").rsplit("/", 1)[-1]
    return Path(name).stem or source.uri


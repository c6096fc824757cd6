"""storyrag composition root.

Factories that turn a validated :class:`AppConfig` into providers,
services and the ingestion pipeline, plus two entry points:

- :func:`run_ingestion` -- ingest the configured roots (or explicit
  sources) into the chunk store.
- :func:`search` -- run one hybrid search against the chunk store.

Optional providers (LLM enrichment, web search, re-ranking) are built only
when enabled and keyed; otherwise the factories return ``None`` and the
services skip the corresponding step.
"""

from __future__ import annotations

import httpx
import structlog

from storyrag.config.loader import load_config
from storyrag.config.schema import AppConfig
from storyrag.config.settings import Settings
from storyrag.interfaces.chunk_store import IChunkStore
from storyrag.interfaces.embedding_provider import IEmbeddingProvider
from storyrag.interfaces.llm_provider import ILLMProvider
from storyrag.interfaces.reranker_provider import IRerankerProvider
from storyrag.interfaces.web_search_provider import IWebSearchProvider
from storyrag.models.rag import HybridSearchConfig, IngestStats, SearchResult
from storyrag.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from storyrag.providers.llm.openai_provider import OpenAICompatibleLLMProvider
from storyrag.providers.llm.wrappers import RateLimitedLLMProvider, RetryingLLMProvider
from storyrag.providers.rerank.jina_reranker_provider import JinaRerankerProvider
from storyrag.providers.search.brave_search_provider import BraveSearchProvider
from storyrag.providers.vector_store.chromadb_chunk_store import ChromaDBChunkStore
from storyrag.services.ingestion.chunk_enricher import ChunkEnricher
from storyrag.services.ingestion.pipeline import IngestionPipeline
from storyrag.services.search.hybrid_search import HybridSearchEngine
from storyrag.utils.concurrency import ConcurrencyLimiter
from storyrag.utils.errors import ConfigurationError
from storyrag.utils.logging import configure_logging
from storyrag.utils.retry import RetryPolicy

logger = structlog.get_logger(logger_name=__name__)

_USER_AGENT = "storyrag/0.1"


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def load_app_config(settings: Settings | None = None) -> AppConfig:
    """Load the configuration and configure logging from it."""
    settings = settings or Settings()
    config = load_config(settings=settings)
    configure_logging(
        log_level=config.log_level,
        json_output=(settings.app_env == "production"),
    )
    return config


def build_http_client() -> httpx.AsyncClient:
    """Shared client for loaders and HTTP providers.

    Redirects are not followed here; the URL loader follows them itself so
    each hop is checked.  Per-request timeouts are applied by
    :func:`storyrag.utils.http.fetch_with_limits`.
    """
    return httpx.AsyncClient(
        follow_redirects=False,
        headers={"User-Agent": _USER_AGENT},
    )


# ---------------------------------------------------------------------------
# Provider factories
# ---------------------------------------------------------------------------


def build_embedding_provider(config: AppConfig) -> IEmbeddingProvider:
    """Embeddings run against the OpenRouter (OpenAI-compatible) endpoint."""
    openrouter = config.providers.openrouter
    if not openrouter.is_configured:
        raise ConfigurationError(
            "OPENROUTER_API_KEY is required for embeddings",
            provider_name="openrouter",
        )
    embeddings = config.embeddings
    return OpenAIEmbeddingProvider(
        api_key=openrouter.api_key,
        base_url=openrouter.base_url,
        model=embeddings.model,
        max_input_chars=embeddings.max_input_chars,
        cache_size=embeddings.cache_size,
        timeout_s=embeddings.timeout_s,
        max_retries=embeddings.max_retries,
        provider_name="openrouter",
    )


def build_llm_providers(config: AppConfig) -> dict[str, ILLMProvider]:
    """Build every keyed LLM provider, wrapped with its own limiter and retries."""
    providers: dict[str, ILLMProvider] = {}
    for name, provider_config in (
        ("deepseek", config.providers.deepseek),
        ("openrouter", config.providers.openrouter),
    ):
        if not provider_config.is_configured:
            continue
        inner = OpenAICompatibleLLMProvider(
            provider_name=name,
            api_key=provider_config.api_key,
            base_url=provider_config.base_url,
            model=provider_config.model,
            timeout_s=provider_config.timeout_s,
            http_referer=provider_config.http_referer,
            app_title=provider_config.app_title,
        )
        providers[name] = RetryingLLMProvider(
            RateLimitedLLMProvider(inner, ConcurrencyLimiter(provider_config.concurrency)),
            RetryPolicy(max_retries=provider_config.max_retries),
        )

    logger.debug("llm_providers_built", providers=sorted(providers))
    return providers


def build_chunk_enricher(
    config: AppConfig,
    llm_providers: dict[str, ILLMProvider],
) -> ChunkEnricher | None:
    """DeepSeek extracts; OpenRouter (when keyed) adds a second-opinion analysis.

    Falls back to OpenRouter as the only provider when DeepSeek has no key.
    """
    llm = config.ingest.llm
    if not llm.enabled:
        return None

    if "deepseek" in llm_providers:
        primary_name = "deepseek"
    elif "openrouter" in llm_providers:
        primary_name = "openrouter"
    else:
        logger.warning("chunk_enrichment_disabled", reason="no LLM provider configured")
        return None

    secondary = None
    if llm.two_stage and primary_name == "deepseek":
        secondary = llm_providers.get("openrouter")

    logger.info(
        "chunk_enricher_built",
        primary=primary_name,
        two_stage=secondary is not None,
    )
    return ChunkEnricher(
        primary=llm_providers[primary_name],
        primary_model=llm.model,
        secondary=secondary,
        secondary_model=llm.secondary_model,
    )


def build_reranker(config: AppConfig, http_client: httpx.AsyncClient) -> IRerankerProvider | None:
    reranker = config.reranker
    if not reranker.enabled:
        return None
    if not reranker.api_key:
        logger.warning("reranker_disabled", reason="JINA_API_KEY not set")
        return None
    return JinaRerankerProvider(
        api_key=reranker.api_key,
        http_client=http_client,
        base_url=reranker.base_url,
        model=reranker.model,
        max_documents=reranker.max_documents,
        timeout_s=reranker.timeout_s,
        max_retries=reranker.max_retries,
    )


def build_web_search(
    config: AppConfig,
    http_client: httpx.AsyncClient,
) -> IWebSearchProvider | None:
    brave = config.brave_search
    if not brave.enabled:
        return None
    if not brave.api_key:
        logger.warning("web_search_disabled", reason="BRAVE_SEARCH_API_KEY not set")
        return None
    return BraveSearchProvider(
        api_key=brave.api_key,
        http_client=http_client,
        base_url=brave.base_url,
        country=brave.country,
        search_lang=brave.search_lang,
        count=brave.count,
        extra_snippets=brave.extra_snippets,
        timeout_s=brave.timeout_s,
        max_retries=brave.max_retries,
    )


def build_chunk_store(config: AppConfig) -> IChunkStore:
    return ChromaDBChunkStore(
        persist_directory=config.vectordb.path,
        collection_name=config.vectordb.table,
    )


# ---------------------------------------------------------------------------
# Service factories
# ---------------------------------------------------------------------------


def build_search_engine(
    config: AppConfig,
    store: IChunkStore,
    embedding_provider: IEmbeddingProvider,
    reranker: IRerankerProvider | None = None,
) -> HybridSearchEngine:
    return HybridSearchEngine(
        store=store,
        embedding_provider=embedding_provider,
        reranker=reranker,
        default_config=config.search,
    )


def build_ingestion_pipeline(
    config: AppConfig,
    http_client: httpx.AsyncClient,
    store: IChunkStore | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
) -> IngestionPipeline:
    """Assemble the pipeline with every provider the configuration enables."""
    store = store or build_chunk_store(config)
    embedding_provider = embedding_provider or build_embedding_provider(config)

    enricher = build_chunk_enricher(config, build_llm_providers(config))
    web_search = build_web_search(config, http_client) if config.ingest.enrichment.enabled else None
    search_engine = None
    if config.ingest.smoke_query:
        search_engine = build_search_engine(
            config, store, embedding_provider, build_reranker(config, http_client)
        )

    return IngestionPipeline(
        store=store,
        embedding_provider=embedding_provider,
        enricher=enricher,
        web_search=web_search,
        http_client=http_client,
        search_engine=search_engine,
    )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def run_ingestion(
    config: AppConfig | None = None,
    explicit_sources: list[str] | None = None,
) -> IngestStats:
    """Ingest *explicit_sources*, or every file under the configured roots."""
    config = config or load_app_config()
    async with build_http_client() as http_client:
        pipeline = build_ingestion_pipeline(config, http_client)
        return await pipeline.run(config, explicit_sources=explicit_sources)


async def search(
    query: str,
    config: AppConfig | None = None,
    search_config: HybridSearchConfig | None = None,
) -> list[SearchResult]:
    """Run one hybrid search against the configured chunk store."""
    config = config or load_app_config()
    async with build_http_client() as http_client:
        store = build_chunk_store(config)
        await store.connect()
        await store.ensure_indexes(config.ingest.indexing)
        engine = build_search_engine(
            config,
            store,
            build_embedding_provider(config),
            build_reranker(config, http_client),
        )
        return await engine.search(query, search_config)

"""Typed application configuration.

``AppConfig`` is the validated form of ``config/config.yaml`` merged with
environment overrides (see :mod:`storyrag.config.loader`).  Every section
has defaults, so ``AppConfig()`` is a usable offline configuration: no LLM
enrichment, no web research, no reranker.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from storyrag.models.rag import HybridSearchConfig, IndexConfig, ParagraphContentType


class LLMProviderConfig(BaseModel):
    """Connection settings for one OpenAI-compatible chat endpoint."""

    model_config = ConfigDict(frozen=True)

    api_key: str | None = None
    base_url: str
    model: str
    timeout_s: float = Field(default=120.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    concurrency: int = Field(default=2, description="Max in-flight calls; <= 0 means unlimited.")
    http_referer: str | None = None
    app_title: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


class ProvidersConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    deepseek: LLMProviderConfig = LLMProviderConfig(
        base_url="https://api.deepseek.com",
        model="deepseek-chat",
    )
    openrouter: LLMProviderConfig = LLMProviderConfig(
        base_url="https://openrouter.ai/api/v1",
        model="openai/gpt-4o-mini",
    )


class EmbeddingsConfig(BaseModel):
    """Embedding model settings.  Credentials come from ``providers.openrouter``."""

    model_config = ConfigDict(frozen=True)

    model: str = "text-embedding-3-small"
    max_input_chars: int = Field(default=8000, gt=0)
    cache_size: int = Field(default=10_000, ge=0)
    timeout_s: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=2, ge=0)


class VectorDbConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str = "data/chromadb"
    table: str = "chunks"


class IngestRoot(BaseModel):
    """A directory scanned for source files, with the language it holds."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    path: str
    language: str = "unknown"
    paragraph_content_type: ParagraphContentType | None = None


class ChunkingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_size: int = Field(default=1200, gt=0)
    chunk_overlap: int = Field(default=150, ge=0)
    strategy: Literal["markdown", "recursive", "paragraph"] = "markdown"
    normalize: bool = True
    preserve_markdown_blocks: bool = Field(
        default=False,
        description="Paragraph strategy: keep fenced code and tables as single paragraphs.",
    )


class ContextWindowConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    include_context: bool = True
    prev_context_chars: int = Field(default=500, ge=0)
    next_context_chars: int = Field(default=300, ge=0)


class GroupingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    short_threshold: int = Field(default=80, ge=0)
    max_group_size: int = Field(default=4, ge=1)


class WebEnrichmentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    max_urls: int = Field(default=5, ge=0)
    max_chars_per_url: int = Field(default=20_000, gt=0)
    max_concurrent_fetches: int = 4
    seed_query_chars: int = Field(default=300, gt=0)


class IngestLLMConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    model: str | None = None
    secondary_model: str | None = None
    two_stage: bool = Field(
        default=True,
        description="Use OpenRouter as a secondary analyzer when it is configured.",
    )


class IngestConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    roots: list[IngestRoot] = Field(
        default_factory=lambda: [
            IngestRoot(path="data/original", language="en", paragraph_content_type="original"),
            IngestRoot(path="data/translated", language="vi", paragraph_content_type="translated"),
        ]
    )
    extensions: list[str] = Field(default_factory=lambda: [".md", ".mdx", ".txt", ".pdf"])
    chunk: ChunkingConfig = ChunkingConfig()
    context: ContextWindowConfig = ContextWindowConfig()
    grouping: GroupingConfig = GroupingConfig()
    enrichment: WebEnrichmentConfig = WebEnrichmentConfig()
    llm: IngestLLMConfig = IngestLLMConfig()
    indexing: IndexConfig = IndexConfig()
    batch_size: int = Field(default=24, gt=0)
    fallback_summary_chars: int = Field(default=2000, gt=0)
    max_source_bytes: int = Field(default=2_000_000, gt=0)
    fetch_timeout_s: float = Field(default=30.0, gt=0)
    smoke_query: str | None = Field(
        default=None,
        description="Optional query run through hybrid search after ingestion.",
    )


class BraveSearchConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    api_key: str | None = None
    base_url: str = "https://api.search.brave.com/res/v1"
    country: str = "US"
    search_lang: str = "en"
    count: int = Field(default=5, gt=0, le=20)
    extra_snippets: bool = True
    timeout_s: float = Field(default=20.0, gt=0)
    max_retries: int = Field(default=2, ge=0)


class RerankerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    api_key: str | None = None
    base_url: str = "https://api.jina.ai/v1"
    model: str = "jina-reranker-v2-base-multilingual"
    max_documents: int = Field(default=50, gt=0)
    timeout_s: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0)


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    log_level: str = "INFO"
    providers: ProvidersConfig = ProvidersConfig()
    embeddings: EmbeddingsConfig = EmbeddingsConfig()
    vectordb: VectorDbConfig = VectorDbConfig()
    ingest: IngestConfig = IngestConfig()
    brave_search: BraveSearchConfig = BraveSearchConfig()
    reranker: RerankerConfig = RerankerConfig()
    search: HybridSearchConfig = HybridSearchConfig()

"""Application settings loaded from environment variables via pydantic-settings.

Settings are read from two sources, in priority order:

1. Environment variables, e.g. ``DEEPSEEK_API_KEY=sk-...``
2. A ``.env`` file in the working directory (local development)

Field ``deepseek_api_key`` maps to env var ``DEEPSEEK_API_KEY``.  An empty
string means "not set": :func:`storyrag.config.loader.load_config` drops
empty values so they never mask the YAML defaults.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """storyrag environment settings (secrets and per-deployment overrides)."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === LLM Providers ===
    deepseek_api_key: str = ""
    deepseek_base_url: str = ""
    deepseek_model: str = ""
    openrouter_api_key: str = ""
    openrouter_base_url: str = ""
    openrouter_model: str = ""
    openrouter_http_referer: str = ""
    openrouter_x_title: str = ""

    # === Embeddings ===
    embedding_model: str = ""

    # === Vector DB ===
    vectordb_path: str = ""
    vectordb_table: str = ""

    # === Ingest ===
    original_chapters_path: str = ""
    translated_chapters_path: str = ""
    ingest_chunk_strategy: str = ""
    ingest_enrichment_enabled: bool | None = None
    ingest_llm_enabled: bool | None = None

    # === Web Search / Reranking ===
    brave_search_api_key: str = ""
    brave_search_enabled: bool | None = None
    jina_api_key: str = ""
    reranker_enabled: bool | None = None

    # === App ===
    app_env: str = "development"
    log_level: str = ""

    def get_available_llm_providers(self) -> list[str]:
        """Return the LLM provider names that have an API key configured."""
        providers: list[str] = []
        if self.deepseek_api_key:
            providers.append("deepseek")
        if self.openrouter_api_key:
            providers.append("openrouter")
        return providers

"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. config/config.yaml  -- static defaults checked into the repo
  2. .env file           -- local developer overrides (not committed)
  3. Environment vars    -- set at deploy time
  4. ``overrides``       -- explicit values passed by the caller (tests)

The merged dict is validated into :class:`~storyrag.config.schema.AppConfig`.
Secrets (API keys) are only ever read from the environment.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pydantic
import yaml

from storyrag.config.schema import AppConfig
from storyrag.config.settings import Settings
from storyrag.utils.errors import ConfigurationError


def load_config(
    path: str | Path = "config/config.yaml",
    overrides: dict[str, Any] | None = None,
    settings: Settings | None = None,
) -> AppConfig:
    """Load YAML config, merge environment-based Settings, and validate.

    Args:
        path: Path to the YAML configuration file.  A missing file is not an
            error; the built-in defaults apply.
        overrides: Optional nested dict merged last.
        settings: Settings instance; read from the environment when omitted.

    Returns:
        The validated application configuration.

    Raises:
        ConfigurationError: If the file cannot be parsed or the merged
            configuration fails validation.
    """
    config_path = Path(path)
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Failed to parse config file {config_path}: {exc}") from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    else:
        yaml_config = {}

    settings = settings or Settings()
    _deep_merge(yaml_config, _env_overrides(settings, yaml_config))
    if overrides:
        _deep_merge(yaml_config, overrides)

    try:
        return AppConfig.model_validate(yaml_config)
    except pydantic.ValidationError as exc:
        issues = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '(root)'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {issues}") from exc


def _env_overrides(settings: Settings, yaml_config: dict) -> dict:
    """Build the environment layer, leaving out unset values."""
    overrides: dict[str, Any] = {
        "log_level": settings.log_level,
        "providers": {
            "deepseek": {
                "api_key": settings.deepseek_api_key,
                "base_url": settings.deepseek_base_url,
                "model": settings.deepseek_model,
            },
            "openrouter": {
                "api_key": settings.openrouter_api_key,
                "base_url": settings.openrouter_base_url,
                "model": settings.openrouter_model,
                "http_referer": settings.openrouter_http_referer,
                "app_title": settings.openrouter_x_title,
            },
        },
        "embeddings": {"model": settings.embedding_model},
        "vectordb": {
            "path": settings.vectordb_path,
            "table": settings.vectordb_table,
        },
        "ingest": {
            "chunk": {"strategy": settings.ingest_chunk_strategy},
            "enrichment": {"enabled": settings.ingest_enrichment_enabled},
            "llm": {"enabled": settings.ingest_llm_enabled},
        },
        "brave_search": {
            "api_key": settings.brave_search_api_key,
            "enabled": settings.brave_search_enabled,
        },
        "reranker": {
            "api_key": settings.jina_api_key,
            "enabled": settings.reranker_enabled,
        },
    }

    if settings.original_chapters_path or settings.translated_chapters_path:
        overrides["ingest"]["roots"] = _roots_with_paths(
            yaml_config.get("ingest", {}).get("roots"),
            original=settings.original_chapters_path,
            translated=settings.translated_chapters_path,
        )

    return _drop_unset(overrides)


def _roots_with_paths(
    yaml_roots: list[dict] | None,
    original: str,
    translated: str,
) -> list[dict]:
    """Replace the original/translated root paths, keeping the rest."""
    roots = [dict(r) for r in (yaml_roots or _default_roots())]
    for root in roots:
        kind = root.get("paragraph_content_type")
        if kind == "original" and original:
            root["path"] = original
        elif kind == "translated" and translated:
            root["path"] = translated
    return roots


def _default_roots() -> list[dict]:
    return [root.model_dump() for root in AppConfig().ingest.roots]


def _drop_unset(values: dict) -> dict:
    """Recursively remove ``None`` and empty-string values."""
    cleaned: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, dict):
            nested = _drop_unset(value)
            if nested:
                cleaned[key] = nested
        elif value is not None and value != "":
            cleaned[key] = value
    return cleaned


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value

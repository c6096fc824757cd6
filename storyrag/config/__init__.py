"""Configuration: YAML defaults + environment Settings -> validated AppConfig."""

from storyrag.config.loader import load_config
from storyrag.config.schema import AppConfig
from storyrag.config.settings import Settings

__all__ = ["AppConfig", "Settings", "load_config"]

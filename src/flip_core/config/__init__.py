"""Configuration system."""

from flip_core.config.loader import load_config
from flip_core.config.schema import AppConfig

__all__ = ["AppConfig", "load_config"]

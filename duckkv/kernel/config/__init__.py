"""Configuration models and loader."""

from duckkv.kernel.config.loader import ConfigLoader, load_config
from duckkv.kernel.config.models import DuckKVConfig, LoggingConfig, StoreConfig

__all__ = ["ConfigLoader", "DuckKVConfig", "LoggingConfig", "StoreConfig", "load_config"]

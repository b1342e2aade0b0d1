"""duckkv: async key-value storage on an embedded DuckDB database.

Examples
--------
Example usage::

    from duckkv import DuckDBStore

    async with DuckDBStore("./cache.duckdb", key_size=255) as store:
        await store.aset("user:1", {"name": "Ada"})
        payload = await store.aget("user:1")
"""

from duckkv.kernel.config import DuckKVConfig, LoggingConfig, StoreConfig, load_config
from duckkv.kernel.exceptions import (
    BatchValidationError,
    ConfigurationError,
    DisposedError,
    DuckKVError,
    StoreConnectionError,
    ValidationError,
)
from duckkv.kernel.logging import configure_logging, get_logger
from duckkv.kernel.ports import KeyValueStore, SetEntry
from duckkv.stdlib.adapters.duckdb import (
    ConnectionRecord,
    ConnectionRegistry,
    DuckDBStore,
    get_default_registry,
    reset_default_registry,
)

__version__ = "0.1.0"

__all__ = [
    "BatchValidationError",
    "ConfigurationError",
    "ConnectionRecord",
    "ConnectionRegistry",
    "DisposedError",
    "DuckDBStore",
    "DuckKVConfig",
    "DuckKVError",
    "KeyValueStore",
    "LoggingConfig",
    "SetEntry",
    "StoreConfig",
    "StoreConnectionError",
    "ValidationError",
    "configure_logging",
    "get_default_registry",
    "get_logger",
    "load_config",
    "reset_default_registry",
]

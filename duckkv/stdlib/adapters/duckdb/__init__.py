"""DuckDB key-value adapter and its connection registry."""

from .connection_registry import (
    ConnectionRecord,
    ConnectionRegistry,
    get_default_registry,
    reset_default_registry,
)
from .duckdb_store import DuckDBStore

__all__ = [
    "ConnectionRecord",
    "ConnectionRegistry",
    "DuckDBStore",
    "get_default_registry",
    "reset_default_registry",
]

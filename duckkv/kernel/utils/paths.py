"""Database path resolution."""

from __future__ import annotations

from pathlib import Path

DEFAULT_DIRECTORY_NAME = ".keyv-duckdb"
DEFAULT_FILE_NAME = "store.duckdb"


def default_database_path() -> Path:
    """Return the per-user default database file (``~/.keyv-duckdb/store.duckdb``)."""
    return Path.home() / DEFAULT_DIRECTORY_NAME / DEFAULT_FILE_NAME


def resolve_database_path(path: str | Path | None) -> Path:
    """Resolve a configured path, expanding ``~``, or fall back to the default."""
    if path is None or str(path) == "":
        return default_database_path()
    return Path(path).expanduser()

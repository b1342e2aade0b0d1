"""Configuration data models for duckkv."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, SecretStr, field_validator

from duckkv.kernel.utils.paths import resolve_database_path
from duckkv.kernel.utils.sql_validation import validate_sql_identifier

DEFAULT_TABLE = "keyv"


class StoreConfig(BaseModel):
    """Settings consumed by a DuckDBStore.

    Attributes
    ----------
    path : Path
        Database file. Defaults to ``~/.keyv-duckdb/store.duckdb``.
    table : str
        Key-value table name. Must be a plain SQL identifier.
    encryption_key : SecretStr | None
        Presence alone switches the store to encrypted (attach) mode. Key
        strength is left to the engine.
    key_size : int | None
        Maximum key length in characters, checked on every key-accepting call.
    namespace : str | None
        Key prefix used by ``aclear`` and ``aiterate``.

    Examples
    --------
    >>> config = StoreConfig(path="/tmp/cache.duckdb", key_size=255)
    >>> config.table
    'keyv'
    """

    model_config = ConfigDict(frozen=True)

    path: Path = Field(default_factory=lambda: resolve_database_path(None))
    table: str = DEFAULT_TABLE
    encryption_key: SecretStr | None = None
    key_size: PositiveInt | None = None
    namespace: str | None = None

    @field_validator("path", mode="before")
    @classmethod
    def _resolve_path(cls, value: object) -> Path:
        if value is None or isinstance(value, str | Path):
            return resolve_database_path(value)
        return value  # type: ignore[return-value]

    @field_validator("table")
    @classmethod
    def _validate_table(cls, value: str) -> str:
        if not validate_sql_identifier(value, identifier_type="table"):
            raise ValueError(f"invalid table name {value!r}")
        return value

    @field_validator("encryption_key", mode="before")
    @classmethod
    def _empty_key_is_absent(cls, value: object) -> object:
        if value == "":
            return None
        return value

    def encryption_key_value(self) -> str | None:
        """Return the plain encryption key, or None in unencrypted mode."""
        if self.encryption_key is None:
            return None
        return self.encryption_key.get_secret_value()


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration for duckkv.

    Examples
    --------
    TOML configuration:

    ```toml
    [tool.duckkv.logging]
    level = "DEBUG"
    format = "rich"
    ```
    """

    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: Literal["console", "json", "structured", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True


@dataclass(slots=True)
class DuckKVConfig:
    """Complete duckkv configuration.

    Examples
    --------
    TOML configuration in pyproject.toml:

    ```toml
    [tool.duckkv]
    path = "~/.cache/myapp/kv.duckdb"
    table = "cache"
    key_size = 255
    encryption_key = "${MYAPP_KV_KEY}"

    [tool.duckkv.logging]
    level = "INFO"
    ```
    """

    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

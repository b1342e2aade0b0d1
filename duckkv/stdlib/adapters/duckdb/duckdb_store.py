"""DuckDB key-value store with optional at-rest encryption."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from typing import Any

import duckdb
from pydantic import ValidationError as PydanticValidationError

from duckkv.kernel.config.models import StoreConfig
from duckkv.kernel.exceptions import (
    BatchValidationError,
    ConfigurationError,
    DisposedError,
    StoreConnectionError,
    ValidationError,
)
from duckkv.kernel.logging import get_logger
from duckkv.kernel.ports.key_value import SetEntry
from duckkv.kernel.utils.threads import run_to_completion
from duckkv.stdlib.adapters.duckdb.connection_registry import (
    ATTACHED_SCHEMA,
    ConnectionRecord,
    ConnectionRegistry,
    get_default_registry,
)

logger = get_logger(__name__)


def _execute_statement(
    connection: duckdb.DuckDBPyConnection,
    sql: str,
    params: dict[str, Any] | None,
    fetch: bool,
) -> list[dict[str, Any]]:
    if params:
        connection.execute(sql, params)
    else:
        connection.execute(sql)
    if not fetch:
        return []
    columns = [column[0] for column in connection.description or ()]
    return [dict(zip(columns, row, strict=True)) for row in connection.fetchall()]


def _in_clause(keys: Sequence[str]) -> tuple[str, dict[str, str]]:
    """Build ``$k0, $k1, ...`` placeholders and their bindings."""
    params = {f"k{i}": key for i, key in enumerate(keys)}
    return ", ".join(f"${name}" for name in params), params


def _serialize(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


class DuckDBStore:
    """Async key-value store persisted in a DuckDB file.

    Each store owns at most one connection, created lazily on first use and
    never shared with another store, even for the same path. All statements
    issued through a store run one at a time in submission order.

    Lifecycle: operations are admitted synchronously before their first
    suspension point. ``adispose()`` closes admission at once, waits for
    admitted operations to finish, then releases the connection. A disposed
    store rejects every call with DisposedError.

    Parameters
    ----------
    uri : str | Path | StoreConfig | None
        Database file or a full StoreConfig. Defaults to
        ``~/.keyv-duckdb/store.duckdb``.
    table : str | None
        Table name (default ``keyv``)
    encryption_key : str | None
        Enables encrypted attach mode
    key_size : int | None
        Maximum key length in characters
    namespace : str | None
        Prefix scope for ``aclear`` and ``aiterate``
    registry : ConnectionRegistry | None
        Registry to acquire connections from; the process default otherwise

    Examples
    --------
    Example usage::

        async with DuckDBStore("./tokens.duckdb", encryption_key=key) as store:
            await store.aset("token", {"access": "abc"})
            payload = await store.aget("token")
    """

    ttl_support = False

    def __init__(
        self,
        uri: str | Path | StoreConfig | None = None,
        *,
        table: str | None = None,
        encryption_key: str | None = None,
        key_size: int | None = None,
        namespace: str | None = None,
        registry: ConnectionRegistry | None = None,
        dialect: str = "duckdb",
        url: str | None = None,
    ) -> None:
        overrides = {
            "table": table,
            "encryption_key": encryption_key,
            "key_size": key_size,
            "namespace": namespace,
        }
        overrides = {name: value for name, value in overrides.items() if value is not None}
        try:
            if isinstance(uri, StoreConfig):
                config = StoreConfig(**{**uri.model_dump(), **overrides})
            else:
                config = StoreConfig(path=uri, **overrides)
        except PydanticValidationError as e:
            raise ConfigurationError(type(self).__name__, str(e)) from e

        self.config = config
        self.path: Path = config.path
        self.table: str = config.table
        self.key_size: int | None = config.key_size
        self.namespace: str | None = config.namespace
        self.opts: dict[str, Any] = {"dialect": dialect, "url": url or str(self.path)}
        self._encryption_key = config.encryption_key_value()
        self._registry = registry if registry is not None else get_default_registry()

        self._connection: ConnectionRecord | None = None
        self._schema_initialized = False
        self._disposed = False
        self._pending_operations = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._init_lock = asyncio.Lock()
        self._queue = asyncio.Lock()
        self._dispose_task: asyncio.Future[None] | None = None

    # ------------------------------------------------------------------
    # Admission guard
    # ------------------------------------------------------------------

    def _begin_operation(self) -> None:
        """Admit an operation. Must run before the caller's first await."""
        if self._disposed:
            raise DisposedError(type(self).__name__)
        self._pending_operations += 1
        self._idle.clear()

    def _end_operation(self) -> None:
        self._pending_operations -= 1
        if self._pending_operations == 0:
            self._idle.set()

    # ------------------------------------------------------------------
    # Connection & statement execution
    # ------------------------------------------------------------------

    def _table_ref(self) -> str:
        """``store.<table>`` for encrypted connections, bare ``<table>`` otherwise."""
        if self._connection is not None and self._connection.encrypted:
            return f"{ATTACHED_SCHEMA}.{self.table}"
        return self.table

    async def _ensure_connection(self) -> ConnectionRecord:
        """Bind a connection and create the table on first use."""
        if self._connection is not None and self._schema_initialized:
            return self._connection

        async with self._init_lock:
            if self._connection is None:
                try:
                    await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
                except OSError as e:
                    raise StoreConnectionError(
                        "mkdir", f"cannot create {self.path.parent}: {e}"
                    ) from e
                self._connection = await self._registry.acquire(self.path, self._encryption_key)
                logger.debug("Bound connection for {path}", path=self.path)

            if not self._schema_initialized:
                await self._execute(
                    self._connection,
                    f"CREATE TABLE IF NOT EXISTS {self._table_ref()} (k TEXT PRIMARY KEY, v TEXT)",
                )
                self._schema_initialized = True

        return self._connection

    async def _execute(
        self,
        record: ConnectionRecord,
        sql: str,
        params: dict[str, Any] | None = None,
        fetch: bool = False,
    ) -> list[dict[str, Any]]:
        """Run one statement after every previously queued one has settled.

        A cancelled caller keeps the queue until its statement has finished
        in the worker thread, so statements never overlap on the connection.
        """
        async with self._queue:
            try:
                return await run_to_completion(
                    _execute_statement, record.connection, sql, params, fetch
                )
            except duckdb.Error as e:
                logger.error("Statement failed on {path}: {error}", path=self.path, error=e)
                raise StoreConnectionError("query" if fetch else "run", str(e)) from e

    async def _run(
        self, record: ConnectionRecord, sql: str, params: dict[str, Any] | None = None
    ) -> None:
        await self._execute(record, sql, params)

    async def _all(
        self, record: ConnectionRecord, sql: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self._execute(record, sql, params, fetch=True)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_key(self, key: str) -> None:
        if not isinstance(key, str) or not key:
            raise ValidationError("key", "key required", key)
        if self.key_size is not None and len(key) > self.key_size:
            raise ValidationError(
                "key", f"key length {len(key)} exceeds maximum {self.key_size}", key
            )

    def _validate_keys(self, keys: Sequence[str]) -> None:
        if isinstance(keys, str):
            raise ValidationError("keys", "must be a sequence of keys, not a string", keys)
        for index, key in enumerate(keys):
            try:
                self._validate_key(key)
            except ValidationError as e:
                raise BatchValidationError(index, e) from e

    # ------------------------------------------------------------------
    # Key-value operations
    # ------------------------------------------------------------------

    async def aget(self, key: str) -> str | None:
        """Return the stored payload for *key*, or None when absent."""
        self._begin_operation()
        try:
            self._validate_key(key)
            record = await self._ensure_connection()
            rows = await self._all(
                record,
                f"SELECT v FROM {self._table_ref()} WHERE k = $key",  # nosec B608
                {"key": key},
            )
            return rows[0]["v"] if rows else None
        finally:
            self._end_operation()

    async def aget_many(self, keys: Sequence[str]) -> list[str | None]:
        """Return payloads aligned with *keys*, duplicates and order preserved."""
        self._begin_operation()
        try:
            self._validate_keys(keys)
            if not keys:
                return []
            record = await self._ensure_connection()
            placeholders, params = _in_clause(keys)
            rows = await self._all(
                record,
                f"SELECT k, v FROM {self._table_ref()} WHERE k IN ({placeholders})",  # nosec B608
                params,
            )
            found = {row["k"]: row["v"] for row in rows}
            return [found.get(key) for key in keys]
        finally:
            self._end_operation()

    async def aset(self, key: str, value: Any, ttl: int | None = None) -> bool:  # noqa: ARG002
        """Upsert *value* under *key*.

        Strings are stored as-is, anything else as JSON. *ttl* is accepted
        for contract compatibility and ignored.
        """
        self._begin_operation()
        try:
            self._validate_key(key)
            record = await self._ensure_connection()
            await self._run(
                record,
                f"INSERT OR REPLACE INTO {self._table_ref()} (k, v) "  # nosec B608
                "VALUES ($key, $value)",
                {"key": key, "value": _serialize(value)},
            )
            return True
        finally:
            self._end_operation()

    async def aset_many(self, entries: Sequence[SetEntry]) -> None:
        """Upsert every entry in a single statement.

        Any invalid key rejects the whole batch before anything is written.
        A key repeated within the batch keeps its last value.
        """
        self._begin_operation()
        try:
            self._validate_keys([entry["key"] for entry in entries])
            if not entries:
                return
            record = await self._ensure_connection()
            values = {entry["key"]: _serialize(entry["value"]) for entry in entries}
            rows = []
            params: dict[str, str] = {}
            for i, (key, value) in enumerate(values.items()):
                rows.append(f"($k{i}, $v{i})")
                params[f"k{i}"] = key
                params[f"v{i}"] = value
            await self._run(
                record,
                f"INSERT OR REPLACE INTO {self._table_ref()} (k, v) "  # nosec B608
                f"VALUES {', '.join(rows)}",
                params,
            )
        finally:
            self._end_operation()

    async def adelete(self, key: str) -> bool:
        """Delete *key*; True only if a row was actually removed."""
        self._begin_operation()
        try:
            self._validate_key(key)
            record = await self._ensure_connection()
            table = self._table_ref()
            rows = await self._all(
                record,
                f"SELECT COUNT(*) AS count FROM {table} WHERE k = $key",  # nosec B608
                {"key": key},
            )
            existed = bool(rows and rows[0]["count"] > 0)
            if existed:
                await self._run(
                    record, f"DELETE FROM {table} WHERE k = $key", {"key": key}  # nosec B608
                )
            return existed
        finally:
            self._end_operation()

    async def adelete_many(self, keys: Sequence[str]) -> bool:
        """Delete every key in *keys*.

        Returns True whenever validation passes; it does not report which
        keys existed.
        """
        self._begin_operation()
        try:
            self._validate_keys(keys)
            if not keys:
                return True
            record = await self._ensure_connection()
            placeholders, params = _in_clause(keys)
            await self._run(
                record,
                f"DELETE FROM {self._table_ref()} WHERE k IN ({placeholders})",  # nosec B608
                params,
            )
            return True
        finally:
            self._end_operation()

    async def ahas(self, key: str) -> bool:
        """Check whether *key* exists."""
        self._begin_operation()
        try:
            self._validate_key(key)
            record = await self._ensure_connection()
            rows = await self._all(
                record,
                f"SELECT COUNT(*) AS count FROM {self._table_ref()} WHERE k = $key",  # nosec B608
                {"key": key},
            )
            return bool(rows and rows[0]["count"] > 0)
        finally:
            self._end_operation()

    async def ahas_many(self, keys: Sequence[str]) -> list[bool]:
        """Existence flags aligned with *keys*."""
        self._begin_operation()
        try:
            self._validate_keys(keys)
            if not keys:
                return []
            record = await self._ensure_connection()
            placeholders, params = _in_clause(keys)
            rows = await self._all(
                record,
                f"SELECT k FROM {self._table_ref()} WHERE k IN ({placeholders})",  # nosec B608
                params,
            )
            existing = {row["k"] for row in rows}
            return [key in existing for key in keys]
        finally:
            self._end_operation()

    async def aclear(self) -> None:
        """Delete keys under ``<namespace>:``, or every key without a namespace."""
        self._begin_operation()
        try:
            record = await self._ensure_connection()
            if self.namespace:
                await self._run(
                    record,
                    f"DELETE FROM {self._table_ref()} WHERE starts_with(k, $prefix)",  # nosec B608
                    {"prefix": f"{self.namespace}:"},
                )
            else:
                await self._run(record, f"DELETE FROM {self._table_ref()}")  # nosec B608
        finally:
            self._end_operation()

    async def aiterate(self, namespace: str | None = None) -> AsyncIterator[tuple[str, str]]:
        """Yield ``(key, payload)`` pairs ordered by key.

        Filters by ``<namespace>:`` (falling back to the store namespace).
        The matching rows are read in one query when iteration starts, and
        the operation ends before the first item is yielded.
        """
        self._begin_operation()
        try:
            record = await self._ensure_connection()
            ns = namespace if namespace is not None else self.namespace
            if ns:
                rows = await self._all(
                    record,
                    f"SELECT k, v FROM {self._table_ref()} "  # nosec B608
                    "WHERE starts_with(k, $prefix) ORDER BY k",
                    {"prefix": f"{ns}:"},
                )
            else:
                rows = await self._all(
                    record, f"SELECT k, v FROM {self._table_ref()} ORDER BY k"  # nosec B608
                )
        finally:
            self._end_operation()

        for row in rows:
            yield row["k"], row["v"]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_disposed(self) -> bool:
        """Whether disposal has been requested."""
        return self._disposed

    @property
    def is_encrypted(self) -> bool:
        """Whether the bound connection uses encrypted attach mode."""
        return self._connection is not None and self._connection.encrypted

    async def adispose(self) -> None:
        """Stop admitting operations, drain admitted ones, release the connection.

        Idempotent. Concurrent callers all wait for the same disposal. Never
        raises.
        """
        if self._dispose_task is None:
            self._disposed = True
            self._dispose_task = asyncio.ensure_future(self._drain_and_release())
        await asyncio.shield(self._dispose_task)

    async def _drain_and_release(self) -> None:
        if self._pending_operations:
            logger.debug(
                "Waiting for {count} pending operations before disposal",
                count=self._pending_operations,
            )
        await self._idle.wait()
        if self._connection is not None:
            connection, self._connection = self._connection, None
            await self._registry.release(connection)
        logger.debug("Disposed store for {path}", path=self.path)

    async def adisconnect(self) -> None:
        """Alias for :meth:`adispose`."""
        await self.adispose()

    async def __aenter__(self) -> DuckDBStore:
        """Open the connection eagerly so setup errors surface at scope entry."""
        self._begin_operation()
        try:
            await self._ensure_connection()
        except BaseException:
            self._end_operation()
            await self.adispose()
            raise
        self._end_operation()
        return self

    async def __aexit__(
        self,
        _exc_type: Any,  # noqa: ARG002
        _exc_val: Any,  # noqa: ARG002
        _exc_tb: Any,  # noqa: ARG002
    ) -> None:
        await self.adispose()

    def __repr__(self) -> str:
        mode = "encrypted" if self._encryption_key is not None else "plain"
        return f"DuckDBStore(path='{self.path}', table='{self.table}', mode='{mode}')"


__all__ = ["DuckDBStore"]

"""Registry of live DuckDB connections.

Every ``acquire`` opens a brand-new engine instance; nothing is pooled or
deduplicated by path. Unencrypted databases are opened directly. Encrypted
databases are attached to a private in-memory engine under the ``store``
schema, because DuckDB only applies ``ENCRYPTION_KEY`` on ``ATTACH``. The
httpfs extension is loaded into that engine first; without it DuckDB can
read encrypted files but refuses to write them.
"""

from __future__ import annotations

import asyncio
import atexit
import threading
from dataclasses import dataclass
from pathlib import Path

import duckdb

from duckkv.kernel.exceptions import StoreConnectionError
from duckkv.kernel.logging import get_logger
from duckkv.kernel.utils.sql_validation import quote_sql_literal
from duckkv.kernel.utils.threads import run_to_completion

logger = get_logger(__name__)

ATTACHED_SCHEMA = "store"

# DuckDB only writes encrypted files with the OpenSSL crypto module from httpfs
CRYPTO_EXTENSION = "httpfs"


@dataclass(frozen=True, eq=False, slots=True)
class ConnectionRecord:
    """A live connection owned by a ConnectionRegistry.

    Attributes
    ----------
    connection : duckdb.DuckDBPyConnection
        Handle statements are issued on
    database : duckdb.DuckDBPyConnection
        Engine instance owning the file lock
    encrypted : bool
        Opened through the attach pathway; tables live in ``store.<table>``
    path : str
        Database file the record points at
    """

    connection: duckdb.DuckDBPyConnection
    database: duckdb.DuckDBPyConnection
    encrypted: bool
    path: str


def _open_direct(path: str) -> tuple[duckdb.DuckDBPyConnection, duckdb.DuckDBPyConnection]:
    database = duckdb.connect(path)
    return database, database.cursor()


def _load_crypto_extension(database: duckdb.DuckDBPyConnection) -> None:
    """Load httpfs into *database*, installing it first if needed."""
    try:
        database.execute(f"LOAD {CRYPTO_EXTENSION}")
    except duckdb.Error:
        logger.debug("Installing the {} extension", CRYPTO_EXTENSION)
        database.execute(f"INSTALL {CRYPTO_EXTENSION}")
        database.execute(f"LOAD {CRYPTO_EXTENSION}")


def _open_attached(
    path: str, encryption_key: str
) -> tuple[duckdb.DuckDBPyConnection, duckdb.DuckDBPyConnection]:
    database = duckdb.connect(":memory:")
    try:
        _load_crypto_extension(database)
        connection = database.cursor()
        # ATTACH does not accept bound parameters
        connection.execute(
            f"ATTACH {quote_sql_literal(path)} AS {ATTACHED_SCHEMA} "
            f"(ENCRYPTION_KEY {quote_sql_literal(encryption_key)})"
        )
    except duckdb.Error:
        database.close()
        raise
    return database, connection


def _close_handles(
    handles: tuple[duckdb.DuckDBPyConnection, duckdb.DuckDBPyConnection],
) -> None:
    """Close a connection nobody registered because its opener was cancelled."""
    database, connection = handles
    connection.close()
    database.close()


def _close_record(record: ConnectionRecord) -> None:
    """Checkpoint and close a record; failures are logged, never raised."""
    try:
        if record.encrypted:
            record.connection.execute(f"CHECKPOINT {ATTACHED_SCHEMA}")
            record.connection.execute(f"DETACH {ATTACHED_SCHEMA}")
        else:
            record.connection.execute("CHECKPOINT")
    except Exception as e:  # noqa: BLE001
        logger.warning("Checkpoint failed for {path}: {error}", path=record.path, error=e)

    for handle in (record.connection, record.database):
        try:
            handle.close()
        except Exception as e:  # noqa: BLE001
            logger.warning("Close failed for {path}: {error}", path=record.path, error=e)


class ConnectionRegistry:
    """Process-wide directory of live DuckDB connections.

    Construct one at startup, hand it to every DuckDBStore, and call
    :meth:`release_all` (or rely on :meth:`install_exit_hook`) at shutdown.

    Examples
    --------
    Example usage::

        registry = ConnectionRegistry()
        record = await registry.acquire("/tmp/cache.duckdb")
        assert registry.count() == 1
        await registry.release(record)
    """

    def __init__(self) -> None:
        self._records: dict[int, ConnectionRecord] = {}
        self._lock = threading.Lock()
        self._exit_hook_installed = False

    async def acquire(
        self, path: str | Path, encryption_key: str | None = None
    ) -> ConnectionRecord:
        """Open a new connection to *path*.

        Parameters
        ----------
        path : str | Path
            Database file
        encryption_key : str | None
            When given, the file is attached as ``store`` with this key

        Returns
        -------
        ConnectionRecord
            Newly registered record, never shared with earlier callers

        Raises
        ------
        StoreConnectionError
            If the engine cannot open or attach the file
        """
        path_str = str(path)
        encrypted = encryption_key is not None
        try:
            if encryption_key is not None:
                database, connection = await run_to_completion(
                    _open_attached, path_str, encryption_key, on_abandoned=_close_handles
                )
            else:
                database, connection = await run_to_completion(
                    _open_direct, path_str, on_abandoned=_close_handles
                )
        except duckdb.Error as e:
            operation = "attach" if encrypted else "open"
            logger.error("Failed to {} {}: {}", operation, path_str, e)
            raise StoreConnectionError(operation, f"{path_str}: {e}") from e

        record = ConnectionRecord(
            connection=connection, database=database, encrypted=encrypted, path=path_str
        )
        self._register(record)
        logger.debug(
            "Acquired {mode} connection to {path}",
            mode="encrypted" if encrypted else "direct",
            path=path_str,
        )
        return record

    def _register(self, record: ConnectionRecord) -> None:
        with self._lock:
            self._records[id(record.connection)] = record

    def _find(
        self, connection: ConnectionRecord | duckdb.DuckDBPyConnection
    ) -> ConnectionRecord | None:
        handle = connection.connection if isinstance(connection, ConnectionRecord) else connection
        record = self._records.get(id(handle))
        if record is not None and record.connection is handle:
            return record
        return None

    def _pop(
        self, connection: ConnectionRecord | duckdb.DuckDBPyConnection
    ) -> ConnectionRecord | None:
        with self._lock:
            record = self._find(connection)
            if record is not None:
                del self._records[id(record.connection)]
            return record

    def is_encrypted(self, connection: ConnectionRecord | duckdb.DuckDBPyConnection) -> bool:
        """Return whether *connection* was opened in attach mode (False if unknown)."""
        with self._lock:
            record = self._find(connection)
        return record is not None and record.encrypted

    async def release(self, connection: ConnectionRecord | duckdb.DuckDBPyConnection) -> None:
        """Checkpoint and close *connection*.

        The record leaves the registry before cleanup starts. Cleanup
        failures are logged and swallowed. Unknown connections are ignored.
        """
        record = self._pop(connection)
        if record is None:
            return
        await asyncio.to_thread(_close_record, record)
        logger.debug("Released connection to {path}", path=record.path)

    def count(self) -> int:
        """Number of live connections."""
        with self._lock:
            return len(self._records)

    def __len__(self) -> int:
        return self.count()

    def _drain(self) -> list[ConnectionRecord]:
        with self._lock:
            records = list(self._records.values())
            self._records.clear()
        return records

    async def release_all(self) -> None:
        """Close every live connection concurrently; never raises."""
        records = self._drain()
        if not records:
            return
        results = await asyncio.gather(
            *(asyncio.to_thread(_close_record, record) for record in records),
            return_exceptions=True,
        )
        for record, result in zip(records, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Cleanup of {path} failed: {error}", path=record.path, error=result)
        logger.debug("Released {count} connections", count=len(records))

    def close_all_sync(self) -> None:
        """Blocking variant of :meth:`release_all` for interpreter shutdown."""
        for record in self._drain():
            _close_record(record)

    def install_exit_hook(self) -> None:
        """Close remaining connections when the interpreter exits (once)."""
        if self._exit_hook_installed:
            return
        atexit.register(self.close_all_sync)
        self._exit_hook_installed = True

    def __repr__(self) -> str:
        return f"ConnectionRegistry(live={self.count()})"


_default_registry: ConnectionRegistry | None = None


def get_default_registry() -> ConnectionRegistry:
    """Return the process default registry, creating it on first use."""
    global _default_registry
    if _default_registry is None:
        _default_registry = ConnectionRegistry()
        _default_registry.install_exit_hook()
    return _default_registry


def reset_default_registry() -> None:
    """Close and forget the process default registry."""
    global _default_registry
    if _default_registry is not None:
        _default_registry.close_all_sync()
        atexit.unregister(_default_registry.close_all_sync)
    _default_registry = None


__all__ = [
    "ATTACHED_SCHEMA",
    "ConnectionRecord",
    "ConnectionRegistry",
    "get_default_registry",
    "reset_default_registry",
]

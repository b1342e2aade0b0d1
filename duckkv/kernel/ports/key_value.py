"""KeyValueStore port: the pluggable storage contract served by duckkv.

A higher-level cache or storage library talks to any backend through this
protocol. Payloads are already-serialized strings on the way out; decoding
is the consumer's job. Misses are reported as ``None``.

Capability matrix
-----------------
+---------------------+--------------------------------------------+
| Method group        | Description                                |
+=====================+============================================+
| single-key          | aget / aset / adelete / ahas               |
| batch               | aget_many / aset_many / adelete_many /     |
|                     | ahas_many                                  |
| bulk                | aclear / aiterate                          |
| lifecycle           | adisconnect                                |
+---------------------+--------------------------------------------+
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import Any, NotRequired, Protocol, TypedDict, runtime_checkable


class SetEntry(TypedDict):
    """One entry of a batch write."""

    key: str
    value: Any
    ttl: NotRequired[int | None]


@runtime_checkable
class KeyValueStore(Protocol):
    """Async key-value storage contract."""

    namespace: str | None

    @abstractmethod
    async def aget(self, key: str) -> str | None:
        """Return the stored payload for *key*, or ``None`` when absent."""
        ...

    @abstractmethod
    async def aget_many(self, keys: Sequence[str]) -> list[str | None]:
        """Return payloads positionally aligned with *keys*."""
        ...

    @abstractmethod
    async def aset(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Store *value* under *key* (upsert semantics)."""
        ...

    @abstractmethod
    async def aset_many(self, entries: Sequence[SetEntry]) -> None:
        """Store every entry in one statement; any invalid key rejects the batch."""
        ...

    @abstractmethod
    async def adelete(self, key: str) -> bool:
        """Delete *key*.  Returns ``True`` if the key existed."""
        ...

    @abstractmethod
    async def adelete_many(self, keys: Sequence[str]) -> bool:
        """Delete every key in *keys*."""
        ...

    @abstractmethod
    async def ahas(self, key: str) -> bool:
        """Check whether *key* exists."""
        ...

    @abstractmethod
    async def ahas_many(self, keys: Sequence[str]) -> list[bool]:
        """Existence flags positionally aligned with *keys*."""
        ...

    @abstractmethod
    async def aclear(self) -> None:
        """Remove every entry in the store's namespace (or all entries)."""
        ...

    @abstractmethod
    def aiterate(self, namespace: str | None = None) -> AsyncIterator[tuple[str, str]]:
        """Yield ``(key, payload)`` pairs ordered by key."""
        ...

    @abstractmethod
    async def adisconnect(self) -> None:
        """Release the backend's resources."""
        ...


__all__ = ["KeyValueStore", "SetEntry"]

"""Port protocols implemented by duckkv adapters."""

from duckkv.kernel.ports.key_value import KeyValueStore, SetEntry

__all__ = ["KeyValueStore", "SetEntry"]

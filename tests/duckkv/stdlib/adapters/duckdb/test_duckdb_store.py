"""Tests for DuckDBStore key-value operations."""

from __future__ import annotations

import json

import pytest

from duckkv.kernel.config.models import StoreConfig
from duckkv.kernel.exceptions import (
    BatchValidationError,
    ConfigurationError,
    StoreConnectionError,
    ValidationError,
)
from duckkv.kernel.ports.key_value import KeyValueStore
from duckkv.stdlib.adapters.duckdb import DuckDBStore


class TestDuckDBStore:
    """Tests for single-key operations."""

    @pytest.fixture
    async def store(self, db_path, registry):
        """Provide a store on a fresh database file."""
        store = DuckDBStore(db_path, registry=registry)
        yield store
        await store.adispose()

    def test_satisfies_key_value_protocol(self, db_path, registry) -> None:
        assert isinstance(DuckDBStore(db_path, registry=registry), KeyValueStore)

    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        """Test basic set and get operations."""
        assert await store.aset("test_key", "test_value") is True
        assert await store.aget("test_key") == "test_value"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "value",
        [{"n": 1}, [1, "two", None], {"nested": {"deep": [True, 2.5]}}, 42, None],
    )
    async def test_round_trip_json_values(self, store, value):
        await store.aset("k", value)
        assert json.loads(await store.aget("k")) == value

    @pytest.mark.asyncio
    async def test_get_nonexistent_key(self, store):
        assert await store.aget("nonexistent") is None

    @pytest.mark.asyncio
    async def test_update_existing_key(self, store):
        await store.aset("key", "v1")
        await store.aset("key", "v2")
        assert await store.aget("key") == "v2"
        assert [k async for k, _ in store.aiterate()] == ["key"]

    @pytest.mark.asyncio
    async def test_ttl_is_accepted_and_ignored(self, store):
        assert store.ttl_support is False
        assert await store.aset("k", "v", ttl=1) is True
        assert await store.aget("k") == "v"

    @pytest.mark.asyncio
    async def test_delete_returns_true_exactly_once(self, store):
        await store.aset("k", "v")
        assert await store.adelete("k") is True
        assert await store.adelete("k") is False
        assert await store.aget("k") is None

    @pytest.mark.asyncio
    async def test_delete_never_present(self, store):
        assert await store.adelete("ghost") is False

    @pytest.mark.asyncio
    async def test_has(self, store):
        await store.aset("present", "1")
        assert await store.ahas("present") is True
        assert await store.ahas("absent") is False

    @pytest.mark.asyncio
    async def test_keys_with_sql_characters_are_bound(self, store):
        key = "it's'; DROP TABLE keyv; --"
        await store.aset(key, "safe")
        assert await store.aget(key) == "safe"
        assert await store.ahas("other") is False

    @pytest.mark.asyncio
    async def test_creates_missing_directory(self, store, db_path):
        assert not db_path.parent.exists()
        await store.aset("k", "v")
        assert db_path.parent.is_dir()

    @pytest.mark.asyncio
    async def test_custom_table(self, db_path, registry):
        store = DuckDBStore(db_path, table="cache", registry=registry)
        await store.aset("k", "v")
        rows = await store._all(store._connection, "SELECT k, v FROM cache")
        assert rows == [{"k": "k", "v": "v"}]
        await store.adispose()

    def test_invalid_settings_rejected(self, db_path, registry):
        with pytest.raises(ConfigurationError):
            DuckDBStore(db_path, key_size=0, registry=registry)
        with pytest.raises(ConfigurationError):
            DuckDBStore(db_path, table="store.keyv", registry=registry)

    def test_accepts_store_config(self, db_path, registry):
        config = StoreConfig(path=db_path, table="t1", key_size=8, namespace="ns")
        store = DuckDBStore(config, registry=registry)
        assert store.path == db_path
        assert store.table == "t1"
        assert store.key_size == 8
        assert store.namespace == "ns"

    def test_options_default_to_path(self, db_path, registry):
        store = DuckDBStore(db_path, registry=registry)
        assert store.opts == {"dialect": "duckdb", "url": str(db_path)}

    @pytest.mark.asyncio
    async def test_engine_error_does_not_poison_queue(self, store):
        await store.aset("before", "1")
        with pytest.raises(StoreConnectionError):
            await store._run(store._connection, "SELECT * FROM table_that_does_not_exist")
        assert await store.aset("after", "2") is True
        assert await store.aget_many(["before", "after"]) == ["1", "2"]


class TestBatchOperations:
    """Tests for getMany/setMany/deleteMany/hasMany."""

    @pytest.fixture
    async def store(self, db_path, registry):
        store = DuckDBStore(db_path, registry=registry)
        yield store
        await store.adispose()

    @pytest.mark.asyncio
    async def test_set_many_then_get_many(self, store):
        await store.aset_many([{"key": "k1", "value": "v1"}, {"key": "k2", "value": "v2"}])
        assert await store.aget_many(["k1", "k2"]) == ["v1", "v2"]

    @pytest.mark.asyncio
    async def test_get_many_preserves_order_and_duplicates(self, store):
        await store.aset_many([{"key": "a", "value": "1"}, {"key": "b", "value": "2"}])
        assert await store.aget_many(["b", "missing", "a", "b"]) == ["2", None, "1", "2"]

    @pytest.mark.asyncio
    async def test_empty_batches_do_not_connect(self, store):
        assert await store.aget_many([]) == []
        assert await store.ahas_many([]) == []
        assert await store.adelete_many([]) is True
        await store.aset_many([])
        assert store._connection is None

    @pytest.mark.asyncio
    async def test_set_many_serializes_values(self, store):
        await store.aset_many([{"key": "obj", "value": {"n": 1}}, {"key": "s", "value": "raw"}])
        obj, raw = await store.aget_many(["obj", "s"])
        assert json.loads(obj) == {"n": 1}
        assert raw == "raw"

    @pytest.mark.asyncio
    async def test_set_many_duplicate_key_keeps_last(self, store):
        await store.aset_many([{"key": "k", "value": "first"}, {"key": "k", "value": "last"}])
        assert await store.aget("k") == "last"

    @pytest.mark.asyncio
    async def test_set_many_invalid_key_rejects_batch(self, store):
        with pytest.raises(BatchValidationError) as exc_info:
            await store.aset_many([{"key": "ok", "value": "1"}, {"key": "", "value": "2"}])
        assert exc_info.value.index == 1
        assert store._connection is None
        assert await store.aget("ok") is None

    @pytest.mark.asyncio
    async def test_delete_many(self, store):
        await store.aset_many([{"key": k, "value": k} for k in ("a", "b", "c")])
        assert await store.adelete_many(["a", "c", "never"]) is True
        assert await store.ahas_many(["a", "b", "c"]) == [False, True, False]

    @pytest.mark.asyncio
    async def test_delete_many_invalid_key(self, store):
        await store.aset("a", "1")
        with pytest.raises(BatchValidationError):
            await store.adelete_many(["a", ""])
        assert await store.ahas("a") is True

    @pytest.mark.asyncio
    async def test_has_many_aligned_with_input(self, store):
        await store.aset("x", "1")
        assert await store.ahas_many(["x", "y", "x"]) == [True, False, True]

    @pytest.mark.asyncio
    async def test_string_rejected_as_key_sequence(self, store):
        with pytest.raises(ValidationError):
            await store.aget_many("abc")


class TestNamespaces:
    """Tests for namespace-scoped clear and iteration."""

    @pytest.fixture
    async def store(self, db_path, registry):
        store = DuckDBStore(db_path, registry=registry, namespace="ns")
        await store.aset_many([
            {"key": "ns:b", "value": "2"},
            {"key": "ns:a", "value": "1"},
            {"key": "other:c", "value": "3"},
        ])
        yield store
        await store.adispose()

    @pytest.mark.asyncio
    async def test_clear_only_namespace(self, store):
        await store.aclear()
        assert await store.ahas_many(["ns:a", "ns:b", "other:c"]) == [False, False, True]

    @pytest.mark.asyncio
    async def test_clear_without_namespace_removes_all(self, store):
        store.namespace = None
        await store.aclear()
        assert [item async for item in store.aiterate()] == []

    @pytest.mark.asyncio
    async def test_iterate_uses_store_namespace_sorted(self, store):
        assert [item async for item in store.aiterate()] == [("ns:a", "1"), ("ns:b", "2")]

    @pytest.mark.asyncio
    async def test_iterate_namespace_override(self, store):
        assert [item async for item in store.aiterate("other")] == [("other:c", "3")]

    @pytest.mark.asyncio
    async def test_iterate_all_without_namespace(self, store):
        store.namespace = None
        keys = [k async for k, _ in store.aiterate()]
        assert keys == ["ns:a", "ns:b", "other:c"]

    @pytest.mark.asyncio
    async def test_iterate_is_restartable(self, store):
        first = [item async for item in store.aiterate()]
        await store.aset("ns:c", "4")
        second = [item async for item in store.aiterate()]
        assert len(second) == len(first) + 1

    @pytest.mark.asyncio
    async def test_namespace_wildcards_are_literal(self, db_path, registry):
        store = DuckDBStore(db_path, registry=registry, namespace="a_%")
        await store.aset_many([{"key": "a_%:1", "value": "x"}, {"key": "ab%:2", "value": "y"}])
        await store.aclear()
        assert await store.ahas_many(["a_%:1", "ab%:2"]) == [False, True]
        await store.adispose()


class TestKeyValidation:
    """Tests for key validation."""

    @pytest.mark.asyncio
    async def test_empty_key_rejected(self, db_path, registry):
        store = DuckDBStore(db_path, registry=registry)
        for call in (store.aget, store.adelete, store.ahas):
            with pytest.raises(ValidationError):
                await call("")
        with pytest.raises(ValidationError):
            await store.aset("", "v")
        assert store._connection is None

    @pytest.mark.asyncio
    async def test_key_size_limit(self, db_path, registry):
        store = DuckDBStore(db_path, registry=registry, key_size=4)
        with pytest.raises(ValidationError) as exc_info:
            await store.aset("abcde", "v")
        assert "exceeds maximum 4" in str(exc_info.value)
        assert store._connection is None
        assert registry.count() == 0

        assert await store.aset("abcd", "v") is True
        assert await store.aget("abcd") == "v"
        await store.adispose()

    @pytest.mark.asyncio
    async def test_key_size_applies_to_batches(self, db_path, registry):
        store = DuckDBStore(db_path, registry=registry, key_size=2)
        with pytest.raises(BatchValidationError):
            await store.ahas_many(["ok", "toolong"])
        await store.adispose()

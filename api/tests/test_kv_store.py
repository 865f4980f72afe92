from __future__ import annotations

import asyncio
import os
import uuid

import pytest

from deepqueue.core.config import Settings
from deepqueue.core.errors import ConfigurationError
from deepqueue.services.kv_store import (
    InMemoryKeyValueStore,
    PostgresKeyValueStore,
    build_kv_store,
)


def test_in_memory_store_lists_by_prefix() -> None:
    async def run() -> list[object]:
        store = InMemoryKeyValueStore()
        await store.set("research:1", {"id": "1"})
        await store.set("research:2", {"id": "2"})
        await store.set("hookdeck:connections", {"queue": {}})
        return await store.list("research:")

    values = asyncio.run(run())
    assert sorted(value["id"] for value in values) == ["1", "2"]


def test_in_memory_store_does_not_alias_values() -> None:
    async def run() -> dict[str, object] | None:
        store = InMemoryKeyValueStore()
        value = {"nested": {"status": "pending"}}
        await store.set("key", value)
        value["nested"]["status"] = "mutated"
        fetched = await store.get("key")
        fetched["nested"]["status"] = "mutated-again"
        return await store.get("key")

    assert asyncio.run(run()) == {"nested": {"status": "pending"}}


def test_in_memory_store_delete_is_idempotent() -> None:
    async def run() -> object:
        store = InMemoryKeyValueStore()
        await store.set("key", 1)
        await store.delete("key")
        await store.delete("key")
        return await store.get("key")

    assert asyncio.run(run()) is None


def test_build_kv_store_selects_backend_from_settings() -> None:
    assert isinstance(build_kv_store(Settings(kv_backend="memory")), InMemoryKeyValueStore)
    postgres = build_kv_store(Settings(kv_backend="postgres", database_url="postgresql://localhost/dq"))
    assert isinstance(postgres, PostgresKeyValueStore)


def test_postgres_store_requires_database_url() -> None:
    store = PostgresKeyValueStore(database_url=None, min_pool_size=1, max_pool_size=1)
    with pytest.raises(ConfigurationError):
        asyncio.run(store.get("research:1"))


def test_postgres_store_round_trip() -> None:
    database_url = os.getenv("DQ_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("postgres store test requires DQ_DATABASE_URL or DATABASE_URL")

    prefix = f"test-{uuid.uuid4()}:"

    async def run() -> tuple[object, list[object], object]:
        store = PostgresKeyValueStore(database_url=database_url, min_pool_size=1, max_pool_size=2)
        try:
            await store.set(f"{prefix}a", {"id": "a"})
            await store.set(f"{prefix}a", {"id": "a", "status": "processing"})
            await store.set(f"{prefix}b", {"id": "b"})
            fetched = await store.get(f"{prefix}a")
            listed = await store.list(prefix)
            await store.delete(f"{prefix}a")
            await store.delete(f"{prefix}b")
            return fetched, listed, await store.get(f"{prefix}a")
        finally:
            await store.close()

    fetched, listed, after_delete = asyncio.run(run())
    assert fetched == {"id": "a", "status": "processing"}
    assert sorted(value["id"] for value in listed) == ["a", "b"]
    assert after_delete is None

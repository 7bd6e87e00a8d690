from __future__ import annotations

import asyncio
import json
from pathlib import Path

from liftsync.storage.keys import StorageKey, user_key
from liftsync.storage.store import JsonFileStore, MemoryStore


def test_user_key_namespaces_by_user() -> None:
    assert user_key(StorageKey.COMPLETED_DAYS, "u1") == "completedDays_user_u1"
    assert user_key(StorageKey.COMPLETED_DAYS, None) == "completedDays"
    assert user_key("custom", "") == "custom"


def test_memory_store_keeps_users_apart() -> None:
    async def _run() -> None:
        store = MemoryStore()
        assert await store.save(StorageKey.CURRENT_DAY, 3, "alice")
        assert await store.save(StorageKey.CURRENT_DAY, 5, "bob")

        assert await store.load(StorageKey.CURRENT_DAY, "alice") == 3
        assert await store.load(StorageKey.CURRENT_DAY, "bob") == 5
        assert await store.load(StorageKey.CURRENT_DAY, default=1) == 1

    asyncio.run(_run())


def test_unserializable_value_is_reported_not_raised() -> None:
    async def _run() -> None:
        store = MemoryStore()
        assert await store.save(StorageKey.WORKOUT_DATA, {"bad": object()}) is False
        assert await store.load(StorageKey.WORKOUT_DATA) is None

    asyncio.run(_run())


def test_remove_many_drops_only_named_keys() -> None:
    async def _run() -> None:
        store = MemoryStore()
        for key in (StorageKey.WORKOUT_START_TIME, StorageKey.CURRENT_SESSION_ID, StorageKey.CURRENT_DAY):
            await store.save(key, "x", "u1")

        assert await store.remove_many([StorageKey.WORKOUT_START_TIME, StorageKey.CURRENT_SESSION_ID], "u1")
        assert store.keys() == ["currentDay_user_u1"]

    asyncio.run(_run())


def test_json_file_store_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "state" / "state.json"

    async def _run() -> None:
        first = JsonFileStore(path)
        await first.save(StorageKey.LOCKED_DAYS, {"1": True}, "u1")
        await first.save(StorageKey.PENDING_SYNCS, [{"type": "endSession"}], "u1")
        await first.remove(StorageKey.PENDING_SYNCS, "u1")

        second = JsonFileStore(path)
        assert await second.load(StorageKey.LOCKED_DAYS, "u1") == {"1": True}
        assert await second.load(StorageKey.PENDING_SYNCS, "u1", default=[]) == []

    asyncio.run(_run())
    assert not path.with_name("state.json.tmp").exists()
    assert set(json.loads(path.read_text(encoding="utf-8"))) == {"lockedDays_user_u1"}


def test_corrupt_store_document_falls_back_to_default(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    async def _run() -> None:
        store = JsonFileStore(path)
        assert await store.load(StorageKey.CURRENT_DAY, default=1) == 1
        assert await store.save(StorageKey.CURRENT_DAY, 2) is False

    asyncio.run(_run())

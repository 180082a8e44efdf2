"""
Unit tests for the in-memory and file-backed state stores.
"""

from pathlib import Path

import pytest

from aperioesca.domain.shared.errors import StateStoreError
from aperioesca.infrastructure.storage.state_store import (
    InMemoryStateStore,
    JsonFileStateStore,
)


class TestInMemoryStateStore:
    """Test suite for InMemoryStateStore."""

    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self) -> None:
        assert await InMemoryStateStore().load("quota") is None

    @pytest.mark.asyncio
    async def test_save_overwrites_whole_record(self) -> None:
        store = InMemoryStateStore()
        await store.save("quota", {"used": 1, "extra": True})

        await store.save("quota", {"used": 2})

        assert await store.load("quota") == {"used": 2}

    @pytest.mark.asyncio
    async def test_loaded_record_is_a_copy(self) -> None:
        store = InMemoryStateStore()
        record = {"used": 1}
        await store.save("quota", record)

        record["used"] = 99
        loaded = await store.load("quota")
        assert loaded == {"used": 1}
        loaded["used"] = 50

        assert await store.load("quota") == {"used": 1}

    @pytest.mark.asyncio
    async def test_unserializable_record(self) -> None:
        with pytest.raises(StateStoreError):
            await InMemoryStateStore().save("quota", {"when": object()})

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self) -> None:
        store = InMemoryStateStore()
        await store.save("quota", {"used": 1})

        await store.delete("quota")
        await store.delete("quota")

        assert await store.load("quota") is None


class TestJsonFileStateStore:
    """Test suite for JsonFileStateStore."""

    @pytest.mark.asyncio
    async def test_round_trip_creates_directory(self, tmp_path: Path) -> None:
        store = JsonFileStateStore(tmp_path / "state")

        await store.save("circuit_breaker", {"state": "OPEN", "failure_count": 5})

        assert (tmp_path / "state" / "circuit_breaker.json").exists()
        assert await store.load("circuit_breaker") == {"state": "OPEN", "failure_count": 5}

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path: Path) -> None:
        await JsonFileStateStore(tmp_path).save("quota", {"used": 3})

        assert await JsonFileStateStore(tmp_path).load("quota") == {"used": 3}

    @pytest.mark.asyncio
    async def test_missing_file_returns_none(self, tmp_path: Path) -> None:
        assert await JsonFileStateStore(tmp_path).load("quota") is None

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        store = JsonFileStateStore(tmp_path)

        await store.save("quota", {"used": 1})
        await store.save("quota", {"used": 2})

        assert sorted(p.name for p in tmp_path.iterdir()) == ["quota.json"]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, tmp_path: Path) -> None:
        (tmp_path / "quota.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(StateStoreError, match="Corrupt"):
            await JsonFileStateStore(tmp_path).load("quota")

    @pytest.mark.asyncio
    async def test_non_object_file_raises(self, tmp_path: Path) -> None:
        (tmp_path / "quota.json").write_text("[1, 2, 3]", encoding="utf-8")

        with pytest.raises(StateStoreError):
            await JsonFileStateStore(tmp_path).load("quota")

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path: Path) -> None:
        store = JsonFileStateStore(tmp_path)
        await store.save("meals", {"meals": []})

        await store.delete("meals")
        await store.delete("meals")

        assert await store.load("meals") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["../escape", "a/b", "", "spaced key"])
    async def test_unsafe_keys_rejected(self, tmp_path: Path, key: str) -> None:
        with pytest.raises(StateStoreError):
            await JsonFileStateStore(tmp_path).save(key, {})

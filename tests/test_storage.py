"""Tests for the key-value stores and the state repository."""

import asyncio
from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from sleep_detector.models import ActivityRecord, AppSettings, SensitivityLevel, SleepStatus
from sleep_detector.storage.database import Base
from sleep_detector.storage.keyvalue import KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore
from sleep_detector.storage.repository import StateRepository
from sleep_detector.storage.schema import StorageKeys

from conftest import FailingStore


class SlowStore(MemoryKeyValueStore):
    async def get(self, key):
        await asyncio.sleep(1)
        return await super().get(key)


@pytest.fixture
async def sql_store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'kv.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SqlKeyValueStore(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


class TestStorageKeys:
    def test_namespace_prefix(self):
        keys = StorageKeys("test-ns")
        assert keys.activity_records == "test-ns:activity-records"
        assert len(set(keys.all())) == 8
        assert all(k.startswith("test-ns:") for k in keys.all())


class TestSqlKeyValueStore:
    async def test_set_get_overwrite(self, sql_store: KeyValueStore):
        assert await sql_store.get("a") is None
        await sql_store.set("a", '{"v": 1}')
        await sql_store.set("a", '{"v": 2}')
        assert await sql_store.get("a") == '{"v": 2}'

    async def test_multi_remove_and_clear(self, sql_store: KeyValueStore):
        for key in ("a", "b", "c"):
            await sql_store.set(key, "1")
        await sql_store.multi_remove(["a", "b", "missing"])
        assert await sql_store.get("a") is None
        assert await sql_store.get("c") == "1"
        await sql_store.clear()
        assert await sql_store.get("c") is None


class TestStateRepository:
    async def test_records_round_trip(self, repo):
        record = ActivityRecord(timestamp=datetime(2024, 3, 12, 23, 5), status=SleepStatus.ASLEEP, confidence=88)
        assert await repo.save_records([record]) is True
        (loaded,) = await repo.load_records()
        assert loaded == record
        assert loaded.id.startswith(str(int(record.timestamp.timestamp() * 1000)))

    async def test_settings_merge_over_defaults(self, repo, store, keys):
        await store.set(keys.settings, '{"sensitivity_level": "high"}')
        loaded = await repo.load_settings(AppSettings(inactivity_threshold=50))
        assert loaded.sensitivity_level is SensitivityLevel.HIGH
        assert loaded.inactivity_threshold == 50

    async def test_malformed_document_returns_none(self, repo, store, keys):
        await store.set(keys.activity_records, "{not json")
        await store.set(keys.settings, "[1, 2]")
        assert await repo.load_records() is None
        assert await repo.load_settings(AppSettings()) is None

    async def test_failing_store_degrades(self, keys):
        repo = StateRepository(FailingStore(), keys)
        assert await repo.load_records() is None
        assert await repo.save_records([]) is False
        assert await repo.remove_all() is False
        assert await repo.load_health_sync_enabled() is False

    async def test_timeout_degrades(self, keys):
        repo = StateRepository(SlowStore(), keys, timeout=0.01)
        assert await repo.read(keys.settings) is None

    async def test_remove_all_only_touches_namespace(self, keys):
        store = MemoryKeyValueStore({"other:key": "1"})
        repo = StateRepository(store, keys)
        await repo.save_health_sync_enabled(True)
        assert await repo.load_health_sync_enabled() is True
        await repo.remove_all()
        assert store.keys() == ["other:key"]

    async def test_last_activity_round_trip(self, repo):
        when = datetime(2024, 3, 12, 7, 45, 30)
        await repo.save_last_activity(when)
        assert await repo.load_last_activity() == when

"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from sleep_detector.detection.event_log import ActivityEventLog
from sleep_detector.detection.inactivity import InactivityEstimator
from sleep_detector.detection.sensor_pipeline import SensorFilterPipeline
from sleep_detector.exceptions import PersistenceError
from sleep_detector.health.bridge import HealthStoreBridge
from sleep_detector.models import AppSettings, SleepEntry, SleepNotification
from sleep_detector.notifications.handlers import NotificationDispatcher, NotificationHandler
from sleep_detector.storage.keyvalue import KeyValueStore, MemoryKeyValueStore
from sleep_detector.storage.repository import StateRepository
from sleep_detector.storage.schema import StorageKeys


class FakeClock:
    """Manually advanced clock, callable like ``datetime.now``."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, when: datetime) -> datetime:
        self.now = when
        return self.now


class FailingStore(KeyValueStore):
    """Store whose every call raises :class:`PersistenceError`."""

    async def get(self, key):
        raise PersistenceError("get", key)

    async def set(self, key, value):
        raise PersistenceError("set", key)

    async def multi_remove(self, keys):
        raise PersistenceError("multi_remove")

    async def clear(self):
        raise PersistenceError("clear")


class SlowStore(MemoryKeyValueStore):
    """Memory store whose writes yield to the event loop before landing."""

    def __init__(self, delay: float = 0.01) -> None:
        super().__init__()
        self._delay = delay

    async def set(self, key, value):
        await asyncio.sleep(self._delay)
        await super().set(key, value)


class FakeHealthStore(HealthStoreBridge):
    name = "fake-health"

    def __init__(self, stored: list[SleepEntry] | None = None, *, fail_saves: bool = False) -> None:
        self.stored = list(stored or [])
        self.saved: list[SleepEntry] = []
        self.fail_saves = fail_saves
        self.initialized = False

    def is_available(self) -> bool:
        return True

    async def initialize(self) -> bool:
        self.initialized = True
        return True

    async def get_sleep_data(self, start, end):
        return [e for e in self.stored if start <= e.start_time <= end]

    async def save_sleep_data(self, entry):
        if self.fail_saves:
            raise ConnectionError("store offline")
        self.saved.append(entry)


class RecordingHandler(NotificationHandler):
    """Keeps every notification it receives."""

    name = "recording"

    def __init__(self) -> None:
        self.received: list[SleepNotification] = []

    async def send(self, notification: SleepNotification) -> bool:
        self.received.append(notification)
        return True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 12, 8, 0))


@pytest.fixture
def keys() -> StorageKeys:
    return StorageKeys()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def repo(store: MemoryKeyValueStore, keys: StorageKeys) -> StateRepository:
    return StateRepository(store, keys, timeout=1.0)


@pytest.fixture
def event_log(repo: StateRepository, clock: FakeClock) -> ActivityEventLog:
    return ActivityEventLog(repo, clock=clock)


@pytest.fixture
def pipeline(event_log: ActivityEventLog, clock: FakeClock) -> SensorFilterPipeline:
    return SensorFilterPipeline(event_log, clock=clock)


@pytest.fixture
def estimator(
    event_log: ActivityEventLog, pipeline: SensorFilterPipeline, clock: FakeClock
) -> InactivityEstimator:
    return InactivityEstimator(event_log, lambda: pipeline.app_state, clock=clock)


@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def dispatcher(recorder: RecordingHandler) -> NotificationDispatcher:
    return NotificationDispatcher(handlers=[recorder])


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings()

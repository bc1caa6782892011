"""Tests for the composed sleep detection service."""

from datetime import datetime

import pytest

from sleep_detector.config import Settings
from sleep_detector.models import AppState, SensorKind, SleepEntry, SleepStatus
from sleep_detector.service import BACKGROUND_CHECK, STATUS_CHECK, SleepDetectionService
from sleep_detector.sources.push import PushLifecycleNotifier, PushMotionSensor

from conftest import FakeHealthStore


@pytest.fixture
def settings() -> Settings:
    return Settings(webhook_url="", storage_namespace="test")


@pytest.fixture
async def service(store, settings, dispatcher, clock):
    svc = SleepDetectionService(store, settings=settings, dispatcher=dispatcher, clock=clock)
    yield svc
    await svc.stop()


class TestSleepDetectionService:
    async def test_start_subscribes_and_schedules(self, service, store):
        sensors = [
            PushMotionSensor(SensorKind.ACCELEROMETER),
            PushMotionSensor(SensorKind.GYROSCOPE, available=False),
        ]
        lifecycle = PushLifecycleNotifier()
        await service.start(sensors, lifecycle)

        assert service.is_running
        assert service.pipeline.active_sensors == [SensorKind.ACCELEROMETER]
        assert lifecycle.listener_count == 1
        assert service.scheduler.is_scheduled(STATUS_CHECK)
        assert "test:activity-records" in store.keys()

    async def test_lifecycle_switches_cadence(self, service):
        lifecycle = PushLifecycleNotifier()
        await service.start([], lifecycle)

        await lifecycle.push(AppState.BACKGROUND)
        assert service.scheduler.is_scheduled(BACKGROUND_CHECK)
        assert not service.scheduler.is_scheduled(STATUS_CHECK)

        await lifecycle.push(AppState.ACTIVE)
        assert service.scheduler.is_scheduled(STATUS_CHECK)
        assert not service.scheduler.is_scheduled(BACKGROUND_CHECK)
        assert service.scheduler.is_scheduled("dwell-likely")
        assert service.scheduler.is_scheduled("dwell-confirmed")

    async def test_reopen_after_an_hour(self, service, clock):
        lifecycle = PushLifecycleNotifier()
        await service.start([], lifecycle)
        await lifecycle.push(AppState.BACKGROUND)

        clock.set(datetime(2024, 3, 12, 9, 0))
        await lifecycle.push(AppState.ACTIVE)

        statuses = [(r.timestamp, r.status) for r in service.controller.records]
        assert statuses[-2:] == [
            (datetime(2024, 3, 12, 8, 45), SleepStatus.ASLEEP),
            (datetime(2024, 3, 12, 9, 0), SleepStatus.AWAKE),
        ]

    async def test_background_check_logs_heartbeat(self, service, clock):
        await service.start()
        await service.handle_app_state(AppState.BACKGROUND)
        clock.set(datetime(2024, 3, 12, 8, 50))
        await service.background_check()
        assert service.event_log.entries()[-1].source.value == "background_check"
        assert service.controller.current_status is SleepStatus.ASLEEP

    async def test_stop_releases_everything(self, service):
        sensor = PushMotionSensor(SensorKind.ACCELEROMETER)
        lifecycle = PushLifecycleNotifier()
        await service.start([sensor], lifecycle)
        await service.stop()
        assert sensor.listener_count == 0
        assert lifecycle.listener_count == 0
        assert service.scheduler.handles == {}
        assert not service.is_running

    async def test_emergency_shutdown(self, service):
        sensor = PushMotionSensor(SensorKind.ACCELEROMETER)
        await service.start([sensor], PushLifecycleNotifier())
        service.emergency_shutdown()
        service.emergency_shutdown()
        assert sensor.listener_count == 0
        assert not service.scheduler.is_running

    async def test_reset_clears_all_data(self, service, store):
        await service.start()
        await service.set_status(SleepStatus.ASLEEP)
        await service.reset()
        assert len(service.controller.records) == 1
        assert len(service.event_log) == 0
        assert "test:device-activity-log" not in store.keys()

    async def test_status_snapshot(self, service):
        await service.start()
        snapshot = service.status_snapshot()
        assert snapshot["status"] == "awake"
        assert snapshot["app_state"] == "active"
        assert "status-check" in snapshot["scheduler"]["scheduled"]
        assert snapshot["notification_channels"] == ["recording"]

    async def test_restart_after_stop_resumes_monitoring(self, service):
        sensor = PushMotionSensor(SensorKind.ACCELEROMETER)
        lifecycle = PushLifecycleNotifier()
        await service.start([sensor], lifecycle)
        await service.stop()

        await service.start([sensor], lifecycle)
        assert service.is_running
        assert service.scheduler.is_scheduled(STATUS_CHECK)
        assert sensor.listener_count == 1
        assert lifecycle.listener_count == 1

        await lifecycle.push(AppState.BACKGROUND)
        assert service.scheduler.is_scheduled(BACKGROUND_CHECK)


class TestHealthSync:
    @pytest.fixture
    async def synced(self, store, settings, dispatcher, clock):
        bridge = FakeHealthStore(
            stored=[
                SleepEntry(
                    id="watch-1",
                    start_time=datetime(2024, 3, 10, 23, 0),
                    end_time=datetime(2024, 3, 11, 6, 30),
                    source="Apple Health",
                )
            ]
        )
        svc = SleepDetectionService(
            store, settings=settings, dispatcher=dispatcher, health_bridge=bridge, clock=clock
        )
        await svc.start()
        yield svc, bridge
        await svc.stop()

    async def test_detected_sleep_reaches_the_health_store(self, synced, clock):
        service, bridge = synced
        await service.set_health_sync(True)

        clock.advance(minutes=1)
        await service.set_status(SleepStatus.ASLEEP)
        clock.set(datetime(2024, 3, 12, 9, 30))
        await service.set_status(SleepStatus.AWAKE)

        assert service.health_status() == {"enabled": True, "bridge": "fake-health", "entries": 1}
        (saved,) = bridge.saved
        assert (saved.start_time, saved.end_time) == (
            datetime(2024, 3, 12, 8, 1),
            datetime(2024, 3, 12, 9, 30),
        )

    async def test_disabled_sync_keeps_entries_local(self, synced, clock):
        service, bridge = synced
        clock.advance(minutes=1)
        await service.set_status(SleepStatus.ASLEEP)
        clock.set(datetime(2024, 3, 12, 9, 30))
        await service.set_status(SleepStatus.AWAKE)

        assert service.health_status()["entries"] == 1
        assert bridge.saved == []
        assert await service.export_health() == 1
        assert len(bridge.saved) == 1

    async def test_import_pulls_recent_store_data(self, synced):
        service, _ = synced
        assert await service.import_health(days=7) == 1
        assert await service.import_health(days=7) == 0
        assert await service.export_health() == 0

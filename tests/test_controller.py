"""Tests for the status transition controller."""

import asyncio
from datetime import datetime

import pytest
from pydantic import ValidationError

from sleep_detector.detection.controller import StatusTransitionController
from sleep_detector.detection.event_log import ActivityEventLog
from sleep_detector.detection.inactivity import InactivityEstimator
from sleep_detector.detection.sensor_pipeline import SensorFilterPipeline
from sleep_detector.models import ActivitySource, AppState, NotificationKind, SensitivityLevel, SleepStatus
from sleep_detector.health.bridge import HealthSyncService
from sleep_detector.storage.repository import StateRepository

from conftest import FailingStore, FakeHealthStore, SlowStore

ASLEEP, AWAKE = SleepStatus.ASLEEP, SleepStatus.AWAKE


@pytest.fixture
def controller(repo, estimator, pipeline, dispatcher, clock) -> StatusTransitionController:
    return StatusTransitionController(repo, estimator, pipeline, dispatcher=dispatcher, clock=clock)


def ledger(controller):
    return [(r.timestamp, r.status, r.confidence) for r in controller.records]


class TestLoad:
    async def test_seeds_awake_record_on_empty_ledger(self, controller, clock):
        await controller.load()
        assert ledger(controller) == [(clock(), AWAKE, 100)]
        assert controller.current_status is AWAKE
        assert controller.current_confidence == 100

    async def test_restores_persisted_state(self, controller, repo, estimator, pipeline, clock):
        await controller.load()
        await controller.manually_set_status(ASLEEP, clock.advance(minutes=5))

        restored = StatusTransitionController(repo, estimator, pipeline, clock=clock)
        await restored.load()
        assert len(restored.records) == 2
        assert restored.current_status is ASLEEP
        assert restored.current_confidence == 100

    async def test_store_failure_degrades_to_memory(self, keys, clock):
        repo = StateRepository(FailingStore(), keys, timeout=1.0)
        log = ActivityEventLog(repo, clock=clock)
        pipeline = SensorFilterPipeline(log, clock=clock)
        estimator = InactivityEstimator(log, lambda: pipeline.app_state, clock=clock)
        controller = StatusTransitionController(repo, estimator, pipeline, clock=clock)

        await controller.load()
        await controller.manually_set_status(ASLEEP, clock.advance(minutes=1))
        assert [r.status for r in controller.records] == [AWAKE, ASLEEP]


class TestCheckStatus:
    async def test_small_confidence_drift_is_ignored(self, controller, clock):
        await controller.load()
        assert await controller.check_status(clock.advance(minutes=5)) is None
        # 18 buffered minutes → awake 84 + 5 by day = 89, within 15 of 100
        assert await controller.check_status(clock.set(datetime(2024, 3, 12, 8, 20))) is None
        assert len(controller.records) == 1

    async def test_large_confidence_drift_revises_record(self, controller, clock):
        await controller.load()
        now = clock.set(datetime(2024, 3, 12, 8, 30))
        record = await controller.check_status()
        assert record is not None
        assert (record.timestamp, record.status, record.confidence) == (now, AWAKE, 80)

    async def test_falling_asleep_is_backdated(self, controller, event_log, clock, recorder):
        clock.set(datetime(2024, 3, 12, 22, 0))
        await event_log.mark_genuine_activity(clock())
        await controller.load()

        record = await controller.check_status(clock.set(datetime(2024, 3, 12, 23, 0)))

        # 58 buffered minutes: 70 + 13 ramp + 15 at night
        assert record.status is ASLEEP
        assert record.confidence == 98
        assert record.timestamp == datetime(2024, 3, 12, 22, 2)
        assert controller.current_status is ASLEEP
        assert [n.kind for n in recorder.received] == [NotificationKind.SLEEP_DETECTED]
        assert recorder.received[0].message == (
            "You've been inactive for 58m. Sleep tracking started."
        )

    async def test_backdating_never_precedes_last_record(self, controller, clock):
        await controller.load()
        await controller.check_status(clock.set(datetime(2024, 3, 12, 8, 30)))
        record = await controller.check_status(clock.set(datetime(2024, 3, 12, 8, 50)))
        assert record.status is ASLEEP
        assert record.timestamp == datetime(2024, 3, 12, 8, 30)
        timestamps = [r.timestamp for r in controller.records]
        assert timestamps == sorted(timestamps)

    async def test_movement_wakes_user(self, controller, event_log, pipeline, clock, recorder):
        clock.set(datetime(2024, 3, 12, 22, 0))
        await event_log.mark_genuine_activity(clock())
        await controller.load()
        await controller.check_status(clock.set(datetime(2024, 3, 12, 23, 0)))

        await pipeline.record_user_activity(clock.set(datetime(2024, 3, 12, 23, 30)))
        wake = await controller.check_status(clock.set(datetime(2024, 3, 12, 23, 31)))

        assert wake.status is AWAKE
        assert wake.timestamp == datetime(2024, 3, 12, 23, 31)
        notification = recorder.received[-1]
        assert notification.kind is NotificationKind.WAKE_DETECTED
        assert notification.sleep_minutes == pytest.approx(89)
        assert notification.message == "You slept for 1h 29m. Sleep quality: Insufficient"


class TestForegroundReturn:
    async def test_missed_sleep_is_recorded_retroactively(self, controller, pipeline, clock, recorder):
        await controller.load()
        await pipeline.handle_app_state(AppState.BACKGROUND)

        now = clock.set(datetime(2024, 3, 12, 9, 0))
        await pipeline.handle_app_state(AppState.ACTIVE, now)
        appended = await controller.on_foreground(now)

        assert [(r.timestamp, r.status, r.confidence) for r in appended] == [
            (datetime(2024, 3, 12, 8, 45), ASLEEP, 70),
            (now, AWAKE, 95),
        ]
        (summary,) = controller.daily_summaries
        assert summary.sleep_periods[0].confidence == pytest.approx(82.5)
        assert controller.get_today_sleep_duration(now) == pytest.approx(15 * 0.825)
        assert recorder.received[-1].kind is NotificationKind.WAKE_DETECTED
        assert recorder.received[-1].sleep_minutes == pytest.approx(15)

    async def test_stored_sleep_ends_on_return(self, controller, clock):
        await controller.load()
        await controller.manually_set_status(ASLEEP, clock.advance(minutes=1))
        appended = await controller.on_foreground(clock.advance(minutes=10))
        assert [(r.status, r.confidence) for r in appended] == [(AWAKE, 85)]
        assert controller.current_status is AWAKE

    async def test_short_absence_records_nothing(self, controller, clock):
        await controller.load()
        assert await controller.on_foreground(clock.advance(minutes=20)) == []
        assert len(controller.records) == 1


class TestManualOverride:
    async def test_manual_sleep_does_not_notify(self, controller, event_log, clock, recorder):
        await controller.load()
        now = clock.advance(minutes=3)
        record = await controller.manually_set_status(ASLEEP, now)

        assert (record.status, record.confidence) == (ASLEEP, 100)
        assert recorder.received == []
        assert event_log.entries()[-1].source is ActivitySource.USER_INTERACTION
        assert event_log.last_genuine_activity == now

    async def test_manual_wake_notifies(self, controller, clock, recorder):
        await controller.load()
        await controller.manually_set_status(ASLEEP, clock.advance(minutes=1))
        await controller.manually_set_status(AWAKE, clock.advance(hours=8))
        assert recorder.received[-1].kind is NotificationKind.WAKE_DETECTED
        assert recorder.received[-1].quality == "Excellent"

    async def test_today_records(self, controller, clock):
        await controller.load()
        await controller.manually_set_status(ASLEEP, clock.advance(days=1))
        assert len(controller.today_records(clock())) == 1


class TestSettingsAndReset:
    async def test_update_settings_persists_and_retunes(self, controller, repo, pipeline):
        await controller.load()
        updated = await controller.update_settings(
            sensitivity_level=SensitivityLevel.HIGH, inactivity_threshold=30
        )
        assert updated.inactivity_threshold == 30
        assert pipeline.tier.level is SensitivityLevel.HIGH
        stored = await repo.load_settings(controller.settings)
        assert stored.sensitivity_level is SensitivityLevel.HIGH

    async def test_invalid_settings_are_rejected(self, controller):
        await controller.load()
        with pytest.raises(ValidationError):
            await controller.update_settings(inactivity_threshold=-5)
        assert controller.settings.inactivity_threshold == 45

    async def test_lower_threshold_changes_detection(self, controller, clock):
        await controller.load()
        await controller.update_settings(inactivity_threshold=20, consider_time_of_day=False)
        record = await controller.check_status(clock.advance(minutes=25))
        assert record.status is ASLEEP

    async def test_reset_reseeds(self, controller, store, keys, clock):
        await controller.load()
        await controller.manually_set_status(ASLEEP, clock.advance(minutes=1))
        await controller.update_settings(inactivity_threshold=60)

        await controller.reset()

        assert ledger(controller) == [(clock(), AWAKE, 100)]
        assert controller.settings.inactivity_threshold == 45
        assert keys.settings not in store.keys()

    async def test_detection_diagnostics(self, controller, clock):
        await controller.load()
        report = controller.test_detection(clock.advance(minutes=50))
        assert report["predicted_status"] == "asleep"
        assert report["current_status"] == "awake"
        assert report["inactive_minutes"] == pytest.approx(48)
        assert report["raw_inactive_minutes"] == pytest.approx(50)

    async def test_load_without_seed_writes_nothing(self, controller, store):
        await controller.load(seed=False)
        assert controller.records == []
        assert store.keys() == []


class TestConcurrentEvaluation:
    """Evaluations that interleave with slow writes are serialised."""

    @pytest.fixture
    def slow_repo(self, keys) -> StateRepository:
        return StateRepository(SlowStore(), keys, timeout=1.0)

    @pytest.fixture
    def slow_log(self, slow_repo, clock) -> ActivityEventLog:
        return ActivityEventLog(slow_repo, clock=clock)

    @pytest.fixture
    def slow_pipeline(self, slow_log, clock) -> SensorFilterPipeline:
        return SensorFilterPipeline(slow_log, clock=clock)

    @pytest.fixture
    def slow_controller(self, slow_repo, slow_log, slow_pipeline, dispatcher, clock):
        estimator = InactivityEstimator(slow_log, lambda: slow_pipeline.app_state, clock=clock)
        return StatusTransitionController(
            slow_repo, estimator, slow_pipeline, dispatcher=dispatcher, clock=clock
        )

    async def test_check_queued_behind_override_sees_the_override(
        self, slow_controller, slow_repo, clock, recorder
    ):
        await slow_controller.load()
        now = clock.set(datetime(2024, 3, 12, 9, 0))

        await asyncio.gather(
            slow_controller.manually_set_status(AWAKE, now),
            slow_controller.check_status(now),
        )

        assert ledger(slow_controller) == [
            (datetime(2024, 3, 12, 8, 0), AWAKE, 100),
            (now, AWAKE, 100),
        ]
        assert slow_controller.current_status is AWAKE
        assert recorder.received == []
        assert await slow_repo.load_records() == slow_controller.records

    async def test_check_and_foreground_return_do_not_interleave(
        self, slow_controller, slow_pipeline, slow_repo, clock, recorder
    ):
        await slow_controller.load()
        await slow_pipeline.handle_app_state(AppState.BACKGROUND)
        now = clock.set(datetime(2024, 3, 12, 9, 0))
        await slow_pipeline.handle_app_state(AppState.ACTIVE, now)

        await asyncio.gather(
            slow_controller.check_status(now),
            slow_controller.on_foreground(now),
        )

        # 58 buffered minutes by day: 70 + 13 ramp - 15
        assert ledger(slow_controller) == [
            (datetime(2024, 3, 12, 8, 0), AWAKE, 100),
            (datetime(2024, 3, 12, 8, 2), ASLEEP, 68),
            (now, AWAKE, 85),
        ]
        assert [n.kind for n in recorder.received] == [
            NotificationKind.SLEEP_DETECTED,
            NotificationKind.WAKE_DETECTED,
        ]
        assert recorder.received[-1].sleep_minutes == pytest.approx(58)
        assert await slow_repo.load_records() == slow_controller.records


class TestHealthHandoff:
    async def test_wake_stores_and_syncs_the_sleep_period(self, repo, estimator, pipeline, clock):
        bridge = FakeHealthStore()
        health = HealthSyncService(repo, bridge)
        await health.set_enabled(True)
        controller = StatusTransitionController(
            repo, estimator, pipeline, health=health, clock=clock
        )
        await controller.load()

        await controller.manually_set_status(ASLEEP, clock.advance(minutes=1))
        await controller.manually_set_status(AWAKE, clock.set(datetime(2024, 3, 12, 9, 0)))

        (entry,) = health.entries
        assert (entry.start_time, entry.end_time) == (
            datetime(2024, 3, 12, 8, 1),
            datetime(2024, 3, 12, 9, 0),
        )
        assert bridge.saved == [entry]

        # Periods already handed over are not stored twice.
        assert await health.add_from_summaries(controller.daily_summaries) == 0
        assert len(health.entries) == 1

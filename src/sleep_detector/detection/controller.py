"""Status transition controller — the owner of the activity-record ledger.

Architecture
~~~~~~~~~~~~
Each evaluation cycle:

1. Takes a snapshot of the user settings.
2. Asks the :class:`InactivityEstimator` for the genuine inactivity.
3. Scores it with :func:`calculate_sleep_confidence`.
4. Appends an :class:`ActivityRecord` only when the status flipped or the
   confidence moved by more than :data:`HYSTERESIS` points.
5. Rebuilds the daily summaries, re-learns the sleep pattern and persists
   everything.
6. On a wake transition, notifies and hands the finished sleep periods to
   the health sync.

Falling asleep is backdated to when the inactivity started; waking up is
stamped at the moment it is detected.  Each decision and the append it
leads to run inside one critical section of a single :class:`asyncio.Lock`;
notifications are sent after the lock is released.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable

import structlog

from sleep_detector.detection.confidence import (
    calculate_sleep_confidence,
    calculate_sleep_quality,
    effective_threshold,
    is_nighttime,
)
from sleep_detector.detection.inactivity import InactivityEstimator
from sleep_detector.detection.patterns import learn_sleep_patterns
from sleep_detector.detection.sensor_pipeline import SensorFilterPipeline
from sleep_detector.detection.summaries import day_key, derive_daily_summaries, summary_for
from sleep_detector.health.bridge import HealthSyncService
from sleep_detector.models import (
    ActivityRecord,
    AppSettings,
    DailySleepSummary,
    SleepPatternModel,
    SleepStatus,
)
from sleep_detector.notifications.handlers import NotificationDispatcher
from sleep_detector.storage.repository import StateRepository

logger = structlog.get_logger(__name__)

HYSTERESIS = 15
SEED_CONFIDENCE = 100
MANUAL_CONFIDENCE = 100
WAKE_ON_RETURN_CONFIDENCE = 85  # stored status was ASLEEP when the app reopened
WAKE_AFTER_MISSED_SLEEP_CONFIDENCE = 95


class StatusTransitionController:
    """Decide AWAKE / ASLEEP and maintain the ledger and its derived data.

    Parameters
    ----------
    repo : StateRepository
        Persistence for records, summaries, patterns and settings.
    estimator : InactivityEstimator
        Source of inactivity durations.
    pipeline : SensorFilterPipeline
        Retuned on sensitivity changes; receives manual-override activity.
    dispatcher : NotificationDispatcher | None
        Sleep / wake notifications.  ``None`` disables them.
    health : HealthSyncService | None
        Receives the detected sleep periods after each wake transition.
    default_settings : AppSettings | None
        Used until the user has saved settings of their own.
    clock : callable
        Source of "now".
    """

    def __init__(
        self,
        repo: StateRepository,
        estimator: InactivityEstimator,
        pipeline: SensorFilterPipeline,
        *,
        dispatcher: NotificationDispatcher | None = None,
        health: HealthSyncService | None = None,
        default_settings: AppSettings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repo = repo
        self._estimator = estimator
        self._pipeline = pipeline
        self._dispatcher = dispatcher
        self._health = health
        self._clock = clock
        self._default_settings = default_settings or AppSettings()

        self._settings = self._default_settings.model_copy()
        self._records: list[ActivityRecord] = []
        self._summaries: list[DailySleepSummary] = []
        self._patterns = SleepPatternModel()
        self._status = SleepStatus.AWAKE
        self._confidence = SEED_CONFIDENCE
        self._lock = asyncio.Lock()

    # ── Lifecycle ─────────────────────────────────────────────

    async def load(self, *, seed: bool = True) -> None:
        """Restore persisted state.

        On first run the ledger is seeded with an AWAKE record unless *seed*
        is false, which read-only callers use so loading writes nothing.
        """
        async with self._lock:
            records = await self._repo.load_records() or []
            self._records = sorted(records, key=lambda r: (r.timestamp, r.id))
            self._summaries = derive_daily_summaries(self._records)
            self._patterns = await self._repo.load_patterns() or SleepPatternModel()
            self._settings = await self._repo.load_settings(self._default_settings) or (
                self._default_settings.model_copy()
            )
            self._pipeline.set_sensitivity(self._settings.sensitivity_level)

            if self._records:
                last = self._records[-1]
                self._status, self._confidence = last.status, last.confidence
            elif seed:
                await self._append_locked(SleepStatus.AWAKE, self._clock(), SEED_CONFIDENCE)
                logger.info("controller.seeded")

        logger.info(
            "controller.loaded",
            records=len(self._records),
            status=self._status.value,
            confidence=self._confidence,
        )

    async def reset(self) -> None:
        """Erase every persisted document and start over from a seed record."""
        async with self._lock:
            await self._repo.remove_all()
            self._records = []
            self._summaries = []
            self._patterns = SleepPatternModel()
            self._settings = self._default_settings.model_copy()
            self._pipeline.set_sensitivity(self._settings.sensitivity_level)
            await self._append_locked(SleepStatus.AWAKE, self._clock(), SEED_CONFIDENCE)
        logger.warning("controller.reset")

    # ── Evaluation ────────────────────────────────────────────

    async def check_status(self, now: datetime | None = None) -> ActivityRecord | None:
        """Run one evaluation cycle.  Returns the appended record, if any."""
        now = now or self._clock()
        async with self._lock:
            previous = self._status
            record, inactive = await self._evaluate_locked(now)
            slept = self._woke_from_sleep(previous, record)

        if record is None:
            return None
        if previous is SleepStatus.AWAKE and record.status is SleepStatus.ASLEEP:
            await self._notify_sleep(inactive)
        elif slept is not None:
            await self._on_wake(slept)
        return record

    async def _evaluate_locked(self, now: datetime) -> tuple[ActivityRecord | None, float]:
        """Decide and append in one step.  Caller holds ``self._lock``.

        Status, inactivity and settings are read here, after the lock is
        taken, so a concurrent override or foreground reconciliation is
        always seen.
        """
        settings = self._settings
        inactive = self._estimator.get_inactivity_duration(exclude_current_session=True, now=now)
        threshold = effective_threshold(settings, now.hour)
        status, confidence = calculate_sleep_confidence(
            inactive, now.hour, threshold, self._patterns, settings
        )

        if status is self._status and abs(confidence - self._confidence) <= HYSTERESIS:
            return None, inactive

        previous = self._status
        timestamp = now
        if status is SleepStatus.ASLEEP and previous is SleepStatus.AWAKE:
            timestamp = self._not_before_last(now - timedelta(minutes=inactive))

        record = await self._append_locked(status, timestamp, confidence)
        logger.info(
            "controller.status_changed" if status is not previous else "controller.confidence_revised",
            status=status.value,
            confidence=confidence,
            inactive_minutes=round(inactive, 1),
            threshold=threshold,
        )
        return record, inactive

    async def on_foreground(self, now: datetime | None = None) -> list[ActivityRecord]:
        """Reconcile the ledger with what happened while the app was away."""
        now = now or self._clock()
        appended: list[ActivityRecord] = []
        async with self._lock:
            settings = self._settings
            inactive = self._estimator.get_inactivity_duration(exclude_current_session=False, now=now)
            threshold = effective_threshold(settings, now.hour)

            if self._status is SleepStatus.ASLEEP:
                appended.append(
                    await self._append_locked(SleepStatus.AWAKE, now, WAKE_ON_RETURN_CONFIDENCE)
                )
                logger.info("controller.wake_on_return", inactive_minutes=round(inactive, 1))
            elif inactive >= threshold:
                status, confidence = calculate_sleep_confidence(
                    inactive, now.hour, threshold, self._patterns, settings
                )
                fell_asleep = self._not_before_last(
                    now - timedelta(minutes=inactive) + timedelta(minutes=threshold)
                )
                appended.append(await self._append_locked(status, fell_asleep, confidence))
                appended.append(
                    await self._append_locked(
                        SleepStatus.AWAKE, now, WAKE_AFTER_MISSED_SLEEP_CONFIDENCE
                    )
                )
                logger.info(
                    "controller.missed_sleep_recorded",
                    fell_asleep=fell_asleep.isoformat(),
                    confidence=confidence,
                    inactive_minutes=round(inactive, 1),
                )
            else:
                logger.debug("controller.foreground", inactive_minutes=round(inactive, 1))
            slept = self._sleep_run_minutes(appended[-1]) if appended else None

        if slept is not None:
            await self._on_wake(slept)
        return appended

    async def on_background(self, now: datetime | None = None) -> None:
        logger.debug("controller.background", status=self._status.value)

    async def manually_set_status(
        self, status: SleepStatus, now: datetime | None = None
    ) -> ActivityRecord:
        """Record a user-chosen status; counts as genuine activity.

        The inactivity clock is reset before the record is appended, both
        under the ledger lock, so an evaluation queued behind the override
        measures inactivity from the override.
        """
        now = now or self._clock()
        async with self._lock:
            previous = self._status
            await self._pipeline.record_user_activity(now)
            record = await self._append_locked(status, now, MANUAL_CONFIDENCE)
            slept = self._woke_from_sleep(previous, record)
        logger.info("controller.manual_override", status=status.value, previous=previous.value)
        # Setting ASLEEP by hand means the phone is in use: no sleep notification.
        if slept is not None:
            await self._on_wake(slept)
        return record

    # ── Settings ──────────────────────────────────────────────

    async def update_settings(self, **changes: Any) -> AppSettings:
        """Validate and persist a partial settings update."""
        async with self._lock:
            updated = AppSettings.model_validate({**self._settings.model_dump(), **changes})
            self._settings = updated
            self._pipeline.set_sensitivity(updated.sensitivity_level)
            await self._repo.save_settings(updated)
        logger.info("controller.settings_updated", changes=sorted(changes))
        return updated

    # ── Read side ─────────────────────────────────────────────

    @property
    def current_status(self) -> SleepStatus:
        return self._status

    @property
    def current_confidence(self) -> int:
        return self._confidence

    @property
    def records(self) -> list[ActivityRecord]:
        return list(self._records)

    @property
    def daily_summaries(self) -> list[DailySleepSummary]:
        return list(self._summaries)

    @property
    def sleep_patterns(self) -> SleepPatternModel:
        return self._patterns

    @property
    def settings(self) -> AppSettings:
        return self._settings

    def today_records(self, now: datetime | None = None) -> list[ActivityRecord]:
        today = day_key(now or self._clock())
        return [r for r in self._records if day_key(r.timestamp) == today]

    def get_today_sleep_duration(self, now: datetime | None = None) -> float:
        """Confidence-weighted sleep minutes for the current day."""
        summary = summary_for(self._summaries, day_key(now or self._clock()))
        return summary.total_sleep_minutes if summary else 0.0

    def test_detection(self, now: datetime | None = None) -> dict[str, Any]:
        """Diagnostic snapshot of what the next evaluation would decide."""
        now = now or self._clock()
        settings = self._settings
        inactive = self._estimator.get_inactivity_duration(exclude_current_session=True, now=now)
        threshold = effective_threshold(settings, now.hour)
        status, confidence = calculate_sleep_confidence(
            inactive, now.hour, threshold, self._patterns, settings
        )
        return {
            "inactive_minutes": round(inactive, 2),
            "raw_inactive_minutes": round(self._estimator.raw_inactivity(now), 2),
            "threshold_minutes": threshold,
            "is_nighttime": is_nighttime(now.hour, self._patterns),
            "predicted_status": status.value,
            "predicted_confidence": confidence,
            "current_status": self._status.value,
            "current_confidence": self._confidence,
            "app_state": self._pipeline.app_state.value,
            "records": len(self._records),
        }

    # ── Internals ─────────────────────────────────────────────

    def _not_before_last(self, timestamp: datetime) -> datetime:
        if self._records and timestamp < self._records[-1].timestamp:
            return self._records[-1].timestamp
        return timestamp

    async def _append_locked(
        self, status: SleepStatus, timestamp: datetime, confidence: int
    ) -> ActivityRecord:
        """Append a record and refresh every derived document.

        Caller holds ``self._lock``.
        """
        record = ActivityRecord(timestamp=timestamp, status=status, confidence=confidence)
        self._records.append(record)
        self._status, self._confidence = status, confidence
        self._summaries = derive_daily_summaries(self._records)
        if self._settings.use_learned_patterns:
            self._patterns = learn_sleep_patterns(self._summaries, self._patterns)

        await self._repo.save_records(list(self._records))
        await self._repo.save_summaries(list(self._summaries))
        if self._settings.use_learned_patterns:
            await self._repo.save_patterns(self._patterns)
        return record

    def _woke_from_sleep(
        self, previous: SleepStatus, record: ActivityRecord | None
    ) -> float | None:
        """Minutes slept when *record* ends a sleep run, else ``None``."""
        if record is None or previous is not SleepStatus.ASLEEP:
            return None
        if record.status is not SleepStatus.AWAKE:
            return None
        return self._sleep_run_minutes(record)

    def _sleep_run_minutes(self, wake: ActivityRecord) -> float:
        """Length of the sleep run that *wake* ends.

        Measured from the earliest ASLEEP record after the previous AWAKE
        record.
        """
        start: datetime | None = None
        index = next(i for i, r in enumerate(self._records) if r.id == wake.id)
        for record in reversed(self._records[:index]):
            if record.status is not SleepStatus.ASLEEP:
                break
            start = record.timestamp
        if start is None:
            return 0.0
        return max(0.0, (wake.timestamp - start).total_seconds() / 60)

    async def _on_wake(self, sleep_minutes: float) -> None:
        await self._notify_wake(sleep_minutes)
        if self._health is not None:
            added = await self._health.add_from_summaries(self._summaries)
            if added:
                logger.info("controller.health_entries_added", count=added)

    async def _notify_sleep(self, inactive_minutes: float) -> None:
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.notify_sleep_detected(inactive_minutes)
        except Exception:
            logger.exception("controller.notify_failed", kind="sleep_detected")

    async def _notify_wake(self, sleep_minutes: float) -> None:
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.notify_wake_detected(
                sleep_minutes, calculate_sleep_quality(sleep_minutes)
            )
        except Exception:
            logger.exception("controller.notify_failed", kind="wake_detected")

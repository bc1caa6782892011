"""Sensor filter pipeline — raw motion samples and app transitions → activity log.

Architecture
~~~~~~~~~~~~
* Each available motion sensor feeds a :class:`MotionChannel` tuned by the
  active :class:`SensitivityTier`; debounced movements become
  ``accelerometer`` / ``gyroscope`` observations.
* App-foreground transitions escalate over dwell time:

  ======  ===================  ==========  ===============
  dwell   source               confidence  genuine activity
  ======  ===================  ==========  ===============
  0 s     ``app_active_check``  40          no
  10 s    ``app_active``        80          yes
  30 s    ``app_confirmed``     95          yes
  ======  ===================  ==========  ===============

* Every observation is appended to the :class:`ActivityEventLog`; genuine
  ones also reset its last-movement timestamp.

A missing sensor is logged and skipped: the pipeline keeps working on
lifecycle signals alone.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

import structlog

from sleep_detector.detection.event_log import ActivityEventLog
from sleep_detector.detection.filters import MotionChannel, SensitivityTier, get_tier
from sleep_detector.exceptions import SensorUnavailableError
from sleep_detector.models import (
    ActivityObservation,
    ActivitySource,
    AppState,
    SensitivityLevel,
    SensorKind,
    SensorSample,
)
from sleep_detector.sources.base import MotionSensor, Subscription

if TYPE_CHECKING:
    from sleep_detector.scheduler.service import MonitoringScheduler

logger = structlog.get_logger(__name__)

LIKELY_USAGE_DWELL = timedelta(seconds=10)
CONFIRMED_USAGE_DWELL = timedelta(seconds=30)

_SENSOR_SOURCE = {
    SensorKind.ACCELEROMETER: ActivitySource.ACCELEROMETER,
    SensorKind.GYROSCOPE: ActivitySource.GYROSCOPE,
}


class SensorFilterPipeline:
    """Turn motion samples and foreground transitions into logged observations.

    Parameters
    ----------
    event_log : ActivityEventLog
        Destination of every emitted observation.
    sensitivity : SensitivityLevel
        Initial sensitivity tier.
    scheduler : MonitoringScheduler | None
        Used to arm the 10 s / 30 s dwell timers.  Without one, callers
        drive escalation through :meth:`check_foreground_dwell`.
    clock : callable
        Source of "now" for lifecycle events.
    """

    def __init__(
        self,
        event_log: ActivityEventLog,
        *,
        sensitivity: SensitivityLevel = SensitivityLevel.MEDIUM,
        scheduler: MonitoringScheduler | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._log = event_log
        self._scheduler = scheduler
        self._clock = clock
        self._tier = get_tier(sensitivity)
        self._channels = {kind: MotionChannel(kind, self._tier) for kind in SensorKind}
        self._sensors: list[MotionSensor] = []
        self._subscriptions: list[Subscription] = []

        self._app_state = AppState.ACTIVE
        self._foreground_since: datetime | None = clock()
        self._escalated: set[ActivitySource] = set()

    # ── Configuration ─────────────────────────────────────────

    @property
    def app_state(self) -> AppState:
        return self._app_state

    @property
    def is_foreground(self) -> bool:
        return self._app_state is AppState.ACTIVE

    @property
    def tier(self) -> SensitivityTier:
        return self._tier

    @property
    def active_sensors(self) -> list[SensorKind]:
        return [s.kind for s in self._sensors]

    def set_sensitivity(self, level: SensitivityLevel) -> None:
        """Retune every channel and sensor interval to another tier."""
        tier = get_tier(level)
        if tier == self._tier:
            return
        self._tier = tier
        for channel in self._channels.values():
            channel.retune(tier)
        for sensor in self._sensors:
            sensor.set_update_interval(tier.interval_for(sensor.kind))
        logger.info("sensor_pipeline.sensitivity_changed", level=tier.level.value)

    # ── Subscriptions ─────────────────────────────────────────

    def attach(self, sensors: list[MotionSensor]) -> None:
        """Subscribe to every available sensor; skip the unavailable ones."""
        for sensor in sensors:
            try:
                if not sensor.is_available():
                    raise SensorUnavailableError(sensor.kind.value)
                sensor.set_update_interval(self._tier.interval_for(sensor.kind))
                self._subscriptions.append(sensor.add_listener(self.handle_sample))
                self._sensors.append(sensor)
            except SensorUnavailableError as exc:
                logger.warning("sensor_pipeline.sensor_unavailable", sensor=exc.sensor)
        logger.info(
            "sensor_pipeline.attached",
            sensors=[k.value for k in self.active_sensors],
            tier=self._tier.level.value,
        )

    def detach(self) -> None:
        """Remove every sensor subscription.  Never raises."""
        for subscription in self._subscriptions:
            try:
                subscription.remove()
            except Exception as exc:  # platform unregistration may fail at teardown
                logger.warning("sensor_pipeline.unsubscribe_failed", error=str(exc))
        self._subscriptions.clear()
        self._sensors.clear()

    # ── Motion samples ────────────────────────────────────────

    async def handle_sample(self, sample: SensorSample) -> ActivityObservation | None:
        """Filter one sample; log a movement observation if it passes."""
        if not self._channels[sample.sensor].is_movement(sample):
            return None
        return await self._emit(_SENSOR_SOURCE[sample.sensor], sample.timestamp)

    # ── App lifecycle ─────────────────────────────────────────

    async def handle_app_state(
        self, state: AppState, now: datetime | None = None
    ) -> list[ActivityObservation]:
        """Process a foreground-state change."""
        now = now or self._clock()
        previous, self._app_state = self._app_state, state
        emitted: list[ActivityObservation] = []

        if state is AppState.ACTIVE and previous is not AppState.ACTIVE:
            self._foreground_since = now
            self._escalated = set()
            emitted.append(await self._emit(ActivitySource.APP_ACTIVE_CHECK, now))
            self._arm_dwell_timers()
        elif state is not AppState.ACTIVE and previous is AppState.ACTIVE:
            self._foreground_since = None
            self._cancel_dwell_timers()
            emitted.append(
                await self._emit(ActivitySource.BACKGROUND_CHECK, now, app_state=state)
            )
            logger.info("sensor_pipeline.backgrounded", state=state.value)
        return emitted

    async def check_foreground_dwell(self, now: datetime | None = None) -> list[ActivityObservation]:
        """Escalate the current foreground session by how long it has lasted."""
        now = now or self._clock()
        if not self.is_foreground or self._foreground_since is None:
            return []
        dwell = now - self._foreground_since
        emitted: list[ActivityObservation] = []
        for source, required in (
            (ActivitySource.APP_ACTIVE, LIKELY_USAGE_DWELL),
            (ActivitySource.APP_CONFIRMED, CONFIRMED_USAGE_DWELL),
        ):
            if dwell >= required and source not in self._escalated:
                self._escalated.add(source)
                emitted.append(await self._emit(source, now))
        return emitted

    def _arm_dwell_timers(self) -> None:
        if self._scheduler is None:
            return
        for name, delay in (
            ("dwell-likely", LIKELY_USAGE_DWELL),
            ("dwell-confirmed", CONFIRMED_USAGE_DWELL),
        ):
            self._scheduler.call_later(name, delay.total_seconds(), self.check_foreground_dwell)

    def _cancel_dwell_timers(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.cancel("dwell-likely")
        self._scheduler.cancel("dwell-confirmed")

    # ── Explicit signals ──────────────────────────────────────

    async def record_user_activity(self, now: datetime | None = None) -> ActivityObservation:
        """Log a manual interaction; resets the inactivity clock."""
        return await self._emit(ActivitySource.USER_INTERACTION, now or self._clock())

    async def record_background_check(self, now: datetime | None = None) -> ActivityObservation:
        """Log a background heartbeat (no movement)."""
        return await self._emit(ActivitySource.BACKGROUND_CHECK, now or self._clock())

    # ── Internals ─────────────────────────────────────────────

    async def _emit(
        self,
        source: ActivitySource,
        timestamp: datetime,
        *,
        app_state: AppState | None = None,
    ) -> ActivityObservation:
        observation = ActivityObservation.from_source(
            source, timestamp, app_state or self._app_state
        )
        await self._log.append(observation)
        if observation.has_movement:
            await self._log.mark_genuine_activity(timestamp)
            logger.debug("sensor_pipeline.genuine_activity", source=source.value)
        else:
            logger.debug("sensor_pipeline.activity_check", source=source.value)
        return observation

"""Sleep detection service — wires the detector components together.

Architecture
~~~~~~~~~~~~
``SleepDetectionService`` owns one instance of every component and is the
only place they are connected::

    motion sensors ──► SensorFilterPipeline ──► ActivityEventLog
    app lifecycle  ──┘                               │
                                                     ▼
                     StatusTransitionController ◄── InactivityEstimator
                                 │
                                 ▼
             records ─► daily summaries ─► sleep patterns

Cadences depend on the foreground state:

* **foreground** — ``status-check`` every ``status_check_interval_seconds``.
* **background** — ``background-check`` every
  ``background_check_interval_seconds``: a heartbeat followed by a status
  check.

Integration::

    service = SleepDetectionService(SqlKeyValueStore())
    await service.start(sensors, lifecycle)
    ...
    await service.stop()
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

import structlog

from sleep_detector.config import Settings, get_settings
from sleep_detector.detection.controller import StatusTransitionController
from sleep_detector.detection.event_log import ActivityEventLog
from sleep_detector.detection.inactivity import InactivityEstimator
from sleep_detector.detection.sensor_pipeline import SensorFilterPipeline
from sleep_detector.health.bridge import HealthStoreBridge, HealthSyncService
from sleep_detector.models import AppSettings, AppState, SleepStatus
from sleep_detector.notifications.handlers import NotificationDispatcher, create_dispatcher
from sleep_detector.scheduler.service import MonitoringScheduler
from sleep_detector.sources.base import AppLifecycleNotifier, MotionSensor, Subscription
from sleep_detector.storage.keyvalue import KeyValueStore
from sleep_detector.storage.repository import StateRepository
from sleep_detector.storage.schema import StorageKeys

logger = structlog.get_logger(__name__)

STATUS_CHECK = "status-check"
BACKGROUND_CHECK = "background-check"


class SleepDetectionService:
    """Composition root of the sleep detector."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        settings: Settings | None = None,
        dispatcher: NotificationDispatcher | None = None,
        health_bridge: HealthStoreBridge | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock

        self.keys = StorageKeys(self._settings.storage_namespace)
        self.repo = StateRepository(
            store, self.keys, timeout=self._settings.persistence_timeout_seconds,
        )
        self.scheduler = MonitoringScheduler()
        self.event_log = ActivityEventLog(
            self.repo, capacity=self._settings.event_log_capacity, clock=clock,
        )
        self.pipeline = SensorFilterPipeline(
            self.event_log,
            sensitivity=self._settings.default_sensitivity_level,
            scheduler=self.scheduler,
            clock=clock,
        )
        self.estimator = InactivityEstimator(
            self.event_log,
            lambda: self.pipeline.app_state,
            lookback_hours=self._settings.genuine_activity_lookback_hours,
            buffer_minutes=self._settings.inactivity_buffer_minutes,
            clock=clock,
        )
        self.dispatcher = dispatcher or create_dispatcher(self._settings)
        self.health = HealthSyncService(self.repo, health_bridge)
        self.controller = StatusTransitionController(
            self.repo,
            self.estimator,
            self.pipeline,
            dispatcher=self.dispatcher,
            health=self.health,
            default_settings=self._settings.default_app_settings(),
            clock=clock,
        )

        self._lifecycle_subscription: Subscription | None = None
        self._started = False

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(
        self,
        sensors: Iterable[MotionSensor] = (),
        lifecycle: AppLifecycleNotifier | None = None,
    ) -> None:
        """Load persisted state, subscribe to the sources and start the cadences.

        May be called again after :meth:`stop` to resume monitoring.
        """
        if self._started:
            return
        await self.event_log.load()
        await self.controller.load()
        await self.health.load()

        self.scheduler.resume()
        self.pipeline.attach(list(sensors))
        if lifecycle is not None:
            self._lifecycle_subscription = lifecycle.add_listener(self.handle_app_state)
        self._schedule_for(self.pipeline.app_state)
        self._started = True
        logger.info(
            "service.started",
            status=self.controller.current_status.value,
            sensors=[k.value for k in self.pipeline.active_sensors],
        )

    async def stop(self) -> None:
        """Cancel every timer and release every subscription."""
        await self.scheduler.stop()
        self._unsubscribe()
        self._started = False
        logger.info("service.stopped")

    def emergency_shutdown(self) -> None:
        """Synchronous teardown for process exit.  Never raises."""
        try:
            self.scheduler.emergency_shutdown()
            self._unsubscribe()
        except Exception:
            logger.exception("service.emergency_shutdown_failed")
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    def _unsubscribe(self) -> None:
        self.pipeline.detach()
        if self._lifecycle_subscription is not None:
            try:
                self._lifecycle_subscription.remove()
            except Exception as exc:
                logger.warning("service.unsubscribe_failed", error=str(exc))
            self._lifecycle_subscription = None

    # ── Lifecycle events ──────────────────────────────────────

    async def handle_app_state(self, state: AppState) -> None:
        """Route a foreground-state change to the pipeline and the controller."""
        now = self._clock()
        was_foreground = self.pipeline.is_foreground
        await self.pipeline.handle_app_state(state, now)

        if state is AppState.ACTIVE and not was_foreground:
            await self.controller.on_foreground(now)
        elif state is not AppState.ACTIVE and was_foreground:
            await self.controller.on_background(now)
        self._schedule_for(state)

    def _schedule_for(self, state: AppState) -> None:
        if not self.scheduler.is_running:
            return
        if state is AppState.ACTIVE:
            self.scheduler.cancel(BACKGROUND_CHECK)
            if not self.scheduler.is_scheduled(STATUS_CHECK):
                self.scheduler.every(
                    STATUS_CHECK,
                    self._settings.status_check_interval_seconds,
                    self.controller.check_status,
                )
        else:
            self.scheduler.cancel(STATUS_CHECK)
            if not self.scheduler.is_scheduled(BACKGROUND_CHECK):
                self.scheduler.every(
                    BACKGROUND_CHECK,
                    self._settings.background_check_interval_seconds,
                    self.background_check,
                )

    async def background_check(self) -> None:
        """Heartbeat plus status evaluation while the app is in the background."""
        now = self._clock()
        await self.pipeline.record_background_check(now)
        await self.controller.check_status(now)

    # ── User actions ──────────────────────────────────────────

    async def record_user_activity(self) -> None:
        await self.pipeline.record_user_activity(self._clock())

    async def set_status(self, status: SleepStatus) -> None:
        await self.controller.manually_set_status(status, self._clock())

    async def update_settings(self, **changes: Any) -> AppSettings:
        return await self.controller.update_settings(**changes)

    async def reset(self) -> None:
        """Erase all stored data and start from a fresh ledger."""
        await self.event_log.clear()
        await self.controller.reset()
        self.health.forget()
        logger.warning("service.data_reset")

    # ── Health store ──────────────────────────────────────────

    async def set_health_sync(self, enabled: bool) -> None:
        """Toggle mirroring of newly detected sleep periods."""
        await self.health.set_enabled(enabled)

    async def import_health(self, days: int = 7) -> int:
        """Pull the last *days* of sleep data from the health store."""
        end = self._clock()
        return await self.health.import_from_store(end - timedelta(days=days), end)

    async def export_health(self) -> int:
        """Push every stored app-detected period to the health store."""
        return await self.health.export_to_store()

    def health_status(self) -> dict[str, Any]:
        return {
            "enabled": self.health.enabled,
            "bridge": self.health.bridge_name,
            "entries": len(self.health.entries),
        }

    # ── Introspection ─────────────────────────────────────────

    def status_snapshot(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "status": self.controller.current_status.value,
            "confidence": self.controller.current_confidence,
            "app_state": self.pipeline.app_state.value,
            "inactive_minutes": round(self.estimator.get_inactivity_duration(now=now), 2),
            "last_genuine_activity": self.event_log.last_genuine_activity.isoformat(),
            "today_sleep_minutes": round(self.controller.get_today_sleep_duration(now), 2),
            "scheduler": self.scheduler.stats,
            "notification_channels": self.dispatcher.handler_names,
        }

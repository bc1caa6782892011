"""Push-driven sources — events are handed in by the caller.

Used by the HTTP API (the phone posts samples and lifecycle changes) and by
tests, where the samples come from fixtures.
"""

from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar

import structlog

from sleep_detector.exceptions import SensorUnavailableError
from sleep_detector.models import AppState, SensorKind, SensorSample
from sleep_detector.sources.base import (
    AppLifecycleNotifier,
    AppStateListener,
    MotionSensor,
    SampleListener,
    Subscription,
)

logger = structlog.get_logger(__name__)

L = TypeVar("L")


class _ListenerSubscription(Subscription, Generic[L]):
    def __init__(self, listeners: list[L], listener: L) -> None:
        self._listeners = listeners
        self._listener = listener

    def remove(self) -> None:
        if self._listener in self._listeners:
            self._listeners.remove(self._listener)


class PushMotionSensor(MotionSensor):
    """Motion sensor fed through :meth:`push`."""

    def __init__(self, kind: SensorKind, *, available: bool = True) -> None:
        self.kind = kind
        self._available = available
        self._listeners: list[SampleListener] = []
        self.update_interval_ms: int | None = None

    def is_available(self) -> bool:
        return self._available

    def set_update_interval(self, interval_ms: int) -> None:
        self.update_interval_ms = interval_ms

    def add_listener(self, listener: SampleListener) -> Subscription:
        if not self._available:
            raise SensorUnavailableError(self.kind.value)
        self._listeners.append(listener)
        return _ListenerSubscription(self._listeners, listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def push(self, x: float, y: float, z: float, timestamp: datetime | None = None) -> None:
        """Deliver one sample to every listener."""
        sample = SensorSample(sensor=self.kind, x=x, y=y, z=z, timestamp=timestamp or datetime.now())
        await self.push_sample(sample)

    async def push_sample(self, sample: SensorSample) -> None:
        for listener in list(self._listeners):
            await listener(sample)


class PushLifecycleNotifier(AppLifecycleNotifier):
    """Lifecycle notifier fed through :meth:`push`."""

    def __init__(self) -> None:
        self._listeners: list[AppStateListener] = []

    def add_listener(self, listener: AppStateListener) -> Subscription:
        self._listeners.append(listener)
        return _ListenerSubscription(self._listeners, listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def push(self, state: AppState) -> None:
        logger.debug("lifecycle.state_pushed", state=state.value)
        for listener in list(self._listeners):
            await listener(state)

"""Abstract signal sources the detector subscribes to.

Two kinds of source exist on a phone:

* **MotionSensor** — accelerometer / gyroscope sample streams.
* **AppLifecycleNotifier** — foreground / background transitions.

Both hand out :class:`Subscription` handles; removing a handle stops
delivery.  Platform adapters implement these contracts outside the core.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from sleep_detector.models import AppState, SensorKind, SensorSample

SampleListener = Callable[[SensorSample], Awaitable[None]]
AppStateListener = Callable[[AppState], Awaitable[None]]


class Subscription(ABC):
    """Handle returned by ``add_listener``."""

    @abstractmethod
    def remove(self) -> None:
        """Stop delivering events to the listener.  Safe to call twice."""


class MotionSensor(ABC):
    """Contract for a 3-axis motion sensor stream."""

    kind: SensorKind

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``False`` when the device lacks this sensor."""

    @abstractmethod
    def set_update_interval(self, interval_ms: int) -> None:
        """Request a sampling interval in milliseconds."""

    @abstractmethod
    def add_listener(self, listener: SampleListener) -> Subscription:
        """Register *listener* for every sample.

        Raises :class:`~sleep_detector.exceptions.SensorUnavailableError`
        if the sensor is not available.
        """


class AppLifecycleNotifier(ABC):
    """Contract for app foreground-state change notifications."""

    @abstractmethod
    def add_listener(self, listener: AppStateListener) -> Subscription:
        """Register *listener* for every state change."""

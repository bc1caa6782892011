"""Exception types raised at the edges of the detector."""

from __future__ import annotations


class SleepDetectorError(Exception):
    """Base class for detector errors."""


class PersistenceError(SleepDetectorError):
    """A key-value store read or write failed."""

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None) -> None:
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f"{operation} failed"
        if key:
            detail += f" for key {key!r}"
        if cause is not None:
            detail += f": {cause}"
        super().__init__(detail)


class SensorUnavailableError(SleepDetectorError):
    """The platform does not provide the requested motion sensor."""

    def __init__(self, sensor: str) -> None:
        self.sensor = sensor
        super().__init__(f"Sensor {sensor!r} is not available on this device")

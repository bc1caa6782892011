"""Sensor noise filtering — sensitivity tiers and per-sensor sliding windows.

Each motion sensor gets a :class:`MotionChannel` that keeps the last few
magnitude readings and decides whether the latest sample is real movement.
A sample counts as movement when any of these hold:

1. the window is full and its mean exceeds the tier threshold;
2. the jump from the previous reading exceeds 1.5 × threshold
   (sudden-motion shortcut);
3. the recency-weighted mean exceeds threshold × noise-reduction factor.

Accepted movements are then debounced per sensor.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta

from sleep_detector.models import SensitivityLevel, SensorKind, SensorSample

# Resting accelerometer norm (1 g); movement is the deviation from it.
GRAVITY_G = 1.0

SUDDEN_MOTION_FACTOR = 1.5


@dataclass(frozen=True, slots=True)
class SensitivityTier:
    """Thresholds and timing for one sensitivity level.

    Higher sensitivity means lower thresholds and shorter debounce windows:
    more responsive, more false positives.
    """

    level: SensitivityLevel
    movement_threshold: float  # g, deviation from rest
    rotation_threshold: float  # rad/s
    accelerometer_interval_ms: int
    gyroscope_interval_ms: int
    noise_reduction_factor: float
    window_size: int
    accelerometer_debounce_s: float
    gyroscope_debounce_s: float

    def threshold_for(self, kind: SensorKind) -> float:
        if kind is SensorKind.ACCELEROMETER:
            return self.movement_threshold
        return self.rotation_threshold

    def interval_for(self, kind: SensorKind) -> int:
        if kind is SensorKind.ACCELEROMETER:
            return self.accelerometer_interval_ms
        return self.gyroscope_interval_ms

    def debounce_for(self, kind: SensorKind) -> timedelta:
        if kind is SensorKind.ACCELEROMETER:
            return timedelta(seconds=self.accelerometer_debounce_s)
        return timedelta(seconds=self.gyroscope_debounce_s)


TIERS: dict[SensitivityLevel, SensitivityTier] = {
    SensitivityLevel.LOW: SensitivityTier(
        level=SensitivityLevel.LOW,
        movement_threshold=0.15,
        rotation_threshold=0.08,
        accelerometer_interval_ms=500,
        gyroscope_interval_ms=500,
        noise_reduction_factor=1.3,
        window_size=5,
        accelerometer_debounce_s=2.5,
        gyroscope_debounce_s=2.0,
    ),
    SensitivityLevel.MEDIUM: SensitivityTier(
        level=SensitivityLevel.MEDIUM,
        movement_threshold=0.10,
        rotation_threshold=0.05,
        accelerometer_interval_ms=400,
        gyroscope_interval_ms=400,
        noise_reduction_factor=1.2,
        window_size=5,
        accelerometer_debounce_s=2.0,
        gyroscope_debounce_s=1.5,
    ),
    SensitivityLevel.HIGH: SensitivityTier(
        level=SensitivityLevel.HIGH,
        movement_threshold=0.06,
        rotation_threshold=0.03,
        accelerometer_interval_ms=300,
        gyroscope_interval_ms=300,
        noise_reduction_factor=1.1,
        window_size=4,
        accelerometer_debounce_s=1.5,
        gyroscope_debounce_s=1.2,
    ),
}


def get_tier(level: SensitivityLevel | str) -> SensitivityTier:
    return TIERS[SensitivityLevel(level)]


def sample_magnitude(sample: SensorSample) -> float:
    """Movement magnitude of one sample.

    Accelerometer readings include gravity, so the deviation of the vector
    norm from 1 g is used; gyroscope readings are already zero at rest.
    """
    norm = math.sqrt(sample.x * sample.x + sample.y * sample.y + sample.z * sample.z)
    if sample.sensor is SensorKind.ACCELEROMETER:
        return abs(norm - GRAVITY_G)
    return norm


def weighted_average(values: list[float]) -> float:
    """Linearly recency-weighted mean (newest reading weighs the most)."""
    if not values:
        return 0.0
    weights = range(1, len(values) + 1)
    return sum(w * v for w, v in zip(weights, values)) / sum(weights)


class MotionChannel:
    """Sliding-window movement detector for a single sensor."""

    def __init__(self, kind: SensorKind, tier: SensitivityTier) -> None:
        self.kind = kind
        self._tier = tier
        self._window: deque[float] = deque(maxlen=tier.window_size)
        self._previous: float | None = None
        self._last_event_at: datetime | None = None

    @property
    def tier(self) -> SensitivityTier:
        return self._tier

    def retune(self, tier: SensitivityTier) -> None:
        """Switch to another tier, dropping the window."""
        self._tier = tier
        self._window = deque(maxlen=tier.window_size)
        self._previous = None

    @property
    def average(self) -> float:
        return sum(self._window) / len(self._window) if self._window else 0.0

    @property
    def weighted(self) -> float:
        return weighted_average(list(self._window))

    def is_movement(self, sample: SensorSample) -> bool:
        """Feed one sample; return ``True`` when it yields a movement event."""
        magnitude = sample_magnitude(sample)
        threshold = self._tier.threshold_for(self.kind)

        delta = abs(magnitude - self._previous) if self._previous is not None else 0.0
        self._previous = magnitude
        self._window.append(magnitude)

        window_full = len(self._window) == self._window.maxlen
        triggered = (
            (window_full and self.average > threshold)
            or delta > threshold * SUDDEN_MOTION_FACTOR
            or self.weighted > threshold * self._tier.noise_reduction_factor
        )
        if not triggered:
            return False

        if (
            self._last_event_at is not None
            and sample.timestamp - self._last_event_at < self._tier.debounce_for(self.kind)
        ):
            return False

        self._last_event_at = sample.timestamp
        return True

"""Shared Pydantic models used across the sleep detector."""

from __future__ import annotations

import random
import string
import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

# ── Enums ─────────────────────────────────────────────────────


class SleepStatus(str, Enum):
    AWAKE = "awake"
    ASLEEP = "asleep"


class AppState(str, Enum):
    """Foreground state reported by the app-lifecycle notifier."""
    ACTIVE = "active"
    BACKGROUND = "background"
    INACTIVE = "inactive"


class ActivitySource(str, Enum):
    """Origin of an activity observation.

    The source determines the confidence attached to the observation, see
    :data:`SOURCE_CONFIDENCE`.
    """

    USER_INTERACTION = "user_interaction"
    APP_CONFIRMED = "app_confirmed"
    ACCELEROMETER = "accelerometer"
    GYROSCOPE = "gyroscope"
    APP_ACTIVE = "app_active"
    BACKGROUND_CHECK = "background_check"
    SENSOR = "sensor"
    APP_ACTIVE_CHECK = "app_active_check"


class SensorKind(str, Enum):
    ACCELEROMETER = "accelerometer"
    GYROSCOPE = "gyroscope"


class SensitivityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


SOURCE_CONFIDENCE: dict[ActivitySource, int] = {
    ActivitySource.USER_INTERACTION: 100,  # manual action in the app
    ActivitySource.APP_CONFIRMED: 95,  # foreground for 30 s
    ActivitySource.ACCELEROMETER: 90,
    ActivitySource.GYROSCOPE: 85,
    ActivitySource.APP_ACTIVE: 80,  # foreground for 10 s
    ActivitySource.BACKGROUND_CHECK: 70,
    ActivitySource.SENSOR: 70,
    ActivitySource.APP_ACTIVE_CHECK: 40,  # just opened the app
}


def _record_id(timestamp: datetime) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{int(timestamp.timestamp() * 1000)}-{suffix}"


# ── Raw signals ───────────────────────────────────────────────


class SensorSample(BaseModel):
    """One 3-axis reading from a motion sensor."""
    sensor: SensorKind
    x: float
    y: float
    z: float
    timestamp: datetime = Field(default_factory=datetime.now)


class ActivityObservation(BaseModel):
    """A single activity signal produced by the sensor pipeline.

    The persisted projection (an *activity log entry*) has the same shape;
    only the most recent entries are kept, see
    :class:`~sleep_detector.detection.event_log.ActivityEventLog`.
    """

    timestamp: datetime
    has_movement: bool
    app_state: AppState
    confidence: int = Field(ge=0, le=100)
    source: ActivitySource = ActivitySource.SENSOR

    @classmethod
    def from_source(
        cls,
        source: ActivitySource,
        timestamp: datetime,
        app_state: AppState,
        *,
        has_movement: bool | None = None,
    ) -> ActivityObservation:
        if has_movement is None:
            has_movement = source not in (
                ActivitySource.APP_ACTIVE_CHECK,
                ActivitySource.BACKGROUND_CHECK,
            )
        return cls(
            timestamp=timestamp,
            has_movement=has_movement,
            app_state=app_state,
            confidence=SOURCE_CONFIDENCE[source],
            source=source,
        )


ActivityLogEntry = ActivityObservation


# ── Ledger & derived data ─────────────────────────────────────


class ActivityRecord(BaseModel):
    """Durable ledger entry describing a detected (or manual) status."""
    id: str = ""
    timestamp: datetime
    status: SleepStatus
    confidence: int = Field(ge=0, le=100)

    def model_post_init(self, __context: object) -> None:
        if not self.id:
            self.id = _record_id(self.timestamp)


class SleepPeriod(BaseModel):
    start: datetime
    end: datetime
    confidence: float = Field(ge=0, le=100)

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60


class DailySleepSummary(BaseModel):
    """Sleep periods and confidence-weighted total for one local calendar day."""
    date: str  # YYYY-MM-DD
    total_sleep_minutes: float = Field(0.0, ge=0)
    sleep_periods: list[SleepPeriod] = Field(default_factory=list)


class SleepPatternModel(BaseModel):
    """Learned typical sleep window, fed back into the confidence model."""
    typical_sleep_start_hour: int = Field(22, ge=0, le=23)
    typical_sleep_end_hour: int = Field(8, ge=0, le=23)
    average_sleep_duration_minutes: float = 480.0


class AppSettings(BaseModel):
    """User-facing detection settings.

    Mutated outside the core; every evaluation cycle reads a snapshot.
    """

    inactivity_threshold: float = Field(45.0, gt=0)  # minutes
    sensitivity_level: SensitivityLevel = SensitivityLevel.MEDIUM
    use_learned_patterns: bool = True
    consider_time_of_day: bool = True
    adaptive_threshold: bool = False
    nap_detection: bool = True


class SleepEntry(BaseModel):
    """Sleep interval exchanged with an external health store."""
    id: str
    start_time: datetime
    end_time: datetime
    is_awake: bool = False
    confidence: float = Field(100.0, ge=0, le=100)
    source: str = "app"


# ── Notifications ─────────────────────────────────────────────


class NotificationKind(str, Enum):
    SLEEP_DETECTED = "sleep_detected"
    WAKE_DETECTED = "wake_detected"


class SleepNotification(BaseModel):
    """A sleep or wake event handed to the notification dispatcher."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: NotificationKind
    title: str
    message: str
    inactive_minutes: float | None = None
    sleep_minutes: float | None = None
    quality: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)

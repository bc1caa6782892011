"""Request / response models for the HTTP API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from sleep_detector.models import AppState, SensitivityLevel, SensorKind, SleepStatus


class SampleRequest(BaseModel):
    sensor: SensorKind
    x: float
    y: float
    z: float
    timestamp: datetime | None = None


class SampleBatchRequest(BaseModel):
    samples: list[SampleRequest] = Field(default_factory=list)


class LifecycleRequest(BaseModel):
    state: AppState


class StatusOverrideRequest(BaseModel):
    status: SleepStatus


class SettingsPatch(BaseModel):
    """Partial update of the detection settings; omitted fields are kept."""
    inactivity_threshold: float | None = Field(None, gt=0)
    sensitivity_level: SensitivityLevel | None = None
    use_learned_patterns: bool | None = None
    consider_time_of_day: bool | None = None
    adaptive_threshold: bool | None = None
    nap_detection: bool | None = None


class StatusResponse(BaseModel):
    status: SleepStatus
    confidence: int
    app_state: AppState
    inactive_minutes: float
    last_genuine_activity: datetime
    today_sleep_minutes: float


class HealthSyncToggle(BaseModel):
    enabled: bool


class HealthImportRequest(BaseModel):
    days: int = Field(7, ge=1, le=365)

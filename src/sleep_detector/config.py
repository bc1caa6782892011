"""Centralised application settings loaded from environment / .env file."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from sleep_detector.models import AppSettings, SensitivityLevel

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _resolve_db_dir() -> Path:
    """Return (and create) the directory that holds the SQLite file."""
    d = Path(os.getenv("SLEEP_DETECTOR_DATA_DIR", _PROJECT_ROOT / "data"))
    d.mkdir(parents=True, exist_ok=True)
    return d


_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{_resolve_db_dir() / 'sleep_detector.db'}"


class Settings(BaseSettings):
    """All runtime configuration for the sleep detector service.

    Values are read from environment variables first, then from a *.env* file
    located at the project root.  Every variable lives in the flat
    ``SLEEP_DETECTOR_`` namespace (stripped automatically by
    *pydantic-settings*).
    """

    model_config = SettingsConfigDict(
        env_prefix="SLEEP_DETECTOR_",
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ───────────────────────────────────────────────
    database_url: str = _DEFAULT_DB_URL
    storage_namespace: str = "sleep-tracker"
    persistence_timeout_seconds: float = 5.0

    # ── Detection ─────────────────────────────────────────────
    default_inactivity_threshold: float = 45.0  # minutes
    default_sensitivity_level: SensitivityLevel = SensitivityLevel.MEDIUM
    inactivity_buffer_minutes: float = 2.0
    genuine_activity_lookback_hours: float = 2.0
    event_log_capacity: int = 1000

    # ── Scheduler ─────────────────────────────────────────────
    status_check_interval_seconds: float = 120.0  # foreground cadence
    background_check_interval_seconds: float = 600.0  # slower, battery friendly

    # ── Notifications ─────────────────────────────────────────
    webhook_url: str = ""
    webhook_timeout_seconds: float = 10.0
    notify_sleep_detected: bool = True
    notify_wake_detected: bool = True

    # ── API server ────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = int(os.getenv("PORT", "8000"))

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    def default_app_settings(self) -> AppSettings:
        """Detection settings used until the user saves their own."""
        return AppSettings(
            inactivity_threshold=self.default_inactivity_threshold,
            sensitivity_level=self.default_sensitivity_level,
        )


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()

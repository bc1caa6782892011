"""Persistence namespace shared by every component that touches the store."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StorageKeys:
    """All keys the detector reads or writes, derived from one namespace.

    A single instance is built by the composition root and injected into
    the event log, controller and health sync, so no two components can
    pick colliding keys.
    """

    namespace: str = "sleep-tracker"

    def _key(self, name: str) -> str:
        return f"{self.namespace}:{name}"

    @property
    def last_activity(self) -> str:
        return self._key("last-device-activity")

    @property
    def activity_log(self) -> str:
        return self._key("device-activity-log")

    @property
    def activity_records(self) -> str:
        return self._key("activity-records")

    @property
    def daily_summaries(self) -> str:
        return self._key("daily-summaries")

    @property
    def settings(self) -> str:
        return self._key("settings")

    @property
    def sleep_patterns(self) -> str:
        return self._key("patterns")

    @property
    def health_sync_enabled(self) -> str:
        return self._key("health-sync-enabled")

    @property
    def health_entries(self) -> str:
        return self._key("health-entries")

    def all(self) -> list[str]:
        return [
            self.last_activity,
            self.activity_log,
            self.activity_records,
            self.daily_summaries,
            self.settings,
            self.sleep_patterns,
            self.health_sync_enabled,
            self.health_entries,
        ]

"""Data-access layer — typed JSON documents over the key-value store.

Every read and write is bounded by a timeout.  Store failures, timeouts and
malformed documents are logged and turned into "no value" so that callers
keep running on their last in-memory state.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from sleep_detector.exceptions import PersistenceError
from sleep_detector.models import (
    ActivityLogEntry,
    ActivityRecord,
    AppSettings,
    DailySleepSummary,
    SleepEntry,
    SleepPatternModel,
)
from sleep_detector.storage.keyvalue import KeyValueStore
from sleep_detector.storage.schema import StorageKeys

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

_RECORDS = TypeAdapter(list[ActivityRecord])
_SUMMARIES = TypeAdapter(list[DailySleepSummary])
_LOG_ENTRIES = TypeAdapter(list[ActivityLogEntry])
_HEALTH_ENTRIES = TypeAdapter(list[SleepEntry])


class StateRepository:
    """Read / write every persisted detector document.

    Parameters
    ----------
    store : KeyValueStore
        Backend store.
    keys : StorageKeys
        Namespace the documents live in.
    timeout : float
        Seconds allowed per store call.
    """

    def __init__(self, store: KeyValueStore, keys: StorageKeys, timeout: float = 5.0) -> None:
        self._store = store
        self.keys = keys
        self._timeout = timeout

    # ── Raw access ────────────────────────────────────────────

    async def read(self, key: str) -> str | None:
        try:
            return await asyncio.wait_for(self._store.get(key), timeout=self._timeout)
        except (PersistenceError, asyncio.TimeoutError) as exc:
            logger.error("storage.read_failed", key=key, error=str(exc) or type(exc).__name__)
            return None

    async def write(self, key: str, value: str) -> bool:
        try:
            await asyncio.wait_for(self._store.set(key, value), timeout=self._timeout)
            return True
        except (PersistenceError, asyncio.TimeoutError) as exc:
            logger.error("storage.write_failed", key=key, error=str(exc) or type(exc).__name__)
            return False

    async def remove_all(self) -> bool:
        """Delete every document in the namespace (full data reset)."""
        try:
            await asyncio.wait_for(self._store.multi_remove(self.keys.all()), timeout=self._timeout)
            return True
        except (PersistenceError, asyncio.TimeoutError) as exc:
            logger.error("storage.reset_failed", error=str(exc) or type(exc).__name__)
            return False

    async def _load(self, key: str, adapter: TypeAdapter[Any]) -> Any | None:
        text = await self.read(key)
        if text is None:
            return None
        try:
            return adapter.validate_json(text)
        except (ValidationError, ValueError) as exc:
            logger.error("storage.parse_failed", key=key, error=str(exc))
            return None

    async def _save(self, key: str, adapter: TypeAdapter[Any], value: Any) -> bool:
        return await self.write(key, adapter.dump_json(value).decode("utf-8"))

    async def _load_model(self, key: str, model: type[M]) -> M | None:
        return await self._load(key, TypeAdapter(model))

    async def _save_model(self, key: str, value: BaseModel) -> bool:
        return await self.write(key, value.model_dump_json())

    # ── Activity records (ledger) ─────────────────────────────

    async def load_records(self) -> list[ActivityRecord] | None:
        return await self._load(self.keys.activity_records, _RECORDS)

    async def save_records(self, records: list[ActivityRecord]) -> bool:
        return await self._save(self.keys.activity_records, _RECORDS, records)

    # ── Derived caches ────────────────────────────────────────

    async def save_summaries(self, summaries: list[DailySleepSummary]) -> bool:
        return await self._save(self.keys.daily_summaries, _SUMMARIES, summaries)

    async def load_patterns(self) -> SleepPatternModel | None:
        return await self._load_model(self.keys.sleep_patterns, SleepPatternModel)

    async def save_patterns(self, patterns: SleepPatternModel) -> bool:
        return await self._save_model(self.keys.sleep_patterns, patterns)

    # ── Settings ──────────────────────────────────────────────

    async def load_settings(self, defaults: AppSettings) -> AppSettings | None:
        """Merge stored settings over *defaults* so new fields are filled in."""
        text = await self.read(self.keys.settings)
        if text is None:
            return None
        try:
            stored = json.loads(text)
            if not isinstance(stored, dict):
                raise ValueError("settings document is not an object")
            return AppSettings.model_validate({**defaults.model_dump(), **stored})
        except (ValidationError, ValueError) as exc:
            logger.error("storage.parse_failed", key=self.keys.settings, error=str(exc))
            return None

    async def save_settings(self, settings: AppSettings) -> bool:
        return await self._save_model(self.keys.settings, settings)

    # ── Activity log ──────────────────────────────────────────

    async def load_event_log(self) -> list[ActivityLogEntry] | None:
        return await self._load(self.keys.activity_log, _LOG_ENTRIES)

    async def save_event_log(self, entries: list[ActivityLogEntry]) -> bool:
        return await self._save(self.keys.activity_log, _LOG_ENTRIES, entries)

    async def load_last_activity(self) -> datetime | None:
        text = await self.read(self.keys.last_activity)
        if text is None:
            return None
        try:
            return datetime.fromisoformat(json.loads(text))
        except (TypeError, ValueError) as exc:
            logger.error("storage.parse_failed", key=self.keys.last_activity, error=str(exc))
            return None

    async def save_last_activity(self, timestamp: datetime) -> bool:
        return await self.write(self.keys.last_activity, json.dumps(timestamp.isoformat()))

    # ── Health-store sync ─────────────────────────────────────

    async def load_health_entries(self) -> list[SleepEntry] | None:
        return await self._load(self.keys.health_entries, _HEALTH_ENTRIES)

    async def save_health_entries(self, entries: list[SleepEntry]) -> bool:
        return await self._save(self.keys.health_entries, _HEALTH_ENTRIES, entries)

    async def load_health_sync_enabled(self) -> bool:
        return await self.read(self.keys.health_sync_enabled) == "true"

    async def save_health_sync_enabled(self, enabled: bool) -> bool:
        return await self.write(self.keys.health_sync_enabled, "true" if enabled else "false")

"""Health-store bridge — optional exchange of sleep intervals with a platform store.

The detector never depends on a health store being present.  A concrete
bridge (Apple Health, Google Fit, ...) implements :class:`HealthStoreBridge`;
the default :class:`NullHealthStore` reports itself unavailable so every
sync operation becomes a logged no-op.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable

import structlog

from sleep_detector.models import DailySleepSummary, SleepEntry
from sleep_detector.storage.repository import StateRepository

logger = structlog.get_logger(__name__)

# Entries whose source mentions one of these came from a health store.
_EXTERNAL_SOURCE_MARKERS = ("Health", "Fit")


class HealthStoreBridge(ABC):
    """Capability interface of a platform health store."""

    name: str = "health"

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the store exists and permissions are granted."""

    @abstractmethod
    async def initialize(self) -> bool:
        """Request permissions.  Return ``True`` when the store is usable."""

    @abstractmethod
    async def get_sleep_data(self, start: datetime, end: datetime) -> list[SleepEntry]:
        ...

    @abstractmethod
    async def save_sleep_data(self, entry: SleepEntry) -> None:
        ...


class NullHealthStore(HealthStoreBridge):
    """Bridge used when no platform store is configured."""

    name = "none"

    def is_available(self) -> bool:
        return False

    async def initialize(self) -> bool:
        return False

    async def get_sleep_data(self, start: datetime, end: datetime) -> list[SleepEntry]:
        return []

    async def save_sleep_data(self, entry: SleepEntry) -> None:
        return None


def is_external(entry: SleepEntry) -> bool:
    return any(marker in entry.source for marker in _EXTERNAL_SOURCE_MARKERS)


def entries_from_summaries(summaries: Iterable[DailySleepSummary]) -> list[SleepEntry]:
    """One ``SleepEntry`` per detected sleep period."""
    return [
        SleepEntry(
            id=f"{int(period.start.timestamp() * 1000)}-{int(period.end.timestamp() * 1000)}",
            start_time=period.start,
            end_time=period.end,
            confidence=period.confidence,
        )
        for summary in summaries
        for period in summary.sleep_periods
    ]


class HealthSyncService:
    """Persist sleep entries and mirror them to a health store when enabled.

    Bridge failures are logged and swallowed: health integration is a
    convenience and never interrupts detection.  Entry-list mutations are
    serialised so concurrent wake transitions cannot store a period twice.
    """

    def __init__(self, repo: StateRepository, bridge: HealthStoreBridge | None = None) -> None:
        self._repo = repo
        self._bridge = bridge or NullHealthStore()
        self._entries: list[SleepEntry] = []
        self._enabled = False
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        self._entries = await self._repo.load_health_entries() or []
        self._enabled = await self._repo.load_health_sync_enabled()
        if self._enabled:
            await self._initialize_bridge()
        logger.debug("health.loaded", entries=len(self._entries), enabled=self._enabled)

    # ── Settings ──────────────────────────────────────────────

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def bridge_name(self) -> str:
        return self._bridge.name

    async def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        await self._repo.save_health_sync_enabled(enabled)
        if enabled:
            await self._initialize_bridge()
        logger.info("health.sync_toggled", enabled=enabled, bridge=self._bridge.name)

    # ── Entries ───────────────────────────────────────────────

    @property
    def entries(self) -> list[SleepEntry]:
        return list(self._entries)

    async def add_entry(self, entry: SleepEntry) -> SleepEntry:
        async with self._lock:
            return await self._add_locked(entry)

    async def add_from_summaries(self, summaries: Iterable[DailySleepSummary]) -> int:
        """Add entries for detected periods that are not stored yet."""
        async with self._lock:
            known = {e.id for e in self._entries}
            added = 0
            for entry in entries_from_summaries(summaries):
                if entry.id not in known:
                    await self._add_locked(entry)
                    known.add(entry.id)
                    added += 1
        return added

    async def clear(self) -> None:
        async with self._lock:
            self._entries = []
            await self._repo.save_health_entries(self._entries)

    def forget(self) -> None:
        """Drop in-memory state after the store has been wiped."""
        self._entries = []
        self._enabled = False

    # ── Import / export ───────────────────────────────────────

    async def import_from_store(self, start: datetime, end: datetime) -> int:
        """Pull entries from the store, skipping ids already present."""
        if not self._bridge.is_available():
            logger.info("health.import_skipped", reason="unavailable")
            return 0
        try:
            fetched = await self._bridge.get_sleep_data(start, end)
        except Exception:
            logger.exception("health.import_failed", bridge=self._bridge.name)
            return 0

        async with self._lock:
            known = {e.id for e in self._entries}
            new = [e for e in fetched if e.id not in known]
            if new:
                self._entries.extend(new)
                await self._repo.save_health_entries(self._entries)
        logger.info("health.imported", fetched=len(fetched), added=len(new))
        return len(new)

    async def export_to_store(self) -> int:
        """Push every app-detected entry; entries imported from a store are skipped."""
        if not self._bridge.is_available():
            logger.info("health.export_skipped", reason="unavailable")
            return 0
        exported = 0
        for entry in self._entries:
            if is_external(entry):
                continue
            if await self._push(entry):
                exported += 1
        logger.info("health.exported", count=exported)
        return exported

    # ── Internals ─────────────────────────────────────────────

    async def _add_locked(self, entry: SleepEntry) -> SleepEntry:
        self._entries.append(entry)
        await self._repo.save_health_entries(list(self._entries))
        if self._can_sync():
            await self._push(entry)
        return entry

    def _can_sync(self) -> bool:
        return self._enabled and self._bridge.is_available()

    async def _initialize_bridge(self) -> None:
        try:
            ok = await self._bridge.initialize()
        except Exception:
            logger.exception("health.initialize_failed", bridge=self._bridge.name)
            return
        if not ok:
            logger.info("health.unavailable", bridge=self._bridge.name)

    async def _push(self, entry: SleepEntry) -> bool:
        try:
            await self._bridge.save_sleep_data(entry)
            return True
        except Exception:
            logger.exception("health.save_failed", bridge=self._bridge.name, entry_id=entry.id)
            return False

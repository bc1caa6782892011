"""Bounded, append-only log of raw activity observations."""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timedelta
from typing import Callable

import structlog

from sleep_detector.models import ActivityLogEntry, ActivityObservation
from sleep_detector.storage.repository import StateRepository

logger = structlog.get_logger(__name__)

DEFAULT_CAPACITY = 1000


class ActivityEventLog:
    """Rolling log of the most recent activity observations.

    The log keeps at most *capacity* entries; appending beyond that evicts
    the oldest entry first.  Alongside the entries it tracks the timestamp
    of the last *genuine* movement, which is what the inactivity clock is
    measured from.

    Appends are serialised by an :class:`asyncio.Lock` so a sensor event
    that fires during a status evaluation cannot lose an update.  When the
    store is unreachable the in-memory copy stays authoritative.
    """

    def __init__(
        self,
        repo: StateRepository,
        *,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repo = repo
        self._capacity = capacity
        self._clock = clock
        self._entries: deque[ActivityLogEntry] = deque(maxlen=capacity)
        self._last_movement: datetime = clock()
        self._lock = asyncio.Lock()

    # ── Lifecycle ─────────────────────────────────────────────

    async def load(self) -> None:
        """Restore entries and the last-movement timestamp from storage."""
        entries = await self._repo.load_event_log()
        if entries is not None:
            self._entries = deque(sorted(entries, key=lambda e: e.timestamp), maxlen=self._capacity)
        last = await self._repo.load_last_activity()
        if last is not None:
            self._last_movement = last
        logger.debug(
            "event_log.loaded",
            entries=len(self._entries),
            last_movement=self._last_movement.isoformat(),
        )

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._last_movement = self._clock()

    # ── Write ─────────────────────────────────────────────────

    async def append(self, observation: ActivityObservation) -> None:
        """Append one observation, evicting the oldest entry when full."""
        async with self._lock:
            self._entries.append(observation.model_copy())
            snapshot = list(self._entries)
        await self._repo.save_event_log(snapshot)

    async def mark_genuine_activity(self, timestamp: datetime) -> None:
        """Reset the inactivity clock to *timestamp* (never moves it back)."""
        async with self._lock:
            if timestamp < self._last_movement:
                return
            self._last_movement = timestamp
        await self._repo.save_last_activity(timestamp)

    # ── Read ──────────────────────────────────────────────────

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def last_genuine_activity(self) -> datetime:
        return self._last_movement

    def entries(self) -> list[ActivityLogEntry]:
        return list(self._entries)

    def recent(self, hours: float, now: datetime | None = None) -> list[ActivityLogEntry]:
        """Entries whose timestamp lies within the trailing *hours*."""
        now = now or self._clock()
        cutoff = now - timedelta(hours=hours)
        return [e for e in self._entries if cutoff <= e.timestamp <= now]

    def __len__(self) -> int:
        return len(self._entries)

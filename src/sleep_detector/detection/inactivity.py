"""Inactivity estimation — how long has the user *genuinely* been still?"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

import structlog

from sleep_detector.detection.event_log import ActivityEventLog
from sleep_detector.models import AppState

logger = structlog.get_logger(__name__)

GENUINE_CONFIDENCE = 70
HIGH_CONFIDENCE = 85
DEFAULT_LOOKBACK_HOURS = 2.0
DEFAULT_BUFFER_MINUTES = 2.0


def _minutes_between(earlier: datetime, later: datetime) -> float:
    return max(0.0, (later - earlier).total_seconds() / 60)


class InactivityEstimator:
    """Estimate inactivity while discounting the current app-check session.

    Opening the app to look at it is not evidence of being awake for the
    whole evening.  When the app is foregrounded and the current session is
    excluded, the estimate is measured from, in order of preference:

    1. the most recent genuine movement (``has_movement`` and confidence
       ≥ 70) in the lookback window;
    2. the most recent high-confidence (≥ 85) entry of any kind in the
       window;
    3. the raw elapsed time minus a fixed buffer.

    Otherwise the raw time since the last genuine movement is returned.
    The result is never negative.
    """

    def __init__(
        self,
        event_log: ActivityEventLog,
        app_state: Callable[[], AppState],
        *,
        lookback_hours: float = DEFAULT_LOOKBACK_HOURS,
        buffer_minutes: float = DEFAULT_BUFFER_MINUTES,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._log = event_log
        self._app_state = app_state
        self._lookback_hours = lookback_hours
        self._buffer_minutes = buffer_minutes
        self._clock = clock

    def raw_inactivity(self, now: datetime | None = None) -> float:
        """Minutes since the last genuine movement, floored at zero."""
        now = now or self._clock()
        return _minutes_between(self._log.last_genuine_activity, now)

    def get_inactivity_duration(
        self,
        exclude_current_session: bool = True,
        now: datetime | None = None,
    ) -> float:
        now = now or self._clock()
        raw = self.raw_inactivity(now)

        if not exclude_current_session or self._app_state() is not AppState.ACTIVE:
            return raw

        recent = self._log.recent(self._lookback_hours, now)

        genuine = [e for e in recent if e.has_movement and e.confidence >= GENUINE_CONFIDENCE]
        if genuine:
            latest = max(genuine, key=lambda e: e.timestamp)
            minutes = _minutes_between(latest.timestamp, now)
            logger.debug("inactivity.from_genuine", minutes=round(minutes, 1), raw=round(raw, 1))
            return minutes

        confident = [e for e in recent if e.confidence >= HIGH_CONFIDENCE]
        if confident:
            latest = max(confident, key=lambda e: e.timestamp)
            minutes = _minutes_between(latest.timestamp, now)
            logger.debug("inactivity.from_high_confidence", minutes=round(minutes, 1))
            return minutes

        buffered = max(0.0, raw - self._buffer_minutes)
        logger.debug("inactivity.buffered", minutes=round(buffered, 1), raw=round(raw, 1))
        return buffered

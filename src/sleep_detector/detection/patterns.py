"""Sleep-pattern learning from recent daily summaries."""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Sequence

import structlog

from sleep_detector.models import DailySleepSummary, SleepPatternModel

logger = structlog.get_logger(__name__)

MIN_SUMMARIES = 3
WINDOW_DAYS = 7
DEFAULT_SLEEP_START_HOUR = 22
DEFAULT_SLEEP_END_HOUR = 8


def most_frequent_hour(hours: Iterable[int], default: int) -> int:
    """Mode of *hours*; ties go to the hour seen first."""
    counts = Counter(hours)
    if not counts:
        return default
    # Counter preserves insertion order and max() keeps the first maximum.
    return max(counts, key=counts.__getitem__)


def learn_sleep_patterns(
    summaries: Sequence[DailySleepSummary],
    previous: SleepPatternModel,
) -> SleepPatternModel:
    """Recompute the typical sleep window from the last week of summaries.

    With fewer than three summaries the previous model is returned as is.
    The average duration only considers days that contain a sleep period;
    if none do, the previous average is kept.
    """
    if len(summaries) < MIN_SUMMARIES:
        logger.debug("patterns.insufficient_history", summaries=len(summaries))
        return previous

    window = sorted(summaries, key=lambda s: s.date, reverse=True)[:WINDOW_DAYS]

    with_sleep = [s for s in window if s.sleep_periods]
    if with_sleep:
        average = sum(s.total_sleep_minutes for s in with_sleep) / len(with_sleep)
    else:
        average = previous.average_sleep_duration_minutes

    periods = [p for s in window for p in s.sleep_periods]
    learned = SleepPatternModel(
        typical_sleep_start_hour=most_frequent_hour(
            (p.start.hour for p in periods), DEFAULT_SLEEP_START_HOUR
        ),
        typical_sleep_end_hour=most_frequent_hour(
            (p.end.hour for p in periods), DEFAULT_SLEEP_END_HOUR
        ),
        average_sleep_duration_minutes=average,
    )
    logger.info(
        "patterns.learned",
        start_hour=learned.typical_sleep_start_hour,
        end_hour=learned.typical_sleep_end_hour,
        average_minutes=round(average, 1),
        days=len(window),
    )
    return learned

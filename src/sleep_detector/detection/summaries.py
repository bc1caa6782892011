"""Daily summary derivation from the activity-record ledger."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Iterable

from sleep_detector.models import ActivityRecord, DailySleepSummary, SleepPeriod, SleepStatus


def day_key(timestamp: datetime) -> str:
    """Local calendar day bucket (``YYYY-MM-DD``) of a timestamp."""
    return timestamp.date().isoformat()


def derive_daily_summaries(records: Iterable[ActivityRecord]) -> list[DailySleepSummary]:
    """Rebuild every daily summary from scratch.

    Records are grouped by the local day of their timestamp and sorted
    within the day.  Each ASLEEP record immediately followed by an AWAKE
    record forms one sleep period whose confidence is the mean of the two;
    it contributes ``minutes * confidence / 100`` to the day's total.

    Periods never cross a day boundary: an ASLEEP record late on one day
    followed by the AWAKE record the next morning produces no period on
    either day.  Repeated same-status records simply do not pair.

    The result is sorted by date and depends only on the set of records,
    not on their order.
    """
    by_day: dict[str, list[ActivityRecord]] = defaultdict(list)
    for record in records:
        by_day[day_key(record.timestamp)].append(record)

    summaries: list[DailySleepSummary] = []
    for date in sorted(by_day):
        day_records = sorted(by_day[date], key=lambda r: (r.timestamp, r.id))
        periods: list[SleepPeriod] = []
        total = 0.0
        for current, following in zip(day_records, day_records[1:]):
            if current.status is SleepStatus.ASLEEP and following.status is SleepStatus.AWAKE:
                period = SleepPeriod(
                    start=current.timestamp,
                    end=following.timestamp,
                    confidence=(current.confidence + following.confidence) / 2,
                )
                periods.append(period)
                total += period.duration_minutes * (period.confidence / 100)
        summaries.append(
            DailySleepSummary(date=date, total_sleep_minutes=total, sleep_periods=periods)
        )
    return summaries


def summary_for(summaries: Iterable[DailySleepSummary], date: str) -> DailySleepSummary | None:
    for summary in summaries:
        if summary.date == date:
            return summary
    return None

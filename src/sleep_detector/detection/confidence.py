"""Confidence model — inactivity + time of day → (status, confidence).

Everything here is a pure function of its arguments so the model can be
unit-tested without a clock, a store or an event loop.

Scoring
-------
* **ASLEEP** (``inactive ≥ threshold``): starts at 70 and climbs linearly
  to 100 over the 30 minutes past the threshold.
* **AWAKE**: starts at 100 and decays linearly towards 60 as inactivity
  approaches the threshold.
* **Time of day** (optional): the learned sleep window boosts sleep at
  night (+15) and penalises it by day (−15, floor 30); awake gets the
  mirrored, smaller adjustment (−5 at night, +5 by day).
* **Nap window** (optional): +10 for sleep between 12:00 and 17:59.
* **Very long inactivity** (> 2 × threshold): +10 for sleep.
"""

from __future__ import annotations

from sleep_detector.models import AppSettings, SleepPatternModel, SleepStatus

# ── Constants ─────────────────────────────────────────────────

ASLEEP_BASE_CONFIDENCE = 70.0
ASLEEP_RAMP_MINUTES = 30.0
AWAKE_MIN_CONFIDENCE = 60.0

NIGHT_SLEEP_BOOST = 15.0
DAY_SLEEP_PENALTY = 15.0
DAY_SLEEP_FLOOR = 30.0
NIGHT_AWAKE_PENALTY = 5.0
DAY_AWAKE_BOOST = 5.0

NAP_BOOST = 10.0
NAP_HOURS = range(12, 18)

LONG_INACTIVITY_FACTOR = 2.0
LONG_INACTIVITY_BOOST = 10.0


def is_nighttime(hour: int, patterns: SleepPatternModel) -> bool:
    """Whether *hour* lies in the learned sleep window (wraps past midnight)."""
    start, end = patterns.typical_sleep_start_hour, patterns.typical_sleep_end_hour
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end


def effective_threshold(settings: AppSettings, hour: int) -> float:
    """Inactivity threshold for *hour*, adjusted when adaptive mode is on.

    Nights get a shorter threshold for faster detection, the early-afternoon
    nap slot a slightly shorter one, and mornings a longer one.
    """
    base = settings.inactivity_threshold
    if not settings.adaptive_threshold:
        return base
    if hour >= 22 or hour <= 6:
        return max(20.0, base - 15)
    if 13 <= hour <= 15:
        return max(25.0, base - 10)
    if 7 <= hour <= 11:
        return base + 10
    return base


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def calculate_sleep_confidence(
    inactive_minutes: float,
    current_hour: int,
    threshold: float,
    patterns: SleepPatternModel,
    settings: AppSettings,
) -> tuple[SleepStatus, int]:
    """Classify the user as awake or asleep and score the certainty.

    Parameters
    ----------
    inactive_minutes : float
        Genuine inactivity, from the inactivity estimator.
    current_hour : int
        Local hour of day (0-23).
    threshold : float
        Minutes of inactivity at which sleep is assumed (inclusive).
    patterns : SleepPatternModel
        Learned sleep window used for time-of-day weighting.
    settings : AppSettings
        ``consider_time_of_day`` and ``nap_detection`` flags are read.

    Returns
    -------
    tuple[SleepStatus, int]
        Status and an integer confidence in ``[0, 100]``.
    """
    inactive_minutes = max(0.0, inactive_minutes)
    threshold = max(threshold, 1e-9)

    if inactive_minutes >= threshold:
        status = SleepStatus.ASLEEP
        excess = inactive_minutes - threshold
        confidence = ASLEEP_BASE_CONFIDENCE + (100 - ASLEEP_BASE_CONFIDENCE) * min(
            1.0, excess / ASLEEP_RAMP_MINUTES
        )
        if settings.nap_detection and current_hour in NAP_HOURS:
            confidence = min(100.0, confidence + NAP_BOOST)
    else:
        status = SleepStatus.AWAKE
        proximity = inactive_minutes / threshold
        confidence = 100 - (100 - AWAKE_MIN_CONFIDENCE) * proximity

    if settings.consider_time_of_day:
        night = is_nighttime(current_hour, patterns)
        if status is SleepStatus.ASLEEP:
            if night:
                confidence = min(100.0, confidence + NIGHT_SLEEP_BOOST)
            else:
                confidence = max(DAY_SLEEP_FLOOR, confidence - DAY_SLEEP_PENALTY)
        elif night:
            confidence -= NIGHT_AWAKE_PENALTY
        else:
            confidence = min(100.0, confidence + DAY_AWAKE_BOOST)

    if status is SleepStatus.ASLEEP and inactive_minutes > threshold * LONG_INACTIVITY_FACTOR:
        confidence = min(100.0, confidence + LONG_INACTIVITY_BOOST)

    return status, round(_clamp(confidence))


# ── Sleep quality ─────────────────────────────────────────────

_QUALITY_BANDS = (
    (480, "Excellent"),
    (420, "Good"),
    (360, "Adequate"),
    (300, "Poor"),
)


def calculate_sleep_quality(sleep_minutes: float) -> str:
    """Map a sleep duration to the label used in wake notifications."""
    for minimum, label in _QUALITY_BANDS:
        if sleep_minutes >= minimum:
            return label
    return "Insufficient"

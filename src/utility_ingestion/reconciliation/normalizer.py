"""Reading Normalizer: plausibility validation and digit-error correction.

Photo-extracted meter values are checked against the recent usage rate of the
same unit and utility.  A value whose delta falls outside the expected band is
either corrected (when trimming a trailing digit or two lands it back inside
the band) or flagged for manual review.

The function is pure: the caller supplies the prior approved meter reads and
persists the outcome.
"""
from __future__ import annotations

from datetime import datetime
from typing import Sequence

import structlog

from ..models.internal import NormalizationResult
from ..models.schema import EntryType, MeterReading, ReviewStatus, UtilityType

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 86400.0
MIN_ELAPSED_DAYS = 1 / 24

# Generous physical ceilings (per day), not statistical limits.
MAX_DAILY_USAGE: dict[str, float] = {
    UtilityType.ELECTRICITY: 250.0,  # kWh/day
    UtilityType.GAS: 80.0,           # m3/day
    UtilityType.WATER: 20.0,         # m3/day
}
DEFAULT_MAX_DAILY_USAGE = 250.0

# Gas billing cycles are noisier, so look further back.
ROLLING_WINDOW_SIZE: dict[str, int] = {
    UtilityType.ELECTRICITY: 12,
    UtilityType.GAS: 18,
    UtilityType.WATER: 12,
}
DEFAULT_ROLLING_WINDOW = 12

TOLERANCE_FRACTION = 0.75
MIN_TOLERANCE = 2.0
CORRECTION_PENALTY = 0.01
CORRECTION_SCORE_RATIO = 0.25


def max_daily_usage(utility_type: UtilityType | str) -> float:
    return MAX_DAILY_USAGE.get(utility_type, DEFAULT_MAX_DAILY_USAGE)


def rolling_window_size(utility_type: UtilityType | str) -> int:
    return ROLLING_WINDOW_SIZE.get(utility_type, DEFAULT_ROLLING_WINDOW)


def round3(value: float) -> float:
    return round(value, 3)


def _elapsed_days(newer: datetime, older: datetime) -> float:
    return max((newer - older).total_seconds() / SECONDS_PER_DAY, MIN_ELAPSED_DAYS)


def select_history(
    utility_type: UtilityType | str,
    readings: Sequence[MeterReading],
    before: datetime | None = None,
) -> list[MeterReading]:
    """Approved meter reads prior to *before*, newest first, truncated to the rolling window."""
    history = [
        r for r in readings
        if r.entry_type == EntryType.METER_READ
        and r.review_status == ReviewStatus.APPROVED
        and r.utility_type == utility_type
        and (before is None or r.captured_at < before)
    ]
    history.sort(key=lambda r: r.captured_at, reverse=True)
    return history[: rolling_window_size(utility_type)]


def expected_daily_rate(history: Sequence[MeterReading]) -> float | None:
    """Recency-weighted mean daily rate over consecutive historical intervals.

    *history* is newest first.  The interval at position ``i`` from the newest
    gets weight ``max(interval_count - i, 1)``.  Intervals with a negative
    delta (meter swap, bad read) are skipped.
    """
    interval_count = len(history) - 1
    weighted_sum = 0.0
    weight_sum = 0.0
    for i in range(interval_count):
        newer = history[i]
        older = history[i + 1]
        delta = newer.reading_value - older.reading_value
        if delta < 0:
            continue
        rate = delta / _elapsed_days(newer.captured_at, older.captured_at)
        weight = max(interval_count - i, 1)
        weighted_sum += rate * weight
        weight_sum += weight
    if weight_sum <= 0:
        return None
    return weighted_sum / weight_sum


def digit_correction_candidates(raw_value: float) -> list[float]:
    """The raw value plus variants with the last one or two digits trimmed.

    Photo OCR often picks up an extra trailing digit from a sub-dial or a
    decimal marker.  Only integral readings with enough digits are trimmed.
    """
    candidates = [raw_value]
    if not float(raw_value).is_integer():
        return candidates
    digits = str(int(round(raw_value)))
    if len(digits) >= 4:
        candidates.append(float(digits[:-1]))
    if len(digits) >= 5:
        candidates.append(float(digits[:-2]))
    unique: list[float] = []
    for value in candidates:
        if value not in unique:
            unique.append(value)
    return unique


def normalize_reading(
    utility_type: UtilityType | str,
    captured_at: datetime,
    raw_value: float,
    history: Sequence[MeterReading],
) -> NormalizationResult:
    """Accept, correct or flag a freshly extracted cumulative meter value.

    *history* holds prior approved meter reads for the same unit and utility;
    it is re-filtered and truncated to the rolling window here so callers may
    pass a superset.
    """
    recent = select_history(utility_type, history, before=captured_at)
    if not recent:
        return NormalizationResult(reading_value=raw_value)

    latest = recent[0]
    prev_value = latest.reading_value
    elapsed_days = _elapsed_days(captured_at, latest.captured_at)
    max_delta = max_daily_usage(utility_type) * max(elapsed_days, 1.0)
    raw_delta = raw_value - prev_value

    rate = expected_daily_rate(recent)
    expected_delta = rate * elapsed_days if rate is not None else None

    low, high = 0.0, max_delta
    if expected_delta is not None:
        tolerance = max(expected_delta * TOLERANCE_FRACTION, rate, MIN_TOLERANCE)
        low = max(0.0, expected_delta - tolerance)
        high = min(max_delta, expected_delta + tolerance)

    context = dict(
        previous_value=prev_value,
        elapsed_days=round3(elapsed_days),
        expected_delta=round3(expected_delta) if expected_delta is not None else None,
        allowed_range=(round3(low), round3(high)),
    )

    if low <= raw_delta <= high:
        return NormalizationResult(reading_value=raw_value, **context)

    scored = []
    for candidate in digit_correction_candidates(raw_value):
        if candidate < prev_value:
            continue
        delta = candidate - prev_value
        within = low <= delta <= high
        if not within and delta > max_delta:
            continue
        expected_score = abs(delta - expected_delta) if expected_delta is not None else delta
        penalty = 0.0 if candidate == raw_value else CORRECTION_PENALTY
        scored.append((expected_score + penalty, expected_score, candidate))
    scored.sort(key=lambda item: item[0])

    if scored:
        _, best_score, best = scored[0]
        raw_score = next((s for _, s, c in scored if c == raw_value), None)
        should_correct = best != raw_value and (
            raw_score is None
            or best_score < raw_score * CORRECTION_SCORE_RATIO
            or raw_delta > max_delta
        )
        if should_correct:
            note = (
                f"Auto-corrected meter photo reading from {round3(raw_value)} to {round3(best)} "
                f"using rolling average usage forecast since the previous {utility_type} read "
                f"(previous read {round3(prev_value)}, {round3(elapsed_days)} day interval)."
            )
            logger.info("reading_corrected", utility_type=str(utility_type),
                        raw_value=raw_value, corrected_value=best, elapsed_days=round3(elapsed_days))
            return NormalizationResult(reading_value=best, correction_note=note, **context)
        return NormalizationResult(reading_value=raw_value, **context)

    note = (
        f"Parsed meter reading {round3(raw_value)} looks implausible versus previous read "
        f"{round3(prev_value)} ({round3(raw_delta)} delta over {round3(elapsed_days)} day(s)). "
    )
    if expected_delta is not None:
        note += f"Rolling expected delta is about {round3(expected_delta)}. "
    note += "Review manually."
    logger.warning("reading_flagged", utility_type=str(utility_type), raw_value=raw_value,
                   previous_value=prev_value, raw_delta=round3(raw_delta))
    return NormalizationResult(reading_value=raw_value, correction_note=note, flagged=True, **context)

"""Usage statistics over the daily series and the raw meter reads.

Windows end on ``as_of`` (inclusive) and cover N calendar days.  Each window
carries per-unit usage buckets and a cost estimate for the same span.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable, Sequence

from ..costs.estimator import estimate_cost, round_usage
from ..models.internal import LatestDelta, MeterReadSnapshot, UsageBucket, UsageStats, UsageTrend, UsageWindow
from ..models.schema import (
    ApportionmentSource,
    BillCharge,
    DailyConsumptionRow,
    EntryType,
    MeterReading,
    ReviewStatus,
    UtilityType,
)
from ..utils.dates import local_day, start_of_local_day

ROLLING_WINDOWS = {"daily": 1, "7d": 7, "30d": 30, "90d": 90}
PROJECTION_DAYS = 30
TREND_THRESHOLD_PCT = 5.0
MIN_INTERVAL_DAYS = 1 / 24


def prefer_meter_intervals(rows: Iterable[DailyConsumptionRow]) -> list[DailyConsumptionRow]:
    """Drop billed-period rows for (day, usage unit) pairs already covered by a meter interval."""
    rows = list(rows)
    covered = {
        (r.day, r.usage_unit) for r in rows if r.source == ApportionmentSource.METER_INTERVAL
    }
    return [
        r for r in rows
        if r.source == ApportionmentSource.METER_INTERVAL or (r.day, r.usage_unit) not in covered
    ]


def sum_buckets(rows: Iterable[DailyConsumptionRow]) -> list[UsageBucket]:
    totals: dict[str, float] = defaultdict(float)
    for row in rows:
        totals[row.usage_unit] += row.consumption
    return [UsageBucket(usage_unit=unit, value=round_usage(value)) for unit, value in sorted(totals.items())]


def rows_between(rows: Iterable[DailyConsumptionRow], start: date, end: date) -> list[DailyConsumptionRow]:
    return [r for r in rows if start <= r.day <= end]


def build_window(
    name: str,
    utility_type: UtilityType | str,
    rows: Sequence[DailyConsumptionRow],
    start: date,
    end: date,
) -> UsageWindow:
    days = (end - start).days + 1
    buckets = sum_buckets(rows_between(rows, start, end))
    return UsageWindow(
        name=name,
        start=start,
        end=end,
        days=days,
        buckets=buckets,
        cost=estimate_cost(utility_type, buckets, days),
    )


def _meter_reads_newest_first(readings: Iterable[MeterReading]) -> list[MeterReading]:
    reads = [
        r for r in readings
        if r.entry_type == EntryType.METER_READ and r.review_status == ReviewStatus.APPROVED
    ]
    return sorted(reads, key=lambda r: r.captured_at, reverse=True)


def _interval(newer: MeterReading, older: MeterReading) -> tuple[float, float] | None:
    if newer.reading_unit != older.reading_unit:
        return None
    usage = newer.reading_value - older.reading_value
    seconds = (newer.captured_at - older.captured_at).total_seconds()
    days = max(seconds / 86400, MIN_INTERVAL_DAYS)
    return usage, days


def _snapshot(reading: MeterReading | None) -> MeterReadSnapshot | None:
    if reading is None:
        return None
    return MeterReadSnapshot(value=reading.reading_value, unit=reading.reading_unit, captured_at=reading.captured_at)


def current_meter_read(readings: Iterable[MeterReading]) -> MeterReadSnapshot | None:
    reads = _meter_reads_newest_first(readings)
    return _snapshot(reads[0] if reads else None)


def month_end_meter_read(readings: Iterable[MeterReading], as_of: date, tz_name: str) -> MeterReadSnapshot | None:
    """Latest meter read taken by the first local midnight of the month of *as_of*."""
    cutoff = start_of_local_day(as_of.replace(day=1), tz_name)
    reads = _meter_reads_newest_first(readings)
    return _snapshot(next((r for r in reads if r.captured_at <= cutoff), None))


def compute_latest_delta(readings: Iterable[MeterReading]) -> LatestDelta | None:
    """Usage between the two most recent meter reads."""
    reads = _meter_reads_newest_first(readings)
    if len(reads) < 2:
        return None
    interval = _interval(reads[0], reads[1])
    if interval is None:
        return None
    usage, days = interval
    return LatestDelta(
        usage=round_usage(usage),
        days=round_usage(days),
        avg_per_day=round_usage(usage / days),
        unit=reads[0].reading_unit,
    )


def compute_trend(readings: Iterable[MeterReading]) -> UsageTrend | None:
    """Compare the latest interval's daily average against the one before it."""
    reads = _meter_reads_newest_first(readings)
    if len(reads) < 3:
        return None
    latest = _interval(reads[0], reads[1])
    previous = _interval(reads[1], reads[2])
    if latest is None or previous is None:
        return None
    latest_avg = latest[0] / latest[1]
    previous_avg = previous[0] / previous[1]

    change_pct: float | None = None
    if previous_avg > 0:
        change_pct = round_usage((latest_avg - previous_avg) / previous_avg * 100)
        if change_pct > TREND_THRESHOLD_PCT:
            direction = "up"
        elif change_pct < -TREND_THRESHOLD_PCT:
            direction = "down"
        else:
            direction = "flat"
    else:
        direction = "up" if latest_avg > 0 else "flat"

    return UsageTrend(
        latest_avg_per_day=round_usage(latest_avg),
        previous_avg_per_day=round_usage(previous_avg),
        change_pct=change_pct,
        direction=direction,
    )


def build_since_last_bill(
    utility_type: UtilityType | str,
    readings: Iterable[MeterReading],
    last_billed_period_end: date | None,
    tz_name: str,
) -> UsageWindow | None:
    """Latest meter read minus the baseline read taken by the day after the last billed period."""
    if last_billed_period_end is None:
        return None
    reads = _meter_reads_newest_first(readings)
    if not reads:
        return None
    latest = reads[0]
    cutoff = start_of_local_day(last_billed_period_end + timedelta(days=1), tz_name)
    baseline = next((r for r in reads if r.captured_at <= cutoff), None)
    if baseline is None or baseline.reading_unit != latest.reading_unit:
        return None

    usage = latest.reading_value - baseline.reading_value
    start = last_billed_period_end + timedelta(days=1)
    end = max(local_day(latest.captured_at, tz_name), start)
    days = (end - last_billed_period_end).days
    buckets = [UsageBucket(usage_unit=latest.reading_unit, value=round_usage(usage))]
    return UsageWindow(
        name="since_last_bill",
        start=start,
        end=end,
        days=days,
        buckets=buckets,
        cost=estimate_cost(utility_type, buckets, days),
    )


def build_projection(
    utility_type: UtilityType | str,
    rows: Sequence[DailyConsumptionRow],
    as_of: date,
) -> UsageWindow:
    """Average over days with data in the trailing 30 days, scaled to 30 days."""
    start = as_of - timedelta(days=PROJECTION_DAYS - 1)
    window_rows = rows_between(rows, start, as_of)
    days_with_data = len({r.day for r in window_rows})
    buckets: list[UsageBucket] = []
    if days_with_data:
        buckets = [
            UsageBucket(usage_unit=b.usage_unit, value=round_usage(b.value / days_with_data * PROJECTION_DAYS))
            for b in sum_buckets(window_rows)
        ]
    return UsageWindow(
        name="projected_30d",
        start=start,
        end=as_of,
        days=PROJECTION_DAYS,
        buckets=buckets,
        cost=estimate_cost(utility_type, buckets, PROJECTION_DAYS),
    )


def build_usage_stats(
    utility_type: UtilityType | str,
    readings: Iterable[MeterReading],
    daily_rows: Iterable[DailyConsumptionRow],
    *,
    as_of: date,
    tz_name: str,
    last_billed_period_end: date | None = None,
    last_bill_charge: BillCharge | None = None,
) -> UsageStats:
    """Summarise one (unit, utility): latest delta, trend and every usage window."""
    readings = list(readings)
    rows = prefer_meter_intervals(r for r in daily_rows if r.utility_type == utility_type)

    windows: dict[str, UsageWindow] = {}
    for name, days in ROLLING_WINDOWS.items():
        windows[name] = build_window(name, utility_type, rows, as_of - timedelta(days=days - 1), as_of)
    windows["month_to_date"] = build_window("month_to_date", utility_type, rows, as_of.replace(day=1), as_of)

    since_last_bill = build_since_last_bill(utility_type, readings, last_billed_period_end, tz_name)
    if since_last_bill is not None:
        windows["since_last_bill"] = since_last_bill
    windows["projected_30d"] = build_projection(utility_type, rows, as_of)

    return UsageStats(
        utility_type=str(utility_type),
        current_read=current_meter_read(readings),
        last_month_end_read=month_end_meter_read(readings, as_of, tz_name),
        latest_delta=compute_latest_delta(readings),
        trend=compute_trend(readings),
        windows=windows,
        last_bill_charge=last_bill_charge,
    )

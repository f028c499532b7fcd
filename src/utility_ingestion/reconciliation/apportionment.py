"""Daily Apportionment Engine.

Turns sparse cumulative meter reads and billed period totals into a dense
per-calendar-day consumption series per (unit, utility).  Both generative
processes are emitted side by side; consumers decide precedence when they
overlap (see ``stats.usage.prefer_meter_intervals``).

The series is a cache: ``apportion_daily`` is a pure function and rebuilding
from the same facts always yields the same rows.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable, Mapping, Sequence

import structlog

from ..models.schema import (
    ApportionmentSource,
    DailyConsumptionRow,
    EntryType,
    MeterReading,
    ReviewStatus,
    WeatherDay,
)
from ..utils.dates import iter_days, local_day

logger = structlog.get_logger(__name__)


def _weather_fields(day: date, weather: Mapping[date, WeatherDay]) -> dict:
    w = weather.get(day)
    if w is None:
        return {}
    return {
        "temp_avg_c": w.temp_avg_c,
        "hdd": w.hdd,
        "cdd": w.cdd,
        "precipitation_mm": w.precipitation_mm,
    }


def apportion_meter_intervals(
    reads: Sequence[MeterReading],
    tz_name: str,
    weather: Mapping[date, WeatherDay] | None = None,
) -> list[DailyConsumptionRow]:
    """Spread each consecutive meter-read delta evenly over ``(day[i-1], day[i]]``.

    *reads* must belong to a single (unit, utility).  Deltas landing on the
    same day and usage unit are summed into one row.
    """
    weather = weather or {}
    ordered = sorted(reads, key=lambda r: r.captured_at)
    merged: dict[tuple[date, str], DailyConsumptionRow] = {}
    for older, newer in zip(ordered, ordered[1:]):
        if older.reading_unit != newer.reading_unit:
            logger.warning("apportion_unit_mismatch", unit_id=str(newer.unit_id),
                           older_unit=older.reading_unit, newer_unit=newer.reading_unit)
            continue
        total_delta = newer.reading_value - older.reading_value
        if total_delta < 0:
            logger.warning("apportion_negative_delta", unit_id=str(newer.unit_id),
                           utility_type=str(newer.utility_type), delta=total_delta)
            continue
        start_day = local_day(older.captured_at, tz_name)
        end_day = local_day(newer.captured_at, tz_name)
        span = (end_day - start_day).days
        days_between = max(span, 1)
        per_day = total_delta / days_between
        first_day = start_day + timedelta(days=1) if span > 0 else end_day
        for day in iter_days(first_day, end_day):
            key = (day, newer.reading_unit)
            if key in merged:
                existing = merged[key]
                merged[key] = existing.model_copy(update={"consumption": existing.consumption + per_day})
                continue
            merged[key] = DailyConsumptionRow(
                unit_id=newer.unit_id,
                utility_type=newer.utility_type,
                usage_unit=newer.reading_unit,
                day=day,
                consumption=per_day,
                source=ApportionmentSource.METER_INTERVAL,
                **_weather_fields(day, weather),
            )
    return list(merged.values())


def apportion_billed_period(
    entry: MeterReading,
    weather: Mapping[date, WeatherDay] | None = None,
) -> list[DailyConsumptionRow]:
    """Spread a billed total evenly over every day of ``[period_start, period_end]``."""
    weather = weather or {}
    if entry.period_start is None or entry.period_end is None or entry.period_end < entry.period_start:
        return []
    days = max((entry.period_end - entry.period_start).days + 1, 1)
    per_day = entry.reading_value / days
    return [
        DailyConsumptionRow(
            unit_id=entry.unit_id,
            utility_type=entry.utility_type,
            usage_unit=entry.reading_unit,
            day=day,
            consumption=per_day,
            source=ApportionmentSource.BILLED_PERIOD,
            **_weather_fields(day, weather),
        )
        for day in iter_days(entry.period_start, entry.period_end)
    ]


def apportion_daily(
    readings: Iterable[MeterReading],
    tz_name: str,
    weather: Iterable[WeatherDay] | Mapping[date, WeatherDay] | None = None,
) -> list[DailyConsumptionRow]:
    """Build the full daily series from approved reading facts.

    Rows are ordered by (unit, utility, day, source).  Weather is a best-effort
    left join: days without weather keep null metrics.
    """
    if weather is None:
        weather_by_day: Mapping[date, WeatherDay] = {}
    elif isinstance(weather, Mapping):
        weather_by_day = weather
    else:
        weather_by_day = {w.day: w for w in weather}

    meter_reads: dict[tuple, list[MeterReading]] = defaultdict(list)
    rows: list[DailyConsumptionRow] = []
    for reading in readings:
        if reading.review_status != ReviewStatus.APPROVED:
            continue
        if reading.entry_type == EntryType.METER_READ:
            meter_reads[(reading.unit_id, reading.utility_type)].append(reading)
        else:
            rows.extend(apportion_billed_period(reading, weather_by_day))

    for group in meter_reads.values():
        rows.extend(apportion_meter_intervals(group, tz_name, weather_by_day))

    rows.sort(key=lambda r: (str(r.unit_id), str(r.utility_type), r.day, str(r.source)))
    return rows

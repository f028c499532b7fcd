"""Heating and cooling degree-days for weather rows joined onto the daily series."""
from __future__ import annotations

from datetime import date

from ..models.schema import WeatherDay

DEGREE_DAY_BASE_C = 18.0


def degree_days(temp_avg_c: float | None, base_c: float = DEGREE_DAY_BASE_C) -> tuple[float | None, float | None]:
    """Return ``(hdd, cdd)`` for a daily mean temperature; both None when it is unknown."""
    if temp_avg_c is None:
        return None, None
    return max(base_c - temp_avg_c, 0.0), max(temp_avg_c - base_c, 0.0)


def build_weather_day(
    day: date,
    *,
    temp_min_c: float | None = None,
    temp_max_c: float | None = None,
    temp_avg_c: float | None = None,
    precipitation_mm: float | None = None,
    location: str = "West Vancouver, BC",
) -> WeatherDay:
    """WeatherDay with degree-days derived from the mean (or the min/max midpoint)."""
    if temp_avg_c is None and temp_min_c is not None and temp_max_c is not None:
        temp_avg_c = (temp_min_c + temp_max_c) / 2
    hdd, cdd = degree_days(temp_avg_c)
    return WeatherDay(
        day=day,
        location=location,
        temp_min_c=temp_min_c,
        temp_max_c=temp_max_c,
        temp_avg_c=temp_avg_c,
        precipitation_mm=precipitation_mm,
        hdd=hdd,
        cdd=cdd,
    )

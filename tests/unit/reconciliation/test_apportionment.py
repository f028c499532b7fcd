"""Test spreading readings into the daily consumption series."""
from datetime import date
from uuid import uuid4

import pytest

from utility_ingestion.models.schema import ApportionmentSource, ReviewStatus, UtilityType
from utility_ingestion.reconciliation.apportionment import (
    apportion_billed_period,
    apportion_daily,
    apportion_meter_intervals,
)
from utility_ingestion.stats.weather import build_weather_day
from tests.factories import TZ, at, make_billed_usage, make_meter_read

UNIT = uuid4()


class TestMeterIntervals:
    def test_delta_spread_evenly_over_days(self):
        reads = [make_meter_read(UNIT, 1000, at("2025-03-01")), make_meter_read(UNIT, 1030, at("2025-03-11"))]
        rows = apportion_meter_intervals(reads, TZ)

        assert len(rows) == 10
        assert [r.day for r in rows][0] == date(2025, 3, 2)
        assert [r.day for r in rows][-1] == date(2025, 3, 11)
        assert all(r.consumption == pytest.approx(3.0) for r in rows)
        assert all(r.source == ApportionmentSource.METER_INTERVAL for r in rows)

    def test_same_day_pair_lands_on_that_day(self):
        reads = [make_meter_read(UNIT, 1000, at("2025-03-01", 8)), make_meter_read(UNIT, 1004, at("2025-03-01", 20))]
        rows = apportion_meter_intervals(reads, TZ)
        assert len(rows) == 1
        assert rows[0].day == date(2025, 3, 1)
        assert rows[0].consumption == 4

    def test_same_day_deltas_merged_into_one_row(self):
        reads = [
            make_meter_read(UNIT, 1000, at("2025-03-01", 12)),
            make_meter_read(UNIT, 1010, at("2025-03-02", 12)),
            make_meter_read(UNIT, 1014, at("2025-03-02", 20)),
        ]
        rows = apportion_meter_intervals(reads, TZ)
        assert [r.day for r in rows] == [date(2025, 3, 2)]
        assert rows[0].consumption == pytest.approx(14)

    def test_days_follow_local_calendar(self):
        # 23:00 local is already the next day in UTC
        reads = [make_meter_read(UNIT, 1000, at("2025-01-01", 23)), make_meter_read(UNIT, 1010, at("2025-01-02", 23))]
        rows = apportion_meter_intervals(reads, TZ)
        assert [r.day for r in rows] == [date(2025, 1, 2)]

    def test_negative_delta_skipped(self):
        reads = [make_meter_read(UNIT, 1000, at("2025-03-01")), make_meter_read(UNIT, 900, at("2025-03-05"))]
        assert apportion_meter_intervals(reads, TZ) == []

    def test_unit_mismatch_skipped(self):
        reads = [
            make_meter_read(UNIT, 1000, at("2025-03-01"), utility_type=UtilityType.GAS, reading_unit="m3"),
            make_meter_read(UNIT, 1010, at("2025-03-05"), utility_type=UtilityType.GAS, reading_unit="GJ"),
        ]
        assert apportion_meter_intervals(reads, TZ) == []

    def test_sum_equals_last_minus_first(self):
        reads = [
            make_meter_read(UNIT, 1100, at("2025-03-15")),
            make_meter_read(UNIT, 1000, at("2025-03-01")),
            make_meter_read(UNIT, 1030, at("2025-03-11")),
        ]
        rows = apportion_meter_intervals(reads, TZ)
        assert sum(r.consumption for r in rows) == pytest.approx(100)
        assert len({r.day for r in rows}) == len(rows)


class TestBilledPeriod:
    def test_total_spread_over_inclusive_period(self):
        rows = apportion_billed_period(make_billed_usage(UNIT, 31, "2025-01-01", "2025-01-31"))
        assert len(rows) == 31
        assert all(r.consumption == pytest.approx(1.0) for r in rows)
        assert rows[0].source == ApportionmentSource.BILLED_PERIOD

    def test_sum_equals_billed_value(self):
        rows = apportion_billed_period(make_billed_usage(UNIT, 62, "2025-01-05", "2025-02-03"))
        assert sum(r.consumption for r in rows) == pytest.approx(62)


class TestApportionDaily:
    def test_union_of_sources_ordered(self):
        readings = [
            make_billed_usage(UNIT, 10, "2025-03-05", "2025-03-06"),
            make_meter_read(UNIT, 1030, at("2025-03-11")),
            make_meter_read(UNIT, 1000, at("2025-03-01")),
        ]
        rows = apportion_daily(readings, TZ)

        assert len(rows) == 12
        keys = [(r.day, str(r.source)) for r in rows]
        assert keys == sorted(keys)
        same_day = [r for r in rows if r.day == date(2025, 3, 5)]
        assert [r.source for r in same_day] == [ApportionmentSource.BILLED_PERIOD, ApportionmentSource.METER_INTERVAL]

    def test_unapproved_readings_excluded(self):
        readings = [
            make_meter_read(UNIT, 1000, at("2025-03-01")),
            make_meter_read(UNIT, 5000, at("2025-03-05"), review_status=ReviewStatus.PENDING_REVIEW),
            make_meter_read(UNIT, 1030, at("2025-03-11")),
        ]
        rows = apportion_daily(readings, TZ)
        assert sum(r.consumption for r in rows) == pytest.approx(30)

    def test_utilities_apportioned_separately(self):
        readings = [
            make_meter_read(UNIT, 1000, at("2025-03-01")),
            make_meter_read(UNIT, 500, at("2025-03-03"), utility_type=UtilityType.GAS),
            make_meter_read(UNIT, 1030, at("2025-03-11")),
            make_meter_read(UNIT, 520, at("2025-03-07"), utility_type=UtilityType.GAS),
        ]
        rows = apportion_daily(readings, TZ)
        gas = [r for r in rows if r.utility_type == UtilityType.GAS]
        assert sum(r.consumption for r in gas) == pytest.approx(20)
        assert {r.usage_unit for r in gas} == {"m3"}

    def test_weather_left_join(self):
        readings = [make_meter_read(UNIT, 1000, at("2025-03-01")), make_meter_read(UNIT, 1030, at("2025-03-11"))]
        weather = [build_weather_day(date(2025, 3, 5), temp_avg_c=10.0, precipitation_mm=4.2)]
        rows = {r.day: r for r in apportion_daily(readings, TZ, weather)}

        assert rows[date(2025, 3, 5)].temp_avg_c == 10.0
        assert rows[date(2025, 3, 5)].hdd == 8.0
        assert rows[date(2025, 3, 5)].precipitation_mm == 4.2
        assert rows[date(2025, 3, 6)].temp_avg_c is None
        assert rows[date(2025, 3, 6)].hdd is None

    def test_rebuild_is_deterministic(self):
        readings = [
            make_meter_read(UNIT, 1000, at("2025-03-01")),
            make_meter_read(UNIT, 1030, at("2025-03-11")),
            make_billed_usage(UNIT, 31, "2025-01-01", "2025-01-31"),
        ]
        assert apportion_daily(readings, TZ) == apportion_daily(list(reversed(readings)), TZ)

    def test_empty_input(self):
        assert apportion_daily([], TZ) == []

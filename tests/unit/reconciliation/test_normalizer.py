"""Test meter reading plausibility validation and digit correction."""
from uuid import uuid4

import pytest

from utility_ingestion.models.schema import ReviewStatus, UtilityType
from utility_ingestion.reconciliation.normalizer import (
    digit_correction_candidates,
    expected_daily_rate,
    normalize_reading,
    select_history,
)
from tests.factories import at, make_billed_usage, make_meter_read

UNIT = uuid4()


def _reads(*pairs):
    return [make_meter_read(UNIT, value, at(day)) for day, value in pairs]


class TestScenarios:
    def test_trailing_digit_artifact_is_corrected(self):
        history = _reads(("2025-03-01", 1000))
        result = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), 11050, history)

        assert result.reading_value == 1105
        assert result.correction_note is not None
        assert "11050" in result.correction_note
        assert not result.flagged
        assert result.corrected

    def test_small_plausible_delta_is_accepted(self):
        history = _reads(("2025-03-01", 1000))
        result = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), 1005, history)

        assert result.reading_value == 1005
        assert result.correction_note is None
        assert not result.flagged

    def test_no_candidate_under_ceiling_is_flagged(self):
        history = _reads(("2025-03-01", 1000))
        result = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-02"), 50000, history)

        assert result.flagged
        assert result.reading_value == 50000
        assert "Review manually" in result.correction_note
        assert result.previous_value == 1000


class TestNormalizeReading:
    def test_no_history_accepts_anything(self):
        result = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), 987654, [])
        assert result.reading_value == 987654
        assert not result.flagged
        assert result.allowed_range is None

    def test_reading_below_previous_is_flagged(self):
        history = _reads(("2025-03-01", 1000))
        result = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), 900, history)
        assert result.flagged

    def test_rolling_rate_narrows_band(self):
        # 10 kWh/day for two intervals: expect ~100 over the next 10 days
        history = _reads(("2025-02-09", 1000), ("2025-02-19", 1100), ("2025-03-01", 1200))
        result = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), 1290, history)

        assert result.reading_value == 1290
        assert result.expected_delta == pytest.approx(100, abs=1)
        low, high = result.allowed_range
        assert low < 90 < high

    def test_correction_prefers_candidate_near_forecast(self):
        history = _reads(("2025-02-09", 1000), ("2025-02-19", 1100), ("2025-03-01", 1200))
        result = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), 13000, history)
        assert result.reading_value == 1300
        assert result.corrected

    def test_low_but_positive_delta_kept_unchanged(self):
        history = _reads(("2025-02-09", 1000), ("2025-02-19", 1100), ("2025-03-01", 1200))
        result = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), 1201, history)
        assert result.reading_value == 1201
        assert result.correction_note is None

    def test_accepted_value_is_idempotent(self):
        history = _reads(("2025-03-01", 1000))
        first = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), 11050, history)
        second = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), first.reading_value, history)
        assert second.reading_value == first.reading_value
        assert second.correction_note is None

    def test_accepted_value_never_below_previous(self):
        history = _reads(("2025-03-01", 1000))
        for raw in (1000, 1001, 1105, 11050, 2400):
            result = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), raw, history)
            if not result.flagged:
                assert result.reading_value >= 1000

    def test_later_history_is_ignored(self):
        history = _reads(("2025-03-01", 1000), ("2025-03-20", 5000))
        result = normalize_reading(UtilityType.ELECTRICITY, at("2025-03-11"), 1005, history)
        assert result.previous_value == 1000
        assert result.reading_value == 1005


class TestSelectHistory:
    def test_filters_and_orders_newest_first(self):
        readings = [
            make_meter_read(UNIT, 1000, at("2025-01-01")),
            make_meter_read(UNIT, 1100, at("2025-02-01")),
            make_meter_read(UNIT, 1150, at("2025-02-15"), review_status=ReviewStatus.PENDING_REVIEW),
            make_meter_read(UNIT, 50, at("2025-02-10"), utility_type=UtilityType.GAS),
            make_billed_usage(UNIT, 100, "2025-01-01", "2025-01-31"),
        ]
        history = select_history(UtilityType.ELECTRICITY, readings)
        assert [r.reading_value for r in history] == [1100, 1000]

    def test_truncates_to_rolling_window(self):
        readings = [make_meter_read(UNIT, 1000 + i, at(f"2024-01-{i + 1:02d}")) for i in range(20)]
        assert len(select_history(UtilityType.ELECTRICITY, readings)) == 12
        assert len(select_history(UtilityType.GAS, [
            make_meter_read(UNIT, 1000 + i, at(f"2024-01-{i + 1:02d}"), utility_type=UtilityType.GAS)
            for i in range(20)
        ])) == 18


class TestExpectedDailyRate:
    def test_recent_intervals_weigh_more(self):
        newest_first = list(reversed(_reads(("2025-01-01", 1000), ("2025-01-11", 1100), ("2025-01-21", 1400))))
        # 30/day weighted 2, 10/day weighted 1
        assert expected_daily_rate(newest_first) == pytest.approx(70 / 3, rel=1e-3)

    def test_negative_interval_skipped(self):
        newest_first = list(reversed(_reads(("2025-01-01", 1000), ("2025-01-11", 1100), ("2025-01-21", 1000))))
        assert expected_daily_rate(newest_first) == pytest.approx(10, rel=1e-3)

    def test_single_read_has_no_rate(self):
        assert expected_daily_rate(_reads(("2025-01-01", 1000))) is None


class TestDigitCorrectionCandidates:
    def test_trims_one_and_two_digits(self):
        assert digit_correction_candidates(11050) == [11050, 1105, 110]

    def test_short_values_not_trimmed(self):
        assert digit_correction_candidates(123) == [123]

    def test_fractional_values_not_trimmed(self):
        assert digit_correction_candidates(1234.5) == [1234.5]

    def test_raw_value_first_and_no_extra_digits(self):
        for raw in (1000, 98765, 345678912):
            candidates = digit_correction_candidates(raw)
            assert candidates[0] == raw
            assert all(len(str(int(c))) <= len(str(raw)) for c in candidates)
            assert len(candidates) == len(set(candidates))

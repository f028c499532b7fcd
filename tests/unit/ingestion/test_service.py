"""Test the ingestion service over the in-memory store."""
from datetime import date
from uuid import uuid4

import pytest

from utility_ingestion.errors import (
    ExtractionError,
    InputValidationError,
    MappingError,
    NotFoundError,
    PersistenceError,
    ReadingConflictError,
    ReviewRequiredError,
)
from utility_ingestion.ingestion.service import IngestionService
from utility_ingestion.models.schema import (
    BillExtraction,
    ExtractedCharge,
    ExtractedMeterImage,
    ManualEntryRequest,
    ReadingSource,
    UtilityType,
)
from utility_ingestion.stats.weather import build_weather_day
from utility_ingestion.storage.interface import NO_CHECK
from utility_ingestion.storage.memory import InMemoryUtilityStore
from tests.factories import FIXED_NOW, at, make_gas_bill_entries, make_meter_read


def _manual(unit, value, captured_at, **fields):
    return ManualEntryRequest(
        unit_id=str(unit.id),
        utility_type=fields.pop("utility_type", "electricity"),
        captured_at=captured_at,
        reading_value=value,
        **fields,
    )


def _gas_bill():
    return BillExtraction(
        entries=make_gas_bill_entries(),
        charges=[ExtractedCharge(
            utility_type=UtilityType.GAS,
            bill_id="B-2025-01",
            period_start=date(2025, 1, 1),
            period_end=date(2025, 1, 31),
            total_charges_cad=98.41,
        )],
    )


def _photo(identifier="345185639", value=11050, captured_at=None, **fields):
    return ExtractedMeterImage(
        meter_identifier=identifier,
        reading_value=value,
        reading_unit="kWh",
        captured_at=captured_at if captured_at is not None else at("2025-03-11"),
        **fields,
    )


def _service(store, settings, **kwargs):
    return IngestionService(store, settings, clock=lambda: FIXED_NOW, **kwargs)


class TestManualEntry:
    @pytest.mark.asyncio
    async def test_first_read(self, service, house):
        result = await service.ingest_manual(_manual(house, 1000, "2025-03-01T12:00:00"))

        assert result.mode == "manual"
        assert result.inserted_count == 1
        assert result.inserted[0].captured_at.tzinfo is not None
        assert result.inserted[0].source == ReadingSource.MANUAL
        assert list(result.stats_by_utility) == ["electricity"]
        assert result.daily_rows_rebuilt == 0

    @pytest.mark.asyncio
    async def test_second_read_rebuilds_series(self, service, house):
        await service.ingest_manual(_manual(house, 1000, "2025-03-01T12:00:00"))
        result = await service.ingest_manual(_manual(house, 1030, "2025-03-11T12:00:00"))

        assert result.daily_rows_rebuilt == 10
        stats = result.stats_by_utility["electricity"]
        assert stats.latest_delta.usage == 30
        assert stats.windows["30d"].buckets[0].value == pytest.approx(30)
        assert stats.windows["30d"].cost is not None

    @pytest.mark.asyncio
    async def test_lower_than_previous_needs_review(self, service, house, store):
        await service.ingest_manual(_manual(house, 1000, "2025-03-01T12:00:00"))
        with pytest.raises(ReviewRequiredError) as exc_info:
            await service.ingest_manual(_manual(house, 990, "2025-03-11T12:00:00"))
        assert exc_info.value.details["previous_value"] == 1000
        assert len(await store.list_readings(house.id)) == 1

    @pytest.mark.asyncio
    async def test_backfill_above_next_read_needs_review(self, service, house):
        await service.ingest_manual(_manual(house, 1000, "2025-03-01T12:00:00"))
        await service.ingest_manual(_manual(house, 1030, "2025-03-11T12:00:00"))
        with pytest.raises(ReviewRequiredError):
            await service.ingest_manual(_manual(house, 1040, "2025-03-05T12:00:00"))

    @pytest.mark.asyncio
    async def test_same_instant_lower_read_needs_review(self, service, house, store):
        await service.ingest_manual(_manual(house, 1030, "2025-03-11T12:00:00"))
        with pytest.raises(ReviewRequiredError) as exc_info:
            await service.ingest_manual(_manual(house, 1020, "2025-03-11T12:00:00"))
        assert exc_info.value.details["previous_value"] == 1030
        assert len(await store.list_readings(house.id)) == 1

    @pytest.mark.asyncio
    async def test_billed_usage_entry(self, service, house, store):
        result = await service.ingest_manual(_manual(
            house, 300, "2025-03-01T09:00:00",
            entry_type="billed_usage", period_start="2025-02-01", period_end="2025-02-28", bill_id="E-0225",
        ))
        assert result.daily_rows_rebuilt == 28
        assert await store.last_billed_period_end(house.id, UtilityType.ELECTRICITY) == date(2025, 2, 28)

    @pytest.mark.asyncio
    async def test_billed_usage_requires_period(self, service, house):
        with pytest.raises(InputValidationError):
            await service.ingest_manual(_manual(house, 300, "2025-03-01T09:00:00", entry_type="billed_usage"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [
        {"unit_id": "not-a-uuid"},
        {"utility_type": "steam"},
        {"entry_type": "estimate"},
        {"captured_at": None},
        {"captured_at": "yesterday"},
        {"reading_value": None},
        {"reading_value": float("nan")},
        {"timezone": "Nowhere/Land"},
    ])
    async def test_invalid_input(self, service, house, fields):
        request = _manual(house, 1000, "2025-03-01T12:00:00").model_copy(update=fields)
        with pytest.raises(InputValidationError):
            await service.ingest_manual(request)

    @pytest.mark.asyncio
    async def test_unknown_unit(self, service):
        request = ManualEntryRequest(unit_id=str(uuid4()), utility_type="electricity",
                                     captured_at="2025-03-01T12:00:00", reading_value=1)
        with pytest.raises(NotFoundError):
            await service.ingest_manual(request)

    @pytest.mark.asyncio
    async def test_utility_not_allowed_for_unit(self, service, coach):
        with pytest.raises(InputValidationError) as exc_info:
            await service.ingest_manual(_manual(coach, 500, "2025-03-01T12:00:00", utility_type="gas"))
        assert exc_info.value.details["allowed_utilities"] == ["electricity"]

    @pytest.mark.asyncio
    async def test_weather_joined_on_rebuild(self, service, house, store):
        await store.upsert_weather_day(build_weather_day(date(2025, 3, 5), temp_avg_c=5.0))
        await service.ingest_manual(_manual(house, 1000, "2025-03-01T12:00:00"))
        await service.ingest_manual(_manual(house, 1030, "2025-03-11T12:00:00"))

        rows = {r.day: r for r in await store.list_daily_series(house.id)}
        assert rows[date(2025, 3, 5)].hdd == 13.0
        assert rows[date(2025, 3, 6)].hdd is None


class TestBillIngest:
    @pytest.mark.asyncio
    async def test_dedup_and_charges(self, service, house, bill_extractor):
        bill_extractor.extract.return_value = _gas_bill()

        result = await service.ingest_bill(str(house.id), b"%PDF-1.7 fake", "jan.pdf")

        bill_extractor.extract.assert_awaited_once_with(b"%PDF-1.7 fake", "jan.pdf", "America/Vancouver", None)
        assert result.mode == "bill"
        assert [r.reading_value for r in result.inserted] == [1000, 1062]
        assert [r.source_ref for r in result.inserted] == ["upload:jan.pdf#1", "upload:jan.pdf#2"]
        assert all(r.source == ReadingSource.BILL_PDF for r in result.inserted)
        assert len(result.removed) == 1
        assert result.charges_upserted[0].total_charges_cad == 98.41
        assert list(result.stats_by_utility) == ["gas"]
        assert result.daily_rows_rebuilt == 31

    @pytest.mark.asyncio
    async def test_reimport_is_idempotent(self, service, house, bill_extractor, store):
        bill_extractor.extract.return_value = _gas_bill()
        first = await service.ingest_bill(house.id, b"%PDF-1.7 fake", "jan.pdf")
        second = await service.ingest_bill(house.id, b"%PDF-1.7 fake", "jan.pdf")

        assert second.inserted == []
        assert len(second.removed) == 3
        assert second.charges_upserted[0].id == first.charges_upserted[0].id
        assert len(await store.list_readings(house.id)) == 2

    @pytest.mark.asyncio
    async def test_utility_override_passed_to_extractor(self, service, house, bill_extractor):
        bill_extractor.extract.return_value = _gas_bill()
        await service.ingest_bill(house.id, b"%PDF-1.7 fake", "jan.pdf", utility_type="GAS", timezone="America/Toronto")
        bill_extractor.extract.assert_awaited_once_with(
            b"%PDF-1.7 fake", "jan.pdf", "America/Toronto", UtilityType.GAS,
        )

    @pytest.mark.asyncio
    async def test_empty_upload(self, service, house, bill_extractor):
        with pytest.raises(InputValidationError):
            await service.ingest_bill(house.id, b"", "jan.pdf")
        bill_extractor.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oversized_upload(self, store, mock_settings, house, bill_extractor):
        settings = mock_settings.model_copy(update={"max_upload_bytes": 10})
        service = _service(store, settings, bill_extractor=bill_extractor)
        with pytest.raises(InputValidationError):
            await service.ingest_bill(house.id, b"%PDF-1.7 way too large", "jan.pdf")

    @pytest.mark.asyncio
    async def test_nothing_extracted(self, service, house, bill_extractor):
        bill_extractor.extract.return_value = BillExtraction(rejected=[{"item": {}, "reason": "empty"}])
        with pytest.raises(ExtractionError) as exc_info:
            await service.ingest_bill(house.id, b"%PDF-1.7 fake", "jan.pdf")
        assert exc_info.value.details["rejected"][0]["reason"] == "empty"

    @pytest.mark.asyncio
    async def test_utility_not_allowed(self, service, coach, bill_extractor, store):
        bill_extractor.extract.return_value = _gas_bill()
        with pytest.raises(InputValidationError):
            await service.ingest_bill(coach.id, b"%PDF-1.7 fake", "jan.pdf")
        assert await store.list_readings(coach.id) == []

    @pytest.mark.asyncio
    async def test_out_of_order_read_needs_review(self, service, house, bill_extractor, store):
        await store.append_reading(make_meter_read(house.id, 2000, at("2025-01-15"), utility_type=UtilityType.GAS))
        bill_extractor.extract.return_value = _gas_bill()

        with pytest.raises(ReviewRequiredError):
            await service.ingest_bill(house.id, b"%PDF-1.7 fake", "jan.pdf")
        assert len(await store.list_readings(house.id)) == 1

    @pytest.mark.asyncio
    async def test_failed_charge_write_leaves_no_readings(self, service, house, bill_extractor, store, monkeypatch):
        def fail(charge):
            raise PersistenceError("Storage operation 'record_bill' failed.", operation="record_bill")

        monkeypatch.setattr(store, "_stage_charge", fail)
        bill_extractor.extract.return_value = _gas_bill()

        with pytest.raises(PersistenceError):
            await service.ingest_bill(house.id, b"%PDF-1.7 fake", "jan.pdf")
        assert await store.list_readings(house.id) == []
        assert await store.latest_bill_charge(house.id, UtilityType.GAS) is None
        assert await store.list_daily_series(house.id) == []


class TestMeterImageIngest:
    @pytest.mark.asyncio
    async def test_digit_artifact_corrected(self, service, house, store, photo_extractor):
        await store.append_reading(make_meter_read(house.id, 1000, at("2025-03-01")))
        photo_extractor.extract.return_value = _photo()

        result = await service.ingest_meter_image(b"\xff\xd8photo", "meter.jpg")

        assert result.mode == "meter_image"
        reading = result.inserted[0]
        assert reading.reading_value == 1105
        assert reading.correction_note == result.correction_note
        assert result.correction_note is not None
        assert reading.bill_id == "meter-image-345185639"
        assert reading.source_ref == "meter-image:meter.jpg"
        assert reading.source == ReadingSource.METER_PHOTO
        assert result.mapped_by == "identifier"
        assert result.mapped_meter.unit_name == "House"
        assert result.stats_by_utility["electricity"].latest_delta.usage == 105

    @pytest.mark.asyncio
    async def test_missing_timestamp_uses_clock(self, service, house, photo_extractor):
        photo_extractor.extract.return_value = _photo(value=1000).model_copy(update={"captured_at": None})
        result = await service.ingest_meter_image(b"\xff\xd8photo", "meter.jpg")
        assert result.inserted[0].captured_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_candidate_identifier_match(self, service, coach, photo_extractor):
        photo_extractor.extract.return_value = _photo(
            identifier="1EA2-77", value=5000, meter_identifier_candidates=["345-185-645"],
        )
        result = await service.ingest_meter_image(b"\xff\xd8photo", "meter.jpg")
        assert result.mapped_by == "candidate_identifier_match"
        assert result.resolved_meter_identifier == "345185645"
        assert result.meter_identifier == "1EA2-77"
        assert result.inserted[0].unit_id == coach.id

    @pytest.mark.asyncio
    async def test_unknown_identifier(self, service, photo_extractor):
        photo_extractor.extract.return_value = _photo(identifier="999999999", meter_identifier_candidates=["123456"])
        with pytest.raises(MappingError) as exc_info:
            await service.ingest_meter_image(b"\xff\xd8photo", "meter.jpg")
        assert exc_info.value.details["identifier_candidates_tried"] == ["999999999", "123456"]

    @pytest.mark.asyncio
    async def test_selected_unit_must_match_mapping(self, service, coach, photo_extractor, store):
        photo_extractor.extract.return_value = _photo()
        with pytest.raises(MappingError) as exc_info:
            await service.ingest_meter_image(b"\xff\xd8photo", "meter.jpg", unit_id=str(coach.id))
        assert exc_info.value.details["mapped_unit_name"] == "House"
        assert await store.list_readings(coach.id) == []

    @pytest.mark.asyncio
    async def test_mapped_unit_not_provisioned(self, service, photo_extractor):
        photo_extractor.extract.return_value = _photo(identifier="348819731", value=5000)
        with pytest.raises(NotFoundError):
            await service.ingest_meter_image(b"\xff\xd8photo", "meter.jpg")

    @pytest.mark.asyncio
    async def test_manual_unit_override(self, service, coach, photo_extractor):
        photo_extractor.extract.return_value = _photo(identifier="000111", value=4321)
        result = await service.ingest_meter_image(
            b"\xff\xd8photo", "meter.jpg", unit_id=str(coach.id), manual_unit_override=True,
        )
        assert result.mapped_by == "manual_unit_override"
        assert result.inserted[0].unit_id == coach.id
        assert result.inserted[0].reading_value == 4321

    @pytest.mark.asyncio
    async def test_override_requires_unit(self, service, photo_extractor):
        with pytest.raises(InputValidationError):
            await service.ingest_meter_image(b"\xff\xd8photo", "meter.jpg", manual_unit_override=True)
        photo_extractor.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_implausible_reading_flagged(self, service, house, store, photo_extractor):
        await store.append_reading(make_meter_read(house.id, 1000, at("2025-03-01")))
        photo_extractor.extract.return_value = _photo(value=50000, captured_at=at("2025-03-02"))

        with pytest.raises(ReviewRequiredError) as exc_info:
            await service.ingest_meter_image(b"\xff\xd8photo", "meter.jpg")

        details = exc_info.value.details
        assert details["reading_value"] == 50000
        assert details["previous_value"] == 1000
        assert details["meter_identifier"] == "345185639"
        assert len(await store.list_readings(house.id)) == 1


class RacingStore(InMemoryUtilityStore):
    """Another writer lands a reading just before the first checked insert."""

    def __init__(self, units, intruder):
        super().__init__(units)
        self._intruder = intruder
        self.checked_attempts = 0

    async def append_reading(self, reading, *, expected_latest_id=NO_CHECK):
        if expected_latest_id is not NO_CHECK:
            self.checked_attempts += 1
            if self._intruder is not None:
                self._readings.append(self._intruder)
                self._intruder = None
        return await super().append_reading(reading, expected_latest_id=expected_latest_id)


class ContendedStore(InMemoryUtilityStore):
    async def latest_reading_id(self, unit_id, utility_type):
        return uuid4()


class FlakyRebuildStore(InMemoryUtilityStore):
    def __init__(self, units, failures):
        super().__init__(units)
        self.failures = failures

    async def rebuild_daily_series(self, unit_id, rows):
        if self.failures:
            self.failures -= 1
            raise PersistenceError("connection reset")
        return await super().rebuild_daily_series(unit_id, rows)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_conflict_retried_against_fresh_history(self, house, mock_settings):
        store = RacingStore([house], intruder=make_meter_read(house.id, 1010, at("2025-03-05")))
        await store.append_reading(make_meter_read(house.id, 1000, at("2025-03-01")))
        service = _service(store, mock_settings)

        result = await service.ingest_manual(_manual(house, 1030, "2025-03-11T12:00:00"))

        assert store.checked_attempts == 2
        assert result.inserted[0].reading_value == 1030
        assert [r.reading_value for r in await store.list_readings(house.id)] == [1000, 1010, 1030]

    @pytest.mark.asyncio
    async def test_retry_revalidates(self, house, mock_settings):
        store = RacingStore([house], intruder=make_meter_read(house.id, 1050, at("2025-03-05")))
        await store.append_reading(make_meter_read(house.id, 1000, at("2025-03-01")))
        service = _service(store, mock_settings)

        with pytest.raises(ReviewRequiredError):
            await service.ingest_manual(_manual(house, 1030, "2025-03-11T12:00:00"))

    @pytest.mark.asyncio
    async def test_persistent_conflict_raises(self, house, mock_settings):
        service = _service(ContendedStore([house]), mock_settings)
        with pytest.raises(ReadingConflictError):
            await service.ingest_manual(_manual(house, 1000, "2025-03-01T12:00:00"))


class TestRebuild:
    @pytest.mark.asyncio
    async def test_rebuild_retried_once(self, house, mock_settings):
        store = FlakyRebuildStore([house], failures=1)
        await store.append_reading(make_meter_read(house.id, 1000, at("2025-03-01")))
        result = await _service(store, mock_settings).ingest_manual(_manual(house, 1030, "2025-03-11T12:00:00"))
        assert result.daily_rows_rebuilt == 10

    @pytest.mark.asyncio
    async def test_rebuild_failure_raised_after_write(self, house, mock_settings):
        store = FlakyRebuildStore([house], failures=2)
        with pytest.raises(PersistenceError) as exc_info:
            await _service(store, mock_settings).ingest_manual(_manual(house, 1000, "2025-03-01T12:00:00"))
        assert "rebuild" in exc_info.value.message
        assert len(await store.list_readings(house.id)) == 1


class TestReportsAndSummary:
    @pytest.mark.asyncio
    async def test_report_window(self, service, house):
        await service.ingest_manual(_manual(house, 1000, "2025-03-01T12:00:00"))
        await service.ingest_manual(_manual(house, 1030, "2025-03-11T12:00:00"))

        unit, units, days, rows = await service.report(str(house.id), 30)
        assert unit.id == house.id
        assert days == 30
        assert {u.name for u in units} == {"House", "Coach"}
        assert len(rows) == 10

        _, _, _, rows = await service.report(str(house.id), 5)
        assert [r.day for r in rows] == [date(2025, 3, d) for d in range(7, 12)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("requested,clamped", [(0, 1), (-4, 1), (367, 366), (1000, 366)])
    async def test_report_days_clamped(self, service, house, requested, clamped):
        _, _, days, _ = await service.report(str(house.id), requested)
        assert days == clamped

    @pytest.mark.asyncio
    async def test_report_without_unit_covers_all_units(self, service, house, coach):
        await service.ingest_manual(_manual(house, 1000, "2025-03-09T12:00:00"))
        await service.ingest_manual(_manual(house, 1010, "2025-03-11T12:00:00"))
        await service.ingest_manual(_manual(coach, 500, "2025-03-09T12:00:00"))
        await service.ingest_manual(_manual(coach, 506, "2025-03-11T12:00:00"))

        unit, units, _, rows = await service.report(None, 7)

        assert unit is None
        assert len(units) == 2
        assert {r.unit_id for r in rows} == {house.id, coach.id}
        assert [r.day for r in rows] == sorted(r.day for r in rows)

    @pytest.mark.asyncio
    async def test_summary_covers_allowed_utilities(self, service, house):
        unit, stats = await service.summary(str(house.id))
        assert unit.name == "House"
        assert set(stats) == {"electricity", "gas"}
        assert stats["gas"].windows["30d"].cost is not None

    @pytest.mark.asyncio
    async def test_summary_reports_current_and_month_end_reads(self, service, house):
        await service.ingest_manual(_manual(house, 900, "2025-02-27T12:00:00"))
        await service.ingest_manual(_manual(house, 1030, "2025-03-11T12:00:00"))

        _, stats = await service.summary(str(house.id))

        assert stats["electricity"].current_read.value == 1030
        assert stats["electricity"].last_month_end_read.value == 900
        assert stats["gas"].current_read is None

    @pytest.mark.asyncio
    async def test_summary_unknown_unit(self, service):
        with pytest.raises(NotFoundError):
            await service.summary(str(uuid4()))

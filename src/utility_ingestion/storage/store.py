"""SQLAlchemy-backed ``UtilityStore``.

Each operation opens its own session and transaction; ORM rows never leave
this module, callers only see the pydantic domain models.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Iterable
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from utility_ingestion.errors import PersistenceError, ReadingConflictError
from utility_ingestion.models.schema import (
    BillCharge,
    DailyConsumptionRow,
    MeterReading,
    Unit,
    UtilityType,
    WeatherDay,
)
from utility_ingestion.storage.interface import NO_CHECK, UtilityStore
from utility_ingestion.storage.models import (
    DailyConsumption,
    MeterReadingRecord,
    RentalUnit,
    UtilityBillCharge,
    WeatherDaily,
)
from utility_ingestion.storage.repositories import (
    BillChargeRepo,
    DailyConsumptionRepo,
    MeterReadingRepo,
    UnitRepo,
    WeatherRepo,
)

logger = structlog.get_logger(__name__)


# ── Row <-> model mapping ────────────────────────────────────────────────────


def _unit_from_row(row: RentalUnit) -> Unit:
    return Unit(id=row.id, name=row.name, location=row.location, utility_types=list(row.utility_types or []))


def _reading_from_row(row: MeterReadingRecord) -> MeterReading:
    return MeterReading(
        id=row.id,
        unit_id=row.unit_id,
        utility_type=row.utility_type,
        entry_type=row.entry_type,
        captured_at=row.captured_at,
        period_start=row.period_start,
        period_end=row.period_end,
        reading_value=row.reading_value,
        reading_unit=row.reading_unit,
        confidence=row.confidence,
        evidence=row.evidence or "",
        bill_id=row.bill_id,
        is_opening=row.is_opening,
        review_status=row.review_status,
        source=row.source,
        source_ref=row.source_ref or "",
        correction_note=row.correction_note,
        created_at=row.created_at,
    )


def _reading_to_row(reading: MeterReading) -> MeterReadingRecord:
    return MeterReadingRecord(**reading.model_dump(mode="python"))


def _charge_from_row(row: UtilityBillCharge) -> BillCharge:
    return BillCharge(
        id=row.id,
        unit_id=row.unit_id,
        utility_type=row.utility_type,
        bill_id=row.bill_id,
        period_start=row.period_start,
        period_end=row.period_end,
        total_charges_cad=row.total_charges_cad,
        currency=row.currency,
        confidence=row.confidence,
        evidence=row.evidence or "",
    )


def _daily_from_row(row: DailyConsumption) -> DailyConsumptionRow:
    return DailyConsumptionRow(
        unit_id=row.unit_id,
        utility_type=row.utility_type,
        usage_unit=row.usage_unit,
        day=row.day,
        consumption=row.consumption,
        source=row.source,
        temp_avg_c=row.temp_avg_c,
        hdd=row.hdd,
        cdd=row.cdd,
        precipitation_mm=row.precipitation_mm,
    )


def _weather_from_row(row: WeatherDaily) -> WeatherDay:
    return WeatherDay(
        day=row.weather_date,
        location=row.location,
        temp_min_c=row.temp_min_c,
        temp_max_c=row.temp_max_c,
        temp_avg_c=row.temp_avg_c,
        precipitation_mm=row.precipitation_mm,
        hdd=row.hdd,
        cdd=row.cdd,
    )


class SqlUtilityStore(UtilityStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str):
        """Session with an open transaction; driver errors become ``PersistenceError``."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            logger.error("storage_operation_failed", operation=operation, error=str(exc))
            raise PersistenceError(f"Storage operation '{operation}' failed.", operation=operation) from exc

    # ── Units ────────────────────────────────────────────────────────────

    async def get_unit(self, unit_id: UUID) -> Unit | None:
        async with self._transaction("get_unit") as session:
            row = await UnitRepo(session).get_by_id(unit_id)
            return _unit_from_row(row) if row else None

    async def get_unit_by_name(self, name: str) -> Unit | None:
        async with self._transaction("get_unit_by_name") as session:
            row = await UnitRepo(session).get_by_name(name)
            return _unit_from_row(row) if row else None

    async def list_units(self) -> list[Unit]:
        async with self._transaction("list_units") as session:
            return [_unit_from_row(r) for r in await UnitRepo(session).list_all()]

    async def add_unit(self, unit: Unit) -> Unit:
        async with self._transaction("add_unit") as session:
            row = await UnitRepo(session).create(RentalUnit(
                id=unit.id,
                name=unit.name,
                location=unit.location,
                utility_types=[str(u) for u in unit.utility_types],
            ))
            return _unit_from_row(row)

    # ── Readings ─────────────────────────────────────────────────────────

    async def recent_meter_reads(self, unit_id, utility_type, *, before=None, limit=12):
        async with self._transaction("recent_meter_reads") as session:
            rows = await MeterReadingRepo(session).recent_meter_reads(
                unit_id, str(utility_type), before=before, limit=limit,
            )
            return [_reading_from_row(r) for r in rows]

    async def next_meter_read(self, unit_id, utility_type, after):
        async with self._transaction("next_meter_read") as session:
            row = await MeterReadingRepo(session).next_meter_read(unit_id, str(utility_type), after)
            return _reading_from_row(row) if row else None

    async def latest_reading_id(self, unit_id, utility_type):
        async with self._transaction("latest_reading_id") as session:
            return await MeterReadingRepo(session).latest_id(unit_id, str(utility_type))

    async def append_reading(self, reading, *, expected_latest_id=NO_CHECK):
        async with self._transaction("append_reading") as session:
            repo = MeterReadingRepo(session)
            if expected_latest_id is not NO_CHECK:
                await UnitRepo(session).lock(reading.unit_id)
                current = await repo.latest_id(reading.unit_id, str(reading.utility_type))
                if current != expected_latest_id:
                    raise ReadingConflictError(
                        "A newer reading was recorded for this meter while this one was being validated.",
                        unit_id=str(reading.unit_id),
                        utility_type=str(reading.utility_type),
                    )
            row = await repo.create(_reading_to_row(reading))
            return _reading_from_row(row)

    async def find_existing(self, unit_id: UUID, captured_at: Iterable[datetime]) -> list[MeterReading]:
        async with self._transaction("find_existing") as session:
            rows = await MeterReadingRepo(session).find_by_captured_at(unit_id, list(captured_at))
            return [_reading_from_row(r) for r in rows]

    async def list_readings(self, unit_id, utility_type=None):
        async with self._transaction("list_readings") as session:
            rows = await MeterReadingRepo(session).list_for_unit(
                unit_id, str(utility_type) if utility_type else None,
            )
            return [_reading_from_row(r) for r in rows]

    async def last_billed_period_end(self, unit_id: UUID, utility_type: UtilityType) -> date | None:
        async with self._transaction("last_billed_period_end") as session:
            return await MeterReadingRepo(session).last_billed_period_end(unit_id, str(utility_type))

    # ── Bill charges ─────────────────────────────────────────────────────

    async def upsert_bill_charge(self, charge):
        async with self._transaction("upsert_bill_charge") as session:
            row = await BillChargeRepo(session).upsert(UtilityBillCharge(**charge.model_dump(mode="python")))
            return _charge_from_row(row)

    async def latest_bill_charge(self, unit_id, utility_type):
        async with self._transaction("latest_bill_charge") as session:
            row = await BillChargeRepo(session).latest(unit_id, str(utility_type))
            return _charge_from_row(row) if row else None

    async def record_bill(self, readings, charges):
        async with self._transaction("record_bill") as session:
            if readings:
                await MeterReadingRepo(session).create_many([_reading_to_row(r) for r in readings])
            charge_repo = BillChargeRepo(session)
            rows = [
                await charge_repo.upsert(UtilityBillCharge(**c.model_dump(mode="python")))
                for c in charges
            ]
            return list(readings), [_charge_from_row(r) for r in rows]

    # ── Daily series ─────────────────────────────────────────────────────

    async def rebuild_daily_series(self, unit_id, rows):
        async with self._transaction("rebuild_daily_series") as session:
            return await DailyConsumptionRepo(session).replace_for_unit(
                unit_id, [DailyConsumption(**r.model_dump(mode="python")) for r in rows],
            )

    async def list_daily_series(self, unit_id, *, start=None, end=None, utility_type=None):
        async with self._transaction("list_daily_series") as session:
            rows = await DailyConsumptionRepo(session).list_for_unit(
                unit_id, start=start, end=end, utility_type=str(utility_type) if utility_type else None,
            )
            return [_daily_from_row(r) for r in rows]

    # ── Weather ──────────────────────────────────────────────────────────

    async def upsert_weather_day(self, weather):
        async with self._transaction("upsert_weather_day") as session:
            row = await WeatherRepo(session).upsert(WeatherDaily(
                weather_date=weather.day,
                location=weather.location,
                temp_min_c=weather.temp_min_c,
                temp_max_c=weather.temp_max_c,
                temp_avg_c=weather.temp_avg_c,
                precipitation_mm=weather.precipitation_mm,
                hdd=weather.hdd,
                cdd=weather.cdd,
            ))
            return _weather_from_row(row)

    async def list_weather(self, *, start=None, end=None):
        async with self._transaction("list_weather") as session:
            return [_weather_from_row(r) for r in await WeatherRepo(session).list_range(start=start, end=end)]

"""Async CRUD repositories for all storage models."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from utility_ingestion.storage.models import (
    DailyConsumption,
    MeterReadingRecord,
    RentalUnit,
    UtilityBillCharge,
    WeatherDaily,
)


# ── Units ────────────────────────────────────────────────────────────────────


class UnitRepo:
    """CRUD operations for the ``rental_unit`` table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, unit: RentalUnit) -> RentalUnit:
        self._session.add(unit)
        await self._session.flush()
        await self._session.refresh(unit)
        return unit

    async def get_by_id(self, unit_id: UUID) -> RentalUnit | None:
        stmt = select(RentalUnit).where(RentalUnit.id == unit_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str) -> RentalUnit | None:
        stmt = select(RentalUnit).where(RentalUnit.name == name)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def lock(self, unit_id: UUID) -> RentalUnit | None:
        """``SELECT ... FOR UPDATE`` on the unit row to serialise meter writes."""
        stmt = select(RentalUnit).where(RentalUnit.id == unit_id).with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> list[RentalUnit]:
        result = await self._session.execute(select(RentalUnit).order_by(RentalUnit.name))
        return list(result.scalars().all())


# ── Meter readings ───────────────────────────────────────────────────────────


class MeterReadingRepo:
    """Append and query operations for the ``meter_reading`` table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, reading: MeterReadingRecord) -> MeterReadingRecord:
        self._session.add(reading)
        await self._session.flush()
        await self._session.refresh(reading)
        return reading

    async def create_many(self, readings: list[MeterReadingRecord]) -> list[MeterReadingRecord]:
        self._session.add_all(readings)
        await self._session.flush()
        return readings

    def _approved_meter_reads(self, unit_id: UUID, utility_type: str):
        return select(MeterReadingRecord).where(
            MeterReadingRecord.unit_id == unit_id,
            MeterReadingRecord.utility_type == utility_type,
            MeterReadingRecord.entry_type == "meter_read",
            MeterReadingRecord.review_status == "approved",
        )

    async def recent_meter_reads(
        self,
        unit_id: UUID,
        utility_type: str,
        *,
        before: datetime | None = None,
        limit: int = 12,
    ) -> list[MeterReadingRecord]:
        stmt = self._approved_meter_reads(unit_id, utility_type)
        if before is not None:
            stmt = stmt.where(MeterReadingRecord.captured_at < before)
        stmt = stmt.order_by(MeterReadingRecord.captured_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def next_meter_read(self, unit_id: UUID, utility_type: str, after: datetime) -> MeterReadingRecord | None:
        stmt = (
            self._approved_meter_reads(unit_id, utility_type)
            .where(MeterReadingRecord.captured_at > after)
            .order_by(MeterReadingRecord.captured_at.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def latest_id(self, unit_id: UUID, utility_type: str) -> UUID | None:
        stmt = (
            select(MeterReadingRecord.id)
            .where(
                MeterReadingRecord.unit_id == unit_id,
                MeterReadingRecord.utility_type == utility_type,
            )
            .order_by(MeterReadingRecord.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_captured_at(self, unit_id: UUID, captured_at: list[datetime]) -> list[MeterReadingRecord]:
        if not captured_at:
            return []
        stmt = select(MeterReadingRecord).where(
            MeterReadingRecord.unit_id == unit_id,
            MeterReadingRecord.captured_at.in_(captured_at),
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_unit(self, unit_id: UUID, utility_type: str | None = None) -> list[MeterReadingRecord]:
        stmt = select(MeterReadingRecord).where(MeterReadingRecord.unit_id == unit_id)
        if utility_type is not None:
            stmt = stmt.where(MeterReadingRecord.utility_type == utility_type)
        stmt = stmt.order_by(MeterReadingRecord.captured_at.asc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def last_billed_period_end(self, unit_id: UUID, utility_type: str) -> date | None:
        stmt = select(func.max(MeterReadingRecord.period_end)).where(
            MeterReadingRecord.unit_id == unit_id,
            MeterReadingRecord.utility_type == utility_type,
            MeterReadingRecord.entry_type == "billed_usage",
            MeterReadingRecord.review_status == "approved",
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


# ── Bill charges ─────────────────────────────────────────────────────────────


class BillChargeRepo:
    """Upsert and query operations for the ``utility_bill_charge`` table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find(
        self,
        unit_id: UUID,
        utility_type: str,
        bill_id: str | None,
        period_start: date | None,
        period_end: date | None,
    ) -> UtilityBillCharge | None:
        sentinel = date(1900, 1, 1)
        stmt = select(UtilityBillCharge).where(
            UtilityBillCharge.unit_id == unit_id,
            UtilityBillCharge.utility_type == utility_type,
            func.coalesce(UtilityBillCharge.bill_id, "") == (bill_id or ""),
            func.coalesce(UtilityBillCharge.period_start, sentinel) == (period_start or sentinel),
            func.coalesce(UtilityBillCharge.period_end, sentinel) == (period_end or sentinel),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, charge: UtilityBillCharge) -> UtilityBillCharge:
        existing = await self.find(
            charge.unit_id, charge.utility_type, charge.bill_id, charge.period_start, charge.period_end,
        )
        if existing is None:
            self._session.add(charge)
            await self._session.flush()
            await self._session.refresh(charge)
            return charge
        existing.total_charges_cad = charge.total_charges_cad
        existing.currency = charge.currency
        existing.confidence = charge.confidence
        existing.evidence = charge.evidence
        await self._session.flush()
        return existing

    async def latest(self, unit_id: UUID, utility_type: str) -> UtilityBillCharge | None:
        stmt = (
            select(UtilityBillCharge)
            .where(UtilityBillCharge.unit_id == unit_id, UtilityBillCharge.utility_type == utility_type)
            .order_by(UtilityBillCharge.period_end.desc().nulls_last(), UtilityBillCharge.updated_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


# ── Daily series ─────────────────────────────────────────────────────────────


class DailyConsumptionRepo:
    """Drop-and-recompute cache of the per-day series."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def replace_for_unit(self, unit_id: UUID, rows: list[DailyConsumption]) -> int:
        await self._session.execute(delete(DailyConsumption).where(DailyConsumption.unit_id == unit_id))
        self._session.add_all(rows)
        await self._session.flush()
        return len(rows)

    async def list_for_unit(
        self,
        unit_id: UUID,
        *,
        start: date | None = None,
        end: date | None = None,
        utility_type: str | None = None,
    ) -> list[DailyConsumption]:
        stmt = select(DailyConsumption).where(DailyConsumption.unit_id == unit_id)
        if start is not None:
            stmt = stmt.where(DailyConsumption.day >= start)
        if end is not None:
            stmt = stmt.where(DailyConsumption.day <= end)
        if utility_type is not None:
            stmt = stmt.where(DailyConsumption.utility_type == utility_type)
        stmt = stmt.order_by(
            DailyConsumption.utility_type, DailyConsumption.day, DailyConsumption.source,
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ── Weather ──────────────────────────────────────────────────────────────────


class WeatherRepo:
    """Upsert and range queries for the ``weather_daily`` table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def upsert(self, weather: WeatherDaily) -> WeatherDaily:
        merged = await self._session.merge(weather)
        await self._session.flush()
        return merged

    async def list_range(self, *, start: date | None = None, end: date | None = None) -> list[WeatherDaily]:
        stmt = select(WeatherDaily)
        if start is not None:
            stmt = stmt.where(WeatherDaily.weather_date >= start)
        if end is not None:
            stmt = stmt.where(WeatherDaily.weather_date <= end)
        result = await self._session.execute(stmt.order_by(WeatherDaily.weather_date))
        return list(result.scalars().all())

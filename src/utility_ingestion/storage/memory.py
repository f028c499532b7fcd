"""In-memory ``UtilityStore`` for tests and local experiments."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Iterable
from uuid import UUID

from utility_ingestion.errors import ReadingConflictError
from utility_ingestion.models.schema import (
    BillCharge,
    DailyConsumptionRow,
    EntryType,
    MeterReading,
    ReviewStatus,
    Unit,
    UtilityType,
    WeatherDay,
)
from utility_ingestion.storage.interface import NO_CHECK, UtilityStore


class InMemoryUtilityStore(UtilityStore):
    def __init__(self, units: Iterable[Unit] = ()):
        self._units: dict[UUID, Unit] = {u.id: u for u in units}
        self._readings: list[MeterReading] = []
        self._charges: dict[tuple, BillCharge] = {}
        self._daily: dict[UUID, list[DailyConsumptionRow]] = {}
        self._weather: dict[date, WeatherDay] = {}
        self._lock = asyncio.Lock()

    # ── Units ────────────────────────────────────────────────────────────

    async def get_unit(self, unit_id: UUID) -> Unit | None:
        return self._units.get(unit_id)

    async def get_unit_by_name(self, name: str) -> Unit | None:
        return next((u for u in self._units.values() if u.name == name), None)

    async def list_units(self) -> list[Unit]:
        return sorted(self._units.values(), key=lambda u: u.name)

    async def add_unit(self, unit: Unit) -> Unit:
        self._units[unit.id] = unit
        return unit

    # ── Readings ─────────────────────────────────────────────────────────

    def _meter_reads(self, unit_id: UUID, utility_type: UtilityType) -> list[MeterReading]:
        return [
            r for r in self._readings
            if r.unit_id == unit_id
            and r.utility_type == utility_type
            and r.entry_type == EntryType.METER_READ
            and r.review_status == ReviewStatus.APPROVED
        ]

    async def recent_meter_reads(self, unit_id, utility_type, *, before=None, limit=12):
        reads = self._meter_reads(unit_id, utility_type)
        if before is not None:
            reads = [r for r in reads if r.captured_at < before]
        reads.sort(key=lambda r: r.captured_at, reverse=True)
        return reads[:limit]

    async def next_meter_read(self, unit_id, utility_type, after):
        later = [r for r in self._meter_reads(unit_id, utility_type) if r.captured_at > after]
        return min(later, key=lambda r: r.captured_at, default=None)

    async def latest_reading_id(self, unit_id, utility_type):
        for reading in reversed(self._readings):
            if reading.unit_id == unit_id and reading.utility_type == utility_type:
                return reading.id
        return None

    async def append_reading(self, reading, *, expected_latest_id=NO_CHECK):
        async with self._lock:
            if expected_latest_id is not NO_CHECK:
                current = await self.latest_reading_id(reading.unit_id, reading.utility_type)
                if current != expected_latest_id:
                    raise ReadingConflictError(
                        "A newer reading was recorded for this meter while this one was being validated.",
                        unit_id=str(reading.unit_id),
                        utility_type=str(reading.utility_type),
                    )
            self._readings.append(reading)
        return reading

    async def find_existing(self, unit_id, captured_at):
        instants = set(captured_at)
        return [r for r in self._readings if r.unit_id == unit_id and r.captured_at in instants]

    async def list_readings(self, unit_id, utility_type=None):
        readings = [
            r for r in self._readings
            if r.unit_id == unit_id and (utility_type is None or r.utility_type == utility_type)
        ]
        return sorted(readings, key=lambda r: r.captured_at)

    async def last_billed_period_end(self, unit_id, utility_type):
        ends = [
            r.period_end for r in self._readings
            if r.unit_id == unit_id
            and r.utility_type == utility_type
            and r.entry_type == EntryType.BILLED_USAGE
            and r.review_status == ReviewStatus.APPROVED
            and r.period_end is not None
        ]
        return max(ends, default=None)

    # ── Bill charges ─────────────────────────────────────────────────────

    def _stage_charge(self, charge: BillCharge) -> tuple[tuple, BillCharge]:
        key = charge.upsert_key()
        existing = self._charges.get(key)
        if existing is not None:
            charge = charge.model_copy(update={"id": existing.id})
        return key, charge

    async def upsert_bill_charge(self, charge):
        key, charge = self._stage_charge(charge)
        self._charges[key] = charge
        return charge

    async def record_bill(self, readings, charges):
        async with self._lock:
            staged = dict(self._stage_charge(c) for c in charges)
            self._readings.extend(readings)
            self._charges.update(staged)
        return list(readings), list(staged.values())

    async def latest_bill_charge(self, unit_id, utility_type):
        charges = [c for c in self._charges.values() if c.unit_id == unit_id and c.utility_type == utility_type]
        return max(charges, key=lambda c: c.period_end or date.min, default=None)

    # ── Daily series ─────────────────────────────────────────────────────

    async def rebuild_daily_series(self, unit_id, rows):
        self._daily[unit_id] = list(rows)
        return len(rows)

    async def list_daily_series(self, unit_id, *, start=None, end=None, utility_type=None):
        return [
            r for r in self._daily.get(unit_id, [])
            if (start is None or r.day >= start)
            and (end is None or r.day <= end)
            and (utility_type is None or r.utility_type == utility_type)
        ]

    # ── Weather ──────────────────────────────────────────────────────────

    async def upsert_weather_day(self, weather):
        self._weather[weather.day] = weather
        return weather

    async def list_weather(self, *, start=None, end=None):
        return [
            w for day, w in sorted(self._weather.items())
            if (start is None or day >= start) and (end is None or day <= end)
        ]

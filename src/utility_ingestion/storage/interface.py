"""Abstract persistence interface for units, readings, charges and the daily series.

The ingestion service only talks to this interface, so the SQLAlchemy store
and the in-memory store used by tests are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Iterable
from uuid import UUID

from utility_ingestion.models.schema import (
    BillCharge,
    DailyConsumptionRow,
    MeterReading,
    Unit,
    UtilityType,
    WeatherDay,
)


class _NoCheck:
    def __repr__(self) -> str:
        return "NO_CHECK"


NO_CHECK = _NoCheck()
"""Sentinel for ``append_reading``: skip the optimistic latest-reading check."""


class UtilityStore(ABC):
    """Storage operations needed by ingestion, reports and summaries."""

    # ── Units ────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_unit(self, unit_id: UUID) -> Unit | None:
        ...

    @abstractmethod
    async def get_unit_by_name(self, name: str) -> Unit | None:
        ...

    @abstractmethod
    async def list_units(self) -> list[Unit]:
        ...

    @abstractmethod
    async def add_unit(self, unit: Unit) -> Unit:
        ...

    # ── Readings ─────────────────────────────────────────────────────────

    @abstractmethod
    async def recent_meter_reads(
        self,
        unit_id: UUID,
        utility_type: UtilityType,
        *,
        before: datetime | None = None,
        limit: int = 12,
    ) -> list[MeterReading]:
        """Approved meter reads captured strictly before *before*, newest first."""

    @abstractmethod
    async def next_meter_read(
        self, unit_id: UUID, utility_type: UtilityType, after: datetime
    ) -> MeterReading | None:
        """Earliest approved meter read captured strictly after *after*."""

    @abstractmethod
    async def latest_reading_id(self, unit_id: UUID, utility_type: UtilityType) -> UUID | None:
        """Id of the most recently inserted reading for (unit, utility)."""

    @abstractmethod
    async def append_reading(self, reading: MeterReading, *, expected_latest_id=NO_CHECK) -> MeterReading:
        """Insert one reading.

        When *expected_latest_id* is given, the latest reading id for the
        reading's (unit, utility) is re-read inside the write; a mismatch
        raises ``ReadingConflictError`` and nothing is written.
        """

    @abstractmethod
    async def find_existing(self, unit_id: UUID, captured_at: Iterable[datetime]) -> list[MeterReading]:
        """Persisted readings of *unit_id* captured at any of the given instants."""

    @abstractmethod
    async def list_readings(
        self, unit_id: UUID, utility_type: UtilityType | None = None
    ) -> list[MeterReading]:
        """All readings of a unit ordered by capture time."""

    @abstractmethod
    async def last_billed_period_end(self, unit_id: UUID, utility_type: UtilityType) -> date | None:
        """Latest ``period_end`` among approved billed-usage readings."""

    # ── Bill charges ─────────────────────────────────────────────────────

    @abstractmethod
    async def upsert_bill_charge(self, charge: BillCharge) -> BillCharge:
        ...

    @abstractmethod
    async def latest_bill_charge(self, unit_id: UUID, utility_type: UtilityType) -> BillCharge | None:
        ...

    @abstractmethod
    async def record_bill(
        self, readings: list[MeterReading], charges: list[BillCharge]
    ) -> tuple[list[MeterReading], list[BillCharge]]:
        """Insert a bill's readings and upsert its charges atomically.

        Either every reading and charge is persisted or none is.
        """

    # ── Daily series ─────────────────────────────────────────────────────

    @abstractmethod
    async def rebuild_daily_series(self, unit_id: UUID, rows: list[DailyConsumptionRow]) -> int:
        """Replace every cached daily row of *unit_id* with *rows*; returns the row count."""

    @abstractmethod
    async def list_daily_series(
        self,
        unit_id: UUID,
        *,
        start: date | None = None,
        end: date | None = None,
        utility_type: UtilityType | None = None,
    ) -> list[DailyConsumptionRow]:
        ...

    # ── Weather ──────────────────────────────────────────────────────────

    @abstractmethod
    async def upsert_weather_day(self, weather: WeatherDay) -> WeatherDay:
        ...

    @abstractmethod
    async def list_weather(self, *, start: date | None = None, end: date | None = None) -> list[WeatherDay]:
        ...

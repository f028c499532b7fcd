"""Domain schema for units, readings, charges and the derived daily series.

Readings are immutable facts; the daily series is a cache recomputed from them.
Extraction payload models describe what the AI collaborators return and are
treated as untrusted until they pass these validators.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from enum import StrEnum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from utility_ingestion.units.conversion import normalize_unit_name


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class UtilityType(StrEnum):
    ELECTRICITY = "electricity"
    GAS = "gas"
    WATER = "water"


class EntryType(StrEnum):
    METER_READ = "meter_read"
    BILLED_USAGE = "billed_usage"


class ReviewStatus(StrEnum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReadingSource(StrEnum):
    MANUAL = "manual"
    BILL_PDF = "bill_pdf"
    METER_PHOTO = "meter_photo"


class ApportionmentSource(StrEnum):
    METER_INTERVAL = "meter_interval"
    BILLED_PERIOD = "billed_period"


def default_reading_unit(utility_type: UtilityType | str) -> str:
    """Reading unit assumed when a source omits one."""
    return "m3" if utility_type in (UtilityType.GAS, UtilityType.WATER) else "kWh"


# ---------------------------------------------------------------------------
# Registry entities
# ---------------------------------------------------------------------------


class Unit(BaseModel):
    """A rental unit that reports one or more utilities."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    location: str = "West Vancouver, BC"
    utility_types: list[UtilityType] = Field(default_factory=list)

    def allows(self, utility_type: UtilityType | str) -> bool:
        return utility_type in self.utility_types


class MeterIdentifierMapping(BaseModel):
    """Physical meter identifier → (unit, utility, default reading unit)."""

    unit_name: str
    utility_type: UtilityType
    reading_unit_default: str
    label: str = ""


# ---------------------------------------------------------------------------
# Facts
# ---------------------------------------------------------------------------


class MeterReading(BaseModel):
    """An append-only reading fact: a cumulative meter read or a billed total."""

    id: UUID = Field(default_factory=uuid4)
    unit_id: UUID
    utility_type: UtilityType
    entry_type: EntryType = EntryType.METER_READ
    captured_at: datetime
    period_start: date | None = None
    period_end: date | None = None
    reading_value: float
    reading_unit: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    evidence: str = ""
    bill_id: str | None = None
    is_opening: bool | None = None
    review_status: ReviewStatus = ReviewStatus.APPROVED
    source: ReadingSource = ReadingSource.MANUAL
    source_ref: str = ""
    correction_note: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("reading_unit")
    @classmethod
    def _normalize_unit(cls, value: str) -> str:
        return normalize_unit_name(value)

    @model_validator(mode="after")
    def _check_shape(self) -> MeterReading:
        if not math.isfinite(self.reading_value):
            raise ValueError("reading_value must be a finite number")
        if self.entry_type == EntryType.BILLED_USAGE:
            if self.period_start is None or self.period_end is None:
                raise ValueError("billed_usage entries require period_start and period_end")
            if self.period_end < self.period_start:
                raise ValueError("period_end must not precede period_start")
        return self


class BillCharge(BaseModel):
    """Total monetary charges of one bill, upserted by bill identity."""

    id: UUID = Field(default_factory=uuid4)
    unit_id: UUID
    utility_type: UtilityType
    bill_id: str | None = None
    period_start: date | None = None
    period_end: date | None = None
    total_charges_cad: float = Field(ge=0.0)
    currency: str = "CAD"
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    evidence: str = ""

    def upsert_key(self) -> tuple:
        return (
            self.unit_id,
            self.utility_type,
            self.bill_id or "",
            self.period_start or date(1900, 1, 1),
            self.period_end or date(1900, 1, 1),
        )


class WeatherDay(BaseModel):
    """Daily weather fact joined onto the consumption series by date."""

    day: date
    location: str = "West Vancouver, BC"
    temp_min_c: float | None = None
    temp_max_c: float | None = None
    temp_avg_c: float | None = None
    precipitation_mm: float | None = None
    hdd: float | None = None
    cdd: float | None = None


class DailyConsumptionRow(BaseModel):
    """One apportioned day of consumption (derived, never authoritative)."""

    unit_id: UUID
    utility_type: UtilityType
    usage_unit: str
    day: date
    consumption: float
    source: ApportionmentSource
    temp_avg_c: float | None = None
    hdd: float | None = None
    cdd: float | None = None
    precipitation_mm: float | None = None


# ---------------------------------------------------------------------------
# Extraction payloads (untrusted)
# ---------------------------------------------------------------------------


class ExtractedEntry(BaseModel):
    """A single reading extracted from a bill, or entered manually."""

    entry_type: EntryType
    utility_type: UtilityType
    captured_at: datetime
    reading_value: float
    reading_unit: str
    period_start: date | None = None
    period_end: date | None = None
    is_opening: bool | None = None
    bill_id: str | None = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    evidence: str = ""

    @field_validator("reading_value")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("reading_value must be a finite number")
        return value

    @field_validator("reading_unit")
    @classmethod
    def _normalize_unit(cls, value: str) -> str:
        return normalize_unit_name(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        if value is None:
            return 1.0
        return min(max(float(value), 0.0), 1.0)

    @model_validator(mode="after")
    def _check_period(self) -> ExtractedEntry:
        if self.entry_type == EntryType.BILLED_USAGE:
            if self.period_start is None or self.period_end is None:
                raise ValueError("billed_usage entries require period_start and period_end")
            if self.period_end < self.period_start:
                raise ValueError("period_end must not precede period_start")
        return self


class ExtractedCharge(BaseModel):
    """Bill total charges as read off a PDF."""

    utility_type: UtilityType
    bill_id: str | None = None
    period_start: date | None = None
    period_end: date | None = None
    total_charges_cad: float = Field(ge=0.0)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    evidence: str = ""


class BillExtraction(BaseModel):
    """Validated output of the bill PDF extractor."""

    entries: list[ExtractedEntry] = Field(default_factory=list)
    charges: list[ExtractedCharge] = Field(default_factory=list)
    rejected: list[dict] = Field(default_factory=list)


class ExtractedMeterImage(BaseModel):
    """Validated output of the meter photo extractor."""

    meter_identifier: str
    meter_identifier_candidates: list[str] = Field(default_factory=list)
    reading_value: float
    reading_unit: str | None = None
    captured_at: datetime | None = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    evidence: str = ""

    @field_validator("meter_identifier")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("meter_identifier is required")
        return value.strip()

    @field_validator("reading_value")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("reading_value must be a finite number")
        return value

    @field_validator("meter_identifier_candidates", mode="before")
    @classmethod
    def _candidates(cls, value):
        if not isinstance(value, list):
            return []
        return [str(v) for v in value if v is not None]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ManualEntryRequest(BaseModel):
    """JSON body of a manual reading; loosely typed so bad input maps to validation errors."""

    unit_id: str
    utility_type: str
    entry_type: str = EntryType.METER_READ
    captured_at: str | None = None
    reading_value: float | None = None
    reading_unit: str | None = None
    period_start: str | None = None
    period_end: str | None = None
    bill_id: str | None = None
    is_opening: bool | None = None
    timezone: str | None = None

"""Internal result models passed between reconciliation steps.

These models describe decisions and aggregates; they are not persisted facts.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from utility_ingestion.models.schema import (
    BillCharge,
    ExtractedEntry,
    MeterIdentifierMapping,
    MeterReading,
)


# ---------------------------------------------------------------------------
# Reading Normalizer
# ---------------------------------------------------------------------------


class NormalizationResult(BaseModel):
    """Outcome of validating one photo-sourced meter reading."""

    reading_value: float
    correction_note: str | None = None
    flagged: bool = False
    previous_value: float | None = None
    elapsed_days: float | None = None
    expected_delta: float | None = None
    allowed_range: tuple[float, float] | None = None

    @property
    def corrected(self) -> bool:
        return self.correction_note is not None and not self.flagged


# ---------------------------------------------------------------------------
# Meter Identifier Resolver
# ---------------------------------------------------------------------------


class IdentifierResolution(BaseModel):
    """Best identifier match, or the list of candidates that were tried."""

    identifier: str
    mapping: MeterIdentifierMapping | None = None
    tried: list[str] = Field(default_factory=list)
    mapped_by: str | None = None  # identifier, candidate_identifier_match, manual_unit_override


# ---------------------------------------------------------------------------
# Bill Deduplicator
# ---------------------------------------------------------------------------


class DedupRemoval(BaseModel):
    entry: ExtractedEntry
    reason: str


class DeduplicationResult(BaseModel):
    kept: list[ExtractedEntry] = Field(default_factory=list)
    removed: list[DedupRemoval] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Cost Estimator
# ---------------------------------------------------------------------------


class UsageBucket(BaseModel):
    """Usage in one unit of measure (kWh, GJ, m3) over a window."""

    usage_unit: str
    value: float


class CostLineItem(BaseModel):
    description: str
    quantity: float | None = None
    unit: str | None = None
    rate: float | None = None
    amount_cad: float


class CostEstimate(BaseModel):
    utility_type: str
    days: float
    usage: float
    usage_unit: str
    line_items: list[CostLineItem] = Field(default_factory=list)
    fixed_cad: float
    energy_cad: float
    subtotal_cad: float
    levy_cad: float = 0.0
    tax_cad: float
    total_cad: float
    currency: str = "CAD"
    effective_date: date
    assumptions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Usage statistics
# ---------------------------------------------------------------------------


class LatestDelta(BaseModel):
    usage: float
    days: float
    avg_per_day: float
    unit: str


class UsageTrend(BaseModel):
    latest_avg_per_day: float
    previous_avg_per_day: float
    change_pct: float | None = None
    direction: str  # up, down, flat


class UsageWindow(BaseModel):
    name: str
    start: date | None = None
    end: date | None = None
    days: float
    buckets: list[UsageBucket] = Field(default_factory=list)
    cost: CostEstimate | None = None


class MeterReadSnapshot(BaseModel):
    value: float
    unit: str
    captured_at: datetime


class UsageStats(BaseModel):
    utility_type: str
    current_read: MeterReadSnapshot | None = None
    last_month_end_read: MeterReadSnapshot | None = None
    latest_delta: LatestDelta | None = None
    trend: UsageTrend | None = None
    windows: dict[str, UsageWindow] = Field(default_factory=dict)
    last_bill_charge: BillCharge | None = None


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class IngestResult(BaseModel):
    """Response payload of one successful ingest request."""

    mode: str
    inserted: list[MeterReading] = Field(default_factory=list)
    removed: list[DedupRemoval] = Field(default_factory=list)
    charges_upserted: list[BillCharge] = Field(default_factory=list)
    correction_note: str | None = None
    meter_identifier: str | None = None
    resolved_meter_identifier: str | None = None
    mapped_by: str | None = None
    mapped_meter: MeterIdentifierMapping | None = None
    daily_rows_rebuilt: int = 0
    stats_by_utility: dict[str, UsageStats] = Field(default_factory=dict)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted)

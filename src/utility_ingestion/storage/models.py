"""SQLAlchemy ORM models for units, readings, bill charges, weather and the daily series."""

from __future__ import annotations

from datetime import date, datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class RentalUnit(Base):
    __tablename__ = "rental_unit"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), unique=True)
    location: Mapped[str] = mapped_column(String(200), default="West Vancouver, BC")
    utility_types: Mapped[list] = mapped_column(JSON, default=list)  # subset of electricity, gas, water
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class MeterReadingRecord(Base):
    """Append-only reading fact: a cumulative meter read or a billed usage total."""
    __tablename__ = "meter_reading"
    __table_args__ = (
        Index("ix_meter_reading_unit_utility_captured", "unit_id", "utility_type", "captured_at"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    unit_id: Mapped[UUID] = mapped_column(ForeignKey("rental_unit.id"), index=True)
    utility_type: Mapped[str] = mapped_column(String(20))
    entry_type: Mapped[str] = mapped_column(String(20), default="meter_read")  # meter_read, billed_usage
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    reading_value: Mapped[float] = mapped_column(Float)
    reading_unit: Mapped[str] = mapped_column(String(20))
    confidence: Mapped[float] = mapped_column(Float, default=1.0)
    evidence: Mapped[str] = mapped_column(Text, default="")
    bill_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_opening: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    review_status: Mapped[str] = mapped_column(String(20), default="approved")  # pending_review, approved, rejected
    source: Mapped[str] = mapped_column(String(20), default="manual")  # manual, bill_pdf, meter_photo
    source_ref: Mapped[str] = mapped_column(String(500), default="")
    correction_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class UtilityBillCharge(Base):
    __tablename__ = "utility_bill_charge"
    __table_args__ = (
        Index(
            "uq_utility_bill_charge_identity",
            "unit_id",
            "utility_type",
            text("coalesce(bill_id, '')"),
            text("coalesce(period_start, '1900-01-01'::date)"),
            text("coalesce(period_end, '1900-01-01'::date)"),
            unique=True,
        ),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    unit_id: Mapped[UUID] = mapped_column(ForeignKey("rental_unit.id"), index=True)
    utility_type: Mapped[str] = mapped_column(String(20))
    bill_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_charges_cad: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(3), default="CAD")
    confidence: Mapped[float] = mapped_column(Float, default=1.0)
    evidence: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class WeatherDaily(Base):
    __tablename__ = "weather_daily"

    weather_date: Mapped[date] = mapped_column(Date, primary_key=True)
    location: Mapped[str] = mapped_column(String(200))
    temp_min_c: Mapped[float | None] = mapped_column(Float, nullable=True)
    temp_max_c: Mapped[float | None] = mapped_column(Float, nullable=True)
    temp_avg_c: Mapped[float | None] = mapped_column(Float, nullable=True)
    precipitation_mm: Mapped[float | None] = mapped_column(Float, nullable=True)
    hdd: Mapped[float | None] = mapped_column(Float, nullable=True)
    cdd: Mapped[float | None] = mapped_column(Float, nullable=True)


class DailyConsumption(Base):
    """Derived per-day series; dropped and recomputed from readings on every write."""
    __tablename__ = "daily_consumption"
    __table_args__ = (
        Index("ix_daily_consumption_unit_day", "unit_id", "day"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    unit_id: Mapped[UUID] = mapped_column(ForeignKey("rental_unit.id"))
    utility_type: Mapped[str] = mapped_column(String(20))
    usage_unit: Mapped[str] = mapped_column(String(20))
    day: Mapped[date] = mapped_column(Date)
    consumption: Mapped[float] = mapped_column(Float)
    source: Mapped[str] = mapped_column(String(20))  # meter_interval, billed_period
    temp_avg_c: Mapped[float | None] = mapped_column(Float, nullable=True)
    hdd: Mapped[float | None] = mapped_column(Float, nullable=True)
    cdd: Mapped[float | None] = mapped_column(Float, nullable=True)
    precipitation_mm: Mapped[float | None] = mapped_column(Float, nullable=True)

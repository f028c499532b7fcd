"""Ingestion service: manual entries, bill PDFs and meter photos.

Every mode validates its input before any external call, awaits extraction
before anything is written, and rebuilds the unit's daily series before
returning so the stats in the response reflect the new facts.
"""
from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable
from uuid import UUID

import structlog
from pydantic import ValidationError

from ..config import Settings
from ..errors import (
    ExtractionError,
    InputValidationError,
    MappingError,
    NotFoundError,
    PersistenceError,
    ReadingConflictError,
    ReviewRequiredError,
)
from ..extraction.bill_extractor import BillExtractor
from ..extraction.clients import build_llm_client
from ..extraction.meter_photo import MeterPhotoExtractor
from ..models.internal import IngestResult, NormalizationResult, UsageStats
from ..models.schema import (
    BillCharge,
    DailyConsumptionRow,
    EntryType,
    ExtractedEntry,
    ManualEntryRequest,
    MeterReading,
    ReadingSource,
    ReviewStatus,
    Unit,
    UtilityType,
    default_reading_unit,
)
from ..reconciliation.apportionment import apportion_daily
from ..reconciliation.deduplication import deduplicate_bill_entries, drop_already_recorded
from ..reconciliation.identifier_resolver import MeterIdentifierResolver
from ..reconciliation.normalizer import normalize_reading, rolling_window_size, round3
from ..registry.meter_identifiers import MeterRegistry, normalize_meter_identifier
from ..registry.units import allowed_utilities, is_utility_allowed
from ..stats.usage import ROLLING_WINDOWS, build_usage_stats
from ..storage.interface import UtilityStore
from ..utils.dates import ensure_aware, get_zone, local_day

logger = structlog.get_logger(__name__)

MAX_REPORT_DAYS = 366
WRITE_ATTEMPTS = 2
REBUILD_ATTEMPTS = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_unit_id(value: str | UUID | None, field: str = "unit_id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except (ValueError, TypeError, AttributeError) as exc:
        raise InputValidationError(f"Valid {field} is required.", field=field) from exc


def parse_utility_type(value: str | UtilityType | None) -> UtilityType:
    try:
        return UtilityType(str(value).strip().lower())
    except ValueError as exc:
        raise InputValidationError(
            f"Invalid utility_type '{value}'.", allowed=[u.value for u in UtilityType],
        ) from exc


def parse_captured_at(value: str | None, tz_name: str) -> datetime:
    if not value:
        raise InputValidationError("Valid captured_at is required.", field="captured_at")
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise InputValidationError("Valid captured_at is required.", field="captured_at") from exc
    return ensure_aware(parsed, tz_name)


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


class IngestionService:
    """Orchestrates registry, reconciliation, persistence and stats for each ingest request."""

    def __init__(
        self,
        store: UtilityStore,
        settings: Settings | None = None,
        *,
        meter_registry: MeterRegistry | None = None,
        bill_extractor: BillExtractor | None = None,
        photo_extractor: MeterPhotoExtractor | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._settings = settings or Settings()
        self._resolver = MeterIdentifierResolver(meter_registry or MeterRegistry())
        self._bill_extractor = bill_extractor
        self._photo_extractor = photo_extractor
        self._clock = clock or _utcnow

    @property
    def site_timezone(self) -> str:
        return self._settings.timezone

    # ── Collaborators ────────────────────────────────────────────────────

    def _get_bill_extractor(self) -> BillExtractor:
        if self._bill_extractor is None:
            self._bill_extractor = BillExtractor(
                build_llm_client(self._settings, self._settings.bill_extraction_model),
                dpi=self._settings.pdf_dpi,
                temperature=self._settings.llm_temperature,
            )
        return self._bill_extractor

    def _get_photo_extractor(self) -> MeterPhotoExtractor:
        if self._photo_extractor is None:
            self._photo_extractor = MeterPhotoExtractor(
                build_llm_client(self._settings, self._settings.meter_photo_model),
                temperature=self._settings.llm_temperature,
            )
        return self._photo_extractor

    # ── Validation helpers ───────────────────────────────────────────────

    def _resolve_timezone(self, tz_name: str | None) -> str:
        tz_name = (tz_name or "").strip() or self._settings.timezone
        try:
            get_zone(tz_name)
        except ValueError as exc:
            raise InputValidationError(f"Unknown timezone '{tz_name}'.", field="timezone") from exc
        return tz_name

    def _check_upload(self, data: bytes, filename: str) -> None:
        if not data:
            raise InputValidationError("Upload file is required.", field="file")
        if len(data) > self._settings.max_upload_bytes:
            raise InputValidationError(
                "Upload exceeds the maximum size.",
                filename=filename,
                max_bytes=self._settings.max_upload_bytes,
            )

    async def get_unit(self, unit_id: str | UUID) -> Unit:
        parsed = parse_unit_id(unit_id)
        unit = await self._store.get_unit(parsed)
        if unit is None:
            raise NotFoundError("Unit not found.", unit_id=str(parsed))
        return unit

    @staticmethod
    def _require_allowed(unit: Unit, utility_type: UtilityType) -> None:
        if not is_utility_allowed(unit, utility_type):
            raise InputValidationError(
                f"Utility '{utility_type}' is not allowed for unit '{unit.name}'.",
                allowed_utilities=[str(u) for u in allowed_utilities(unit)],
            )

    # ── Manual entry ─────────────────────────────────────────────────────

    async def ingest_manual(self, request: ManualEntryRequest) -> IngestResult:
        tz_name = self._resolve_timezone(request.timezone)
        unit_id = parse_unit_id(request.unit_id)
        utility = parse_utility_type(request.utility_type)
        try:
            entry_type = EntryType(request.entry_type)
        except ValueError as exc:
            raise InputValidationError(
                f"Invalid entry_type '{request.entry_type}'.", allowed=[e.value for e in EntryType],
            ) from exc
        if request.reading_value is None or not math.isfinite(request.reading_value):
            raise InputValidationError("reading_value is required.", field="reading_value")
        captured_at = parse_captured_at(request.captured_at, tz_name)

        try:
            reading = MeterReading(
                unit_id=unit_id,
                utility_type=utility,
                entry_type=entry_type,
                captured_at=captured_at,
                period_start=request.period_start,
                period_end=request.period_end,
                reading_value=request.reading_value,
                reading_unit=request.reading_unit or default_reading_unit(utility),
                bill_id=request.bill_id,
                is_opening=request.is_opening,
                evidence="manual-entry",
                source=ReadingSource.MANUAL,
                source_ref="manual-entry",
            )
        except ValidationError as exc:
            raise InputValidationError(_first_error(exc)) from exc

        unit = await self.get_unit(unit_id)
        self._require_allowed(unit, utility)

        if entry_type == EntryType.METER_READ:
            inserted, _ = await self._append_meter_read(reading, normalize=False)
        else:
            inserted = await self._store.append_reading(reading)
        logger.info("manual_entry_ingested", unit_id=str(unit.id), utility_type=str(utility),
                    entry_type=str(entry_type), reading_value=inserted.reading_value)

        result = IngestResult(mode="manual", inserted=[inserted])
        return await self._finish(unit, result, [utility])

    # ── Bill PDF ─────────────────────────────────────────────────────────

    async def ingest_bill(
        self,
        unit_id: str | UUID,
        pdf_bytes: bytes,
        filename: str = "bill.pdf",
        *,
        utility_type: str | None = None,
        timezone: str | None = None,
    ) -> IngestResult:
        tz_name = self._resolve_timezone(timezone)
        parsed_id = parse_unit_id(unit_id)
        utility_override = parse_utility_type(utility_type) if utility_type else None
        self._check_upload(pdf_bytes, filename)
        unit = await self.get_unit(parsed_id)
        if utility_override:
            self._require_allowed(unit, utility_override)

        extraction = await self._get_bill_extractor().extract(pdf_bytes, filename, tz_name, utility_override)
        if not extraction.entries and not extraction.charges:
            raise ExtractionError(
                "No valid entries extracted from bill.", filename=filename, rejected=extraction.rejected,
            )
        for item in [*extraction.entries, *extraction.charges]:
            self._require_allowed(unit, item.utility_type)

        deduped = deduplicate_bill_entries(extraction.entries)
        existing = await self._store.find_existing(unit.id, [e.captured_at for e in deduped.kept])
        fresh = drop_already_recorded(deduped.kept, existing)
        removed = [*deduped.removed, *fresh.removed]

        await self._check_batch_monotonic(unit, fresh.kept)
        readings = [
            self._reading_from_entry(unit, entry, ReadingSource.BILL_PDF, f"upload:{filename}#{index}")
            for index, entry in enumerate(fresh.kept, start=1)
        ]
        charges = [
            BillCharge(
                unit_id=unit.id,
                utility_type=charge.utility_type,
                bill_id=charge.bill_id,
                period_start=charge.period_start,
                period_end=charge.period_end,
                total_charges_cad=charge.total_charges_cad,
                confidence=charge.confidence,
                evidence=charge.evidence,
            )
            for charge in extraction.charges
        ]
        inserted, charges = await self._store.record_bill(readings, charges)
        logger.info("bill_ingested", unit_id=str(unit.id), filename=filename, inserted=len(inserted),
                    removed=len(removed), charges=len(charges), rejected=len(extraction.rejected))

        touched = {r.utility_type for r in inserted} | {c.utility_type for c in charges}
        result = IngestResult(mode="bill", inserted=inserted, removed=removed, charges_upserted=charges)
        return await self._finish(unit, result, sorted(touched))

    @staticmethod
    def _reading_from_entry(unit: Unit, entry: ExtractedEntry, source: ReadingSource, source_ref: str) -> MeterReading:
        return MeterReading(
            unit_id=unit.id,
            utility_type=entry.utility_type,
            entry_type=entry.entry_type,
            captured_at=entry.captured_at,
            period_start=entry.period_start,
            period_end=entry.period_end,
            reading_value=entry.reading_value,
            reading_unit=entry.reading_unit,
            confidence=entry.confidence,
            evidence=entry.evidence,
            bill_id=entry.bill_id,
            is_opening=entry.is_opening,
            source=source,
            source_ref=source_ref,
        )

    async def _check_batch_monotonic(self, unit: Unit, entries: list[ExtractedEntry]) -> None:
        """Every new meter read must sit between its stored and in-batch neighbours."""
        new_reads = [e for e in entries if e.entry_type == EntryType.METER_READ]
        if not new_reads:
            return
        stored = [
            r for r in await self._store.list_readings(unit.id)
            if r.entry_type == EntryType.METER_READ and r.review_status == ReviewStatus.APPROVED
        ]
        for entry in new_reads:
            neighbours = [
                (r.captured_at, r.reading_value) for r in stored
                if r.utility_type == entry.utility_type and r.reading_unit == entry.reading_unit
            ] + [
                (e.captured_at, e.reading_value) for e in new_reads
                if e is not entry and e.utility_type == entry.utility_type and e.reading_unit == entry.reading_unit
            ]
            _ensure_between(entry.reading_value, entry.captured_at, entry.reading_unit, neighbours)

    # ── Meter photo ──────────────────────────────────────────────────────

    async def ingest_meter_image(
        self,
        image_bytes: bytes,
        filename: str = "meter.jpg",
        *,
        unit_id: str | UUID | None = None,
        manual_unit_override: bool = False,
        timezone: str | None = None,
    ) -> IngestResult:
        tz_name = self._resolve_timezone(timezone)
        selected_id = parse_unit_id(unit_id) if unit_id else None
        if manual_unit_override and selected_id is None:
            raise InputValidationError("A valid selected unit is required for manual unit override.", field="unit_id")
        self._check_upload(image_bytes, filename)
        selected = await self.get_unit(selected_id) if selected_id else None

        extracted = await self._get_photo_extractor().extract(image_bytes, filename, tz_name)

        if manual_unit_override:
            resolution = MeterIdentifierResolver.manual_override(selected.name, extracted.meter_identifier)
            unit = selected
        else:
            resolution = self._resolver.resolve(
                extracted.meter_identifier, extracted.meter_identifier_candidates, extracted.evidence,
            )
            if resolution.mapping is None:
                raise MappingError(
                    f"Unknown meter identifier '{resolution.identifier}'. "
                    "Add a mapping before ingest or use manual unit override.",
                    meter_identifier=resolution.identifier,
                    identifier_candidates_tried=resolution.tried,
                )
            unit = await self._store.get_unit_by_name(resolution.mapping.unit_name)
            if unit is None:
                raise NotFoundError(f"Mapped unit '{resolution.mapping.unit_name}' not found.",
                                    unit_name=resolution.mapping.unit_name)
            if selected is not None and selected.id != unit.id:
                raise MappingError(
                    f"Meter identifier maps to '{unit.name}', but the selected unit does not match.",
                    mapped_unit_name=unit.name,
                    identifier_candidates_tried=resolution.tried,
                )

        mapping = resolution.mapping
        self._require_allowed(unit, mapping.utility_type)
        reading = MeterReading(
            unit_id=unit.id,
            utility_type=mapping.utility_type,
            entry_type=EntryType.METER_READ,
            captured_at=extracted.captured_at or self._clock(),
            reading_value=extracted.reading_value,
            reading_unit=extracted.reading_unit or mapping.reading_unit_default,
            confidence=extracted.confidence,
            evidence=extracted.evidence,
            bill_id=f"meter-image-{normalize_meter_identifier(extracted.meter_identifier)}",
            source=ReadingSource.METER_PHOTO,
            source_ref=f"meter-image:{filename}",
        )
        inserted, normalization = await self._append_meter_read(
            reading, normalize=True, meter_identifier=extracted.meter_identifier,
        )

        result = IngestResult(
            mode="meter_image",
            inserted=[inserted],
            correction_note=normalization.correction_note if normalization else None,
            meter_identifier=extracted.meter_identifier,
            resolved_meter_identifier=resolution.identifier,
            mapped_by=resolution.mapped_by,
            mapped_meter=mapping,
        )
        return await self._finish(unit, result, [mapping.utility_type])

    # ── Meter read writes ────────────────────────────────────────────────

    async def _append_meter_read(
        self,
        reading: MeterReading,
        *,
        normalize: bool,
        meter_identifier: str | None = None,
    ) -> tuple[MeterReading, NormalizationResult | None]:
        """Validate against the latest history and insert with an optimistic latest-id check.

        A conflict re-runs validation once against the fresh history.
        """
        for attempt in range(WRITE_ATTEMPTS):
            expected_latest = await self._store.latest_reading_id(reading.unit_id, reading.utility_type)
            history = await self._store.recent_meter_reads(
                reading.unit_id,
                reading.utility_type,
                before=reading.captured_at,
                limit=rolling_window_size(reading.utility_type),
            )

            normalization: NormalizationResult | None = None
            candidate = reading
            if normalize:
                normalization = normalize_reading(
                    reading.utility_type, reading.captured_at, reading.reading_value, history,
                )
                if normalization.flagged:
                    raise ReviewRequiredError(
                        normalization.correction_note or "Parsed meter reading failed validation.",
                        reading_value=reading.reading_value,
                        reading_unit=reading.reading_unit,
                        meter_identifier=meter_identifier,
                        previous_value=normalization.previous_value,
                        elapsed_days=normalization.elapsed_days,
                        expected_delta=normalization.expected_delta,
                        allowed_range=list(normalization.allowed_range) if normalization.allowed_range else None,
                    )
                candidate = reading.model_copy(update={
                    "reading_value": normalization.reading_value,
                    "correction_note": normalization.correction_note,
                })

            following = await self._store.next_meter_read(reading.unit_id, reading.utility_type, reading.captured_at)
            # reads at exactly captured_at are in neither history nor following
            same_instant = [
                r for r in await self._store.find_existing(reading.unit_id, [reading.captured_at])
                if r.utility_type == reading.utility_type
                and r.entry_type == EntryType.METER_READ
                and r.review_status == ReviewStatus.APPROVED
            ]
            neighbours = [
                (r.captured_at, r.reading_value)
                for r in [*history, *same_instant]
                if r.reading_unit == candidate.reading_unit
            ]
            if following is not None and following.reading_unit == candidate.reading_unit:
                neighbours.append((following.captured_at, following.reading_value))
            _ensure_between(candidate.reading_value, candidate.captured_at, candidate.reading_unit, neighbours)

            try:
                inserted = await self._store.append_reading(candidate, expected_latest_id=expected_latest)
                return inserted, normalization
            except ReadingConflictError:
                if attempt + 1 >= WRITE_ATTEMPTS:
                    raise
                logger.warning("reading_conflict_retry", unit_id=str(reading.unit_id),
                               utility_type=str(reading.utility_type))
        raise PersistenceError("Meter reading could not be written.")

    # ── Derived data ─────────────────────────────────────────────────────

    async def rebuild_daily_series(self, unit_id: UUID) -> int:
        """Drop and recompute the unit's daily series; retried once, then raised."""
        for attempt in range(REBUILD_ATTEMPTS):
            try:
                readings = await self._store.list_readings(unit_id)
                weather = await self._store.list_weather()
                rows = apportion_daily(readings, self.site_timezone, weather)
                count = await self._store.rebuild_daily_series(unit_id, rows)
                logger.info("daily_series_rebuilt", unit_id=str(unit_id), rows=count)
                return count
            except PersistenceError as exc:
                if attempt + 1 >= REBUILD_ATTEMPTS:
                    raise PersistenceError(
                        "Readings were saved but the daily series rebuild failed; retry the rebuild.",
                        unit_id=str(unit_id),
                    ) from exc
                logger.warning("daily_series_rebuild_retry", unit_id=str(unit_id), error=exc.message)
        return 0

    async def usage_stats(self, unit: Unit, utility_type: UtilityType, *, as_of: date | None = None) -> UsageStats:
        as_of = as_of or local_day(self._clock(), self.site_timezone)
        start = min(as_of - timedelta(days=max(ROLLING_WINDOWS.values()) - 1), as_of.replace(day=1))
        readings = await self._store.list_readings(unit.id, utility_type)
        rows = await self._store.list_daily_series(unit.id, start=start, end=as_of, utility_type=utility_type)
        return build_usage_stats(
            utility_type,
            readings,
            rows,
            as_of=as_of,
            tz_name=self.site_timezone,
            last_billed_period_end=await self._store.last_billed_period_end(unit.id, utility_type),
            last_bill_charge=await self._store.latest_bill_charge(unit.id, utility_type),
        )

    async def summary(self, unit_id: str | UUID) -> tuple[Unit, dict[str, UsageStats]]:
        unit = await self.get_unit(unit_id)
        stats = {str(u): await self.usage_stats(unit, u) for u in allowed_utilities(unit)}
        return unit, stats

    async def report(
        self,
        unit_id: str | UUID | None = None,
        days: int = 30,
    ) -> tuple[Unit | None, list[Unit], int, list[DailyConsumptionRow]]:
        """Daily series for the last *days* days (clamped to 1-366), one unit or all of them.

        Returns ``(unit, units, days, rows)``; *unit* is ``None`` when no filter was given.
        """
        days = min(max(days, 1), MAX_REPORT_DAYS)
        unit = await self.get_unit(unit_id) if unit_id else None
        units = await self._store.list_units()
        end = local_day(self._clock(), self.site_timezone)
        start = end - timedelta(days=days - 1)
        rows: list[DailyConsumptionRow] = []
        for target in [unit] if unit else units:
            rows.extend(await self._store.list_daily_series(target.id, start=start, end=end))
        rows.sort(key=lambda r: (r.day, str(r.unit_id), str(r.utility_type), str(r.source)))
        return unit, units, days, rows

    async def _finish(self, unit: Unit, result: IngestResult, utilities: Iterable[UtilityType]) -> IngestResult:
        result.daily_rows_rebuilt = await self.rebuild_daily_series(unit.id)
        for utility in utilities:
            result.stats_by_utility[str(utility)] = await self.usage_stats(unit, utility)
        return result


def _ensure_between(
    value: float,
    captured_at: datetime,
    reading_unit: str,
    neighbours: list[tuple[datetime, float]],
) -> None:
    """Raise ``ReviewRequiredError`` if *value* breaks the non-decreasing meter sequence."""
    earlier = [v for t, v in neighbours if t <= captured_at]
    later = [v for t, v in neighbours if t > captured_at]
    if earlier and value < max(earlier):
        raise ReviewRequiredError(
            f"Meter reading {round3(value)} {reading_unit} is lower than the previous approved "
            f"reading {round3(max(earlier))} {reading_unit}. Review manually.",
            reading_value=value,
            previous_value=max(earlier),
        )
    if later and value > min(later):
        raise ReviewRequiredError(
            f"Meter reading {round3(value)} {reading_unit} is higher than the next recorded "
            f"reading {round3(min(later))} {reading_unit}. Review manually.",
            reading_value=value,
            next_value=min(later),
        )

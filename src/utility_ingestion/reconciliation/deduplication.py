"""Bill Deduplicator: drop billed-usage rows that restate a meter-read delta.

Bills often print both the opening/closing meter reads and a "usage this
period" total.  Persisting both would double count the period once the daily
series is built, so the billed total is dropped when the reads already
reconstruct it.  Rows in different reading units are never compared.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Sequence

import structlog

from ..models.internal import DedupRemoval, DeduplicationResult
from ..models.schema import EntryType, ExtractedEntry, MeterReading

logger = structlog.get_logger(__name__)

ABSOLUTE_TOLERANCE = 1.0
RELATIVE_TOLERANCE = 0.02


def _group_key(entry: ExtractedEntry) -> tuple[str, str, str] | None:
    if not entry.bill_id:
        return None
    return (str(entry.utility_type), entry.reading_unit, entry.bill_id)


def values_match(billed: float, delta: float) -> bool:
    """Within ``max(1, 2% of magnitude)`` of each other."""
    magnitude = max(abs(billed), abs(delta))
    return abs(billed - delta) <= max(ABSOLUTE_TOLERANCE, RELATIVE_TOLERANCE * magnitude)


def deduplicate_bill_entries(entries: Sequence[ExtractedEntry]) -> DeduplicationResult:
    """Remove billed-usage entries already implied by meter reads on the same bill."""
    reads: dict[tuple[str, str, str], list[ExtractedEntry]] = defaultdict(list)
    for entry in entries:
        key = _group_key(entry)
        if entry.entry_type == EntryType.METER_READ and key is not None:
            reads[key].append(entry)

    deltas: dict[tuple[str, str, str], tuple[float, ExtractedEntry, ExtractedEntry]] = {}
    for key, group in reads.items():
        if len(group) < 2:
            continue
        ordered = sorted(group, key=lambda e: e.captured_at)
        earliest, latest = ordered[0], ordered[-1]
        delta = latest.reading_value - earliest.reading_value
        if delta >= 0:
            deltas[key] = (delta, earliest, latest)

    result = DeduplicationResult()
    for entry in entries:
        key = _group_key(entry)
        if entry.entry_type == EntryType.BILLED_USAGE and key in deltas:
            delta, earliest, latest = deltas[key]
            if values_match(entry.reading_value, delta):
                reason = (
                    f"Billed usage {entry.reading_value:g} {entry.reading_unit} for bill "
                    f"'{entry.bill_id}' duplicates the meter read delta "
                    f"{latest.reading_value:g} - {earliest.reading_value:g} = {delta:g} "
                    f"{entry.reading_unit}."
                )
                result.removed.append(DedupRemoval(entry=entry, reason=reason))
                continue
        result.kept.append(entry)

    if result.removed:
        logger.info("bill_entries_deduplicated", removed=len(result.removed), kept=len(result.kept))
    return result


def drop_already_recorded(
    entries: Sequence[ExtractedEntry],
    existing: Iterable[MeterReading],
) -> DeduplicationResult:
    """Drop entries identical to persisted readings (re-imported bills).

    Identity is (utility, entry type, capture time, value); *existing* must
    already be scoped to the target unit.
    """
    seen = {
        (str(r.utility_type), str(r.entry_type), r.captured_at, r.reading_value)
        for r in existing
    }
    result = DeduplicationResult()
    for entry in entries:
        key = (str(entry.utility_type), str(entry.entry_type), entry.captured_at, entry.reading_value)
        if key in seen:
            result.removed.append(DedupRemoval(
                entry=entry,
                reason=(
                    f"{entry.entry_type} {entry.reading_value:g} {entry.reading_unit} captured "
                    f"{entry.captured_at.isoformat()} is already recorded for this unit."
                ),
            ))
        else:
            result.kept.append(entry)
    return result

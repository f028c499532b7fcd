"""Meter Identifier Resolver: pick the true meter identifier off a photo.

Resolution is a strategy pair: a ranking function orders the normalised
candidates, a lookup function maps a candidate to a registry entry.  New meter
formats only need a new ranker.
"""
from __future__ import annotations

import re
from typing import Callable, Iterable

import structlog

from ..models.internal import IdentifierResolution
from ..models.schema import MeterIdentifierMapping, UtilityType
from ..registry.meter_identifiers import MeterRegistry, normalize_meter_identifier

logger = structlog.get_logger(__name__)

Ranker = Callable[[str], float]
Lookup = Callable[[str], "MeterIdentifierMapping | None"]

# Runs of digits, optionally broken by spaces or dashes.
_DIGIT_RUN = re.compile(r"\d[\d\s-]{4,}\d")
MIN_EVIDENCE_DIGITS = 6

# Utility meter ids at these sites are 9 digits, most starting with 345.
_KNOWN_PREFIX = re.compile(r"^345\d{6}$")


def default_ranker(candidate: str) -> float:
    """Known 9-digit prefix ranks highest, then any 9-digit number."""
    score = 0.0
    if _KNOWN_PREFIX.match(candidate):
        score += 10
    if len(candidate) == 9:
        score += 1
    return score


def unique_normalized(values: Iterable[str | None]) -> list[str]:
    """Digits-only candidates, first occurrence wins, empties dropped."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        normalized = normalize_meter_identifier(value)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        result.append(normalized)
    return result


def extract_digit_sequences(text: str | None) -> list[str]:
    """Identifier-like digit runs (≥6 digits) found in free-text evidence."""
    if not text:
        return []
    runs = (normalize_meter_identifier(m) for m in _DIGIT_RUN.findall(text))
    return [r for r in runs if len(r) >= MIN_EVIDENCE_DIGITS]


class MeterIdentifierResolver:
    """Try ranked identifier candidates against the registry until one matches."""

    def __init__(
        self,
        registry: MeterRegistry | None = None,
        *,
        ranker: Ranker = default_ranker,
        lookup: Lookup | None = None,
    ):
        self._registry = registry or MeterRegistry()
        self._ranker = ranker
        self._lookup = lookup or self._registry.lookup

    def rank(self, candidates: list[str]) -> list[str]:
        # sorted() is stable, so ties keep extraction order
        return sorted(candidates, key=self._ranker, reverse=True)

    def resolve(
        self,
        primary: str,
        candidates: Iterable[str] | None = None,
        evidence: str | None = None,
    ) -> IdentifierResolution:
        primary_normalized = normalize_meter_identifier(primary)
        pool = unique_normalized([primary, *(candidates or []), *extract_digit_sequences(evidence)])
        ranked = self.rank(pool)

        for candidate in ranked:
            mapping = self._lookup(candidate)
            if mapping is not None:
                mapped_by = "identifier" if candidate == primary_normalized else "candidate_identifier_match"
                logger.info("meter_identifier_resolved", identifier=candidate, mapped_by=mapped_by,
                            unit_name=mapping.unit_name)
                return IdentifierResolution(
                    identifier=candidate, mapping=mapping, tried=ranked, mapped_by=mapped_by,
                )

        logger.warning("meter_identifier_unmatched", primary=primary_normalized, tried=ranked)
        return IdentifierResolution(identifier=primary_normalized, mapping=None, tried=ranked)

    @staticmethod
    def manual_override(unit_name: str, primary: str | None = None) -> IdentifierResolution:
        """Synthetic electricity mapping for a user-selected unit.

        Photo ingestion currently targets electricity meters only.
        """
        mapping = MeterIdentifierMapping(
            unit_name=unit_name,
            utility_type=UtilityType.ELECTRICITY,
            reading_unit_default="kWh",
            label=f"{unit_name} manual meter photo override",
        )
        return IdentifierResolution(
            identifier=normalize_meter_identifier(primary),
            mapping=mapping,
            tried=[],
            mapped_by="manual_unit_override",
        )

"""Physical meter identifier registry."""
from __future__ import annotations

import re

from utility_ingestion.models.schema import MeterIdentifierMapping, UtilityType

_NON_DIGITS = re.compile(r"\D")

METER_IDENTIFIER_MAP: dict[str, MeterIdentifierMapping] = {
    "345185639": MeterIdentifierMapping(
        unit_name="House",
        utility_type=UtilityType.ELECTRICITY,
        reading_unit_default="kWh",
        label="House electricity meter",
    ),
    "345185645": MeterIdentifierMapping(
        unit_name="Coach",
        utility_type=UtilityType.ELECTRICITY,
        reading_unit_default="kWh",
        label="Coach electricity meter",
    ),
    "348819731": MeterIdentifierMapping(
        unit_name="Suite",
        utility_type=UtilityType.ELECTRICITY,
        reading_unit_default="kWh",
        label="Suite electricity meter",
    ),
}


def normalize_meter_identifier(value: str | None) -> str:
    """Strip everything but digits."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", value)


class MeterRegistry:
    """Queryable identifier → mapping table keyed by digits-only identifiers."""

    def __init__(self, mappings: dict[str, MeterIdentifierMapping] | None = None):
        source = METER_IDENTIFIER_MAP if mappings is None else mappings
        self._mappings = {normalize_meter_identifier(k): v for k, v in source.items()}

    def lookup(self, identifier: str) -> MeterIdentifierMapping | None:
        return self._mappings.get(normalize_meter_identifier(identifier))

    def register(self, identifier: str, mapping: MeterIdentifierMapping) -> None:
        normalized = normalize_meter_identifier(identifier)
        if not normalized:
            raise ValueError(f"Meter identifier {identifier!r} contains no digits")
        self._mappings[normalized] = mapping

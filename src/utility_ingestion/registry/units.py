"""Unit → allowed utility types policy."""
from __future__ import annotations

from utility_ingestion.models.schema import Unit, UtilityType

UNIT_UTILITY_POLICY: dict[str, list[UtilityType]] = {
    "coach": [UtilityType.ELECTRICITY],
    "suite": [UtilityType.ELECTRICITY],
    "house": [UtilityType.ELECTRICITY, UtilityType.GAS],
}

DEFAULT_ALLOWED: list[UtilityType] = [UtilityType.ELECTRICITY, UtilityType.GAS, UtilityType.WATER]


def allowed_utilities_for_unit_name(unit_name: str) -> list[UtilityType]:
    """Utilities a unit may report, keyed case-insensitively by name."""
    return list(UNIT_UTILITY_POLICY.get(unit_name.strip().lower(), DEFAULT_ALLOWED))


def allowed_utilities(unit: Unit) -> list[UtilityType]:
    """Allowed utilities for a provisioned unit, falling back to the name policy."""
    return list(unit.utility_types) or allowed_utilities_for_unit_name(unit.name)


def is_utility_allowed(unit: Unit, utility_type: UtilityType | str) -> bool:
    return utility_type in allowed_utilities(unit)


def provision_unit(name: str, location: str = "West Vancouver, BC",
                   utility_types: list[UtilityType] | None = None) -> Unit:
    """Build a new unit, defaulting its utility list from the policy table."""
    return Unit(
        name=name,
        location=location,
        utility_types=utility_types or allowed_utilities_for_unit_name(name),
    )

"""Reading unit normalisation and conversion."""
from __future__ import annotations

# Estimated energy content of delivered natural gas; bills state GJ directly
# when available, this is only used for meter m3 deltas.
GAS_M3_TO_GJ = 0.0393

# Conversion factors
CONVERSIONS = {
    ("m3", "GJ"): GAS_M3_TO_GJ,
    ("GJ", "m3"): 1 / GAS_M3_TO_GJ,
    ("GJ", "kWh"): 277.778,
    ("kWh", "GJ"): 1 / 277.778,
    ("MWh", "kWh"): 1000.0,
    ("kWh", "MWh"): 0.001,
    ("L", "m3"): 0.001,
    ("m3", "L"): 1000.0,
    ("gallons", "m3"): 0.00378541,
    ("m3", "gallons"): 264.172,
}

def convert_units(value: float, from_unit: str, to_unit: str, factor: float | None = None) -> float:
    """Convert a usage value between units.

    ``factor`` overrides the table entry, e.g. a bill-specific m3 → GJ factor.
    """
    from_unit = normalize_unit_name(from_unit)
    to_unit = normalize_unit_name(to_unit)
    if from_unit == to_unit:
        return value

    if factor is not None:
        return value * factor

    key = (from_unit, to_unit)
    if key in CONVERSIONS:
        return value * CONVERSIONS[key]

    raise ValueError(f"No conversion available from {from_unit} to {to_unit}")


def normalize_unit_name(unit: str | None) -> str:
    """Normalize unit name to standard form."""
    if unit is None:
        return ""
    cleaned = unit.strip()
    mapping = {
        "kwh": "kWh", "kw.h": "kWh", "mwh": "MWh",
        "gj": "GJ", "gigajoule": "GJ", "gigajoules": "GJ",
        "m3": "m3", "m³": "m3", "m^3": "m3", "cbm": "m3",
        "cubic meters": "m3", "cubic metres": "m3", "cu m": "m3",
        "l": "L", "litre": "L", "litres": "L", "liter": "L", "liters": "L",
        "gal": "gallons", "gallon": "gallons",
    }
    return mapping.get(cleaned.lower(), cleaned)

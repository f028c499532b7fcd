"""Effective-dated residential rate schedules (CAD).

These are assumptions about the current tariffs, surfaced verbatim alongside
every estimate.  Update the table and its effective date when rates change.
"""
from __future__ import annotations

from datetime import date

GST_RATE = 0.05

RATE_SCHEDULES: dict[str, dict] = {
    "electricity": {
        "effective_date": date(2025, 4, 1),
        "name": "Residential conservation rate (two-step)",
        "basic_charge_per_day": 0.2338,
        "step1_rate_per_kwh": 0.1138,
        "step2_rate_per_kwh": 0.1461,
        "step1_threshold_kwh_per_day": 22.6,
        "note": "Step 1 applies up to the daily threshold times billing days",
    },
    "gas": {
        "effective_date": date(2025, 1, 1),
        "name": "Residential natural gas service",
        "basic_charge_per_day": 0.4570,
        "delivery_rate_per_gj": 5.949,
        "storage_transport_rate_per_gj": 1.395,
        "commodity_rate_per_gj": 2.605,
        "clean_energy_levy_pct": 0.004,
        "m3_to_gj": 0.0393,
        "note": "Meter m3 converted to GJ with an estimated energy factor",
    },
}


def get_rate_schedule(utility_type: str) -> dict | None:
    """Rate schedule for a utility, or None when no tariff is modelled."""
    return RATE_SCHEDULES.get(str(utility_type))


def describe_assumptions(utility_type: str) -> list[str]:
    """Human-readable statement of the rate constants used for a utility."""
    schedule = get_rate_schedule(utility_type)
    if schedule is None:
        return []
    effective = schedule["effective_date"].isoformat()
    if str(utility_type) == "electricity":
        return [
            f"{schedule['name']} effective {effective}.",
            f"Basic charge ${schedule['basic_charge_per_day']:.4f}/day.",
            f"Step 1 ${schedule['step1_rate_per_kwh']:.4f}/kWh up to "
            f"{schedule['step1_threshold_kwh_per_day']:g} kWh/day; "
            f"Step 2 ${schedule['step2_rate_per_kwh']:.4f}/kWh above.",
            f"GST {GST_RATE:.0%} on subtotal.",
        ]
    return [
        f"{schedule['name']} effective {effective}.",
        f"Basic charge ${schedule['basic_charge_per_day']:.4f}/day.",
        f"Delivery ${schedule['delivery_rate_per_gj']:.3f}/GJ, storage and transport "
        f"${schedule['storage_transport_rate_per_gj']:.3f}/GJ, commodity "
        f"${schedule['commodity_rate_per_gj']:.3f}/GJ.",
        f"Clean energy levy {schedule['clean_energy_levy_pct']:.1%} on subtotal.",
        f"GST {GST_RATE:.0%} on subtotal plus levy.",
        f"Meter m3 converted at an estimated {schedule['m3_to_gj']:g} GJ/m3 when no billed GJ is available.",
    ]

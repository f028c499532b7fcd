"""Cost Estimator: tiered electricity and gas estimates in CAD.

Estimates are pure functions of usage buckets, a day count and the rate
schedule table.  They never read stored bills; actual charges are reported
separately as ``last_bill_charge``.
"""
from __future__ import annotations

from typing import Iterable

from ..models.internal import CostEstimate, CostLineItem, UsageBucket
from ..models.schema import UtilityType
from ..units.conversion import convert_units, normalize_unit_name
from .rate_schedules import GST_RATE, describe_assumptions, get_rate_schedule


def round_money(value: float) -> float:
    return round(value + 0.0, 2)


def round_usage(value: float) -> float:
    return round(value + 0.0, 3)


def _bucket_total(buckets: Iterable[UsageBucket], unit: str) -> float | None:
    matching = [b.value for b in buckets if normalize_unit_name(b.usage_unit) == unit]
    if not matching:
        return None
    return sum(matching)


def estimate_cost(
    utility_type: UtilityType | str,
    buckets: Iterable[UsageBucket],
    days: float,
) -> CostEstimate | None:
    """Estimate the cost of *buckets* consumed over *days*.

    Returns None for non-positive day counts and for utilities without a
    modelled tariff (water).
    """
    if days is None or days <= 0:
        return None
    schedule = get_rate_schedule(str(utility_type))
    if schedule is None:
        return None
    buckets = list(buckets)
    if str(utility_type) == UtilityType.ELECTRICITY:
        return _estimate_electricity(schedule, buckets, days)
    return _estimate_gas(schedule, buckets, days)


def _estimate_electricity(schedule: dict, buckets: list[UsageBucket], days: float) -> CostEstimate:
    kwh = max(_bucket_total(buckets, "kWh") or 0.0, 0.0)
    step1_limit = schedule["step1_threshold_kwh_per_day"] * days
    step1_kwh = min(kwh, step1_limit)
    step2_kwh = max(kwh - step1_limit, 0.0)

    basic = schedule["basic_charge_per_day"] * days
    step1 = step1_kwh * schedule["step1_rate_per_kwh"]
    step2 = step2_kwh * schedule["step2_rate_per_kwh"]
    subtotal = basic + step1 + step2
    tax = subtotal * GST_RATE

    line_items = [
        CostLineItem(description="Basic charge", quantity=round_usage(days), unit="day",
                     rate=schedule["basic_charge_per_day"], amount_cad=round_money(basic)),
        CostLineItem(description="Step 1 energy", quantity=round_usage(step1_kwh), unit="kWh",
                     rate=schedule["step1_rate_per_kwh"], amount_cad=round_money(step1)),
        CostLineItem(description="Step 2 energy", quantity=round_usage(step2_kwh), unit="kWh",
                     rate=schedule["step2_rate_per_kwh"], amount_cad=round_money(step2)),
        CostLineItem(description="GST", rate=GST_RATE, amount_cad=round_money(tax)),
    ]
    return CostEstimate(
        utility_type=UtilityType.ELECTRICITY,
        days=round_usage(days),
        usage=round_usage(kwh),
        usage_unit="kWh",
        line_items=line_items,
        fixed_cad=round_money(basic),
        energy_cad=round_money(step1 + step2),
        subtotal_cad=round_money(subtotal),
        tax_cad=round_money(tax),
        total_cad=round_money(subtotal + tax),
        effective_date=schedule["effective_date"],
        assumptions=describe_assumptions(UtilityType.ELECTRICITY),
    )


def _estimate_gas(schedule: dict, buckets: list[UsageBucket], days: float) -> CostEstimate:
    assumptions = describe_assumptions(UtilityType.GAS)
    gj = _bucket_total(buckets, "GJ")
    if gj is None:
        m3 = _bucket_total(buckets, "m3") or 0.0
        gj = convert_units(m3, "m3", "GJ", factor=schedule["m3_to_gj"])
        if m3:
            assumptions.append(
                f"Converted {round_usage(m3):g} m3 to {round_usage(gj):g} GJ."
            )
    gj = max(gj, 0.0)

    basic = schedule["basic_charge_per_day"] * days
    delivery = gj * schedule["delivery_rate_per_gj"]
    storage = gj * schedule["storage_transport_rate_per_gj"]
    commodity = gj * schedule["commodity_rate_per_gj"]
    subtotal = basic + delivery + storage + commodity
    levy = subtotal * schedule["clean_energy_levy_pct"]
    tax = (subtotal + levy) * GST_RATE

    line_items = [
        CostLineItem(description="Basic charge", quantity=round_usage(days), unit="day",
                     rate=schedule["basic_charge_per_day"], amount_cad=round_money(basic)),
        CostLineItem(description="Delivery", quantity=round_usage(gj), unit="GJ",
                     rate=schedule["delivery_rate_per_gj"], amount_cad=round_money(delivery)),
        CostLineItem(description="Storage and transport", quantity=round_usage(gj), unit="GJ",
                     rate=schedule["storage_transport_rate_per_gj"], amount_cad=round_money(storage)),
        CostLineItem(description="Commodity", quantity=round_usage(gj), unit="GJ",
                     rate=schedule["commodity_rate_per_gj"], amount_cad=round_money(commodity)),
        CostLineItem(description="Clean energy levy", rate=schedule["clean_energy_levy_pct"],
                     amount_cad=round_money(levy)),
        CostLineItem(description="GST", rate=GST_RATE, amount_cad=round_money(tax)),
    ]
    return CostEstimate(
        utility_type=UtilityType.GAS,
        days=round_usage(days),
        usage=round_usage(gj),
        usage_unit="GJ",
        line_items=line_items,
        fixed_cad=round_money(basic),
        energy_cad=round_money(delivery + storage + commodity),
        subtotal_cad=round_money(subtotal),
        levy_cad=round_money(levy),
        tax_cad=round_money(tax),
        total_cad=round_money(subtotal + levy + tax),
        effective_date=schedule["effective_date"],
        assumptions=assumptions,
    )

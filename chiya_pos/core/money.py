"""Helpers for whole-unit rupee amounts.

Prices, totals and discounts are plain integers in whole currency units; the
helpers here keep rounding and loyalty arithmetic in one place.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CURRENCY_SYMBOL = "रू"
POINTS_PER_UNIT_SPENT = 10


def to_units(value: Any) -> int:
    """Convert *value* to a whole-unit integer, rounding half up."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return 0
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def fmt_amount(value: Any, currency: str = CURRENCY_SYMBOL) -> str:
    """Format *value* as a grouped whole-unit string, e.g. ``रू 1,250``."""
    amount = to_units(value)
    sign = "-" if amount < 0 else ""
    display = f"{abs(amount):,}"
    if currency:
        return f"{currency} {sign}{display}"
    return f"{sign}{display}"


def loyalty_points_for(total: int) -> int:
    """Points earned on a paid bill: one per full ten units spent."""
    if total <= 0:
        return 0
    return int(total) // POINTS_PER_UNIT_SPENT


def percent_change(current: float, previous: float) -> float:
    if previous > 0:
        change = (Decimal(str(current)) - Decimal(str(previous))) / Decimal(str(previous)) * 100
        return float(change.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
    return 100.0 if current > 0 else 0.0

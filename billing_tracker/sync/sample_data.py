"""
Guest Sample Data

Deterministic demo months for sessions without an account.

DESIGN DECISION: Values come from a seeded pseudo-random function
(seed = year * 12 + zero-based month), so the same calendar month
always shows the same numbers across reloads and processes.
Authenticated accounts never see this data, even when empty.
"""

import math
from datetime import date
from typing import Optional

from billing_tracker.models.billing import (
    DEFAULT_ADVANCE_PAYMENT,
    ElectricityUsage,
    MonthRecord,
    Usage,
    month_key_for,
    parse_month_key,
    shift_month_key,
)


def seeded_random(seed: float) -> float:
    """Deterministic value in [0, 1) for a seed."""
    x = math.sin(seed) * 10000
    return x - math.floor(x)


def _season(month: int) -> str:
    """month is 1..12"""
    if month >= 11 or month <= 3:
        return "winter"
    if 6 <= month <= 9:
        return "summer"
    return "shoulder"


def sample_month(month_key: str, advance_payment: float = DEFAULT_ADVANCE_PAYMENT) -> MonthRecord:
    """Plausible usage for one month, stable for a given key."""
    first = parse_month_key(month_key)
    seed = first.year * 12 + (first.month - 1)
    season = _season(first.month)

    cold_water = 2.0 + seeded_random(seed * 1) * 1.5
    hot_water = 1.2 + seeded_random(seed * 2) * 1.0

    if season == "winter":
        heating = 0.8 + seeded_random(seed * 3) * 0.5
        electricity = 130 + seeded_random(seed * 4) * 50
    elif season == "summer":
        heating = 0.05 + seeded_random(seed * 3) * 0.1
        electricity = 100 + seeded_random(seed * 4) * 40
    else:
        heating = 0.2 + seeded_random(seed * 3) * 0.3
        electricity = 90 + seeded_random(seed * 4) * 30

    return MonthRecord(
        usage=Usage(
            cold_water=round(cold_water, 2),
            hot_water=round(hot_water, 2),
            heating=round(heating, 2),
        ),
        electricity=ElectricityUsage(kwh=float(round(electricity))),
        advance_payment=advance_payment,
    )


def generate_sample_data(
    today: Optional[date] = None,
    months: int = 12,
    advance_payment: float = DEFAULT_ADVANCE_PAYMENT,
) -> dict[str, MonthRecord]:
    """
    Sample history ending at the current month.

    Past months carry usage; the current month starts blank so the
    guest has something to fill in.
    """
    current = month_key_for(today or date.today())
    data = {
        shift_month_key(current, -offset): sample_month(
            shift_month_key(current, -offset), advance_payment
        )
        for offset in range(months - 1, 0, -1)
    }
    data[current] = MonthRecord.blank(advance_payment)
    return data

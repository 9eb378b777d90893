"""
Override Resolver

Computes the effective rates, quotas and electricity rate for a month by
layering the month's overrides over the global settings.

Resolution is total: a field missing from every layer resolves to the
settings value, which itself defaults to zero. Legacy stored quota shapes
are upgraded when rows are parsed (see models.rows), so nothing here
knows about schema history.
"""

from typing import Optional

from billing_tracker.models.billing import (
    BillingSettings,
    MonthRecord,
    QuotaField,
    Quotas,
    RateField,
    Rates,
)


def effective_rates(month: Optional[MonthRecord], settings: BillingSettings) -> Rates:
    """Rates for the month: override if present, else the global rate."""
    overrides = month.overrides.rates if month and month.overrides else None
    if overrides is None:
        return settings.rates

    resolved = {}
    for field in RateField:
        value = getattr(overrides, field.value)
        resolved[field.value] = value if value is not None else getattr(settings.rates, field.value)
    return Rates(**resolved)


def effective_quotas(month: Optional[MonthRecord], settings: BillingSettings) -> Quotas:
    """Quotas for the month: override if present, else the global quota."""
    overrides = month.overrides.quotas if month and month.overrides else None
    if overrides is None:
        return settings.quotas

    resolved = {}
    for field in QuotaField:
        value = getattr(overrides, field.value)
        resolved[field.value] = value if value is not None else getattr(settings.quotas, field.value)
    return Quotas(**resolved)


def effective_electricity_rate(month: Optional[MonthRecord], settings: BillingSettings) -> float:
    """Per-kWh price for the month."""
    if month and month.overrides and month.overrides.electricity_rate is not None:
        return month.overrides.electricity_rate
    return settings.electricity_rates.per_kwh

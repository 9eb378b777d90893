"""
Aggregation Engine

Derived financial figures for a month and across the ledger:
fixed cost, variable cost, projected bill, live balance, electricity
cost, cumulative balance and trend series.

DESIGN DECISION: Nothing here is cached. Every figure is recomputed
from the current settings and ledger on each call.

Every month is priced with its own effective rates, including the
fixed components. The cumulative balance is therefore exactly the sum
of the per-month live balances.
"""

from typing import Optional

from pydantic import BaseModel

from billing_tracker.engine.derivation import cost_of
from billing_tracker.engine.ledger import MonthLedger
from billing_tracker.engine.overrides import (
    effective_electricity_rate,
    effective_quotas,
    effective_rates,
)
from billing_tracker.models.billing import (
    BillingSettings,
    MonthRecord,
    Rates,
    TrendPoint,
    parse_month_key,
)


class MonthFigures(BaseModel):
    """Aggregated figures for one month."""

    fixed_costs: float
    variable_costs: float
    projected_bill: float
    live_balance: float
    electricity_cost: float

    @property
    def is_refund(self) -> bool:
        """Positive balance: the advance payment covers the bill."""
        return self.live_balance > 0


class QuotaUsage(BaseModel):
    """How much of one monthly allowance has been used."""

    used: float
    quota: float
    percent: float
    over_quota: bool


def fixed_costs(rates: Rates) -> float:
    return rates.garbage_fixed + rates.parking_fixed + rates.admin_fixed


def variable_costs(month: MonthRecord, rates: Rates) -> float:
    usage = month.usage
    return (
        cost_of(usage.cold_water, rates.cold_water)
        + cost_of(usage.hot_water, rates.hot_water_heating)
        + cost_of(usage.heating, rates.central_heating_variable)
    )


def projected_bill(month: MonthRecord, rates: Rates) -> float:
    return fixed_costs(rates) + variable_costs(month, rates)


def live_balance(month: MonthRecord, rates: Rates) -> float:
    """Positive: refund owed to the user. Negative: the user owes more."""
    return month.advance_payment - projected_bill(month, rates)


def electricity_cost(month: MonthRecord, rate_per_kwh: float) -> float:
    return cost_of(month.electricity.kwh, rate_per_kwh)


def month_figures(month: MonthRecord, settings: BillingSettings) -> MonthFigures:
    """All figures for one month, priced with that month's effective rates."""
    rates = effective_rates(month, settings)
    fixed = fixed_costs(rates)
    variable = variable_costs(month, rates)
    projected = fixed + variable
    return MonthFigures(
        fixed_costs=fixed,
        variable_costs=variable,
        projected_bill=projected,
        live_balance=month.advance_payment - projected,
        electricity_cost=electricity_cost(month, effective_electricity_rate(month, settings)),
    )


def cumulative_live_balance(ledger: MonthLedger, settings: BillingSettings) -> float:
    """Running lifetime reconciliation: sum of every tracked month's live balance."""
    return sum(
        month_figures(record, settings).live_balance
        for record in ledger.records.values()
    )


def trend_window(ledger: MonthLedger, selected_month: str, months_back: int) -> list[str]:
    """
    Keys of the contiguous window ending at the selected month.

    Shorter than months_back when there is less history; never padded.
    An untracked selected month yields an empty window.
    """
    keys = ledger.keys()
    if selected_month not in ledger or months_back <= 0:
        return []
    end = keys.index(selected_month)
    return keys[max(0, end - months_back + 1):end + 1]


def trend_point(month_key: str, month: MonthRecord, settings: BillingSettings) -> TrendPoint:
    figures = month_figures(month, settings)
    first_day = parse_month_key(month_key)
    return TrendPoint(
        month=month_key,
        month_label=first_day.strftime("%B %Y"),
        short_label=first_day.strftime("%b"),
        projected_bill=figures.projected_bill,
        advance_payment=month.advance_payment,
        balance=figures.live_balance,
        cold_water=month.usage.cold_water,
        hot_water=month.usage.hot_water,
        heating=month.usage.heating,
        total_water=month.usage.cold_water + month.usage.hot_water,
        variable_costs=figures.variable_costs,
        fixed_costs=figures.fixed_costs,
        electricity=month.electricity.kwh,
        electricity_cost=figures.electricity_cost,
    )


def trend(
    ledger: MonthLedger,
    settings: BillingSettings,
    selected_month: str,
    months_back: int,
) -> list[TrendPoint]:
    """Trend series in chronological order, ending at the selected month."""
    return [
        trend_point(key, ledger.records[key], settings)
        for key in trend_window(ledger, selected_month, months_back)
    ]


def _quota_usage(used: float, quota: float) -> QuotaUsage:
    percent = min(used / quota * 100, 100.0) if quota > 0 else 0.0
    return QuotaUsage(used=used, quota=quota, percent=percent, over_quota=used > quota)


def quota_usage(month: MonthRecord, settings: BillingSettings) -> dict[str, QuotaUsage]:
    """Usage against the month's effective allowances, per channel."""
    quotas = effective_quotas(month, settings)
    return {
        "cold_water": _quota_usage(month.usage.cold_water, quotas.cold_water_month),
        "hot_water": _quota_usage(month.usage.hot_water, quotas.hot_water_month),
        "heating": _quota_usage(month.usage.heating, quotas.heat_month),
        "electricity": _quota_usage(month.electricity.kwh, quotas.electricity_month),
    }


def electricity_change_percent(
    ledger: MonthLedger,
    settings: BillingSettings,
    selected_month: str,
) -> Optional[float]:
    """Electricity use vs the previous tracked month, in percent."""
    window = trend(ledger, settings, selected_month, 2)
    if len(window) < 2 or window[0].electricity <= 0:
        return None
    previous, current = window
    return (current.electricity - previous.electricity) / previous.electricity * 100

"""Billing engine package: derivation, override resolution, ledger and aggregation."""

from billing_tracker.engine.aggregation import (
    MonthFigures,
    QuotaUsage,
    cumulative_live_balance,
    electricity_change_percent,
    electricity_cost,
    fixed_costs,
    live_balance,
    month_figures,
    projected_bill,
    quota_usage,
    trend,
    trend_window,
    variable_costs,
)
from billing_tracker.engine.derivation import channel_delta, cost_of, usage_from_readings
from billing_tracker.engine.ledger import MonthLedger
from billing_tracker.engine.overrides import (
    effective_electricity_rate,
    effective_quotas,
    effective_rates,
)

__all__ = [
    "MonthFigures",
    "MonthLedger",
    "QuotaUsage",
    "channel_delta",
    "cost_of",
    "cumulative_live_balance",
    "effective_electricity_rate",
    "effective_quotas",
    "effective_rates",
    "electricity_change_percent",
    "electricity_cost",
    "fixed_costs",
    "live_balance",
    "month_figures",
    "projected_bill",
    "quota_usage",
    "trend",
    "trend_window",
    "usage_from_readings",
    "variable_costs",
]

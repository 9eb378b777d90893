"""
Data Models Package

This package contains all Pydantic models used in the Household Billing Tracker.
All billing state and everything exchanged with remote storage conforms to these schemas.
"""

from billing_tracker.models.billing import (
    CURRENCY_CONFIG,
    DEFAULT_ADVANCE_PAYMENT,
    DEFAULT_ELECTRICITY_RATES,
    DEFAULT_QUOTAS,
    DEFAULT_RATES,
    FIXED_RATE_FIELDS,
    MAX_NOTES_LENGTH,
    BillingSettings,
    ElectricityRates,
    ElectricityUsage,
    Identity,
    InvalidMonthKeyError,
    MeterChannel,
    MeterReadings,
    MonthOverrides,
    MonthRecord,
    MonthStatus,
    QuotaField,
    QuotaOverrides,
    Quotas,
    RateField,
    RateOverrides,
    Rates,
    TrendPoint,
    Usage,
    UsageChannel,
    clip_notes,
    month_key_for,
    parse_month_key,
    shift_month_key,
)
from billing_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Billing models
    "CURRENCY_CONFIG",
    "DEFAULT_ADVANCE_PAYMENT",
    "DEFAULT_ELECTRICITY_RATES",
    "DEFAULT_QUOTAS",
    "DEFAULT_RATES",
    "FIXED_RATE_FIELDS",
    "MAX_NOTES_LENGTH",
    "BillingSettings",
    "ElectricityRates",
    "ElectricityUsage",
    "Identity",
    "InvalidMonthKeyError",
    "MeterChannel",
    "MeterReadings",
    "MonthOverrides",
    "MonthRecord",
    "MonthStatus",
    "QuotaField",
    "QuotaOverrides",
    "Quotas",
    "RateField",
    "RateOverrides",
    "Rates",
    "TrendPoint",
    "Usage",
    "UsageChannel",
    "clip_notes",
    "month_key_for",
    "parse_month_key",
    "shift_month_key",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]

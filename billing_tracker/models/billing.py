"""
Core Data Models for Household Billing Tracker

These models define the strict schemas for the billing state:
1. Global settings (rates, quotas, starting meter readings)
2. Per-month records (usage, advance payment, overrides)
3. Derived trend points (never persisted)

DESIGN DECISION: Models are frozen. Every update produces a new value
via model_copy, so a reader holding an old record never observes a
half-applied edit.

Field names are snake_case in Python and camelCase on the wire
(the nested JSON objects stored remotely use camelCase keys).
"""

import re
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class UsageChannel(str, Enum):
    """Water/heat usage quantities tracked per month."""
    COLD_WATER = "cold_water"
    HOT_WATER = "hot_water"
    HEATING = "heating"


class MeterChannel(str, Enum):
    """
    Physical meters.

    Every usage channel has a meter, plus the electricity meter
    whose delta feeds the separate electricity usage.
    """
    COLD_WATER = "cold_water"
    HOT_WATER = "hot_water"
    HEATING = "heating"
    ELECTRICITY = "electricity"


class RateField(str, Enum):
    """Per-unit and fixed monthly prices."""
    COLD_WATER = "cold_water"
    HOT_WATER_HEATING = "hot_water_heating"
    CENTRAL_HEATING_VARIABLE = "central_heating_variable"
    GARBAGE_FIXED = "garbage_fixed"
    PARKING_FIXED = "parking_fixed"
    ADMIN_FIXED = "admin_fixed"


FIXED_RATE_FIELDS = (
    RateField.GARBAGE_FIXED,
    RateField.PARKING_FIXED,
    RateField.ADMIN_FIXED,
)


class QuotaField(str, Enum):
    """Monthly allowances."""
    COLD_WATER_MONTH = "cold_water_month"
    HOT_WATER_MONTH = "hot_water_month"
    HEAT_MONTH = "heat_month"
    ELECTRICITY_MONTH = "electricity_month"


class MonthStatus(str, Enum):
    """How far a month has been filled in."""
    EMPTY = "empty"
    PARTIAL = "partial"
    COMPLETE = "complete"  # User marked as finalized


# =============================================================================
# MONTH KEYS
# =============================================================================

MONTH_KEY_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


class InvalidMonthKeyError(ValueError):
    """A month key is not of the form YYYY-MM."""
    pass


def parse_month_key(key: str) -> date:
    """Parse a YYYY-MM key into the first day of that month."""
    match = MONTH_KEY_PATTERN.match(key or "")
    if not match:
        raise InvalidMonthKeyError(f"Invalid month key: {key!r} (expected YYYY-MM)")
    return date(int(match.group(1)), int(match.group(2)), 1)


def month_key_for(day: date) -> str:
    """The month key containing the given date."""
    return f"{day.year:04d}-{day.month:02d}"


def shift_month_key(key: str, months: int) -> str:
    """Move a month key forward (positive) or backward (negative)."""
    first = parse_month_key(key)
    index = first.year * 12 + (first.month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


# =============================================================================
# SETTINGS MODELS
# =============================================================================

class WireModel(BaseModel):
    """Base for models that are stored as camelCase JSON objects."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Rates(WireModel):
    """Six per-unit/fixed prices."""
    cold_water: float = 0.0
    hot_water_heating: float = 0.0
    central_heating_variable: float = 0.0
    garbage_fixed: float = 0.0
    parking_fixed: float = 0.0
    admin_fixed: float = 0.0


class ElectricityRates(WireModel):
    per_kwh: float = 0.0


class Quotas(WireModel):
    """Monthly allowances used for the over-quota indicators."""
    cold_water_month: float = 0.0
    hot_water_month: float = 0.0
    heat_month: float = 0.0
    electricity_month: float = 0.0


class MeterReadings(WireModel):
    """Absolute values read off the meters."""
    cold_water: float = Field(default=0.0, ge=0)
    hot_water: float = Field(default=0.0, ge=0)
    heating: float = Field(default=0.0, ge=0)
    electricity: float = Field(default=0.0, ge=0)


DEFAULT_RATES = Rates(
    cold_water=14.83,
    hot_water_heating=35.15,
    central_heating_variable=140.61,
    garbage_fixed=188.08,
    parking_fixed=85.10,
    admin_fixed=332.90,
)

DEFAULT_ELECTRICITY_RATES = ElectricityRates(per_kwh=0.85)

DEFAULT_QUOTAS = Quotas(
    cold_water_month=4.0,
    hot_water_month=4.0,
    heat_month=1.0,
    electricity_month=150,
)

DEFAULT_ADVANCE_PAYMENT = 841.16

MAX_NOTES_LENGTH = 2000

CURRENCY_CONFIG: dict[str, dict[str, str]] = {
    "PLN": {"symbol": "zł", "locale": "pl-PL"},
    "EUR": {"symbol": "€", "locale": "de-DE"},
    "USD": {"symbol": "$", "locale": "en-US"},
}


class BillingSettings(BaseModel):
    """
    Global settings, one per account.

    Currency is a display label only; no conversion happens anywhere.
    """
    model_config = ConfigDict(frozen=True)

    currency: str = "zł"
    currency_locale: str = "pl-PL"
    rates: Rates = Field(default_factory=Rates)
    electricity_rates: ElectricityRates = Field(default_factory=ElectricityRates)
    quotas: Quotas = Field(default_factory=Quotas)
    default_advance_payment: float = 0.0
    starting_meter_readings: MeterReadings = Field(
        default_factory=MeterReadings,
        description="Baseline readings for the very first tracked month"
    )

    @classmethod
    def defaults(cls) -> "BillingSettings":
        """Settings a brand new account starts with."""
        return cls(
            rates=DEFAULT_RATES,
            electricity_rates=DEFAULT_ELECTRICITY_RATES,
            quotas=DEFAULT_QUOTAS,
            default_advance_payment=DEFAULT_ADVANCE_PAYMENT,
        )

    @classmethod
    def zeroed(cls) -> "BillingSettings":
        """What 'reset to defaults' installs: default currency, every price zero."""
        return cls()


# =============================================================================
# MONTH MODELS
# =============================================================================

class Usage(WireModel):
    cold_water: float = Field(default=0.0, ge=0)
    hot_water: float = Field(default=0.0, ge=0)
    heating: float = Field(default=0.0, ge=0)

    @property
    def has_any(self) -> bool:
        return self.cold_water > 0 or self.hot_water > 0 or self.heating > 0


class ElectricityUsage(WireModel):
    kwh: float = Field(default=0.0, ge=0)


class RateOverrides(WireModel):
    """Sparse rates; None means inherit from settings."""
    cold_water: Optional[float] = None
    hot_water_heating: Optional[float] = None
    central_heating_variable: Optional[float] = None
    garbage_fixed: Optional[float] = None
    parking_fixed: Optional[float] = None
    admin_fixed: Optional[float] = None


class QuotaOverrides(WireModel):
    """Sparse quotas; None means inherit from settings."""
    cold_water_month: Optional[float] = None
    hot_water_month: Optional[float] = None
    heat_month: Optional[float] = None
    electricity_month: Optional[float] = None


class MonthOverrides(WireModel):
    """
    Month-level values that shadow the global settings for one month only.
    """
    rates: RateOverrides = Field(default_factory=RateOverrides)
    quotas: QuotaOverrides = Field(default_factory=QuotaOverrides)
    electricity_rate: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return (
            not self.rates.model_dump(exclude_none=True)
            and not self.quotas.model_dump(exclude_none=True)
            and self.electricity_rate is None
        )


class MonthRecord(BaseModel):
    """
    Everything recorded for one billing month.

    Usage and meter readings are never negative; the ledger clamps
    values before they get here.
    """
    model_config = ConfigDict(frozen=True)

    usage: Usage = Field(default_factory=Usage)
    electricity: ElectricityUsage = Field(default_factory=ElectricityUsage)
    advance_payment: float = 0.0
    notes: Optional[str] = Field(
        default=None,
        max_length=MAX_NOTES_LENGTH,
        description="Free-text note for the month"
    )
    is_complete: bool = False
    meter_readings: Optional[MeterReadings] = None
    overrides: Optional[MonthOverrides] = None

    @classmethod
    def blank(cls, advance_payment: float) -> "MonthRecord":
        """The implicit record of a month nobody has touched yet."""
        return cls(advance_payment=advance_payment)


def clip_notes(notes: Optional[str]) -> Optional[str]:
    """Empty notes become None; longer notes are cut to MAX_NOTES_LENGTH."""
    if not notes:
        return None
    return notes[:MAX_NOTES_LENGTH]


# =============================================================================
# IDENTITY
# =============================================================================

class Identity(BaseModel):
    """
    The signed-in account, as provided by the authentication collaborator.

    Only the stable account identifier matters to the billing engine.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    user_id: str = Field(..., min_length=1)
    email: Optional[str] = None


# =============================================================================
# DERIVED MODELS
# =============================================================================

class TrendPoint(BaseModel):
    """One month of a historical trend series. Recomputed on every query."""

    month: str
    month_label: str
    short_label: str
    projected_bill: float
    advance_payment: float
    balance: float
    cold_water: float
    hot_water: float
    heating: float
    total_water: float
    variable_costs: float
    fixed_costs: float
    electricity: float
    electricity_cost: float

"""
Persisted Row Schema

Converts between the domain models and the two remote tables:

- settings:   one row per account
- month_data: one row per (account, month)

Rows are plain dicts with snake_case column names; nested objects
(rates, quotas, overrides, meter readings) are camelCase JSON objects.

DESIGN DECISION: Stored quotas come in two schema versions. The old one
had a single combined "waterMonth" allowance. Rows are upgraded here,
once, at load time, so the rest of the engine only ever sees the
per-channel shape.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from billing_tracker.models.billing import (
    BillingSettings,
    ElectricityRates,
    ElectricityUsage,
    MeterReadings,
    MonthOverrides,
    MonthRecord,
    QuotaOverrides,
    Quotas,
    RateOverrides,
    Rates,
    Usage,
    clip_notes,
    parse_month_key,
)


SETTINGS_TABLE = "settings"
MONTH_TABLE = "month_data"

SETTINGS_COLUMNS = [
    "user_id",
    "currency",
    "currency_locale",
    "rates",
    "electricity_rates",
    "quotas",
    "default_advance_payment",
    "starting_meter_readings",
    "created_at",
    "updated_at",
]

MONTH_COLUMNS = [
    "user_id",
    "month",
    "cold_water",
    "hot_water",
    "heating",
    "electricity_kwh",
    "advance_payment",
    "notes",
    "is_complete",
    "overrides",
    "meter_readings",
    "created_at",
    "updated_at",
]

# Hard defaults when neither the modern nor the legacy field is stored
QUOTA_FALLBACKS = {
    "coldWaterMonth": 4.0,
    "hotWaterMonth": 4.0,
    "heatMonth": 1.0,
    "electricityMonth": 150.0,
}

LEGACY_WATER_KEY = "waterMonth"
WATER_QUOTA_KEYS = ("coldWaterMonth", "hotWaterMonth")


class QuotaSchema(str, Enum):
    """Stored quota object versions."""
    COMBINED_WATER = "combined_water"  # {waterMonth, heatMonth, electricityMonth}
    PER_CHANNEL = "per_channel"        # {coldWaterMonth, hotWaterMonth, ...}


def detect_quota_schema(raw: Optional[dict]) -> QuotaSchema:
    """Which quota shape a stored object was written with."""
    raw = raw or {}
    if any(key in raw for key in WATER_QUOTA_KEYS):
        return QuotaSchema.PER_CHANNEL
    if LEGACY_WATER_KEY in raw:
        return QuotaSchema.COMBINED_WATER
    return QuotaSchema.PER_CHANNEL


def _upgrade_quota_values(raw: Optional[dict]) -> dict[str, Optional[float]]:
    """
    Resolve each per-channel quota as: modern field, then legacy combined
    water field (water channels only). Missing stays None.
    """
    raw = raw or {}
    legacy_water = raw.get(LEGACY_WATER_KEY)
    values: dict[str, Optional[float]] = {}
    for key in QUOTA_FALLBACKS:
        value = raw.get(key)
        if value is None and key in WATER_QUOTA_KEYS:
            value = legacy_water
        values[key] = None if value is None else float(value)
    return values


def upgrade_quotas(raw: Optional[dict]) -> Quotas:
    """Upgrade a stored settings quota object to the per-channel shape."""
    values = _upgrade_quota_values(raw)
    return Quotas.model_validate({
        key: QUOTA_FALLBACKS[key] if value is None else value
        for key, value in values.items()
    })


def upgrade_quota_overrides(raw: Optional[dict]) -> QuotaOverrides:
    """Same upgrade for a month's sparse quota overrides; absent stays absent."""
    values = _upgrade_quota_values(raw)
    return QuotaOverrides.model_validate(
        {key: value for key, value in values.items() if value is not None}
    )


def _number(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    return float(value)


def _non_negative(value: Any) -> float:
    return max(0.0, _number(value))


def _meter_readings(raw: Optional[dict]) -> MeterReadings:
    raw = raw or {}
    return MeterReadings(
        cold_water=_non_negative(raw.get("coldWater")),
        hot_water=_non_negative(raw.get("hotWater")),
        heating=_non_negative(raw.get("heating")),
        electricity=_non_negative(raw.get("electricity")),
    )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# SETTINGS
# =============================================================================

def settings_from_row(row: dict) -> BillingSettings:
    """Parse (and upgrade) a stored settings row."""
    defaults = BillingSettings.defaults()
    electricity = row.get("electricity_rates") or {}
    return BillingSettings(
        currency=row.get("currency") or defaults.currency,
        currency_locale=row.get("currency_locale") or defaults.currency_locale,
        rates=Rates.model_validate(row.get("rates") or {}),
        electricity_rates=ElectricityRates(per_kwh=_number(electricity.get("perKwh"))),
        quotas=upgrade_quotas(row.get("quotas")),
        default_advance_payment=_number(row.get("default_advance_payment")),
        starting_meter_readings=_meter_readings(row.get("starting_meter_readings")),
    )


def settings_to_row(user_id: str, settings: BillingSettings) -> dict:
    """Build the upsert payload for the settings table."""
    return {
        "user_id": user_id,
        "currency": settings.currency,
        "currency_locale": settings.currency_locale,
        "rates": settings.rates.model_dump(by_alias=True),
        "electricity_rates": settings.electricity_rates.model_dump(by_alias=True),
        "quotas": settings.quotas.model_dump(by_alias=True),
        "default_advance_payment": settings.default_advance_payment,
        "starting_meter_readings": settings.starting_meter_readings.model_dump(by_alias=True),
        "updated_at": _now_iso(),
    }


# =============================================================================
# MONTH DATA
# =============================================================================

def month_key_from_row(row: dict) -> str:
    key = row.get("month", "")
    parse_month_key(key)
    return key


def month_record_from_row(row: dict) -> MonthRecord:
    """Parse (and upgrade) a stored month_data row."""
    overrides = None
    raw_overrides = row.get("overrides")
    if raw_overrides:
        overrides = MonthOverrides(
            rates=RateOverrides.model_validate(raw_overrides.get("rates") or {}),
            quotas=upgrade_quota_overrides(raw_overrides.get("quotas")),
            electricity_rate=(
                None
                if raw_overrides.get("electricityRate") is None
                else float(raw_overrides["electricityRate"])
            ),
        )

    raw_readings = row.get("meter_readings")
    return MonthRecord(
        usage=Usage(
            cold_water=_non_negative(row.get("cold_water")),
            hot_water=_non_negative(row.get("hot_water")),
            heating=_non_negative(row.get("heating")),
        ),
        electricity=ElectricityUsage(kwh=_non_negative(row.get("electricity_kwh"))),
        advance_payment=_number(row.get("advance_payment")),
        notes=clip_notes(row.get("notes")),
        is_complete=bool(row.get("is_complete") or False),
        overrides=overrides,
        meter_readings=_meter_readings(raw_readings) if raw_readings else None,
    )


def month_record_to_row(user_id: str, month_key: str, record: MonthRecord) -> dict:
    """Build the upsert payload for the month_data table."""
    overrides = None
    if record.overrides is not None:
        overrides = record.overrides.model_dump(by_alias=True, exclude_none=True)

    return {
        "user_id": user_id,
        "month": month_key,
        "cold_water": record.usage.cold_water,
        "hot_water": record.usage.hot_water,
        "heating": record.usage.heating,
        "electricity_kwh": record.electricity.kwh,
        "advance_payment": record.advance_payment,
        "notes": clip_notes(record.notes),
        "is_complete": record.is_complete,
        "overrides": overrides,
        "meter_readings": (
            record.meter_readings.model_dump(by_alias=True)
            if record.meter_readings is not None
            else None
        ),
        "updated_at": _now_iso(),
    }


def month_records_from_rows(rows: Iterable[dict]) -> tuple[dict[str, MonthRecord], dict[str, str]]:
    """
    Parse every month row of an account.

    A row that cannot be parsed is left out instead of failing the
    whole load.

    Returns:
        (records by month key, error message by key of each skipped row)
    """
    months: dict[str, MonthRecord] = {}
    skipped: dict[str, str] = {}
    for row in rows:
        try:
            months[month_key_from_row(row)] = month_record_from_row(row)
        except (ValueError, TypeError, AttributeError) as e:
            skipped[str(row.get("month") or "?")] = str(e)
    return months, skipped

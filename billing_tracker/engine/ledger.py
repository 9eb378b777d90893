"""
Month Ledger

The mapping of month key -> month record.

DESIGN DECISION: The ledger is an immutable value. Every operation
returns a new ledger and leaves the old one untouched, so a reader
holding the previous ledger never sees a half-applied edit.

Chronology is the string order of YYYY-MM keys, never insertion order.
"""

from datetime import date
from types import MappingProxyType
from typing import Callable, Iterator, Mapping, Optional

from billing_tracker.engine.derivation import usage_from_readings
from billing_tracker.models.billing import (
    BillingSettings,
    MeterChannel,
    MeterReadings,
    MonthOverrides,
    MonthRecord,
    MonthStatus,
    QuotaField,
    RateField,
    UsageChannel,
    clip_notes,
    month_key_for,
    parse_month_key,
    shift_month_key,
)


class MonthLedger:
    """
    Immutable collection of month records keyed by YYYY-MM.

    Reading a month that has no record yields the implicit blank
    record instead of failing.
    """

    __slots__ = ("_records",)

    def __init__(self, records: Optional[Mapping[str, MonthRecord]] = None):
        records = dict(records or {})
        for key in records:
            parse_month_key(key)
        self._records = MappingProxyType(records)

    # -------------------------------------------------------------------------
    # Collection protocol
    # -------------------------------------------------------------------------

    def __contains__(self, month_key: object) -> bool:
        return month_key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MonthLedger):
            return NotImplemented
        return dict(self._records) == dict(other._records)

    def __repr__(self) -> str:
        return f"MonthLedger({self.keys()!r})"

    @property
    def records(self) -> Mapping[str, MonthRecord]:
        """Read-only view of the stored records."""
        return self._records

    def keys(self) -> list[str]:
        """Month keys, oldest first."""
        return sorted(self._records)

    def newest_first(self) -> list[str]:
        return sorted(self._records, reverse=True)

    def stored(self, month_key: str) -> Optional[MonthRecord]:
        """The stored record, or None if the month was never written."""
        return self._records.get(month_key)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, month_key: str, settings: BillingSettings) -> MonthRecord:
        """Stored record, or the implicit blank one. Never None."""
        record = self._records.get(month_key)
        if record is None:
            return MonthRecord.blank(settings.default_advance_payment)
        return record

    def previous_key(self, month_key: str) -> Optional[str]:
        """Latest tracked month strictly before month_key."""
        earlier = [key for key in self._records if key < month_key]
        return max(earlier) if earlier else None

    def previous_readings(self, month_key: str, settings: BillingSettings) -> MeterReadings:
        """
        The readings usage for month_key is measured from.

        That is the previous tracked month's readings, or the global
        starting readings when there is no previous month or it has
        no readings recorded.
        """
        previous = self.previous_key(month_key)
        if previous is None:
            return settings.starting_meter_readings
        readings = self._records[previous].meter_readings
        return readings if readings is not None else settings.starting_meter_readings

    def status(self, month_key: str) -> MonthStatus:
        record = self._records.get(month_key)
        if record is None:
            return MonthStatus.EMPTY
        if record.is_complete:
            return MonthStatus.COMPLETE
        if record.usage.has_any or record.electricity.kwh > 0:
            return MonthStatus.PARTIAL
        return MonthStatus.EMPTY

    def older_than(self, month_key: str) -> Optional[str]:
        return self.previous_key(month_key)

    def newer_than(self, month_key: str) -> Optional[str]:
        later = [key for key in self._records if key > month_key]
        return min(later) if later else None

    def selection_after_removal(self, removed_key: str) -> Optional[str]:
        """
        Where the selection goes when removed_key disappears.

        Next-older month first, then next-newer, None once the ledger is empty.
        Call this on the ledger *after* the removal.
        """
        return self.older_than(removed_key) or self.newer_than(removed_key)

    def addable_months(self, today: date, window: int = 24) -> list[str]:
        """Recent calendar months not tracked yet, newest first."""
        current = month_key_for(today)
        candidates = (shift_month_key(current, -offset) for offset in range(window))
        return [key for key in candidates if key not in self._records]

    # -------------------------------------------------------------------------
    # Writes (each returns a new ledger)
    # -------------------------------------------------------------------------

    def with_record(self, month_key: str, record: MonthRecord) -> "MonthLedger":
        parse_month_key(month_key)
        records = dict(self._records)
        records[month_key] = record
        return MonthLedger(records)

    def without(self, month_key: str) -> "MonthLedger":
        if month_key not in self._records:
            return self
        records = dict(self._records)
        del records[month_key]
        return MonthLedger(records)

    def add_month(self, month_key: str, settings: BillingSettings) -> "MonthLedger":
        """Insert a blank record. An existing month is left exactly as it is."""
        if month_key in self._records:
            return self
        return self.with_record(month_key, MonthRecord.blank(settings.default_advance_payment))

    def remove_month(self, month_key: str) -> "MonthLedger":
        return self.without(month_key)

    def update(
        self,
        month_key: str,
        settings: BillingSettings,
        change: Callable[[MonthRecord], MonthRecord],
    ) -> "MonthLedger":
        """Apply change to the month's record, materialising it if absent."""
        return self.with_record(month_key, change(self.get(month_key, settings)))

    def update_usage(
        self,
        month_key: str,
        channel: UsageChannel,
        value: float,
        settings: BillingSettings,
    ) -> "MonthLedger":
        channel = UsageChannel(channel)
        return self.update(month_key, settings, lambda record: record.model_copy(update={
            "usage": record.usage.model_copy(update={channel.value: max(0.0, value)}),
        }))

    def update_electricity_usage(
        self,
        month_key: str,
        kwh: float,
        settings: BillingSettings,
    ) -> "MonthLedger":
        return self.update(month_key, settings, lambda record: record.model_copy(update={
            "electricity": record.electricity.model_copy(update={"kwh": max(0.0, kwh)}),
        }))

    def update_advance_payment(
        self,
        month_key: str,
        amount: float,
        settings: BillingSettings,
    ) -> "MonthLedger":
        return self.update(
            month_key,
            settings,
            lambda record: record.model_copy(update={"advance_payment": amount}),
        )

    def update_meter_reading(
        self,
        month_key: str,
        channel: MeterChannel,
        value: float,
        settings: BillingSettings,
    ) -> "MonthLedger":
        """
        Store a new absolute reading and re-derive the month's usage.

        Readings and the usage derived from them land in one record,
        so they are never observed out of sync.
        """
        channel = MeterChannel(channel)
        previous = self.previous_readings(month_key, settings)

        def change(record: MonthRecord) -> MonthRecord:
            current = record.meter_readings or MeterReadings()
            readings = current.model_copy(update={channel.value: max(0.0, value)})
            usage, electricity = usage_from_readings(readings, previous)
            return record.model_copy(update={
                "meter_readings": readings,
                "usage": usage,
                "electricity": electricity,
            })

        return self.update(month_key, settings, change)

    def set_rate_override(
        self,
        month_key: str,
        field: RateField,
        value: float,
        settings: BillingSettings,
    ) -> "MonthLedger":
        field = RateField(field)

        def change(record: MonthRecord) -> MonthRecord:
            overrides = record.overrides or MonthOverrides()
            rates = overrides.rates.model_copy(update={field.value: value})
            return record.model_copy(update={
                "overrides": overrides.model_copy(update={"rates": rates}),
            })

        return self.update(month_key, settings, change)

    def set_quota_override(
        self,
        month_key: str,
        field: QuotaField,
        value: float,
        settings: BillingSettings,
    ) -> "MonthLedger":
        field = QuotaField(field)

        def change(record: MonthRecord) -> MonthRecord:
            overrides = record.overrides or MonthOverrides()
            quotas = overrides.quotas.model_copy(update={field.value: value})
            return record.model_copy(update={
                "overrides": overrides.model_copy(update={"quotas": quotas}),
            })

        return self.update(month_key, settings, change)

    def set_electricity_rate_override(
        self,
        month_key: str,
        value: float,
        settings: BillingSettings,
    ) -> "MonthLedger":
        def change(record: MonthRecord) -> MonthRecord:
            overrides = record.overrides or MonthOverrides()
            return record.model_copy(update={
                "overrides": overrides.model_copy(update={"electricity_rate": value}),
            })

        return self.update(month_key, settings, change)

    def clear_overrides(self, month_key: str) -> "MonthLedger":
        """Drop every override of a stored month. Untracked months are left alone."""
        record = self._records.get(month_key)
        if record is None:
            return self
        return self.with_record(month_key, record.model_copy(update={"overrides": None}))

    def mark_complete(
        self,
        month_key: str,
        complete: bool,
        settings: BillingSettings,
    ) -> "MonthLedger":
        return self.update(
            month_key,
            settings,
            lambda record: record.model_copy(update={"is_complete": complete}),
        )

    def set_notes(
        self,
        month_key: str,
        notes: Optional[str],
        settings: BillingSettings,
    ) -> "MonthLedger":
        return self.update(
            month_key,
            settings,
            lambda record: record.model_copy(update={"notes": clip_notes(notes)}),
        )

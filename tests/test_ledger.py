"""
Tests for the month ledger.
"""

import pytest
from datetime import date

from billing_tracker.engine import MonthLedger
from billing_tracker.models.billing import (
    BillingSettings,
    ElectricityUsage,
    MAX_NOTES_LENGTH,
    InvalidMonthKeyError,
    MeterChannel,
    MeterReadings,
    MonthRecord,
    MonthStatus,
    QuotaField,
    RateField,
    Usage,
    UsageChannel,
)


@pytest.fixture
def settings():
    return BillingSettings.defaults().model_copy(update={
        "starting_meter_readings": MeterReadings(cold_water=100, hot_water=40, heating=10, electricity=1000),
    })


class TestLedgerReads:
    """Tests for reading months."""

    def test_get_missing_month_is_blank(self, settings):
        """Test an untracked month reads as the implicit default."""
        record = MonthLedger().get("2024-05", settings)
        assert record == MonthRecord.blank(settings.default_advance_payment)

    def test_get_does_not_store(self, settings):
        """Test reading does not materialise a record."""
        ledger = MonthLedger()
        ledger.get("2024-05", settings)
        assert "2024-05" not in ledger

    def test_rejects_invalid_keys(self):
        """Test invalid keys never enter the ledger."""
        with pytest.raises(InvalidMonthKeyError):
            MonthLedger({"2024-13": MonthRecord()})

    def test_keys_are_chronological(self):
        """Test keys sort by month, not insertion."""
        ledger = MonthLedger({key: MonthRecord() for key in ["2024-02", "2023-12", "2024-01"]})
        assert ledger.keys() == ["2023-12", "2024-01", "2024-02"]
        assert ledger.newest_first() == ["2024-02", "2024-01", "2023-12"]
        assert list(ledger) == ledger.keys()

    def test_previous_readings_from_previous_month(self, settings):
        """Test the latest earlier month's readings are used."""
        ledger = MonthLedger({
            "2024-01": MonthRecord(meter_readings=MeterReadings(cold_water=110)),
            "2024-03": MonthRecord(meter_readings=MeterReadings(cold_water=117)),
            "2024-05": MonthRecord(),
        })
        assert ledger.previous_readings("2024-05", settings).cold_water == 117
        assert ledger.previous_readings("2024-03", settings).cold_water == 110

    def test_previous_readings_fallback_to_starting(self, settings):
        """Test starting readings for the first month or a month without readings."""
        ledger = MonthLedger({"2024-01": MonthRecord(), "2024-02": MonthRecord()})
        assert ledger.previous_readings("2024-01", settings) == settings.starting_meter_readings
        assert ledger.previous_readings("2024-02", settings) == settings.starting_meter_readings

    def test_status(self):
        """Test empty/partial/complete classification."""
        ledger = MonthLedger({
            "2024-01": MonthRecord(),
            "2024-02": MonthRecord(usage=Usage(heating=0.1)),
            "2024-03": MonthRecord(electricity=ElectricityUsage(kwh=5)),
            "2024-04": MonthRecord(is_complete=True),
        })
        assert ledger.status("2024-01") == MonthStatus.EMPTY
        assert ledger.status("2024-02") == MonthStatus.PARTIAL
        assert ledger.status("2024-03") == MonthStatus.PARTIAL
        assert ledger.status("2024-04") == MonthStatus.COMPLETE
        assert ledger.status("2030-01") == MonthStatus.EMPTY

    def test_addable_months(self):
        """Test recent untracked months, newest first."""
        ledger = MonthLedger({"2024-05": MonthRecord(), "2024-03": MonthRecord()})
        addable = ledger.addable_months(date(2024, 5, 20), window=4)
        assert addable == ["2024-04", "2024-02"]

    def test_neighbours(self):
        """Test older/newer lookups."""
        ledger = MonthLedger({key: MonthRecord() for key in ["2024-01", "2024-03", "2024-06"]})
        assert ledger.older_than("2024-03") == "2024-01"
        assert ledger.newer_than("2024-03") == "2024-06"
        assert ledger.older_than("2024-01") is None
        assert ledger.newer_than("2024-06") is None


class TestLedgerWrites:
    """Tests for ledger updates."""

    def test_writes_return_new_ledger(self, settings):
        """Test the previous ledger value is never modified."""
        original = MonthLedger()
        updated = original.update_usage("2024-05", UsageChannel.COLD_WATER, 3, settings)
        assert "2024-05" not in original
        assert updated.stored("2024-05").usage.cold_water == 3

    def test_add_month_is_idempotent(self, settings):
        """Test adding twice keeps the first record."""
        ledger = MonthLedger().add_month("2024-05", settings)
        edited = ledger.update_advance_payment("2024-05", 900, settings)
        again = edited.add_month("2024-05", settings)
        assert again is edited
        assert len(again) == 1
        assert again.stored("2024-05").advance_payment == 900

    def test_add_month_uses_default_advance(self, settings):
        """Test added months start with the default advance payment."""
        ledger = MonthLedger().add_month("2024-05", settings)
        assert ledger.stored("2024-05").advance_payment == settings.default_advance_payment

    def test_remove_last_month_empties_ledger(self, settings):
        """Test removing the only month leaves an empty ledger."""
        ledger = MonthLedger().add_month("2024-05", settings).remove_month("2024-05")
        assert len(ledger) == 0

    def test_selection_after_removal(self):
        """Test next-older first, then next-newer, then none."""
        ledger = MonthLedger({key: MonthRecord() for key in ["2024-01", "2024-02", "2024-03"]})
        assert ledger.remove_month("2024-02").selection_after_removal("2024-02") == "2024-01"
        assert ledger.remove_month("2024-01").selection_after_removal("2024-01") == "2024-02"
        assert MonthLedger().selection_after_removal("2024-01") is None

    def test_usage_is_clamped(self, settings):
        """Test negative usage is stored as zero."""
        ledger = MonthLedger().update_usage("2024-05", UsageChannel.HEATING, -2, settings)
        ledger = ledger.update_electricity_usage("2024-05", -10, settings)
        assert ledger.stored("2024-05").usage.heating == 0
        assert ledger.stored("2024-05").electricity.kwh == 0

    def test_meter_reading_derives_usage(self, settings):
        """Test a reading update stores the reading and its derived usage together."""
        ledger = MonthLedger({"2024-04": MonthRecord(meter_readings=MeterReadings(
            cold_water=117.0, hot_water=50, heating=12, electricity=1100,
        ))})
        ledger = ledger.update_meter_reading("2024-05", MeterChannel.COLD_WATER, 120.5, settings)
        record = ledger.stored("2024-05")
        assert record.meter_readings.cold_water == 120.5
        assert record.usage.cold_water == pytest.approx(3.5)
        # Channels without a reading yet count from zero, which clamps to no usage
        assert record.usage.hot_water == 0
        assert record.electricity.kwh == 0

    def test_meter_reading_decrease_clamps_usage(self, settings):
        """Test a reading below the previous one gives zero usage."""
        ledger = MonthLedger({"2024-04": MonthRecord(meter_readings=MeterReadings(heating=15))})
        ledger = ledger.update_meter_reading("2024-05", MeterChannel.HEATING, 10, settings)
        assert ledger.stored("2024-05").usage.heating == 0

    def test_meter_reading_uses_starting_readings(self, settings):
        """Test the first month counts from the starting readings."""
        ledger = MonthLedger().update_meter_reading("2024-05", MeterChannel.ELECTRICITY, 1150, settings)
        assert ledger.stored("2024-05").electricity.kwh == pytest.approx(150)

    def test_meter_reading_is_clamped(self, settings):
        """Test a negative reading is stored as zero."""
        ledger = MonthLedger().update_meter_reading("2024-05", MeterChannel.HOT_WATER, -3, settings)
        assert ledger.stored("2024-05").meter_readings.hot_water == 0

    def test_overrides(self, settings):
        """Test rate, quota and electricity overrides are sparse."""
        ledger = MonthLedger()
        ledger = ledger.set_rate_override("2024-05", RateField.COLD_WATER, 20, settings)
        ledger = ledger.set_quota_override("2024-05", QuotaField.HEAT_MONTH, 2, settings)
        ledger = ledger.set_electricity_rate_override("2024-05", 1.1, settings)
        overrides = ledger.stored("2024-05").overrides
        assert overrides.rates.cold_water == 20
        assert overrides.rates.hot_water_heating is None
        assert overrides.quotas.heat_month == 2
        assert overrides.electricity_rate == 1.1

    def test_clear_overrides(self, settings):
        """Test clearing removes every override; an absent month is untouched."""
        ledger = MonthLedger().set_rate_override("2024-05", RateField.ADMIN_FIXED, 0, settings)
        assert ledger.clear_overrides("2024-05").stored("2024-05").overrides is None
        assert ledger.clear_overrides("2024-06") is ledger

    def test_notes_and_completion(self, settings):
        """Test notes (empty becomes none) and the completion flag."""
        ledger = MonthLedger().set_notes("2024-05", "paid late", settings)
        assert ledger.stored("2024-05").notes == "paid late"
        assert ledger.set_notes("2024-05", "", settings).stored("2024-05").notes is None
        assert ledger.mark_complete("2024-05", True, settings).status("2024-05") == MonthStatus.COMPLETE

    def test_long_notes_are_clipped(self, settings):
        """Test notes over the limit are cut so the record stays storable."""
        ledger = MonthLedger().set_notes("2024-05", "x" * (MAX_NOTES_LENGTH + 50), settings)
        assert ledger.stored("2024-05").notes == "x" * MAX_NOTES_LENGTH

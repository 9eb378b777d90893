"""
Tests for synchronization: debouncing, sample data and the sync coordinator.

Async flows run with asyncio.run against in-memory storage; debounce
windows are shortened to a few milliseconds.
"""

import asyncio
import pytest
from datetime import date
from pydantic import ValidationError

from billing_tracker.audit import AuditLogger
from billing_tracker.config import SyncSettings
from billing_tracker.models.audit import AuditEventType
from billing_tracker.models.billing import BillingSettings, MonthRecord, Usage
from billing_tracker.models.rows import MONTH_TABLE
from billing_tracker.services.storage import ChangeEvent, ChangeType, InMemoryBillingStorage, StorageError
from billing_tracker.sync import (
    KeyedDebouncer,
    SyncCoordinator,
    SyncState,
    generate_sample_data,
    sample_month,
    seeded_random,
)


SETTINGS_DELAY = 0.02
MONTH_DELAY = 0.01


class RecordingStorage(InMemoryBillingStorage):
    """In-memory storage that counts writes."""

    def __init__(self):
        super().__init__()
        self.month_writes: list[tuple[str, MonthRecord]] = []
        self.settings_writes: list[BillingSettings] = []

    async def upsert_month(self, user_id, month_key, record):
        self.month_writes.append((month_key, record))
        return await super().upsert_month(user_id, month_key, record)

    async def upsert_settings(self, user_id, settings):
        self.settings_writes.append(settings)
        return await super().upsert_settings(user_id, settings)


class FailingStorage(InMemoryBillingStorage):
    """Storage whose every remote call fails."""

    async def load_settings(self, user_id):
        raise StorageError("settings unavailable")

    async def load_all_months(self, user_id):
        raise StorageError("months unavailable")

    async def upsert_settings(self, user_id, settings):
        raise StorageError("write rejected")

    async def upsert_month(self, user_id, month_key, record):
        raise StorageError("write rejected")

    async def delete_month(self, user_id, month_key):
        raise StorageError("delete rejected")

    async def subscribe(self, table, user_id, on_change):
        raise StorageError("realtime unavailable")


class BlockingStorage(InMemoryBillingStorage):
    """Storage whose month writes wait until released."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def upsert_month(self, user_id, month_key, record):
        await self.release.wait()
        return await super().upsert_month(user_id, month_key, record)


class BlockingLoadStorage(InMemoryBillingStorage):
    """Storage whose month load waits until released."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def load_all_months(self, user_id):
        await self.release.wait()
        return await super().load_all_months(user_id)


def make_coordinator(storage, audit_logger=None):
    return SyncCoordinator(
        storage,
        "user-1",
        audit_logger=audit_logger,
        settings_delay=SETTINGS_DELAY,
        month_delay=MONTH_DELAY,
    )


class TestSyncSettings:
    """Tests for debounce window configuration."""

    def test_defaults(self):
        """Test the default windows."""
        windows = SyncSettings()
        assert windows.settings_debounce_seconds == 1.0
        assert windows.month_debounce_seconds == 0.5

    def test_month_window_not_longer(self):
        """Test the month window cannot exceed the settings window."""
        with pytest.raises(ValidationError):
            SyncSettings(settings_debounce_seconds=0.5, month_debounce_seconds=1.0)

    def test_window_must_be_positive(self):
        """Test a zero window is rejected."""
        with pytest.raises(ValidationError):
            SyncSettings(month_debounce_seconds=0)


class TestKeyedDebouncer:
    """Tests for the trailing debounce."""

    def test_last_trigger_wins(self):
        """Test rapid triggers coalesce into one call with the last action."""
        async def scenario():
            calls = []
            debouncer = KeyedDebouncer(0.01)
            for value in (1, 2, 3):
                async def action(value=value):
                    calls.append(value)
                debouncer.trigger("k", action)
            assert debouncer.is_pending("k")
            await asyncio.sleep(0.05)
            await debouncer.wait_idle()
            return calls, debouncer.is_pending()

        calls, pending = asyncio.run(scenario())
        assert calls == [3]
        assert pending is False

    def test_keys_are_independent(self):
        """Test a trigger on one key does not cancel another."""
        async def scenario():
            calls = []
            debouncer = KeyedDebouncer(0.01)

            async def first():
                calls.append("a")

            async def second():
                calls.append("b")

            debouncer.trigger("a", first)
            debouncer.trigger("b", second)
            await asyncio.sleep(0.05)
            await debouncer.wait_idle()
            return sorted(calls)

        assert asyncio.run(scenario()) == ["a", "b"]

    def test_cancel(self):
        """Test a cancelled timer never fires."""
        async def scenario():
            calls = []
            debouncer = KeyedDebouncer(0.01)

            async def action():
                calls.append(1)

            debouncer.trigger("k", action)
            assert debouncer.cancel("k") is True
            assert debouncer.cancel("k") is False
            await asyncio.sleep(0.03)
            return calls

        assert asyncio.run(scenario()) == []

    def test_flush_runs_pending_now(self):
        """Test flush does not wait for the window."""
        async def scenario():
            calls = []
            debouncer = KeyedDebouncer(60)

            async def action():
                calls.append(1)

            debouncer.trigger("k", action)
            await debouncer.flush()
            return calls, debouncer.pending_keys

        calls, pending = asyncio.run(scenario())
        assert calls == [1]
        assert pending == []


class TestSampleData:
    """Tests for deterministic guest data."""

    def test_seeded_random_range(self):
        """Test values are in [0, 1)."""
        for seed in range(24000, 24300):
            assert 0 <= seeded_random(seed) < 1

    def test_deterministic(self):
        """Test the same month always produces the same values."""
        assert sample_month("2024-01") == sample_month("2024-01")
        today = date(2024, 6, 15)
        assert generate_sample_data(today) == generate_sample_data(today)

    def test_shape(self):
        """Test past months carry usage and the current month is blank."""
        data = generate_sample_data(date(2024, 6, 15), months=12, advance_payment=500)
        assert len(data) == 12
        assert min(data) == "2023-07"
        assert data["2024-06"] == MonthRecord.blank(500)
        assert all(data[key].usage.has_any for key in data if key != "2024-06")
        assert all(record.advance_payment == 500 for record in data.values())

    def test_seasonal_heating(self):
        """Test winter heating is above summer heating."""
        assert sample_month("2024-01").usage.heating >= 0.8
        assert sample_month("2024-07").usage.heating <= 0.15


class TestCoordinatorLoad:
    """Tests for the initial load."""

    def test_new_account_gets_defaults(self):
        """Test an account without rows gets defaults and an empty ledger."""
        loaded = asyncio.run(make_coordinator(InMemoryBillingStorage()).load())
        assert loaded.settings == BillingSettings.defaults()
        assert loaded.months == {}
        assert loaded.settings_found is False
        assert loaded.errors == []

    def test_existing_account(self):
        """Test stored settings and months are returned."""
        async def scenario():
            storage = InMemoryBillingStorage()
            await storage.upsert_settings("user-1", BillingSettings.zeroed())
            await storage.upsert_month("user-1", "2024-05", MonthRecord(advance_payment=1))
            return await make_coordinator(storage).load()

        loaded = asyncio.run(scenario())
        assert loaded.settings == BillingSettings.zeroed()
        assert loaded.settings_found is True
        assert list(loaded.months) == ["2024-05"]

    def test_load_failure_falls_back(self):
        """Test failed reads are recorded and replaced by defaults."""
        audit = AuditLogger()
        coordinator = make_coordinator(FailingStorage(), audit)
        loaded = asyncio.run(coordinator.load())
        assert loaded.settings == BillingSettings.defaults()
        assert loaded.months == {}
        assert len(loaded.errors) == 2
        assert coordinator.last_error == "months unavailable"
        assert coordinator.syncing is False
        assert audit.last_error.event_type == AuditEventType.LOAD_FAILED

    def test_syncing_during_load(self):
        """Test syncing is true while the initial load is in flight."""
        async def scenario():
            storage = BlockingLoadStorage()
            coordinator = make_coordinator(storage)
            task = asyncio.ensure_future(coordinator.load())
            await asyncio.sleep(0.01)
            during = coordinator.syncing
            storage.release.set()
            await task
            return during, coordinator.syncing

        during, after = asyncio.run(scenario())
        assert during is True
        assert after is False

    def test_unreadable_rows_are_reported(self):
        """Test skipped month rows reach the load result and the audit log."""
        storage = InMemoryBillingStorage()
        storage.put_month_row({"user_id": "user-1", "month": "2024-04"})
        storage.put_month_row({"user_id": "user-1", "month": "2024-05", "heating": "n/a"})
        audit = AuditLogger()
        loaded = asyncio.run(make_coordinator(storage, audit).load())
        assert list(loaded.months) == ["2024-04"]
        assert list(loaded.skipped_rows) == ["2024-05"]
        assert loaded.errors == []
        skipped = [e for e in audit.recent_events if e.event_type == AuditEventType.ROW_SKIPPED]
        assert [e.entity_key for e in skipped] == ["2024-05"]
        assert audit.recent_events[-1].event_type == AuditEventType.DATA_LOADED


class TestCoordinatorWrites:
    """Tests for debounced and immediate writes."""

    def test_month_writes_coalesce(self):
        """Test rapid edits of one month produce one write with the last value."""
        async def scenario():
            storage = RecordingStorage()
            coordinator = make_coordinator(storage)
            for advance in (1, 2, 3):
                coordinator.schedule_month_write("2024-05", MonthRecord(advance_payment=advance))
            assert coordinator.ledger_state == SyncState.PENDING_WRITE
            await asyncio.sleep(0.05)
            await coordinator.flush()
            return storage.month_writes, coordinator.ledger_state

        writes, state = asyncio.run(scenario())
        assert [(key, record.advance_payment) for key, record in writes] == [("2024-05", 3)]
        assert state == SyncState.IDLE

    def test_edits_to_two_months_both_persist(self):
        """Test each month has its own timer."""
        async def scenario():
            storage = RecordingStorage()
            coordinator = make_coordinator(storage)
            coordinator.schedule_month_write("2024-04", MonthRecord(advance_payment=4))
            coordinator.schedule_month_write("2024-05", MonthRecord(advance_payment=5))
            await asyncio.sleep(0.05)
            await coordinator.flush()
            return sorted(key for key, _ in storage.month_writes)

        assert asyncio.run(scenario()) == ["2024-04", "2024-05"]

    def test_settings_writes_coalesce(self):
        """Test rapid settings edits produce one write."""
        async def scenario():
            storage = RecordingStorage()
            coordinator = make_coordinator(storage)
            for payment in (100, 200, 300):
                coordinator.schedule_settings_write(
                    BillingSettings.defaults().model_copy(update={"default_advance_payment": payment})
                )
            assert coordinator.settings_state == SyncState.PENDING_WRITE
            await asyncio.sleep(0.08)
            await coordinator.flush()
            return storage.settings_writes

        writes = asyncio.run(scenario())
        assert [s.default_advance_payment for s in writes] == [300]

    def test_write_failure_is_recorded(self):
        """Test a rejected write is recorded, not raised, and clears syncing."""
        audit = AuditLogger()
        coordinator = make_coordinator(FailingStorage(), audit)
        saved = asyncio.run(coordinator.write_month_now("2024-05", MonthRecord()))
        assert saved is False
        assert coordinator.last_error == "write rejected"
        assert coordinator.syncing is False
        assert audit.last_error.event_type == AuditEventType.SAVE_FAILED
        assert audit.last_error.entity_key == "2024-05"

    def test_delete_failure_is_recorded(self):
        """Test a rejected delete is recorded, not raised."""
        audit = AuditLogger()
        coordinator = make_coordinator(FailingStorage(), audit)
        assert asyncio.run(coordinator.delete_month("2024-05")) is False
        assert audit.last_error.event_type == AuditEventType.DELETE_FAILED

    def test_syncing_while_in_flight(self):
        """Test syncing is true for the duration of a write."""
        async def scenario():
            storage = BlockingStorage()
            coordinator = make_coordinator(storage)
            task = asyncio.ensure_future(coordinator.write_month_now("2024-05", MonthRecord()))
            await asyncio.sleep(0)
            during = coordinator.syncing
            storage.release.set()
            await task
            return during, coordinator.syncing

        during, after = asyncio.run(scenario())
        assert during is True
        assert after is False

    def test_state_pending_until_write_completes(self):
        """Test a fired write keeps the resource pending until the store answers."""
        async def scenario():
            storage = BlockingStorage()
            coordinator = make_coordinator(storage)
            coordinator.schedule_month_write("2024-05", MonthRecord())
            scheduled = coordinator.ledger_state
            await asyncio.sleep(MONTH_DELAY * 3)
            sending = (
                coordinator.ledger_state,
                coordinator.month_write_pending("2024-05"),
                coordinator.syncing,
            )
            storage.release.set()
            await coordinator.flush()
            return scheduled, sending, coordinator.ledger_state

        scheduled, sending, done = asyncio.run(scenario())
        assert scheduled == SyncState.PENDING_WRITE
        assert sending == (SyncState.PENDING_WRITE, False, True)
        assert done == SyncState.IDLE

    def test_delete_drops_pending_write(self):
        """Test a pending write cannot bring a deleted month back."""
        async def scenario():
            storage = RecordingStorage()
            coordinator = make_coordinator(storage)
            await coordinator.write_month_now("2024-05", MonthRecord())
            coordinator.schedule_month_write("2024-05", MonthRecord(advance_payment=9))
            await coordinator.delete_month("2024-05")
            await asyncio.sleep(0.05)
            return len(storage.month_writes), storage.month_rows("user-1")

        writes, rows = asyncio.run(scenario())
        assert writes == 1
        assert rows == {}

    def test_close_cancels_pending_writes(self):
        """Test nothing is written after close."""
        async def scenario():
            storage = RecordingStorage()
            coordinator = make_coordinator(storage)
            coordinator.schedule_month_write("2024-05", MonthRecord())
            coordinator.schedule_settings_write(BillingSettings.defaults())
            await coordinator.close()
            coordinator.schedule_month_write("2024-06", MonthRecord())
            await asyncio.sleep(0.05)
            return storage.month_writes, storage.settings_writes

        assert asyncio.run(scenario()) == ([], [])


class TestCoordinatorSubscriptions:
    """Tests for inbound change routing."""

    def test_inbound_events_are_forwarded(self):
        """Test changes of the account reach the handler."""
        async def scenario():
            storage = InMemoryBillingStorage()
            coordinator = make_coordinator(storage)
            received = []
            await coordinator.subscribe(received.append)
            await storage.upsert_month("user-1", "2024-05", MonthRecord(usage=Usage(heating=1)))
            await asyncio.sleep(0)
            return received

        received = asyncio.run(scenario())
        assert len(received) == 1
        assert received[0].table == MONTH_TABLE
        assert received[0].change_type == ChangeType.INSERT

    def test_no_events_after_close(self):
        """Test close unsubscribes every table."""
        async def scenario():
            storage = InMemoryBillingStorage()
            coordinator = make_coordinator(storage)
            received = []
            await coordinator.subscribe(received.append)
            subscribed = storage.subscription_count
            await coordinator.close()
            await storage.upsert_month("user-1", "2024-05", MonthRecord())
            await asyncio.sleep(0)
            return subscribed, storage.subscription_count, received

        subscribed, remaining, received = asyncio.run(scenario())
        assert subscribed == 2
        assert remaining == 0
        assert received == []

    def test_handler_ignores_events_after_close(self):
        """Test an event already in flight at close is dropped."""
        async def scenario():
            coordinator = make_coordinator(InMemoryBillingStorage())
            received = []
            handler = coordinator._inbound(received.append)
            await coordinator.close()
            handler(ChangeEvent(table=MONTH_TABLE, change_type=ChangeType.DELETE,
                                user_id="user-1", month_key="2024-05"))
            return received

        assert asyncio.run(scenario()) == []

    def test_subscription_failure_is_recorded(self):
        """Test a failed subscription is logged and skipped."""
        audit = AuditLogger()
        coordinator = make_coordinator(FailingStorage(), audit)
        asyncio.run(coordinator.subscribe(lambda event: None))
        events = [e.event_type for e in audit.recent_events]
        assert events.count(AuditEventType.SUBSCRIPTION_FAILED) == 2
        assert coordinator.last_error == "realtime unavailable"

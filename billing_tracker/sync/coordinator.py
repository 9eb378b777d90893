"""
Sync Coordinator

Keeps the remote store in step with local state:
1. Initial bulk load when an account becomes available
2. Debounced write-through of local edits
3. Immediate writes/deletes where a month must exist (or vanish) remotely now
4. Inbound change subscriptions, handed to the state container

STATE MACHINE (per resource: settings, month ledger):
    idle --local edit--> pending-write --timer fires, write done--> idle
    Further edits while pending restart the timer (trailing debounce).

DESIGN DECISION: Failures are recorded, never raised and never retried.
The optimistic local edit stands; the next successful write carries it.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from billing_tracker.audit import AuditLogger
from billing_tracker.config import get_settings
from billing_tracker.models.billing import BillingSettings, MonthRecord
from billing_tracker.models.rows import MONTH_TABLE, SETTINGS_TABLE
from billing_tracker.services.storage import (
    BillingStorageInterface,
    ChangeEvent,
    ChangeHandler,
    Subscription,
)
from billing_tracker.sync.debounce import KeyedDebouncer


SETTINGS_KEY = "settings"


class SyncState(str, Enum):
    """Write state of one synced resource."""
    IDLE = "idle"
    PENDING_WRITE = "pending_write"  # Scheduled or being sent


class LoadedState(BaseModel):
    """What the initial load produced."""

    settings: BillingSettings
    months: dict[str, MonthRecord] = Field(default_factory=dict)
    settings_found: bool = False
    errors: list[str] = Field(default_factory=list)
    skipped_rows: dict[str, str] = Field(default_factory=dict)


class SyncCoordinator:
    """
    Persistence and reconciliation for one signed-in account.

    Construct one per session; call close() on teardown so no timer
    fires and no push event lands after the session is gone.
    """

    def __init__(
        self,
        storage: BillingStorageInterface,
        user_id: str,
        audit_logger: Optional[AuditLogger] = None,
        settings_delay: Optional[float] = None,
        month_delay: Optional[float] = None,
    ):
        if settings_delay is None or month_delay is None:
            windows = get_settings().sync
            settings_delay = settings_delay or windows.settings_debounce_seconds
            month_delay = month_delay or windows.month_debounce_seconds

        self._storage = storage
        self._user_id = user_id
        self._audit = audit_logger or AuditLogger()
        self._settings_writes = KeyedDebouncer(settings_delay, name=SETTINGS_TABLE)
        self._month_writes = KeyedDebouncer(month_delay, name=MONTH_TABLE)
        self._subscriptions: list[Subscription] = []
        self._in_flight = 0
        self._closed = False
        self.last_error: Optional[str] = None

    # -------------------------------------------------------------------------
    # Observable state
    # -------------------------------------------------------------------------

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def syncing(self) -> bool:
        """True while any read or write is in flight."""
        return self._in_flight > 0

    @property
    def closed(self) -> bool:
        return self._closed

    @staticmethod
    def _write_state(writes: KeyedDebouncer) -> SyncState:
        # A fired write stays pending until it completes
        if writes.is_pending() or writes.in_flight:
            return SyncState.PENDING_WRITE
        return SyncState.IDLE

    @property
    def settings_state(self) -> SyncState:
        return self._write_state(self._settings_writes)

    @property
    def ledger_state(self) -> SyncState:
        return self._write_state(self._month_writes)

    def month_write_pending(self, month_key: str) -> bool:
        return self._month_writes.is_pending(month_key)

    # -------------------------------------------------------------------------
    # Initial load
    # -------------------------------------------------------------------------

    async def load(self) -> LoadedState:
        """
        Fetch settings and every month of the account.

        A missing settings row means a new account: defaults, not sample
        data. A failed read is recorded and replaced by the same defaults.
        """
        errors = []
        settings = None
        months: dict[str, MonthRecord] = {}
        skipped: dict[str, str] = {}

        self._in_flight += 1
        try:
            try:
                settings = await self._storage.load_settings(self._user_id)
            except Exception as e:
                errors.append(str(e))
                self.last_error = str(e)
                self._audit.log_load_failed(self._user_id, SETTINGS_TABLE, str(e))

            try:
                months = await self._storage.load_all_months(self._user_id)
                skipped = self._storage.skipped_rows
            except Exception as e:
                errors.append(str(e))
                self.last_error = str(e)
                self._audit.log_load_failed(self._user_id, MONTH_TABLE, str(e))
        finally:
            self._in_flight -= 1

        for row_key, error in skipped.items():
            self._audit.log_row_skipped(self._user_id, MONTH_TABLE, row_key, error)
        if not errors:
            self._audit.log_data_loaded(self._user_id, settings is not None, len(months))

        return LoadedState(
            settings=settings if settings is not None else BillingSettings.defaults(),
            months=months,
            settings_found=settings is not None,
            errors=errors,
            skipped_rows=skipped,
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def schedule_settings_write(self, settings: BillingSettings) -> None:
        """
        Debounce a settings save.

        Each call replaces the snapshot to be written; only the last one
        inside the quiet window reaches the store.
        """
        if self._closed:
            return

        async def write() -> None:
            await self.write_settings_now(settings)

        self._settings_writes.trigger(SETTINGS_KEY, write)

    def schedule_month_write(
        self,
        month_key: str,
        record: MonthRecord,
    ) -> None:
        """
        Debounce a month save. Each month key has its own timer, so
        edits to different months never cancel each other.
        """
        if self._closed:
            return

        async def write() -> None:
            await self.write_month_now(month_key, record, immediate=False)

        self._month_writes.trigger(month_key, write)

    async def write_settings_now(self, settings: BillingSettings) -> bool:
        self._in_flight += 1
        try:
            await self._storage.upsert_settings(self._user_id, settings)
            self._audit.log_settings_saved(self._user_id)
            return True
        except Exception as e:
            self.last_error = str(e)
            self._audit.log_save_failed(self._user_id, SETTINGS_TABLE, str(e))
            return False
        finally:
            self._in_flight -= 1

    async def write_month_now(
        self,
        month_key: str,
        record: MonthRecord,
        immediate: bool = True,
    ) -> bool:
        """Upsert one month without debouncing."""
        self._in_flight += 1
        try:
            await self._storage.upsert_month(self._user_id, month_key, record)
            self._audit.log_month_saved(self._user_id, month_key, immediate)
            return True
        except Exception as e:
            self.last_error = str(e)
            self._audit.log_save_failed(self._user_id, MONTH_TABLE, str(e), month_key)
            return False
        finally:
            self._in_flight -= 1

    async def delete_month(self, month_key: str) -> bool:
        """
        Delete one month remotely.

        A pending debounced write for the month is dropped first so it
        cannot bring the month back.
        """
        self._month_writes.cancel(month_key)
        self._in_flight += 1
        try:
            await self._storage.delete_month(self._user_id, month_key)
            self._audit.log_month_deleted(self._user_id, month_key)
            return True
        except Exception as e:
            self.last_error = str(e)
            self._audit.log_delete_failed(self._user_id, month_key, str(e))
            return False
        finally:
            self._in_flight -= 1

    async def flush(self) -> None:
        """Send every pending debounced write now and wait for it."""
        await self._settings_writes.flush()
        await self._month_writes.flush()

    # -------------------------------------------------------------------------
    # Real-time
    # -------------------------------------------------------------------------

    async def subscribe(self, on_change: ChangeHandler) -> None:
        """
        Route inbound changes of both tables to on_change.

        A table whose subscription fails is logged and skipped;
        local editing and writes keep working without live updates.
        """
        for table in (SETTINGS_TABLE, MONTH_TABLE):
            try:
                subscription = await self._storage.subscribe(
                    table, self._user_id, self._inbound(on_change)
                )
            except Exception as e:
                self.last_error = str(e)
                self._audit.log_subscription_failed(self._user_id, table, str(e))
                continue
            self._subscriptions.append(subscription)

    def _inbound(self, on_change: ChangeHandler) -> ChangeHandler:
        def handle(event: ChangeEvent) -> None:
            if self._closed:
                return
            self._audit.log_remote_change(
                self._user_id, event.table, event.change_type.value, event.month_key
            )
            on_change(event)
        return handle

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel pending timers and unsubscribe. Writes already sent finish."""
        self._closed = True
        self._settings_writes.cancel_all()
        self._month_writes.cancel_all()
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.unsubscribe()

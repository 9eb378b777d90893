"""
Billing Store

The public state container. It holds the single source of truth for
one session (settings, month ledger, selected month) and ties the
other components together:
1. Commands produce a new settings/ledger value and schedule a write
2. Reads recompute every figure from the current state
3. Inbound remote changes go through the same commit path as commands

DESIGN DECISION: Commands are synchronous and never fail on sync
faults. Only persistence is asynchronous, and its failures surface
through `syncing`, `last_error` and the audit log.
"""

from datetime import date
from typing import Callable, Mapping, Optional

import structlog

from billing_tracker.audit import AuditLogger
from billing_tracker.config import get_settings, is_storage_configured
from billing_tracker.engine import (
    MonthFigures,
    MonthLedger,
    QuotaUsage,
    effective_electricity_rate,
    effective_quotas,
    effective_rates,
    month_figures,
    usage_from_readings,
)
from billing_tracker.engine import aggregation
from billing_tracker.models.billing import (
    CURRENCY_CONFIG,
    BillingSettings,
    ElectricityUsage,
    Identity,
    MeterChannel,
    MeterReadings,
    MonthRecord,
    MonthStatus,
    QuotaField,
    Quotas,
    RateField,
    Rates,
    TrendPoint,
    Usage,
    UsageChannel,
    month_key_for,
    parse_month_key,
)
from billing_tracker.models.rows import MONTH_TABLE, SETTINGS_TABLE
from billing_tracker.services.storage import BillingStorageInterface, ChangeEvent, ChangeType
from billing_tracker.sync import SyncCoordinator, generate_sample_data


DEFAULT_CURRENCY_CODE = "PLN"


class BillingStore:
    """
    State container for one billing session.

    Construct it once, call start() when the identity is known, and
    close() on teardown. Without an identity or a storage backend the
    store runs in guest mode: sample data, nothing is persisted.
    """

    def __init__(
        self,
        storage: Optional[BillingStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings_delay: Optional[float] = None,
        month_delay: Optional[float] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._settings_delay = settings_delay
        self._month_delay = month_delay
        self._clock = clock or date.today
        self._app = get_settings().app

        self._settings = BillingSettings.defaults()
        self._ledger = MonthLedger()
        self._selected_month = month_key_for(self._clock())
        self._identity: Optional[Identity] = None
        self._coordinator: Optional[SyncCoordinator] = None
        self._loading = False
        self._guest = True
        self._load_errors: list[str] = []
        self._skipped_rows: dict[str, str] = {}

    # -------------------------------------------------------------------------
    # Session state
    # -------------------------------------------------------------------------

    @property
    def settings(self) -> BillingSettings:
        return self._settings

    @property
    def ledger(self) -> MonthLedger:
        return self._ledger

    @property
    def month_data(self) -> Mapping[str, MonthRecord]:
        return self._ledger.records

    @property
    def selected_month(self) -> str:
        return self._selected_month

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_guest(self) -> bool:
        return self._guest

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def syncing(self) -> bool:
        return self._coordinator is not None and self._coordinator.syncing

    @property
    def _sync(self) -> Optional[SyncCoordinator]:
        """The coordinator, while it is still open."""
        if self._coordinator is None or self._coordinator.closed:
            return None
        return self._coordinator

    @property
    def last_error(self) -> Optional[str]:
        if self._coordinator is None:
            return None
        return self._coordinator.last_error

    @property
    def load_errors(self) -> list[str]:
        return list(self._load_errors)

    @property
    def skipped_rows(self) -> dict[str, str]:
        """Stored month rows that could not be read, with the reason."""
        return dict(self._skipped_rows)

    @property
    def coordinator(self) -> Optional[SyncCoordinator]:
        return self._coordinator

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, identity: Optional[Identity]) -> None:
        """
        Load the state for identity and subscribe to remote changes.

        No identity, or no storage backend, means guest mode.
        Calling start again (sign-in, sign-out) tears the previous
        session down first.
        """
        await self.close()
        self._identity = identity
        self._load_errors = []
        self._skipped_rows = {}
        self._selected_month = month_key_for(self._clock())

        self._coordinator = None
        self._guest = identity is None or self._storage is None
        if self._guest:
            reason = "signed out" if identity is None else "storage not configured"
            self._start_guest(reason)
            return

        self._coordinator = SyncCoordinator(
            self._storage,
            identity.user_id,
            audit_logger=self._audit,
            settings_delay=self._settings_delay,
            month_delay=self._month_delay,
        )
        self._loading = True
        try:
            loaded = await self._coordinator.load()
        finally:
            self._loading = False

        self._settings = loaded.settings
        self._ledger = MonthLedger(loaded.months)
        self._load_errors = loaded.errors
        self._skipped_rows = loaded.skipped_rows
        await self._coordinator.subscribe(self.apply_remote_change)

    def _start_guest(self, reason: str) -> None:
        self._settings = BillingSettings.defaults()
        self._ledger = MonthLedger(generate_sample_data(
            today=self._clock(),
            months=self._app.sample_months,
            advance_payment=self._settings.default_advance_payment,
        ))
        self._audit.log_demo_mode(reason)

    async def flush(self) -> None:
        """Send pending debounced writes now."""
        if self._sync is not None:
            await self._sync.flush()

    async def close(self) -> None:
        """Cancel pending writes and stop listening. Local state is kept."""
        if self._sync is not None:
            await self._coordinator.close()

    # -------------------------------------------------------------------------
    # Commit path (local commands and remote changes)
    # -------------------------------------------------------------------------

    def _commit_settings(self, settings: BillingSettings, persist: bool = True) -> None:
        self._settings = settings
        if persist and self._sync is not None:
            self._sync.schedule_settings_write(settings)

    def _commit_month(self, ledger: MonthLedger, month_key: str, persist: bool = True) -> None:
        self._ledger = ledger
        record = ledger.stored(month_key)
        if persist and record is not None and self._sync is not None:
            self._sync.schedule_month_write(month_key, record)

    def apply_remote_change(self, event: ChangeEvent) -> bool:
        """
        Merge one inbound change into local state.

        Settings are replaced wholesale; months are upserted or deleted
        by key. Re-applying a value already held is a no-op. Returns
        whether anything changed.
        """
        if event.table == SETTINGS_TABLE:
            if event.change_type == ChangeType.DELETE or event.settings is None:
                return False
            if event.settings == self._settings:
                return False
            self._commit_settings(event.settings, persist=False)
            return True

        if event.table != MONTH_TABLE or event.month_key is None:
            return False

        if event.change_type == ChangeType.DELETE:
            if event.month_key not in self._ledger:
                return False
            self._ledger = self._ledger.without(event.month_key)
            return True

        if event.record is None or self._ledger.stored(event.month_key) == event.record:
            return False
        self._commit_month(
            self._ledger.with_record(event.month_key, event.record),
            event.month_key,
            persist=False,
        )
        return True

    # -------------------------------------------------------------------------
    # Settings commands
    # -------------------------------------------------------------------------

    def update_currency(self, code: str) -> None:
        """Switch the currency label. Unknown codes fall back to PLN."""
        preset = CURRENCY_CONFIG.get(code.upper(), CURRENCY_CONFIG[DEFAULT_CURRENCY_CODE])
        self._commit_settings(self._settings.model_copy(update={
            "currency": preset["symbol"],
            "currency_locale": preset["locale"],
        }))

    def update_rate(self, field: RateField, value: float) -> None:
        self.update_rates({RateField(field): value})

    def update_rates(self, changes: Mapping) -> None:
        update = {RateField(field).value: value for field, value in changes.items()}
        rates = Rates.model_validate({**self._settings.rates.model_dump(), **update})
        self._commit_settings(self._settings.model_copy(update={"rates": rates}))

    def update_electricity_rate(self, value: float) -> None:
        electricity_rates = self._settings.electricity_rates.model_copy(update={"per_kwh": value})
        self._commit_settings(self._settings.model_copy(update={"electricity_rates": electricity_rates}))

    def update_quota(self, field: QuotaField, value: float) -> None:
        field = QuotaField(field)
        quotas = Quotas.model_validate({**self._settings.quotas.model_dump(), field.value: value})
        self._commit_settings(self._settings.model_copy(update={"quotas": quotas}))

    def update_default_advance_payment(self, amount: float) -> None:
        self._commit_settings(self._settings.model_copy(update={"default_advance_payment": amount}))

    def update_starting_meter_reading(self, channel: MeterChannel, value: float) -> None:
        channel = MeterChannel(channel)
        readings = self._settings.starting_meter_readings.model_copy(
            update={channel.value: max(0.0, value)}
        )
        self._commit_settings(self._settings.model_copy(update={"starting_meter_readings": readings}))

    def reset_to_defaults(self) -> None:
        """Install the zeroed settings: default currency, every price and quota zero."""
        self._commit_settings(BillingSettings.zeroed())

    # -------------------------------------------------------------------------
    # Month commands (selected month unless month_key is given)
    # -------------------------------------------------------------------------

    def _target(self, month_key: Optional[str]) -> str:
        key = month_key or self._selected_month
        parse_month_key(key)
        return key

    def update_usage(self, channel: UsageChannel, value: float, month_key: Optional[str] = None) -> None:
        key = self._target(month_key)
        self._commit_month(self._ledger.update_usage(key, channel, value, self._settings), key)

    def update_electricity_usage(self, kwh: float, month_key: Optional[str] = None) -> None:
        key = self._target(month_key)
        self._commit_month(self._ledger.update_electricity_usage(key, kwh, self._settings), key)

    def update_advance_payment(self, amount: float, month_key: Optional[str] = None) -> None:
        key = self._target(month_key)
        self._commit_month(self._ledger.update_advance_payment(key, amount, self._settings), key)

    def update_meter_reading(self, channel: MeterChannel, value: float, month_key: Optional[str] = None) -> None:
        key = self._target(month_key)
        self._commit_month(self._ledger.update_meter_reading(key, channel, value, self._settings), key)

    def update_month_rate(self, field: RateField, value: float, month_key: Optional[str] = None) -> None:
        key = self._target(month_key)
        self._commit_month(self._ledger.set_rate_override(key, field, value, self._settings), key)

    def update_month_quota(self, field: QuotaField, value: float, month_key: Optional[str] = None) -> None:
        key = self._target(month_key)
        self._commit_month(self._ledger.set_quota_override(key, field, value, self._settings), key)

    def update_month_electricity_rate(self, value: float, month_key: Optional[str] = None) -> None:
        key = self._target(month_key)
        self._commit_month(
            self._ledger.set_electricity_rate_override(key, value, self._settings), key
        )

    def clear_month_overrides(self, month_key: Optional[str] = None) -> None:
        key = self._target(month_key)
        ledger = self._ledger.clear_overrides(key)
        if ledger is not self._ledger:
            self._commit_month(ledger, key)

    def mark_month_complete(self, complete: bool = True, month_key: Optional[str] = None) -> None:
        key = self._target(month_key)
        self._commit_month(self._ledger.mark_complete(key, complete, self._settings), key)

    def update_month_notes(self, notes: Optional[str], month_key: Optional[str] = None) -> None:
        key = self._target(month_key)
        self._commit_month(self._ledger.set_notes(key, notes, self._settings), key)

    async def add_month(self, month_key: str, select: bool = True) -> bool:
        """
        Start tracking a month and persist it right away.

        A month that already exists is left untouched and nothing is
        written. Returns whether a month was added.
        """
        parse_month_key(month_key)
        if select:
            self._selected_month = month_key
        if month_key in self._ledger:
            return False

        self._ledger = self._ledger.add_month(month_key, self._settings)
        if self._sync is not None:
            await self._sync.write_month_now(month_key, self._ledger.stored(month_key))
        return True

    async def remove_month(self, month_key: str) -> bool:
        """
        Stop tracking a month, locally and remotely.

        When the removed month was selected, the selection moves to the
        next-older month, else the next-newer one, else back to the
        current calendar month once nothing is left.
        """
        if month_key not in self._ledger:
            return False

        self._ledger = self._ledger.remove_month(month_key)
        if self._selected_month == month_key:
            self._selected_month = (
                self._ledger.selection_after_removal(month_key)
                or month_key_for(self._clock())
            )

        if self._sync is not None:
            await self._sync.delete_month(month_key)
        return True

    # -------------------------------------------------------------------------
    # Selection and navigation
    # -------------------------------------------------------------------------

    def select_month(self, month_key: str) -> None:
        parse_month_key(month_key)
        self._selected_month = month_key

    def select_older(self) -> Optional[str]:
        """Step to the previous tracked month, if any. Returns the new selection."""
        older = self._ledger.older_than(self._selected_month)
        if older is not None:
            self._selected_month = older
        return older

    def select_newer(self) -> Optional[str]:
        newer = self._ledger.newer_than(self._selected_month)
        if newer is not None:
            self._selected_month = newer
        return newer

    @property
    def available_months(self) -> list[str]:
        """Tracked months, newest first."""
        return self._ledger.newest_first()

    def addable_months(self, today: Optional[date] = None) -> list[str]:
        return self._ledger.addable_months(
            today or self._clock(),
            window=self._app.addable_months_window,
        )

    def month_status(self, month_key: str) -> MonthStatus:
        return self._ledger.status(month_key)

    # -------------------------------------------------------------------------
    # Reads for the selected month
    # -------------------------------------------------------------------------

    @property
    def current_month_data(self) -> MonthRecord:
        return self._ledger.get(self._selected_month, self._settings)

    def previous_month_readings(self) -> MeterReadings:
        return self._ledger.previous_readings(self._selected_month, self._settings)

    def calculated_usage(self) -> tuple[Usage, ElectricityUsage]:
        """
        Usage implied by the selected month's meter readings.

        A month without readings counts from the previous readings,
        which yields zero usage.
        """
        previous = self.previous_month_readings()
        current = self.current_month_data.meter_readings or previous
        return usage_from_readings(current, previous)

    def effective_rates(self) -> Rates:
        return effective_rates(self.current_month_data, self._settings)

    def effective_quotas(self) -> Quotas:
        return effective_quotas(self.current_month_data, self._settings)

    def effective_electricity_rate(self) -> float:
        return effective_electricity_rate(self.current_month_data, self._settings)

    @property
    def figures(self) -> MonthFigures:
        return month_figures(self.current_month_data, self._settings)

    @property
    def fixed_costs(self) -> float:
        return self.figures.fixed_costs

    @property
    def variable_costs(self) -> float:
        return self.figures.variable_costs

    @property
    def projected_bill(self) -> float:
        return self.figures.projected_bill

    @property
    def live_balance(self) -> float:
        return self.figures.live_balance

    @property
    def electricity_cost(self) -> float:
        return self.figures.electricity_cost

    @property
    def cumulative_live_balance(self) -> float:
        return aggregation.cumulative_live_balance(self._ledger, self._settings)

    def trend(self, months_back: Optional[int] = None) -> list[TrendPoint]:
        if months_back is None:
            months_back = self._app.default_trend_months
        return aggregation.trend(self._ledger, self._settings, self._selected_month, months_back)

    def quota_usage(self) -> dict[str, QuotaUsage]:
        return aggregation.quota_usage(self.current_month_data, self._settings)

    def electricity_change_percent(self) -> Optional[float]:
        return aggregation.electricity_change_percent(
            self._ledger, self._settings, self._selected_month
        )


def create_store(
    use_storage: bool = True,
    storage: Optional[BillingStorageInterface] = None,
    audit_logger: Optional[AuditLogger] = None,
    clock: Optional[Callable[[], date]] = None,
) -> BillingStore:
    """
    Factory for a store wired to the configured backend.

    Args:
        use_storage: Whether to connect to Google Sheets.
                     Set to False for local-only sessions.
        storage: A ready backend; skips configuration lookup.

    Without a usable backend the store starts in guest mode.
    """
    audit_logger = audit_logger or AuditLogger()

    if storage is None and use_storage and is_storage_configured():
        # Imported lazily so local-only sessions never touch gspread
        from billing_tracker.services.storage.google_sheets import GoogleSheetsBillingStorage
        try:
            storage = GoogleSheetsBillingStorage()
        except Exception as e:
            # Storage not configured - continue without it
            structlog.get_logger("billing_tracker.store").warning(
                "storage_unavailable", error=str(e)
            )
            storage = None

    return BillingStore(storage=storage, audit_logger=audit_logger, clock=clock)

"""
In-Memory Storage Implementation

Keeps rows in the same shape the remote tables use and pushes change
notifications to subscribers, like a real-time database would.

Used by the test suite and for sessions without a configured backend.
Two stores sharing one InMemoryBillingStorage behave like two clients
of the same account.
"""

import asyncio
import copy
from typing import Optional

from billing_tracker.models.billing import BillingSettings, MonthRecord
from billing_tracker.models.rows import (
    MONTH_TABLE,
    SETTINGS_TABLE,
    month_key_from_row,
    month_record_from_row,
    month_records_from_rows,
    month_record_to_row,
    settings_from_row,
    settings_to_row,
)
from billing_tracker.services.storage.interface import (
    BillingStorageInterface,
    ChangeEvent,
    ChangeHandler,
    ChangeType,
    StorageError,
    Subscription,
)


class InMemorySubscription(Subscription):
    """Subscription entry in an InMemoryBillingStorage."""

    def __init__(self, storage: "InMemoryBillingStorage", table: str, user_id: str, on_change: ChangeHandler):
        self._storage = storage
        self.table = table
        self.user_id = user_id
        self.on_change = on_change
        self.active = True

    async def unsubscribe(self) -> None:
        self.active = False
        self._storage._remove_subscription(self)


class InMemoryBillingStorage(BillingStorageInterface):
    """
    Dict-backed implementation of the billing store.

    Rows are deep-copied in and out so callers can never mutate
    stored state by accident.
    """

    def __init__(self):
        self._settings_rows: dict[str, dict] = {}
        self._month_rows: dict[tuple[str, str], dict] = {}
        self._subscriptions: list[InMemorySubscription] = []

    # -------------------------------------------------------------------------
    # Raw row access (fixtures, migrations, inspection)
    # -------------------------------------------------------------------------

    def put_settings_row(self, row: dict) -> None:
        """Store a raw settings row as-is, without notifying anyone."""
        self._settings_rows[row["user_id"]] = copy.deepcopy(row)

    def put_month_row(self, row: dict) -> None:
        """Store a raw month row as-is, without notifying anyone."""
        key = month_key_from_row(row)
        self._month_rows[(row["user_id"], key)] = copy.deepcopy(row)

    def settings_row(self, user_id: str) -> Optional[dict]:
        row = self._settings_rows.get(user_id)
        return copy.deepcopy(row) if row is not None else None

    def month_rows(self, user_id: str) -> dict[str, dict]:
        return {
            month: copy.deepcopy(row)
            for (owner, month), row in self._month_rows.items()
            if owner == user_id
        }

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    # -------------------------------------------------------------------------
    # BillingStorageInterface
    # -------------------------------------------------------------------------

    async def load_settings(self, user_id: str) -> Optional[BillingSettings]:
        row = self._settings_rows.get(user_id)
        if row is None:
            return None
        return settings_from_row(row)

    async def upsert_settings(self, user_id: str, settings: BillingSettings) -> bool:
        row = settings_to_row(user_id, settings)
        existing = self._settings_rows.get(user_id)
        row["created_at"] = existing.get("created_at", row["updated_at"]) if existing else row["updated_at"]
        self._settings_rows[user_id] = row

        self._notify(ChangeEvent(
            table=SETTINGS_TABLE,
            change_type=ChangeType.UPDATE if existing else ChangeType.INSERT,
            user_id=user_id,
            settings=settings_from_row(row),
        ))
        return True

    async def load_all_months(self, user_id: str) -> dict[str, MonthRecord]:
        rows = [row for (owner, _), row in self._month_rows.items() if owner == user_id]
        months, self._skipped_rows = month_records_from_rows(rows)
        return months

    async def upsert_month(self, user_id: str, month_key: str, record: MonthRecord) -> bool:
        row = month_record_to_row(user_id, month_key, record)
        existing = self._month_rows.get((user_id, month_key))
        row["created_at"] = existing.get("created_at", row["updated_at"]) if existing else row["updated_at"]
        self._month_rows[(user_id, month_key)] = row

        self._notify(ChangeEvent(
            table=MONTH_TABLE,
            change_type=ChangeType.UPDATE if existing else ChangeType.INSERT,
            user_id=user_id,
            month_key=month_key,
            record=month_record_from_row(row),
        ))
        return True

    async def delete_month(self, user_id: str, month_key: str) -> bool:
        removed = self._month_rows.pop((user_id, month_key), None)
        if removed is None:
            return False

        self._notify(ChangeEvent(
            table=MONTH_TABLE,
            change_type=ChangeType.DELETE,
            user_id=user_id,
            month_key=month_key,
        ))
        return True

    async def subscribe(
        self,
        table: str,
        user_id: str,
        on_change: ChangeHandler,
    ) -> Subscription:
        if table not in (SETTINGS_TABLE, MONTH_TABLE):
            raise StorageError(f"Unknown table: {table}")
        subscription = InMemorySubscription(self, table, user_id, on_change)
        self._subscriptions.append(subscription)
        return subscription

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _remove_subscription(self, subscription: InMemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _notify(self, event: ChangeEvent) -> None:
        """Deliver an event to matching subscribers on the next loop iteration."""
        loop = asyncio.get_running_loop()
        for subscription in list(self._subscriptions):
            if subscription.table == event.table and subscription.user_id == event.user_id:
                loop.call_soon(self._deliver, subscription, event)

    @staticmethod
    def _deliver(subscription: InMemorySubscription, event: ChangeEvent) -> None:
        # Unsubscribed between scheduling and delivery
        if subscription.active:
            subscription.on_change(event)

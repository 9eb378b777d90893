"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the remote store.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing and offline sessions
3. Keep the sync engine decoupled from any backend

The interface is intentionally small: load, upsert, delete and
subscribe. Implementations own the row format and upgrade legacy
rows while parsing them.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from billing_tracker.models.billing import BillingSettings, MonthRecord


class ChangeType(str, Enum):
    """Kinds of remote change notifications."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """
    A change pushed by the remote store.

    Settings events carry the full new settings snapshot. Month events
    carry the month key and, except for deletes, the full new record.
    """

    table: str
    change_type: ChangeType
    user_id: str
    month_key: Optional[str] = None
    settings: Optional[BillingSettings] = None
    record: Optional[MonthRecord] = None


ChangeHandler = Callable[[ChangeEvent], None]


class Subscription(ABC):
    """Handle for a live change subscription."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivering events. Safe to call more than once."""
        pass


class BillingStorageInterface(ABC):
    """
    Abstract interface for the remote billing store.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    _skipped_rows: dict[str, str] = {}

    @property
    def skipped_rows(self) -> dict[str, str]:
        """Month rows the last load_all_months could not parse, with the reason."""
        return dict(self._skipped_rows)

    @abstractmethod
    async def load_settings(self, user_id: str) -> Optional[BillingSettings]:
        """
        Load an account's settings.

        Returns:
            The settings, or None if the account has never saved any

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def upsert_settings(self, user_id: str, settings: BillingSettings) -> bool:
        """
        Insert or replace an account's settings.

        Returns:
            True if saved successfully

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def load_all_months(self, user_id: str) -> dict[str, MonthRecord]:
        """
        Load every month record of an account.

        Rows that cannot be parsed are left out and reported through
        skipped_rows; they never fail the load.

        Returns:
            Mapping of month key to record (empty for a new account)

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def upsert_month(self, user_id: str, month_key: str, record: MonthRecord) -> bool:
        """
        Insert or replace one month, unique per (account, month).

        Returns:
            True if saved successfully

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_month(self, user_id: str, month_key: str) -> bool:
        """
        Delete one month.

        Returns:
            True if a row was deleted, False if there was none

        Raises:
            StorageError: If the delete fails
        """
        pass

    @abstractmethod
    async def subscribe(
        self,
        table: str,
        user_id: str,
        on_change: ChangeHandler,
    ) -> Subscription:
        """
        Subscribe to insert/update/delete events of one account on one table.

        Events are delivered asynchronously, including echoes of this
        client's own writes.

        Raises:
            StorageError: If the subscription cannot be set up
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass

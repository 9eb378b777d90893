"""
Storage Services Package

Provides the abstract remote-store interface and its implementations:
in-memory (tests, offline sessions) and Google Sheets.
"""

from billing_tracker.services.storage.interface import (
    BillingStorageInterface,
    ChangeEvent,
    ChangeHandler,
    ChangeType,
    ConnectionError,
    NotFoundError,
    StorageError,
    Subscription,
)
from billing_tracker.services.storage.memory import InMemoryBillingStorage

__all__ = [
    # Interfaces
    "BillingStorageInterface",
    "ChangeEvent",
    "ChangeHandler",
    "ChangeType",
    "Subscription",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryBillingStorage",
]

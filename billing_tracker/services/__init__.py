"""Services package."""

from billing_tracker.services.storage import (
    BillingStorageInterface,
    ChangeEvent,
    ChangeType,
    ConnectionError,
    InMemoryBillingStorage,
    NotFoundError,
    StorageError,
    Subscription,
)

__all__ = [
    "BillingStorageInterface",
    "ChangeEvent",
    "ChangeType",
    "ConnectionError",
    "InMemoryBillingStorage",
    "NotFoundError",
    "StorageError",
    "Subscription",
]

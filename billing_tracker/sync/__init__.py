"""Synchronization package: debounced persistence, initial load and live updates."""

from billing_tracker.sync.coordinator import LoadedState, SyncCoordinator, SyncState
from billing_tracker.sync.debounce import KeyedDebouncer
from billing_tracker.sync.sample_data import generate_sample_data, sample_month, seeded_random

__all__ = [
    "KeyedDebouncer",
    "LoadedState",
    "SyncCoordinator",
    "SyncState",
    "generate_sample_data",
    "sample_month",
    "seeded_random",
]

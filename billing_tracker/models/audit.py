"""
Audit Models for Household Billing Tracker

Every load, write, delete and remote change applied by the sync engine
is recorded as an audit event. This provides:
1. Traceability of what reached the remote store and what did not
2. Debugging information when a background write fails
3. An observable record of failures that are deliberately not raised

DESIGN DECISION: Sync failures never interrupt editing, so the audit
trail is the place where they become visible.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Loading
    DATA_LOADED = "data_loaded"
    LOAD_FAILED = "load_failed"
    ROW_SKIPPED = "row_skipped"
    DEMO_MODE_ENABLED = "demo_mode_enabled"

    # Persistence
    SETTINGS_SAVED = "settings_saved"
    MONTH_SAVED = "month_saved"
    MONTH_DELETED = "month_deleted"
    SAVE_FAILED = "save_failed"
    DELETE_FAILED = "delete_failed"

    # Real-time
    REMOTE_CHANGE_APPLIED = "remote_change_applied"
    SUBSCRIPTION_FAILED = "subscription_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What the event is about: "settings" or "month"
    entity_type: Optional[str] = None
    entity_key: Optional[str] = Field(
        default=None,
        description="Month key for month events"
    )

    user_id: Optional[str] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_key": self.entity_key,
            "user_id": self.user_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.month_saved(user_id, "2024-05")
        event = AuditEventBuilder.save_failed(user_id, "month", str(exc), "2024-05")
    """

    @staticmethod
    def data_loaded(
        user_id: str,
        has_settings: bool,
        month_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_LOADED,
            user_id=user_id,
            description=f"Loaded {month_count} months",
            details={
                "has_settings": has_settings,
                "month_count": month_count,
            },
        )

    @staticmethod
    def load_failed(
        user_id: str,
        entity_type: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOAD_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            user_id=user_id,
            description=f"Failed to load {entity_type}, continuing with defaults",
            error_message=error_message,
        )

    @staticmethod
    def row_skipped(
        user_id: str,
        entity_type: str,
        row_key: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROW_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_key=row_key,
            user_id=user_id,
            description=f"Skipped unreadable {entity_type} row",
            error_message=error_message,
        )

    @staticmethod
    def demo_mode_enabled(reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEMO_MODE_ENABLED,
            description="Running with local sample data, nothing is synced",
            details={"reason": reason},
        )

    @staticmethod
    def settings_saved(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_SAVED,
            entity_type="settings",
            user_id=user_id,
            description="Settings saved",
        )

    @staticmethod
    def month_saved(
        user_id: str,
        month_key: str,
        immediate: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTH_SAVED,
            entity_type="month",
            entity_key=month_key,
            user_id=user_id,
            description=f"Month saved: {month_key}",
            details={"immediate": immediate},
        )

    @staticmethod
    def month_deleted(user_id: str, month_key: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTH_DELETED,
            entity_type="month",
            entity_key=month_key,
            user_id=user_id,
            description=f"Month deleted: {month_key}",
        )

    @staticmethod
    def save_failed(
        user_id: str,
        entity_type: str,
        error_message: str,
        month_key: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            entity_key=month_key,
            user_id=user_id,
            description=f"Failed to save {entity_type}, local state kept",
            error_message=error_message,
        )

    @staticmethod
    def delete_failed(
        user_id: str,
        month_key: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELETE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="month",
            entity_key=month_key,
            user_id=user_id,
            description=f"Failed to delete month {month_key} remotely",
            error_message=error_message,
        )

    @staticmethod
    def remote_change_applied(
        user_id: str,
        table: str,
        change_type: str,
        month_key: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_CHANGE_APPLIED,
            severity=AuditSeverity.DEBUG,
            entity_type="settings" if month_key is None else "month",
            entity_key=month_key,
            user_id=user_id,
            description=f"Remote {change_type} on {table} applied",
            details={"table": table, "change_type": change_type},
        )

    @staticmethod
    def subscription_failed(
        user_id: str,
        table: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            description=f"Could not subscribe to {table} changes",
            details={"table": table},
            error_message=error_message,
        )

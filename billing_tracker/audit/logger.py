"""
Audit Logger

DESIGN DECISION: Every sync step is logged. This provides:
1. Traceability of background writes
2. Debugging capability for failed syncs
3. An observable error record, since sync faults are never raised

The audit logger:
- Is synchronous, so it can be called from timer and push callbacks
- Only writes locally, so it has no remote failure mode
- Keeps a bounded in-memory history of recent events
"""

from collections import deque
from typing import Optional

import structlog

from billing_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events to the structured local log and keeps the most
    recent ones in memory for callers that want to inspect failures.
    """

    def __init__(self, history_size: int = 200):
        self._logger = structlog.get_logger("billing_tracker.sync")
        self._events: deque[AuditEvent] = deque(maxlen=history_size)

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Recent events, oldest first."""
        return list(self._events)

    @property
    def last_error(self) -> Optional[AuditEvent]:
        for event in reversed(self._events):
            if event.severity == AuditSeverity.ERROR:
                return event
        return None

    def log(self, event: AuditEvent) -> None:
        """Record an audit event."""
        self._events.append(event)
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

    def log_data_loaded(self, user_id: str, has_settings: bool, month_count: int) -> None:
        self.log(AuditEventBuilder.data_loaded(user_id, has_settings, month_count))

    def log_load_failed(self, user_id: str, entity_type: str, error_message: str) -> None:
        self.log(AuditEventBuilder.load_failed(user_id, entity_type, error_message))

    def log_row_skipped(self, user_id: str, entity_type: str, row_key: str, error_message: str) -> None:
        self.log(AuditEventBuilder.row_skipped(user_id, entity_type, row_key, error_message))

    def log_demo_mode(self, reason: str) -> None:
        self.log(AuditEventBuilder.demo_mode_enabled(reason))

    def log_settings_saved(self, user_id: str) -> None:
        self.log(AuditEventBuilder.settings_saved(user_id))

    def log_month_saved(self, user_id: str, month_key: str, immediate: bool = False) -> None:
        self.log(AuditEventBuilder.month_saved(user_id, month_key, immediate))

    def log_month_deleted(self, user_id: str, month_key: str) -> None:
        self.log(AuditEventBuilder.month_deleted(user_id, month_key))

    def log_save_failed(
        self,
        user_id: str,
        entity_type: str,
        error_message: str,
        month_key: Optional[str] = None,
    ) -> None:
        self.log(AuditEventBuilder.save_failed(user_id, entity_type, error_message, month_key))

    def log_delete_failed(self, user_id: str, month_key: str, error_message: str) -> None:
        self.log(AuditEventBuilder.delete_failed(user_id, month_key, error_message))

    def log_remote_change(
        self,
        user_id: str,
        table: str,
        change_type: str,
        month_key: Optional[str] = None,
    ) -> None:
        self.log(AuditEventBuilder.remote_change_applied(user_id, table, change_type, month_key))

    def log_subscription_failed(self, user_id: str, table: str, error_message: str) -> None:
        self.log(AuditEventBuilder.subscription_failed(user_id, table, error_message))

"""Audit logging package."""

from billing_tracker.audit.logger import AuditLogger

__all__ = ["AuditLogger"]

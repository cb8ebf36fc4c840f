"""Core data models shared across packages."""

from core.models.refs import (
    AuditEvent,
    AuditSeverity,
)

__all__ = [
    "AuditEvent",
    "AuditSeverity",
]

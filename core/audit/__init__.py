"""Core audit module - audit event tracking and persistence."""

from core.audit.events import (
    AuditLogger,
    AuditBackend,
    AuditEventType,
    InMemoryAuditBackend,
    JSONFileAuditBackend,
    SQLiteAuditBackend,
    create_audit_event,
    build_audit_logger,
)

__all__ = [
    "AuditLogger",
    "AuditBackend",
    "AuditEventType",
    "InMemoryAuditBackend",
    "JSONFileAuditBackend",
    "SQLiteAuditBackend",
    "create_audit_event",
    "build_audit_logger",
]

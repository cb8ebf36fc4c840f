"""Audit models shared by the audit sink and the HTTP surface."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AuditEvent(BaseModel):
    """An audit event for one top-level separation operation.

    Attributes:
        event_id: Unique event identifier
        timestamp: When the event was created
        event_type: AuditEventType value
        severity: Event severity
        separation_id: Separation the operation touched
        actor: Owner/operator that triggered the operation
        action: Short human-readable action name
        message: Human-readable details line
        details: Structured metadata, usually a serialized change report
    """
    event_id: str = Field(..., description="Unique event identifier")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Event timestamp")
    event_type: str = Field(..., description="Type of event (SEPARATION_CREATED, PRODUCT_CUT, ...)")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO, description="Event severity")

    separation_id: Optional[str] = Field(None, description="Associated separation")
    workflow_id: Optional[str] = Field(None, description="Temporal workflow ID")

    actor: str = Field(default="system", description="Who performed the action")
    action: str = Field(..., description="Action name")
    message: str = Field(default="", description="Human-readable message")
    details: dict = Field(default_factory=dict, description="Additional event details")

"""Audit event logging and persistence.

Provides the audit sink every top-level separation operation reports to.
Supports multiple persistence backends; a backend failure never breaks the
operation that is being audited, it is surfaced as a warning instead.
"""

import json
import sqlite3
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.models.refs import AuditEvent, AuditSeverity
from core.observability.logging import get_logger

logger = get_logger(__name__)


class AuditEventType(str, Enum):
    """Standard audit event types."""
    SEPARATION_CREATED = "SEPARATION_CREATED"
    SEPARATION_FINALIZED = "SEPARATION_FINALIZED"
    SEPARATION_CANCELLED = "SEPARATION_CANCELLED"
    SEPARATION_DELETED = "SEPARATION_DELETED"

    REINFORCEMENT_APPLIED = "REINFORCEMENT_APPLIED"
    REDISTRIBUTION_APPLIED = "REDISTRIBUTION_APPLIED"
    MELANCIA_APPLIED = "MELANCIA_APPLIED"

    PRODUCT_CUT = "PRODUCT_CUT"
    QUANTITY_UPDATED = "QUANTITY_UPDATED"
    ITEM_TYPE_UPDATED = "ITEM_TYPE_UPDATED"

    STOCK_COUNTS_RECORDED = "STOCK_COUNTS_RECORDED"


def create_audit_event(
    event_type: AuditEventType,
    action: str,
    message: str = "",
    severity: AuditSeverity = AuditSeverity.INFO,
    separation_id: Optional[str] = None,
    workflow_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    actor: str = "system",
) -> AuditEvent:
    """Create a new audit event with auto-generated ID and timestamp.

    Args:
        event_type: Type of event
        action: Short action name ("Reforço carregado", "Corte de produto", ...)
        message: Human-readable details line
        severity: Event severity level
        separation_id: Associated separation
        workflow_id: Temporal workflow ID, when run from a worker
        details: Additional structured details
        actor: Who performed the action

    Returns:
        Configured AuditEvent ready for logging
    """
    return AuditEvent(
        event_id=str(uuid.uuid4()),
        timestamp=datetime.utcnow(),
        event_type=event_type.value,
        severity=severity,
        separation_id=str(separation_id) if separation_id is not None else None,
        workflow_id=workflow_id,
        actor=actor,
        action=action,
        message=message,
        details=details or {},
    )


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def log(self, event: AuditEvent) -> None:
        """Persist an audit event."""
        pass

    @abstractmethod
    def query(
        self,
        event_type: Optional[str] = None,
        separation_id: Optional[str] = None,
        actor: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query audit events with filters."""
        pass


def _matches(
    event: AuditEvent,
    event_type: Optional[str],
    separation_id: Optional[str],
    actor: Optional[str],
) -> bool:
    if event_type and event.event_type != event_type:
        return False
    if separation_id and event.separation_id != str(separation_id):
        return False
    if actor and event.actor != actor:
        return False
    return True


class JSONFileAuditBackend(AuditBackend):
    """Audit backend that stores events in JSON files.

    Stores one file per day in YYYY-MM-DD.json format.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_file_path(self, date: datetime) -> Path:
        return self.base_path / f"{date.strftime('%Y-%m-%d')}.json"

    def log(self, event: AuditEvent) -> None:
        """Append event to daily file."""
        file_path = self._get_file_path(event.timestamp)

        events = []
        if file_path.exists():
            with open(file_path, "r", encoding="utf-8") as f:
                events = json.load(f)

        # Replayed events (activity retries) are written once
        if any(e.get("event_id") == event.event_id for e in events):
            return

        events.append(event.model_dump(mode="json"))

        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(events, f, indent=2, ensure_ascii=False)

    def query(
        self,
        event_type: Optional[str] = None,
        separation_id: Optional[str] = None,
        actor: Optional[str] = None,
        limit: int = 100,
        days: int = 30,
    ) -> List[AuditEvent]:
        """Query events from the daily files of the last ``days`` days."""
        results = []
        current = datetime.utcnow() - timedelta(days=days)
        end = datetime.utcnow()

        while current.date() <= end.date() and len(results) < limit:
            file_path = self._get_file_path(current)
            if file_path.exists():
                with open(file_path, "r", encoding="utf-8") as f:
                    events = json.load(f)

                for event_data in events:
                    event = AuditEvent.model_validate(event_data)
                    if not _matches(event, event_type, separation_id, actor):
                        continue
                    results.append(event)
                    if len(results) >= limit:
                        break

            current += timedelta(days=1)

        return results


class SQLiteAuditBackend(AuditBackend):
    """Audit backend that stores events in the service SQLite database."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_event (
                    event_id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    separation_id TEXT,
                    actor TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_event_separation
                ON audit_event(separation_id)
            """)
            conn.commit()
        finally:
            conn.close()

    def log(self, event: AuditEvent) -> None:
        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.execute("""
                INSERT OR IGNORE INTO audit_event
                (event_id, timestamp, event_type, severity, separation_id, actor, payload)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                event.event_id,
                event.timestamp.isoformat(),
                event.event_type,
                event.severity.value,
                event.separation_id,
                event.actor,
                event.model_dump_json(),
            ))
            conn.commit()
        finally:
            conn.close()

    def query(
        self,
        event_type: Optional[str] = None,
        separation_id: Optional[str] = None,
        actor: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        clauses = []
        params: List[Any] = []
        if event_type:
            clauses.append("event_type = ?")
            params.append(event_type)
        if separation_id:
            clauses.append("separation_id = ?")
            params.append(str(separation_id))
        if actor:
            clauses.append("actor = ?")
            params.append(actor)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        conn = sqlite3.connect(str(self.db_path))
        try:
            rows = conn.execute(
                f"SELECT payload FROM audit_event {where} ORDER BY timestamp LIMIT ?",
                params,
            ).fetchall()
        finally:
            conn.close()

        return [AuditEvent.model_validate_json(row[0]) for row in rows]


class InMemoryAuditBackend(AuditBackend):
    """In-memory audit backend for testing."""

    def __init__(self):
        self._events: List[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self._events.append(event)

    def query(
        self,
        event_type: Optional[str] = None,
        separation_id: Optional[str] = None,
        actor: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        results = []
        for event in self._events:
            if not _matches(event, event_type, separation_id, actor):
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    def clear(self) -> None:
        """Clear all events (for testing)."""
        self._events.clear()


class AuditLogger:
    """Audit sink that fans events out to multiple backends.

    Usage:
        audit = AuditLogger()
        audit.add_backend(JSONFileAuditBackend(Path("./audit")))

        warnings = audit.record(
            actor_id="user-1",
            action="Reforço carregado",
            details="Reforço processado: 12 materiais",
            metadata=report.to_dict(),
            event_type=AuditEventType.REINFORCEMENT_APPLIED,
            separation_id=42,
        )
    """

    def __init__(self):
        self._backends: List[AuditBackend] = []

    def add_backend(self, backend: AuditBackend) -> None:
        """Add an audit backend."""
        self._backends.append(backend)

    def log(self, event: AuditEvent) -> List[str]:
        """Log event to all backends.

        Returns:
            One warning message per backend that failed
        """
        warnings = []
        for backend in self._backends:
            try:
                backend.log(event)
            except Exception as e:
                message = f"Audit logging failed for backend {type(backend).__name__}: {e}"
                logger.warning(message, extra_fields={"event_type": event.event_type})
                warnings.append(message)
        return warnings

    def record(
        self,
        actor_id: str,
        action: str,
        details: str,
        metadata: Optional[Dict[str, Any]] = None,
        event_type: AuditEventType = AuditEventType.SEPARATION_CREATED,
        separation_id: Optional[Any] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> List[str]:
        """Record one top-level operation.

        Returns:
            Warning messages for backends that could not persist the event
        """
        try:
            event = create_audit_event(
                event_type,
                action=action,
                message=details,
                severity=severity,
                separation_id=separation_id,
                details=metadata,
                actor=str(actor_id),
            )
        except Exception as e:
            message = f"Audit event could not be built: {e}"
            logger.warning(message)
            return [message]
        return self.log(event)

    @property
    def backends(self) -> List[AuditBackend]:
        return list(self._backends)

    def query(
        self,
        event_type: Optional[str] = None,
        separation_id: Optional[str] = None,
        actor: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from the first backend."""
        if not self._backends:
            return []
        return self._backends[0].query(
            event_type=event_type,
            separation_id=separation_id,
            actor=actor,
            limit=limit,
        )


def build_audit_logger(
    db_path: Optional[Path] = None,
    audit_dir: Optional[Path] = None,
) -> AuditLogger:
    """Audit logger writing to the service database and daily JSON files.

    Args:
        db_path: SQLite database (defaults to SEPARATION_DB_PATH)
        audit_dir: JSON file directory (defaults to AUDIT_DIR)
    """
    from config import get_settings

    settings = get_settings()
    audit = AuditLogger()
    audit.add_backend(SQLiteAuditBackend(db_path or settings.db_path))
    audit.add_backend(JSONFileAuditBackend(audit_dir or settings.audit_dir))
    return audit

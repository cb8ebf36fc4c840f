"""
Separation Activities

Activities behind the sheet upload workflow:
- apply_sheet: parse a sheet grid and merge it into the owner's separation
- record_separation_audit: persist the audit event of an applied sheet
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from temporalio import activity

from config import get_settings
from core.audit import InMemoryAuditBackend, AuditLogger, build_audit_logger
from core.models.refs import AuditEvent
from separation_engine.errors import SeparationError
from separation_engine.models import Mode, SeparationType
from separation_engine.service import SeparationService


# =============================================================================
# Activity Input/Output Models
# =============================================================================

@dataclass
class ApplySheetInput:
    """Input for apply_sheet activity"""
    owner_id: str
    mode: str
    grid: List[List[Any]]
    file_name: str = ""

    # create only
    separation_type: Optional[str] = None
    date: Optional[str] = None

    # melancia only
    material_code: Optional[str] = None


@dataclass
class ApplySheetOutput:
    """Output from apply_sheet activity"""
    status: str  # "APPLIED" or "FAILED"
    report: Dict[str, Any] = field(default_factory=dict)
    separation_id: Optional[int] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    audit_event: Optional[Dict[str, Any]] = None


@dataclass
class RecordAuditInput:
    """Input for record_separation_audit activity"""
    audit_event: Dict[str, Any]
    workflow_id: Optional[str] = None


@dataclass
class RecordAuditOutput:
    """Output from record_separation_audit activity"""
    event_id: str
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# Activities
# =============================================================================

def _run_sheet(service: SeparationService, input: ApplySheetInput):
    mode = Mode(input.mode)
    if mode == Mode.CREATE:
        if not input.separation_type or not input.date:
            raise ValueError("separation_type and date are required to create a separation")
        return service.create_separation(
            input.owner_id,
            SeparationType(input.separation_type),
            input.date,
            input.grid,
            input.file_name,
        )
    if mode == Mode.REINFORCEMENT:
        return service.apply_reinforcement(input.owner_id, input.grid, input.file_name)
    if mode == Mode.REDISTRIBUTION:
        return service.apply_redistribution(input.owner_id, input.grid, input.file_name)
    return service.apply_melancia(input.owner_id, input.grid, input.file_name, input.material_code)


@activity.defn
async def apply_sheet(input: ApplySheetInput) -> ApplySheetOutput:
    """
    Apply one uploaded sheet to the owner's separation.

    The operation's audit event is captured in memory and handed back to
    the workflow, which persists it in a separate, retryable activity.
    Separation errors (malformed sheet, no active separation, ...) are
    returned as a FAILED result instead of being raised.
    """
    activity.logger.info(f"Applying {input.mode} sheet '{input.file_name}' for owner {input.owner_id}")

    captured = InMemoryAuditBackend()
    audit = AuditLogger()
    audit.add_backend(captured)
    service = SeparationService(audit=audit, settings=get_settings())

    try:
        report = _run_sheet(service, input)
    except SeparationError as e:
        activity.logger.warning(f"Sheet rejected: {e.kind}: {e.message}")
        return ApplySheetOutput(
            status="FAILED",
            error_kind=e.kind,
            error_message=e.message,
            report=e.details,
        )

    events = captured.query(limit=1)
    return ApplySheetOutput(
        status="APPLIED",
        report=report.to_dict(),
        separation_id=report.separation_id,
        audit_event=events[0].model_dump(mode="json") if events else None,
    )


@activity.defn
async def record_separation_audit(input: RecordAuditInput) -> RecordAuditOutput:
    """
    Persist a captured audit event to the configured backends.

    Raises when no backend accepted the event so the workflow retries it.
    Backends ignore an event_id they already hold.
    """
    event = AuditEvent.model_validate(input.audit_event)
    if input.workflow_id:
        event = event.model_copy(update={"workflow_id": input.workflow_id})

    audit = build_audit_logger()
    warnings = audit.log(event)
    if warnings and len(warnings) == len(audit.backends):
        raise RuntimeError(f"Audit event {event.event_id} was not persisted: {'; '.join(warnings)}")

    activity.logger.info(f"Audit event {event.event_id} persisted ({event.event_type})")
    return RecordAuditOutput(event_id=event.event_id, warnings=warnings)

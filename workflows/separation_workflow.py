"""
Separation Upload Workflow

Applies one uploaded sheet to the owner's separation and persists the
operation's audit event:

APPLY_SHEET → RECORD_AUDIT

The sheet is applied at most once. The audit step is retried on its own;
if it still fails the upload stays applied and the failure is returned
as a warning.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.separation import (
        apply_sheet,
        record_separation_audit,
        ApplySheetInput,
        RecordAuditInput,
    )


# =============================================================================
# Workflow Input/Output
# =============================================================================

@dataclass
class SeparationUploadInput:
    """Input for the sheet upload workflow"""
    owner_id: str
    mode: str  # Mode value: create, reinforcement, redistribution, melancia
    grid: List[List[Any]]
    file_name: str = ""
    separation_type: Optional[str] = None
    date: Optional[str] = None
    material_code: Optional[str] = None


@dataclass
class SeparationUploadOutput:
    """Output from the sheet upload workflow"""
    owner_id: str
    mode: str
    status: str  # "COMPLETED" or "FAILED"
    separation_id: Optional[int] = None
    report: Dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    audit_event_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# Workflow
# =============================================================================

@workflow.defn
class SeparationUploadWorkflow:
    """Upload one sheet (create, reinforcement, redistribution or melancia)."""

    def __init__(self):
        self.stage = "PENDING"

    @workflow.query
    def current_stage(self) -> str:
        return self.stage

    @workflow.run
    async def run(self, input: SeparationUploadInput) -> SeparationUploadOutput:
        workflow.logger.info(f"Starting {input.mode} upload for owner {input.owner_id}")

        result = SeparationUploadOutput(
            owner_id=input.owner_id,
            mode=input.mode,
            status="FAILED",
        )

        # A sheet merge is not idempotent (reinforcement adds), never retry it
        apply_options = {
            "start_to_close_timeout": timedelta(minutes=5),
            "retry_policy": RetryPolicy(maximum_attempts=1),
        }

        audit_options = {
            "start_to_close_timeout": timedelta(seconds=30),
            "retry_policy": RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=1),
                backoff_coefficient=2.0,
            ),
        }

        # =====================================================================
        # Stage: APPLY_SHEET
        # =====================================================================
        self.stage = "APPLY_SHEET"
        applied = await workflow.execute_activity(
            apply_sheet,
            ApplySheetInput(
                owner_id=input.owner_id,
                mode=input.mode,
                grid=input.grid,
                file_name=input.file_name,
                separation_type=input.separation_type,
                date=input.date,
                material_code=input.material_code,
            ),
            **apply_options,
        )

        result.report = applied.report
        result.separation_id = applied.separation_id

        if applied.status != "APPLIED":
            workflow.logger.warning(f"Upload rejected: {applied.error_kind}: {applied.error_message}")
            result.error_kind = applied.error_kind
            result.error_message = applied.error_message
            self.stage = "FAILED"
            return result

        result.status = "COMPLETED"
        result.warnings.extend(applied.report.get("warnings", []))

        # =====================================================================
        # Stage: RECORD_AUDIT
        # =====================================================================
        if applied.audit_event:
            self.stage = "RECORD_AUDIT"
            try:
                recorded = await workflow.execute_activity(
                    record_separation_audit,
                    RecordAuditInput(
                        audit_event=applied.audit_event,
                        workflow_id=workflow.info().workflow_id,
                    ),
                    **audit_options,
                )
                result.audit_event_id = recorded.event_id
                result.warnings.extend(recorded.warnings)
            except Exception as e:
                workflow.logger.warning(f"Audit event not persisted: {e}")
                result.warnings.append(f"Audit event not persisted: {e}")

        self.stage = result.status
        workflow.logger.info(
            f"Upload completed: separation={result.separation_id} "
            f"processed={result.report.get('processed_items')}"
        )
        return result

"""Activity definitions module."""

from activities.separation import (
    apply_sheet,
    record_separation_audit,
    ApplySheetInput,
    ApplySheetOutput,
    RecordAuditInput,
    RecordAuditOutput,
)

__all__ = [
    "apply_sheet",
    "record_separation_audit",
    "ApplySheetInput",
    "ApplySheetOutput",
    "RecordAuditInput",
    "RecordAuditOutput",
]

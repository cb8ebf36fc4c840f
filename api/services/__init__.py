"""API Services Package."""

from api.services.workbook import (
    ALLOWED_EXTENSIONS,
    read_workbook_grid,
)
from api.services.dependencies import (
    get_owner_id,
    get_separation_service,
    get_report_service,
)

__all__ = [
    "ALLOWED_EXTENSIONS",
    "read_workbook_grid",
    "get_owner_id",
    "get_separation_service",
    "get_report_service",
]

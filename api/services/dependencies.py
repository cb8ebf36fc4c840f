"""Request dependencies shared by the separation and report routes."""

from fastapi import Header, HTTPException

from config import get_settings
from core.audit import build_audit_logger
from reports.service import ReportService
from separation_engine.service import SeparationService


def get_owner_id(x_user_id: str = Header(None)) -> str:
    """Owner of the request, taken from the X-User-Id header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


def get_separation_service() -> SeparationService:
    settings = get_settings()
    return SeparationService(
        settings.db_path,
        audit=build_audit_logger(settings.db_path, settings.audit_dir),
        settings=settings,
    )


def get_report_service() -> ReportService:
    settings = get_settings()
    return ReportService(
        settings.db_path,
        audit=build_audit_logger(settings.db_path, settings.audit_dir),
        settings=settings,
    )

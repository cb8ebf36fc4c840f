"""Health check endpoints."""

import sqlite3
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter
from pydantic import BaseModel

from config import get_settings
from core.observability.metrics import get_metrics


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


def _storage_status() -> str:
    try:
        conn = sqlite3.connect(str(get_settings().db_path))
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
        return "up"
    except sqlite3.Error:
        return "down"


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    storage = _storage_status()
    return HealthResponse(
        status="healthy" if storage == "up" else "degraded",
        timestamp=datetime.utcnow().isoformat(),
        version="1.0.0",
        services={
            "api": "up",
            "storage": storage,
        }
    )


@router.get("/health/metrics")
async def metrics() -> Dict[str, Any]:
    """Operation counters and timings since process start."""
    return get_metrics().get_summary()

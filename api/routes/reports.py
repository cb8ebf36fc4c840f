"""Report endpoints.

Aggregation views of the caller's active separation and the
post-invoicing stock comparison.
"""

from typing import Any, Dict, List, Optional, Set

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.services.dependencies import get_owner_id, get_report_service
from master_data.models import Circuit, TypeSeparation
from reports.models import StockCount, StockReference
from reports.service import ReportService
from separation_engine.errors import InputMalformed


router = APIRouter()


# =============================================================================
# Request models
# =============================================================================

class StockCountItem(BaseModel):
    material_code: str
    description: str = ""
    quantity_kg: float = 0.0
    current_quantity: float = 0.0


class StockCountsRequest(BaseModel):
    """Post-invoicing counts for the active separation."""
    items: List[StockCountItem] = Field(default_factory=list)


class StockReferenceItem(BaseModel):
    material_code: str
    description: str = ""
    reference_quantity: float = 0.0


class StockReferencesRequest(BaseModel):
    """Pre-invoicing reference quantities of the caller."""
    items: List[StockReferenceItem] = Field(default_factory=list)


def _type_filter(types: Optional[List[str]]) -> Optional[Set[TypeSeparation]]:
    if not types:
        return None
    parsed = set()
    for value in types:
        tag = TypeSeparation.parse(value)
        if tag is None:
            raise InputMalformed(f"Tipo de separação inválido: {value!r}")
        parsed.add(tag)
    return parsed


# =============================================================================
# Aggregation views
# =============================================================================

@router.get("/pre-separation")
async def pre_separation_view(
    types: Optional[List[str]] = Query(None, description="Type tags to include"),
    owner_id: str = Depends(get_owner_id),
    reports: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    """Material x zone totals."""
    return reports.pre_separation_view(owner_id, _type_filter(types)).to_dict()


@router.get("/separation")
async def separation_view(
    circuit: Circuit = Query(Circuit.SECO),
    types: Optional[List[str]] = Query(None, description="Type tags to include"),
    owner_id: str = Depends(get_owner_id),
    reports: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    """Material x store quantities grouped by zone/subzone for one circuit."""
    return reports.separation_view(owner_id, circuit, _type_filter(types)).to_dict()


# =============================================================================
# Stock comparison
# =============================================================================

@router.post("/stock-counts")
async def record_stock_counts(
    request: StockCountsRequest,
    owner_id: str = Depends(get_owner_id),
    reports: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    counts = [StockCount(**item.model_dump()) for item in request.items]
    return reports.record_stock_counts(owner_id, counts)


@router.post("/stock-references")
async def record_stock_references(
    request: StockReferencesRequest,
    owner_id: str = Depends(get_owner_id),
    reports: ReportService = Depends(get_report_service),
) -> Dict[str, Any]:
    references = [StockReference(**item.model_dump()) for item in request.items]
    return {"saved": reports.record_stock_references(owner_id, references)}


@router.get("/stock-comparison")
async def stock_comparison(
    owner_id: str = Depends(get_owner_id),
    reports: ReportService = Depends(get_report_service),
) -> List[Dict[str, Any]]:
    """Reference vs post-invoicing count per material."""
    return [row.to_dict() for row in reports.stock_comparison(owner_id)]

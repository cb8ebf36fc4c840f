"""Separation endpoints.

Sheet uploads (create, reinforcement, redistribution, melancia), cuts,
manual edits and lifecycle of the caller's active separation. The owner
is taken from the X-User-Id header.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from api.services.dependencies import get_owner_id, get_separation_service
from api.services.workbook import read_workbook_grid
from separation_engine.models import CutMode, SeparationType
from separation_engine.service import SeparationService


router = APIRouter()


# =============================================================================
# Request models
# =============================================================================

class CutRequest(BaseModel):
    """Cut of one material."""
    material_code: str = Field(..., description="Material to cut")
    mode: CutMode = Field(..., description="all, specific or partial")
    store_codes: Optional[List[str]] = Field(None, description="Stores to zero (specific mode)")
    quantities: Optional[Dict[str, int]] = Field(None, description="Store -> units to remove (partial mode)")


class QuantityUpdateRequest(BaseModel):
    """Manual edit of one cell; 0 removes it."""
    material_code: str
    store_code: str
    quantity: float = Field(..., ge=0)


class ItemTypeUpdateRequest(BaseModel):
    """Operator override of a material's type tag."""
    material_code: str
    type_separation: str = Field(..., description="SECO, FRIO, ORGANICO, OVO or REFORÇO")


# =============================================================================
# Sheet uploads
# =============================================================================

@router.post("", status_code=201)
async def create_separation(
    type: SeparationType = Form(...),
    date: str = Form(...),
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    """Create the caller's active separation from an initial sheet."""
    grid = read_workbook_grid(await file.read(), file.filename)
    report = service.create_separation(owner_id, type, date, grid, file.filename or "")
    return report.to_dict()


@router.get("/active")
async def get_active_separation(
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    """Active separation of the caller."""
    return service.get_active(owner_id).to_dict()


@router.post("/reinforcement")
async def upload_reinforcement(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    """Add a reinforcement sheet to the active separation."""
    grid = read_workbook_grid(await file.read(), file.filename)
    return service.apply_reinforcement(owner_id, grid, file.filename or "").to_dict()


@router.post("/redistribution")
async def upload_redistribution(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    """Overwrite the listed materials with a redistribution sheet."""
    grid = read_workbook_grid(await file.read(), file.filename)
    return service.apply_redistribution(owner_id, grid, file.filename or "").to_dict()


@router.post("/melancia")
async def upload_melancia(
    file: UploadFile = File(...),
    material_code: Optional[str] = Form(None),
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    """Set per-store quantities of a melancia material."""
    grid = read_workbook_grid(await file.read(), file.filename)
    report = service.apply_melancia(owner_id, grid, file.filename or "", material_code=material_code)
    return report.to_dict()


# =============================================================================
# Cuts
# =============================================================================

@router.post("/cut/preview")
async def preview_cut(
    request: CutRequest,
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    """Compute a cut without writing it."""
    summary = service.preview_cut(
        owner_id,
        request.material_code,
        request.mode,
        store_codes=request.store_codes,
        quantities=request.quantities,
    )
    return summary.to_dict()


@router.post("/cut")
async def cut_product(
    request: CutRequest,
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    """Apply a cut to one material."""
    summary = service.cut_product(
        owner_id,
        request.material_code,
        request.mode,
        store_codes=request.store_codes,
        quantities=request.quantities,
    )
    return summary.to_dict()


# =============================================================================
# Manual edits
# =============================================================================

@router.put("/quantity")
async def update_quantity(
    request: QuantityUpdateRequest,
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    return service.update_quantity(owner_id, request.material_code, request.store_code, request.quantity)


@router.put("/item-type")
async def update_item_type(
    request: ItemTypeUpdateRequest,
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    return service.update_item_type(owner_id, request.material_code, request.type_separation).to_dict()


# =============================================================================
# Lookups
# =============================================================================

@router.get("/products")
async def search_products(
    q: str = Query(..., min_length=1, description="Code or description fragment"),
    limit: int = Query(20, ge=1, le=100),
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> List[Dict[str, Any]]:
    """Materials of the active separation, with per-store allocation."""
    return service.search_products(owner_id, q, limit=limit)


@router.get("/last-reinforcement")
async def last_reinforcement(
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    """Most recent reinforcement sheet, for printing."""
    reinforcement = service.last_reinforcement(owner_id)
    if reinforcement is None:
        raise HTTPException(status_code=404, detail="Nenhum reforço encontrado")
    return reinforcement


# =============================================================================
# Lifecycle
# =============================================================================

@router.post("/finalize")
async def finalize_separation(
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    return service.finalize_separation(owner_id).to_dict()


@router.post("/cancel")
async def cancel_separation(
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    return service.cancel_separation(owner_id).to_dict()


@router.delete("/{separation_id}")
async def delete_separation(
    separation_id: int,
    owner_id: str = Depends(get_owner_id),
    service: SeparationService = Depends(get_separation_service),
) -> Dict[str, Any]:
    """Delete one of the caller's separations with all its matrix data."""
    warnings = service.delete_separation(owner_id, separation_id)
    return {"message": "Separação excluída", "separation_id": separation_id, "warnings": warnings}

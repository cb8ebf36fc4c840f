"""
Separation Engine Models

Defines data structures for:
- Separations and their material rows
- Parsed sheets (materials, stores, sparse quantity triples)
- Change reports and cut summaries
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

from master_data.models import TypeSeparation


class Mode(str, Enum):
    """Reconciliation modes; the merge rule is the only per-mode difference"""
    CREATE = "create"
    REINFORCEMENT = "reinforcement"
    REDISTRIBUTION = "redistribution"
    MELANCIA_OVERRIDE = "melancia"


class SeparationType(str, Enum):
    """Regional separation codes"""
    SP = "SP"
    ES = "ES"
    RJ = "RJ"


class SeparationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CutMode(str, Enum):
    """Cut modes over a single material"""
    ALL = "all"                  # Every known cell goes to 0
    SPECIFIC_STORES = "specific" # Listed stores go to 0
    PARTIAL = "partial"          # Listed stores lose quantity_to_cut


class CellChangeKind(str, Enum):
    ADDED = "added"              # 0 -> n
    INCREASED = "increased"      # o -> o + n
    ZEROED = "zeroed"            # o -> 0
    OVERWRITTEN = "overwritten"  # o -> n, n != o


class ProblemKind(str, Enum):
    """Row/cell level problems reported instead of raised"""
    INPUT_MALFORMED = "InputMalformed"
    MATERIAL_NOT_IN_REGISTRY = "MaterialNotInRegistry"
    STORE_UNKNOWN_FOR_OVERRIDE = "StoreUnknownForOverride"


# =============================================================================
# Persisted entities
# =============================================================================

@dataclass
class Separation:
    """
    One warehouse separation work order.

    Attributes:
        id: Database ID
        owner_id: Operator owning the separation
        type: Regional code (SP, ES, RJ)
        date: Separation date (ISO string)
        status: active, completed or cancelled
        file_name: Source file of the initial upload
        total_items: Cached MaterialItem count
        total_stores: Cached count of stores carrying quantity
        warnings: Audit failures of the operation that returned it
    """
    id: int
    owner_id: str
    type: SeparationType
    date: str
    status: SeparationStatus = SeparationStatus.ACTIVE
    file_name: str = ""
    total_items: int = 0
    total_stores: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        return data


@dataclass
class MaterialItem:
    """A row of the matrix"""
    id: int
    separation_id: int
    material_code: str
    description: str
    row_number: Optional[int] = None
    type_separation: TypeSeparation = TypeSeparation.SECO
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type_separation"] = self.type_separation.value
        return data


# =============================================================================
# Parsed input
# =============================================================================

@dataclass
class RowProblem:
    """
    A row or cell that was skipped.

    Attributes:
        kind: Problem kind (see ProblemKind)
        row_number: 1-based sheet row, when the problem comes from a sheet
        material_code: Material the problem refers to
        store_code: Store the problem refers to
        reason: Human-readable explanation
    """
    kind: ProblemKind
    reason: str
    row_number: Optional[int] = None
    material_code: Optional[str] = None
    store_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "row_number": self.row_number,
            "material_code": self.material_code,
            "store_code": self.store_code,
            "reason": self.reason,
        }


@dataclass
class ParsedMaterial:
    code: str
    description: str
    row_number: int


@dataclass
class QuantityTriple:
    """One (material, store) value of a parsed sheet; parsed_ok is False when the raw cell was unreadable"""
    material_index: int
    store_code: str
    quantity: int
    parsed_ok: bool = True


@dataclass
class ParsedSheet:
    """
    Normalized material x store grid.

    Every material carries one triple per declared store, explicit or 0.
    """
    materials: List[ParsedMaterial] = field(default_factory=list)
    stores: List[str] = field(default_factory=list)
    quantities: List[QuantityTriple] = field(default_factory=list)
    problems: List[RowProblem] = field(default_factory=list)

    def quantities_by_material(self) -> Dict[int, Dict[str, int]]:
        """material_index -> {store: quantity}, in declared store order; one pass over the triples."""
        indexed: Dict[int, Dict[str, int]] = {i: {} for i in range(len(self.materials))}
        for q in self.quantities:
            indexed.setdefault(q.material_index, {})[q.store_code] = q.quantity
        return indexed

    def quantities_for(self, material_index: int) -> Dict[str, int]:
        """Store -> quantity for one material; use quantities_by_material() when walking every row."""
        return self.quantities_by_material().get(material_index, {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "materials": [asdict(m) for m in self.materials],
            "stores": list(self.stores),
            "quantities": [asdict(q) for q in self.quantities],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParsedSheet":
        return cls(
            materials=[ParsedMaterial(**m) for m in data.get("materials", [])],
            stores=list(data.get("stores", [])),
            quantities=[QuantityTriple(**q) for q in data.get("quantities", [])],
        )


@dataclass
class StoreQuantity:
    """One row of a store/quantity grid (melancia layout)"""
    store_code: str
    quantity: int
    row_number: int


@dataclass
class ParsedStoreGrid:
    entries: List[StoreQuantity] = field(default_factory=list)
    problems: List[RowProblem] = field(default_factory=list)


# =============================================================================
# Results
# =============================================================================

@dataclass
class CellChange:
    """One cell whose value changed"""
    material_code: str
    store_code: str
    old: int
    new: int
    kind: CellChangeKind
    redistributed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass
class ChangeReport:
    """
    Outcome of one reconciliation.

    Counts are per material except redistributed_cells. Problems beyond
    max_problems are counted in total_problems but not kept.
    """
    mode: Mode
    separation_id: Optional[int] = None
    processed_items: int = 0
    new_items: int = 0
    updated_items: int = 0
    skipped_items: int = 0
    redistributed_items: int = 0
    redistributed_cells: int = 0

    processed_material_codes: List[str] = field(default_factory=list)
    new_material_codes: List[str] = field(default_factory=list)
    updated_material_codes: List[str] = field(default_factory=list)
    skipped_material_codes: List[str] = field(default_factory=list)
    redistributed_material_codes: List[str] = field(default_factory=list)

    cell_changes: List[CellChange] = field(default_factory=list)
    problems: List[RowProblem] = field(default_factory=list)
    total_problems: int = 0
    max_problems: int = 10
    warnings: List[str] = field(default_factory=list)

    # Melancia
    processed_stores: int = 0
    updated_stores: int = 0
    not_found_stores: List[str] = field(default_factory=list)
    total_quantity: int = 0

    # Separation totals after the operation
    total_items: int = 0
    total_stores: int = 0
    reinforcement_print_id: Optional[int] = None

    def add_problem(self, problem: RowProblem) -> None:
        self.total_problems += 1
        if len(self.problems) < self.max_problems:
            self.problems.append(problem)

    def mark_redistributed(self, material_code: str) -> None:
        if material_code not in self.redistributed_material_codes:
            self.redistributed_material_codes.append(material_code)
            self.redistributed_items += 1

    @property
    def unchanged(self) -> bool:
        return not self.cell_changes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "separation_id": self.separation_id,
            "processed_items": self.processed_items,
            "new_items": self.new_items,
            "updated_items": self.updated_items,
            "skipped_items": self.skipped_items,
            "redistributed_items": self.redistributed_items,
            "redistributed_cells": self.redistributed_cells,
            "processed_material_codes": list(self.processed_material_codes),
            "new_material_codes": list(self.new_material_codes),
            "updated_material_codes": list(self.updated_material_codes),
            "skipped_material_codes": list(self.skipped_material_codes),
            "redistributed_material_codes": list(self.redistributed_material_codes),
            "cell_changes": [c.to_dict() for c in self.cell_changes],
            "problems": [p.to_dict() for p in self.problems],
            "total_problems": self.total_problems,
            "warnings": list(self.warnings),
            "processed_stores": self.processed_stores,
            "updated_stores": self.updated_stores,
            "not_found_stores": list(self.not_found_stores),
            "total_quantity": self.total_quantity,
            "total_items": self.total_items,
            "total_stores": self.total_stores,
            "reinforcement_print_id": self.reinforcement_print_id,
        }


@dataclass
class StoreCutOperation:
    """Per-store before/after of a cut"""
    store_code: str
    before: int
    after: int

    @property
    def cut_quantity(self) -> int:
        return self.before - self.after

    @property
    def operation(self) -> str:
        return "complete_cut" if self.after == 0 else "partial_cut"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "store_code": self.store_code,
            "before": self.before,
            "after": self.after,
            "cut_quantity": self.cut_quantity,
            "operation": self.operation,
        }


@dataclass
class CutSummary:
    """Numbers of a cut, identical for preview and apply"""
    material_code: str
    description: str
    cut_mode: CutMode
    operations: List[StoreCutOperation] = field(default_factory=list)
    preview: bool = False
    separation_id: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def total_cut(self) -> int:
        return sum(op.cut_quantity for op in self.operations)

    @property
    def stores_affected(self) -> int:
        return len(self.operations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "material_code": self.material_code,
            "description": self.description,
            "cut_mode": self.cut_mode.value,
            "operations": [op.to_dict() for op in self.operations],
            "total_cut": self.total_cut,
            "stores_affected": self.stores_affected,
            "preview": self.preview,
            "separation_id": self.separation_id,
            "warnings": list(self.warnings),
        }

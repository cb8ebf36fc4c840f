"""
Reconciliation Engine

Merges a parsed sheet into a separation's quantity matrix.

One engine handles every mode. Store-set resolution, registry checks and
the write path are shared; only the merge rule differs:

    create          result = new                       (no prior matrix)
    reinforcement   0,0 -> 0 | 0,n -> n | o,n -> o+n | o,0 -> 0 (redistributed)
    redistribution  result = new, redistributed iff old != new
    melancia        result = new, known stores only

The engine never commits; callers run it inside transaction().
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from config import Settings, get_settings
from core.observability.logging import get_logger
from master_data.db import MaterialRegistry
from master_data.models import MasterMaterial, TypeSeparation
from separation_engine.db import MatrixStore
from separation_engine.errors import MaterialNotAllowed, MaterialNotFound, NoValidRows
from separation_engine.models import (
    CellChange,
    CellChangeKind,
    ChangeReport,
    Mode,
    ParsedSheet,
    ParsedStoreGrid,
    ProblemKind,
    RowProblem,
)

logger = get_logger(__name__)


# =============================================================================
# Merge rules
# =============================================================================

@dataclass(frozen=True)
class MergeResult:
    """Outcome of merging one cell"""
    value: int
    kind: Optional[CellChangeKind]  # None when the cell is unchanged
    redistributed: bool = False


def _overwrite(old: int, new: int) -> MergeResult:
    if old == new:
        return MergeResult(old, None)
    if new == 0:
        return MergeResult(0, CellChangeKind.ZEROED)
    if old == 0:
        return MergeResult(new, CellChangeKind.ADDED)
    return MergeResult(new, CellChangeKind.OVERWRITTEN)


def merge_cell(mode: Mode, old: int, new: int) -> MergeResult:
    """
    Merge one (material, store) cell.

    Args:
        mode: Reconciliation mode
        old: Current quantity (0 when absent)
        new: Sheet quantity (0 when empty or unreadable)
    """
    if mode == Mode.REINFORCEMENT:
        if old == 0 and new == 0:
            return MergeResult(0, None)
        if old == 0:
            return MergeResult(new, CellChangeKind.ADDED)
        if new > 0:
            return MergeResult(old + new, CellChangeKind.INCREASED)
        return MergeResult(0, CellChangeKind.ZEROED, redistributed=True)

    result = _overwrite(old, new)
    if mode == Mode.REDISTRIBUTION and result.kind is not None:
        return MergeResult(result.value, result.kind, redistributed=True)
    return result


def resolve_store_set(mode: Mode, sheet_stores: List[str], known_stores: Set[str]) -> Tuple[List[str], List[str]]:
    """
    Stores to evaluate for one material.

    Returns:
        (stores to process, sheet stores rejected as unknown)
    """
    if mode == Mode.CREATE:
        return list(sheet_stores), []

    if mode == Mode.MELANCIA_OVERRIDE:
        accepted = [s for s in sheet_stores if s in known_stores]
        rejected = [s for s in sheet_stores if s not in known_stores]
        return accepted, rejected

    # Stores omitted from the sheet but holding quantity are still evaluated
    extra = sorted(known_stores.difference(sheet_stores))
    return list(sheet_stores) + extra, []


# =============================================================================
# Engine
# =============================================================================

class ReconciliationEngine:
    """
    Applies sheets to one separation's matrix.

    Usage:
        with transaction(db_path) as conn:
            store = MatrixStore(conn, separation_id)
            engine = ReconciliationEngine(store, MaterialRegistry(db_path))
            report = engine.apply(Mode.REINFORCEMENT, sheet)
    """

    def __init__(
        self,
        store: MatrixStore,
        registry: Optional[MaterialRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings or get_settings()

    def _new_report(self, mode: Mode) -> ChangeReport:
        return ChangeReport(
            mode=mode,
            separation_id=self.store.separation_id,
            max_problems=self.settings.max_reported_problems,
        )

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def _registry_entries(self, codes: List[str]) -> Dict[str, MasterMaterial]:
        if self.registry is None:
            return {}
        return self.registry.lookup_many(codes)

    @staticmethod
    def _type_for(mode: Mode, entry: Optional[MasterMaterial]) -> TypeSeparation:
        """Registry type first; otherwise REFORÇO for reinforcement-created rows, SECO for the rest."""
        if entry is not None and entry.type_separation is not None:
            return entry.type_separation
        if mode == Mode.REINFORCEMENT:
            return TypeSeparation.REFORCO
        return TypeSeparation.SECO

    # -------------------------------------------------------------------------
    # Sheet modes
    # -------------------------------------------------------------------------

    def apply(self, mode: Mode, sheet: ParsedSheet) -> ChangeReport:
        """
        Apply a parsed sheet.

        Args:
            mode: CREATE, REINFORCEMENT or REDISTRIBUTION
            sheet: Parsed sheet; its problems are carried into the report

        Returns:
            ChangeReport with totals refreshed

        Raises:
            NoValidRows: nothing in the sheet could be applied
        """
        if mode == Mode.MELANCIA_OVERRIDE:
            raise ValueError("Melancia override takes a store grid, use apply_melancia()")

        report = self._new_report(mode)
        for problem in sheet.problems:
            report.add_problem(problem)
            # Header problems drop a column, not a row
            if problem.store_code is None:
                report.skipped_items += 1

        enforce_registry = self.registry is not None and self.settings.require_registered_materials
        entries = self._registry_entries([m.code for m in sheet.materials])

        by_material = sheet.quantities_by_material()
        accepted = []
        for index, material in enumerate(sheet.materials):
            if enforce_registry and material.code not in entries:
                logger.warning(
                    f"Material {material.code} not in master registry, skipping",
                    extra_fields={"row_number": material.row_number},
                )
                report.add_problem(RowProblem(
                    kind=ProblemKind.MATERIAL_NOT_IN_REGISTRY,
                    reason=f"Material {material.code} não cadastrado",
                    row_number=material.row_number,
                    material_code=material.code,
                ))
                report.skipped_items += 1
                report.skipped_material_codes.append(material.code)
                continue

            quantities = by_material[index]
            if mode == Mode.CREATE and not any(q > 0 for q in quantities.values()):
                report.skipped_items += 1
                report.skipped_material_codes.append(material.code)
                continue

            accepted.append((material, quantities))

        if not accepted:
            raise NoValidRows(
                "Nenhum material com quantidade válida encontrado na planilha",
                problems=[p.to_dict() for p in report.problems],
                total_problems=report.total_problems,
            )

        existing = {m.code for m, _ in accepted if self.store.find_material(m.code) is not None}
        self.store.ensure_materials([
            (m.code, m.description, self._type_for(mode, entries.get(m.code)), m.row_number)
            for m, _ in accepted
            if m.code not in existing
        ])

        writes = []
        for material, quantities in accepted:
            is_new = material.code not in existing
            known = self.store.get_all_cells_for_material(material.code) if not is_new else {}
            writes.extend(self._merge_material(mode, report, material.code, list(quantities), quantities, known))

            report.processed_items += 1
            report.processed_material_codes.append(material.code)
            if is_new:
                report.new_items += 1
                report.new_material_codes.append(material.code)
            else:
                report.updated_items += 1
                report.updated_material_codes.append(material.code)

        self.store.write_cells(writes)
        report.total_items, report.total_stores = self.store.refresh_totals()

        logger.info(
            f"{mode.value} applied",
            extra_fields={
                "processed_items": report.processed_items,
                "new_items": report.new_items,
                "redistributed_cells": report.redistributed_cells,
                "skipped_items": report.skipped_items,
            },
        )
        return report

    def _merge_material(
        self,
        mode: Mode,
        report: ChangeReport,
        material_code: str,
        sheet_stores: List[str],
        sheet_values: Dict[str, int],
        known: Dict[str, int],
    ) -> List[Tuple[str, str, int]]:
        """Merge one material's cells, record changes, return the cell writes."""
        stores, rejected = resolve_store_set(mode, sheet_stores, set(known))
        for store_code in rejected:
            report.not_found_stores.append(store_code)
            report.add_problem(RowProblem(
                kind=ProblemKind.STORE_UNKNOWN_FOR_OVERRIDE,
                reason=f"Loja {store_code} não possui {material_code} na separação",
                material_code=material_code,
                store_code=store_code,
            ))

        writes = []
        for store_code in stores:
            old = known.get(store_code, 0)
            new = sheet_values.get(store_code, 0)
            merged = merge_cell(mode, old, new)

            if mode == Mode.MELANCIA_OVERRIDE:
                report.updated_stores += 1
                report.total_quantity += merged.value

            if merged.kind is None:
                continue

            report.cell_changes.append(CellChange(
                material_code=material_code,
                store_code=store_code,
                old=old,
                new=merged.value,
                kind=merged.kind,
                redistributed=merged.redistributed,
            ))
            if merged.redistributed:
                report.redistributed_cells += 1
                report.mark_redistributed(material_code)
            writes.append((material_code, store_code, merged.value))

        return writes

    # -------------------------------------------------------------------------
    # Melancia override
    # -------------------------------------------------------------------------

    def apply_melancia(self, material_code: str, grid: ParsedStoreGrid) -> ChangeReport:
        """
        Set the listed stores of one allow-listed material.

        Stores the material does not already hold are reported in
        not_found_stores and never inserted.

        Raises:
            MaterialNotAllowed: code outside the melancia allow-list
            MaterialNotFound: material is not part of the separation
        """
        material_code = str(material_code)
        if material_code not in self.settings.melancia_material_codes:
            raise MaterialNotAllowed(f"Material {material_code} não aceita carga de melancia")

        item = self.store.find_material(material_code)
        if item is None:
            raise MaterialNotFound(
                f"Material melancia (código {material_code}) não encontrado na separação ativa"
            )

        report = self._new_report(Mode.MELANCIA_OVERRIDE)
        # Every grid problem is a skipped store row
        for problem in grid.problems:
            report.add_problem(problem)
            report.skipped_items += 1

        # Later rows for the same store win
        sheet_values: Dict[str, int] = {}
        for entry in grid.entries:
            sheet_values[entry.store_code] = entry.quantity

        known = self.store.get_all_cells_for_material(material_code)
        writes = self._merge_material(
            Mode.MELANCIA_OVERRIDE, report, material_code, list(sheet_values), sheet_values, known,
        )
        self.store.write_cells(writes)

        report.processed_stores = len(sheet_values)
        report.processed_items = 1
        report.processed_material_codes.append(material_code)
        if writes:
            report.updated_items = 1
            report.updated_material_codes.append(material_code)
        report.total_items, report.total_stores = self.store.refresh_totals()

        logger.info(
            "melancia applied",
            extra_fields={
                "material_code": material_code,
                "updated_stores": report.updated_stores,
                "not_found_stores": len(report.not_found_stores),
                "total_quantity": report.total_quantity,
            },
        )
        return report

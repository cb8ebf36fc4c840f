"""
Cut Engine

Irreversible reductions of one material's allocation:
- ALL: every known cell goes to 0
- SPECIFIC_STORES: each listed store goes to 0
- PARTIAL: each listed store loses quantity_to_cut (bounded by its current value)

preview() and apply() compute the same CutSummary; only apply() writes.
Every bound is checked before the first write.
"""

from typing import Dict, Iterable, List, Optional

from core.observability.logging import get_logger
from separation_engine.db import MatrixStore
from separation_engine.errors import (
    ExcessiveCutQuantity,
    InputMalformed,
    MaterialNotFound,
    NothingToCut,
)
from separation_engine.models import CutMode, CutSummary, StoreCutOperation
from separation_engine.normalize import MAX_QUANTITY, parse_number, to_quantity

logger = get_logger(__name__)


class CutEngine:
    """
    Computes and applies cuts over a MatrixStore.

    Usage:
        with transaction(db_path) as conn:
            engine = CutEngine(MatrixStore(conn, separation_id))
            summary = engine.apply("100195", CutMode.PARTIAL, quantities={"101": 3})
    """

    def __init__(self, store: MatrixStore):
        self.store = store

    def plan(
        self,
        material_code: str,
        mode: CutMode,
        store_codes: Optional[Iterable[str]] = None,
        quantities: Optional[Dict[str, int]] = None,
    ) -> CutSummary:
        """
        Compute the per-store operations of a cut.

        Args:
            material_code: Material to cut
            mode: Cut mode
            store_codes: Stores to zero (SPECIFIC_STORES)
            quantities: store_code -> quantity_to_cut (PARTIAL)

        Raises:
            MaterialNotFound: material not in the separation
            InputMalformed: mode arguments missing or negative
            ExcessiveCutQuantity: partial cut above a store's current quantity
            NothingToCut: the cut would not change any cell
        """
        mode = CutMode(mode)
        item = self.store.find_material(material_code)
        if item is None:
            raise MaterialNotFound(f"Material {material_code} não encontrado na separação")

        cells = self.store.get_all_cells_for_material(material_code)
        if not cells:
            raise NothingToCut(f"Material {material_code} não possui quantidades alocadas")

        if mode == CutMode.ALL:
            operations = [
                StoreCutOperation(store_code=store, before=qty, after=0)
                for store, qty in sorted(cells.items())
            ]
        elif mode == CutMode.SPECIFIC_STORES:
            operations = self._plan_specific(cells, store_codes)
        else:
            operations = self._plan_partial(cells, quantities)

        if not operations:
            raise NothingToCut("Nenhuma atualização necessária")

        return CutSummary(
            material_code=item.material_code,
            description=item.description,
            cut_mode=mode,
            operations=operations,
            separation_id=self.store.separation_id,
        )

    @staticmethod
    def _plan_specific(cells: Dict[str, int], store_codes: Optional[Iterable[str]]) -> List[StoreCutOperation]:
        requested = []
        for code in store_codes or ():
            code = str(code).strip()
            if code and code not in requested:
                requested.append(code)
        if not requested:
            raise InputMalformed("Nenhuma loja informada para o corte")

        # Stores without allocation have nothing to remove
        return [
            StoreCutOperation(store_code=code, before=cells[code], after=0)
            for code in requested
            if cells.get(code, 0) > 0
        ]

    @staticmethod
    def _plan_partial(cells: Dict[str, int], quantities: Optional[Dict[str, int]]) -> List[StoreCutOperation]:
        if not quantities:
            raise InputMalformed("Nenhuma quantidade informada para o corte parcial")

        # Keys differing only by whitespace are the same store
        requested: Dict[str, int] = {}
        for store_code, raw in quantities.items():
            store_code = str(store_code).strip()
            if isinstance(raw, (int, float)) and raw < 0:
                raise InputMalformed(f"Quantidade de corte negativa para a loja {store_code}")
            if parse_number(raw).overflow:
                raise InputMalformed(f"Quantidade de corte acima do limite ({MAX_QUANTITY}) para a loja {store_code}")
            requested[store_code] = requested.get(store_code, 0) + to_quantity(raw)

        operations = []
        for store_code, to_cut in requested.items():
            if to_cut == 0:
                continue

            available = cells.get(store_code, 0)
            if to_cut > available:
                raise ExcessiveCutQuantity(
                    f"Corte de {to_cut} na loja {store_code} excede a quantidade atual ({available})",
                    store_code=store_code,
                    requested=to_cut,
                    available=available,
                )
            operations.append(StoreCutOperation(
                store_code=store_code,
                before=available,
                after=available - to_cut,
            ))
        return operations

    def preview(self, material_code: str, mode: CutMode, **kwargs) -> CutSummary:
        """Same numbers as apply(), nothing written."""
        summary = self.plan(material_code, mode, **kwargs)
        summary.preview = True
        return summary

    def apply(self, material_code: str, mode: CutMode, **kwargs) -> CutSummary:
        """Compute the cut, write it and refresh the separation totals."""
        summary = self.plan(material_code, mode, **kwargs)
        self.store.write_cells([
            (summary.material_code, op.store_code, op.after)
            for op in summary.operations
        ])
        self.store.refresh_totals()

        logger.info(
            "Cut applied",
            extra_fields={
                "material_code": summary.material_code,
                "cut_mode": summary.cut_mode.value,
                "total_cut": summary.total_cut,
                "stores_affected": summary.stores_affected,
            },
        )
        return summary

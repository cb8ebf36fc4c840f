"""
Separation Service

Entry point for every top-level separation operation. Each call:
1. opens one write transaction
2. runs the parser/engine against the owner's active separation
3. commits, then reports the outcome to the audit sink

Audit failures never undo a committed operation; they come back as
warnings on the result.
"""

import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from config import Settings, get_settings
from core.audit import AuditEventType, AuditLogger
from core.observability.logging import get_logger, log_operation_event, with_correlation
from core.observability.metrics import (
    record_operation_completed,
    record_operation_failed,
    record_operation_started,
)
from master_data.db import MaterialRegistry
from master_data.models import TypeSeparation
from separation_engine.cut import CutEngine
from separation_engine.db import (
    MatrixStore,
    create_separation,
    delete_separation,
    get_active_separation,
    get_last_reinforcement_print,
    get_separation,
    read_connection,
    save_reinforcement_print,
    set_separation_status,
    transaction,
)
from separation_engine.engine import ReconciliationEngine
from separation_engine.errors import (
    InputMalformed,
    NoActiveSeparation,
    SeparationNotFound,
)
from separation_engine.models import (
    ChangeReport,
    CutMode,
    CutSummary,
    MaterialItem,
    Mode,
    Separation,
    SeparationStatus,
    SeparationType,
)
from separation_engine.normalize import MAX_QUANTITY, parse_number, to_quantity
from separation_engine.parser import parse_sheet, parse_store_quantity_grid

logger = get_logger(__name__)

Grid = Sequence[Sequence[Any]]


class SeparationService:
    """
    Facade over the parser, engines and storage.

    Usage:
        service = SeparationService(db_path, audit=audit_logger)
        report = service.create_separation("user-1", SeparationType.SP, "2024-05-01", grid, "lote.xlsx")
        report = service.apply_reinforcement("user-1", reinforcement_grid, "reforco.xlsx")
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        audit: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
        registry: Optional[MaterialRegistry] = None,
    ):
        self.settings = settings or get_settings()
        self.db_path = Path(db_path) if db_path else self.settings.db_path
        self.audit = audit or AuditLogger()
        self.registry = registry or MaterialRegistry(self.db_path)

    # =========================================================================
    # Plumbing
    # =========================================================================

    @contextmanager
    def _operation(self, operation: str, owner_id: str, **context):
        """Correlation, metrics and timing for one operation."""
        with with_correlation(operation=operation, owner_id=owner_id, **context):
            record_operation_started(operation)
            start = time.time()
            try:
                yield
            except Exception as e:
                record_operation_failed(operation)
                logger.warning(f"{operation} failed", exc_info=True)
                log_operation_event(f"{operation} failed", error_kind=getattr(e, "kind", type(e).__name__))
                raise
            duration_ms = (time.time() - start) * 1000
            record_operation_completed(operation, duration_ms)
            log_operation_event(f"{operation} completed", duration_ms=round(duration_ms, 1))

    @staticmethod
    def _require_active(conn, owner_id: str) -> Separation:
        separation = get_active_separation(conn, owner_id)
        if separation is None:
            raise NoActiveSeparation("Nenhuma separação ativa encontrada")
        return separation

    def _record(
        self,
        owner_id: str,
        action: str,
        details: str,
        metadata: Dict[str, Any],
        event_type: AuditEventType,
        separation_id: Optional[int],
    ) -> List[str]:
        return self.audit.record(
            actor_id=owner_id,
            action=action,
            details=details,
            metadata=metadata,
            event_type=event_type,
            separation_id=separation_id,
        )

    def _store(self, conn, separation_id: int) -> MatrixStore:
        return MatrixStore(conn, separation_id, batch_size=self.settings.batch_size)

    def _engine(self, store: MatrixStore) -> ReconciliationEngine:
        return ReconciliationEngine(store, self.registry, self.settings)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_active(self, owner_id: str) -> Separation:
        with read_connection(self.db_path) as conn:
            return self._require_active(conn, owner_id)

    def find_active(self, owner_id: str) -> Optional[Separation]:
        with read_connection(self.db_path) as conn:
            return get_active_separation(conn, owner_id)

    def search_products(self, owner_id: str, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Materials of the active separation matching a code or description fragment."""
        if not query or not query.strip():
            return []
        with read_connection(self.db_path) as conn:
            separation = self._require_active(conn, owner_id)
            return self._store(conn, separation.id).search_products(query, limit=limit)

    def last_reinforcement(self, owner_id: str) -> Optional[Dict[str, Any]]:
        """Most recent reinforcement sheet stored for printing."""
        with read_connection(self.db_path) as conn:
            separation = self._require_active(conn, owner_id)
            return get_last_reinforcement_print(conn, separation.id)

    # =========================================================================
    # Sheet uploads
    # =========================================================================

    def create_separation(
        self,
        owner_id: str,
        separation_type: SeparationType,
        date: str,
        grid: Grid,
        file_name: str = "",
    ) -> ChangeReport:
        """
        Create the owner's active separation from an initial sheet.

        Raises:
            ActiveSeparationExists: owner already has an active separation
            InputMalformed: sheet unusable or no material with quantity
            StorageFailure: nothing was written
        """
        with self._operation(Mode.CREATE.value, owner_id, file_name=file_name):
            sheet = parse_sheet(grid)
            with transaction(self.db_path) as conn:
                separation = create_separation(conn, owner_id, SeparationType(separation_type), date, file_name)
                with with_correlation(separation_id=separation.id):
                    report = self._engine(self._store(conn, separation.id)).apply(Mode.CREATE, sheet)

            report.warnings.extend(self._record(
                owner_id,
                action="Separação criada",
                details=f"Separação {separation.type.value} criada com {report.new_items} materiais",
                metadata={"file_name": file_name, "date": date, **report.to_dict()},
                event_type=AuditEventType.SEPARATION_CREATED,
                separation_id=separation.id,
            ))
            return report

    def apply_reinforcement(self, owner_id: str, grid: Grid, file_name: str = "") -> ChangeReport:
        """Additive merge of a reinforcement sheet; the parsed sheet is kept for printing."""
        with self._operation(Mode.REINFORCEMENT.value, owner_id, file_name=file_name):
            sheet = parse_sheet(grid)
            with transaction(self.db_path) as conn:
                separation = self._require_active(conn, owner_id)
                with with_correlation(separation_id=separation.id):
                    report = self._engine(self._store(conn, separation.id)).apply(Mode.REINFORCEMENT, sheet)
                    report.reinforcement_print_id = save_reinforcement_print(
                        conn, separation.id, owner_id, file_name, sheet.to_dict(),
                    )

            report.warnings.extend(self._record(
                owner_id,
                action="Reforço carregado",
                details=f"Reforço processado: {report.processed_items} materiais",
                metadata={"file_name": file_name, **report.to_dict()},
                event_type=AuditEventType.REINFORCEMENT_APPLIED,
                separation_id=separation.id,
            ))
            return report

    def apply_redistribution(self, owner_id: str, grid: Grid, file_name: str = "") -> ChangeReport:
        """Overwrite the listed materials' allocation with the sheet values."""
        with self._operation(Mode.REDISTRIBUTION.value, owner_id, file_name=file_name):
            sheet = parse_sheet(grid)
            with transaction(self.db_path) as conn:
                separation = self._require_active(conn, owner_id)
                with with_correlation(separation_id=separation.id):
                    report = self._engine(self._store(conn, separation.id)).apply(Mode.REDISTRIBUTION, sheet)

            report.warnings.extend(self._record(
                owner_id,
                action="Redistribuição carregada",
                details=f"Redistribuição processada: {report.processed_items} materiais",
                metadata={"file_name": file_name, **report.to_dict()},
                event_type=AuditEventType.REDISTRIBUTION_APPLIED,
                separation_id=separation.id,
            ))
            return report

    def apply_melancia(
        self,
        owner_id: str,
        grid: Grid,
        file_name: str = "",
        material_code: Optional[str] = None,
    ) -> ChangeReport:
        """
        Set per-store quantities of a melancia material.

        Args:
            material_code: Allow-listed code; defaults to the first configured one
        """
        if material_code is None:
            material_code = sorted(self.settings.melancia_material_codes)[0]

        with self._operation(Mode.MELANCIA_OVERRIDE.value, owner_id, file_name=file_name):
            parsed = parse_store_quantity_grid(grid)
            with transaction(self.db_path) as conn:
                separation = self._require_active(conn, owner_id)
                with with_correlation(separation_id=separation.id):
                    report = self._engine(self._store(conn, separation.id)).apply_melancia(material_code, parsed)

            report.warnings.extend(self._record(
                owner_id,
                action="Melancia carregada",
                details=(
                    f"Melancia: {report.updated_stores} lojas atualizadas, "
                    f"{len(report.not_found_stores)} não encontradas"
                ),
                metadata={"file_name": file_name, "material_code": material_code, **report.to_dict()},
                event_type=AuditEventType.MELANCIA_APPLIED,
                separation_id=separation.id,
            ))
            return report

    # =========================================================================
    # Cuts
    # =========================================================================

    def preview_cut(
        self,
        owner_id: str,
        material_code: str,
        mode: CutMode,
        store_codes: Optional[Iterable[str]] = None,
        quantities: Optional[Dict[str, int]] = None,
    ) -> CutSummary:
        with read_connection(self.db_path) as conn:
            separation = self._require_active(conn, owner_id)
            return CutEngine(self._store(conn, separation.id)).preview(
                material_code, mode, store_codes=store_codes, quantities=quantities,
            )

    def cut_product(
        self,
        owner_id: str,
        material_code: str,
        mode: CutMode,
        store_codes: Optional[Iterable[str]] = None,
        quantities: Optional[Dict[str, int]] = None,
    ) -> CutSummary:
        """
        Apply a cut to one material.

        Raises:
            ExcessiveCutQuantity: partial cut above a store's quantity, nothing written
            NothingToCut: no cell would change
        """
        with self._operation(f"cut_{CutMode(mode).value}", owner_id):
            with transaction(self.db_path) as conn:
                separation = self._require_active(conn, owner_id)
                with with_correlation(separation_id=separation.id):
                    summary = CutEngine(self._store(conn, separation.id)).apply(
                        material_code, mode, store_codes=store_codes, quantities=quantities,
                    )

            summary.warnings.extend(self._record(
                owner_id,
                action="Corte de produto",
                details=(
                    f"Corte {summary.cut_mode.value} do material {summary.material_code}: "
                    f"{summary.total_cut} unidades em {summary.stores_affected} lojas"
                ),
                metadata=summary.to_dict(),
                event_type=AuditEventType.PRODUCT_CUT,
                separation_id=separation.id,
            ))
            return summary

    # =========================================================================
    # Manual edits
    # =========================================================================

    def update_quantity(
        self,
        owner_id: str,
        material_code: str,
        store_code: str,
        quantity: Any,
    ) -> Dict[str, Any]:
        """
        Set a single cell; 0 removes it.

        Returns:
            Dict with material_code, store_code, old, new and warnings
        """
        if parse_number(quantity).overflow:
            raise InputMalformed(f"Quantidade acima do limite ({MAX_QUANTITY}): {quantity!r}")
        new = to_quantity(quantity)
        with self._operation("update_quantity", owner_id):
            with transaction(self.db_path) as conn:
                separation = self._require_active(conn, owner_id)
                store = self._store(conn, separation.id)
                old = store.get_cell(material_code, store_code) or 0
                store.upsert_cell(material_code, store_code, new)
                store.refresh_totals()

            result = {
                "separation_id": separation.id,
                "material_code": str(material_code),
                "store_code": str(store_code),
                "old": old,
                "new": new,
            }
            result["warnings"] = self._record(
                owner_id,
                action="Quantidade atualizada",
                details=f"Material {material_code} loja {store_code}: {old} -> {new}",
                metadata=dict(result),
                event_type=AuditEventType.QUANTITY_UPDATED,
                separation_id=separation.id,
            )
            return result

    def update_item_type(self, owner_id: str, material_code: str, type_separation: Any) -> MaterialItem:
        """Operator override of a material's type tag."""
        tag = TypeSeparation.parse(type_separation)
        if tag is None:
            raise InputMalformed(f"Tipo de separação inválido: {type_separation!r}")

        with self._operation("update_item_type", owner_id):
            with transaction(self.db_path) as conn:
                separation = self._require_active(conn, owner_id)
                item = self._store(conn, separation.id).update_item_type(material_code, tag)

            item.warnings = self._record(
                owner_id,
                action="Tipo atualizado",
                details=f"Material {material_code} agora é {tag.value}",
                metadata=item.to_dict(),
                event_type=AuditEventType.ITEM_TYPE_UPDATED,
                separation_id=separation.id,
            )
            return item

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _close(self, owner_id: str, status: SeparationStatus, action: str, event_type: AuditEventType) -> Separation:
        with self._operation(f"separation_{status.value}", owner_id):
            with transaction(self.db_path) as conn:
                separation = self._require_active(conn, owner_id)
                set_separation_status(conn, separation.id, status)
                separation = get_separation(conn, separation.id)

            separation.warnings = self._record(
                owner_id,
                action=action,
                details=f"Separação {separation.id} ({separation.type.value}) {status.value}",
                metadata=separation.to_dict(),
                event_type=event_type,
                separation_id=separation.id,
            )
            return separation

    def finalize_separation(self, owner_id: str) -> Separation:
        return self._close(
            owner_id, SeparationStatus.COMPLETED, "Separação finalizada", AuditEventType.SEPARATION_FINALIZED,
        )

    def cancel_separation(self, owner_id: str) -> Separation:
        return self._close(
            owner_id, SeparationStatus.CANCELLED, "Separação cancelada", AuditEventType.SEPARATION_CANCELLED,
        )

    def delete_separation(self, owner_id: str, separation_id: int) -> List[str]:
        """Delete one of the owner's separations with all its matrix data; returns audit warnings."""
        with self._operation("separation_delete", owner_id, separation_id=separation_id):
            with transaction(self.db_path) as conn:
                separation = get_separation(conn, separation_id)
                if separation is None or separation.owner_id != str(owner_id):
                    raise SeparationNotFound(f"Separação {separation_id} não encontrada")
                delete_separation(conn, separation_id)

            return self._record(
                owner_id,
                action="Separação excluída",
                details=f"Separação {separation_id} excluída",
                metadata=separation.to_dict(),
                event_type=AuditEventType.SEPARATION_DELETED,
                separation_id=separation_id,
            )

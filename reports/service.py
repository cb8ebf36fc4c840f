"""
Report Service

Read side of a separation: aggregation views over the committed matrix
and the post-invoicing stock comparison.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from config import Settings, get_settings
from core.audit import AuditEventType, AuditLogger
from core.observability.logging import get_logger, with_correlation
from master_data.db import StoreRegistry
from master_data.models import Circuit, TypeSeparation
from reports.aggregation import (
    AggregationView,
    MatrixCell,
    build_pre_separation_view,
    build_separation_view,
)
from reports.db import (
    get_stock_counts,
    get_stock_references,
    save_stock_counts,
    save_stock_references,
)
from reports.models import StockComparison, StockCount, StockReference
from reports.stock_comparator import compare_stock
from separation_engine.db import (
    MatrixStore,
    get_active_separation,
    read_connection,
    transaction,
)
from separation_engine.errors import NoActiveSeparation

logger = get_logger(__name__)


class ReportService:
    """
    Usage:
        reports = ReportService(db_path)
        view = reports.pre_separation_view("user-1")
        rows = reports.stock_comparison("user-1")
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        audit: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
        store_registry: Optional[StoreRegistry] = None,
    ):
        self.settings = settings or get_settings()
        self.db_path = Path(db_path) if db_path else self.settings.db_path
        self.audit = audit or AuditLogger()
        self.store_registry = store_registry or StoreRegistry(self.db_path)

    @staticmethod
    def _active_id(conn, owner_id: str) -> int:
        separation = get_active_separation(conn, owner_id)
        if separation is None:
            raise NoActiveSeparation("Nenhuma separação ativa encontrada")
        return separation.id

    def _cells(self, owner_id: str) -> List[MatrixCell]:
        with read_connection(self.db_path) as conn:
            separation_id = self._active_id(conn, owner_id)
            return [
                MatrixCell(
                    material_code=row["material_code"],
                    description=row["description"],
                    type_separation=row["type_separation"],
                    store_code=row["store_code"],
                    quantity=row["quantity"],
                )
                for row in MatrixStore(conn, separation_id).matrix_rows()
            ]

    # =========================================================================
    # Aggregation views
    # =========================================================================

    def pre_separation_view(
        self,
        owner_id: str,
        type_filter: Optional[Set[TypeSeparation]] = None,
    ) -> AggregationView:
        cells = self._cells(owner_id)
        return build_pre_separation_view(cells, self.store_registry.list_stores(), type_filter)

    def separation_view(
        self,
        owner_id: str,
        circuit: Circuit = Circuit.SECO,
        type_filter: Optional[Set[TypeSeparation]] = None,
    ) -> AggregationView:
        cells = self._cells(owner_id)
        return build_separation_view(cells, self.store_registry.list_stores(), circuit, type_filter)

    # =========================================================================
    # Stock comparison
    # =========================================================================

    def record_stock_counts(self, owner_id: str, counts: Iterable[StockCount]) -> Dict[str, Any]:
        """Store post-invoicing counts for the active separation."""
        counts = [c for c in counts if c.material_code]
        with with_correlation(owner_id=owner_id, operation="stock_counts"):
            with transaction(self.db_path) as conn:
                separation_id = self._active_id(conn, owner_id)
                saved = save_stock_counts(conn, separation_id, owner_id, counts)

            logger.info("Stock counts recorded", extra_fields={"separation_id": separation_id, "saved": saved})
            warnings = self.audit.record(
                actor_id=owner_id,
                action="Pós-faturamento registrado",
                details=f"{saved} itens de pós-faturamento registrados",
                metadata={"saved": saved},
                event_type=AuditEventType.STOCK_COUNTS_RECORDED,
                separation_id=separation_id,
            )
            return {"separation_id": separation_id, "saved": saved, "warnings": warnings}

    def record_stock_references(self, owner_id: str, references: Iterable[StockReference]) -> int:
        references = [r for r in references if r.material_code]
        with transaction(self.db_path) as conn:
            return save_stock_references(conn, owner_id, references)

    def stock_comparison(self, owner_id: str) -> List[StockComparison]:
        """Compare the active separation's counts with the owner's references."""
        with read_connection(self.db_path) as conn:
            separation_id = self._active_id(conn, owner_id)
            counts = get_stock_counts(conn, separation_id)
            references = get_stock_references(conn, owner_id)
        return compare_stock(references, counts)

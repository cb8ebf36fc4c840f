"""
Reports Package

Read-only projections of a separation and the post-invoicing stock comparison.

Usage:
    from reports import ReportService

    reports = ReportService(db_path)
    view = reports.separation_view("user-1", circuit=Circuit.FRIO)
"""

from .models import (
    StockStatus,
    StockCount,
    StockReference,
    StockComparison,
)

from .aggregation import (
    MatrixCell,
    ViewColumn,
    ViewRow,
    ColumnGroup,
    AggregationView,
    build_pre_separation_view,
    build_separation_view,
)

from .stock_comparator import (
    classify,
    compare_stock,
)

from .db import init_reports_db

from .service import ReportService

__all__ = [
    "StockStatus",
    "StockCount",
    "StockReference",
    "StockComparison",
    "MatrixCell",
    "ViewColumn",
    "ViewRow",
    "ColumnGroup",
    "AggregationView",
    "build_pre_separation_view",
    "build_separation_view",
    "classify",
    "compare_stock",
    "init_reports_db",
    "ReportService",
]

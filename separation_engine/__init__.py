"""
Separation Engine Package

Quantity reconciliation for warehouse order separation: a material x store
matrix per separation, merged with uploaded sheets and reduced by cuts.

Features:
- Locale-tolerant numeric normalization
- Sheet parsing with per-row diagnostics
- Sparse SQLite matrix with all-or-nothing transactions
- Create / reinforcement / redistribution / melancia merges
- All / specific-store / partial cuts with preview

Usage:
    from separation_engine import SeparationService, SeparationType, CutMode

    service = SeparationService(db_path)
    service.create_separation("user-1", SeparationType.SP, "2024-05-01", grid, "separacao.xlsx")
    report = service.apply_reinforcement("user-1", reinforcement_grid, "reforco.xlsx")
    summary = service.preview_cut("user-1", "100195", CutMode.PARTIAL, quantities={"101": 2})
"""

from .models import (
    # Enums
    Mode,
    SeparationType,
    SeparationStatus,
    CutMode,
    CellChangeKind,
    ProblemKind,

    # Data classes
    Separation,
    MaterialItem,
    RowProblem,
    ParsedMaterial,
    QuantityTriple,
    ParsedSheet,
    StoreQuantity,
    ParsedStoreGrid,
    CellChange,
    ChangeReport,
    StoreCutOperation,
    CutSummary,
)

from .errors import (
    SeparationError,
    InputMalformed,
    EmptySheet,
    NoStoresDeclared,
    NoValidRows,
    ActiveSeparationExists,
    NoActiveSeparation,
    SeparationNotFound,
    MaterialNotFound,
    MaterialNotAllowed,
    ExcessiveCutQuantity,
    NothingToCut,
    StorageFailure,
)

from .normalize import (
    MAX_QUANTITY,
    ParsedNumber,
    parse_number,
    normalize_quantity,
    to_quantity,
    clean_code,
)

from .parser import (
    parse_sheet,
    parse_store_quantity_grid,
)

from .db import (
    init_separation_db,
    init_db,
    transaction,
    read_connection,
    MatrixStore,
)

from .engine import (
    MergeResult,
    merge_cell,
    resolve_store_set,
    ReconciliationEngine,
)

from .cut import CutEngine

from .service import SeparationService

__all__ = [
    # Enums
    "Mode",
    "SeparationType",
    "SeparationStatus",
    "CutMode",
    "CellChangeKind",
    "ProblemKind",
    # Data classes
    "Separation",
    "MaterialItem",
    "RowProblem",
    "ParsedMaterial",
    "QuantityTriple",
    "ParsedSheet",
    "StoreQuantity",
    "ParsedStoreGrid",
    "CellChange",
    "ChangeReport",
    "StoreCutOperation",
    "CutSummary",
    # Errors
    "SeparationError",
    "InputMalformed",
    "EmptySheet",
    "NoStoresDeclared",
    "NoValidRows",
    "ActiveSeparationExists",
    "NoActiveSeparation",
    "SeparationNotFound",
    "MaterialNotFound",
    "MaterialNotAllowed",
    "ExcessiveCutQuantity",
    "NothingToCut",
    "StorageFailure",
    # Normalizer
    "MAX_QUANTITY",
    "ParsedNumber",
    "parse_number",
    "normalize_quantity",
    "to_quantity",
    "clean_code",
    # Parser
    "parse_sheet",
    "parse_store_quantity_grid",
    # Storage
    "init_separation_db",
    "init_db",
    "transaction",
    "read_connection",
    "MatrixStore",
    # Engines
    "MergeResult",
    "merge_cell",
    "resolve_store_set",
    "ReconciliationEngine",
    "CutEngine",
    "SeparationService",
]

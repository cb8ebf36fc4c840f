"""Sheet parsing: raw cell grid -> ParsedSheet.

Grid layout for separation sheets:
- row 0: column 0/1 headers, store codes from column 2 onward
- rows 1..n: material code (col 0), description (col 1), one quantity per store

Melancia sheets use a different layout, see parse_store_quantity_grid().
"""

from typing import Any, List, Sequence

from config import get_settings
from core.observability.logging import get_logger
from separation_engine.errors import EmptySheet, NoStoresDeclared, NoValidRows
from separation_engine.models import (
    ParsedMaterial,
    ParsedSheet,
    ParsedStoreGrid,
    ProblemKind,
    QuantityTriple,
    RowProblem,
    StoreQuantity,
)
from separation_engine.normalize import MAX_QUANTITY, clean_code, parse_number, to_quantity

logger = get_logger(__name__)

Grid = Sequence[Sequence[Any]]

STORE_HEADER_START_COL = 2
MELANCIA_STORE_COL = 0
MELANCIA_QUANTITY_COL = 2


# =============================================================================
# Grid helpers
# =============================================================================

def _cell(grid: Grid, row: int, col: int) -> Any:
    if row >= len(grid):
        return None
    values = grid[row] or ()
    if col >= len(values):
        return None
    return values[col]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _text(value: Any) -> str:
    if _is_blank(value):
        return ""
    return clean_code(value)


def _row_is_blank(grid: Grid, row: int) -> bool:
    return all(_is_blank(v) for v in (grid[row] or ()))


def _capped(problems: List[RowProblem]) -> List[dict]:
    limit = get_settings().max_reported_problems
    return [p.to_dict() for p in problems[:limit]]


def _last_material_row(grid: Grid) -> int:
    """Index of the last row with a non-empty column 0, 0 when there is none."""
    for row in range(len(grid) - 1, 0, -1):
        if not _is_blank(_cell(grid, row, 0)):
            return row
    return 0


# =============================================================================
# Separation sheet
# =============================================================================

def _parse_store_headers(grid: Grid, problems: List[RowProblem]) -> List[tuple]:
    """Return (column, store_code) pairs for the usable header cells."""
    header = grid[0] if grid else ()
    header = header or ()

    last_col = None
    for col in range(len(header) - 1, STORE_HEADER_START_COL - 1, -1):
        if not _is_blank(header[col]):
            last_col = col
            break
    if last_col is None:
        return []

    columns = []
    seen = set()
    for col in range(STORE_HEADER_START_COL, last_col + 1):
        store_code = _text(header[col])
        if not store_code:
            continue
        if store_code in seen:
            problems.append(RowProblem(
                kind=ProblemKind.INPUT_MALFORMED,
                reason=f"Loja {store_code} repetida no cabeçalho, coluna ignorada",
                row_number=1,
                store_code=store_code,
            ))
            continue
        seen.add(store_code)
        columns.append((col, store_code))

    return columns


def parse_sheet(grid: Grid) -> ParsedSheet:
    """
    Parse a material x store grid.

    Rows without both a material code and a description are skipped; a
    non-blank skipped row is reported as a problem. Each retained material
    gets one triple per declared store even when the cell is empty.

    Args:
        grid: Rows of raw cell values

    Returns:
        ParsedSheet

    Raises:
        EmptySheet: no material rows below the header
        NoStoresDeclared: header has no store columns
        NoValidRows: every candidate row was skipped
    """
    sheet = ParsedSheet()

    last_row = _last_material_row(grid) if grid else 0
    if last_row == 0:
        raise EmptySheet("Nenhum material encontrado na planilha")

    store_columns = _parse_store_headers(grid, sheet.problems)
    if not store_columns:
        raise NoStoresDeclared("Nenhuma loja encontrada no cabeçalho da planilha")
    sheet.stores = [store_code for _, store_code in store_columns]

    seen_codes = set()
    for row in range(1, last_row + 1):
        row_number = row + 1
        code = _text(_cell(grid, row, 0))
        description = _text(_cell(grid, row, 1))

        if not code or not description:
            if not _row_is_blank(grid, row):
                missing = "código do material" if not code else "descrição"
                sheet.problems.append(RowProblem(
                    kind=ProblemKind.INPUT_MALFORMED,
                    reason=f"Linha sem {missing}",
                    row_number=row_number,
                    material_code=code or None,
                ))
            continue

        if code in seen_codes:
            sheet.problems.append(RowProblem(
                kind=ProblemKind.INPUT_MALFORMED,
                reason=f"Material {code} repetido na planilha, linha ignorada",
                row_number=row_number,
                material_code=code,
            ))
            continue
        seen_codes.add(code)

        numbers = [(store_code, parse_number(_cell(grid, row, col))) for col, store_code in store_columns]
        oversized = [store_code for store_code, number in numbers if number.overflow]
        if oversized:
            # A 0 in place of the cell would zero the allocation; skip the whole row
            sheet.problems.append(RowProblem(
                kind=ProblemKind.INPUT_MALFORMED,
                reason=(
                    f"Material {code} com quantidade acima do limite ({MAX_QUANTITY}) "
                    f"nas lojas {', '.join(oversized)}, linha ignorada"
                ),
                row_number=row_number,
                material_code=code,
            ))
            continue

        material_index = len(sheet.materials)
        sheet.materials.append(ParsedMaterial(code=code, description=description, row_number=row_number))

        for store_code, number in numbers:
            sheet.quantities.append(QuantityTriple(
                material_index=material_index,
                store_code=store_code,
                quantity=to_quantity(number.value),
                parsed_ok=number.ok,
            ))

    if not sheet.materials:
        raise NoValidRows(
            "Nenhuma linha válida encontrada na planilha",
            problems=_capped(sheet.problems),
            total_problems=len(sheet.problems),
        )

    logger.debug(
        "Sheet parsed",
        extra_fields={
            "materials": len(sheet.materials),
            "stores": len(sheet.stores),
            "problems": len(sheet.problems),
        },
    )
    return sheet


# =============================================================================
# Store/quantity grid (melancia)
# =============================================================================

def parse_store_quantity_grid(grid: Grid) -> ParsedStoreGrid:
    """
    Parse a store/quantity list.

    Layout: header row, store code in column A, quantity in column C
    (column B is ignored). Rows with no store or an unreadable quantity
    are skipped and reported.

    Raises:
        EmptySheet: no data rows below the header
        NoValidRows: every data row was skipped
    """
    parsed = ParsedStoreGrid()
    data_rows = [row for row in range(1, len(grid or ())) if not _row_is_blank(grid, row)]
    if not data_rows:
        raise EmptySheet("Nenhum dado encontrado na planilha")

    for row in data_rows:
        row_number = row + 1
        store_code = _text(_cell(grid, row, MELANCIA_STORE_COL))
        raw = _cell(grid, row, MELANCIA_QUANTITY_COL)

        if not store_code:
            parsed.problems.append(RowProblem(
                kind=ProblemKind.INPUT_MALFORMED,
                reason="Linha sem código de loja",
                row_number=row_number,
            ))
            continue

        number = parse_number(raw)
        if _is_blank(raw) or not number.ok:
            limit = f" (limite {MAX_QUANTITY})" if number.overflow else ""
            parsed.problems.append(RowProblem(
                kind=ProblemKind.INPUT_MALFORMED,
                reason=f"Quantidade inválida{limit}: {raw!r}",
                row_number=row_number,
                store_code=store_code,
            ))
            continue

        parsed.entries.append(StoreQuantity(
            store_code=store_code,
            quantity=to_quantity(number.value),
            row_number=row_number,
        ))

    if not parsed.entries:
        raise NoValidRows(
            "Nenhum dado válido encontrado na planilha",
            problems=_capped(parsed.problems),
            total_problems=len(parsed.problems),
        )

    return parsed

"""
Workbook decoding for sheet uploads.

Turns an uploaded .xlsx/.xlsm payload into the grid of raw cell values the
sheet parser consumes. Only the first worksheet is read; formulas are read
as their cached values.
"""

from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import Any, List, Optional

from openpyxl import load_workbook

from separation_engine.errors import InputMalformed

ALLOWED_EXTENSIONS = {".xlsx", ".xlsm"}


def _cell_value(value: Any) -> Any:
    # Grids travel as JSON through Temporal, dates become text
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def read_workbook_grid(payload: bytes, filename: Optional[str] = None) -> List[List[Any]]:
    """
    Decode a workbook into rows of cell values.

    Args:
        payload: Raw file bytes
        filename: Uploaded file name, used to check the extension

    Returns:
        One list per worksheet row, values as stored by openpyxl

    Raises:
        InputMalformed: unsupported extension, empty upload or unreadable workbook
    """
    if filename:
        extension = Path(filename).suffix.lower()
        if extension not in ALLOWED_EXTENSIONS:
            raise InputMalformed(
                f"Formato de arquivo não suportado: {extension or filename}. Use .xlsx ou .xlsm",
            )

    if not payload:
        raise InputMalformed("Arquivo enviado está vazio")

    try:
        workbook = load_workbook(filename=BytesIO(payload), data_only=True, read_only=True)
    except Exception as exc:
        raise InputMalformed(f"Planilha inválida: {exc}") from exc

    try:
        worksheet = workbook.worksheets[0]
        return [
            [_cell_value(value) for value in row]
            for row in worksheet.iter_rows(values_only=True)
        ]
    finally:
        workbook.close()

"""Numeric normalization for spreadsheet cells.

Locale-formatted text ("1.234,5") becomes a canonical non-negative number:
- every "." is a thousands separator and is dropped
- "," is the decimal marker
- unparseable, negative or NaN input becomes 0
- values above MAX_QUANTITY become 0 and are flagged as overflow

normalize_quantity() never raises. parse_number() additionally reports
whether the raw value was actually readable so callers can tell an
explicit 0 from garbage.
"""

import math
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

# Leading float literal, the part a lenient float parser would consume
_FLOAT_PREFIX = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")

# Largest quantity a cell may hold; exact as a float and far below SQLite's INTEGER limit
MAX_QUANTITY = 10 ** 15


@dataclass(frozen=True)
class ParsedNumber:
    value: float
    ok: bool
    overflow: bool = False


_OVERFLOW = ParsedNumber(0.0, False, overflow=True)


def parse_number(raw: Any) -> ParsedNumber:
    """
    Normalize a raw cell value.

    Args:
        raw: Cell value (text, number, None)

    Returns:
        ParsedNumber with the normalized value and whether parsing succeeded.
        Empty cells are an explicit 0 and count as parsed.
    """
    if raw is None:
        return ParsedNumber(0.0, True)

    if isinstance(raw, bool):
        return ParsedNumber(0.0, False)

    if isinstance(raw, (int, float, Decimal)):
        value = float(raw)
        if math.isnan(value) or math.isinf(value):
            return ParsedNumber(0.0, False)
        if value < 0:
            return ParsedNumber(0.0, False)
        if value > MAX_QUANTITY:
            return _OVERFLOW
        return ParsedNumber(value, True)

    text = str(raw).strip()
    if not text:
        return ParsedNumber(0.0, True)

    text = text.replace(".", "").replace(",", ".")
    match = _FLOAT_PREFIX.match(text)
    if not match:
        return ParsedNumber(0.0, False)

    value = float(match.group(0))
    if value < 0:
        return ParsedNumber(0.0, False)
    if math.isinf(value) or value > MAX_QUANTITY:
        return _OVERFLOW

    # Trailing junk still yields the leading number, but is not a clean parse
    return ParsedNumber(value, match.end() == len(text))


def normalize_quantity(raw: Any) -> float:
    """Normalized value only; 0 for anything unreadable."""
    return parse_number(raw).value


def to_quantity(raw: Any) -> int:
    """Normalize and round half-up to the integer quantity stored in the matrix."""
    value = normalize_quantity(raw)
    return int(Decimal(repr(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clean_code(raw: Any) -> str:
    """
    Material/store code as text.

    Integral numbers lose their decimal part (101.0 -> "101").
    """
    if raw is None or isinstance(raw, bool):
        return ""
    if isinstance(raw, float):
        if math.isnan(raw) or math.isinf(raw):
            return ""
        if raw.is_integer():
            return str(int(raw))
        return repr(raw)
    if isinstance(raw, int):
        return str(raw)
    return str(raw).strip()

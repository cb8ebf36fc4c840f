"""Reports Database Operations.

Post-invoicing stock data used by the stock comparator:
- stock_count: per separation, counts captured after invoicing
- stock_reference: per owner, reference quantities captured before invoicing
"""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from reports.models import StockCount, StockReference
from separation_engine.db import get_db_connection


def init_reports_db(db_path: Optional[Path] = None) -> None:
    """Initialize stock count tables.

    Creates:
    - stock_count: post-invoicing counts, unique per (separation, material)
    - stock_reference: reference quantities, unique per (owner, material)
    """
    conn = get_db_connection(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stock_count (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                separation_id INTEGER NOT NULL
                    REFERENCES separation(id) ON DELETE CASCADE,
                owner_id TEXT NOT NULL,
                material_code TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                quantity_kg REAL NOT NULL DEFAULT 0,
                current_quantity REAL NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                UNIQUE(separation_id, material_code)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stock_reference (
                owner_id TEXT NOT NULL,
                material_code TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                reference_quantity REAL NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (owner_id, material_code)
            )
        """)
    finally:
        conn.close()


# =============================================================================
# Stock counts
# =============================================================================

def save_stock_counts(
    conn: sqlite3.Connection,
    separation_id: int,
    owner_id: str,
    counts: Iterable[StockCount],
) -> int:
    """Insert or replace the separation's counts for the given materials."""
    now = datetime.utcnow().isoformat()
    rows = [
        (separation_id, str(owner_id), c.material_code, c.description, c.quantity_kg, c.current_quantity, now)
        for c in counts
    ]
    conn.executemany("""
        INSERT INTO stock_count
        (separation_id, owner_id, material_code, description, quantity_kg, current_quantity, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(separation_id, material_code) DO UPDATE SET
            description = excluded.description,
            quantity_kg = excluded.quantity_kg,
            current_quantity = excluded.current_quantity,
            created_at = excluded.created_at
    """, rows)
    return len(rows)


def get_stock_counts(conn: sqlite3.Connection, separation_id: int) -> List[StockCount]:
    rows = conn.execute(
        "SELECT * FROM stock_count WHERE separation_id = ? ORDER BY material_code",
        (separation_id,),
    ).fetchall()
    return [
        StockCount(
            material_code=row["material_code"],
            description=row["description"],
            quantity_kg=row["quantity_kg"],
            current_quantity=row["current_quantity"],
        )
        for row in rows
    ]


# =============================================================================
# Stock references
# =============================================================================

def save_stock_references(
    conn: sqlite3.Connection,
    owner_id: str,
    references: Iterable[StockReference],
) -> int:
    now = datetime.utcnow().isoformat()
    rows = [
        (str(owner_id), r.material_code, r.description, r.reference_quantity, now)
        for r in references
    ]
    conn.executemany("""
        INSERT INTO stock_reference (owner_id, material_code, description, reference_quantity, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(owner_id, material_code) DO UPDATE SET
            description = excluded.description,
            reference_quantity = excluded.reference_quantity,
            updated_at = excluded.updated_at
    """, rows)
    return len(rows)


def get_stock_references(conn: sqlite3.Connection, owner_id: str) -> Dict[str, StockReference]:
    rows = conn.execute(
        "SELECT * FROM stock_reference WHERE owner_id = ?",
        (str(owner_id),),
    ).fetchall()
    return {
        row["material_code"]: StockReference(
            material_code=row["material_code"],
            description=row["description"],
            reference_quantity=row["reference_quantity"],
        )
        for row in rows
    }

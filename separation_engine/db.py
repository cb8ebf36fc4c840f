"""Separation Database Operations.

This module handles all persistence for separations:
- Schema initialization (separation, material_item, quantity_cell, reinforcement_print)
- Transaction scope for one reconciliation or cut
- MatrixStore: cell-level read/write over one separation's matrix

The matrix is sparse: a quantity_cell row exists only for quantity > 0, a
logical 0 is the absence of the row. Every write goes through a
MatrixStore bound to a connection opened by transaction(), so a failure
anywhere rolls back the whole operation.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from config import get_settings
from core.observability.logging import get_logger
from master_data.db import init_master_data_db
from master_data.models import TypeSeparation
from separation_engine.errors import (
    ActiveSeparationExists,
    MaterialNotFound,
    StorageFailure,
)
from separation_engine.models import (
    MaterialItem,
    Separation,
    SeparationStatus,
    SeparationType,
)

logger = get_logger(__name__)


def _resolve_path(db_path: Optional[Path]) -> Path:
    return Path(db_path) if db_path else get_settings().db_path


def _now() -> str:
    return datetime.utcnow().isoformat()


def get_db_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Get database connection with row factory and foreign keys enabled.

    The connection runs in autocommit mode; transaction() issues BEGIN/COMMIT.
    """
    conn = sqlite3.connect(str(_resolve_path(db_path)), isolation_level=None, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_separation_db(db_path: Optional[Path] = None) -> None:
    """Initialize separation tables.

    Creates:
    - separation: one work order, at most one active per owner
    - material_item: matrix rows, unique per (separation, material_code)
    - quantity_cell: sparse matrix cells, quantity > 0
    - reinforcement_print: parsed reinforcement sheets kept for printing

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_db_connection(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS separation (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('SP', 'ES', 'RJ')),
                date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK (status IN ('active', 'completed', 'cancelled')),
                file_name TEXT NOT NULL DEFAULT '',
                total_items INTEGER NOT NULL DEFAULT 0,
                total_stores INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # One active separation per owner
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_separation_one_active
            ON separation(owner_id) WHERE status = 'active'
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_separation_owner
            ON separation(owner_id, status)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS material_item (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                separation_id INTEGER NOT NULL
                    REFERENCES separation(id) ON DELETE CASCADE,
                material_code TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                row_number INTEGER,
                type_separation TEXT NOT NULL DEFAULT 'SECO'
                    CHECK (type_separation IN ('SECO', 'FRIO', 'ORGANICO', 'OVO', 'REFORÇO')),
                UNIQUE(separation_id, material_code)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS quantity_cell (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                item_id INTEGER NOT NULL
                    REFERENCES material_item(id) ON DELETE CASCADE,
                store_code TEXT NOT NULL,
                quantity INTEGER NOT NULL CHECK (quantity > 0),
                UNIQUE(item_id, store_code)
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_quantity_cell_store
            ON quantity_cell(store_code)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reinforcement_print (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                separation_id INTEGER NOT NULL
                    REFERENCES separation(id) ON DELETE CASCADE,
                owner_id TEXT NOT NULL,
                file_name TEXT NOT NULL DEFAULT '',
                data TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_reinforcement_print_separation
            ON reinforcement_print(separation_id, id)
        """)
    finally:
        conn.close()


def init_db(db_path: Optional[Path] = None) -> None:
    """Initialize master data and separation tables in one database."""
    init_master_data_db(db_path)
    init_separation_db(db_path)


# =============================================================================
# Transactions
# =============================================================================

def _rollback(conn: sqlite3.Connection) -> None:
    if not conn.in_transaction:
        return
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error as e:
        logger.warning(f"Rollback failed: {e}")


@contextmanager
def transaction(db_path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    """
    Run a block inside one write transaction.

    BEGIN IMMEDIATE takes the write lock up front so the checks done inside
    the block (e.g. "owner has no active separation") cannot race another
    writer. Any sqlite3.Error becomes StorageFailure; any other exception
    propagates unchanged. Both roll back.

    Usage:
        with transaction(db_path) as conn:
            store = MatrixStore(conn, separation_id)
            store.upsert_cell("100195", "101", 12)
    """
    try:
        conn = get_db_connection(db_path)
    except sqlite3.Error as e:
        raise StorageFailure(f"Falha ao abrir o banco de dados: {e}") from e

    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except (sqlite3.Error, OverflowError) as e:
        # OverflowError: value beyond SQLite INTEGER range
        _rollback(conn)
        raise StorageFailure(f"Falha na transação: {e}") from e
    except BaseException:
        _rollback(conn)
        raise
    finally:
        conn.close()


@contextmanager
def read_connection(db_path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    """Plain connection for reads; sees committed state only."""
    try:
        conn = get_db_connection(db_path)
    except sqlite3.Error as e:
        raise StorageFailure(f"Falha ao abrir o banco de dados: {e}") from e
    try:
        yield conn
    except sqlite3.Error as e:
        raise StorageFailure(f"Falha na leitura: {e}") from e
    finally:
        conn.close()


def _chunks(rows: List[Any], size: int) -> Iterator[List[Any]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


# =============================================================================
# Separation CRUD
# =============================================================================

def _row_to_separation(row: sqlite3.Row) -> Separation:
    return Separation(
        id=row["id"],
        owner_id=row["owner_id"],
        type=SeparationType(row["type"]),
        date=row["date"],
        status=SeparationStatus(row["status"]),
        file_name=row["file_name"],
        total_items=row["total_items"],
        total_stores=row["total_stores"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def get_active_separation(conn: sqlite3.Connection, owner_id: str) -> Optional[Separation]:
    row = conn.execute(
        "SELECT * FROM separation WHERE owner_id = ? AND status = 'active'",
        (str(owner_id),),
    ).fetchone()
    return _row_to_separation(row) if row else None


def get_separation(conn: sqlite3.Connection, separation_id: int) -> Optional[Separation]:
    row = conn.execute("SELECT * FROM separation WHERE id = ?", (separation_id,)).fetchone()
    return _row_to_separation(row) if row else None


def create_separation(
    conn: sqlite3.Connection,
    owner_id: str,
    separation_type: SeparationType,
    date: str,
    file_name: str = "",
) -> Separation:
    """
    Insert a new active separation.

    Must run inside transaction(); the active check and the insert share
    the write lock.

    Raises:
        ActiveSeparationExists: owner already has an active separation
    """
    existing = get_active_separation(conn, owner_id)
    if existing:
        raise ActiveSeparationExists(
            "Já existe uma separação ativa. Finalize-a antes de criar uma nova.",
            separation_id=existing.id,
        )

    now = _now()
    try:
        cursor = conn.execute("""
            INSERT INTO separation
            (owner_id, type, date, status, file_name, total_items, total_stores, created_at, updated_at)
            VALUES (?, ?, ?, 'active', ?, 0, 0, ?, ?)
        """, (str(owner_id), SeparationType(separation_type).value, date, file_name, now, now))
    except sqlite3.IntegrityError as e:
        # Partial unique index on active separations
        raise ActiveSeparationExists(
            "Já existe uma separação ativa. Finalize-a antes de criar uma nova."
        ) from e

    return get_separation(conn, cursor.lastrowid)


def set_separation_status(
    conn: sqlite3.Connection,
    separation_id: int,
    status: SeparationStatus,
) -> None:
    conn.execute(
        "UPDATE separation SET status = ?, updated_at = ? WHERE id = ?",
        (SeparationStatus(status).value, _now(), separation_id),
    )


def delete_separation(conn: sqlite3.Connection, separation_id: int) -> bool:
    """Delete a separation; items, cells and prints go with it."""
    cursor = conn.execute("DELETE FROM separation WHERE id = ?", (separation_id,))
    return cursor.rowcount > 0


# =============================================================================
# Reinforcement prints
# =============================================================================

def save_reinforcement_print(
    conn: sqlite3.Connection,
    separation_id: int,
    owner_id: str,
    file_name: str,
    data: Dict[str, Any],
) -> int:
    cursor = conn.execute("""
        INSERT INTO reinforcement_print (separation_id, owner_id, file_name, data, created_at)
        VALUES (?, ?, ?, ?, ?)
    """, (separation_id, str(owner_id), file_name, json.dumps(data, ensure_ascii=False), _now()))
    return cursor.lastrowid


def get_last_reinforcement_print(
    conn: sqlite3.Connection,
    separation_id: int,
) -> Optional[Dict[str, Any]]:
    row = conn.execute("""
        SELECT * FROM reinforcement_print
        WHERE separation_id = ?
        ORDER BY id DESC
        LIMIT 1
    """, (separation_id,)).fetchone()
    if not row:
        return None
    return {
        "id": row["id"],
        "separation_id": row["separation_id"],
        "file_name": row["file_name"],
        "created_at": row["created_at"],
        "data": json.loads(row["data"]),
    }


# =============================================================================
# Matrix Store
# =============================================================================

class MatrixStore:
    """
    Material x store quantity matrix of one separation.

    Cells are addressed by (material_code, store_code). Writes use the
    connection they were given; commit/rollback belong to transaction().
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        separation_id: int,
        batch_size: Optional[int] = None,
    ):
        self.conn = conn
        self.separation_id = separation_id
        self.batch_size = batch_size or get_settings().batch_size
        self._items: Optional[Dict[str, MaterialItem]] = None

    # -------------------------------------------------------------------------
    # Material rows
    # -------------------------------------------------------------------------

    def _load_items(self) -> Dict[str, MaterialItem]:
        if self._items is None:
            rows = self.conn.execute(
                "SELECT * FROM material_item WHERE separation_id = ?",
                (self.separation_id,),
            ).fetchall()
            self._items = {row["material_code"]: self._row_to_item(row) for row in rows}
        return self._items

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> MaterialItem:
        return MaterialItem(
            id=row["id"],
            separation_id=row["separation_id"],
            material_code=row["material_code"],
            description=row["description"],
            row_number=row["row_number"],
            type_separation=TypeSeparation.parse(row["type_separation"]) or TypeSeparation.SECO,
        )

    def find_material(self, material_code: str) -> Optional[MaterialItem]:
        return self._load_items().get(str(material_code))

    def list_materials(self) -> List[MaterialItem]:
        return list(self._load_items().values())

    def _require(self, material_code: str) -> MaterialItem:
        item = self.find_material(material_code)
        if item is None:
            raise MaterialNotFound(f"Material {material_code} não encontrado na separação")
        return item

    def ensure_material(
        self,
        material_code: str,
        description: str,
        type_separation: TypeSeparation,
        row_number: Optional[int] = None,
    ) -> MaterialItem:
        """Return the material row, creating it when absent."""
        return self.ensure_materials([(material_code, description, type_separation, row_number)])[str(material_code)]

    def ensure_materials(
        self,
        materials: List[Tuple[str, str, TypeSeparation, Optional[int]]],
    ) -> Dict[str, MaterialItem]:
        """
        Bulk version of ensure_material().

        Args:
            materials: (material_code, description, type_separation, row_number) tuples

        Returns:
            Dict of material_code -> MaterialItem for every requested code
        """
        items = self._load_items()
        missing = [m for m in materials if str(m[0]) not in items]

        for chunk in _chunks(missing, self.batch_size):
            self.conn.executemany("""
                INSERT INTO material_item
                (separation_id, material_code, description, row_number, type_separation)
                VALUES (?, ?, ?, ?, ?)
            """, [
                (self.separation_id, str(code), description or "", row_number, TypeSeparation(type_tag).value)
                for code, description, type_tag, row_number in chunk
            ])

        if missing:
            self._items = None
            items = self._load_items()

        return {str(m[0]): items[str(m[0])] for m in materials}

    def update_item_type(self, material_code: str, type_separation: TypeSeparation) -> MaterialItem:
        item = self._require(material_code)
        self.conn.execute(
            "UPDATE material_item SET type_separation = ? WHERE id = ?",
            (TypeSeparation(type_separation).value, item.id),
        )
        item.type_separation = TypeSeparation(type_separation)
        return item

    # -------------------------------------------------------------------------
    # Cells
    # -------------------------------------------------------------------------

    def get_cell(self, material_code: str, store_code: str) -> Optional[int]:
        """Quantity of one cell, None when the cell is absent."""
        item = self.find_material(material_code)
        if item is None:
            return None
        row = self.conn.execute(
            "SELECT quantity FROM quantity_cell WHERE item_id = ? AND store_code = ?",
            (item.id, str(store_code)),
        ).fetchone()
        return row["quantity"] if row else None

    def get_all_cells_for_material(self, material_code: str) -> Dict[str, int]:
        item = self.find_material(material_code)
        if item is None:
            return {}
        rows = self.conn.execute(
            "SELECT store_code, quantity FROM quantity_cell WHERE item_id = ?",
            (item.id,),
        ).fetchall()
        return {row["store_code"]: row["quantity"] for row in rows}

    def union_of_known_stores(self, material_code: Optional[str] = None) -> Set[str]:
        """
        Stores carrying quantity.

        Args:
            material_code: Restrict to one material; None for the whole separation
        """
        if material_code is not None:
            return set(self.get_all_cells_for_material(material_code))

        rows = self.conn.execute("""
            SELECT DISTINCT qc.store_code
            FROM quantity_cell qc
            JOIN material_item mi ON mi.id = qc.item_id
            WHERE mi.separation_id = ?
        """, (self.separation_id,)).fetchall()
        return {row["store_code"] for row in rows}

    def upsert_cell(self, material_code: str, store_code: str, quantity: int) -> None:
        """Set a cell; 0 removes it."""
        self.write_cells([(material_code, store_code, quantity)])

    def write_cells(self, cells: List[Tuple[str, str, int]]) -> None:
        """
        Set many cells at once, in batches.

        Args:
            cells: (material_code, store_code, quantity) tuples; quantity 0 deletes
        """
        upserts = []
        deletes = []
        for material_code, store_code, quantity in cells:
            if quantity < 0:
                raise ValueError(f"Quantidade negativa para {material_code}/{store_code}: {quantity}")
            item = self._require(material_code)
            if quantity == 0:
                deletes.append((item.id, str(store_code)))
            else:
                upserts.append((item.id, str(store_code), int(quantity)))

        for chunk in _chunks(deletes, self.batch_size):
            self.conn.executemany(
                "DELETE FROM quantity_cell WHERE item_id = ? AND store_code = ?",
                chunk,
            )
        for chunk in _chunks(upserts, self.batch_size):
            self.conn.executemany("""
                INSERT INTO quantity_cell (item_id, store_code, quantity)
                VALUES (?, ?, ?)
                ON CONFLICT(item_id, store_code) DO UPDATE SET quantity = excluded.quantity
            """, chunk)

    # -------------------------------------------------------------------------
    # Totals and snapshots
    # -------------------------------------------------------------------------

    def count_items(self) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS n FROM material_item WHERE separation_id = ?",
            (self.separation_id,),
        ).fetchone()
        return row["n"]

    def count_stores(self) -> int:
        return len(self.union_of_known_stores())

    def refresh_totals(self) -> Tuple[int, int]:
        """Recompute the cached totals on the separation row."""
        total_items = self.count_items()
        total_stores = self.count_stores()
        self.conn.execute("""
            UPDATE separation
            SET total_items = ?, total_stores = ?, updated_at = ?
            WHERE id = ?
        """, (total_items, total_stores, _now(), self.separation_id))
        return total_items, total_stores

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        """material_code -> {store_code: quantity}; materials without cells map to {}."""
        result: Dict[str, Dict[str, int]] = {code: {} for code in self._load_items()}
        for row in self.matrix_rows():
            result[row["material_code"]][row["store_code"]] = row["quantity"]
        return result

    def matrix_rows(self) -> List[sqlite3.Row]:
        """Every persisted cell joined with its material row."""
        return self.conn.execute("""
            SELECT mi.material_code, mi.description, mi.type_separation,
                   qc.store_code, qc.quantity
            FROM quantity_cell qc
            JOIN material_item mi ON mi.id = qc.item_id
            WHERE mi.separation_id = ?
        """, (self.separation_id,)).fetchall()

    def search_products(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        """
        Find materials by code or description.

        Returns:
            List of dicts with material fields, per-store quantities and total,
            ordered by description
        """
        pattern = f"%{query.strip()}%"
        rows = self.conn.execute("""
            SELECT * FROM material_item
            WHERE separation_id = ?
              AND (material_code LIKE ? OR description LIKE ?)
            ORDER BY description, material_code
            LIMIT ?
        """, (self.separation_id, pattern, pattern, limit)).fetchall()

        results = []
        for row in rows:
            item = self._row_to_item(row)
            stores = self.get_all_cells_for_material(item.material_code)
            results.append({
                **item.to_dict(),
                "stores": dict(sorted(stores.items())),
                "total": sum(stores.values()),
            })
        return results

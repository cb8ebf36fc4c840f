"""Master Data Database Operations.

This module handles the two registries the separation engine consults:
- master_material: material_code → description, default type_separation
- store: prefix → name, UF and seco/frio zone, subzone and order fields

Full master-data maintenance happens elsewhere; these helpers cover lookups
plus the upsert/seed calls used by imports and tests.
"""

import sqlite3
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from config import get_settings
from core.observability.logging import get_logger
from master_data.models import MasterMaterial, Store, TypeSeparation

logger = get_logger(__name__)


def _resolve_path(db_path: Optional[Path]) -> Path:
    return Path(db_path) if db_path else get_settings().db_path


def get_db_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Get database connection with row factory"""
    conn = sqlite3.connect(str(_resolve_path(db_path)))
    conn.row_factory = sqlite3.Row
    return conn


def init_master_data_db(db_path: Optional[Path] = None) -> None:
    """
    Initialize the master data tables.

    Creates:
    - master_material: material registry
    - store: store registry with zone/subzone/order fields
    """
    conn = get_db_connection(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS master_material (
                material_code TEXT PRIMARY KEY,
                description TEXT NOT NULL DEFAULT '',
                type_separation TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS store (
                prefix TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                uf TEXT,
                zona_seco TEXT,
                subzona_seco TEXT,
                zona_frio TEXT,
                ordem_seco INTEGER,
                ordem_frio INTEGER,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.commit()
    finally:
        conn.close()


# =============================================================================
# Master Material Registry
# =============================================================================

def upsert_materials(materials: Iterable[MasterMaterial], db_path: Optional[Path] = None) -> int:
    """
    Add or update registry materials.

    Returns:
        Number of materials written
    """
    rows = [
        (
            m.material_code,
            m.description or "",
            m.type_separation.value if m.type_separation else None,
        )
        for m in materials
    ]
    conn = get_db_connection(db_path)
    try:
        conn.executemany("""
            INSERT INTO master_material (material_code, description, type_separation, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(material_code) DO UPDATE SET
                description = excluded.description,
                type_separation = excluded.type_separation,
                updated_at = CURRENT_TIMESTAMP
        """, rows)
        conn.commit()
    finally:
        conn.close()

    return len(rows)


def get_master_materials(
    codes: Iterable[str],
    db_path: Optional[Path] = None,
) -> Dict[str, MasterMaterial]:
    """Fetch registry entries for the given codes, keyed by material code."""
    code_list = sorted({str(c) for c in codes})
    if not code_list:
        return {}

    result: Dict[str, MasterMaterial] = {}
    conn = get_db_connection(db_path)
    try:
        # Chunked to stay below SQLite's host parameter limit
        for start in range(0, len(code_list), 500):
            chunk = code_list[start:start + 500]
            placeholders = ",".join("?" for _ in chunk)
            rows = conn.execute(
                f"SELECT * FROM master_material WHERE material_code IN ({placeholders})",
                chunk,
            ).fetchall()
            for row in rows:
                material = _row_to_material(row)
                result[material.material_code] = material
    finally:
        conn.close()

    return result


def lookup_type(material_code: str, db_path: Optional[Path] = None) -> Optional[TypeSeparation]:
    """Registry type tag for a material, None when absent or unclassified."""
    material = get_master_materials([material_code], db_path).get(str(material_code))
    return material.type_separation if material else None


def is_registered(material_code: str, db_path: Optional[Path] = None) -> bool:
    return str(material_code) in get_master_materials([material_code], db_path)


def _row_to_material(row: sqlite3.Row) -> MasterMaterial:
    return MasterMaterial(
        material_code=row["material_code"],
        description=row["description"],
        type_separation=row["type_separation"],
    )


# =============================================================================
# Store Registry
# =============================================================================

def upsert_stores(stores: Iterable[Store], db_path: Optional[Path] = None) -> int:
    """Add or update registry stores."""
    rows = [
        (
            s.prefix, s.name or "", s.uf, s.zona_seco, s.subzona_seco,
            s.zona_frio, s.ordem_seco, s.ordem_frio,
        )
        for s in stores
    ]
    conn = get_db_connection(db_path)
    try:
        conn.executemany("""
            INSERT INTO store
            (prefix, name, uf, zona_seco, subzona_seco, zona_frio, ordem_seco, ordem_frio, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(prefix) DO UPDATE SET
                name = excluded.name,
                uf = excluded.uf,
                zona_seco = excluded.zona_seco,
                subzona_seco = excluded.subzona_seco,
                zona_frio = excluded.zona_frio,
                ordem_seco = excluded.ordem_seco,
                ordem_frio = excluded.ordem_frio,
                updated_at = CURRENT_TIMESTAMP
        """, rows)
        conn.commit()
    finally:
        conn.close()

    return len(rows)


def list_stores(db_path: Optional[Path] = None) -> List[Store]:
    """All registry stores ordered by prefix."""
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute("SELECT * FROM store ORDER BY prefix").fetchall()
    finally:
        conn.close()

    return [_row_to_store(row) for row in rows]


def _row_to_store(row: sqlite3.Row) -> Store:
    return Store(
        prefix=row["prefix"],
        name=row["name"],
        uf=row["uf"],
        zona_seco=row["zona_seco"],
        subzona_seco=row["subzona_seco"],
        zona_frio=row["zona_frio"],
        ordem_seco=row["ordem_seco"],
        ordem_frio=row["ordem_frio"],
    )


# =============================================================================
# Registry facades
# =============================================================================

class MaterialRegistry:
    """Master Material Registry backed by the master_material table."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = _resolve_path(db_path)

    def lookup_type(self, material_code: str) -> Optional[TypeSeparation]:
        return lookup_type(material_code, self.db_path)

    def is_registered(self, material_code: str) -> bool:
        return is_registered(material_code, self.db_path)

    def lookup_many(self, codes: Iterable[str]) -> Dict[str, MasterMaterial]:
        return get_master_materials(codes, self.db_path)


class StoreRegistry:
    """Master Store Registry backed by the store table."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = _resolve_path(db_path)

    def list_stores(self) -> List[Store]:
        return list_stores(self.db_path)

"""Load master materials and stores from workbooks.

Materials workbook columns: code, description, type (SECO, FRIO, ...).
Stores workbook columns: prefix, name, uf, zona_seco, subzona_seco,
zona_frio, ordem_seco, ordem_frio. The first row is a header.
"""

import argparse
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from api.services.workbook import read_workbook_grid
from config import get_settings
from master_data import MasterMaterial, Store, init_master_data_db, upsert_materials, upsert_stores
from separation_engine.normalize import clean_code


def _order(value):
    if value is None or str(value).strip() == "":
        return None
    return int(float(value))


def load_materials(path: Path):
    rows = read_workbook_grid(path.read_bytes(), path.name)[1:]
    materials = []
    for row in rows:
        row = list(row) + [None] * 3
        code = clean_code(row[0])
        if not code:
            continue
        materials.append(MasterMaterial(
            material_code=code,
            description=str(row[1] or "").strip(),
            type_separation=row[2],
        ))
    return materials


def load_stores(path: Path):
    rows = read_workbook_grid(path.read_bytes(), path.name)[1:]
    stores = []
    for row in rows:
        row = list(row) + [None] * 8
        prefix = clean_code(row[0])
        if not prefix:
            continue
        stores.append(Store(
            prefix=prefix,
            name=str(row[1] or "").strip(),
            uf=row[2],
            zona_seco=row[3],
            subzona_seco=row[4],
            zona_frio=row[5],
            ordem_seco=_order(row[6]),
            ordem_frio=_order(row[7]),
        ))
    return stores


def main():
    parser = argparse.ArgumentParser(description="Seed master data registries")
    parser.add_argument("--materials", type=Path, help="Materials workbook")
    parser.add_argument("--stores", type=Path, help="Stores workbook")
    args = parser.parse_args()

    db_path = get_settings().db_path
    init_master_data_db(db_path)

    if args.materials:
        count = upsert_materials(load_materials(args.materials), db_path)
        print(f"Materials written: {count}")
    if args.stores:
        count = upsert_stores(load_stores(args.stores), db_path)
        print(f"Stores written: {count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

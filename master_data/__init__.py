"""
Master Data Package

Read side of the master registries the separation engine depends on.

Usage:
    from master_data import MaterialRegistry, StoreRegistry

    registry = MaterialRegistry(db_path)
    registry.lookup_type("100195")   # -> TypeSeparation.FRIO or None

    stores = StoreRegistry(db_path).list_stores()
"""

from .models import (
    TypeSeparation,
    Circuit,
    MasterMaterial,
    Store,
)

from .db import (
    init_master_data_db,
    upsert_materials,
    get_master_materials,
    lookup_type,
    is_registered,
    upsert_stores,
    list_stores,
    MaterialRegistry,
    StoreRegistry,
)

__all__ = [
    "TypeSeparation",
    "Circuit",
    "MasterMaterial",
    "Store",
    "init_master_data_db",
    "upsert_materials",
    "get_master_materials",
    "lookup_type",
    "is_registered",
    "upsert_stores",
    "list_stores",
    "MaterialRegistry",
    "StoreRegistry",
]

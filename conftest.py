"""Shared pytest fixtures: a fresh SQLite database per test and services bound to it."""

import pytest

from config import Settings
from core.audit import AuditLogger, InMemoryAuditBackend
from master_data import MasterMaterial, Store, upsert_materials, upsert_stores
from reports.db import init_reports_db
from reports.service import ReportService
from separation_engine.db import MatrixStore, get_active_separation, init_db, read_connection
from separation_engine.service import SeparationService

OWNER = "user-1"
STORES = ["101", "102", "103"]


def build_sheet(rows, stores=None, codes=("1001", "1002"), descriptions=("ARROZ 5KG", "FEIJAO 1KG")):
    """Separation sheet grid: header row then one row per material."""
    stores = STORES if stores is None else stores
    grid = [["Código", "Descrição", *stores]]
    for code, description, values in zip(codes, descriptions, rows):
        grid.append([code, description, *values])
    return grid


def active_matrix(db_path, owner_id=OWNER):
    """Committed matrix of the owner's active separation."""
    with read_connection(db_path) as conn:
        separation = get_active_separation(conn, owner_id)
        return MatrixStore(conn, separation.id).snapshot()


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "separation.db"
    init_db(path)
    init_reports_db(path)
    return path


@pytest.fixture
def settings(db_path, tmp_path):
    return Settings(
        db_path=db_path,
        audit_dir=tmp_path / "audit",
        require_registered_materials=False,
    )


@pytest.fixture
def audit_backend():
    return InMemoryAuditBackend()


@pytest.fixture
def audit(audit_backend):
    logger = AuditLogger()
    logger.add_backend(audit_backend)
    return logger


@pytest.fixture
def service(db_path, settings, audit):
    return SeparationService(db_path, audit=audit, settings=settings)


@pytest.fixture
def report_service(db_path, settings, audit):
    return ReportService(db_path, audit=audit, settings=settings)


@pytest.fixture
def seeded_stores(db_path):
    stores = [
        Store(prefix="101", name="Loja Centro", uf="SP", zona_seco="NORTE", subzona_seco="A",
              zona_frio="F1", ordem_seco=2, ordem_frio=1),
        Store(prefix="102", name="Loja Bairro", uf="SP", zona_seco="NORTE", subzona_seco="B",
              zona_frio="F1", ordem_seco=1, ordem_frio=2),
        Store(prefix="103", name="Loja Litoral", uf="SP", zona_seco="SUL", subzona_seco="",
              zona_frio=None, ordem_seco=5, ordem_frio=None),
    ]
    upsert_stores(stores, db_path)
    return stores


@pytest.fixture
def seeded_materials(db_path):
    materials = [
        MasterMaterial(material_code="1001", description="ARROZ 5KG", type_separation="SECO"),
        MasterMaterial(material_code="1002", description="FEIJAO 1KG", type_separation="FRIO"),
        MasterMaterial(material_code="100195", description="MELANCIA KG", type_separation="SECO"),
    ]
    upsert_materials(materials, db_path)
    return materials

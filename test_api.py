"""
API Tests

Drives the FastAPI app with real workbook uploads against a temporary
database. Services are bound to the test database through dependency
overrides.
"""

from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

import config
from api.server import app
from api.services.dependencies import get_report_service, get_separation_service
from conftest import OWNER, build_sheet

HEADERS = {"X-User-Id": OWNER}


def workbook_bytes(grid):
    workbook = Workbook()
    sheet = workbook.active
    for row in grid:
        sheet.append(list(row))
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def upload(grid, name="planilha.xlsx"):
    return {"file": (name, workbook_bytes(grid), "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")}


@pytest.fixture
def client(service, report_service, settings, monkeypatch):
    monkeypatch.setattr(config, "_settings", settings)
    app.dependency_overrides[get_separation_service] = lambda: service
    app.dependency_overrides[get_report_service] = lambda: report_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def created(client):
    response = client.post(
        "/separations",
        data={"type": "SP", "date": "2024-05-01"},
        files=upload(build_sheet([[5, 0, 3], [0, 2, 0]]), "separacao.xlsx"),
        headers=HEADERS,
    )
    assert response.status_code == 201
    return response.json()


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"]["storage"] == "up"

    def test_metrics(self, client):
        response = client.get("/health/metrics")
        assert response.status_code == 200
        assert "operations" in response.json()


class TestSeparationRoutes:

    def test_create_and_read_active(self, client, created):
        assert created["new_items"] == 2
        assert created["mode"] == "create"

        response = client.get("/separations/active", headers=HEADERS)
        assert response.status_code == 200
        data = response.json()
        assert data["type"] == "SP"
        assert data["file_name"] == "separacao.xlsx"
        assert data["total_stores"] == 3

    def test_owner_header_required(self, client):
        response = client.get("/separations/active")
        assert response.status_code == 401

    def test_no_active_separation(self, client):
        response = client.get("/separations/active", headers=HEADERS)
        assert response.status_code == 404
        assert response.json()["kind"] == "NoActiveSeparation"

    def test_duplicate_create_conflict(self, client, created):
        response = client.post(
            "/separations",
            data={"type": "RJ", "date": "2024-05-02"},
            files=upload(build_sheet([[1, 1, 1]])),
            headers=HEADERS,
        )
        assert response.status_code == 409
        assert response.json()["kind"] == "ActiveSeparationExists"

    def test_unsupported_extension(self, client):
        response = client.post(
            "/separations",
            data={"type": "SP", "date": "2024-05-01"},
            files={"file": ("planilha.csv", b"a,b,c", "text/csv")},
            headers=HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["kind"] == "InputMalformed"

    def test_reinforcement_upload(self, client, created):
        response = client.post(
            "/separations/reinforcement",
            files=upload(build_sheet([[0, 4, 3], [1, 0, 0]]), "reforco.xlsx"),
            headers=HEADERS,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["redistributed_cells"] == 2
        assert data["reinforcement_print_id"] is not None

        last = client.get("/separations/last-reinforcement", headers=HEADERS)
        assert last.status_code == 200
        assert last.json()["file_name"] == "reforco.xlsx"

    def test_last_reinforcement_missing(self, client, created):
        response = client.get("/separations/last-reinforcement", headers=HEADERS)
        assert response.status_code == 404

    def test_redistribution_upload(self, client, created):
        response = client.post(
            "/separations/redistribution",
            files=upload(build_sheet([[5, 0, 3], [0, 0, 0]])),
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["redistributed_material_codes"] == ["1002"]

    def test_melancia_upload_material_not_found(self, client, created):
        grid = [["Loja", "Nome", "Quantidade"], ["101", "Centro", 4]]
        response = client.post("/separations/melancia", files=upload(grid), headers=HEADERS)
        assert response.status_code == 404
        assert response.json()["kind"] == "MaterialNotFound"


class TestCutRoutes:

    def test_preview_then_cut(self, client, created):
        body = {"material_code": "1001", "mode": "partial", "quantities": {"101": 2}}

        preview = client.post("/separations/cut/preview", json=body, headers=HEADERS)
        assert preview.status_code == 200
        assert preview.json()["preview"] is True
        assert preview.json()["total_cut"] == 2

        applied = client.post("/separations/cut", json=body, headers=HEADERS)
        assert applied.status_code == 200
        assert applied.json()["operations"][0]["after"] == 3

    def test_excessive_cut(self, client, created):
        body = {"material_code": "1001", "mode": "partial", "quantities": {"103": 9}}
        response = client.post("/separations/cut", json=body, headers=HEADERS)

        assert response.status_code == 422
        assert response.json()["details"]["available"] == 3

    def test_unknown_mode_rejected(self, client, created):
        body = {"material_code": "1001", "mode": "everything"}
        response = client.post("/separations/cut", json=body, headers=HEADERS)
        assert response.status_code == 422


class TestEditAndLifecycleRoutes:

    def test_update_quantity(self, client, created):
        body = {"material_code": "1002", "store_code": "101", "quantity": 6}
        response = client.put("/separations/quantity", json=body, headers=HEADERS)

        assert response.status_code == 200
        assert (response.json()["old"], response.json()["new"]) == (0, 6)

    def test_negative_quantity_rejected(self, client, created):
        body = {"material_code": "1002", "store_code": "101", "quantity": -1}
        response = client.put("/separations/quantity", json=body, headers=HEADERS)
        assert response.status_code == 422

    def test_update_item_type(self, client, created):
        body = {"material_code": "1002", "type_separation": "FRIO"}
        response = client.put("/separations/item-type", json=body, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["type_separation"] == "FRIO"

    def test_search_products(self, client, created):
        response = client.get("/separations/products", params={"q": "feijao"}, headers=HEADERS)

        assert response.status_code == 200
        assert [p["material_code"] for p in response.json()] == ["1002"]

    def test_finalize(self, client, created):
        response = client.post("/separations/finalize", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        assert client.get("/separations/active", headers=HEADERS).status_code == 404

    def test_delete(self, client, created):
        separation_id = created["separation_id"]

        response = client.delete(f"/separations/{separation_id}", headers={"X-User-Id": "user-2"})
        assert response.status_code == 404

        response = client.delete(f"/separations/{separation_id}", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["separation_id"] == separation_id
        assert response.json()["warnings"] == []


class TestReportRoutes:

    def test_views(self, client, created, seeded_stores):
        pre = client.get("/reports/pre-separation", headers=HEADERS)
        assert pre.status_code == 200
        assert pre.json()["grand_total"] == 10

        view = client.get("/reports/separation", params={"circuit": "frio"}, headers=HEADERS)
        assert view.status_code == 200
        assert [c["key"] for c in view.json()["columns"]] == ["101", "102"]

    def test_bad_type_filter(self, client, created):
        response = client.get("/reports/pre-separation", params={"types": "CONGELADO"}, headers=HEADERS)
        assert response.status_code == 400

    def test_stock_comparison(self, client, created):
        saved = client.post(
            "/reports/stock-references",
            json={"items": [{"material_code": "1001", "description": "ARROZ", "reference_quantity": 10}]},
            headers=HEADERS,
        )
        assert saved.json() == {"saved": 1}

        counts = client.post(
            "/reports/stock-counts",
            json={"items": [{"material_code": "1001", "current_quantity": 10, "quantity_kg": 50}]},
            headers=HEADERS,
        )
        assert counts.status_code == 200
        assert counts.json()["saved"] == 1

        response = client.get("/reports/stock-comparison", headers=HEADERS)
        assert response.json() == [{
            "material_code": "1001",
            "description": "ARROZ",
            "reference_quantity": 10,
            "current_quantity": 10,
            "quantity_kg": 50,
            "delta": 0,
            "status": "Divergente",
        }]

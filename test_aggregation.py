"""
Aggregation View Tests

Pre-separation (materials x zones) and separation (materials x stores,
grouped by zone/subzone) projections.
"""

import pytest

from conftest import OWNER, build_sheet
from master_data.models import Circuit, TypeSeparation
from reports.aggregation import MatrixCell, build_pre_separation_view, build_separation_view
from separation_engine.errors import NoActiveSeparation
from separation_engine.models import SeparationType


def cell(code, description, type_tag, store, quantity):
    return MatrixCell(
        material_code=code,
        description=description,
        type_separation=type_tag,
        store_code=store,
        quantity=quantity,
    )


@pytest.fixture
def cells():
    return [
        cell("1001", "ARROZ 5KG", "SECO", "101", 5),
        cell("1001", "ARROZ 5KG", "SECO", "103", 3),
        cell("1002", "FEIJAO 1KG", "FRIO", "102", 2),
        cell("1002", "FEIJAO 1KG", "FRIO", "103", 4),
        cell("1003", "ACUCAR 1KG", "SECO", "999", 7),
    ]


class TestPreSeparationView:

    def test_zone_totals(self, cells, seeded_stores):
        view = build_pre_separation_view(cells, seeded_stores)

        assert [c.key for c in view.columns] == ["F1", "NORTE", "SUL"]
        assert [r.material_code for r in view.rows] == ["1001", "1002"]
        assert view.rows[0].values == {"NORTE": 5, "SUL": 3}
        # 103 has no frio zone
        assert view.rows[1].values == {"F1": 2}
        assert {c.key: c.total for c in view.columns} == {"F1": 2, "NORTE": 5, "SUL": 3}
        assert view.grand_total == 10

    def test_column_totals_match_rows(self, cells, seeded_stores):
        view = build_pre_separation_view(cells, seeded_stores)

        assert sum(c.total for c in view.columns) == sum(r.total for r in view.rows)
        assert all(c.total > 0 for c in view.columns)
        assert all(r.total > 0 for r in view.rows)

    def test_type_filter(self, cells, seeded_stores):
        view = build_pre_separation_view(cells, seeded_stores, {TypeSeparation.FRIO})

        assert [r.material_code for r in view.rows] == ["1002"]
        assert [c.key for c in view.columns] == ["F1"]


class TestSeparationView:

    def test_seco_grouping(self, cells, seeded_stores):
        view = build_separation_view(cells, seeded_stores, Circuit.SECO)

        assert [c.key for c in view.columns] == ["102", "101", "103"]
        assert [(g.key, g.columns, g.total) for g in view.groups] == [
            ("NORTE/B", ["102"], 2),
            ("NORTE/A", ["101"], 5),
            ("SUL", ["103"], 7),
        ]
        assert view.columns[1].label == "Loja Centro"
        assert view.rows[1].group_totals == {"NORTE/B": 2, "SUL": 4}
        assert view.circuit == "seco"

    def test_frio_circuit_hides_stores_without_zone(self, cells, seeded_stores):
        view = build_separation_view(cells, seeded_stores, Circuit.FRIO)

        assert [c.key for c in view.columns] == ["101", "102"]
        assert [(g.key, g.columns) for g in view.groups] == [("F1", ["101", "102"])]
        assert view.grand_total == 7

    def test_zero_rows_and_columns_dropped(self, seeded_stores):
        view = build_separation_view(
            [cell("1001", "ARROZ", "SECO", "101", 0), cell("1002", "FEIJAO", "SECO", "102", 1)],
            seeded_stores,
        )

        assert [r.material_code for r in view.rows] == ["1002"]
        assert [c.key for c in view.columns] == ["102"]

    def test_rows_sorted_by_description(self, seeded_stores):
        view = build_separation_view(
            [cell("2", "banana", "SECO", "101", 1), cell("1", "Abacaxi", "SECO", "101", 1)],
            seeded_stores,
        )
        assert [r.material_code for r in view.rows] == ["1", "2"]


class TestReportServiceViews:

    def test_views_over_active_separation(self, service, report_service, seeded_stores):
        service.create_separation(OWNER, SeparationType.SP, "2024-05-01", build_sheet([[5, 0, 3], [0, 2, 0]]))

        pre = report_service.pre_separation_view(OWNER)
        assert pre.grand_total == 10

        view = report_service.separation_view(OWNER, Circuit.SECO)
        assert [c.key for c in view.columns] == ["102", "101", "103"]
        assert view.to_dict()["grand_total"] == 10

    def test_requires_active_separation(self, report_service):
        with pytest.raises(NoActiveSeparation):
            report_service.pre_separation_view(OWNER)

"""
Reconciliation Engine Tests

Create / reinforcement / redistribution / melancia merges against a real
SQLite matrix, plus the transactional and audit guarantees around them.
"""

import sqlite3
from dataclasses import replace
from unittest.mock import patch

import pytest

from conftest import OWNER, active_matrix, build_sheet
from core.audit import AuditEventType, AuditLogger, InMemoryAuditBackend
from master_data.db import MaterialRegistry
from master_data.models import TypeSeparation
from separation_engine.db import MatrixStore, read_connection, transaction
from separation_engine.engine import merge_cell, resolve_store_set
from separation_engine.errors import (
    ActiveSeparationExists,
    InputMalformed,
    MaterialNotAllowed,
    MaterialNotFound,
    NoActiveSeparation,
    NoValidRows,
    SeparationNotFound,
    StorageFailure,
)
from separation_engine.models import CellChangeKind, Mode, ProblemKind, SeparationStatus, SeparationType
from separation_engine.service import SeparationService


def melancia_grid(*rows):
    return [["Loja", "Nome", "Quantidade"], *[[store, "", qty] for store, qty in rows]]


@pytest.fixture
def created(service):
    """Separation created from [[5,0,3],[0,2,0]]."""
    return service.create_separation(
        OWNER, SeparationType.SP, "2024-05-01", build_sheet([[5, 0, 3], [0, 2, 0]]), "separacao.xlsx",
    )


# =============================================================================
# Merge rules
# =============================================================================

class TestMergeRules:
    """Cell-level merge table."""

    def test_reinforcement_table(self):
        assert merge_cell(Mode.REINFORCEMENT, 0, 0).kind is None
        assert merge_cell(Mode.REINFORCEMENT, 0, 4).value == 4
        assert merge_cell(Mode.REINFORCEMENT, 0, 4).kind == CellChangeKind.ADDED
        assert merge_cell(Mode.REINFORCEMENT, 3, 3).value == 6
        assert merge_cell(Mode.REINFORCEMENT, 3, 3).kind == CellChangeKind.INCREASED

        zeroed = merge_cell(Mode.REINFORCEMENT, 5, 0)
        assert zeroed.value == 0
        assert zeroed.redistributed

    def test_redistribution_marks_only_changes(self):
        assert not merge_cell(Mode.REDISTRIBUTION, 4, 4).redistributed
        assert merge_cell(Mode.REDISTRIBUTION, 4, 1).redistributed
        assert merge_cell(Mode.REDISTRIBUTION, 0, 1).redistributed
        assert merge_cell(Mode.REDISTRIBUTION, 4, 0).value == 0

    def test_store_set_resolution(self):
        stores, rejected = resolve_store_set(Mode.REINFORCEMENT, ["101"], {"103", "102"})
        assert stores == ["101", "102", "103"]
        assert rejected == []

        stores, rejected = resolve_store_set(Mode.MELANCIA_OVERRIDE, ["101", "999"], {"101"})
        assert stores == ["101"]
        assert rejected == ["999"]

        assert resolve_store_set(Mode.CREATE, ["101"], {"102"}) == (["101"], [])


# =============================================================================
# Create
# =============================================================================

class TestCreate:

    def test_only_positive_cells_persisted(self, service, created, db_path):
        """Zero cells of the initial sheet are never stored."""
        assert active_matrix(db_path) == {
            "1001": {"101": 5, "103": 3},
            "1002": {"102": 2},
        }
        assert created.new_items == 2
        assert created.new_material_codes == ["1001", "1002"]
        assert created.total_items == 2
        assert created.total_stores == 3

        separation = service.get_active(OWNER)
        assert separation.total_items == 2
        assert separation.file_name == "separacao.xlsx"
        assert separation.type == SeparationType.SP

    def test_one_active_separation_per_owner(self, service, created):
        with pytest.raises(ActiveSeparationExists) as exc_info:
            service.create_separation(OWNER, SeparationType.RJ, "2024-05-02", build_sheet([[1, 1, 1]]))
        assert exc_info.value.status_code == 409

    def test_other_owner_unaffected(self, service, created):
        report = service.create_separation("user-2", SeparationType.ES, "2024-05-01", build_sheet([[1, 0, 0]]))
        assert report.separation_id != created.separation_id

    def test_material_without_quantity_skipped(self, service, db_path):
        report = service.create_separation(
            OWNER, SeparationType.SP, "2024-05-01", build_sheet([[5, 0, 0], [0, 0, 0]]),
        )
        assert report.skipped_material_codes == ["1002"]
        assert active_matrix(db_path) == {"1001": {"101": 5}}

    def test_nothing_to_create_leaves_no_separation(self, service):
        with pytest.raises(NoValidRows):
            service.create_separation(OWNER, SeparationType.SP, "2024-05-01", build_sheet([[0, 0, 0], [0, 0, 0]]))
        assert service.find_active(OWNER) is None

    def test_row_problems_capped(self, db_path, settings, audit):
        capped = SeparationService(db_path, audit=audit, settings=replace(settings, max_reported_problems=2))
        grid = [["c", "d", "101"], ["1001", "ARROZ", 1]]
        grid += [[f"20{i}", None, 1] for i in range(4)]

        report = capped.create_separation(OWNER, SeparationType.SP, "2024-05-01", grid)

        assert report.total_problems == 4
        assert len(report.problems) == 2
        assert report.skipped_items == 4
        assert report.processed_items == 1

    def test_oversized_quantity_skips_row(self, service, db_path):
        report = service.create_separation(
            OWNER, SeparationType.SP, "2024-05-01", build_sheet([[1e20, 1, 0], [0, 2, 0]]),
        )

        assert report.problems[0].kind == ProblemKind.INPUT_MALFORMED
        assert report.problems[0].material_code == "1001"
        assert report.problems[0].row_number == 2
        assert report.skipped_items == 1
        assert report.processed_material_codes == ["1002"]
        assert active_matrix(db_path) == {"1002": {"102": 2}}

    def test_only_oversized_rows_is_rejected(self, service):
        with pytest.raises(NoValidRows):
            service.create_separation(OWNER, SeparationType.SP, "2024-05-01", build_sheet([[1e20, 1, 0]]))
        assert service.find_active(OWNER) is None


# =============================================================================
# Reinforcement
# =============================================================================

class TestReinforcement:

    def test_additive_merge_with_zeroing(self, service, created, db_path):
        """[[5,0,3],[0,2,0]] reinforced with [[0,4,3],[1,0,0]]."""
        report = service.apply_reinforcement(OWNER, build_sheet([[0, 4, 3], [1, 0, 0]]), "reforco.xlsx")

        assert active_matrix(db_path) == {
            "1001": {"102": 4, "103": 6},
            "1002": {"101": 1},
        }
        changes = {(c.material_code, c.store_code): c for c in report.cell_changes}
        assert changes[("1001", "102")].kind == CellChangeKind.ADDED
        assert changes[("1001", "103")].kind == CellChangeKind.INCREASED
        assert changes[("1001", "101")].redistributed
        assert changes[("1002", "102")].redistributed
        assert ("1002", "103") not in changes

        assert report.redistributed_cells == 2
        assert report.redistributed_material_codes == ["1001", "1002"]
        assert report.updated_items == 2
        assert report.new_items == 0

    def test_zero_cells_and_unlisted_materials_untouched(self, service, created, db_path):
        """A material with no cells and an all-zero row changes nothing."""
        before = active_matrix(db_path)
        grid = build_sheet([[0, 0, 0]], codes=("1003",), descriptions=("OLEO 900ML",))

        report = service.apply_reinforcement(OWNER, grid)

        after = active_matrix(db_path)
        assert after.pop("1003") == {}
        assert after == before
        assert report.unchanged
        assert report.redistributed_items == 0
        assert report.new_material_codes == ["1003"]

    def test_omitted_store_is_zeroed(self, service, created, db_path):
        """Stores holding quantity but missing from the sheet are still evaluated."""
        grid = build_sheet([[2]], stores=["101"], codes=("1001",), descriptions=("ARROZ 5KG",))

        report = service.apply_reinforcement(OWNER, grid)

        assert active_matrix(db_path)["1001"] == {"101": 7}
        assert report.redistributed_material_codes == ["1001"]
        assert [c.store_code for c in report.cell_changes if c.redistributed] == ["103"]

    def test_new_material_tagged_reinforcement(self, service, created):
        grid = build_sheet([[1, 0, 0]], codes=("1003",), descriptions=("OLEO 900ML",))
        service.apply_reinforcement(OWNER, grid)

        with read_connection(service.db_path) as conn:
            item = MatrixStore(conn, created.separation_id).find_material("1003")
        assert item.type_separation == TypeSeparation.REFORCO

    def test_sheet_kept_for_printing(self, service, created):
        report = service.apply_reinforcement(OWNER, build_sheet([[1, 1, 1], [0, 0, 0]]), "reforco.xlsx")

        last = service.last_reinforcement(OWNER)
        assert last["id"] == report.reinforcement_print_id
        assert last["file_name"] == "reforco.xlsx"
        assert [m["code"] for m in last["data"]["materials"]] == ["1001", "1002"]

    def test_oversized_row_keeps_allocation(self, service, created, db_path):
        """An out-of-range cell drops its row instead of zeroing it."""
        grid = build_sheet([["1.000.000.000.000.000.000", 1, 0], [0, 2, 0]])

        report = service.apply_reinforcement(OWNER, grid)

        assert active_matrix(db_path) == {
            "1001": {"101": 5, "103": 3},
            "1002": {"102": 4},
        }
        assert report.skipped_items == 1
        assert report.redistributed_cells == 0

    def test_requires_active_separation(self, service):
        with pytest.raises(NoActiveSeparation):
            service.apply_reinforcement(OWNER, build_sheet([[1, 1, 1]]))


# =============================================================================
# Redistribution
# =============================================================================

class TestRedistribution:

    def test_all_zero_sheet_clears_matrix(self, service, created, db_path):
        report = service.apply_redistribution(OWNER, build_sheet([[0, 0, 0], [0, 0, 0]]))

        assert active_matrix(db_path) == {"1001": {}, "1002": {}}
        assert report.redistributed_cells == 3
        assert sorted(report.redistributed_material_codes) == ["1001", "1002"]
        assert all(c.redistributed and c.new == 0 for c in report.cell_changes)

    def test_result_equals_sheet(self, service, created, db_path):
        report = service.apply_redistribution(OWNER, build_sheet([[5, 1, 1], [0, 9, 0]]))

        assert active_matrix(db_path) == {
            "1001": {"101": 5, "102": 1, "103": 1},
            "1002": {"102": 9},
        }
        changed = sorted((c.material_code, c.store_code) for c in report.cell_changes)
        assert changed == [("1001", "102"), ("1001", "103"), ("1002", "102")]
        assert report.redistributed_cells == 3

    def test_omitted_store_overwritten(self, service, created, db_path):
        grid = build_sheet([[8]], stores=["101"], codes=("1001",), descriptions=("ARROZ 5KG",))
        service.apply_redistribution(OWNER, grid)

        assert active_matrix(db_path)["1001"] == {"101": 8}


# =============================================================================
# Melancia override
# =============================================================================

class TestMelancia:

    @pytest.fixture
    def with_melancia(self, service):
        grid = build_sheet([[10, 5, 0]], codes=("100195",), descriptions=("MELANCIA KG",))
        return service.create_separation(OWNER, SeparationType.SP, "2024-05-01", grid)

    def test_known_stores_only(self, service, with_melancia, db_path):
        report = service.apply_melancia(OWNER, melancia_grid(("101", 20), ("103", 7), ("999", 1)))

        assert active_matrix(db_path)["100195"] == {"101": 20, "102": 5}
        assert report.not_found_stores == ["103", "999"]
        assert {p.kind for p in report.problems} == {ProblemKind.STORE_UNKNOWN_FOR_OVERRIDE}
        assert report.processed_stores == 3
        assert report.updated_stores == 1
        assert report.total_quantity == 20

    def test_later_rows_win(self, service, with_melancia, db_path):
        service.apply_melancia(OWNER, melancia_grid(("101", 20), ("101", 2)))
        assert active_matrix(db_path)["100195"]["101"] == 2

    def test_zero_removes_cell(self, service, with_melancia, db_path):
        service.apply_melancia(OWNER, melancia_grid(("102", 0)))
        assert active_matrix(db_path)["100195"] == {"101": 10}

    def test_skipped_rows_counted(self, service, with_melancia, db_path):
        grid = melancia_grid(("101", 20), ("", 3), ("102", "abc"))

        report = service.apply_melancia(OWNER, grid)

        assert report.skipped_items == 2
        assert report.total_problems == 2
        assert active_matrix(db_path)["100195"] == {"101": 20, "102": 5}

    def test_material_outside_allow_list(self, service, with_melancia):
        with pytest.raises(MaterialNotAllowed):
            service.apply_melancia(OWNER, melancia_grid(("101", 1)), material_code="1001")

    def test_material_missing_from_separation(self, service, created):
        with pytest.raises(MaterialNotFound):
            service.apply_melancia(OWNER, melancia_grid(("101", 1)))


# =============================================================================
# Master registry
# =============================================================================

class TestRegistry:

    def test_unregistered_material_skipped(self, db_path, settings, audit, seeded_materials):
        strict = SeparationService(
            db_path,
            audit=audit,
            settings=replace(settings, require_registered_materials=True),
            registry=MaterialRegistry(db_path),
        )
        grid = build_sheet([[1, 0, 0], [2, 0, 0]], codes=("1002", "7777"), descriptions=("FEIJAO", "XPTO"))

        report = strict.create_separation(OWNER, SeparationType.SP, "2024-05-01", grid)

        assert report.processed_material_codes == ["1002"]
        assert report.skipped_material_codes == ["7777"]
        assert report.problems[0].kind == ProblemKind.MATERIAL_NOT_IN_REGISTRY
        assert active_matrix(db_path) == {"1002": {"101": 1}}

        with read_connection(db_path) as conn:
            item = MatrixStore(conn, report.separation_id).find_material("1002")
        assert item.type_separation == TypeSeparation.FRIO


# =============================================================================
# Transactions
# =============================================================================

class TestAtomicity:

    def test_write_failure_rolls_back_reinforcement(self, service, created, db_path):
        before = active_matrix(db_path)

        with patch.object(MatrixStore, "write_cells", side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(StorageFailure):
                service.apply_reinforcement(OWNER, build_sheet([[1, 1, 1], [1, 1, 1]]))

        assert active_matrix(db_path) == before

    def test_write_failure_rolls_back_create(self, service):
        with patch.object(MatrixStore, "write_cells", side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(StorageFailure):
                service.create_separation(OWNER, SeparationType.SP, "2024-05-01", build_sheet([[1, 0, 0]]))

        assert service.find_active(OWNER) is None

    def test_integer_overflow_is_storage_failure(self, service, created, db_path):
        """A sum beyond SQLite INTEGER fails the whole reinforcement."""
        with transaction(db_path) as conn:
            conn.execute("UPDATE quantity_cell SET quantity = ? WHERE store_code = '101'", (2 ** 63 - 1,))
        before = active_matrix(db_path)

        with pytest.raises(StorageFailure) as exc_info:
            service.apply_reinforcement(OWNER, build_sheet([[1, 0, 3], [0, 2, 0]]))

        assert exc_info.value.kind == "StorageFailure"
        assert active_matrix(db_path) == before

    def test_second_active_row_rejected_by_index(self, created, db_path):
        with pytest.raises(StorageFailure):
            with transaction(db_path) as conn:
                conn.execute("""
                    INSERT INTO separation (owner_id, type, date, status, created_at, updated_at)
                    VALUES (?, 'SP', '2024-05-02', 'active', '', '')
                """, (OWNER,))

    def test_index_conflict_is_active_separation_exists(self, service, created):
        with patch("separation_engine.db.get_active_separation", return_value=None):
            with pytest.raises(ActiveSeparationExists):
                service.create_separation(OWNER, SeparationType.RJ, "2024-05-02", build_sheet([[1, 0, 0]]))

        assert service.get_active(OWNER).id == created.separation_id


# =============================================================================
# Batched writes
# =============================================================================

BATCH_CODES = ("1001", "1002", "1003", "1004")
BATCH_DESCRIPTIONS = ("ARROZ 5KG", "FEIJAO 1KG", "OLEO 900ML", "SAL 1KG")


def batch_sheet(rows):
    return build_sheet(rows, codes=BATCH_CODES, descriptions=BATCH_DESCRIPTIONS)


def comparable(report):
    data = report.to_dict()
    data.pop("separation_id")
    data.pop("reinforcement_print_id")
    return data


class TestBatching:
    """Batch boundaries never show in reports or in the matrix."""

    def test_small_batches_match_single_batch(self, db_path, settings, audit):
        single = SeparationService(db_path, audit=audit, settings=replace(settings, batch_size=1000))
        batched = SeparationService(db_path, audit=audit, settings=replace(settings, batch_size=2))
        initial = batch_sheet([[1, 2, 3], [0, 4, 0], [5, 0, 6], [7, 8, 0]])
        reinforcement = batch_sheet([[0, 1, 1], [2, 0, 0], [1, 1, 1], [0, 0, 0]])

        results = {}
        for owner, service in (("single", single), ("batched", batched)):
            created = service.create_separation(owner, SeparationType.SP, "2024-05-01", initial)
            reinforced = service.apply_reinforcement(owner, reinforcement)
            results[owner] = (comparable(created), comparable(reinforced), active_matrix(db_path, owner))

        assert results["batched"] == results["single"]
        assert results["batched"][2] == {
            "1001": {"102": 3, "103": 4},
            "1002": {"101": 2},
            "1003": {"101": 6, "102": 1, "103": 7},
            "1004": {},
        }


# =============================================================================
# Audit
# =============================================================================

class TestAuditing:

    def test_operation_recorded(self, service, created, audit_backend):
        service.apply_reinforcement(OWNER, build_sheet([[1, 0, 0], [0, 0, 0]]), "reforco.xlsx")

        events = audit_backend.query(event_type=AuditEventType.REINFORCEMENT_APPLIED.value)
        assert len(events) == 1
        assert events[0].actor == OWNER
        assert events[0].action == "Reforço carregado"
        assert events[0].separation_id == str(created.separation_id)
        assert events[0].details["file_name"] == "reforco.xlsx"

    def test_audit_failure_becomes_warning(self, db_path, settings, created):
        class BrokenBackend(InMemoryAuditBackend):
            def log(self, event):
                raise IOError("audit store offline")

        audit = AuditLogger()
        audit.add_backend(BrokenBackend())
        broken = SeparationService(db_path, audit=audit, settings=settings)

        report = broken.apply_reinforcement(OWNER, build_sheet([[1, 0, 0], [0, 0, 0]]))

        assert len(report.warnings) == 1
        assert "audit store offline" in report.warnings[0]
        assert active_matrix(db_path)["1001"]["101"] == 6

    def test_edit_and_lifecycle_warnings(self, db_path, settings, created):
        class BrokenBackend(InMemoryAuditBackend):
            def log(self, event):
                raise IOError("audit store offline")

        audit = AuditLogger()
        audit.add_backend(BrokenBackend())
        broken = SeparationService(db_path, audit=audit, settings=settings)

        item = broken.update_item_type(OWNER, "1002", "FRIO")
        assert item.type_separation == TypeSeparation.FRIO
        assert len(item.warnings) == 1

        finalized = broken.finalize_separation(OWNER)
        assert finalized.status == SeparationStatus.COMPLETED
        assert "audit store offline" in finalized.to_dict()["warnings"][0]

        warnings = broken.delete_separation(OWNER, created.separation_id)
        assert len(warnings) == 1


# =============================================================================
# Manual edits and lifecycle
# =============================================================================

class TestManualEdits:

    def test_update_quantity(self, service, created, db_path):
        result = service.update_quantity(OWNER, "1001", "102", "7")
        assert (result["old"], result["new"]) == (0, 7)

        result = service.update_quantity(OWNER, "1001", "101", 0)
        assert result["old"] == 5
        assert active_matrix(db_path)["1001"] == {"102": 7, "103": 3}

    def test_update_quantity_above_limit(self, service, created, db_path):
        with pytest.raises(InputMalformed):
            service.update_quantity(OWNER, "1001", "101", 1e20)
        assert active_matrix(db_path)["1001"] == {"101": 5, "103": 3}

    def test_update_item_type(self, service, created):
        item = service.update_item_type(OWNER, "1002", "organico")
        assert item.type_separation == TypeSeparation.ORGANICO

        with pytest.raises(InputMalformed):
            service.update_item_type(OWNER, "1002", "CONGELADO")
        with pytest.raises(MaterialNotFound):
            service.update_item_type(OWNER, "9999", "SECO")

    def test_search_products(self, service, created):
        results = service.search_products(OWNER, "arroz")
        assert [r["material_code"] for r in results] == ["1001"]
        assert results[0]["stores"] == {"101": 5, "103": 3}
        assert results[0]["total"] == 8
        assert service.search_products(OWNER, "  ") == []


class TestLifecycle:

    def test_finalize_frees_owner(self, service, created):
        finalized = service.finalize_separation(OWNER)
        assert finalized.status == SeparationStatus.COMPLETED

        with pytest.raises(NoActiveSeparation):
            service.get_active(OWNER)

        report = service.create_separation(OWNER, SeparationType.SP, "2024-05-02", build_sheet([[1, 0, 0]]))
        assert report.separation_id != created.separation_id

    def test_cancel(self, service, created):
        assert service.cancel_separation(OWNER).status == SeparationStatus.CANCELLED
        assert service.find_active(OWNER) is None

    def test_delete_cascades(self, service, created, db_path):
        service.delete_separation(OWNER, created.separation_id)

        assert service.find_active(OWNER) is None
        with read_connection(db_path) as conn:
            count = conn.execute("SELECT COUNT(*) AS n FROM quantity_cell").fetchone()["n"]
        assert count == 0

    def test_delete_other_owner(self, service, created):
        with pytest.raises(SeparationNotFound):
            service.delete_separation("user-2", created.separation_id)

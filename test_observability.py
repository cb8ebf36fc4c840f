"""
Observability and Audit Tests

Validates the ambient stack around separation operations:
1. Metrics are recorded per operation (started, completed, failed)
2. Structured logging carries the correlation context
3. Audit backends persist events once per event_id
"""

import json
import logging
from unittest.mock import patch

import pytest

from conftest import OWNER, build_sheet
from core.audit import (
    AuditEventType,
    JSONFileAuditBackend,
    SQLiteAuditBackend,
    build_audit_logger,
    create_audit_event,
)
from core.observability.logging import (
    CorrelationContext,
    StructuredFormatter,
    get_correlation_context,
    with_correlation,
)
from core.observability.metrics import MetricsCollector, get_metrics
from separation_engine.errors import ActiveSeparationExists
from separation_engine.models import SeparationType


def _by_name(operation):
    return get_metrics().get_summary()["operations"]["by_name"].get(
        operation, {"started": 0, "completed": 0, "failed": 0},
    )


class TestMetricsCollector:
    """Test the metrics collection system."""

    def test_singleton_instance(self):
        assert MetricsCollector.instance() is MetricsCollector.instance()

    def test_operations_counted(self, service):
        """Successful and failed operations are tracked by name."""
        before = _by_name("create")

        service.create_separation(OWNER, SeparationType.SP, "2024-05-01", build_sheet([[1, 0, 0]]))
        with pytest.raises(ActiveSeparationExists):
            service.create_separation(OWNER, SeparationType.SP, "2024-05-01", build_sheet([[1, 0, 0]]))

        after = _by_name("create")
        assert after["started"] == before["started"] + 2
        assert after["completed"] == before["completed"] + 1
        assert after["failed"] == before["failed"] + 1

    def test_timing_percentile_calculation(self):
        mc = MetricsCollector.instance()
        stage = "test_stage_percentile"
        for i in range(1, 101):
            mc.record_processing_time(stage, i)

        stats = mc.get_timing_stats(stage)
        assert 49 <= stats["average_ms"] <= 52
        assert 93 <= stats["p95_ms"] <= 97


class TestCorrelatedLogging:
    """Test structured logging with correlation IDs."""

    def test_merge_stringifies(self):
        ctx = CorrelationContext(owner_id="user-1").merge(separation_id=42, operation=None)
        assert ctx.to_dict() == {"owner_id": "user-1", "separation_id": "42"}

    def test_context_restored(self):
        with with_correlation(separation_id="7"):
            assert get_correlation_context().separation_id == "7"
            with with_correlation(operation="reinforcement"):
                inner = get_correlation_context()
                assert (inner.separation_id, inner.operation) == ("7", "reinforcement")
        assert get_correlation_context().separation_id is None

    def test_structured_formatter_json_output(self):
        formatter = StructuredFormatter()

        with with_correlation(separation_id="42", operation="melancia"):
            record = logging.LogRecord(
                name="separation_engine.engine",
                level=logging.INFO,
                pathname="engine.py",
                lineno=10,
                msg="melancia applied",
                args=(),
                exc_info=None,
            )
            record.extra_fields = {"updated_stores": 3}
            data = json.loads(formatter.format(record))

        assert data["message"] == "melancia applied"
        assert data["separation_id"] == "42"
        assert data["operation"] == "melancia"
        assert data["updated_stores"] == 3

    def test_operation_events_logged(self, service):
        with patch("separation_engine.service.log_operation_event") as logged:
            service.create_separation(OWNER, SeparationType.SP, "2024-05-01", build_sheet([[1, 0, 0]]))
            with pytest.raises(ActiveSeparationExists):
                service.create_separation(OWNER, SeparationType.SP, "2024-05-01", build_sheet([[1, 0, 0]]))

        events = [c.args[0] for c in logged.call_args_list]
        assert events == ["create completed", "create failed"]
        assert logged.call_args_list[1].kwargs == {"error_kind": "ActiveSeparationExists"}


class TestAuditBackends:
    """Audit persistence."""

    def _event(self):
        return create_audit_event(
            AuditEventType.PRODUCT_CUT,
            action="Corte de produto",
            message="Corte all do material 1001",
            separation_id=1,
            details={"total_cut": 8},
            actor=OWNER,
        )

    def test_json_file_backend_writes_once(self, tmp_path):
        backend = JSONFileAuditBackend(tmp_path / "audit")
        event = self._event()

        backend.log(event)
        backend.log(event)

        events = backend.query(separation_id="1")
        assert len(events) == 1
        assert events[0].details == {"total_cut": 8}

    def test_sqlite_backend_writes_once(self, db_path):
        backend = SQLiteAuditBackend(db_path)
        event = self._event()

        backend.log(event)
        backend.log(event)

        events = backend.query(event_type=AuditEventType.PRODUCT_CUT.value, actor=OWNER)
        assert [e.event_id for e in events] == [event.event_id]

    def test_build_audit_logger(self, db_path, tmp_path):
        audit = build_audit_logger(db_path=db_path, audit_dir=tmp_path / "audit")
        assert [type(b) for b in audit.backends] == [SQLiteAuditBackend, JSONFileAuditBackend]

        warnings = audit.record(
            actor_id=OWNER,
            action="Separação criada",
            details="Separação SP criada",
            event_type=AuditEventType.SEPARATION_CREATED,
            separation_id=3,
        )
        assert warnings == []
        assert len(audit.query(separation_id="3")) == 1
        assert len(audit.backends[1].query(separation_id="3")) == 1

    def test_event_serializes_for_transport(self):
        event = self._event()
        data = event.model_dump(mode="json")
        assert data["separation_id"] == "1"
        assert isinstance(data["timestamp"], str)

"""
Tests for the audit trail.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from lifecycle_engine.audit.audit_logger import AuditLogger
from lifecycle_engine.models import AuditAction, AuditRecord


def make_record(action=AuditAction.TASK_COMPLETED, employee_id="E001", workflow_id="wf-1", **kwargs):
    return AuditRecord(
        id=str(uuid.uuid4()),
        action=action,
        employee_id=employee_id,
        workflow_id=workflow_id,
        **kwargs,
    )


class TestInMemoryAuditLogger:

    def test_events_come_back_newest_first(self):
        audit = AuditLogger()
        first = make_record(AuditAction.WORKFLOW_STARTED)
        second = make_record(AuditAction.TASK_COMPLETED)

        assert audit.log_event(first) == first.id
        audit.log_event(second)

        assert [r.id for r in audit.get_events()] == [second.id, first.id]

    def test_filters(self):
        audit = AuditLogger()
        audit.log_event(make_record(employee_id="E001", workflow_id="wf-1"))
        audit.log_event(make_record(employee_id="E002", workflow_id="wf-2"))
        audit.log_event(make_record(employee_id="E001", workflow_id="wf-3"))

        assert len(audit.get_events(employee_id="E001")) == 2
        assert [r.workflow_id for r in audit.get_events(workflow_id="wf-2")] == ["wf-2"]
        assert len(audit.get_events(limit=1)) == 1

    def test_date_range(self):
        audit = AuditLogger()
        now = datetime.now(timezone.utc)
        audit.log_event(make_record(timestamp=now - timedelta(days=3)))
        recent = make_record(timestamp=now)
        audit.log_event(recent)

        events = audit.get_events(start_date=now - timedelta(days=1))
        assert [r.id for r in events] == [recent.id]

        events = audit.get_events(end_date=now - timedelta(days=1))
        assert len(events) == 1
        assert events[0].id != recent.id


class TestFileAuditLogger:

    @pytest.fixture
    def audit(self, tmp_path):
        return AuditLogger(tmp_path / "audit")

    def test_writes_daily_jsonl(self, audit, tmp_path):
        record = make_record(timestamp=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
                             metadata={"kind": "OFFBOARDING"})
        audit.log_event(record)

        log_file = tmp_path / "audit" / "audit_2024-03-01.jsonl"
        assert log_file.exists()
        assert len(log_file.read_text(encoding="utf-8").splitlines()) == 1

        assert audit.get_events() == [record]

    def test_reads_across_days_newest_first(self, audit):
        older = make_record(timestamp=datetime(2024, 3, 1, tzinfo=timezone.utc))
        newer = make_record(timestamp=datetime(2024, 3, 2, tzinfo=timezone.utc))
        audit.log_event(older)
        audit.log_event(newer)

        assert [r.id for r in audit.get_events()] == [newer.id, older.id]

    def test_skips_corrupt_lines(self, audit, tmp_path):
        record = make_record(timestamp=datetime(2024, 3, 1, tzinfo=timezone.utc))
        audit.log_event(record)
        with open(tmp_path / "audit" / "audit_2024-03-01.jsonl", "a", encoding="utf-8") as f:
            f.write("not json\n\n")

        assert [r.id for r in audit.get_events()] == [record.id]

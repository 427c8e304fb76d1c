"""
Audit Logging Module.

This module records every workflow and task transition made by the engine
as an append-only audit trail.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from ..models import AuditRecord

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only logger for workflow audit events.

    Records are written as JSON lines into one file per day. Without an audit
    directory the records are kept in memory, which is what tests and the
    mock-mode CLI use.
    """

    def __init__(self, audit_dir: Optional[Union[str, Path]] = None):
        """
        Initialize the audit logger.

        Args:
            audit_dir: Directory to store audit logs, or None for in-memory
        """
        self.audit_dir = Path(audit_dir) if audit_dir else None
        self._records: List[AuditRecord] = []
        self._lock = threading.Lock()

        if self.audit_dir:
            self.audit_dir.mkdir(parents=True, exist_ok=True)

    def log_event(self, record: AuditRecord) -> str:
        """
        Log an audit event.

        Args:
            record: The audit record to log

        Returns:
            The record ID
        """
        with self._lock:
            if self.audit_dir is None:
                self._records.append(record)
            else:
                date_str = record.timestamp.strftime("%Y-%m-%d")
                log_file = self.audit_dir / f"audit_{date_str}.jsonl"
                try:
                    with open(log_file, "a", encoding="utf-8") as f:
                        f.write(json.dumps(record.model_dump(mode="json")) + "\n")
                except OSError as e:
                    logger.error(f"Failed to log audit event: {e}")
                    raise

        logger.debug(f"Logged audit event {record.action.value} for workflow {record.workflow_id}")
        return record.id

    def get_events(
        self,
        employee_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        """
        Retrieve audit events with filtering, most recent first.

        Args:
            employee_id: Filter by employee ID
            workflow_id: Filter by workflow ID
            start_date: Filter by start date
            end_date: Filter by end date
            limit: Maximum number of records to return

        Returns:
            List of matching AuditRecords
        """
        results = []

        for record in self._iter_records():
            if len(results) >= limit:
                break

            if employee_id and record.employee_id != employee_id:
                continue
            if workflow_id and record.workflow_id != workflow_id:
                continue
            if start_date and record.timestamp < start_date:
                continue
            if end_date and record.timestamp > end_date:
                continue

            results.append(record)

        return results

    def _iter_records(self):
        """Yield records newest first."""
        if self.audit_dir is None:
            with self._lock:
                records = list(self._records)
            yield from reversed(records)
            return

        for log_file in sorted(self.audit_dir.glob("audit_*.jsonl"), reverse=True):
            try:
                with open(log_file, encoding="utf-8") as f:
                    lines = f.readlines()
            except OSError as e:
                logger.error(f"Failed to read log file {log_file}: {e}")
                continue

            for line in reversed(lines):
                if not line.strip():
                    continue
                try:
                    yield AuditRecord.model_validate_json(line)
                except ValueError as e:
                    logger.warning(f"Failed to parse audit record in {log_file}: {e}")

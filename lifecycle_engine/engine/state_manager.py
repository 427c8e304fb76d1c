"""
State Manager for the Lifecycle Engine.

Stores workflows and their tasks. The workflow aggregate is the only mutable
shared state in the engine; the orchestrator reads copies, applies a
transition, and commits the whole aggregate back under the store lock.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from ..models import (
    ACTIVE_WORKFLOW_STATUSES,
    Task,
    Workflow,
    WorkflowFilter,
    WorkflowKind,
)

logger = logging.getLogger(__name__)


class WorkflowStore(ABC):
    """
    Abstract store for workflow aggregates.

    Implementations must make commit() atomic for one workflow and its tasks.
    The transaction() lock is held by the orchestrator around every
    validate -> apply -> recompute -> commit sequence.
    """

    def __init__(self):
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator["WorkflowStore"]:
        """Hold the store lock for one atomic unit of work."""
        with self._lock:
            yield self

    @abstractmethod
    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        """Get a copy of a workflow, or None."""

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[Task]:
        """Get a copy of a task, or None."""

    @abstractmethod
    def get_tasks(self, workflow_id: str) -> List[Task]:
        """Get copies of a workflow's tasks in display order."""

    @abstractmethod
    def list_workflows(self, workflow_filter: Optional[WorkflowFilter] = None) -> List[Workflow]:
        """List workflows matching a filter, newest first."""

    @abstractmethod
    def commit(self, workflow: Workflow, tasks: Optional[List[Task]] = None):
        """
        Persist a workflow and, when given, replace the given tasks.

        Args:
            workflow: Workflow to insert or replace
            tasks: Tasks to insert or replace (all must belong to the workflow)
        """

    def find_active_workflow(self, employee_id: str, kind: WorkflowKind) -> Optional[Workflow]:
        """Get the employee's non-terminal workflow of a kind, if any."""
        for workflow in self.list_workflows(WorkflowFilter(employee_id=employee_id, kind=kind)):
            if workflow.status in ACTIVE_WORKFLOW_STATUSES:
                return workflow
        return None


class InMemoryWorkflowStore(WorkflowStore):
    """
    Workflow store kept in memory with optional JSON file persistence.

    Every commit rewrites the state file when a storage path is configured.
    """

    def __init__(self, storage_path: Optional[Union[str, Path]] = None):
        """
        Initialize the store.

        Args:
            storage_path: Path to store workflow state as JSON.
                         If None, state is kept in memory only.
        """
        super().__init__()
        self.storage_path = Path(storage_path) if storage_path else None
        self.workflows: Dict[str, Workflow] = {}
        self.tasks: Dict[str, Task] = {}

        if self.storage_path:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_state()

        logger.info(
            f"Initialized InMemoryWorkflowStore with {'persistent' if self.storage_path else 'in-memory'} storage"
        )

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        with self._lock:
            workflow = self.workflows.get(workflow_id)
            return workflow.model_copy(deep=True) if workflow else None

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self.tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    def get_tasks(self, workflow_id: str) -> List[Task]:
        with self._lock:
            tasks = [t for t in self.tasks.values() if t.workflow_id == workflow_id]
            tasks.sort(key=lambda t: t.sort_order)
            return [t.model_copy(deep=True) for t in tasks]

    def list_workflows(self, workflow_filter: Optional[WorkflowFilter] = None) -> List[Workflow]:
        workflow_filter = workflow_filter or WorkflowFilter()
        with self._lock:
            workflows = [
                w for w in self.workflows.values()
                if (workflow_filter.kind is None or w.kind == workflow_filter.kind)
                and (workflow_filter.status is None or w.status == workflow_filter.status)
                and (workflow_filter.employee_id is None or w.employee_id == workflow_filter.employee_id)
            ]
            workflows.sort(key=lambda w: w.created_at, reverse=True)
            return [w.model_copy(deep=True) for w in workflows]

    def commit(self, workflow: Workflow, tasks: Optional[List[Task]] = None):
        tasks = tasks or []
        for task in tasks:
            if task.workflow_id != workflow.id:
                raise ValueError(f"Task {task.id} does not belong to workflow {workflow.id}")

        with self._lock:
            previous_workflow = self.workflows.get(workflow.id)
            previous_tasks = {t.id: self.tasks.get(t.id) for t in tasks}

            self.workflows[workflow.id] = workflow.model_copy(deep=True)
            for task in tasks:
                self.tasks[task.id] = task.model_copy(deep=True)

            try:
                self._save_state()
            except Exception:
                # Roll back so the in-memory view matches what was persisted
                if previous_workflow is None:
                    self.workflows.pop(workflow.id, None)
                else:
                    self.workflows[workflow.id] = previous_workflow
                for task_id, previous in previous_tasks.items():
                    if previous is None:
                        self.tasks.pop(task_id, None)
                    else:
                        self.tasks[task_id] = previous
                raise

    def get_statistics(self) -> Dict[str, Dict[str, int]]:
        """Count workflows by kind and status."""
        summary: Dict[str, Dict[str, int]] = {"by_kind": {}, "by_status": {}}
        with self._lock:
            for workflow in self.workflows.values():
                kind = workflow.kind.value
                status = workflow.status.value
                summary["by_kind"][kind] = summary["by_kind"].get(kind, 0) + 1
                summary["by_status"][status] = summary["by_status"].get(status, 0) + 1
        return summary

    def _save_state(self):
        """Save current state to persistent storage."""
        if not self.storage_path:
            return

        state_data = {
            "workflows": {
                wf_id: workflow.model_dump(mode="json") for wf_id, workflow in self.workflows.items()
            },
            "tasks": {task_id: task.model_dump(mode="json") for task_id, task in self.tasks.items()},
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

        tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(state_data, f, indent=2)
            os.replace(tmp_path, self.storage_path)
        except OSError as e:
            logger.error(f"Failed to save state to {self.storage_path}: {e}")
            raise

    def _load_state(self):
        """Load state from persistent storage."""
        if not self.storage_path or not self.storage_path.exists():
            return

        with open(self.storage_path, encoding="utf-8") as f:
            state_data = json.load(f)

        for wf_id, workflow_data in state_data.get("workflows", {}).items():
            self.workflows[wf_id] = Workflow.model_validate(workflow_data)

        for task_id, task_data in state_data.get("tasks", {}).items():
            task = Task.model_validate(task_data)
            if task.is_running:
                # The process that claimed this task is gone
                logger.warning(f"Releasing stale in-flight marker on task {task_id}")
                task.is_running = False
            self.tasks[task_id] = task

        logger.info(
            f"Loaded state for {len(self.workflows)} workflows and {len(self.tasks)} tasks "
            f"from {self.storage_path}"
        )

"""
Progress projection and workflow status derivation.

Both functions are pure over a task list and are the only place progress
percentages and derived workflow statuses are computed.
"""

import math
from typing import Iterable

from ..models import (
    TERMINAL_TASK_STATUSES,
    Task,
    TaskStatus,
    WorkflowProgress,
    WorkflowStatus,
)


def progress(tasks: Iterable[Task]) -> WorkflowProgress:
    """
    Compute completion metrics for a set of tasks.

    Args:
        tasks: Tasks of one workflow

    Returns:
        WorkflowProgress where completed counts SUCCESS and SKIPPED tasks
    """
    statuses = [task.status for task in tasks]
    total = len(statuses)
    completed = sum(1 for status in statuses if status in TERMINAL_TASK_STATUSES)

    if total == 0:
        return WorkflowProgress(percent=0, completed=0, total=0)

    # Half-up rounding; built-in round() rounds half to even.
    percent = int(math.floor(completed * 100 / total + 0.5))
    return WorkflowProgress(percent=percent, completed=completed, total=total)


def compute_workflow_status(tasks: Iterable[Task]) -> WorkflowStatus:
    """
    Derive a workflow status from the multiset of its task statuses.

    FAILED when something failed and nothing is left pending, COMPLETED when
    every task is SUCCESS or SKIPPED, IN_PROGRESS otherwise.
    """
    statuses = [task.status for task in tasks]

    if all(status in TERMINAL_TASK_STATUSES for status in statuses):
        return WorkflowStatus.COMPLETED

    has_failed = TaskStatus.FAILED in statuses
    has_pending = TaskStatus.PENDING in statuses
    if has_failed and not has_pending:
        return WorkflowStatus.FAILED

    return WorkflowStatus.IN_PROGRESS

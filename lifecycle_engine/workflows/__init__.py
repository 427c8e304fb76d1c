"""
Workflows Package for the Lifecycle Engine.

This package provides the workflow state machine and the automation executor
that runs its automated tasks.
"""

from .automation import AutomationExecutor, AutomationOutcome
from .engine import WorkflowEngine

__all__ = [
    "AutomationExecutor",
    "AutomationOutcome",
    "WorkflowEngine",
]

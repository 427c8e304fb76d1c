"""
Policy Engine Package.

This package provides the rule matcher, provisioning policy, task catalog,
progress projection and workflow store used by the workflow engine.
"""

from .progress import compute_workflow_status, progress
from .provisioning_policy import ProvisioningPolicy
from .rule_matcher import AppSelection, has_matching_rule, matches, select_applicable_apps
from .state_manager import InMemoryWorkflowStore, WorkflowStore
from .task_catalog import TaskCatalog, build_task_set

__all__ = [
    "AppSelection",
    "InMemoryWorkflowStore",
    "ProvisioningPolicy",
    "TaskCatalog",
    "WorkflowStore",
    "build_task_set",
    "compute_workflow_status",
    "has_matching_rule",
    "matches",
    "progress",
    "select_applicable_apps",
]

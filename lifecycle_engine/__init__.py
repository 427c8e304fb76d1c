"""
Employee Lifecycle Workflow Engine

Orchestrates employee onboarding and offboarding as ordered sets of automated
and manual tasks, with declarative provisioning rules deciding which
applications an employee receives.
"""

__version__ = "1.0.0"
__author__ = "Lifecycle Engine Team"
__email__ = "team@example.com"

from .config import EngineConfig, load_config
from .engine.state_manager import InMemoryWorkflowStore, WorkflowStore
from .workflows.engine import WorkflowEngine

__all__ = [
    "EngineConfig",
    "InMemoryWorkflowStore",
    "WorkflowEngine",
    "WorkflowStore",
    "load_config",
]

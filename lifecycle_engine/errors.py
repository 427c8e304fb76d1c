"""
Error taxonomy for the Lifecycle Engine.

Every orchestrator operation either commits its transition or raises one of
these errors without mutating anything. Automation failures are the exception:
they are captured as AutomationError and recorded on the task instead of being
raised to the caller.
"""

from typing import Optional


class LifecycleError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(LifecycleError):
    """Missing or malformed caller input (e.g. an empty skip reason)."""


class ConflictError(LifecycleError):
    """The requested operation conflicts with the current state."""


class InvalidStateError(ConflictError):
    """A task or workflow is not in an actionable state for the operation."""


class NotFoundError(LifecycleError):
    """Unknown workflow, task or employee id."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class AutomationError(LifecycleError):
    """
    Failure reported by an external-system adapter.

    The message is shown verbatim as the task's status message.
    """

    def __init__(self, message: str, automation_type: Optional[str] = None):
        super().__init__(message)
        self.automation_type = automation_type

"""
Core data models for the Lifecycle Engine.

This module defines the Pydantic models used throughout the system
for employee profiles, provisioning rules, workflows, tasks and audit records.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr

# A condition value is one of the closed set of comparable kinds.
# None means "no constraint" for that key.
ConditionValue = Optional[Union[StrictBool, StrictInt, StrictFloat, StrictStr]]


def utc_now() -> datetime:
    """Timezone-aware current time used for every timestamp in the engine."""
    return datetime.now(timezone.utc)


class WorkflowKind(str, Enum):
    """Employee lifecycle events handled by a workflow."""
    ONBOARDING = "ONBOARDING"
    OFFBOARDING = "OFFBOARDING"


class WorkflowStatus(str, Enum):
    """Status of a workflow, derived from its tasks."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class TaskType(str, Enum):
    """Who performs a task: the automation executor or a human."""
    AUTOMATED = "AUTOMATED"
    MANUAL = "MANUAL"


class TaskStatus(str, Enum):
    """Status of a single workflow task."""
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class EmployeeStatus(str, Enum):
    """Lifecycle status of an employee record owned by the employee directory."""
    ACTIVE = "ACTIVE"
    ONBOARDING = "ONBOARDING"
    OFFBOARDING = "OFFBOARDING"
    EXITED = "EXITED"


class AutomationType(str, Enum):
    """Automation handlers an AUTOMATED task can be bound to."""
    GOOGLE_PROVISION_ACCOUNT = "google_provision_account"
    GOOGLE_SUSPEND_ACCOUNT = "google_suspend_account"
    GOOGLE_DELETE_ACCOUNT = "google_delete_account"
    GOOGLE_TRANSFER_OWNERSHIP = "google_transfer_ownership"
    GOOGLE_CREATE_ALIAS = "google_create_alias"
    PROVISION_APP = "provision_app"
    DEPROVISION_APP = "deprovision_app"


class AuditAction(str, Enum):
    """Workflow events recorded in the audit trail."""
    WORKFLOW_STARTED = "WORKFLOW_STARTED"
    WORKFLOW_ACTIVATED = "WORKFLOW_ACTIVATED"
    WORKFLOW_COMPLETED = "WORKFLOW_COMPLETED"
    WORKFLOW_CANCELLED = "WORKFLOW_CANCELLED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_FAILED = "TASK_FAILED"
    TASK_SKIPPED = "TASK_SKIPPED"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.SUCCESS, TaskStatus.SKIPPED})
ACTIONABLE_TASK_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.FAILED})
TERMINAL_WORKFLOW_STATUSES = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.CANCELLED})
ACTIVE_WORKFLOW_STATUSES = frozenset(
    {WorkflowStatus.PENDING, WorkflowStatus.IN_PROGRESS, WorkflowStatus.FAILED}
)

GOOGLE_WORKSPACE_APP_TYPE = "GOOGLE_WORKSPACE"


class EmployeeProfile(BaseModel):
    """Employee attributes consumed by the rule matcher and the automations."""
    model_config = ConfigDict(populate_by_name=True)

    employee_id: str = Field(..., alias="employeeId", description="Unique employee identifier")
    full_name: str = Field(..., alias="fullName", description="Full name of the employee")
    work_email: Optional[str] = Field(None, alias="workEmail", description="Work email address")
    personal_email: Optional[str] = Field(None, alias="personalEmail")
    department: Optional[str] = Field(None, description="Department or business unit")
    job_title: Optional[str] = Field(None, alias="jobTitle")
    location: Optional[str] = Field(None, description="Office location")
    employment_type: Optional[str] = Field(None, alias="employmentType", description="FULL_TIME/CONTRACT/etc.")
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    app_accounts: List[str] = Field(
        default_factory=list,
        alias="appAccounts",
        description="Ids of apps the employee holds an active account in",
    )
    meta: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")


class App(BaseModel):
    """An integrated application that can be provisioned automatically."""
    id: str
    name: str
    type: str = Field(..., description="Integration type (GOOGLE_WORKSPACE, SLACK, etc.)")
    description: Optional[str] = None

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other) -> bool:
        if not isinstance(other, App):
            return False
        return self.id == other.id


class ProvisioningRule(BaseModel):
    """Declarative condition deciding whether an app applies to an employee."""
    id: str
    app: App
    condition: Dict[str, ConditionValue] = Field(default_factory=dict)
    is_active: bool = True


class IdentityProviderConfig(BaseModel):
    """Offboarding options for the identity provider, fixed at workflow creation."""
    model_config = ConfigDict(frozen=True)

    delete_account: bool = False
    transfer_to_email: Optional[str] = None
    transfer_scopes: List[str] = Field(default_factory=list)
    alias_to_email: Optional[str] = None

    @property
    def requests_transfer(self) -> bool:
        return bool(self.transfer_to_email)

    @property
    def requests_alias(self) -> bool:
        return bool(self.alias_to_email)


class TaskDefinition(BaseModel):
    """Catalog entry a task is instantiated from."""
    id: Optional[str] = Field(None, description="Template id, set for managed templates")
    name: str
    type: TaskType
    automation_type: Optional[AutomationType] = None
    automation_params: Dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = None
    is_active: bool = True


class Task(BaseModel):
    """One step of a workflow."""
    id: str
    workflow_id: str
    name: str
    type: TaskType
    status: TaskStatus = TaskStatus.PENDING
    status_message: Optional[str] = None
    sort_order: int = 0
    automation_type: Optional[AutomationType] = None
    automation_params: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    is_running: bool = False
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None

    @property
    def is_actionable(self) -> bool:
        return self.status in ACTIONABLE_TASK_STATUSES


class Workflow(BaseModel):
    """One onboarding or offboarding lifecycle instance for one employee."""
    id: str
    employee_id: str
    kind: WorkflowKind
    status: WorkflowStatus = WorkflowStatus.PENDING
    is_immediate: bool = False
    scheduled_for: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    initiated_by: Optional[str] = None
    identity_provider: IdentityProviderConfig = Field(default_factory=IdentityProviderConfig)
    task_snapshot: List[TaskDefinition] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WORKFLOW_STATUSES


class StartWorkflowOptions(BaseModel):
    """Caller inputs for starting a workflow."""
    is_immediate: bool = False
    scheduled_for: Optional[datetime] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    initiated_by: Optional[str] = None
    identity_provider: IdentityProviderConfig = Field(default_factory=IdentityProviderConfig)


class WorkflowProgress(BaseModel):
    """Display metrics derived from task statuses."""
    percent: int
    completed: int
    total: int


class WorkflowDetail(BaseModel):
    """Workflow with its ordered tasks and computed progress."""
    workflow: Workflow
    tasks: List[Task]
    progress: WorkflowProgress


class WorkflowSummary(BaseModel):
    """Listing row for a workflow."""
    workflow: Workflow
    progress: WorkflowProgress
    failed_tasks: int = 0


class WorkflowFilter(BaseModel):
    """Listing filter; None fields are ignored."""
    kind: Optional[WorkflowKind] = None
    status: Optional[WorkflowStatus] = None
    employee_id: Optional[str] = None


class WorkflowPage(BaseModel):
    """One page of workflow summaries."""
    items: List[WorkflowSummary]
    total: int
    page: int
    pages: int


class AuditRecord(BaseModel):
    """Audit record for a workflow or task transition."""
    id: str = Field(..., description="Unique audit record ID")
    timestamp: datetime = Field(default_factory=utc_now)
    action: AuditAction
    employee_id: str
    workflow_id: str
    task_id: Optional[str] = None
    actor: Optional[str] = Field(None, description="User or system that triggered the event")
    success: bool = True
    message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

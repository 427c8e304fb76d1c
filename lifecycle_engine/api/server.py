"""
FastAPI Server for the Lifecycle Engine.

Provides REST API endpoints for starting and operating onboarding and
offboarding workflows, triggering scheduled workflows and reading the audit
trail.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import load_config
from ..errors import ConflictError, LifecycleError, NotFoundError, ValidationError
from ..engine.provisioning_policy import ProvisioningPolicy
from ..models import (
    AuditRecord,
    IdentityProviderConfig,
    StartWorkflowOptions,
    Task,
    TaskDefinition,
    TaskType,
    Workflow,
    WorkflowDetail,
    WorkflowFilter,
    WorkflowKind,
    WorkflowPage,
    WorkflowStatus,
)
from ..workflows.engine import WorkflowEngine

logger = logging.getLogger(__name__)


# Pydantic models for API requests
class StartWorkflowRequest(BaseModel):
    """Workflow start request."""
    employee_id: str = Field(..., description="Employee the workflow is for")
    kind: WorkflowKind = Field(..., description="ONBOARDING or OFFBOARDING")
    is_immediate: bool = Field(False, description="Start now regardless of scheduled_for")
    scheduled_for: Optional[datetime] = Field(None, description="When the workflow becomes active")
    reason: Optional[str] = None
    notes: Optional[str] = None
    initiated_by: Optional[str] = None
    delete_account: bool = Field(False, description="Delete the Google account (offboarding)")
    transfer_to_email: Optional[str] = Field(None, description="Receiver of Drive/Calendar data")
    transfer_scopes: List[str] = Field(default_factory=list, description="Apps to transfer (drive, calendar)")
    alias_to_email: Optional[str] = Field(None, description="Account receiving the work email as alias")

    def to_options(self) -> StartWorkflowOptions:
        return StartWorkflowOptions(
            is_immediate=self.is_immediate,
            scheduled_for=self.scheduled_for,
            reason=self.reason,
            notes=self.notes,
            initiated_by=self.initiated_by,
            identity_provider=IdentityProviderConfig(
                delete_account=self.delete_account,
                transfer_to_email=self.transfer_to_email,
                transfer_scopes=self.transfer_scopes,
                alias_to_email=self.alias_to_email,
            ),
        )


class ActorRequest(BaseModel):
    """Request body carrying only the acting user."""
    actor: Optional[str] = None


class CompleteTaskRequest(BaseModel):
    """Manual task completion request."""
    notes: Optional[str] = None
    actor: Optional[str] = None


class SkipTaskRequest(BaseModel):
    """Task skip request."""
    reason: str = Field(..., description="Why the task is skipped")
    actor: Optional[str] = None


class TaskTemplateRequest(BaseModel):
    """New task template."""
    name: str
    type: TaskType = Field(TaskType.MANUAL, description="MANUAL, or AUTOMATED for an app integration")
    description: Optional[str] = None
    app_id: Optional[str] = Field(None, description="Integrated app of an AUTOMATED template")


class TaskTemplateUpdateRequest(BaseModel):
    """Task template changes; omitted fields keep their value."""
    name: Optional[str] = None
    type: Optional[TaskType] = None
    description: Optional[str] = None
    app_id: Optional[str] = None
    is_active: Optional[bool] = None


class MoveTemplateRequest(BaseModel):
    """Task template move request."""
    direction: str = Field(..., description="up or down")


# Global engine (initialized on startup unless configured beforehand)
engine: Optional[WorkflowEngine] = None


def configure_engine(new_engine: Optional[WorkflowEngine]):
    """Install the engine the endpoints operate on."""
    global engine
    engine = new_engine


def get_engine() -> WorkflowEngine:
    if engine is None:
        raise HTTPException(status_code=503, detail="Workflow engine not available")
    return engine


def get_policy() -> ProvisioningPolicy:
    return get_engine().catalog.policy


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global engine

    if engine is None:
        logger.info("Initializing Lifecycle Engine API server components")
        engine = WorkflowEngine.from_config(load_config())
        logger.info("Lifecycle Engine API server components initialized")

    yield

    logger.info("Shutting down Lifecycle Engine API server")


# Create FastAPI app
app = FastAPI(
    title="Lifecycle Engine API",
    description="Employee onboarding and offboarding workflow engine",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    """Map engine errors onto HTTP status codes."""
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, ConflictError):
        status_code = 409
    else:
        logger.error(f"Unhandled engine error on {request.url.path}: {exc.message}")
        status_code = 500

    return JSONResponse(status_code=status_code, content={"detail": exc.message})


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Lifecycle Engine API", "version": "1.0.0", "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy" if engine is not None else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "engine": engine is not None,
            "store": engine is not None and engine.store is not None,
            "directory": engine is not None and engine.directory is not None,
            "audit_logger": engine is not None and engine.audit_logger is not None,
        }
    }


@app.post("/workflows", response_model=WorkflowDetail, status_code=201)
def start_workflow(request: StartWorkflowRequest, background_tasks: BackgroundTasks):
    """
    Start an onboarding or offboarding workflow.

    Automated tasks of a workflow that starts immediately run in the
    background after the response is sent.
    """
    detail = get_engine().start(
        request.employee_id, request.kind, request.to_options(), execute_automations=False
    )

    if detail.workflow.status == WorkflowStatus.IN_PROGRESS:
        background_tasks.add_task(run_workflow_automations, detail.workflow.id, request.initiated_by)

    return detail


@app.get("/workflows", response_model=WorkflowPage)
def list_workflows(
    kind: Optional[WorkflowKind] = Query(None, description="Filter by workflow kind"),
    status: Optional[WorkflowStatus] = Query(None, description="Filter by status"),
    employee_id: Optional[str] = Query(None, description="Filter by employee ID"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=200, description="Page size")
):
    """List workflows, newest first."""
    workflow_filter = WorkflowFilter(kind=kind, status=status, employee_id=employee_id)
    return get_engine().list_workflows(workflow_filter, page=page, limit=limit)


@app.get("/workflows/{workflow_id}", response_model=WorkflowDetail)
def get_workflow(workflow_id: str):
    """Get a workflow with its tasks and progress."""
    return get_engine().get_workflow(workflow_id)


@app.post("/workflows/{workflow_id}/cancel", response_model=Workflow)
def cancel_workflow(workflow_id: str, request: Optional[ActorRequest] = None):
    """Cancel a workflow that has not completed."""
    return get_engine().cancel(workflow_id, actor=request.actor if request else None)


@app.post("/tasks/{task_id}/run", response_model=Task)
def run_task(task_id: str, request: Optional[ActorRequest] = None):
    """Run or retry an automated task."""
    return get_engine().run_task(task_id, actor=request.actor if request else None)


@app.post("/tasks/{task_id}/complete", response_model=Task)
def complete_task(task_id: str, request: Optional[CompleteTaskRequest] = None):
    """Mark a manual task as done."""
    request = request or CompleteTaskRequest()
    return get_engine().complete_manual_task(task_id, notes=request.notes, actor=request.actor)


@app.post("/tasks/{task_id}/skip", response_model=Task)
def skip_task(task_id: str, request: SkipTaskRequest):
    """Skip a task with a reason."""
    return get_engine().skip_task(task_id, request.reason, actor=request.actor)


@app.post("/scheduler/run-due", response_model=List[WorkflowDetail])
def run_due_workflows():
    """Activate scheduled workflows whose start time has been reached."""
    return get_engine().activate_due_workflows()


@app.get("/audit", response_model=List[AuditRecord])
def get_audit_logs(
    employee_id: Optional[str] = Query(None, description="Filter by employee ID"),
    workflow_id: Optional[str] = Query(None, description="Filter by workflow ID"),
    limit: int = Query(100, ge=1, description="Maximum number of results")
):
    """Get audit records, most recent first."""
    current = get_engine()
    if current.audit_logger is None:
        raise HTTPException(status_code=503, detail="Audit logger not available")

    return current.audit_logger.get_events(employee_id=employee_id, workflow_id=workflow_id, limit=limit)


@app.get("/templates/{kind}", response_model=List[TaskDefinition])
def list_task_templates(kind: WorkflowKind):
    """List the task templates of a workflow kind, inactive ones included."""
    return get_policy().list_task_templates(kind)


@app.post("/templates/{kind}", response_model=TaskDefinition, status_code=201)
def create_task_template(kind: WorkflowKind, request: TaskTemplateRequest):
    """Append a task template."""
    return get_policy().add_task_template(
        kind, request.name, task_type=request.type, description=request.description, app_id=request.app_id
    )


@app.patch("/templates/{kind}/{template_id}", response_model=TaskDefinition)
def update_task_template(kind: WorkflowKind, template_id: str, request: TaskTemplateUpdateRequest):
    """Rename, retype, describe, activate or deactivate a task template."""
    return get_policy().update_task_template(
        kind,
        template_id,
        name=request.name,
        description=request.description,
        is_active=request.is_active,
        task_type=request.type,
        app_id=request.app_id,
    )


@app.delete("/templates/{kind}/{template_id}")
def delete_task_template(kind: WorkflowKind, template_id: str):
    """Delete a task template."""
    get_policy().remove_task_template(kind, template_id)
    return {"success": True}


@app.post("/templates/{kind}/{template_id}/move", response_model=List[TaskDefinition])
def move_task_template(kind: WorkflowKind, template_id: str, request: MoveTemplateRequest):
    """Move a task template one position up or down."""
    return get_policy().move_task_template(kind, template_id, request.direction)


@app.post("/templates/{kind}/reset", response_model=List[TaskDefinition])
def reset_task_templates(kind: WorkflowKind):
    """Restore the built-in task templates of a workflow kind."""
    return get_policy().reset_task_templates(kind)


def run_workflow_automations(workflow_id: str, actor: Optional[str] = None):
    """Run a workflow's automated tasks outside the request."""
    try:
        detail = get_engine().run_automated_tasks(workflow_id, actor=actor)
        logger.info(
            f"Automations finished for workflow {workflow_id}: "
            f"{detail.workflow.status.value}, {detail.progress.percent}% complete"
        )
    except (LifecycleError, HTTPException) as e:
        logger.error(f"Error running automations for workflow {workflow_id}: {e}")


def start_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """Start the FastAPI server."""
    uvicorn.run(
        "lifecycle_engine.api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


if __name__ == "__main__":
    start_server()

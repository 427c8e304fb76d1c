"""
Workflow Engine for the Lifecycle Engine.

Owns the onboarding/offboarding state machine. Every operation reads copies of
the workflow aggregate, validates the requested transition, applies it,
recomputes the workflow status and commits, all under the store lock. The only
work done outside the lock is the automation call itself.
"""

import logging
import math
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set, Tuple

from ..audit.audit_logger import AuditLogger
from ..config import EngineConfig
from ..connectors import build_app_connectors, build_identity_provider
from ..connectors.employee_directory import EmployeeDirectory, InMemoryEmployeeDirectory
from ..engine.progress import compute_workflow_status, progress
from ..engine.provisioning_policy import ProvisioningPolicy
from ..engine.state_manager import InMemoryWorkflowStore, WorkflowStore
from ..engine.task_catalog import TaskCatalog
from ..errors import ConflictError, InvalidStateError, LifecycleError, NotFoundError, ValidationError
from ..models import (
    TERMINAL_TASK_STATUSES,
    AuditAction,
    AuditRecord,
    AutomationType,
    EmployeeStatus,
    IdentityProviderConfig,
    StartWorkflowOptions,
    Task,
    TaskDefinition,
    TaskStatus,
    TaskType,
    Workflow,
    WorkflowDetail,
    WorkflowFilter,
    WorkflowKind,
    WorkflowPage,
    WorkflowStatus,
    WorkflowSummary,
    utc_now,
)
from .automation import AutomationExecutor, AutomationOutcome

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

# Sibling tasks that must be SUCCESS or SKIPPED before a task of this type may run.
# Data is transferred before the account is deleted, and the address only becomes
# free for an alias once the account is gone.
_PREREQUISITES = {
    AutomationType.GOOGLE_DELETE_ACCOUNT: [AutomationType.GOOGLE_TRANSFER_OWNERSHIP],
    AutomationType.GOOGLE_CREATE_ALIAS: [AutomationType.GOOGLE_DELETE_ACCOUNT],
}

_IN_FLIGHT_STATUS = {
    WorkflowKind.ONBOARDING: EmployeeStatus.ONBOARDING,
    WorkflowKind.OFFBOARDING: EmployeeStatus.OFFBOARDING,
}

_COMPLETED_STATUS = {
    WorkflowKind.ONBOARDING: EmployeeStatus.ACTIVE,
    WorkflowKind.OFFBOARDING: EmployeeStatus.EXITED,
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class WorkflowEngine:
    """
    Orchestrates onboarding and offboarding workflows.

    States: PENDING -> IN_PROGRESS -> {COMPLETED, FAILED}, with CANCELLED
    reachable from any non-terminal state. COMPLETED and FAILED are only ever
    set by recomputing the status from the workflow's tasks.
    """

    def __init__(
        self,
        store: WorkflowStore,
        directory: EmployeeDirectory,
        executor: AutomationExecutor,
        catalog: Optional[TaskCatalog] = None,
        audit_logger: Optional[AuditLogger] = None,
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize the workflow engine.

        Args:
            store: Workflow store holding workflows and tasks
            directory: Employee directory collaborator
            executor: Automation executor for AUTOMATED tasks
            catalog: Task catalog; defaults to the built-in templates without rules
            audit_logger: Audit trail; events are not recorded when None
            config: Engine settings (attempt cap, worker count)
        """
        self.store = store
        self.directory = directory
        self.executor = executor
        self.catalog = catalog or TaskCatalog()
        self.audit_logger = audit_logger
        self.config = config or EngineConfig()

        logger.info("Initialized WorkflowEngine")

    @classmethod
    def from_config(cls, config: Optional[EngineConfig] = None) -> "WorkflowEngine":
        """Wire an engine and all of its collaborators from configuration."""
        config = config or EngineConfig()

        policy = ProvisioningPolicy(config.policy_file)
        directory = InMemoryEmployeeDirectory(directory_file=config.directory_file)
        executor = AutomationExecutor(
            build_identity_provider(config, directory),
            build_app_connectors(config, policy.get_apps()),
        )

        return cls(
            store=InMemoryWorkflowStore(config.state_file),
            directory=directory,
            executor=executor,
            catalog=TaskCatalog(policy),
            audit_logger=AuditLogger(config.audit_dir),
            config=config,
        )

    # Operations

    def start(
        self,
        employee_id: str,
        kind: WorkflowKind,
        options: Optional[StartWorkflowOptions] = None,
        execute_automations: bool = True,
    ) -> WorkflowDetail:
        """
        Start an onboarding or offboarding workflow for an employee.

        Args:
            employee_id: Employee the workflow is for
            kind: ONBOARDING or OFFBOARDING
            options: Scheduling, notes and identity-provider options
            execute_automations: Run AUTOMATED tasks before returning when the
                                 workflow starts IN_PROGRESS. Callers that run
                                 them elsewhere (e.g. a background task) pass False.

        Returns:
            WorkflowDetail of the new workflow

        Raises:
            NotFoundError: Unknown employee
            ConflictError: Active workflow of the same kind, or employee already exited
            ValidationError: Inconsistent identity-provider options
        """
        kind = WorkflowKind(kind)
        options = options or StartWorkflowOptions()
        identity_provider = options.identity_provider
        if kind == WorkflowKind.OFFBOARDING:
            self._validate_identity_provider(identity_provider)
        else:
            identity_provider = IdentityProviderConfig()

        with self.store.transaction():
            profile = self.directory.get_profile(employee_id)

            existing = self.store.find_active_workflow(employee_id, kind)
            if existing:
                raise ConflictError(
                    f"Employee {employee_id} already has an active {kind.value.lower()} "
                    f"workflow ({existing.id})"
                )
            if kind == WorkflowKind.OFFBOARDING and profile.status == EmployeeStatus.EXITED:
                raise ConflictError(f"Employee {employee_id} has already exited")

            definitions = self.catalog.build_for(kind, profile, identity_provider)

            now = utc_now()
            scheduled_for = now if options.is_immediate else _as_utc(options.scheduled_for)
            starts_now = options.is_immediate or scheduled_for is None

            workflow = Workflow(
                id=str(uuid.uuid4()),
                employee_id=employee_id,
                kind=kind,
                status=WorkflowStatus.IN_PROGRESS if starts_now else WorkflowStatus.PENDING,
                is_immediate=options.is_immediate,
                scheduled_for=scheduled_for,
                created_at=now,
                started_at=now if starts_now else None,
                reason=options.reason,
                notes=options.notes,
                initiated_by=options.initiated_by,
                identity_provider=identity_provider,
                task_snapshot=definitions,
            )
            tasks = self._instantiate_tasks(workflow.id, definitions)

            completed = starts_now and self._settle(workflow, tasks, now)
            employee_status = _COMPLETED_STATUS[kind] if completed else _IN_FLIGHT_STATUS[kind]

            with self._employee_status(employee_id, employee_status):
                self.store.commit(workflow, tasks)

        logger.info(
            f"Started {kind.value} workflow {workflow.id} for {employee_id} "
            f"({workflow.status.value}, {len(tasks)} tasks)"
        )
        self._audit(AuditAction.WORKFLOW_STARTED, workflow, actor=options.initiated_by,
                    message=options.reason, task_count=len(tasks))
        if completed:
            self._audit(AuditAction.WORKFLOW_COMPLETED, workflow, actor=options.initiated_by)

        if execute_automations and workflow.status == WorkflowStatus.IN_PROGRESS:
            return self.run_automated_tasks(workflow.id, actor=options.initiated_by)

        return self.get_workflow(workflow.id)

    def run_task(self, task_id: str, actor: Optional[str] = None) -> Task:
        """
        Run an AUTOMATED task, or retry it after a failure.

        The in-flight marker is claimed under the store lock, the automation
        runs outside it, and the outcome is committed under it again.

        Returns:
            The task after the outcome was recorded

        Raises:
            NotFoundError: Unknown task
            InvalidStateError: Task not runnable or its workflow is terminal
        """
        with self.store.transaction():
            task, workflow, tasks = self._load_task(task_id)
            if task.type != TaskType.AUTOMATED:
                raise InvalidStateError(f"Task {task.name} is not an automated task")
            self._ensure_actionable(task)
            self._ensure_under_attempt_cap(task)
            self._ensure_prerequisites(task, tasks)

            now = utc_now()
            task.is_running = True
            task.attempts += 1
            task.last_attempt_at = now
            self._activate(workflow, now)
            self.store.commit(workflow, [task])

        logger.info(f"Running task {task.id} ({task.name}), attempt {task.attempts}")
        outcome = self._execute(task, workflow)

        try:
            with self.store.transaction():
                task, workflow, tasks = self._load_task(task_id, allow_terminal=True)
                task.is_running = False
                if outcome.success:
                    task.status = TaskStatus.SUCCESS
                    task.status_message = None
                    task.completed_at = utc_now()
                    task.completed_by = actor or SYSTEM_ACTOR
                else:
                    task.status = TaskStatus.FAILED
                    task.status_message = outcome.error.message

                completed = self._commit_task_transition(workflow, tasks, task)
        except Exception as e:
            logger.error(f"Failed to record outcome of task {task_id}: {e}")
            self._release_claim(task_id, f"Failed to record outcome: {e}")
            raise

        if outcome.success:
            self._audit(AuditAction.TASK_COMPLETED, workflow, task=task, actor=actor or SYSTEM_ACTOR)
        else:
            self._audit(AuditAction.TASK_FAILED, workflow, task=task, actor=actor or SYSTEM_ACTOR,
                        success=False, message=task.status_message, attempts=task.attempts)
        self._audit_completion(workflow, completed, actor)

        return task

    def complete_manual_task(self, task_id: str, notes: Optional[str] = None,
                             actor: Optional[str] = None) -> Task:
        """
        Mark a MANUAL task as done.

        Raises:
            NotFoundError: Unknown task
            InvalidStateError: Task is automated, already terminal, or its workflow is terminal
        """
        with self.store.transaction():
            task, workflow, tasks = self._load_task(task_id)
            if task.type != TaskType.MANUAL:
                raise InvalidStateError(f"Task {task.name} is not a manual task")
            self._ensure_actionable(task)

            task.status = TaskStatus.SUCCESS
            task.status_message = notes
            task.completed_at = utc_now()
            task.completed_by = actor

            completed = self._commit_task_transition(workflow, tasks, task)

        logger.info(f"Completed manual task {task.id} ({task.name})")
        self._audit(AuditAction.TASK_COMPLETED, workflow, task=task, actor=actor, message=notes)
        self._audit_completion(workflow, completed, actor)
        return task

    def skip_task(self, task_id: str, reason: str, actor: Optional[str] = None) -> Task:
        """
        Skip a task of either type. The automation of a skipped task never runs.

        Raises:
            ValidationError: Empty or blank reason
            NotFoundError: Unknown task
            InvalidStateError: Task already terminal or in flight, or its workflow is terminal
        """
        if reason is None or not reason.strip():
            raise ValidationError("A reason is required to skip a task")

        with self.store.transaction():
            task, workflow, tasks = self._load_task(task_id)
            self._ensure_actionable(task)

            task.status = TaskStatus.SKIPPED
            task.status_message = reason
            task.completed_at = utc_now()
            task.completed_by = actor

            completed = self._commit_task_transition(workflow, tasks, task)

        logger.info(f"Skipped task {task.id} ({task.name}): {reason}")
        self._audit(AuditAction.TASK_SKIPPED, workflow, task=task, actor=actor, message=reason)
        self._audit_completion(workflow, completed, actor)
        return task

    def cancel(self, workflow_id: str, actor: Optional[str] = None) -> Workflow:
        """
        Cancel a workflow that is not COMPLETED or CANCELLED.

        Task statuses are left as they are and the employee's lifecycle
        status is reverted to ACTIVE.

        Raises:
            NotFoundError: Unknown workflow
            InvalidStateError: Workflow already COMPLETED or CANCELLED
        """
        with self.store.transaction():
            workflow = self.store.get_workflow(workflow_id)
            if workflow is None:
                raise NotFoundError("Workflow", workflow_id)
            if workflow.is_terminal:
                raise InvalidStateError(
                    f"Workflow {workflow_id} is {workflow.status.value} and cannot be cancelled"
                )

            workflow.status = WorkflowStatus.CANCELLED
            workflow.cancelled_at = utc_now()

            with self._employee_status(workflow.employee_id, EmployeeStatus.ACTIVE):
                self.store.commit(workflow)

        logger.info(f"Cancelled workflow {workflow_id}")
        self._audit(AuditAction.WORKFLOW_CANCELLED, workflow, actor=actor)
        return workflow

    def run_automated_tasks(self, workflow_id: str, actor: Optional[str] = None) -> WorkflowDetail:
        """
        Run every actionable AUTOMATED task of a workflow.

        Tasks run concurrently on a thread pool. Tasks whose prerequisites are
        not met yet run in a later wave, and each task is attempted at most once
        per call.
        """
        attempted: Set[str] = set()

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            while True:
                batch = self._runnable_tasks(workflow_id, attempted)
                if not batch:
                    break

                attempted.update(task.id for task in batch)
                futures = {pool.submit(self.run_task, task.id, actor): task for task in batch}
                for future in as_completed(futures):
                    task = futures[future]
                    try:
                        future.result()
                    except ConflictError as e:
                        # Raced with another caller or the workflow was cancelled
                        logger.info(f"Did not run task {task.id}: {e.message}")

        return self.get_workflow(workflow_id)

    # Reads

    def get_workflow(self, workflow_id: str) -> WorkflowDetail:
        """Get a workflow with its ordered tasks and computed progress."""
        workflow = self.store.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)

        tasks = self.store.get_tasks(workflow_id)
        return WorkflowDetail(workflow=workflow, tasks=tasks, progress=progress(tasks))

    def list_workflows(self, workflow_filter: Optional[WorkflowFilter] = None,
                       page: int = 1, limit: int = 20) -> WorkflowPage:
        """List workflows newest first, one page at a time."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        workflows = self.store.list_workflows(workflow_filter)
        total = len(workflows)
        start = (page - 1) * limit

        items = []
        for workflow in workflows[start:start + limit]:
            tasks = self.store.get_tasks(workflow.id)
            items.append(
                WorkflowSummary(
                    workflow=workflow,
                    progress=progress(tasks),
                    failed_tasks=sum(1 for t in tasks if t.status == TaskStatus.FAILED),
                )
            )

        return WorkflowPage(items=items, total=total, page=page, pages=math.ceil(total / limit))

    def get_workflow_for_employee(self, employee_id: str,
                                  kind: Optional[WorkflowKind] = None) -> Optional[WorkflowDetail]:
        """Get the employee's most recent workflow, optionally of one kind."""
        workflows = self.store.list_workflows(WorkflowFilter(employee_id=employee_id, kind=kind))
        if not workflows:
            return None
        return self.get_workflow(workflows[0].id)

    # Scheduling

    def due_workflows(self, now: Optional[datetime] = None) -> List[Workflow]:
        """PENDING workflows whose scheduled time has been reached."""
        now = _as_utc(now) or utc_now()
        pending = self.store.list_workflows(WorkflowFilter(status=WorkflowStatus.PENDING))
        due = [w for w in pending if w.scheduled_for is not None and w.scheduled_for <= now]
        due.sort(key=lambda w: w.scheduled_for)
        return due

    def activate_due_workflows(self, now: Optional[datetime] = None,
                               execute_automations: bool = True) -> List[WorkflowDetail]:
        """
        Move due PENDING workflows to IN_PROGRESS and run their automations.

        Intended to be triggered periodically by a caller (cron, API, CLI).
        """
        activated = []

        for due in self.due_workflows(now):
            with self.store.transaction():
                workflow = self.store.get_workflow(due.id)
                if workflow is None or workflow.status != WorkflowStatus.PENDING:
                    continue

                tasks = self.store.get_tasks(workflow.id)
                activated_at = utc_now()
                self._activate(workflow, activated_at)
                completed = self._settle(workflow, tasks, activated_at)

                if completed:
                    with self._employee_status(workflow.employee_id, _COMPLETED_STATUS[workflow.kind]):
                        self.store.commit(workflow)
                else:
                    self.store.commit(workflow)

            logger.info(f"Activated scheduled workflow {workflow.id}")
            self._audit(AuditAction.WORKFLOW_ACTIVATED, workflow, actor=SYSTEM_ACTOR)
            if completed:
                self._audit(AuditAction.WORKFLOW_COMPLETED, workflow, actor=SYSTEM_ACTOR)

            if execute_automations and workflow.status == WorkflowStatus.IN_PROGRESS:
                activated.append(self.run_automated_tasks(workflow.id, actor=SYSTEM_ACTOR))
            else:
                activated.append(self.get_workflow(workflow.id))

        return activated

    # Internals

    def _validate_identity_provider(self, options: IdentityProviderConfig):
        if options.requests_alias and not options.delete_account:
            raise ValidationError("Email alias mapping requires deleting the Google account")
        if options.transfer_scopes and not options.requests_transfer:
            raise ValidationError("Transfer scopes require a transfer target email")

    def _instantiate_tasks(self, workflow_id: str, definitions: Iterable[TaskDefinition]) -> List[Task]:
        return [
            Task(
                id=str(uuid.uuid4()),
                workflow_id=workflow_id,
                name=definition.name,
                type=definition.type,
                sort_order=index,
                automation_type=definition.automation_type,
                automation_params=dict(definition.automation_params),
            )
            for index, definition in enumerate(definitions)
        ]

    def _load_task(self, task_id: str, allow_terminal: bool = False) -> Tuple[Task, Workflow, List[Task]]:
        """Load a task, its workflow and all sibling tasks (the task object is in the list)."""
        stored = self.store.get_task(task_id)
        if stored is None:
            raise NotFoundError("Task", task_id)

        workflow = self.store.get_workflow(stored.workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", stored.workflow_id)
        if workflow.is_terminal and not allow_terminal:
            raise InvalidStateError(
                f"Workflow {workflow.id} is {workflow.status.value}; its tasks can no longer change"
            )

        tasks = self.store.get_tasks(workflow.id)
        task = next(t for t in tasks if t.id == task_id)
        return task, workflow, tasks

    def _ensure_actionable(self, task: Task):
        if not task.is_actionable:
            raise InvalidStateError(f"Task {task.name} is {task.status.value}")
        if task.is_running:
            raise InvalidStateError(f"Task {task.name} is already running")

    def _ensure_under_attempt_cap(self, task: Task):
        cap = self.config.max_automation_attempts
        if cap is not None and task.attempts >= cap:
            raise InvalidStateError(
                f"Task {task.name} reached the limit of {cap} attempts; complete it manually or skip it"
            )

    def _blocking_prerequisites(self, task: Task, tasks: List[Task]) -> List[Task]:
        required = _PREREQUISITES.get(task.automation_type, [])
        return [
            t for t in tasks
            if t.automation_type in required and t.status not in TERMINAL_TASK_STATUSES
        ]

    def _ensure_prerequisites(self, task: Task, tasks: List[Task]):
        blocking = self._blocking_prerequisites(task, tasks)
        if blocking:
            names = ", ".join(t.name for t in blocking)
            raise InvalidStateError(f"Task {task.name} must wait for: {names}")

    def _runnable_tasks(self, workflow_id: str, attempted: Set[str]) -> List[Task]:
        workflow = self.store.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        if workflow.is_terminal:
            return []

        cap = self.config.max_automation_attempts
        tasks = self.store.get_tasks(workflow_id)
        return [
            t for t in tasks
            if t.type == TaskType.AUTOMATED
            and t.is_actionable
            and not t.is_running
            and t.id not in attempted
            and (cap is None or t.attempts < cap)
            and not self._blocking_prerequisites(t, tasks)
        ]

    def _execute(self, task: Task, workflow: Workflow) -> AutomationOutcome:
        try:
            profile = self.directory.get_profile(workflow.employee_id)
        except LifecycleError as e:
            automation_type = task.automation_type.value if task.automation_type else None
            return AutomationOutcome.failed(e.message, automation_type)
        return self.executor.execute(task, workflow, profile)

    def _activate(self, workflow: Workflow, now: datetime):
        if workflow.status == WorkflowStatus.PENDING:
            workflow.status = WorkflowStatus.IN_PROGRESS
            workflow.started_at = workflow.started_at or now

    def _settle(self, workflow: Workflow, tasks: List[Task], now: datetime) -> bool:
        """Recompute the workflow status from its tasks; True when it just completed."""
        previous = workflow.status
        workflow.status = compute_workflow_status(tasks)
        if workflow.status == WorkflowStatus.COMPLETED and previous != WorkflowStatus.COMPLETED:
            workflow.completed_at = now
            return True
        return False

    def _commit_task_transition(self, workflow: Workflow, tasks: List[Task], task: Task) -> bool:
        """
        Commit a changed task and the recomputed status of its workflow.

        Returns:
            True when this transition completed the workflow
        """
        if workflow.status == WorkflowStatus.CANCELLED:
            # Late outcome of an in-flight task; recorded on the task only
            self.store.commit(workflow, [task])
            return False

        now = utc_now()
        self._activate(workflow, now)
        previous_status = workflow.status
        completed = self._settle(workflow, tasks, now)

        if completed:
            with self._employee_status(workflow.employee_id, _COMPLETED_STATUS[workflow.kind]):
                self.store.commit(workflow, [task])
            logger.info(f"Workflow {workflow.id} completed")
        else:
            self.store.commit(workflow, [task])
            if workflow.status != previous_status:
                logger.info(
                    f"Workflow {workflow.id} moved from {previous_status.value} to {workflow.status.value}"
                )
        return completed

    def _release_claim(self, task_id: str, message: str):
        """Mark a claimed task FAILED so it can be retried or skipped."""
        try:
            with self.store.transaction():
                task, workflow, tasks = self._load_task(task_id, allow_terminal=True)
                task.is_running = False
                task.status = TaskStatus.FAILED
                task.status_message = message
                # A FAILED task never completes the workflow, so no directory update runs
                self._commit_task_transition(workflow, tasks, task)
        except (LifecycleError, OSError) as e:
            logger.error(f"Could not release task {task_id}: {e}")

    def _audit_completion(self, workflow: Workflow, completed: bool, actor: Optional[str]):
        if completed:
            self._audit(AuditAction.WORKFLOW_COMPLETED, workflow, actor=actor or SYSTEM_ACTOR)

    @contextmanager
    def _employee_status(self, employee_id: str, status: EmployeeStatus):
        """Move the employee to a lifecycle status, reverting it if the block raises."""
        previous = self.directory.get_profile(employee_id).status
        self.directory.set_lifecycle_status(employee_id, status)
        try:
            yield
        except Exception:
            self.directory.set_lifecycle_status(employee_id, previous)
            raise

    def _audit(self, action: AuditAction, workflow: Workflow, task: Optional[Task] = None,
               actor: Optional[str] = None, success: bool = True, message: Optional[str] = None,
               **metadata):
        if self.audit_logger is None:
            return

        record = AuditRecord(
            id=str(uuid.uuid4()),
            action=action,
            employee_id=workflow.employee_id,
            workflow_id=workflow.id,
            task_id=task.id if task else None,
            actor=actor,
            success=success,
            message=message,
            metadata={"kind": workflow.kind.value, "status": workflow.status.value, **metadata},
        )
        try:
            self.audit_logger.log_event(record)
        except OSError as e:
            logger.error(f"Failed to record audit event {action.value} for workflow {workflow.id}: {e}")

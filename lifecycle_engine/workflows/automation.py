"""
Automation Executor for the Lifecycle Engine.

Dispatches an AUTOMATED task to the identity provider or to the connector
registered for the task's app type. Every failure, whether reported by the
connector or raised from it, comes back as an AutomationError on the outcome;
execute() itself never raises.
"""

import logging
from typing import Any, Callable, Dict, Optional

from ..connectors.base_connector import AppConnector, ConnectorResult, IdentityProviderAdapter
from ..engine.task_catalog import DEFAULT_TRANSFER_SCOPES
from ..errors import AutomationError
from ..models import GOOGLE_WORKSPACE_APP_TYPE, App, AutomationType, EmployeeProfile, Task, Workflow

logger = logging.getLogger(__name__)


class AutomationOutcome:
    """Result of executing one automated task."""

    def __init__(self, success: bool, error: Optional[AutomationError] = None,
                 data: Optional[Any] = None):
        self.success = success
        self.error = error
        self.data = data

    @classmethod
    def ok(cls, data: Optional[Any] = None) -> "AutomationOutcome":
        return cls(True, data=data)

    @classmethod
    def failed(cls, message: str, automation_type: Optional[str] = None) -> "AutomationOutcome":
        return cls(False, error=AutomationError(message, automation_type))

    def __bool__(self):
        return self.success


class AutomationExecutor:
    """Runs the side effect bound to an AUTOMATED task."""

    def __init__(
        self,
        identity_provider: IdentityProviderAdapter,
        app_connectors: Optional[Dict[str, AppConnector]] = None,
    ):
        """
        Initialize the executor.

        Args:
            identity_provider: Adapter for GOOGLE_WORKSPACE operations
            app_connectors: Connectors for other app types, keyed by App.type
        """
        self.identity_provider = identity_provider
        self.app_connectors: Dict[str, AppConnector] = dict(app_connectors or {})

        self._handlers: Dict[AutomationType, Callable[[Task, Workflow, EmployeeProfile], ConnectorResult]] = {
            AutomationType.GOOGLE_PROVISION_ACCOUNT: self._provision_account,
            AutomationType.GOOGLE_SUSPEND_ACCOUNT: self._suspend_account,
            AutomationType.GOOGLE_DELETE_ACCOUNT: self._delete_account,
            AutomationType.GOOGLE_TRANSFER_OWNERSHIP: self._transfer_ownership,
            AutomationType.GOOGLE_CREATE_ALIAS: self._create_alias,
            AutomationType.PROVISION_APP: self._provision_app,
            AutomationType.DEPROVISION_APP: self._deprovision_app,
        }

    def register_connector(self, app_type: str, connector: AppConnector):
        """Register the connector handling an app type."""
        self.app_connectors[app_type] = connector

    def execute(self, task: Task, workflow: Workflow, profile: EmployeeProfile) -> AutomationOutcome:
        """
        Execute an automated task.

        Args:
            task: Task to execute (its automation params are bound at start)
            workflow: Workflow the task belongs to
            profile: Current profile of the workflow's employee

        Returns:
            AutomationOutcome; failures carry an AutomationError
        """
        automation_type = task.automation_type.value if task.automation_type else None
        handler = self._handlers.get(task.automation_type)
        if handler is None:
            return AutomationOutcome.failed(
                f"No automation bound to task {task.name}", automation_type
            )

        try:
            result = handler(task, workflow, profile)
        except AutomationError as e:
            logger.warning(f"Automation {automation_type} for task {task.id} rejected: {e.message}")
            return AutomationOutcome(False, error=e)
        except Exception as e:
            logger.error(f"Exception during {automation_type} for task {task.id}: {e}")
            return AutomationOutcome.failed(str(e) or e.__class__.__name__, automation_type)

        if result.success:
            logger.info(f"Automation {automation_type} succeeded for task {task.id}: {result.message}")
            return AutomationOutcome.ok(result.data)

        message = result.message or result.error or "Unknown error"
        logger.warning(f"Automation {automation_type} failed for task {task.id}: {message}")
        return AutomationOutcome.failed(message, automation_type)

    def _require_work_email(self, task: Task, profile: EmployeeProfile) -> str:
        if not profile.work_email:
            raise AutomationError(
                f"Employee {profile.employee_id} has no work email",
                task.automation_type.value,
            )
        return profile.work_email

    def _require_param(self, task: Task, key: str) -> Any:
        value = task.automation_params.get(key)
        if not value:
            raise AutomationError(
                f"Task {task.name} is missing parameter {key}", task.automation_type.value
            )
        return value

    def _provision_account(self, task, workflow, profile) -> ConnectorResult:
        return self.identity_provider.provision_account(profile)

    def _suspend_account(self, task, workflow, profile) -> ConnectorResult:
        return self.identity_provider.suspend_account(self._require_work_email(task, profile))

    def _delete_account(self, task, workflow, profile) -> ConnectorResult:
        return self.identity_provider.delete_account(self._require_work_email(task, profile))

    def _transfer_ownership(self, task, workflow, profile) -> ConnectorResult:
        from_email = self._require_work_email(task, profile)
        to_email = self._require_param(task, "to_email")
        scopes = task.automation_params.get("scopes") or list(DEFAULT_TRANSFER_SCOPES)
        return self.identity_provider.transfer_ownership(from_email, to_email, scopes)

    def _create_alias(self, task, workflow, profile) -> ConnectorResult:
        from_email = self._require_work_email(task, profile)
        to_email = self._require_param(task, "alias_to_email")
        return self.identity_provider.create_alias(from_email, to_email)

    def _provision_app(self, task, workflow, profile) -> ConnectorResult:
        app = self._bound_app(task)
        if app.type == GOOGLE_WORKSPACE_APP_TYPE:
            return self.identity_provider.provision_account(profile)
        return self._connector_for(task, app).provision_user(profile, app)

    def _deprovision_app(self, task, workflow, profile) -> ConnectorResult:
        app = self._bound_app(task)
        if app.type == GOOGLE_WORKSPACE_APP_TYPE:
            return self.identity_provider.suspend_account(self._require_work_email(task, profile))
        return self._connector_for(task, app).deprovision_user(profile, app)

    def _bound_app(self, task: Task) -> App:
        params = task.automation_params
        app_type = self._require_param(task, "app_type")
        app_id = params.get("app_id") or app_type
        return App(id=app_id, name=params.get("app_name") or app_id, type=app_type)

    def _connector_for(self, task: Task, app: App) -> AppConnector:
        connector = self.app_connectors.get(app.type)
        if connector is None:
            raise AutomationError(
                f"No connector available for app type {app.type}", task.automation_type.value
            )
        return connector

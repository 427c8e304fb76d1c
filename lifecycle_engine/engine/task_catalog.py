"""
Task Catalog for the Lifecycle Engine.

Produces the ordered task definitions a workflow is created with: the static
templates for the workflow kind, plus app-provisioning tasks derived from the
provisioning rules (onboarding) or from the identity-provider options and the
employee's existing app accounts (offboarding).
"""

import logging
from typing import Iterable, List, Mapping, Optional, Set

from ..models import (
    GOOGLE_WORKSPACE_APP_TYPE,
    App,
    AutomationType,
    EmployeeProfile,
    IdentityProviderConfig,
    ProvisioningRule,
    TaskDefinition,
    TaskType,
    WorkflowKind,
)
from .provisioning_policy import ProvisioningPolicy, default_static_tasks
from .rule_matcher import select_applicable_apps

logger = logging.getLogger(__name__)

DEFAULT_TRANSFER_SCOPES = ["drive"]

_GOOGLE_AUTOMATIONS = {
    AutomationType.GOOGLE_PROVISION_ACCOUNT,
    AutomationType.GOOGLE_SUSPEND_ACCOUNT,
    AutomationType.GOOGLE_DELETE_ACCOUNT,
    AutomationType.GOOGLE_TRANSFER_OWNERSHIP,
    AutomationType.GOOGLE_CREATE_ALIAS,
}


def _covered_apps(definitions: Iterable[TaskDefinition]) -> Set[str]:
    """App ids and app types already handled by a list of task definitions."""
    covered: Set[str] = set()
    for definition in definitions:
        params = definition.automation_params
        if params.get("app_id"):
            covered.add(params["app_id"])
        if params.get("app_type"):
            covered.add(params["app_type"])
        if definition.automation_type in _GOOGLE_AUTOMATIONS:
            covered.add(GOOGLE_WORKSPACE_APP_TYPE)
    return covered


def _app_params(app: App) -> dict:
    return {"app_id": app.id, "app_type": app.type, "app_name": app.name}


def _identity_provider_tasks(
    profile: EmployeeProfile, options: IdentityProviderConfig
) -> List[TaskDefinition]:
    tasks = []

    if options.requests_transfer:
        tasks.append(
            TaskDefinition(
                name=f"Transfer Google Workspace data to {options.transfer_to_email}",
                type=TaskType.AUTOMATED,
                automation_type=AutomationType.GOOGLE_TRANSFER_OWNERSHIP,
                automation_params={
                    "to_email": options.transfer_to_email,
                    "scopes": list(options.transfer_scopes or DEFAULT_TRANSFER_SCOPES),
                },
            )
        )

    if options.delete_account:
        tasks.append(
            TaskDefinition(
                name="Delete Google Workspace account",
                type=TaskType.AUTOMATED,
                automation_type=AutomationType.GOOGLE_DELETE_ACCOUNT,
            )
        )

    if options.requests_alias:
        tasks.append(
            TaskDefinition(
                name=f"Route {profile.work_email or 'work email'} to {options.alias_to_email}",
                type=TaskType.AUTOMATED,
                automation_type=AutomationType.GOOGLE_CREATE_ALIAS,
                automation_params={"alias_to_email": options.alias_to_email},
            )
        )

    return tasks


def build_task_set(
    kind: WorkflowKind,
    profile: EmployeeProfile,
    rules: Iterable[ProvisioningRule],
    static_tasks: Optional[List[TaskDefinition]] = None,
    identity_provider: Optional[IdentityProviderConfig] = None,
    apps: Optional[Mapping[str, App]] = None,
) -> List[TaskDefinition]:
    """
    Build the ordered task definitions for a new workflow.

    Args:
        kind: ONBOARDING or OFFBOARDING
        profile: Employee profile the workflow is for
        rules: Provisioning rules across all apps
        static_tasks: Static templates; defaults to the built-in list for the kind
        identity_provider: Offboarding identity-provider options
        apps: Known apps by id, used to name deprovisioning tasks for the
              employee's existing app accounts

    Returns:
        Ordered list of TaskDefinition
    """
    if static_tasks is None:
        static_tasks = default_static_tasks(kind)

    definitions = [definition.model_copy(deep=True) for definition in static_tasks]

    if kind == WorkflowKind.ONBOARDING:
        covered = _covered_apps(definitions)
        for app in select_applicable_apps(profile, rules).matched:
            if app.id in covered or app.type in covered:
                continue
            definitions.append(
                TaskDefinition(
                    name=f"Provision {app.name} access",
                    type=TaskType.AUTOMATED,
                    automation_type=AutomationType.PROVISION_APP,
                    automation_params=_app_params(app),
                )
            )
            covered.add(app.id)
    else:
        definitions.extend(
            _identity_provider_tasks(profile, identity_provider or IdentityProviderConfig())
        )

        covered = _covered_apps(definitions)
        known_apps = apps or {}
        for app_id in profile.app_accounts:
            app = known_apps.get(app_id)
            if app is None:
                logger.warning(f"Employee {profile.employee_id} has an account in unknown app {app_id}")
                continue
            if app.id in covered or app.type in covered:
                continue
            definitions.append(
                TaskDefinition(
                    name=f"Deprovision {app.name} account",
                    type=TaskType.AUTOMATED,
                    automation_type=AutomationType.DEPROVISION_APP,
                    automation_params=_app_params(app),
                )
            )
            covered.add(app.id)

    logger.debug(f"Built {len(definitions)} {kind.value} tasks for {profile.employee_id}")
    return definitions


class TaskCatalog:
    """Task-set builder bound to a provisioning policy."""

    def __init__(self, policy: Optional[ProvisioningPolicy] = None):
        self.policy = policy or ProvisioningPolicy()

    def static_tasks(self, kind: WorkflowKind) -> List[TaskDefinition]:
        configured = self.policy.get_task_templates(kind)
        if configured is not None:
            return configured
        return default_static_tasks(kind)

    def build_for(
        self,
        kind: WorkflowKind,
        profile: EmployeeProfile,
        identity_provider: Optional[IdentityProviderConfig] = None,
    ) -> List[TaskDefinition]:
        """Build the task set for a profile using the current policy snapshot."""
        return build_task_set(
            kind,
            profile,
            self.policy.get_rules(),
            static_tasks=self.static_tasks(kind),
            identity_provider=identity_provider,
            apps=self.policy.apps,
        )

"""
Provisioning Policy for the Lifecycle Engine.

This module reads the provisioning policy file (integrated apps, their
provisioning rules and optional task templates) and exposes it as input for
task-set generation. Task templates can also be managed at runtime; changes
are written back to the policy file.
"""

import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..errors import NotFoundError, ValidationError
from ..models import (
    GOOGLE_WORKSPACE_APP_TYPE,
    App,
    AutomationType,
    ProvisioningRule,
    TaskDefinition,
    TaskType,
    WorkflowKind,
)

logger = logging.getLogger(__name__)

DEFAULT_ONBOARDING_TASKS = [
    TaskDefinition(
        name="Create Google Workspace account",
        type=TaskType.AUTOMATED,
        automation_type=AutomationType.GOOGLE_PROVISION_ACCOUNT,
        automation_params={"app_type": GOOGLE_WORKSPACE_APP_TYPE},
    ),
    TaskDefinition(name="Send welcome communication", type=TaskType.MANUAL),
    TaskDefinition(name="Confirm laptop/hardware has been ordered", type=TaskType.MANUAL),
    TaskDefinition(name="Schedule orientation meeting", type=TaskType.MANUAL),
    TaskDefinition(name="Add to team calendar", type=TaskType.MANUAL),
]

DEFAULT_OFFBOARDING_TASKS = [
    TaskDefinition(name="Deactivate building/office access", type=TaskType.MANUAL),
    TaskDefinition(name="Collect company devices", type=TaskType.MANUAL),
    TaskDefinition(name="Hand over final pay and benefits", type=TaskType.MANUAL),
    TaskDefinition(name="Exit interview", type=TaskType.MANUAL),
    TaskDefinition(
        name="Suspend Google Workspace account",
        type=TaskType.AUTOMATED,
        automation_type=AutomationType.GOOGLE_SUSPEND_ACCOUNT,
        automation_params={"app_type": GOOGLE_WORKSPACE_APP_TYPE},
    ),
]

# App automation an integration template runs, per workflow kind
_APP_AUTOMATION = {
    WorkflowKind.ONBOARDING: AutomationType.PROVISION_APP,
    WorkflowKind.OFFBOARDING: AutomationType.DEPROVISION_APP,
}

MOVE_DIRECTIONS = ("up", "down")


def default_static_tasks(kind: WorkflowKind) -> List[TaskDefinition]:
    """Built-in static templates for a workflow kind."""
    templates = DEFAULT_ONBOARDING_TASKS if kind == WorkflowKind.ONBOARDING else DEFAULT_OFFBOARDING_TASKS
    return [template.model_copy(deep=True) for template in templates]


def _templates_key(kind: WorkflowKind) -> str:
    return f"{kind.value.lower()}_tasks"


def _assign_ids(kind: WorkflowKind, templates: List[TaskDefinition]) -> List[TaskDefinition]:
    """Give templates without an id a stable, position-based one."""
    for index, template in enumerate(templates):
        if not template.id:
            template.id = f"{kind.value.lower()}-{index + 1}"
    return templates


class ProvisioningPolicy:
    """
    Holds the integrated apps, provisioning rules and task templates.

    Reads configuration from a YAML file of the form::

        apps:
          - {id: slack, name: Slack, type: SLACK}
        rules:
          - {id: slack-eng, app: slack, condition: {department: Engineering}}
        onboarding_tasks:
          - {name: Schedule orientation meeting, type: MANUAL}
        offboarding_tasks:
          - {id: exit-interview, name: Exit interview, type: MANUAL, is_active: true}

    Task template lists are optional; the built-in defaults apply while a list
    is absent. The first change to a kind's templates copies the defaults into
    the policy so they can be edited.
    """

    def __init__(
        self,
        policy_file: Optional[Union[str, Path]] = None,
        apps: Optional[List[App]] = None,
        rules: Optional[List[ProvisioningRule]] = None,
    ):
        """
        Initialize the provisioning policy.

        Args:
            policy_file: YAML policy file. If None, the policy is built from
                         the apps and rules arguments only and template
                         changes are kept in memory.
            apps: Apps to register in addition to the file contents
            rules: Rules to register in addition to the file contents
        """
        self.policy_file = Path(policy_file) if policy_file else None
        self.apps: Dict[str, App] = {}
        self.rules: List[ProvisioningRule] = []
        self.task_templates: Dict[WorkflowKind, List[TaskDefinition]] = {}
        self._lock = threading.RLock()

        self._extra_apps = list(apps or [])
        self._extra_rules = list(rules or [])

        self._load_configuration()

    def _load_configuration(self):
        """Load apps, rules and templates from the policy file."""
        self.apps = {}
        self.rules = []
        self.task_templates = {}

        if self.policy_file:
            if self.policy_file.exists():
                with open(self.policy_file, encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
                self._apply_policy_data(data)
                logger.info(f"Loaded provisioning policy from {self.policy_file}")
            else:
                logger.warning(f"Provisioning policy file not found: {self.policy_file}")

        for app in self._extra_apps:
            self.apps[app.id] = app
        for rule in self._extra_rules:
            self.apps.setdefault(rule.app.id, rule.app)
            self.rules.append(rule)

        logger.debug(
            f"Provisioning policy has {len(self.apps)} apps and {len(self.rules)} rules"
        )

    def _apply_policy_data(self, data: Dict[str, Any]):
        for app_data in data.get("apps", []):
            app = App(**app_data)
            self.apps[app.id] = app

        for index, rule_data in enumerate(data.get("rules", [])):
            app_id = rule_data.get("app")
            app = self.apps.get(app_id)
            if app is None:
                raise ValueError(f"Provisioning rule references unknown app: {app_id}")

            self.rules.append(
                ProvisioningRule(
                    id=str(rule_data.get("id") or f"{app_id}-rule-{index + 1}"),
                    app=app,
                    condition=rule_data.get("condition") or {},
                    is_active=rule_data.get("is_active", True),
                )
            )

        for kind in WorkflowKind:
            key = _templates_key(kind)
            if key in data:
                templates = [TaskDefinition(**template) for template in data[key] or []]
                self.task_templates[kind] = _assign_ids(kind, templates)

    def get_app(self, app_id: str) -> Optional[App]:
        """Get an app by id."""
        return self.apps.get(app_id)

    def get_apps(self) -> List[App]:
        """Get all registered apps."""
        return list(self.apps.values())

    def get_rules(self, active_only: bool = False) -> List[ProvisioningRule]:
        """Get all provisioning rules, optionally only the active ones."""
        if active_only:
            return [rule for rule in self.rules if rule.is_active]
        return list(self.rules)

    def get_rules_for_app(self, app_id: str) -> List[ProvisioningRule]:
        """Get the rules owned by one app."""
        return [rule for rule in self.rules if rule.app.id == app_id]

    def get_task_templates(self, kind: WorkflowKind) -> Optional[List[TaskDefinition]]:
        """
        Get the active configured task templates for a workflow kind.

        Returns:
            Active templates in display order, or None when the kind has no
            configured list and the built-in defaults apply
        """
        with self._lock:
            templates = self.task_templates.get(kind)
            if templates is None:
                return None
            return [template.model_copy(deep=True) for template in templates if template.is_active]

    def list_task_templates(self, kind: WorkflowKind) -> List[TaskDefinition]:
        """Get every template of a kind, inactive ones included, in display order."""
        with self._lock:
            return self._editable_templates(kind)

    # Template management

    def add_task_template(
        self,
        kind: WorkflowKind,
        name: str,
        task_type: TaskType = TaskType.MANUAL,
        description: Optional[str] = None,
        app_id: Optional[str] = None,
    ) -> TaskDefinition:
        """
        Append a task template to a workflow kind.

        Args:
            kind: Workflow kind the template belongs to
            name: Task name shown to operators
            task_type: MANUAL, or AUTOMATED for an app integration task
            description: Optional longer description
            app_id: Integrated app an AUTOMATED template provisions
                    (onboarding) or deprovisions (offboarding)

        Returns:
            The new template

        Raises:
            ValidationError: Blank name or missing/unknown integration app
        """
        kind = WorkflowKind(kind)
        template = TaskDefinition(
            id=f"{kind.value.lower()}-{uuid.uuid4().hex[:8]}",
            name=self._validated_name(name),
            type=TaskType.MANUAL,
            description=_clean_description(description),
        )
        if TaskType(task_type) == TaskType.AUTOMATED:
            self._bind_app(template, kind, app_id)

        with self._lock:
            templates = self._editable_templates(kind)
            templates.append(template)
            self._save(kind, templates)

        logger.info(f"Added {kind.value} task template {template.id} ({template.name})")
        return template.model_copy(deep=True)

    def update_task_template(
        self,
        kind: WorkflowKind,
        template_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
        task_type: Optional[TaskType] = None,
        app_id: Optional[str] = None,
    ) -> TaskDefinition:
        """
        Change a task template. Arguments left as None keep their value; an
        empty description clears it.

        Raises:
            NotFoundError: Unknown template id
            ValidationError: Blank name or missing/unknown integration app
        """
        kind = WorkflowKind(kind)
        with self._lock:
            templates = self._editable_templates(kind)
            index = self._index_of(templates, template_id)
            template = templates[index].model_copy(deep=True)

            if name is not None:
                template.name = self._validated_name(name)
            if description is not None:
                template.description = _clean_description(description)
            if is_active is not None:
                template.is_active = is_active
            if task_type is not None:
                if TaskType(task_type) == TaskType.MANUAL:
                    template.type = TaskType.MANUAL
                    template.automation_type = None
                    template.automation_params = {}
                else:
                    self._bind_app(template, kind, app_id)

            templates[index] = template
            self._save(kind, templates)

        logger.info(f"Updated {kind.value} task template {template_id}")
        return template.model_copy(deep=True)

    def deactivate_task_template(self, kind: WorkflowKind, template_id: str) -> TaskDefinition:
        """Stop creating tasks from a template without removing it."""
        return self.update_task_template(kind, template_id, is_active=False)

    def activate_task_template(self, kind: WorkflowKind, template_id: str) -> TaskDefinition:
        """Resume creating tasks from a template."""
        return self.update_task_template(kind, template_id, is_active=True)

    def remove_task_template(self, kind: WorkflowKind, template_id: str):
        """Delete a task template."""
        kind = WorkflowKind(kind)
        with self._lock:
            templates = self._editable_templates(kind)
            del templates[self._index_of(templates, template_id)]
            self._save(kind, templates)

        logger.info(f"Removed {kind.value} task template {template_id}")

    def move_task_template(self, kind: WorkflowKind, template_id: str,
                           direction: str) -> List[TaskDefinition]:
        """
        Swap a template with its neighbour above or below.

        Moving the first template up or the last one down changes nothing.

        Returns:
            All templates of the kind in their new order
        """
        kind = WorkflowKind(kind)
        direction = (direction or "").lower()
        if direction not in MOVE_DIRECTIONS:
            raise ValidationError(f"Direction must be one of: {', '.join(MOVE_DIRECTIONS)}")

        with self._lock:
            templates = self._editable_templates(kind)
            index = self._index_of(templates, template_id)
            neighbour = index - 1 if direction == "up" else index + 1

            if 0 <= neighbour < len(templates):
                templates[index], templates[neighbour] = templates[neighbour], templates[index]
                self._save(kind, templates)
                logger.info(f"Moved {kind.value} task template {template_id} {direction}")

            return [template.model_copy(deep=True) for template in templates]

    def reset_task_templates(self, kind: WorkflowKind) -> List[TaskDefinition]:
        """Replace a kind's templates with the built-in defaults."""
        kind = WorkflowKind(kind)
        with self._lock:
            templates = _assign_ids(kind, default_static_tasks(kind))
            self._save(kind, templates)

        logger.info(f"Reset {kind.value} task templates to defaults")
        return [template.model_copy(deep=True) for template in templates]

    def _editable_templates(self, kind: WorkflowKind) -> List[TaskDefinition]:
        """Working copy of a kind's templates, materializing the defaults if needed."""
        templates = self.task_templates.get(kind)
        if templates is None:
            return _assign_ids(kind, default_static_tasks(kind))
        return _assign_ids(kind, [template.model_copy(deep=True) for template in templates])

    def _index_of(self, templates: List[TaskDefinition], template_id: str) -> int:
        for index, template in enumerate(templates):
            if template.id == template_id:
                return index
        raise NotFoundError("Task template", template_id)

    def _validated_name(self, name: Optional[str]) -> str:
        if not name or not name.strip():
            raise ValidationError("Task template name is required")
        return name.strip()

    def _bind_app(self, template: TaskDefinition, kind: WorkflowKind, app_id: Optional[str]):
        """Turn a template into an app integration task."""
        if not app_id:
            raise ValidationError("Select an integration app for an automated task template")
        app = self.get_app(app_id)
        if app is None:
            raise ValidationError(f"Unknown integration app: {app_id}")

        template.type = TaskType.AUTOMATED
        template.automation_type = _APP_AUTOMATION[kind]
        template.automation_params = {"app_id": app.id, "app_type": app.type, "app_name": app.name}

    def _save(self, kind: WorkflowKind, templates: List[TaskDefinition]):
        """
        Write a kind's templates to the policy file, then make them current.

        The rest of the file is kept as it is on disk. Nothing changes in
        memory when the write fails.
        """
        if self.policy_file:
            data: Dict[str, Any] = {}
            if self.policy_file.exists():
                with open(self.policy_file, encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}

            data[_templates_key(kind)] = [
                template.model_dump(mode="json", exclude_none=True) for template in templates
            ]

            self.policy_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.policy_file.with_suffix(self.policy_file.suffix + ".tmp")
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    yaml.safe_dump(data, f, sort_keys=False)
                os.replace(tmp_path, self.policy_file)
            except OSError as e:
                logger.error(f"Failed to save task templates to {self.policy_file}: {e}")
                raise

        self.task_templates[kind] = templates

    def reload_config(self):
        """Reload the policy file (useful for dynamic updates)."""
        logger.info("Reloading provisioning policy")
        with self._lock:
            self._load_configuration()


def _clean_description(description: Optional[str]) -> Optional[str]:
    if description is None or not description.strip():
        return None
    return description.strip()

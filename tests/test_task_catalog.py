"""
Tests for task-set generation and the provisioning policy file.
"""

import pytest

from lifecycle_engine.engine.provisioning_policy import (
    DEFAULT_OFFBOARDING_TASKS,
    DEFAULT_ONBOARDING_TASKS,
    ProvisioningPolicy,
)
from lifecycle_engine.engine.task_catalog import TaskCatalog, build_task_set
from lifecycle_engine.errors import NotFoundError, ValidationError
from lifecycle_engine.models import (
    AutomationType,
    IdentityProviderConfig,
    ProvisioningRule,
    TaskDefinition,
    TaskType,
    WorkflowKind,
)

from .conftest import GITHUB_APP, GOOGLE_APP, SLACK_APP

APPS = {app.id: app for app in [GOOGLE_APP, SLACK_APP, GITHUB_APP]}


class TestOnboardingTaskSet:

    def test_static_tasks_then_matched_apps(self, engineer, rules):
        tasks = build_task_set(WorkflowKind.ONBOARDING, engineer, rules)

        static_names = [t.name for t in DEFAULT_ONBOARDING_TASKS]
        assert [t.name for t in tasks[:len(static_names)]] == static_names
        assert [t.name for t in tasks[len(static_names):]] == [
            "Provision Slack access",
            "Provision GitHub access",
        ]

        slack_task = tasks[len(static_names)]
        assert slack_task.type == TaskType.AUTOMATED
        assert slack_task.automation_type == AutomationType.PROVISION_APP
        assert slack_task.automation_params == {"app_id": "slack", "app_type": "SLACK", "app_name": "Slack"}

    def test_unmatched_apps_get_no_task(self, new_hire, rules):
        tasks = build_task_set(WorkflowKind.ONBOARDING, new_hire, rules)
        names = [t.name for t in tasks]
        assert "Provision GitHub access" in names
        assert "Provision Slack access" not in names

    def test_workspace_app_covered_by_static_account_task(self, engineer):
        rules = [ProvisioningRule(id="g", app=GOOGLE_APP, condition={})]
        tasks = build_task_set(WorkflowKind.ONBOARDING, engineer, rules)
        assert len(tasks) == len(DEFAULT_ONBOARDING_TASKS)

    def test_custom_static_tasks(self, engineer, rules):
        static = [TaskDefinition(name="Say hello", type=TaskType.MANUAL)]
        tasks = build_task_set(WorkflowKind.ONBOARDING, engineer, rules, static_tasks=static)
        assert [t.name for t in tasks] == ["Say hello", "Provision Slack access", "Provision GitHub access"]

    def test_defaults_are_not_mutated(self, engineer, rules):
        tasks = build_task_set(WorkflowKind.ONBOARDING, engineer, rules)
        tasks[0].automation_params["app_type"] = "CHANGED"
        assert DEFAULT_ONBOARDING_TASKS[0].automation_params["app_type"] == "GOOGLE_WORKSPACE"


class TestOffboardingTaskSet:

    def test_static_tasks_and_app_deprovisioning(self, engineer, rules):
        tasks = build_task_set(WorkflowKind.OFFBOARDING, engineer, rules, apps=APPS)

        static_names = [t.name for t in DEFAULT_OFFBOARDING_TASKS]
        assert [t.name for t in tasks[:len(static_names)]] == static_names
        assert [t.name for t in tasks[len(static_names):]] == [
            "Deprovision Slack account",
            "Deprovision GitHub account",
        ]
        assert all(t.automation_type == AutomationType.DEPROVISION_APP for t in tasks[len(static_names):])

    def test_identity_provider_tasks_bind_parameters(self, engineer, rules):
        options = IdentityProviderConfig(
            delete_account=True,
            transfer_to_email="manager@example.com",
            transfer_scopes=["drive", "calendar"],
            alias_to_email="manager@example.com",
        )
        tasks = build_task_set(WorkflowKind.OFFBOARDING, engineer, rules, identity_provider=options)
        by_type = {t.automation_type: t for t in tasks if t.automation_type}

        transfer = by_type[AutomationType.GOOGLE_TRANSFER_OWNERSHIP]
        assert transfer.automation_params == {"to_email": "manager@example.com", "scopes": ["drive", "calendar"]}
        assert AutomationType.GOOGLE_DELETE_ACCOUNT in by_type
        assert by_type[AutomationType.GOOGLE_CREATE_ALIAS].automation_params == {
            "alias_to_email": "manager@example.com"
        }

        order = [t.automation_type for t in tasks if t.automation_type in (
            AutomationType.GOOGLE_TRANSFER_OWNERSHIP,
            AutomationType.GOOGLE_DELETE_ACCOUNT,
            AutomationType.GOOGLE_CREATE_ALIAS,
        )]
        assert order == [
            AutomationType.GOOGLE_TRANSFER_OWNERSHIP,
            AutomationType.GOOGLE_DELETE_ACCOUNT,
            AutomationType.GOOGLE_CREATE_ALIAS,
        ]

    def test_transfer_scopes_default_to_drive(self, engineer):
        options = IdentityProviderConfig(transfer_to_email="manager@example.com")
        tasks = build_task_set(WorkflowKind.OFFBOARDING, engineer, [], identity_provider=options)
        transfer = next(t for t in tasks if t.automation_type == AutomationType.GOOGLE_TRANSFER_OWNERSHIP)
        assert transfer.automation_params["scopes"] == ["drive"]

    def test_no_identity_provider_options(self, engineer):
        tasks = build_task_set(WorkflowKind.OFFBOARDING, engineer, [])
        assert len(tasks) == len(DEFAULT_OFFBOARDING_TASKS)

    def test_unknown_app_account_is_ignored(self, engineer):
        tasks = build_task_set(WorkflowKind.OFFBOARDING, engineer, [], apps={"slack": SLACK_APP})
        assert [t.name for t in tasks[len(DEFAULT_OFFBOARDING_TASKS):]] == ["Deprovision Slack account"]


class TestProvisioningPolicy:

    @pytest.fixture
    def policy_file(self, tmp_path):
        path = tmp_path / "provisioning.yaml"
        path.write_text(
            """
apps:
  - {id: slack, name: Slack, type: SLACK}
  - {id: github, name: GitHub, type: GITHUB}
rules:
  - {id: slack-all, app: slack, condition: {}}
  - {app: github, condition: {department: Engineering}, is_active: false}
offboarding_tasks:
  - {name: Exit interview, type: MANUAL}
""",
            encoding="utf-8",
        )
        return path

    def test_loads_apps_rules_and_templates(self, policy_file):
        policy = ProvisioningPolicy(policy_file)

        assert [app.id for app in policy.get_apps()] == ["slack", "github"]
        assert len(policy.get_rules()) == 2
        assert [r.id for r in policy.get_rules(active_only=True)] == ["slack-all"]
        assert policy.get_rules_for_app("github")[0].id == "github-rule-2"
        assert [t.name for t in policy.get_task_templates(WorkflowKind.OFFBOARDING)] == ["Exit interview"]
        assert policy.get_task_templates(WorkflowKind.ONBOARDING) is None

    def test_rule_with_unknown_app(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("rules:\n  - {id: r, app: nope, condition: {}}\n", encoding="utf-8")
        with pytest.raises(ValueError, match="unknown app"):
            ProvisioningPolicy(path)

    def test_missing_file_gives_empty_policy(self, tmp_path):
        policy = ProvisioningPolicy(tmp_path / "missing.yaml")
        assert policy.get_apps() == []
        assert policy.get_rules() == []

    def test_catalog_uses_configured_templates(self, policy_file, engineer):
        catalog = TaskCatalog(ProvisioningPolicy(policy_file))

        offboarding = catalog.build_for(WorkflowKind.OFFBOARDING, engineer)
        assert [t.name for t in offboarding] == [
            "Exit interview",
            "Deprovision Slack account",
            "Deprovision GitHub account",
        ]

        onboarding = catalog.build_for(WorkflowKind.ONBOARDING, engineer)
        assert onboarding[-1].name == "Provision Slack access"
        assert "Provision GitHub access" not in [t.name for t in onboarding]

    def test_reload_config(self, policy_file):
        policy = ProvisioningPolicy(policy_file)
        policy_file.write_text("apps: []\n", encoding="utf-8")
        policy.reload_config()
        assert policy.get_apps() == []


class TestTaskTemplateManagement:
    """Runtime changes to task templates."""

    @pytest.fixture
    def policy_file(self, tmp_path):
        path = tmp_path / "provisioning.yaml"
        path.write_text(
            """
apps:
  - {id: slack, name: Slack, type: SLACK}
  - {id: github, name: GitHub, type: GITHUB}
rules:
  - {id: slack-all, app: slack, condition: {}}
offboarding_tasks:
  - {name: Collect company devices, type: MANUAL}
  - {name: Exit interview, type: MANUAL}
  - {name: Revoke VPN certificate, type: MANUAL}
""",
            encoding="utf-8",
        )
        return path

    @pytest.fixture
    def policy(self, policy_file):
        return ProvisioningPolicy(policy_file)

    def names(self, templates):
        return [t.name for t in templates]

    def test_loaded_templates_get_position_ids(self, policy):
        templates = policy.list_task_templates(WorkflowKind.OFFBOARDING)
        assert [t.id for t in templates] == ["offboarding-1", "offboarding-2", "offboarding-3"]

    def test_defaults_listed_until_changed(self, policy):
        templates = policy.list_task_templates(WorkflowKind.ONBOARDING)

        assert self.names(templates) == self.names(DEFAULT_ONBOARDING_TASKS)
        assert templates[0].id == "onboarding-1"
        assert policy.get_task_templates(WorkflowKind.ONBOARDING) is None

    def test_add_manual_template_is_persisted(self, policy, policy_file):
        added = policy.add_task_template(WorkflowKind.OFFBOARDING, "  Remove from payroll ", description=" ")

        assert added.name == "Remove from payroll"
        assert added.description is None
        assert added.type == TaskType.MANUAL

        reloaded = ProvisioningPolicy(policy_file)
        assert self.names(reloaded.list_task_templates(WorkflowKind.OFFBOARDING))[-1] == "Remove from payroll"
        assert reloaded.list_task_templates(WorkflowKind.OFFBOARDING)[-1].id == added.id
        assert [r.id for r in reloaded.get_rules()] == ["slack-all"]

    def test_first_change_copies_defaults(self, policy):
        policy.add_task_template(WorkflowKind.ONBOARDING, "Order business cards")

        names = self.names(policy.get_task_templates(WorkflowKind.ONBOARDING))
        assert names == self.names(DEFAULT_ONBOARDING_TASKS) + ["Order business cards"]

    @pytest.mark.parametrize("kind,automation_type", [
        (WorkflowKind.ONBOARDING, AutomationType.PROVISION_APP),
        (WorkflowKind.OFFBOARDING, AutomationType.DEPROVISION_APP),
    ])
    def test_add_integration_template(self, policy, kind, automation_type):
        added = policy.add_task_template(kind, "GitHub seat", task_type=TaskType.AUTOMATED, app_id="github")

        assert added.type == TaskType.AUTOMATED
        assert added.automation_type == automation_type
        assert added.automation_params == {"app_id": "github", "app_type": "GITHUB", "app_name": "GitHub"}

    def test_integration_template_replaces_derived_app_task(self, policy, engineer):
        policy.add_task_template(WorkflowKind.OFFBOARDING, "Remove GitHub seat",
                                 task_type=TaskType.AUTOMATED, app_id="github")

        names = self.names(TaskCatalog(policy).build_for(WorkflowKind.OFFBOARDING, engineer))

        assert "Remove GitHub seat" in names
        assert "Deprovision GitHub account" not in names

    @pytest.mark.parametrize("kwargs,message", [
        ({"name": "   "}, "name is required"),
        ({"name": "Seat", "task_type": TaskType.AUTOMATED}, "Select an integration app"),
        ({"name": "Seat", "task_type": TaskType.AUTOMATED, "app_id": "jira"}, "Unknown integration app"),
    ])
    def test_add_rejects_invalid_input(self, policy, kwargs, message):
        with pytest.raises(ValidationError, match=message):
            policy.add_task_template(WorkflowKind.OFFBOARDING, **kwargs)
        assert len(policy.list_task_templates(WorkflowKind.OFFBOARDING)) == 3

    def test_deactivated_template_creates_no_task(self, policy, engineer):
        policy.deactivate_task_template(WorkflowKind.OFFBOARDING, "offboarding-2")

        assert len(policy.list_task_templates(WorkflowKind.OFFBOARDING)) == 3
        assert self.names(policy.get_task_templates(WorkflowKind.OFFBOARDING)) == [
            "Collect company devices",
            "Revoke VPN certificate",
        ]
        assert "Exit interview" not in self.names(TaskCatalog(policy).build_for(WorkflowKind.OFFBOARDING, engineer))

        policy.activate_task_template(WorkflowKind.OFFBOARDING, "offboarding-2")
        assert len(policy.get_task_templates(WorkflowKind.OFFBOARDING)) == 3

    def test_update_template(self, policy):
        policy.update_task_template(WorkflowKind.OFFBOARDING, "offboarding-3",
                                    task_type=TaskType.AUTOMATED, app_id="slack")
        updated = policy.update_task_template(
            WorkflowKind.OFFBOARDING, "offboarding-3",
            name="Revoke VPN and Slack", description="Both at once", task_type=TaskType.MANUAL,
        )

        assert updated.name == "Revoke VPN and Slack"
        assert updated.description == "Both at once"
        assert updated.type == TaskType.MANUAL
        assert updated.automation_type is None
        assert updated.automation_params == {}

    def test_move_template(self, policy):
        moved = policy.move_task_template(WorkflowKind.OFFBOARDING, "offboarding-3", "up")
        assert self.names(moved) == ["Collect company devices", "Revoke VPN certificate", "Exit interview"]

        moved = policy.move_task_template(WorkflowKind.OFFBOARDING, "offboarding-1", "DOWN")
        assert self.names(moved)[:2] == ["Revoke VPN certificate", "Collect company devices"]

    def test_move_past_either_end_changes_nothing(self, policy):
        before = self.names(policy.list_task_templates(WorkflowKind.OFFBOARDING))

        assert self.names(policy.move_task_template(WorkflowKind.OFFBOARDING, "offboarding-1", "up")) == before
        assert self.names(policy.move_task_template(WorkflowKind.OFFBOARDING, "offboarding-3", "down")) == before

    def test_move_rejects_unknown_direction(self, policy):
        with pytest.raises(ValidationError):
            policy.move_task_template(WorkflowKind.OFFBOARDING, "offboarding-1", "sideways")

    def test_remove_template(self, policy):
        policy.remove_task_template(WorkflowKind.OFFBOARDING, "offboarding-1")

        assert [t.id for t in policy.list_task_templates(WorkflowKind.OFFBOARDING)] == [
            "offboarding-2",
            "offboarding-3",
        ]
        with pytest.raises(NotFoundError, match="Task template offboarding-1 not found"):
            policy.remove_task_template(WorkflowKind.OFFBOARDING, "offboarding-1")

    def test_reset_restores_defaults(self, policy, policy_file):
        policy.reset_task_templates(WorkflowKind.OFFBOARDING)

        expected = self.names(DEFAULT_OFFBOARDING_TASKS)
        assert self.names(policy.get_task_templates(WorkflowKind.OFFBOARDING)) == expected
        assert self.names(ProvisioningPolicy(policy_file).get_task_templates(WorkflowKind.OFFBOARDING)) == expected

    def test_failed_write_keeps_templates(self, policy, policy_file, mocker):
        mocker.patch("lifecycle_engine.engine.provisioning_policy.yaml.safe_dump",
                     side_effect=OSError("read-only file system"))

        with pytest.raises(OSError):
            policy.remove_task_template(WorkflowKind.OFFBOARDING, "offboarding-1")

        assert len(policy.list_task_templates(WorkflowKind.OFFBOARDING)) == 3
        assert len(ProvisioningPolicy(policy_file).list_task_templates(WorkflowKind.OFFBOARDING)) == 3

    def test_changes_without_policy_file_stay_in_memory(self):
        policy = ProvisioningPolicy()

        policy.add_task_template(WorkflowKind.OFFBOARDING, "Remove from payroll")

        assert self.names(policy.get_task_templates(WorkflowKind.OFFBOARDING))[-1] == "Remove from payroll"

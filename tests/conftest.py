"""
Shared fixtures for the Lifecycle Engine tests.
"""

import pytest

from lifecycle_engine.audit.audit_logger import AuditLogger
from lifecycle_engine.config import EngineConfig
from lifecycle_engine.connectors.base_connector import MockAppConnector, MockIdentityProvider
from lifecycle_engine.connectors.employee_directory import InMemoryEmployeeDirectory
from lifecycle_engine.engine.provisioning_policy import ProvisioningPolicy
from lifecycle_engine.engine.state_manager import InMemoryWorkflowStore
from lifecycle_engine.engine.task_catalog import TaskCatalog
from lifecycle_engine.models import (
    App,
    AutomationType,
    EmployeeProfile,
    ProvisioningRule,
    TaskDefinition,
    TaskType,
)
from lifecycle_engine.workflows.automation import AutomationExecutor
from lifecycle_engine.workflows.engine import WorkflowEngine

GOOGLE_APP = App(id="google-workspace", name="Google Workspace", type="GOOGLE_WORKSPACE")
SLACK_APP = App(id="slack", name="Slack", type="SLACK")
GITHUB_APP = App(id="github", name="GitHub", type="GITHUB")


@pytest.fixture
def engineer():
    """Active full-time engineer with Slack and GitHub accounts."""
    return EmployeeProfile(
        employee_id="E001",
        full_name="Ada Lovelace",
        work_email="ada.lovelace@example.com",
        department="Engineering",
        job_title="Staff Engineer",
        employment_type="FULL_TIME",
        app_accounts=["slack", "github"],
        meta={"cost_center": "R&D", "level": 5, "remote": True},
    )


@pytest.fixture
def new_hire():
    """Employee who has not been onboarded yet."""
    return EmployeeProfile(
        employee_id="E002",
        full_name="Grace Hopper",
        department="Engineering",
        employment_type="CONTRACT",
    )


@pytest.fixture
def rules():
    """Provisioning rules across Slack and GitHub."""
    return [
        ProvisioningRule(id="slack-ft", app=SLACK_APP, condition={"employmentType": "FULL_TIME"}),
        ProvisioningRule(id="github-eng", app=GITHUB_APP, condition={"department": "Engineering"}),
    ]


@pytest.fixture
def policy(rules):
    return ProvisioningPolicy(apps=[GOOGLE_APP, SLACK_APP, GITHUB_APP], rules=rules)


@pytest.fixture
def directory(engineer, new_hire):
    return InMemoryEmployeeDirectory([engineer, new_hire])


@pytest.fixture
def identity_provider(engineer):
    provider = MockIdentityProvider({"domain": "example.com"})
    provider.add_account(engineer.work_email)
    return provider


@pytest.fixture
def app_connector():
    return MockAppConnector()


@pytest.fixture
def executor(identity_provider, app_connector):
    return AutomationExecutor(identity_provider, {"SLACK": app_connector, "GITHUB": app_connector})


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest.fixture
def make_engine(directory, executor, policy, audit_logger):
    """Factory building an engine with optional config overrides."""

    def _make(**config_overrides):
        return WorkflowEngine(
            store=InMemoryWorkflowStore(),
            directory=directory,
            executor=executor,
            catalog=TaskCatalog(policy),
            audit_logger=audit_logger,
            config=EngineConfig(**config_overrides),
        )

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def offboarding_templates():
    """Four static offboarding tasks: one MANUAL and three AUTOMATED."""
    return [
        TaskDefinition(name="Collect company devices", type=TaskType.MANUAL),
        TaskDefinition(
            name="Suspend Google Workspace account",
            type=TaskType.AUTOMATED,
            automation_type=AutomationType.GOOGLE_SUSPEND_ACCOUNT,
            automation_params={"app_type": "GOOGLE_WORKSPACE"},
        ),
        TaskDefinition(
            name="Remove Slack access",
            type=TaskType.AUTOMATED,
            automation_type=AutomationType.DEPROVISION_APP,
            automation_params={"app_id": "slack", "app_type": "SLACK", "app_name": "Slack"},
        ),
        TaskDefinition(
            name="Remove GitHub access",
            type=TaskType.AUTOMATED,
            automation_type=AutomationType.DEPROVISION_APP,
            automation_params={"app_id": "github", "app_type": "GITHUB", "app_name": "GitHub"},
        ),
    ]

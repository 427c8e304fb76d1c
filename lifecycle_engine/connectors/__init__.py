"""
Connectors Package for the Lifecycle Engine.

This package provides the identity-provider and app connectors the
automation executor calls, plus the employee directory collaborator.
"""

import logging
from typing import Dict, Iterable

from ..models import GOOGLE_WORKSPACE_APP_TYPE, App, EmployeeStatus
from .base_connector import (
    AppConnector,
    BaseConnector,
    ConnectorResult,
    IdentityProviderAdapter,
    MockAppConnector,
    MockIdentityProvider,
)
from .employee_directory import EmployeeDirectory, InMemoryEmployeeDirectory

logger = logging.getLogger(__name__)


def build_identity_provider(config, directory: EmployeeDirectory = None) -> IdentityProviderAdapter:
    """
    Create the identity provider for an engine configuration.

    In mock mode the in-memory provider is seeded with an account for every
    known employee that is not still being onboarded.
    """
    if config.mock_mode:
        provider = MockIdentityProvider({"domain": config.google.domain} if config.google.domain else None)
        if isinstance(directory, InMemoryEmployeeDirectory):
            for profile in directory.list_employees():
                if profile.work_email and profile.status != EmployeeStatus.ONBOARDING:
                    provider.add_account(profile.work_email)
        return provider

    # SDK clients are only imported when a real backend is configured
    from .google_connector import GoogleWorkspaceConnector

    return GoogleWorkspaceConnector(config.google.model_dump())


def build_app_connectors(config, apps: Iterable[App]) -> Dict[str, AppConnector]:
    """Create a connector for every non-Workspace app type that can be served."""
    app_types = {app.type for app in apps if app.type != GOOGLE_WORKSPACE_APP_TYPE}

    if config.mock_mode:
        mock_connector = MockAppConnector()
        return {app_type: mock_connector for app_type in app_types}

    connectors: Dict[str, AppConnector] = {}
    if config.slack.token:
        from .slack_connector import SLACK_APP_TYPE, SlackConnector

        connectors[SLACK_APP_TYPE] = SlackConnector(config.slack.model_dump())

    for app_type in sorted(app_types - set(connectors)):
        logger.warning(f"No connector configured for app type {app_type}")

    return connectors


__all__ = [
    "AppConnector",
    "BaseConnector",
    "ConnectorResult",
    "EmployeeDirectory",
    "IdentityProviderAdapter",
    "InMemoryEmployeeDirectory",
    "MockAppConnector",
    "MockIdentityProvider",
    "build_app_connectors",
    "build_identity_provider",
]

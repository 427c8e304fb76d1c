"""
Base Connector Classes for the Lifecycle Engine.

This module provides the capability interfaces the automation executor calls
(identity provider and per-app connectors) together with mock/simulated
backends used in mock mode and in tests.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models import App, EmployeeProfile, utc_now

logger = logging.getLogger(__name__)


class ConnectorResult:
    """Result of a connector operation."""

    def __init__(self, success: bool, message: str = "", data: Optional[Any] = None,
                 error: Optional[str] = None):
        self.success = success
        self.message = message
        self.data = data
        self.error = error

    def __bool__(self):
        return self.success

    def __str__(self):
        return f"{'✓' if self.success else '✗'} {self.message}"


class BaseConnector(ABC):
    """Common configuration handling for all connectors."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, mock_mode: bool = False):
        """
        Initialize the connector.

        Args:
            config: Configuration dictionary with API credentials, endpoints, etc.
            mock_mode: If True, use mock/simulated backend instead of real APIs
        """
        self.config = config or {}
        self.mock_mode = mock_mode
        self.system_name = self.__class__.__name__.replace('Connector', '').lower()

        logger.info(f"Initialized {self.__class__.__name__} (mock_mode={mock_mode})")

    def get_system_name(self) -> str:
        """Get the name of the system this connector manages."""
        return self.system_name

    def is_mock_mode(self) -> bool:
        """Check if this connector is running in mock mode."""
        return self.mock_mode


class IdentityProviderAdapter(BaseConnector):
    """
    Capability set of the identity provider (e.g. Google Workspace).

    Every operation is idempotent: calling it again after success leaves the
    account in the same state and reports success.
    """

    @abstractmethod
    def provision_account(self, profile: EmployeeProfile) -> ConnectorResult:
        """
        Ensure an active account exists for the employee.

        Args:
            profile: Employee to provision

        Returns:
            ConnectorResult with the account email in data
        """

    @abstractmethod
    def suspend_account(self, email: str) -> ConnectorResult:
        """
        Ensure the account is suspended.

        Args:
            email: Primary email of the account
        """

    @abstractmethod
    def delete_account(self, email: str) -> ConnectorResult:
        """
        Ensure the account no longer exists.

        Args:
            email: Primary email of the account
        """

    @abstractmethod
    def transfer_ownership(self, from_email: str, to_email: str, scopes: List[str]) -> ConnectorResult:
        """
        Ensure data owned by one account is transferred to another.

        Args:
            from_email: Account whose data is transferred
            to_email: Account receiving ownership
            scopes: Application scopes to transfer (drive, calendar, ...)
        """

    @abstractmethod
    def create_alias(self, from_email: str, to_email: str) -> ConnectorResult:
        """
        Ensure mail to from_email is delivered to to_email via an alias.

        Args:
            from_email: Address that becomes an alias
            to_email: Account that receives the alias
        """


class AppConnector(BaseConnector):
    """Capability set of an integrated application other than the identity provider."""

    @abstractmethod
    def provision_user(self, profile: EmployeeProfile, app: App) -> ConnectorResult:
        """Ensure the employee has access to the app."""

    @abstractmethod
    def deprovision_user(self, profile: EmployeeProfile, app: App) -> ConnectorResult:
        """Ensure the employee no longer has access to the app."""


class MockIdentityProvider(IdentityProviderAdapter):
    """
    In-memory identity provider for mock mode and testing.

    Failures can be injected per operation with fail_on(); they persist until
    clear_failure() is called.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config, mock_mode=True)
        self.domain = self.config.get("domain", "mock-domain.com")

        self.accounts: Dict[str, Dict[str, Any]] = {}  # email -> account state
        self.aliases: Dict[str, str] = {}              # alias -> target email
        self.transfers: List[Dict[str, Any]] = []
        self.calls: List[str] = []
        self._failures: Dict[str, str] = {}

    def fail_on(self, operation: str, message: str):
        """Make an operation fail with the given message."""
        self._failures[operation] = message

    def clear_failure(self, operation: str):
        """Stop failing an operation."""
        self._failures.pop(operation, None)

    def add_account(self, email: str, suspended: bool = False):
        """Seed an existing account."""
        self.accounts[email.lower()] = {"email": email, "suspended": suspended, "created_at": utc_now()}

    def _check_failure(self, operation: str) -> Optional[ConnectorResult]:
        self.calls.append(operation)
        message = self._failures.get(operation)
        if message:
            return ConnectorResult(False, message, error=message)
        return None

    def provision_account(self, profile: EmployeeProfile) -> ConnectorResult:
        failure = self._check_failure("provision_account")
        if failure is not None:
            return failure

        email = profile.work_email or self._generate_email(profile.full_name)
        account = self.accounts.get(email.lower())
        if account:
            account["suspended"] = False
        else:
            self.add_account(email)

        logger.info(f"Mock provisioned account: {email}")
        return ConnectorResult(True, f"Provisioned account {email}", {"email": email})

    def suspend_account(self, email: str) -> ConnectorResult:
        failure = self._check_failure("suspend_account")
        if failure is not None:
            return failure

        account = self.accounts.get(email.lower())
        if not account:
            return ConnectorResult(False, f"Account {email} not found", error="not_found")

        account["suspended"] = True
        logger.info(f"Mock suspended account: {email}")
        return ConnectorResult(True, f"Suspended account {email}")

    def delete_account(self, email: str) -> ConnectorResult:
        failure = self._check_failure("delete_account")
        if failure is not None:
            return failure

        self.accounts.pop(email.lower(), None)
        logger.info(f"Mock deleted account: {email}")
        return ConnectorResult(True, f"Deleted account {email}")

    def transfer_ownership(self, from_email: str, to_email: str, scopes: List[str]) -> ConnectorResult:
        failure = self._check_failure("transfer_ownership")
        if failure is not None:
            return failure

        transfer = {"from": from_email.lower(), "to": to_email.lower(), "scopes": sorted(scopes)}
        if transfer not in self.transfers:
            self.transfers.append(transfer)

        logger.info(f"Mock transferred {', '.join(scopes)} from {from_email} to {to_email}")
        return ConnectorResult(True, f"Transferred data from {from_email} to {to_email}")

    def create_alias(self, from_email: str, to_email: str) -> ConnectorResult:
        failure = self._check_failure("create_alias")
        if failure is not None:
            return failure

        if from_email.lower() in self.accounts:
            return ConnectorResult(
                False, f"{from_email} is still an active account", error="conflict"
            )

        self.aliases[from_email.lower()] = to_email.lower()
        logger.info(f"Mock created alias {from_email} -> {to_email}")
        return ConnectorResult(True, f"Created alias {from_email} for {to_email}")

    def _generate_email(self, full_name: str) -> str:
        local = ".".join(part.lower() for part in full_name.split() if part)
        return f"{local or 'user'}@{self.domain}"


class MockAppConnector(AppConnector):
    """In-memory app connector for mock mode and testing."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config, mock_mode=True)

        self.members: Dict[str, List[str]] = {}  # app_id -> employee ids
        self._failures: Dict[str, str] = {}

    def fail_on(self, operation: str, message: str):
        """Make an operation fail with the given message."""
        self._failures[operation] = message

    def clear_failure(self, operation: str):
        """Stop failing an operation."""
        self._failures.pop(operation, None)

    def provision_user(self, profile: EmployeeProfile, app: App) -> ConnectorResult:
        message = self._failures.get("provision_user")
        if message:
            return ConnectorResult(False, message, error=message)

        members = self.members.setdefault(app.id, [])
        if profile.employee_id not in members:
            members.append(profile.employee_id)

        logger.info(f"Mock provisioned {profile.employee_id} in {app.name}")
        return ConnectorResult(True, f"Provisioned {profile.employee_id} in {app.name}")

    def deprovision_user(self, profile: EmployeeProfile, app: App) -> ConnectorResult:
        message = self._failures.get("deprovision_user")
        if message:
            return ConnectorResult(False, message, error=message)

        members = self.members.get(app.id, [])
        if profile.employee_id in members:
            members.remove(profile.employee_id)

        logger.info(f"Mock deprovisioned {profile.employee_id} from {app.name}")
        return ConnectorResult(True, f"Deprovisioned {profile.employee_id} from {app.name}")

    def get_mock_state(self) -> Dict[str, Any]:
        """Get current mock state for inspection."""
        return {"members": self.members}

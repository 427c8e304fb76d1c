"""
Google Workspace Connector for the Lifecycle Engine.

Implements the identity-provider capability set against the Admin SDK
Directory API (accounts and aliases) and the Data Transfer API (Drive and
Calendar ownership). Every operation first checks the current state so that
a retried task does not apply its side effect twice.
"""

import logging
import secrets
import string
from typing import Any, Dict, List, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..models import EmployeeProfile
from .base_connector import ConnectorResult, IdentityProviderAdapter

logger = logging.getLogger(__name__)

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/admin.directory.user",
    "https://www.googleapis.com/auth/admin.directory.group",
    "https://www.googleapis.com/auth/admin.datatransfer",
]

# Transfers in these states have not failed and need not be requested again
_LIVE_TRANSFER_STATUSES = {"new", "inProgress", "completed"}


class GoogleWorkspaceConnector(IdentityProviderAdapter):
    """Google Workspace identity provider backed by a domain-wide service account."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        directory_service: Optional[Any] = None,
        transfer_service: Optional[Any] = None,
    ):
        """
        Initialize the connector.

        Args:
            config: Settings with domain, admin_email and credentials_path
            directory_service: Prebuilt Directory API client (skips credential loading)
            transfer_service: Prebuilt Data Transfer API client
        """
        super().__init__(config, mock_mode=False)

        self.domain = self.config.get("domain")
        if not self.domain:
            raise ValueError("Google Workspace domain is required")

        if directory_service is None or transfer_service is None:
            credentials = self._load_credentials()
            directory_service = directory_service or build(
                "admin", "directory_v1", credentials=credentials, cache_discovery=False
            )
            transfer_service = transfer_service or build(
                "admin", "datatransfer_v1", credentials=credentials, cache_discovery=False
            )

        self.directory_service = directory_service
        self.transfer_service = transfer_service

    def _load_credentials(self):
        credentials_path = self.config.get("credentials_path")
        if not credentials_path:
            raise ValueError("Google service account credentials path is required")

        credentials = service_account.Credentials.from_service_account_file(
            credentials_path, scopes=GOOGLE_SCOPES
        )

        # Impersonate domain admin
        admin_email = self.config.get("admin_email")
        if admin_email:
            credentials = credentials.with_subject(admin_email)
        return credentials

    def provision_account(self, profile: EmployeeProfile) -> ConnectorResult:
        """Create the account, or reactivate it if it already exists."""
        email = profile.work_email or self._generate_work_email(profile.full_name)

        try:
            existing = self._get_user(email)
            if existing:
                if existing.get("suspended"):
                    self.directory_service.users().update(
                        userKey=email, body={"suspended": False}
                    ).execute()
                    logger.info(f"Reactivated Google Workspace user: {email}")
                    return ConnectorResult(True, f"Reactivated Google Workspace user {email}",
                                           {"email": email, "user_id": existing.get("id")})

                return ConnectorResult(True, f"Google Workspace user {email} already exists",
                                       {"email": email, "user_id": existing.get("id")})

            name_parts = profile.full_name.split()
            given_name = name_parts[0] if name_parts else profile.full_name
            family_name = " ".join(name_parts[1:]) or given_name

            user_body = {
                "primaryEmail": email,
                "name": {"givenName": given_name, "familyName": family_name},
                "password": self._generate_temp_password(),
                "changePasswordAtNextLogin": True,
                "orgUnitPath": self._get_org_unit_path(profile.department),
            }
            result = self.directory_service.users().insert(body=user_body).execute()

            logger.info(f"Created Google Workspace user: {email}")
            return ConnectorResult(True, f"Created Google Workspace user {email}",
                                   {"email": email, "user_id": result.get("id")})

        except HttpError as e:
            return self._failure(f"Failed to provision Google Workspace user {email}", e)

    def suspend_account(self, email: str) -> ConnectorResult:
        """Suspend the account unless it is already suspended."""
        try:
            user = self._get_user(email)
            if not user:
                return ConnectorResult(False, f"Google Workspace user {email} not found",
                                       error="not_found")

            if user.get("suspended"):
                return ConnectorResult(True, f"Google Workspace user {email} already suspended")

            self.directory_service.users().update(userKey=email, body={"suspended": True}).execute()

            logger.info(f"Suspended Google Workspace user: {email}")
            return ConnectorResult(True, f"Suspended Google Workspace user {email}")

        except HttpError as e:
            return self._failure(f"Failed to suspend Google Workspace user {email}", e)

    def delete_account(self, email: str) -> ConnectorResult:
        """Delete the account; an account that is already gone counts as deleted."""
        try:
            self.directory_service.users().delete(userKey=email).execute()

            logger.info(f"Deleted Google Workspace user: {email}")
            return ConnectorResult(True, f"Deleted Google Workspace user {email}")

        except HttpError as e:
            if e.resp.status == 404:
                return ConnectorResult(True, f"Google Workspace user {email} already deleted")
            return self._failure(f"Failed to delete Google Workspace user {email}", e)

    def transfer_ownership(self, from_email: str, to_email: str, scopes: List[str]) -> ConnectorResult:
        """Request a data transfer for the given applications unless one is already live."""
        try:
            old_owner = self._get_user(from_email)
            if not old_owner:
                return ConnectorResult(False, f"Google Workspace user {from_email} not found",
                                       error="not_found")

            new_owner = self._get_user(to_email)
            if not new_owner:
                return ConnectorResult(False, f"Transfer target {to_email} not found",
                                       error="not_found")

            application_ids = self._resolve_transfer_applications(scopes)
            if not application_ids:
                return ConnectorResult(False, "No valid Google apps selected for data transfer",
                                       error="invalid_scopes")

            existing = self._find_live_transfer(old_owner["id"], new_owner["id"], application_ids)
            if existing:
                return ConnectorResult(True, f"Data transfer from {from_email} to {to_email} already requested",
                                       {"transfer_id": existing.get("id")})

            body = {
                "oldOwnerUserId": old_owner["id"],
                "newOwnerUserId": new_owner["id"],
                "applicationDataTransfers": [
                    {"applicationId": app_id} for app_id in application_ids
                ],
            }
            result = self.transfer_service.transfers().insert(body=body).execute()

            logger.info(f"Requested data transfer from {from_email} to {to_email} ({', '.join(scopes)})")
            return ConnectorResult(True, f"Requested data transfer from {from_email} to {to_email}",
                                   {"transfer_id": result.get("id")})

        except HttpError as e:
            return self._failure(f"Failed to transfer data from {from_email} to {to_email}", e)

    def create_alias(self, from_email: str, to_email: str) -> ConnectorResult:
        """Add from_email as an alias on the to_email account."""
        try:
            self.directory_service.users().aliases().insert(
                userKey=to_email, body={"alias": from_email}
            ).execute()

            logger.info(f"Created alias {from_email} on {to_email}")
            return ConnectorResult(True, f"Created alias {from_email} for {to_email}")

        except HttpError as e:
            if e.resp.status == 409:
                return ConnectorResult(True, f"Alias {from_email} already exists")
            return self._failure(f"Failed to create alias {from_email} for {to_email}", e)

    def _get_user(self, email: str) -> Optional[Dict[str, Any]]:
        try:
            return self.directory_service.users().get(userKey=email).execute()
        except HttpError as e:
            if e.resp.status == 404:
                return None
            raise

    def _resolve_transfer_applications(self, scopes: List[str]) -> List[str]:
        """Map scope names (drive, calendar) to Data Transfer application ids."""
        response = self.transfer_service.applications().list(customerId="my_customer").execute()
        available = response.get("applications", [])

        application_ids = []
        for scope in scopes:
            match = next(
                (app for app in available if scope.lower() in (app.get("name") or "").lower()),
                None,
            )
            if not match or not match.get("id"):
                logger.warning(f"Google Workspace transfer app not found: {scope}")
                continue
            if str(match["id"]) not in application_ids:
                application_ids.append(str(match["id"]))
        return application_ids

    def _find_live_transfer(self, old_owner_id: str, new_owner_id: str,
                            application_ids: List[str]) -> Optional[Dict[str, Any]]:
        response = self.transfer_service.transfers().list(
            customerId="my_customer", oldOwnerUserId=old_owner_id, newOwnerUserId=new_owner_id
        ).execute()

        wanted = set(application_ids)
        for transfer in response.get("dataTransfers", []):
            if transfer.get("overallTransferStatusCode") not in _LIVE_TRANSFER_STATUSES:
                continue
            covered = {
                str(item.get("applicationId"))
                for item in transfer.get("applicationDataTransfers", [])
            }
            if wanted <= covered:
                return transfer
        return None

    def _failure(self, message: str, error: HttpError) -> ConnectorResult:
        error_msg = f"{message}: {error}"
        logger.error(error_msg)
        return ConnectorResult(False, error_msg, error=str(error))

    def _generate_work_email(self, full_name: str) -> str:
        local = ".".join(part.lower() for part in full_name.split() if part)
        return f"{local}@{self.domain}"

    def _get_org_unit_path(self, department: Optional[str]) -> str:
        if department:
            return f"/{department}"
        return "/"

    def _generate_temp_password(self) -> str:
        alphabet = string.ascii_letters + string.digits
        return "".join(secrets.choice(alphabet) for _ in range(16))

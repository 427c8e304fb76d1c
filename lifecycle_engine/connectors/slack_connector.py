"""
Slack Connector for the Lifecycle Engine.

Provisions and removes workspace access for apps of type SLACK through the
Slack admin API.
"""

import logging
from typing import Any, Dict, Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from ..models import App, EmployeeProfile
from .base_connector import AppConnector, ConnectorResult

logger = logging.getLogger(__name__)

SLACK_APP_TYPE = "SLACK"


class SlackConnector(AppConnector):
    """Slack app connector using an org-level admin token."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, client: Optional[WebClient] = None):
        super().__init__(config, mock_mode=False)

        if client is None:
            token = self.config.get("token")
            if not token:
                raise ValueError("Slack token is required")
            client = WebClient(token=token)

        self.client = client
        self.team_id = self.config.get("team_id")

    def provision_user(self, profile: EmployeeProfile, app: App) -> ConnectorResult:
        """Invite the employee to the workspace unless they are already a member."""
        if not profile.work_email:
            return ConnectorResult(False, f"Employee {profile.employee_id} has no work email",
                                   error="no_email")

        try:
            if self._lookup_user_id(profile.work_email):
                return ConnectorResult(True, f"{profile.work_email} is already a member of {app.name}")

            self.client.admin_users_invite(
                team_id=self.team_id,
                email=profile.work_email,
                channel_ids=self.config.get("default_channel_ids", []),
                real_name=profile.full_name,
                resend=True,
            )

            logger.info(f"Sent Slack invitation to {profile.work_email}")
            return ConnectorResult(True, f"Invited {profile.work_email} to {app.name}")

        except SlackApiError as e:
            error_msg = f"Failed to invite {profile.work_email} to {app.name}: {e.response.get('error')}"
            logger.error(error_msg)
            return ConnectorResult(False, error_msg, error=str(e))

    def deprovision_user(self, profile: EmployeeProfile, app: App) -> ConnectorResult:
        """Remove the employee from the workspace; a non-member counts as removed."""
        if not profile.work_email:
            return ConnectorResult(False, f"Employee {profile.employee_id} has no work email",
                                   error="no_email")

        try:
            user_id = self._lookup_user_id(profile.work_email)
            if not user_id:
                return ConnectorResult(True, f"{profile.work_email} is not a member of {app.name}")

            self.client.admin_users_remove(team_id=self.team_id, user_id=user_id)

            logger.info(f"Removed Slack user: {profile.work_email}")
            return ConnectorResult(True, f"Removed {profile.work_email} from {app.name}")

        except SlackApiError as e:
            error_msg = f"Failed to remove {profile.work_email} from {app.name}: {e.response.get('error')}"
            logger.error(error_msg)
            return ConnectorResult(False, error_msg, error=str(e))

    def _lookup_user_id(self, email: str) -> Optional[str]:
        try:
            response = self.client.users_lookupByEmail(email=email)
        except SlackApiError as e:
            if e.response.get("error") == "users_not_found":
                return None
            raise
        return response["user"]["id"]

"""
Tests for the Google Workspace and Slack connectors against stubbed API clients.
"""

from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError
from slack_sdk.errors import SlackApiError

from lifecycle_engine.connectors.google_connector import GoogleWorkspaceConnector
from lifecycle_engine.connectors.slack_connector import SlackConnector

from .conftest import SLACK_APP


def http_error(status):
    return HttpError(httplib2.Response({"status": str(status)}), b'{"error": {"message": "boom"}}')


@pytest.fixture
def directory_service():
    return MagicMock()


@pytest.fixture
def transfer_service():
    service = MagicMock()
    service.applications.return_value.list.return_value.execute.return_value = {
        "applications": [
            {"id": "55656082996", "name": "Drive and Docs"},
            {"id": "435070579839", "name": "Calendar"},
        ]
    }
    service.transfers.return_value.list.return_value.execute.return_value = {"dataTransfers": []}
    service.transfers.return_value.insert.return_value.execute.return_value = {"id": "transfer-1"}
    return service


@pytest.fixture
def connector(directory_service, transfer_service):
    return GoogleWorkspaceConnector(
        {"domain": "example.com"},
        directory_service=directory_service,
        transfer_service=transfer_service,
    )


def users(service):
    return service.users.return_value


class TestGoogleWorkspaceConnector:

    def test_domain_is_required(self, directory_service, transfer_service):
        with pytest.raises(ValueError, match="domain"):
            GoogleWorkspaceConnector({}, directory_service, transfer_service)

    def test_credentials_path_is_required(self):
        with pytest.raises(ValueError, match="credentials"):
            GoogleWorkspaceConnector({"domain": "example.com"})

    def test_provision_creates_missing_user(self, connector, directory_service, new_hire):
        users(directory_service).get.return_value.execute.side_effect = http_error(404)
        users(directory_service).insert.return_value.execute.return_value = {"id": "u-1"}

        result = connector.provision_account(new_hire)

        assert result.success
        assert result.data == {"email": "grace.hopper@example.com", "user_id": "u-1"}
        body = users(directory_service).insert.call_args.kwargs["body"]
        assert body["primaryEmail"] == "grace.hopper@example.com"
        assert body["name"] == {"givenName": "Grace", "familyName": "Hopper"}
        assert body["orgUnitPath"] == "/Engineering"
        assert body["changePasswordAtNextLogin"] is True

    def test_provision_reactivates_suspended_user(self, connector, directory_service, engineer):
        users(directory_service).get.return_value.execute.return_value = {"id": "u-1", "suspended": True}

        result = connector.provision_account(engineer)

        assert result.success
        users(directory_service).update.assert_called_once_with(
            userKey="ada.lovelace@example.com", body={"suspended": False}
        )
        users(directory_service).insert.assert_not_called()

    def test_suspend_active_user(self, connector, directory_service):
        users(directory_service).get.return_value.execute.return_value = {"id": "u-1", "suspended": False}

        assert connector.suspend_account("ada.lovelace@example.com").success
        users(directory_service).update.assert_called_once_with(
            userKey="ada.lovelace@example.com", body={"suspended": True}
        )

    def test_suspend_already_suspended_user_is_a_no_op(self, connector, directory_service):
        users(directory_service).get.return_value.execute.return_value = {"id": "u-1", "suspended": True}

        assert connector.suspend_account("ada.lovelace@example.com").success
        users(directory_service).update.assert_not_called()

    def test_suspend_missing_user(self, connector, directory_service):
        users(directory_service).get.return_value.execute.side_effect = http_error(404)

        result = connector.suspend_account("ghost@example.com")

        assert not result.success
        assert result.message == "Google Workspace user ghost@example.com not found"

    def test_api_error_becomes_failure(self, connector, directory_service):
        users(directory_service).get.return_value.execute.side_effect = http_error(500)

        result = connector.suspend_account("ada.lovelace@example.com")

        assert not result.success
        assert result.message.startswith("Failed to suspend Google Workspace user ada.lovelace@example.com")

    @pytest.mark.parametrize("side_effect,success", [
        (None, True),
        (http_error(404), True),
        (http_error(403), False),
    ])
    def test_delete(self, connector, directory_service, side_effect, success):
        users(directory_service).delete.return_value.execute.side_effect = side_effect
        assert connector.delete_account("ada.lovelace@example.com").success is success

    def test_transfer_requests_selected_applications(self, connector, directory_service, transfer_service):
        users(directory_service).get.return_value.execute.side_effect = [{"id": "old"}, {"id": "new"}]

        result = connector.transfer_ownership(
            "ada.lovelace@example.com", "manager@example.com", ["drive", "calendar"]
        )

        assert result.success
        assert result.data == {"transfer_id": "transfer-1"}
        transfer_service.transfers.return_value.insert.assert_called_once_with(body={
            "oldOwnerUserId": "old",
            "newOwnerUserId": "new",
            "applicationDataTransfers": [
                {"applicationId": "55656082996"},
                {"applicationId": "435070579839"},
            ],
        })

    def test_transfer_already_requested(self, connector, directory_service, transfer_service):
        users(directory_service).get.return_value.execute.side_effect = [{"id": "old"}, {"id": "new"}]
        transfer_service.transfers.return_value.list.return_value.execute.return_value = {
            "dataTransfers": [{
                "id": "transfer-0",
                "overallTransferStatusCode": "inProgress",
                "applicationDataTransfers": [{"applicationId": "55656082996"}],
            }]
        }

        result = connector.transfer_ownership("ada.lovelace@example.com", "manager@example.com", ["drive"])

        assert result.success
        assert result.data == {"transfer_id": "transfer-0"}
        transfer_service.transfers.return_value.insert.assert_not_called()

    def test_transfer_unknown_scope(self, connector, directory_service):
        users(directory_service).get.return_value.execute.side_effect = [{"id": "old"}, {"id": "new"}]

        result = connector.transfer_ownership("ada.lovelace@example.com", "manager@example.com", ["photos"])

        assert not result.success
        assert result.error == "invalid_scopes"

    def test_transfer_target_missing(self, connector, directory_service):
        users(directory_service).get.return_value.execute.side_effect = [{"id": "old"}, http_error(404)]

        result = connector.transfer_ownership("ada.lovelace@example.com", "nobody@example.com", ["drive"])

        assert not result.success
        assert result.message == "Transfer target nobody@example.com not found"

    def test_create_alias(self, connector, directory_service):
        aliases = users(directory_service).aliases.return_value

        assert connector.create_alias("ada.lovelace@example.com", "manager@example.com").success
        aliases.insert.assert_called_once_with(
            userKey="manager@example.com", body={"alias": "ada.lovelace@example.com"}
        )

    def test_existing_alias_counts_as_created(self, connector, directory_service):
        users(directory_service).aliases.return_value.insert.return_value.execute.side_effect = http_error(409)
        assert connector.create_alias("ada.lovelace@example.com", "manager@example.com").success


def slack_error(code):
    return SlackApiError(code, {"ok": False, "error": code})


class TestSlackConnector:

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def slack(self, client):
        return SlackConnector({"team_id": "T123"}, client=client)

    def test_token_is_required(self):
        with pytest.raises(ValueError, match="token"):
            SlackConnector({})

    def test_invites_new_member(self, slack, client, engineer):
        client.users_lookupByEmail.side_effect = slack_error("users_not_found")

        assert slack.provision_user(engineer, SLACK_APP).success
        client.admin_users_invite.assert_called_once()
        assert client.admin_users_invite.call_args.kwargs["email"] == "ada.lovelace@example.com"
        assert client.admin_users_invite.call_args.kwargs["team_id"] == "T123"

    def test_existing_member_is_not_invited_again(self, slack, client, engineer):
        client.users_lookupByEmail.return_value = {"user": {"id": "U1"}}

        assert slack.provision_user(engineer, SLACK_APP).success
        client.admin_users_invite.assert_not_called()

    def test_removes_member(self, slack, client, engineer):
        client.users_lookupByEmail.return_value = {"user": {"id": "U1"}}

        assert slack.deprovision_user(engineer, SLACK_APP).success
        client.admin_users_remove.assert_called_once_with(team_id="T123", user_id="U1")

    def test_non_member_counts_as_removed(self, slack, client, engineer):
        client.users_lookupByEmail.side_effect = slack_error("users_not_found")

        assert slack.deprovision_user(engineer, SLACK_APP).success
        client.admin_users_remove.assert_not_called()

    def test_api_error_becomes_failure(self, slack, client, engineer):
        client.users_lookupByEmail.return_value = {"user": {"id": "U1"}}
        client.admin_users_remove.side_effect = slack_error("not_allowed_token_type")

        result = slack.deprovision_user(engineer, SLACK_APP)

        assert not result.success
        assert "not_allowed_token_type" in result.message

    def test_requires_work_email(self, slack, new_hire):
        result = slack.provision_user(new_hire, SLACK_APP)
        assert not result.success
        assert result.error == "no_email"

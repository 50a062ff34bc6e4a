"""
Unit tests for the Supabase access layer used by the mail pipeline.
"""

import os
import pytest
from unittest.mock import MagicMock, Mock, patch

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key.payload.sig")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key.payload.sig")

from app.services import helpdesk_store
from app.services.mail_errors import (
    DatabaseUnavailableError,
    MessageStoreError,
    MissingMailboxError,
)


def _filtered(table: MagicMock, eq_count: int) -> MagicMock:
    """Return the .execute mock at the end of select().eq()*n.limit(1)."""
    query = table.select.return_value
    for _ in range(eq_count):
        query = query.eq.return_value
    return query.limit.return_value.execute


class TestGetMailboxCredential:

    def test_returns_active_row(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            _filtered(mock_sb.table.return_value, 3).return_value = Mock(data=[{
                "tenant_id": "tenant-1",
                "user_id": "user-1",
                "refresh_token": "1//refresh",
                "email_address": "ada@acme.com",
                "group_email": None,
            }])

            credential = helpdesk_store.get_mailbox_credential("user-1", "tenant-1")

        assert credential.refresh_token == "1//refresh"
        mock_sb.table.assert_called_once_with("gmail_sync")

    def test_no_row_raises_missing_mailbox(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            _filtered(mock_sb.table.return_value, 3).return_value = Mock(data=[])

            with pytest.raises(MissingMailboxError) as exc_info:
                helpdesk_store.get_mailbox_credential("user-1", "tenant-1")

        assert exc_info.value.error_code == "mailbox_not_connected"

    def test_blank_refresh_token_raises_missing_mailbox(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            _filtered(mock_sb.table.return_value, 3).return_value = Mock(
                data=[{"refresh_token": "  ", "email_address": "ada@acme.com"}]
            )

            with pytest.raises(MissingMailboxError):
                helpdesk_store.get_mailbox_credential("user-1", "tenant-1")


class TestGetTenantOAuthApp:

    def test_returns_trimmed_client(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            _filtered(mock_sb.table.return_value, 1).return_value = Mock(
                data=[{"client_id": " cid.apps.googleusercontent.com ", "client_secret": "secret "}]
            )

            oauth_app = helpdesk_store.get_tenant_oauth_app("tenant-1")

        assert oauth_app.client_id == "cid.apps.googleusercontent.com"
        assert oauth_app.client_secret == "secret"

    def test_blank_secret_is_treated_as_missing(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            _filtered(mock_sb.table.return_value, 1).return_value = Mock(
                data=[{"client_id": "cid", "client_secret": ""}]
            )

            assert helpdesk_store.get_tenant_oauth_app("tenant-1") is None

    def test_no_tenant_skips_query(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            assert helpdesk_store.get_tenant_oauth_app(None) is None

        mock_sb.table.assert_not_called()


class TestGetAuthUser:

    def test_returns_acting_user(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            mock_sb.auth.admin.get_user_by_id.return_value = Mock(
                user=Mock(id="user-9", email="nine@acme.com", user_metadata={"full_name": "Nine"})
            )

            user = helpdesk_store.get_auth_user("user-9")

        assert user.user_id == "user-9"
        assert user.full_name == "Nine"

    def test_lookup_error_returns_none(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            mock_sb.auth.admin.get_user_by_id.side_effect = Exception("User not found")

            assert helpdesk_store.get_auth_user("ghost") is None


class TestWrites:

    def test_insert_message_returns_row(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            mock_sb.table.return_value.insert.return_value.execute.return_value = Mock(
                data=[{"id": "row-1"}]
            )

            row = helpdesk_store.insert_message({"ticket_id": "ticket-1"})

        assert row == {"id": "row-1"}
        mock_sb.table.assert_called_once_with("messages")

    def test_insert_message_without_row_raises(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            mock_sb.table.return_value.insert.return_value.execute.return_value = Mock(data=[])

            with pytest.raises(MessageStoreError):
                helpdesk_store.insert_message({"ticket_id": "ticket-1"})

    def test_insert_message_db_error_raises(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            mock_sb.table.return_value.insert.return_value.execute.side_effect = Exception("RLS violation")

            with pytest.raises(MessageStoreError) as exc_info:
                helpdesk_store.insert_message({"ticket_id": "ticket-1"})

        assert "RLS violation" in exc_info.value.message

    def test_touch_ticket_updates_updated_at(self):
        with patch("app.services.helpdesk_store.supabase_admin") as mock_sb:
            helpdesk_store.touch_ticket("ticket-1")

        update_payload = mock_sb.table.return_value.update.call_args.args[0]
        assert set(update_payload) == {"updated_at"}
        mock_sb.table.return_value.update.return_value.eq.assert_called_once_with("id", "ticket-1")

    def test_missing_service_key_raises(self):
        with patch("app.services.helpdesk_store.supabase_admin", None):
            with pytest.raises(DatabaseUnavailableError):
                helpdesk_store.insert_message({"ticket_id": "ticket-1"})

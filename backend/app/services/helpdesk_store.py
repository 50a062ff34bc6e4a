"""
Supabase reads and writes used by the outbound mail pipeline.

All access goes through the service-role client; tenant isolation is enforced
in app.auth.verify_ticket_access before anything here is called for an end
user.

Tables touched:
  tickets              read thread binding / subject, update updated_at
  team_members         tenant membership check
  gmail_sync           mailbox credential per (tenant, user)
  tenant_google_oauth  per-tenant OAuth client
  messages             insert sent replies, notes and local-only messages
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from app.db import supabase_admin
from app.models.caller import ActingUser
from app.models.helpdesk import MailboxCredential, OAuthApp, TicketRecord
from app.services.mail_errors import (
    DatabaseUnavailableError,
    MessageStoreError,
    MissingMailboxError,
)

logger = logging.getLogger(__name__)

_TICKET_COLUMNS = "id, gmail_thread_id, tenant_id, subject, ticket_number"
_MAILBOX_COLUMNS = "tenant_id, user_id, refresh_token, email_address, group_email"


def _admin():
    if supabase_admin is None:
        raise DatabaseUnavailableError(
            "Database client unavailable: SUPABASE_SERVICE_KEY is not configured"
        )
    return supabase_admin


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_ticket(ticket_id: str) -> Optional[TicketRecord]:
    result = _admin().table("tickets").select(_TICKET_COLUMNS).eq("id", ticket_id).execute()
    if not result.data:
        return None
    return TicketRecord(**result.data[0])


def user_has_tenant_access(user_id: str, tenant_id: Optional[str]) -> bool:
    """True when the user has an active team_members row in the tenant."""
    if not tenant_id:
        return False
    result = (
        _admin().table("team_members")
        .select("id")
        .eq("user_id", user_id)
        .eq("tenant_id", tenant_id)
        .eq("is_active", True)
        .limit(1)
        .execute()
    )
    return bool(result.data)


def get_mailbox_credential(user_id: str, tenant_id: Optional[str]) -> MailboxCredential:
    """
    Return the user's active Gmail connection for the tenant.

    Raises:
        MissingMailboxError: no active row, or the row has no refresh token
    """
    result = (
        _admin().table("gmail_sync")
        .select(_MAILBOX_COLUMNS)
        .eq("user_id", user_id)
        .eq("tenant_id", tenant_id)
        .eq("is_active", True)
        .limit(1)
        .execute()
    )
    row = result.data[0] if result.data else None
    if not row or not (row.get("refresh_token") or "").strip():
        raise MissingMailboxError("Gmail is not connected. Connect your mailbox in Settings.")
    return MailboxCredential(**row)


def get_tenant_oauth_app(tenant_id: Optional[str]) -> Optional[OAuthApp]:
    """The tenant's own OAuth client, or None when it has none (or a blank one)."""
    if not tenant_id:
        return None
    result = (
        _admin().table("tenant_google_oauth")
        .select("client_id, client_secret")
        .eq("tenant_id", tenant_id)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    row = result.data[0]
    client_id = (row.get("client_id") or "").strip()
    client_secret = (row.get("client_secret") or "").strip()
    if not client_id or not client_secret:
        return None
    return OAuthApp(client_id=client_id, client_secret=client_secret)


def get_auth_user(user_id: str) -> Optional[ActingUser]:
    """Look up a Supabase auth user by id (used for trusted system callers)."""
    try:
        response = _admin().auth.admin.get_user_by_id(user_id)
    except DatabaseUnavailableError:
        raise
    except Exception as e:
        logger.warning(f"Failed to look up auth user '{user_id}': {e}")
        return None

    user = getattr(response, "user", None)
    if not user:
        return None
    metadata = getattr(user, "user_metadata", None) or {}
    return ActingUser(
        user_id=user.id,
        email=getattr(user, "email", None) or "",
        full_name=metadata.get("full_name"),
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def insert_message(row: dict) -> dict:
    """
    Insert a messages row and return it.

    Raises:
        MessageStoreError: the insert failed or returned no row
    """
    try:
        result = _admin().table("messages").insert(row).execute()
    except DatabaseUnavailableError:
        raise
    except Exception as e:
        raise MessageStoreError(f"Failed to store message: {str(e)}")

    if not result.data:
        raise MessageStoreError("Failed to store message: no row returned")
    return result.data[0]


def touch_ticket(ticket_id: str) -> None:
    """Bump tickets.updated_at so the inbox re-sorts the ticket."""
    now = datetime.now(timezone.utc).isoformat()
    _admin().table("tickets").update({"updated_at": now}).eq("id", ticket_id).execute()

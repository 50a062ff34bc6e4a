"""
Outbound mail pipeline: ticket replies, forwards and archiving.

A reply runs strictly in order, in one request:

  caller -> ticket (+ access check)
         -> internal note?            store locally, done
         -> no Gmail thread?          store locally, done (not an error)
         -> mailbox credential -> sender/recipients/headers
         -> image pipeline -> MIME composition        (nothing sent yet)
         -> OAuth app -> access token -> Gmail send
         -> store message row, bump ticket.updated_at

Any failure before the send call aborts with a MailError and nothing is
stored. There is no retry and no idempotency key: calling again after a
failure may send a second email.
"""

import logging
import os
from typing import Optional

from app.auth import resolve_acting_user, verify_tenant_access, verify_ticket_access
from app.models.caller import ActingUser, Caller
from app.models.helpdesk import OAuthApp, TicketRecord
from app.models.outbound_email import (
    ArchiveEmailRequest,
    ArchiveEmailResponse,
    ForwardEmailRequest,
    ForwardEmailResponse,
    SendReplyRequest,
    SendReplyResponse,
)
from app.services import gmail_client, helpdesk_store
from app.services.inline_images import prepare_html
from app.services.mail_errors import MessageStoreError, OAuthAppNotConfiguredError
from app.services.mime_composer import compose_message
from app.services.mime_headers import (
    build_forward_headers,
    build_headers,
    build_recipients,
    resolve_sender,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

def resolve_oauth_app(tenant_id: Optional[str]) -> OAuthApp:
    """
    OAuth client used for the refresh grant.

    Priority:
      1. the tenant's tenant_google_oauth row
      2. GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET

    Raises:
        OAuthAppNotConfiguredError: neither is available
    """
    tenant_app = helpdesk_store.get_tenant_oauth_app(tenant_id)
    if tenant_app is not None:
        return tenant_app

    client_id = os.getenv("GOOGLE_CLIENT_ID", "").strip()
    client_secret = os.getenv("GOOGLE_CLIENT_SECRET", "").strip()
    if client_id and client_secret:
        return OAuthApp(client_id=client_id, client_secret=client_secret)

    raise OAuthAppNotConfiguredError("Google OAuth is not configured for this organisation.")


async def _access_token(refresh_token: str, tenant_id: Optional[str]) -> str:
    oauth_app = resolve_oauth_app(tenant_id)
    return await gmail_client.resolve_access_token(
        refresh_token, oauth_app.client_id, oauth_app.client_secret
    )


# ---------------------------------------------------------------------------
# Local message rows
# ---------------------------------------------------------------------------

def _clean_html(html: Optional[str]) -> Optional[str]:
    return html.strip() if html and html.strip() else None


def _message_row(
    ticket: TicketRecord,
    from_email: str,
    from_name: Optional[str],
    content: str,
    html_content: Optional[str] = None,
    is_internal_note: bool = False,
    gmail_message_id: Optional[str] = None,
) -> dict:
    row = {
        "ticket_id": ticket.id,
        "tenant_id": ticket.tenant_id,
        "from_email": from_email,
        "from_name": from_name,
        "content": content,
        "html_content": html_content,
        "is_customer": False,
        "is_internal_note": is_internal_note,
    }
    if gmail_message_id:
        row["gmail_message_id"] = gmail_message_id
    return row


def _record_sent_message(ticket: TicketRecord, row: dict) -> bool:
    """
    Persist a message that Gmail already accepted.

    Returns False when the row could not be written; the request still
    succeeds because the email has been sent.
    """
    stored = True
    try:
        helpdesk_store.insert_message(row)
    except MessageStoreError as e:
        logger.error(f"Reply sent for ticket {ticket.id} but message row was not stored: {e.message}")
        stored = False

    try:
        helpdesk_store.touch_ticket(ticket.id)
    except Exception as e:
        logger.error(f"Reply sent for ticket {ticket.id} but updated_at was not bumped: {e}")
    return stored


def _store_local_message(ticket: TicketRecord, user: ActingUser, request: SendReplyRequest) -> None:
    helpdesk_store.insert_message(
        _message_row(
            ticket,
            from_email=user.email,
            from_name=user.full_name,
            content=request.message,
            html_content=None if request.is_internal_note else _clean_html(request.html),
            is_internal_note=request.is_internal_note,
        )
    )


# ---------------------------------------------------------------------------
# Reply
# ---------------------------------------------------------------------------

async def send_ticket_reply(request: SendReplyRequest, caller: Caller) -> SendReplyResponse:
    """Reply on a ticket by email, or store the message locally when no email applies."""
    user = resolve_acting_user(caller, request.acting_user_id)
    ticket = await verify_ticket_access(request.ticket_id, caller)

    if request.is_internal_note:
        _store_local_message(ticket, user, request)
        logger.info("Stored internal note on ticket %s", ticket.id)
        return SendReplyResponse(success=True, sent=False)

    if not ticket.gmail_thread_id:
        _store_local_message(ticket, user, request)
        logger.info("Ticket %s has no Gmail thread; stored reply locally", ticket.id)
        return SendReplyResponse(success=True, sent=False)

    credential = helpdesk_store.get_mailbox_credential(user.user_id, ticket.tenant_id)
    sender = resolve_sender(credential, user)
    recipients = build_recipients(request.to, reply_all=request.reply_all, exclude=sender.address)
    headers = build_headers(ticket, sender.address, sender.display_name, ", ".join(recipients))
    composed = compose_message(
        headers,
        plain_text=request.message,
        html=prepare_html(request.html),
        attachment=request.attachment,
    )

    access_token = await _access_token(credential.refresh_token, ticket.tenant_id)
    result = await gmail_client.send_message(access_token, composed.raw, ticket.gmail_thread_id)
    logger.info(
        "Sent reply on ticket %s shape=%s inline_images=%d",
        ticket.id, composed.shape.value, len(composed.inline_parts),
    )

    stored = _record_sent_message(
        ticket,
        _message_row(
            ticket,
            from_email=sender.address,
            from_name=sender.display_name,
            content=request.message,
            html_content=_clean_html(request.html),
            gmail_message_id=result.message_id,
        ),
    )

    return SendReplyResponse(
        success=True,
        sent=True,
        stored=stored,
        from_email=sender.address,
        message_id=result.message_id,
        thread_id=result.thread_id,
    )


# ---------------------------------------------------------------------------
# Forward
# ---------------------------------------------------------------------------

async def forward_message(request: ForwardEmailRequest, caller: Caller) -> ForwardEmailResponse:
    """Send a new, unthreaded message from the user's tenant mailbox. Nothing is stored."""
    user = resolve_acting_user(caller, request.acting_user_id)
    await verify_tenant_access(request.tenant_id, caller)

    credential = helpdesk_store.get_mailbox_credential(user.user_id, request.tenant_id)
    sender = resolve_sender(credential, user)
    recipients = build_recipients(request.to, reply_all=True)
    headers = build_forward_headers(request.subject, sender.address, ", ".join(recipients))
    composed = compose_message(
        headers,
        plain_text=request.message_plain,
        html=prepare_html(request.message_html),
        attachment=request.attachment,
    )

    access_token = await _access_token(credential.refresh_token, request.tenant_id)
    result = await gmail_client.send_message(access_token, composed.raw)
    logger.info("Forwarded message for tenant %s shape=%s", request.tenant_id, composed.shape.value)

    return ForwardEmailResponse(success=True, from_email=sender.address, message_id=result.message_id)


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------

async def archive_message(request: ArchiveEmailRequest, caller: Caller) -> ArchiveEmailResponse:
    """Remove a Gmail message (or whole thread) from the inbox."""
    user = resolve_acting_user(caller, request.acting_user_id)
    await verify_tenant_access(request.tenant_id, caller)

    credential = helpdesk_store.get_mailbox_credential(user.user_id, request.tenant_id)
    access_token = await _access_token(credential.refresh_token, request.tenant_id)
    await gmail_client.archive(
        access_token,
        message_id=(request.gmail_message_id or "").strip() or None,
        thread_id=(request.thread_id or "").strip() or None,
    )
    logger.info("Archived Gmail %s for tenant %s",
                "message" if request.gmail_message_id else "thread", request.tenant_id)
    return ArchiveEmailResponse(success=True)

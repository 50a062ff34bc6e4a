"""
Gmail router.

Outbound mail for helpdesk tickets, sent from the tenant's connected Gmail
mailbox.

Environment variables
---------------------
GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET  Default OAuth app for tenants without
                                         a tenant_google_oauth row.
GROUP_SENDER_DISPLAY_NAME                Display name used with a shared group
                                         sending address (default "Support").
INTERNAL_API_SECRET                      Secret for trusted system callers
                                         (X-Internal-Secret header).

Endpoints:
  POST /reply    reply on a ticket (auth: JWT or X-Internal-Secret)
  POST /forward  send a new message from the tenant mailbox
  POST /archive  remove a message/thread from the Gmail inbox
"""

from fastapi import APIRouter, Depends

from app.auth import get_caller
from app.models.caller import Caller
from app.models.outbound_email import (
    ArchiveEmailRequest,
    ArchiveEmailResponse,
    ForwardEmailRequest,
    ForwardEmailResponse,
    SendReplyRequest,
    SendReplyResponse,
)
from app.services.outbound_mail import archive_message, forward_message, send_ticket_reply

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"description": "Validation error, mailbox not connected, OAuth not configured, or re-authentication required"},
    401: {"description": "Missing or invalid credentials"},
    403: {"description": "Caller is not a member of the ticket's organisation"},
    404: {"description": "Ticket or acting user not found"},
    502: {"description": "Gmail rejected the request or could not be reached"},
}


@router.post("/reply", response_model=SendReplyResponse, responses=_ERROR_RESPONSES)
async def reply(
    request: SendReplyRequest,
    caller: Caller = Depends(get_caller),
):
    """
    Reply on a ticket.

    Internal notes and tickets without a Gmail thread are stored as local
    messages and no email is sent (sent=false). Otherwise the reply is sent
    into the ticket's Gmail thread from the tenant's group address or the
    user's mailbox, then recorded as a message on the ticket.
    """
    return await send_ticket_reply(request, caller)


@router.post("/forward", response_model=ForwardEmailResponse, responses=_ERROR_RESPONSES)
async def forward(
    request: ForwardEmailRequest,
    caller: Caller = Depends(get_caller),
):
    """Forward content as a new email (no thread) from the user's tenant mailbox."""
    return await forward_message(request, caller)


@router.post("/archive", response_model=ArchiveEmailResponse, responses=_ERROR_RESPONSES)
async def archive(
    request: ArchiveEmailRequest,
    caller: Caller = Depends(get_caller),
):
    return await archive_message(request, caller)

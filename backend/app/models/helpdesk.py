"""
Pydantic models for the helpdesk rows the mail pipeline reads.

These tables are owned by the helpdesk; the mail API only reads the columns
modelled here (plus inserting into messages and touching tickets.updated_at).
"""

from typing import Optional
from pydantic import BaseModel, field_validator


class TicketRecord(BaseModel):
    """Subset of a tickets row. gmail_thread_id is the thread binding."""
    model_config = {"extra": "ignore"}

    id: str
    tenant_id: Optional[str] = None
    subject: Optional[str] = None
    ticket_number: Optional[str] = None
    gmail_thread_id: Optional[str] = None

    @field_validator("ticket_number", mode="before")
    @classmethod
    def _number_as_text(cls, value):
        # ticket_number is numeric in some tenants' schemas
        return None if value is None else str(value)


class MailboxCredential(BaseModel):
    """
    Active gmail_sync row for one (tenant, user).

    email_address is the connected mailbox (the send-as address);
    group_email, when set, is a shared support address configured in Gmail
    as "Send mail as".
    """
    model_config = {"extra": "ignore"}

    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    refresh_token: str
    email_address: Optional[str] = None
    group_email: Optional[str] = None


class OAuthApp(BaseModel):
    """Google OAuth client registration used for the refresh-token grant."""

    client_id: str
    client_secret: str

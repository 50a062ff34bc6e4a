"""
Request and response models for the Gmail endpoints.

Request bodies keep the camelCase keys the frontend already sends
(ticketId, isInternalNote, contentBase64, ...); snake_case names are
accepted too. Required fields are enforced here, at the boundary, so the
pipeline never sees a request without a ticket, body or recipient.

Models:
  AttachmentPayload    single optional file attachment (base64)
  SendReplyRequest     body for POST /reply
  ForwardEmailRequest  body for POST /forward
  ArchiveEmailRequest  body for POST /archive
  SendReplyResponse / ForwardEmailResponse / ArchiveEmailResponse
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator


_REQUEST_CONFIG = {"populate_by_name": True, "extra": "ignore"}


def _require_text(value: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError("must not be empty")
    return value


class AttachmentPayload(BaseModel):
    """A file attachment as sent by the frontend. content_base64 may be line-wrapped."""
    model_config = _REQUEST_CONFIG

    filename: str = ""
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    content_base64: str = Field(default="", alias="contentBase64")

    @property
    def is_present(self) -> bool:
        # An attachment without a name or content is ignored rather than rejected.
        return bool(self.filename and self.content_base64)


class SendReplyRequest(BaseModel):
    """
    Request body for POST /api/gmail/reply.

    acting_user_id is only read for trusted system callers; end users always
    act as themselves.
    """
    model_config = _REQUEST_CONFIG

    ticket_id: str = Field(alias="ticketId")
    message: str
    to: str
    is_internal_note: bool = Field(default=False, alias="isInternalNote")
    html: Optional[str] = None
    attachment: Optional[AttachmentPayload] = None
    reply_all: bool = Field(default=False, alias="replyAll")
    acting_user_id: Optional[str] = Field(default=None, alias="actingUserId")

    @field_validator("ticket_id", "message", "to")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("is_internal_note", "reply_all", mode="before")
    @classmethod
    def _null_is_false(cls, value):
        return False if value is None else value


class ForwardEmailRequest(BaseModel):
    """Request body for POST /api/gmail/forward (a new, unthreaded message)."""
    model_config = _REQUEST_CONFIG

    to: str
    subject: str
    message_plain: str = Field(alias="messagePlain")
    message_html: Optional[str] = Field(default=None, alias="messageHtml")
    tenant_id: str = Field(alias="tenantId")
    attachment: Optional[AttachmentPayload] = None
    acting_user_id: Optional[str] = Field(default=None, alias="actingUserId")

    @field_validator("to", "subject", "message_plain", "tenant_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        return _require_text(value)


class ArchiveEmailRequest(BaseModel):
    """Request body for POST /api/gmail/archive. One of the two ids is required."""
    model_config = _REQUEST_CONFIG

    tenant_id: str = Field(alias="tenantId")
    gmail_message_id: Optional[str] = Field(default=None, alias="gmailMessageId")
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    acting_user_id: Optional[str] = Field(default=None, alias="actingUserId")

    @field_validator("tenant_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        return _require_text(value)

    @model_validator(mode="after")
    def _one_id_required(self):
        if not (self.gmail_message_id or "").strip() and not (self.thread_id or "").strip():
            raise ValueError("gmailMessageId or threadId is required")
        return self


class SendReplyResponse(BaseModel):
    """
    Response for POST /reply.

    sent is False for internal notes and for tickets without a Gmail thread,
    where the message is stored locally and no email leaves the system.
    stored is False only when Gmail accepted the email but the local message
    row could not be written.
    """
    success: bool = True
    sent: bool = False
    stored: bool = True
    from_email: Optional[str] = None
    message_id: Optional[str] = None
    thread_id: Optional[str] = None


class ForwardEmailResponse(BaseModel):
    success: bool = True
    from_email: str
    message_id: Optional[str] = None


class ArchiveEmailResponse(BaseModel):
    success: bool = True

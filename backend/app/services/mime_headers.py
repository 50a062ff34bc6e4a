"""
Header normalization for outbound helpdesk email.

Builds the RFC 2822 From / To / Subject lines for a reply or forward and
normalizes body line endings. The composed message is CRLF-delimited, so
every body handed to the composer goes through normalize_crlf first.

From-address policy (order matters, it decides which address customers
see replies coming from):
  1. the tenant's shared group address (gmail_sync.group_email), shown with
     the fixed group display name
  2. the acting user's connected mailbox (gmail_sync.email_address)
  3. the acting user's account email
"""

import os
import re
from dataclasses import dataclass
from email.header import Header
from email.utils import formataddr, getaddresses, parseaddr
from typing import Optional

from app.models.caller import ActingUser
from app.models.helpdesk import MailboxCredential, TicketRecord
from app.services.mail_errors import RequestValidationFailed

DEFAULT_SUBJECT = "Re: Support"
DEFAULT_GROUP_DISPLAY_NAME = "Support"

_LINE_BREAKS_RE = re.compile(r"[\r\n]+")
# semicolons outside double-quoted display names
_SEMICOLON_RE = re.compile(r';(?=(?:[^"]*"[^"]*")*[^"]*$)')
_ADDRESS_RE = re.compile(r"^[^@\s<>,;\"]+@[^@\s<>,;\"]+$")


@dataclass(frozen=True)
class Sender:
    address: str
    display_name: Optional[str] = None


@dataclass(frozen=True)
class MessageHeaders:
    from_header: str
    to_header: str
    subject_header: str

    def lines(self) -> list[str]:
        return [self.from_header, self.to_header, self.subject_header]


# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------

def sanitize_header_value(value: Optional[str]) -> str:
    """Collapse CR/LF runs to a single space so a value can never span header lines."""
    return _LINE_BREAKS_RE.sub(" ", value or "").strip()


def normalize_crlf(text: Optional[str]) -> str:
    """Convert LF and CRLF line endings to CRLF."""
    return (text or "").replace("\r\n", "\n").replace("\n", "\r\n")


def build_subject(ticket_number: Optional[str], subject: Optional[str]) -> str:
    """
    Subject line for a ticket reply.

        build_subject("TKT-5", "Hello")  -> "[TKT-5] Hello"
        build_subject(None, "Hello")     -> "Hello"
        build_subject(None, "")          -> "Re: Support"
    """
    number = (ticket_number or "").strip()
    base = (subject or "").strip()
    if number:
        line = f"[{number}] {base}".strip()
    else:
        line = base or DEFAULT_SUBJECT
    return sanitize_header_value(line) or DEFAULT_SUBJECT


# ---------------------------------------------------------------------------
# Sender / recipients
# ---------------------------------------------------------------------------

def _group_display_name() -> str:
    return os.getenv("GROUP_SENDER_DISPLAY_NAME", "").strip() or DEFAULT_GROUP_DISPLAY_NAME


def resolve_sender(
    credential: MailboxCredential,
    user: ActingUser,
    group_display_name: Optional[str] = None,
) -> Sender:
    """Pick the From address and display name according to the module's policy."""
    group_email = (credential.group_email or "").strip()
    if group_email:
        return Sender(
            address=group_email,
            display_name=group_display_name or _group_display_name(),
        )

    address = (credential.email_address or "").strip() or (user.email or "").strip()
    display_name = sanitize_header_value(user.full_name) or address
    return Sender(address=address, display_name=display_name)


def _parse_addresses(value: str) -> list[tuple[str, str]]:
    """(display name, address) pairs; ';' outside quoted names also separates."""
    normalized = _SEMICOLON_RE.sub(",", sanitize_header_value(value))
    return [(name, address.strip()) for name, address in getaddresses([normalized]) if address.strip()]


def _format_address(name: Optional[str], address: str) -> str:
    return sanitize_header_value(formataddr((sanitize_header_value(name), address), charset="utf-8"))


def build_recipients(
    to: str,
    reply_all: bool = False,
    exclude: Optional[str] = None,
) -> list[str]:
    """
    Parse and validate the To value.

    A plain reply goes to exactly one address. Reply-all accepts a comma or
    semicolon separated list, drops duplicates (case-insensitive) and drops
    the sending address itself. Display names may be quoted and contain
    commas: '"Doe, John" <john@x.com>' is one recipient.
    """
    parsed = _parse_addresses(to)
    for _, address in parsed:
        if not _ADDRESS_RE.match(address):
            raise RequestValidationFailed(f"Invalid recipient address: {address}")

    if not reply_all:
        if len(parsed) != 1:
            raise RequestValidationFailed(
                "A reply must have exactly one recipient; use replyAll for multiple"
            )
        return [_format_address(*parsed[0])]

    excluded = parseaddr(exclude)[1].strip().lower() if exclude else None
    seen: set = set()
    recipients: list[str] = []
    for name, address in parsed:
        key = address.lower()
        if key in seen or key == excluded:
            continue
        seen.add(key)
        recipients.append(_format_address(name, address))

    if not recipients:
        raise RequestValidationFailed("No recipients left after removing the sending address")
    return recipients


# ---------------------------------------------------------------------------
# Header lines
# ---------------------------------------------------------------------------

def encode_header_text(text: str) -> str:
    """RFC 2047-encode non-ASCII text; ASCII passes through unchanged."""
    if text.isascii():
        return text
    return sanitize_header_value(Header(text, "utf-8").encode())


def _format_from(from_address: str, from_display_name: Optional[str]) -> str:
    address = sanitize_header_value(from_address)
    return f"From: {_format_address(from_display_name, address)}"


def build_headers(
    ticket: TicketRecord,
    from_address: str,
    from_display_name: Optional[str],
    recipient: str,
) -> MessageHeaders:
    """From / To / Subject lines for a reply on a ticket."""
    subject = build_subject(ticket.ticket_number, ticket.subject)
    return MessageHeaders(
        from_header=_format_from(from_address, from_display_name),
        to_header=f"To: {sanitize_header_value(recipient)}",
        subject_header=f"Subject: {encode_header_text(subject)}",
    )


def build_forward_headers(subject: str, from_address: str, recipient: str) -> MessageHeaders:
    """Headers for a forward: explicit subject, bare From address."""
    subject_line = sanitize_header_value(subject) or DEFAULT_SUBJECT
    return MessageHeaders(
        from_header=_format_from(from_address, None),
        to_header=f"To: {sanitize_header_value(recipient)}",
        subject_header=f"Subject: {encode_header_text(subject_line)}",
    )

"""
Unit tests for header normalization: subject, sender policy, recipients,
header-line injection and CRLF normalization.
"""

import os
import pytest
from email.header import decode_header, make_header
from email.utils import getaddresses, parseaddr
from unittest.mock import patch

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key.payload.sig")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key.payload.sig")

from app.models.caller import ActingUser
from app.models.helpdesk import MailboxCredential, TicketRecord
from app.services.mail_errors import RequestValidationFailed
from app.services.mime_headers import (
    build_forward_headers,
    build_headers,
    build_recipients,
    build_subject,
    normalize_crlf,
    resolve_sender,
    sanitize_header_value,
)


def _credential(email_address="agent@acme.com", group_email=None) -> MailboxCredential:
    return MailboxCredential(
        tenant_id="tenant-1",
        user_id="user-1",
        refresh_token="1//refresh",
        email_address=email_address,
        group_email=group_email,
    )


# ---------------------------------------------------------------------------
# Subject
# ---------------------------------------------------------------------------

class TestBuildSubject:

    def test_ticket_number_is_prefixed(self):
        assert build_subject("TKT-5", "Hello") == "[TKT-5] Hello"

    def test_no_ticket_number_uses_subject(self):
        assert build_subject(None, "Hello") == "Hello"

    def test_no_number_and_no_subject_uses_default(self):
        assert build_subject(None, "") == "Re: Support"
        assert build_subject("  ", None) == "Re: Support"

    def test_number_without_subject(self):
        assert build_subject("7", None) == "[7]"

    def test_line_breaks_in_subject_are_collapsed(self):
        assert build_subject("1", "Hi\r\nBcc: evil@x.com") == "[1] Hi Bcc: evil@x.com"


# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------

class TestNormalization:

    def test_sanitize_replaces_line_break_runs_with_one_space(self):
        assert sanitize_header_value("a\r\n\r\nb\nc") == "a b c"

    def test_sanitize_none_is_empty(self):
        assert sanitize_header_value(None) == ""

    def test_normalize_crlf_converts_bare_lf(self):
        assert normalize_crlf("one\ntwo") == "one\r\ntwo"

    def test_normalize_crlf_keeps_existing_crlf(self):
        assert normalize_crlf("one\r\ntwo\nthree") == "one\r\ntwo\r\nthree"

    def test_normalize_crlf_is_idempotent(self):
        once = normalize_crlf("a\nb\r\nc")
        assert normalize_crlf(once) == once


# ---------------------------------------------------------------------------
# Sender policy
# ---------------------------------------------------------------------------

class TestResolveSender:

    def test_group_email_wins_with_group_display_name(self):
        user = ActingUser(user_id="user-1", email="me@acme.com", full_name="Ada Agent")

        with patch.dict(os.environ, {"GROUP_SENDER_DISPLAY_NAME": ""}):
            sender = resolve_sender(_credential(group_email="support@acme.com"), user)

        assert sender.address == "support@acme.com"
        assert sender.display_name == "Support"

    def test_group_display_name_from_environment(self):
        user = ActingUser(user_id="user-1", email="me@acme.com")

        with patch.dict(os.environ, {"GROUP_SENDER_DISPLAY_NAME": "Acme Help"}):
            sender = resolve_sender(_credential(group_email="support@acme.com"), user)

        assert sender.display_name == "Acme Help"

    def test_mailbox_address_with_full_name(self):
        user = ActingUser(user_id="user-1", email="login@acme.com", full_name="Ada Agent")

        sender = resolve_sender(_credential(email_address="ada@acme.com"), user)

        assert sender.address == "ada@acme.com"
        assert sender.display_name == "Ada Agent"

    def test_falls_back_to_user_email(self):
        user = ActingUser(user_id="user-1", email="login@acme.com")

        sender = resolve_sender(_credential(email_address=""), user)

        assert sender.address == "login@acme.com"
        assert sender.display_name == "login@acme.com"


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------

class TestBuildRecipients:

    def test_single_recipient(self):
        assert build_recipients(" customer@x.com ") == ["customer@x.com"]

    def test_plain_reply_rejects_multiple_recipients(self):
        with pytest.raises(RequestValidationFailed):
            build_recipients("a@x.com, b@x.com")

    def test_plain_reply_rejects_empty(self):
        with pytest.raises(RequestValidationFailed):
            build_recipients(" , ")

    def test_reply_all_splits_and_dedupes(self):
        recipients = build_recipients("a@x.com; B@x.com, A@X.com", reply_all=True)
        assert recipients == ["a@x.com", "B@x.com"]

    def test_reply_all_drops_sender_address(self):
        recipients = build_recipients(
            "Support <support@acme.com>, customer@x.com",
            reply_all=True,
            exclude="SUPPORT@acme.com",
        )
        assert recipients == ["customer@x.com"]

    def test_reply_all_only_sender_raises(self):
        with pytest.raises(RequestValidationFailed):
            build_recipients("support@acme.com", reply_all=True, exclude="support@acme.com")

    def test_newlines_cannot_smuggle_headers(self):
        try:
            recipients = build_recipients("customer@x.com\r\nBcc: evil@x.com")
        except RequestValidationFailed:
            return
        for recipient in recipients:
            assert "\r" not in recipient
            assert "\n" not in recipient

    def test_quoted_display_name_with_comma_is_one_recipient(self):
        recipients = build_recipients('"Doe, John" <john@x.com>')

        assert recipients == ['"Doe, John" <john@x.com>']
        assert getaddresses(recipients) == [("Doe, John", "john@x.com")]

    def test_reply_all_keeps_quoted_comma_name_together(self):
        recipients = build_recipients(
            '"Doe, John" <john@x.com>; "Roe; Jane" <jane@x.com>, JOHN@x.com',
            reply_all=True,
        )

        assert recipients == ['"Doe, John" <john@x.com>', '"Roe; Jane" <jane@x.com>']

    def test_reply_all_excludes_sender_given_with_display_name(self):
        recipients = build_recipients(
            "support@acme.com, customer@x.com",
            reply_all=True,
            exclude="Support <support@acme.com>",
        )
        assert recipients == ["customer@x.com"]

    def test_invalid_address_raises(self):
        with pytest.raises(RequestValidationFailed):
            build_recipients("not-an-address")


# ---------------------------------------------------------------------------
# Header lines
# ---------------------------------------------------------------------------

class TestBuildHeaders:

    def test_reply_headers(self):
        ticket = TicketRecord(id="t-1", subject="Refund", ticket_number="TKT-9")

        headers = build_headers(ticket, "ada@acme.com", "Ada Agent", "customer@x.com")

        assert headers.lines() == [
            "From: Ada Agent <ada@acme.com>",
            "To: customer@x.com",
            "Subject: [TKT-9] Refund",
        ]

    def test_reply_headers_without_display_name(self):
        ticket = TicketRecord(id="t-1", subject="Refund")

        headers = build_headers(ticket, "ada@acme.com", None, "customer@x.com")

        assert headers.from_header == "From: ada@acme.com"

    def test_display_name_line_breaks_are_removed(self):
        ticket = TicketRecord(id="t-1")

        headers = build_headers(ticket, "ada@acme.com", "Ada\r\nBcc: x@y.com", "c@x.com")

        assert "\r" not in headers.from_header
        assert "\n" not in headers.from_header
        assert headers.subject_header == "Subject: Re: Support"

    def test_forward_headers_use_bare_from(self):
        headers = build_forward_headers("Fwd: Invoice", "ada@acme.com", "boss@acme.com")

        assert headers.lines() == [
            "From: ada@acme.com",
            "To: boss@acme.com",
            "Subject: Fwd: Invoice",
        ]

    def test_display_name_with_comma_is_quoted(self):
        ticket = TicketRecord(id="t-1", subject="Refund")

        headers = build_headers(ticket, "ada@acme.com", "Lovelace, Ada", "customer@x.com")

        assert headers.from_header == 'From: "Lovelace, Ada" <ada@acme.com>'
        from_value = headers.from_header[len("From: "):]
        assert getaddresses([from_value]) == [("Lovelace, Ada", "ada@acme.com")]

    def test_non_ascii_display_name_is_encoded(self):
        ticket = TicketRecord(id="t-1", subject="Refund")

        headers = build_headers(ticket, "bjorn@acme.com", "Bjørn Ødegård", "customer@x.com")

        assert headers.from_header.isascii()
        name, address = parseaddr(headers.from_header[len("From: "):])
        assert address == "bjorn@acme.com"
        assert str(make_header(decode_header(name))) == "Bjørn Ødegård"

    def test_non_ascii_subject_is_encoded(self):
        ticket = TicketRecord(id="t-1", subject="Blåbær ødelagt", ticket_number="5")

        headers = build_headers(ticket, "ada@acme.com", None, "customer@x.com")

        assert headers.subject_header.isascii()
        value = headers.subject_header[len("Subject: "):]
        assert str(make_header(decode_header(value))) == "[5] Blåbær ødelagt"

    def test_long_non_ascii_subject_stays_on_one_line(self):
        ticket = TicketRecord(id="t-1", subject="Blåbær ødelagt " * 10)

        headers = build_headers(ticket, "ada@acme.com", None, "customer@x.com")

        assert "\r" not in headers.subject_header
        assert "\n" not in headers.subject_header
        value = headers.subject_header[len("Subject: "):]
        assert str(make_header(decode_header(value))) == ("Blåbær ødelagt " * 10).strip()

    def test_forward_subject_is_encoded(self):
        headers = build_forward_headers("Fwd: Bestilling på vei", "ada@acme.com", "boss@acme.com")

        assert headers.subject_header.isascii()
        value = headers.subject_header[len("Subject: "):]
        assert str(make_header(decode_header(value))) == "Fwd: Bestilling på vei"

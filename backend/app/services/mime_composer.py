"""
MIME composition for outbound helpdesk email.

The message body takes one of a closed set of shapes, selected from three
facts about the content plus whether a file is attached:

  has_html  inline(data:) imgs  hosted imgs  attachment  shape
  --------  ------------------  -----------  ----------  -------------------------------
  no        -                   -            no          PLAIN_TEXT
  yes       yes                 -            no          RELATED {html, images...}
  yes       no                  yes          no          HTML
  yes       no                  no           no          ALTERNATIVE {plain, html}
  any       any                 any          yes         MIXED {<body shape above>, file}

Each shape has its own render function. The message is assembled as text with
CRLF line endings; base64 payloads are emitted as given (no re-wrapping).

Every multipart boundary is generated fresh per part and per send from a
random token plus a millisecond timestamp. Content is not scanned for the
boundary string.
"""

import re
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from app.models.outbound_email import AttachmentPayload
from app.services.inline_images import InlinePart, PreparedHtml
from app.services.mime_headers import MessageHeaders, normalize_crlf, sanitize_header_value

CRLF = "\r\n"
MIME_VERSION_HEADER = "MIME-Version: 1.0"
TEXT_PLAIN = "Content-Type: text/plain; charset=utf-8"
TEXT_HTML = "Content-Type: text/html; charset=utf-8"
DEFAULT_ATTACHMENT_MIME_TYPE = "application/octet-stream"
DEFAULT_INLINE_MIME_TYPE = "image/png"

_MIME_TYPE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9!#$&^_.+-]*/[A-Za-z0-9][A-Za-z0-9!#$&^_.+-]*$")


class MessageShape(str, Enum):
    PLAIN_TEXT = "plain_text"
    RELATED = "related"
    HTML = "html"
    ALTERNATIVE = "alternative"
    MIXED = "mixed"


@dataclass
class ComposedMessage:
    """A complete RFC 2822 message, ready for base64url encoding."""
    raw: str
    shape: MessageShape
    body_shape: MessageShape
    boundaries: list[str] = field(default_factory=list)
    inline_parts: list[InlinePart] = field(default_factory=list)


@dataclass
class _Body:
    plain: str
    html: Optional[PreparedHtml]


# ---------------------------------------------------------------------------
# Shape selection
# ---------------------------------------------------------------------------

def select_body_shape(
    has_html: bool,
    has_inline_images: bool,
    has_hosted_images: bool,
) -> MessageShape:
    if not has_html:
        return MessageShape.PLAIN_TEXT
    if has_inline_images:
        return MessageShape.RELATED
    if has_hosted_images:
        return MessageShape.HTML
    return MessageShape.ALTERNATIVE


def select_shape(
    has_html: bool,
    has_inline_images: bool,
    has_hosted_images: bool,
    has_attachment: bool,
) -> MessageShape:
    if has_attachment:
        return MessageShape.MIXED
    return select_body_shape(has_html, has_inline_images, has_hosted_images)


# ---------------------------------------------------------------------------
# Boundaries and small helpers
# ---------------------------------------------------------------------------

def new_boundary(kind: str) -> str:
    """e.g. ----=_Related_9f2c4a1b0e7d6c35_1760000000000"""
    return f"----=_{kind}_{secrets.token_hex(8)}_{int(time.time() * 1000)}"


def _quote_param(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\r", "").replace("\n", "")


def _safe_mime_type(value: Optional[str], default: str) -> str:
    """A single-line type/subtype, or the default for anything else."""
    candidate = sanitize_header_value(value)
    return candidate if _MIME_TYPE_RE.match(candidate) else default


def _strip_line_breaks(base64_content: str) -> str:
    return base64_content.replace("\r", "").replace("\n", "")


def _join(lines: list[str]) -> str:
    return CRLF.join(lines)


# ---------------------------------------------------------------------------
# Body renderers: each returns a part starting at its Content-Type header
# ---------------------------------------------------------------------------

def _render_plain_text(body: _Body, boundaries: list[str]) -> str:
    return _join([TEXT_PLAIN, "", body.plain])


def _render_html(body: _Body, boundaries: list[str]) -> str:
    return _join([TEXT_HTML, "", body.html.html])


def _render_inline_part(boundary: str, part: InlinePart) -> str:
    return _join([
        f"--{boundary}",
        f"Content-Type: {_safe_mime_type(part.mime_type, DEFAULT_INLINE_MIME_TYPE)}",
        "Content-Transfer-Encoding: base64",
        f'Content-Disposition: inline; filename="{part.content_id}"',
        f"Content-ID: <{part.content_id}>",
        "",
        part.base64,
    ])


def _render_related(body: _Body, boundaries: list[str]) -> str:
    boundary = new_boundary("Related")
    boundaries.append(boundary)
    lines = [
        f'Content-Type: multipart/related; boundary="{boundary}"',
        "",
        f"--{boundary}",
        TEXT_HTML,
        "",
        body.html.html,
    ]
    lines.extend(_render_inline_part(boundary, part) for part in body.html.inline_parts)
    lines.append(f"--{boundary}--")
    return _join(lines)


def _render_alternative(body: _Body, boundaries: list[str]) -> str:
    boundary = new_boundary("Alt")
    boundaries.append(boundary)
    return _join([
        f'Content-Type: multipart/alternative; boundary="{boundary}"',
        "",
        f"--{boundary}",
        TEXT_PLAIN,
        "",
        body.plain,
        f"--{boundary}",
        TEXT_HTML,
        "",
        body.html.html,
        f"--{boundary}--",
    ])


_BODY_RENDERERS: dict[MessageShape, Callable[[_Body, list[str]], str]] = {
    MessageShape.PLAIN_TEXT: _render_plain_text,
    MessageShape.RELATED: _render_related,
    MessageShape.HTML: _render_html,
    MessageShape.ALTERNATIVE: _render_alternative,
}


def _render_mixed(body_part: str, attachment: AttachmentPayload, boundaries: list[str]) -> str:
    """Wrap a rendered body part and the attachment; the attachment is always last."""
    boundary = new_boundary("Mixed")
    boundaries.append(boundary)
    filename = _quote_param(attachment.filename)
    mime_type = _safe_mime_type(attachment.mime_type, DEFAULT_ATTACHMENT_MIME_TYPE)
    return _join([
        f'Content-Type: multipart/mixed; boundary="{boundary}"',
        "",
        f"--{boundary}",
        body_part,
        f"--{boundary}",
        f'Content-Type: {mime_type}; name="{filename}"',
        "Content-Transfer-Encoding: base64",
        f'Content-Disposition: attachment; filename="{filename}"',
        "",
        _strip_line_breaks(attachment.content_base64),
        f"--{boundary}--",
    ])


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def compose_message(
    headers: MessageHeaders,
    plain_text: str,
    html: Optional[PreparedHtml] = None,
    attachment: Optional[AttachmentPayload] = None,
) -> ComposedMessage:
    """
    Assemble the full message.

    plain_text is CRLF-normalized here; html must already have been through
    inline_images.prepare_html. An attachment missing its filename or content
    is treated as absent.
    """
    body = _Body(plain=normalize_crlf(plain_text), html=html)
    has_attachment = attachment is not None and attachment.is_present

    flags = {
        "has_html": html is not None,
        "has_inline_images": bool(html and html.inline_parts),
        "has_hosted_images": bool(html and html.has_hosted_images),
    }
    body_shape = select_body_shape(**flags)
    shape = select_shape(**flags, has_attachment=has_attachment)

    boundaries: list[str] = []
    content = _BODY_RENDERERS[body_shape](body, boundaries)
    if has_attachment:
        content = _render_mixed(content, attachment, boundaries)

    raw = _join(headers.lines() + [MIME_VERSION_HEADER, content])
    return ComposedMessage(
        raw=raw,
        shape=shape,
        body_shape=body_shape,
        boundaries=boundaries,
        inline_parts=list(html.inline_parts) if html else [],
    )

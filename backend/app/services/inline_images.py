"""
Image handling for HTML email bodies.

The rich-text editor upstream embeds pasted images as data: URLs and can emit
the same <img> twice. Before composing, every HTML body goes through:

  1. deduplicate_images  keep the first <img> per distinct src, drop the rest
  2. normalize_crlf      CRLF line endings
  3. inline_data_images  rewrite data: images to cid: references and collect
                           one InlinePart per occurrence

Hosted images (https://...) are left alone; the mail client fetches them.
Inline parts are generated fresh per send and never cached.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Optional

from app.services.mime_headers import normalize_crlf

DEFAULT_IMAGE_MIME_TYPE = "image/png"

# <img ... src="..."> with any attribute order/spacing, single or double quotes
_IMG_SRC_RE = re.compile(r"""<img\s[^>]*?src\s*=\s*["']([^"']*)["'][^>]*>""", re.IGNORECASE)

_HAS_IMG_RE = re.compile(r"""<img\s[^>]*?src\s*=\s*["']""", re.IGNORECASE)

# groups: 1 attrs before src, 2 mime type, 3 base64 payload, 4 attrs after src
_DATA_IMG_RE = re.compile(
    r"""<img\s([^>]*?)src\s*=\s*["']data:([^;"']+);base64,([^"']+)["']([^>]*)>""",
    re.IGNORECASE,
)

_WHITESPACE_RE = re.compile(r"\s")


@dataclass(frozen=True)
class InlinePart:
    content_id: str
    mime_type: str
    base64: str


@dataclass
class InlineResult:
    html: str
    parts: list[InlinePart] = field(default_factory=list)


@dataclass
class PreparedHtml:
    """HTML ready for the composer: cid-rewritten, CRLF-normalized."""
    html: str
    inline_parts: list[InlinePart] = field(default_factory=list)
    has_hosted_images: bool = False


def _now_ms() -> int:
    return int(time.time() * 1000)


def deduplicate_images(html: str) -> str:
    """
    Remove every <img> whose src was already seen earlier in the document.

    Tags with an empty src are dropped too. Running this on its own output
    changes nothing.
    """
    seen: set = set()

    def _keep_first(match: re.Match) -> str:
        src = match.group(1).strip()
        if not src or src in seen:
            return ""
        seen.add(src)
        return match.group(0)

    return _IMG_SRC_RE.sub(_keep_first, html)


def html_has_images(html: str) -> bool:
    return bool(_HAS_IMG_RE.search(html or ""))


def inline_data_images(html: str) -> InlineResult:
    """
    Replace data: URL images with cid: references.

    Content ids are img_<index>_<epoch ms>; the index makes them unique within
    one message. Whitespace inside the base64 payload is removed.
    """
    parts: list[InlinePart] = []

    def _to_cid(match: re.Match) -> str:
        before, mime_type, payload, after = match.groups()
        content_id = f"img_{len(parts)}_{_now_ms()}"
        parts.append(
            InlinePart(
                content_id=content_id,
                mime_type=mime_type.strip() or DEFAULT_IMAGE_MIME_TYPE,
                base64=_WHITESPACE_RE.sub("", payload),
            )
        )
        return f'<img {before}src="cid:{content_id}"{after}>'

    rewritten = _DATA_IMG_RE.sub(_to_cid, html)
    return InlineResult(html=rewritten, parts=parts)


def prepare_html(html: Optional[str]) -> Optional[PreparedHtml]:
    """Run the full image pipeline. Returns None when there is no HTML body."""
    if not html or not html.strip():
        return None

    deduplicated = deduplicate_images(html.strip())
    normalized = normalize_crlf(deduplicated)
    inlined = inline_data_images(normalized)
    return PreparedHtml(
        html=inlined.html,
        inline_parts=inlined.parts,
        has_hosted_images=not inlined.parts and html_has_images(inlined.html),
    )

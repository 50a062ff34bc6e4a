#!/usr/bin/env python3
"""
Dev helper: post a ticket reply to the local Helpdesk Mail API.

Builds a POST /api/gmail/reply body, optionally with an HTML body read from
a file and a file attachment, and sends it with either a user's Supabase
access token or the internal secret.

Usage
-----
# Plain-text reply as a logged-in agent
python scripts/send_test_reply.py --ticket <uuid> --to customer@example.com \
    --token "$SUPABASE_ACCESS_TOKEN"

# HTML body (data: images are inlined by the API) plus a PDF
python scripts/send_test_reply.py --ticket <uuid> --to customer@example.com \
    --html reply.html --file invoice.pdf --token "$SUPABASE_ACCESS_TOKEN"

# As a trusted system caller acting for a user
python scripts/send_test_reply.py --ticket <uuid> --to customer@example.com \
    --acting-user <user-uuid>

# Print the request body instead of sending it
python scripts/send_test_reply.py --ticket <uuid> --to customer@example.com --dry-run

Environment / .env
------------------
INTERNAL_API_SECRET   Used when --token is not given.
"""

import argparse
import base64
import json
import os
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv


_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".csv": "text/csv",
    ".txt": "text/plain",
}


def _detect_content_type(filename: str) -> str:
    return _CONTENT_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")


def build_reply_payload(
    ticket_id: str,
    to: str,
    message: str,
    html: str | None = None,
    file_path: Path | None = None,
    reply_all: bool = False,
    acting_user_id: str | None = None,
) -> dict:
    """Request body in the shape the frontend sends."""
    payload: dict = {
        "ticketId": ticket_id,
        "message": message,
        "to": to,
        "isInternalNote": False,
        "replyAll": reply_all,
    }
    if html:
        payload["html"] = html
    if file_path is not None:
        payload["attachment"] = {
            "filename": file_path.name,
            "mimeType": _detect_content_type(file_path.name),
            "contentBase64": base64.b64encode(file_path.read_bytes()).decode(),
        }
    if acting_user_id:
        payload["actingUserId"] = acting_user_id
    return payload


def redact_payload(payload: dict) -> dict:
    """Copy of the payload with the attachment content replaced by its size."""
    display = dict(payload)
    attachment = display.get("attachment")
    if attachment:
        size = len(base64.b64decode(attachment["contentBase64"]))
        display["attachment"] = {**attachment, "contentBase64": f"<base64-encoded, {size} bytes>"}
    return display


def main(argv: list[str] | None = None) -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_reply.py",
        description="Post a ticket reply to the Helpdesk Mail API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_reply.py --ticket T --to a@example.com --token JWT
              python scripts/send_test_reply.py --ticket T --to a@example.com --dry-run
        """),
    )
    parser.add_argument("--url", default="http://localhost:8000", help="Backend base URL")
    parser.add_argument("--ticket", required=True, help="Ticket id")
    parser.add_argument("--to", required=True, help="Recipient address (comma-separated with --reply-all)")
    parser.add_argument("--message", default="Test reply from the helpdesk.", help="Plain-text body")
    parser.add_argument("--html", default=None, metavar="PATH", help="File with the HTML body")
    parser.add_argument("--file", default=None, metavar="PATH", help="File to attach")
    parser.add_argument("--reply-all", action="store_true", help="Allow several recipients")
    parser.add_argument("--token", default=None, help="Supabase access token of the acting agent")
    parser.add_argument("--acting-user", default=None, help="User id to act for (internal secret auth)")
    parser.add_argument("--dry-run", action="store_true", help="Print the body without sending it")

    args = parser.parse_args(argv)

    html = None
    if args.html:
        html_path = Path(args.html)
        if not html_path.exists():
            print(f"ERROR: File not found: {html_path}", file=sys.stderr)
            return 1
        html = html_path.read_text(encoding="utf-8")

    file_path = None
    if args.file:
        file_path = Path(args.file)
        if not file_path.exists():
            print(f"ERROR: File not found: {file_path}", file=sys.stderr)
            return 1

    payload = build_reply_payload(
        ticket_id=args.ticket,
        to=args.to,
        message=args.message,
        html=html,
        file_path=file_path,
        reply_all=args.reply_all,
        acting_user_id=args.acting_user,
    )

    if args.dry_run:
        print(json.dumps(redact_payload(payload), indent=2))
        return 0

    if args.token:
        headers = {"Authorization": f"Bearer {args.token}"}
    else:
        secret = os.getenv("INTERNAL_API_SECRET", "")
        if not secret or not args.acting_user:
            print(
                "ERROR: pass --token, or set INTERNAL_API_SECRET and pass --acting-user.",
                file=sys.stderr,
            )
            return 1
        headers = {"X-Internal-Secret": secret}

    endpoint = f"{args.url.rstrip('/')}/api/gmail/reply"
    response = httpx.post(endpoint, json=payload, headers=headers, timeout=60.0)

    symbol = "OK" if response.status_code == 200 else "FAIL"
    print(f"[{symbol}] HTTP {response.status_code}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())

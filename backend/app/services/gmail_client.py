"""
Google OAuth + Gmail REST calls used by the outbound mail pipeline.

  resolve_access_token  refresh-token grant against oauth2.googleapis.com
  send_message          POST users/me/messages/send with {raw, threadId}
  archive               remove the INBOX label from a message or thread

Each function performs exactly one HTTP request and never retries.
"""

import base64
import logging
import os
from dataclasses import dataclass
from typing import Optional

import httpx

from app.services.mail_errors import CredentialError, ProviderUnavailableError, SendError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    thread_id: Optional[str] = None


def _timeout() -> float:
    try:
        return float(os.getenv("GMAIL_HTTP_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS


def _make_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=_timeout())


def _json_body(response: httpx.Response) -> dict:
    """Decoded JSON object body; {} for an empty, non-JSON or non-object body."""
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        logger.warning("Google returned a non-JSON body status=%s", response.status_code)
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# base64url
# ---------------------------------------------------------------------------

def encode_base64url(raw: str) -> str:
    """UTF-8 encode, then URL-safe base64 without '=' padding (Gmail's raw format)."""
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_base64url(encoded: str) -> bytes:
    """Inverse of encode_base64url; restores the padding before decoding."""
    padding = "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(encoded + padding)


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------

async def resolve_access_token(refresh_token: str, client_id: str, client_secret: str) -> str:
    """
    Exchange a stored refresh token for a short-lived access token.

    Raises:
        CredentialError: token endpoint returned non-2xx or no access_token
        ProviderUnavailableError: the token endpoint could not be reached
    """
    try:
        async with _make_client() as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
    except httpx.TransportError as exc:
        raise ProviderUnavailableError(f"Google token endpoint unreachable: {exc}") from exc

    if response.is_error:
        logger.warning("OAuth token refresh failed status=%s", response.status_code)
        raise CredentialError(
            "Gmail access was revoked or has expired. Reconnect the mailbox.",
            provider_response=response.text,
        )

    access_token = _json_body(response).get("access_token")
    if not access_token:
        raise CredentialError(
            "Google did not return an access token. Reconnect the mailbox.",
            provider_response=response.text,
        )
    return access_token


# ---------------------------------------------------------------------------
# Gmail
# ---------------------------------------------------------------------------

def _auth_headers(access_token: str) -> dict:
    return {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
    }


async def _post(url: str, access_token: str, payload: dict) -> httpx.Response:
    try:
        async with _make_client() as client:
            return await client.post(url, headers=_auth_headers(access_token), json=payload)
    except httpx.TransportError as exc:
        raise ProviderUnavailableError(f"Gmail API unreachable: {exc}") from exc


async def send_message(access_token: str, raw: str, thread_id: Optional[str] = None) -> SendResult:
    """
    Send a composed RFC 2822 message, threading it when thread_id is given.

    Raises:
        SendError: Gmail returned non-2xx; carries the response body verbatim
    """
    payload = {"raw": encode_base64url(raw)}
    if thread_id:
        payload["threadId"] = thread_id

    response = await _post(f"{GMAIL_API_BASE}/messages/send", access_token, payload)
    if response.is_error:
        logger.warning("Gmail send failed status=%s", response.status_code)
        raise SendError(response.text, status=response.status_code)

    data = _json_body(response)
    return SendResult(
        success=True,
        message_id=data.get("id"),
        thread_id=data.get("threadId") or thread_id,
    )


async def archive(
    access_token: str,
    message_id: Optional[str] = None,
    thread_id: Optional[str] = None,
) -> None:
    """Remove the INBOX label. Without a message id the whole thread is archived."""
    if message_id:
        url = f"{GMAIL_API_BASE}/messages/{message_id}/modify"
    elif thread_id:
        url = f"{GMAIL_API_BASE}/threads/{thread_id}/modify"
    else:
        raise ValueError("archive() needs a message_id or thread_id")

    response = await _post(url, access_token, {"removeLabelIds": ["INBOX"]})
    if response.is_error:
        logger.warning("Gmail archive failed status=%s", response.status_code)
        raise SendError(response.text, status=response.status_code)

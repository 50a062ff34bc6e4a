"""
Caller authentication for the mail API.

Two kinds of caller are recognised, and they are dispatched explicitly on
which credential the request carries:

- X-Internal-Secret header  -> TrustedSystemCaller (internal services, cron jobs)
- Authorization: Bearer    -> EndUserCaller (helpdesk agent with a Supabase session)

A request presenting a wrong internal secret is rejected; it never falls back
to the bearer path.

Performance notes:
- get_current_user verifies JWTs locally with python-jose when SUPABASE_JWT_SECRET
  is set, avoiding a network round-trip to the Supabase Auth API.
- verify_ticket_access returns the ticket row so callers can reuse it without
  issuing a second SELECT.
"""

import hmac
import os
from typing import Optional

from fastapi import HTTPException, Header
from jose import ExpiredSignatureError, JWTError, jwt

from app.db import supabase
from app.models.caller import ActingUser, Caller, EndUserCaller, TrustedSystemCaller
from app.models.helpdesk import TicketRecord
from app.services import helpdesk_store
from app.services.mail_errors import MailError, RequestValidationFailed

# ---------------------------------------------------------------------------
# Module-level secrets, loaded once at startup.
# SUPABASE_JWT_SECRET: Project Settings > API > JWT Secret. When not set the
# implementation falls back to the Supabase Auth API.
# INTERNAL_API_SECRET: shared with trusted internal callers. When not set,
# no request can authenticate as a trusted caller.
# ---------------------------------------------------------------------------
SUPABASE_JWT_SECRET: Optional[str] = os.environ.get("SUPABASE_JWT_SECRET") or None
INTERNAL_API_SECRET: Optional[str] = os.environ.get("INTERNAL_API_SECRET") or None


async def get_caller(
    authorization: Optional[str] = Header(None),
    x_internal_secret: Optional[str] = Header(None),
) -> Caller:
    """
    FastAPI dependency resolving the authenticated caller.

    Raises:
        HTTPException: 401 if neither credential is valid
    """
    if x_internal_secret is not None:
        return _verify_internal_secret(x_internal_secret)
    return await get_current_user(authorization)


def _verify_internal_secret(provided: str) -> TrustedSystemCaller:
    if not INTERNAL_API_SECRET:
        raise HTTPException(status_code=401, detail="Internal access is not configured")
    if not hmac.compare_digest(provided.encode(), INTERNAL_API_SECRET.encode()):
        raise HTTPException(status_code=401, detail="Invalid internal secret")
    return TrustedSystemCaller()


async def get_current_user(authorization: Optional[str] = Header(None)) -> EndUserCaller:
    """
    Extract and verify the JWT from the Authorization header.

    When SUPABASE_JWT_SECRET is set, verifies the JWT locally using python-jose
    (HS256) with no network call. Falls back to supabase.auth.get_user()
    when the secret is not configured.

    Args:
        authorization: Authorization header with format "Bearer <token>"

    Returns:
        EndUserCaller with the user's id, email and display name

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired
    """
    if not authorization:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated"
        )

    # Extract token from "Bearer <token>" format
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise HTTPException(
            status_code=401,
            detail="Invalid authentication credentials"
        )

    token = parts[1]

    if SUPABASE_JWT_SECRET:
        return _verify_jwt_locally(token)

    return await _verify_jwt_remotely(token)


def _verify_jwt_locally(token: str) -> EndUserCaller:
    """
    Verify a Supabase JWT locally using python-jose.

    Supabase issues HS256 JWTs signed with the project's JWT secret; the
    payload carries the user's email and user_metadata alongside sub.

    Raises:
        HTTPException 401 on any verification failure.
    """
    try:
        payload = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},  # Supabase JWTs use 'authenticated' role, not a fixed audience
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id: Optional[str] = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    metadata = payload.get("user_metadata") or {}
    return EndUserCaller(
        user_id=user_id,
        email=payload.get("email"),
        full_name=metadata.get("full_name"),
    )


async def _verify_jwt_remotely(token: str) -> EndUserCaller:
    """
    Verify a JWT via the Supabase Auth API (fallback when no JWT secret is set).

    Raises:
        HTTPException 401 on any verification failure.
    """
    try:
        response = supabase.auth.get_user(token)

        if not response.user:
            raise HTTPException(
                status_code=401,
                detail="Invalid token"
            )

        user = response.user
        metadata = user.user_metadata or {}
        return EndUserCaller(
            user_id=user.id,
            email=user.email,
            full_name=metadata.get("full_name"),
        )

    except HTTPException:
        raise
    except Exception as e:
        error_msg = str(e).lower()

        if "expired" in error_msg:
            raise HTTPException(
                status_code=401,
                detail="Token expired"
            )

        raise HTTPException(
            status_code=401,
            detail="Invalid token"
        )


def resolve_acting_user(caller: Caller, acting_user_id: Optional[str] = None) -> ActingUser:
    """
    Return the helpdesk user a request acts as.

    End users always act as themselves. Trusted callers must name the user
    whose mailbox is used.

    Raises:
        RequestValidationFailed: trusted caller without actingUserId
        HTTPException: 404 if the named user does not exist
    """
    if isinstance(caller, EndUserCaller):
        return ActingUser(
            user_id=caller.user_id,
            email=caller.email or "",
            full_name=caller.full_name,
        )

    if isinstance(caller, TrustedSystemCaller):
        if not (acting_user_id or "").strip():
            raise RequestValidationFailed("actingUserId is required for system callers")
        user = helpdesk_store.get_auth_user(acting_user_id.strip())
        if user is None:
            raise HTTPException(status_code=404, detail="Acting user not found")
        return user

    raise TypeError(f"Unsupported caller type: {type(caller).__name__}")


async def verify_ticket_access(ticket_id: str, caller: Caller) -> TicketRecord:
    """
    Verify the caller may act on the ticket and return the ticket row.

    Args:
        ticket_id: ID of the ticket
        caller: resolved caller

    Returns:
        The TicketRecord (thread binding, subject, tenant).

    Raises:
        HTTPException: 404 if ticket not found, 403 if the user is not an active
        member of the ticket's tenant, 500 on database error
    """
    try:
        ticket = helpdesk_store.get_ticket(ticket_id)

        if ticket is None:
            raise HTTPException(
                status_code=404,
                detail="Ticket not found"
            )

        if isinstance(caller, EndUserCaller) and not helpdesk_store.user_has_tenant_access(
            caller.user_id, ticket.tenant_id
        ):
            raise HTTPException(
                status_code=403,
                detail="You are not authorized to access this ticket"
            )

        return ticket

    except (HTTPException, MailError):
        raise
    except Exception:
        raise HTTPException(
            status_code=500,
            detail="Failed to verify ticket access"
        )


async def verify_tenant_access(tenant_id: str, caller: Caller) -> None:
    """
    Verify an end user is an active member of the tenant. Trusted callers pass.

    Raises:
        HTTPException: 403 if not a member, 500 on database error
    """
    if isinstance(caller, TrustedSystemCaller):
        return

    try:
        allowed = helpdesk_store.user_has_tenant_access(caller.user_id, tenant_id)
    except MailError:
        raise
    except Exception:
        raise HTTPException(status_code=500, detail="Failed to verify tenant access")

    if not allowed:
        raise HTTPException(
            status_code=403,
            detail="You are not a member of this organisation"
        )

"""
Error taxonomy for the outbound mail pipeline.

Each error carries a stable ``error_code`` and the HTTP status the API
returns for it. ``app.main`` renders every MailError as

    {"success": false, "error": <message>, "error_code": <code>}

Unauthenticated callers never reach the pipeline: the auth dependency
raises HTTPException(401) first.
"""


class MailError(Exception):
    """Base class for failures the caller must surface to the end user."""

    error_code = "mail_error"
    status_code = 500

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


class RequestValidationFailed(MailError):
    """Required fields missing or malformed. Raised before any external call."""

    error_code = "validation_error"
    status_code = 400


class MissingMailboxError(MailError):
    """No active gmail_sync row for the tenant/user."""

    error_code = "mailbox_not_connected"
    status_code = 400


class OAuthAppNotConfiguredError(MailError):
    """Neither the tenant nor the environment provides an OAuth client."""

    error_code = "oauth_not_configured"
    status_code = 400


class CredentialError(MailError):
    """
    The refresh-token exchange failed.

    Refresh-token failures are typically permanent until the user reconnects
    their mailbox, so this is never retried.
    """

    error_code = "mailbox_reauth_required"
    status_code = 400

    def __init__(self, message: str, provider_response: str = ""):
        super().__init__(message)
        self.provider_response = provider_response


class SendError(MailError):
    """The provider rejected a send or modify call. The provider body is surfaced verbatim."""

    error_code = "send_failed"
    status_code = 502

    def __init__(self, provider_response: str, status: int | None = None):
        super().__init__(provider_response or "Gmail request failed")
        self.provider_response = provider_response
        self.provider_status = status


class ProviderUnavailableError(MailError):
    """Google could not be reached (DNS, connect, timeout). Nothing was sent."""

    error_code = "provider_unavailable"
    status_code = 502


class MessageStoreError(MailError):
    """Writing the local message row failed."""

    error_code = "store_failed"
    status_code = 500


class DatabaseUnavailableError(MailError):
    """SUPABASE_SERVICE_KEY is not configured, so no helpdesk rows can be read."""

    error_code = "database_unavailable"
    status_code = 503

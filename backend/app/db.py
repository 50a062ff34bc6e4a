"""
Supabase clients for the mail API.

supabase        anon-key client; only used to verify end-user sessions when
                SUPABASE_JWT_SECRET is not set
supabase_admin  service-role client for tickets, gmail_sync,
                tenant_google_oauth and messages. None when
                SUPABASE_SERVICE_KEY is missing; every pipeline call then
                fails with DatabaseUnavailableError (503).
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")


def _require_settings() -> None:
    missing = [
        name
        for name, value in (("SUPABASE_URL", SUPABASE_URL), ("SUPABASE_KEY", SUPABASE_KEY))
        if not value
    ]
    if missing:
        raise ValueError(f"{' and '.join(missing)} must be set in environment variables")


def _service_client() -> Optional[Client]:
    if not SUPABASE_SERVICE_KEY:
        logger.warning("SUPABASE_SERVICE_KEY is not set; mail endpoints will answer 503")
        return None
    return create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)


_require_settings()

supabase: Client = create_client(SUPABASE_URL, SUPABASE_KEY)
supabase_admin: Optional[Client] = _service_client()

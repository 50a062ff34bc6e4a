"""
Helpdesk Mail API
FastAPI application sending helpdesk ticket replies through Gmail.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.routers import gmail
from app.db import supabase_admin
from app.services.mail_errors import MailError, RequestValidationFailed

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Helpdesk Mail API",
    description="Gmail-backed replies, forwards and archiving for helpdesk tickets",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    Always includes the Vite dev server (http://localhost:5173). Additional
    origins are read from the CORS_ORIGINS environment variable as a
    comma-separated list, e.g.:
        CORS_ORIGINS=https://helpdesk.example.com,https://preview.example.com

    Duplicates are removed while preserving order.
    """
    always_included = [
        "http://localhost:5173",
    ]

    extra_origins: List[str] = []
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        extra_origins = [o.strip() for o in cors_env.split(",") if o.strip()]

    # Deduplicate while preserving order
    seen: set = set()
    origins: List[str] = []
    for origin in always_included + extra_origins:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)

    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(gmail.router, prefix="/api/gmail", tags=["gmail"])


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------

def _error_body(error: str, error_code: str) -> dict:
    return {"success": False, "error": error, "error_code": error_code}


@app.exception_handler(MailError)
async def mail_error_handler(request: Request, exc: MailError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.error_code),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON or missing/blank required fields -> 400 before any external call."""
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    message = "Invalid request: " + "; ".join(problems) if problems else "Invalid request"
    return JSONResponse(
        status_code=RequestValidationFailed.status_code,
        content=_error_body(message, RequestValidationFailed.error_code),
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/")
async def root():
    return {"message": "Helpdesk Mail API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection.

    Executes a lightweight query (SELECT 1 row from tickets) to verify that
    the Supabase admin client can reach the database. Returns 503 on failure.
    """
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    try:
        supabase_admin.table("tickets").select("id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )

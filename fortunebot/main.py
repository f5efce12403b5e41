"""
main.py — fortunebot FastAPI application entry point.

Start with: uvicorn fortunebot.main:app --port 8000
(run from the repository root)
"""
import asyncio
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fortunebot.config import settings

# ---------------------------------------------------------------------------
# Logging — configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan — startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Run Alembic migrations (ledger table)
      2. Redis pool (lazy — a down store does not block startup)
      3. Mistral client + generation semaphore
      4. httpx client for the LINE reply API
      5. TurnResources bundle used by every webhook turn
    Shutdown:
      1. Close httpx client and Redis pool
    """
    # --- 1. Database: run Alembic migrations ---
    package_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=package_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    msg = result.stdout.strip() or "No pending migrations"
    logger.info("Alembic: %s", msg)

    # --- 2. Redis ---
    from fortunebot.cache import create_redis_pool
    app.state.redis = await create_redis_pool()

    # --- 3. Mistral client — singleton for HTTP connection pool reuse ---
    from mistralai import Mistral
    from fortunebot.fortune.llm_service import FortuneGenerator

    app.state.mistral = Mistral(api_key=settings.mistral_api_key)
    # MUST be created inside async context (not module level)
    app.state.generation_semaphore = asyncio.Semaphore(settings.generation_concurrency)
    logger.info("Mistral client initialized (concurrency=%d)", settings.generation_concurrency)

    # --- 4. LINE reply client ---
    from fortunebot.messaging.line_client import LineReplyClient

    app.state.http = httpx.AsyncClient(base_url=settings.line_api_base, timeout=10.0)
    app.state.line_client = LineReplyClient(app.state.http, settings.line_channel_access_token)

    # --- 5. Turn collaborators ---
    from fortunebot.dialogue.orchestrator import TurnResources
    from fortunebot.store import record_fortune_request

    app.state.turn_resources = TurnResources(
        redis=app.state.redis,
        generate=FortuneGenerator(app.state.mistral, settings.mistral_model, app.state.generation_semaphore),
        append_ledger=record_fortune_request,
        reply=app.state.line_client.reply,
    )

    logger.info("fortunebot v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    await app.state.http.aclose()
    await app.state.redis.aclose()
    logger.info("Redis connection pool closed")
    logger.info("fortunebot shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="fortunebot",
    version=settings.app_version,
    description=(
        "LINE intake bot: collects name, birth date and theme, drafts a fortune "
        "report with Mistral and files it in the ledger for operator review."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers — registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Returns ALL field violations in one 422 response."""
    details = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Converts HTTPException to standard error format with semantic code."""
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        422: "VALIDATION_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  → includes exception type & message in details (dev only).
    DEBUG=false → generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check(request: Request) -> dict:
    """Service health, including whether the session store answers PING."""
    from fortunebot.cache import is_ready

    redis_ok = await is_ready(getattr(request.app.state, "redis", None))
    return {
        "status": "ok" if redis_ok else "degraded",
        "session_store": "ready" if redis_ok else "unavailable",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from fortunebot.webhook.routes import router as webhook_router
from fortunebot.ledger.routes import router as ledger_router

app.include_router(webhook_router)
app.include_router(ledger_router)

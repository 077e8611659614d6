"""
LifeSync Backend: FastAPI Application Factory
===============================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance;
       long-lived collaborators are built in the lifespan and kept on
       app.state.
Who:   uvicorn (`uvicorn lifesync.main:app`).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware:  Request ID → Logging → GZip → CORS         │
    │                                                          │
    │  Routes:                                                 │
    │   POST /api/reports/generate   GET /api/reports/{id}     │
    │   GET  /api/usage              POST /api/usage/reset     │
    │   GET  /health                                           │
    │                                                          │
    │  app.state:                                              │
    │   transport          HttpxTransport (shared pool)        │
    │   gateway            ChatCompletionGateway + breaker     │
    │   idempotency_store  IdempotencyStore (own sessions)     │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, config validation, transport/gateway/store, reaper task
    Shutdown: cancel reaper, close transport, dispose database engine
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from lifesync import __version__
from lifesync.config import settings
from lifesync.database import async_session_factory, dispose_engine
from lifesync.exceptions import (
    CircuitBreakerOpenError,
    ErrorKind,
    LifeSyncError,
    LLMServiceError,
    PersistenceFailedError,
    RateLimitedError,
)
from lifesync.middleware.logging import RequestLoggingMiddleware
from lifesync.middleware.request_id import RequestIDMiddleware, request_id_var
from lifesync.routes import health, reports, usage
from lifesync.services.chat_gateway import ChatCompletionGateway
from lifesync.services.idempotency_store import IdempotencyStore
from lifesync.services.transport import HttpxTransport

logger = logging.getLogger(__name__)

# Upstream diagnostics stay in the server log
_PRIVATE_CONTEXT_KEYS = {"upstream_message", "error_type", "status_code"}


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging once for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s, to stdout.
    Structured fields travel in `extra=` for handlers that ship them.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries log every request at INFO/DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

async def reap_idempotency_keys(store: IdempotencyStore, interval: float) -> None:
    """Periodically delete expired idempotency rows until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await store.purge_expired()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Idempotency reaper run failed: %s", type(e).__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("LifeSync Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving so /health can report the problem
        logger.error("Configuration error: %s", str(e))

    transport = HttpxTransport(timeout=settings.openrouter_timeout)
    app.state.transport = transport
    app.state.gateway = ChatCompletionGateway.from_settings(settings, transport)
    app.state.idempotency_store = IdempotencyStore(async_session_factory)

    reaper: Optional[asyncio.Task] = None
    if settings.idempotency_reaper_interval > 0:
        reaper = asyncio.create_task(
            reap_idempotency_keys(app.state.idempotency_store, settings.idempotency_reaper_interval)
        )

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("LifeSync Backend shutting down...")
    if reaper is not None:
        reaper.cancel()
        try:
            await reaper
        except asyncio.CancelledError:
            pass
    await transport.aclose()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details or None,
            "request_id": request_id_var.get(""),
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions to the standard error body {error, message, details, request_id}.

    Handler hierarchy:
        RequestValidationError    → 400 invalid_request
        HTTPException             → its status (401 from identity check)
        RateLimitedError          → 503 + Retry-After
        CircuitBreakerOpenError   → 503 + Retry-After
        LLMServiceError           → exc.status_code, upstream details withheld
        PersistenceFailedError    → 500, generic message
        LifeSyncError (base)      → exc.status_code with exc.context
        Exception (fallback)      → 500, no internal details
    """

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        logger.warning("[%s] Request validation failed: %d errors", request_id_var.get(""), len(errors))
        return _error_response(
            400,
            ErrorKind.INVALID_REQUEST.value,
            "Request validation failed",
            details={"errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        error = {401: "unauthorized", 404: "not_found", 405: "method_not_allowed"}.get(
            exc.status_code, "http_error"
        )
        return _error_response(exc.status_code, error, str(exc.detail), headers=exc.headers)

    @app.exception_handler(RateLimitedError)
    async def handle_rate_limited(request: Request, exc: RateLimitedError):
        logger.warning("[%s] LLM rate limited: %s", request_id_var.get(""), exc.message)
        return _error_response(
            exc.status_code,
            exc.kind.value,
            exc.message,
            details={"retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            exc.status_code,
            exc.kind.value,
            exc.message,
            details={"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(LLMServiceError)
    async def handle_llm_error(request: Request, exc: LLMServiceError):
        logger.error(
            "[%s] LLM service error (%s): %s | Context: %s",
            request_id_var.get(""),
            exc.kind.value,
            exc.message,
            exc.context,
        )
        details = {k: v for k, v in exc.context.items() if k not in _PRIVATE_CONTEXT_KEYS}
        return _error_response(exc.status_code, exc.kind.value, exc.message, details=details)

    @app.exception_handler(PersistenceFailedError)
    async def handle_persistence_error(request: Request, exc: PersistenceFailedError):
        logger.error(
            "[%s] Persistence failed: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(exc.status_code, exc.kind.value, exc.message)

    @app.exception_handler(LifeSyncError)
    async def handle_lifesync_error(request: Request, exc: LifeSyncError):
        logger.warning("[%s] %s: %s", request_id_var.get(""), exc.kind.value, exc.message)
        return _error_response(exc.status_code, exc.kind.value, exc.message, details=exc.context)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="LifeSync API",
        description=(
            "Reflection notes backend. Generates on-demand weekly reports over a "
            "user's notes with an LLM, with idempotent retries and a weekly quota."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After", "Location"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(reports.router)
    app.include_router(usage.router)
    app.include_router(health.router)

    return app


app = create_app()

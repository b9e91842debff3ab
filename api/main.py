"""
api/main.py -- FastAPI application entry point for the feedback auth service.

Exposes registration, login, password reset and two-factor flows over HTTP,
and puts the bearer token trust gate in front of every route.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests     -- method, path, status and latency of every request
  2. CORSMiddleware   -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware-- enforces per-route rate limits from api.limiter
  4. BearerTokenGate  -- attaches the caller's Principal when the bearer
                         token verifies; never rejects

Lifespan handles startup (store init, service wiring) and shutdown (engine
dispose) symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.account import router as account_router
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError, TokenError
from auth.gate import BearerTokenGate
from auth.password_reset import PasswordResetManager, ResetNotifier
from auth.store import AuthStore
from auth.tokens import TokenCodec
from auth.two_factor import TwoFactorManager
from auth.verifier import TokenVerifier
from core.clock import Clock, system_clock
from core.config import Settings, get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("feedbackauth.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def install_services(
    app: FastAPI,
    store: AuthStore,
    settings: Settings,
    clock: Clock = system_clock,
    notifier: ResetNotifier | None = None,
) -> None:
    """Build the auth services around an initialized store and put them on app.state.

    The trust gate and the route dependencies both read
    app.state.token_verifier, so they share one TokenVerifier and one codec.
    """
    codec = TokenCodec.from_settings(settings, clock=clock)
    app.state.auth_store = store
    app.state.token_codec = codec
    app.state.token_verifier = TokenVerifier(codec)
    app.state.two_factor_challenge_seconds = settings.two_factor_challenge_seconds
    app.state.password_reset = PasswordResetManager(
        store,
        clock=clock,
        expire_hours=settings.reset_token_expire_hours,
        notifier=notifier,
    )
    app.state.two_factor = TwoFactorManager(
        store,
        settings.secret_key,
        issuer=settings.totp_issuer,
        backup_code_count=settings.backup_code_count,
        backup_code_length=settings.backup_code_length,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The store must be initialized before the services that use it
    are built, and is disposed last.
    """
    logger.info("Feedback auth API starting up")
    store = AuthStore(settings.database_url)
    await store.initialize()
    install_services(app, store, settings)
    logger.info("Auth services initialized (token lifetime %ds)", settings.token_expire_seconds)

    yield

    await app.state.auth_store.close()
    logger.info("Feedback auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Feedback Auth API",
    description="Bearer token authentication, password reset and two-factor authentication.",
    version=settings.app_version,
    lifespan=lifespan,
    # Documentation paths sit under the trust gate's public prefixes.
    openapi_url="/v3/api-docs",
    docs_url="/swagger-ui",
    redoc_url="/redoc",
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware in reverse registration order: the middleware
# added LAST is the outermost. Register innermost first: gate -> SlowAPI ->
# CORS. log_requests below is added after all three and so wraps them.
# ---------------------------------------------------------------------------

app.add_middleware(BearerTokenGate, public_prefixes=settings.public_path_prefixes)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine. We capture wall-clock time
# before and after call_next so we can report latency on every response.
# The Authorization header is never logged.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(account_router, prefix="/api/v1", tags=["Account"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render domain errors from auth/ (reset tokens, 2FA, credentials).

    Status and code come from the exception class, so route handlers let
    manager errors propagate untouched.
    """
    headers = {"Cache-Control": "no-store"}
    if isinstance(exc, TokenError):
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
        headers=headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    slowapi stores this on the exception as exc.retry_after (int seconds).
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a dict detail. When detail is
    already a structured dict, use it directly as the error field rather than
    stringifying it -- str(dict) produces a Python repr, not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    database_ok = await request.app.state.auth_store.ping()
    components = {"app": "ok", "database": "ok" if database_ok else "error"}
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=settings.app_version,
        components=components,
    )

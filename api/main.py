"""
api/main.py -- FastAPI application entry point for SessionGuard.

Exposes the auth core over HTTP: OAuth token issuance with refresh-token
rotation, logout, userinfo, password reset and registration.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- signed cookie holding the OAuth state value

Configuration edge:
  This is the only module that calls get_settings(). Every component is
  constructed with the Settings instance by build_auth_state(), which tests
  call directly with their own Settings and database.

Lifespan handles startup (database, components, purge task) and shutdown
(cancel purge task, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import configure_limiter, limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.oauth import router as oauth_router
from api.routes.v1.password import router as password_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError
from auth.hasher import CredentialHasher
from auth.mail import LoggingMailDispatcher, MailDispatcher
from auth.password_reset import PasswordResetManager
from auth.providers import IdentityProviderRegistry, LocalIdentityProvider
from auth.service import AuthService
from auth.sessions import SessionManager
from auth.store import AuthDatabase, UserStore
from auth.token_store import PasswordResetTokenStore, RefreshTokenStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings
from core.logging import configure_logging

API_VERSION = "1.0.0"

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger("sessionguard.api")

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_auth_state(
    state: Any,
    settings: Settings,
    db: AuthDatabase,
    mailer: MailDispatcher | None = None,
) -> None:
    """Construct every auth component and attach it to app.state.

    Routes read only from app.state, so swapping the database or mail
    dispatcher here is all a test needs to isolate itself.
    """
    hasher = CredentialHasher()
    codec = TokenCodec(settings)
    users = UserStore(db)
    refresh_tokens = RefreshTokenStore(db)
    reset_tokens = PasswordResetTokenStore(db)
    if mailer is None:
        mailer = LoggingMailDispatcher(settings.password_reset_expire_seconds)

    sessions = SessionManager(db, refresh_tokens, codec)
    providers = IdentityProviderRegistry.from_settings(settings, LocalIdentityProvider(users, hasher))

    state.settings = settings
    state.db = db
    state.user_store = users
    state.refresh_token_store = refresh_tokens
    state.reset_token_store = reset_tokens
    state.token_codec = codec
    state.mailer = mailer
    state.providers = providers
    state.session_manager = sessions
    state.password_reset_manager = PasswordResetManager(
        settings, db, users, reset_tokens, refresh_tokens, hasher, mailer
    )
    state.auth_service = AuthService(providers, sessions, codec, users, hasher)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


def purge_tokens(state: Any) -> tuple[int, int]:
    """Delete refresh tokens and reset tokens that can never be valid again."""
    refresh_count = state.refresh_token_store.delete_expired_or_revoked()
    reset_count = state.reset_token_store.delete_expired_or_used()
    logger.info("Token purge: refresh=%d reset=%d", refresh_count, reset_count)
    return refresh_count, reset_count


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Purge dead tokens every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly. A failed sweep is logged
    and retried on the next tick.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(purge_tokens, app.state)
        except Exception:
            logger.exception("Token purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Database first -- every store depends on it.
      2. Components second -- built on the database and Settings.
      3. Purge task last -- references the token stores.
    """
    logger.info("SessionGuard API starting up")
    configure_limiter(settings)
    db = AuthDatabase(settings.database_url)
    build_auth_state(app.state, settings, db)
    logger.info("Auth initialized (providers=%s)", [p.name for p in app.state.providers.federated()])
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.token_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    db.close()
    logger.info("SessionGuard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SessionGuard API",
    description="Token-based authentication with refresh-token rotation and password reset.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI -> Session.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SessionMiddleware stores the OAuth state between the authorization redirect
# and the callback (CSRF protection for the authorization code flow).
app.add_middleware(SessionMiddleware, secret_key=settings.session_secret_key, https_only=not settings.debug)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
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

app.include_router(oauth_router, prefix="/api/v1", tags=["OAuth"])
app.include_router(password_router, prefix="/api/v1", tags=["Password"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth exception family to its status code and stable error code."""
    response = _error(exc.status_code, exc.code, exc.message)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(NotImplementedError)
async def not_implemented_handler(request: Request, exc: NotImplementedError) -> JSONResponse:
    return _error(501, "not_implemented", "This operation is not implemented.", str(exc) or None)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    response = _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    db_ok = await asyncio.to_thread(request.app.state.db.ping)
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )

"""
api/main.py -- FastAPI application entry point for secure-user-auth.

Exposes the authentication core over HTTP: registration, login, password
change and reset, and admin user management.

Install deps:  pip install -e ".[server]"
Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request
  2. security_headers      -- nosniff / frame / referrer headers on every response
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins
  5. SlowAPIMiddleware     -- enforces default and per-route rate limits from api.limiter

Lifespan builds the auth components from settings on startup and closes the
identity store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.clock import Clock, utc_now
from auth.errors import AuthError
from auth.gates import AuthenticationGate
from auth.passwords import CredentialHasher
from auth.resets import ResetTokenIssuer
from auth.service import AccountService
from auth.store import IdentityStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings
from core.logging_config import configure_logging

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger("userauth.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_components(app: FastAPI, settings: Settings, store: IdentityStore, clock: Clock = utc_now) -> None:
    """Attach the auth components to app.state.

    Settings are read here and passed down explicitly; nothing under auth/
    looks configuration up on its own. The hasher computes its timing dummy
    hash in the constructor, so this is the slow part of startup.
    """
    hasher = CredentialHasher(rounds=settings.bcrypt_rounds)
    codec = TokenCodec(
        secret_key=settings.secret_key,
        lifetime_seconds=settings.token_expire_seconds,
        clock=clock,
    )
    resets = ResetTokenIssuer(clock)
    app.state.settings = settings
    app.state.identity_store = store
    app.state.token_codec = codec
    app.state.auth_gate = AuthenticationGate(codec, store)
    app.state.account_service = AccountService(store, hasher, codec, resets, clock)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("secure-user-auth API starting up (debug=%s)", settings.debug)
    store = IdentityStore(db_url=settings.database_url)
    build_components(app, settings, store)
    logger.info("Identity store ready (%d users)", store.count_users())

    yield

    store.close()
    logger.info("secure-user-auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="secure-user-auth API",
    description="Registration, login, password reset and role-based user management.",
    version=API_VERSION,
    lifespan=lifespan,
    # Interactive docs only in debug mode.
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette (FastAPI's foundation) wraps middleware in reverse registration
# order: the last one added is the outermost. The @app.middleware("http")
# functions below are registered after these, so they run first.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def security_headers(request: Request, call_next):
    """Set the browser hardening headers on every response."""
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# We capture wall-clock time before and after call_next so we can report
# latency on every response. Query strings are not logged: a reset ticket
# travels in the path, so only the route template is written for that route.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    path = request.url.path
    if path.startswith("/api/v1/auth/password-reset/"):
        path = "/api/v1/auth/password-reset/{token}"
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a domain error with its fixed status, code and public message.

    exc.detail (and exc.reason for authentication failures) is internal and
    goes to the log only.
    """
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "%s on %s %s: %s reason=%s detail=%s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc.error_code,
        getattr(exc, "reason", "-"),
        exc.detail,
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.error_code, message=exc.message)).model_dump(
            exclude_none=True
        ),
    )
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this directly, without awaiting it.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Input values are dropped from the detail so a rejected password never
    comes back in a response.
    """
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(errors),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 on unknown paths, 405, ...)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
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
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Exempt from rate limiting --
# health checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@limiter.exempt  # above @app.get so FastAPI registers the undecorated coroutine
@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> JSONResponse:
    """Return liveness, version and database reachability.

    503 when the identity store does not answer.
    """
    db_ok = request.app.state.identity_store.ping()
    body = HealthResponse(
        status="ok" if db_ok else "degraded",
        version=API_VERSION,
        components={"database": "ok" if db_ok else "unavailable"},
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())

"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register                -- create a `user` account; returns a token
  POST /api/v1/auth/login                   -- email + password login; returns a token
  GET  /api/v1/auth/me                      -- current user (requires auth)
  POST /api/v1/auth/logout                  -- audit only; the client drops its token
  PUT  /api/v1/auth/password                -- change own password; returns a new token
  POST /api/v1/auth/password-reset          -- request a reset ticket (generic answer)
  PUT  /api/v1/auth/password-reset/{token}  -- redeem a ticket; returns a token

Security:
  [H2] POST /login and POST /password-reset are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] AccountService.login() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.
  Reset requests answer identically for known and unknown emails. The
  plaintext ticket is echoed back only in debug mode.

Handlers are plain `def`: bcrypt is CPU-bound and FastAPI runs sync handlers
in its thread pool, keeping the event loop free.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegisterRequest,
    ResetRequestedResponse,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_current_user
from auth.models import Identity
from auth.service import AccountService

# Auth policy:
# - POST /api/v1/auth/register:                public
# - POST /api/v1/auth/login:                   public, rate-limited
# - POST /api/v1/auth/password-reset:          public, rate-limited
# - PUT  /api/v1/auth/password-reset/{token}:  public (the ticket is the credential)
# - GET  /api/v1/auth/me:                      requires auth (get_current_user)
# - POST /api/v1/auth/logout:                  requires auth (get_current_user)
# - PUT  /api/v1/auth/password:                requires auth (get_current_user)
router = APIRouter()

_RESET_MESSAGE = "If that email is registered, a password reset link has been sent."


def _service(request: Request) -> AccountService:
    return request.app.state.account_service


def _expires_in(request: Request) -> int:
    return int(request.app.state.token_codec.lifetime.total_seconds())


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create an account with the `user` role and log it in.

    Duplicate email -> 409 conflict.
    """
    identity, token = _service(request).register(body.name, body.email, body.password)
    _no_store(response)
    return AuthResponse(
        access_token=token,
        expires_in=_expires_in(request),
        user=UserResponse.from_identity(identity),
    )


@limiter.limit(LOGIN_RATE_LIMIT)  # [H2] wraps the function @router registered, keep it on top
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and deactivated account all return the
    same 401 "bad_credentials" to avoid leaking which accounts exist.
    """
    identity, token = _service(request).login(body.email, body.password)
    _no_store(response)
    return AuthResponse(
        access_token=token,
        expires_in=_expires_in(request),
        user=UserResponse.from_identity(identity),
    )


@limiter.limit(LOGIN_RATE_LIMIT)
@router.post("/auth/password-reset", response_model=ResetRequestedResponse, response_model_exclude_none=True)
def request_password_reset(request: Request, body: PasswordResetRequest) -> ResetRequestedResponse:
    """Issue a reset ticket if the email is registered.

    The answer is the same either way. Delivery of the ticket is out of band;
    in debug mode the ticket is returned here so the flow can be exercised
    without a mail server.
    """
    ticket = _service(request).request_password_reset(body.email)
    reset_token = ticket.token if ticket is not None and request.app.state.settings.debug else None
    return ResetRequestedResponse(message=_RESET_MESSAGE, reset_token=reset_token)


@router.put("/auth/password-reset/{token}", response_model=AuthResponse)
def reset_password(request: Request, response: Response, token: str, body: PasswordResetConfirm) -> AuthResponse:
    """Redeem a reset ticket and set a new password.

    Unknown, already-used and expired tickets all answer 400
    "invalid_reset_token".
    """
    identity, new_token = _service(request).reset_password(token, body.password)
    _no_store(response)
    return AuthResponse(
        access_token=new_token,
        expires_in=_expires_in(request),
        user=UserResponse.from_identity(identity),
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: Identity = Depends(get_current_user)) -> UserResponse:
    """Return the currently authenticated user."""
    return UserResponse.from_identity(current_user)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, current_user: Identity = Depends(get_current_user)) -> MessageResponse:
    """Record the logout. Tokens are stateless; the client discards its copy."""
    _service(request).logout(current_user)
    return MessageResponse(message="Logged out.")


@router.put("/auth/password", response_model=TokenResponse)
def change_password(
    request: Request,
    response: Response,
    body: PasswordChangeRequest,
    current_user: Identity = Depends(get_current_user),
) -> TokenResponse:
    """Change the caller's password.

    Every token issued before the change stops working; the token in this
    response is the one to use from now on.
    """
    token = _service(request).change_password(current_user, body.current_password, body.new_password)
    _no_store(response)
    return TokenResponse(access_token=token, expires_in=_expires_in(request))

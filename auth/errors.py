"""
auth/errors.py -- Error taxonomy for the authentication core.

Every error carries a class-level HTTP status_code, a stable error_code and a
public message. The public message is what clients see; it never says which
internal check failed. The specific cause stays on the instance as `reason`
(authentication failures) or `detail`, and is only written to logs.

The API layer renders all of these through one exception handler, so adding
a subclass here is enough to give it a wire representation.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors raised by the auth core."""

    status_code: int = 500
    error_code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail or self.message


class ValidationFailure(AuthError):
    """Input is well-formed but not acceptable (400)."""

    status_code = 400
    error_code = "validation_error"
    message = "The request could not be processed."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail)
        # Validation messages are written for the caller, so they are public.
        if detail:
            self.message = detail


class InvalidResetTicketError(ValidationFailure):
    """Reset ticket unknown, already used or expired (400).

    Reuse and never-issued deliberately share this error.
    """

    error_code = "invalid_reset_token"
    message = "Invalid or expired reset token."

    def __init__(self, detail: str | None = None) -> None:
        AuthError.__init__(self, detail)


class ConflictFailure(AuthError):
    """Email already registered (409)."""

    status_code = 409
    error_code = "conflict"
    message = "A user with that email already exists."


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthenticationFailure(AuthError):
    """Base for every 401. `reason` is for logs only."""

    status_code = 401
    error_code = "unauthorized"
    message = "Authentication required."
    reason = "unauthenticated"


class NoTokenError(AuthenticationFailure):
    reason = "no-token"


class InvalidTokenError(AuthenticationFailure):
    """Malformed token, bad signature or unusable claims."""

    error_code = "invalid_token"
    message = "Invalid or revoked token."
    reason = "invalid-token"


class ExpiredTokenError(AuthenticationFailure):
    error_code = "token_expired"
    message = "Token expired."
    reason = "expired-token"


# The three classes below pass signature and expiry checks, so their wire
# form is identical to InvalidTokenError. Only logs see the difference.


class StaleTokenError(InvalidTokenError):
    """Token issued before the identity's last password change."""

    reason = "stale-token"


class IdentityMissingError(InvalidTokenError):
    reason = "identity-missing"


class DeactivatedError(InvalidTokenError):
    reason = "deactivated"


class InvalidCredentialsError(AuthenticationFailure):
    """Wrong email/password pair, or a deactivated account at login."""

    error_code = "bad_credentials"
    message = "Invalid email or password."
    reason = "bad-credentials"


# ---------------------------------------------------------------------------
# Authorization, lookup, internal
# ---------------------------------------------------------------------------


class AuthorizationFailure(AuthError):
    status_code = 403
    error_code = "forbidden"
    message = "You do not have permission to perform this action."


class NotFound(AuthError):
    status_code = 404
    error_code = "not_found"
    message = "User not found."


class InternalFailure(AuthError):
    """Hashing or signing primitive failed. Never retried."""

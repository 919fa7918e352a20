"""
auth/tokens.py -- Stateless bearer tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with the shared SECRET_KEY
       and carry the identity id (sub), role, issued-at and expiry.

  Verification order: signature first, then expiry. A forged token never
       reaches the expiry check, so "expired" is only ever reported for
       tokens this service actually minted.

  Expiry is checked here against the injected clock rather than by jose,
       which always reads the wall clock. That keeps expiry testable and
       keeps jose's ExpiredSignatureError from blurring the two outcomes.

  Outcomes are typed: InvalidTokenError, ExpiredTokenError, or TokenClaims.
       The API layer maps the two errors to different response codes.

  iat/exp carry microseconds (RFC 7519 allows a fractional NumericDate), so
       a token minted any time before a password change is older than the
       change stamp. A token is never dated at or before its identity's
       password_changed_at; see auth/lifecycle.py.

The secret is validated by core.config.Settings before it gets here; this
module only refuses an empty one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.clock import Clock, utc_now
from auth.errors import ExpiredTokenError, InternalFailure, InvalidTokenError
from auth.models import Identity, Role, TokenClaims

logger = logging.getLogger("userauth.auth")

ALGORITHM = "HS256"

# Smallest step a datetime can take.
_TICK = timedelta(microseconds=1)


class TokenCodec:
    """Issue and verify signed bearer tokens.

    Usage:
        codec = TokenCodec(secret_key=settings.secret_key, lifetime_seconds=3600)
        token = codec.issue(identity)
        claims = codec.verify(token)  # raises InvalidTokenError / ExpiredTokenError
    """

    def __init__(self, secret_key: str, lifetime_seconds: int, clock: Clock = utc_now) -> None:
        if not secret_key:
            raise ValueError("TokenCodec requires a non-empty secret key.")
        if lifetime_seconds <= 0:
            raise ValueError("Token lifetime must be positive.")
        self._secret_key = secret_key
        self.lifetime = timedelta(seconds=lifetime_seconds)
        self._clock = clock

    def issue(self, identity: Identity) -> str:
        """Encode a signed JWT for identity, valid from now for the configured lifetime.

        If the clock has not moved past identity.password_changed_at, iat is
        set one microsecond after it so the token is not born stale.
        """
        if identity.id is None:
            raise ValueError("Cannot issue a token for an unsaved identity.")
        issued = self._clock()
        changed_at = identity.password_changed_at
        if changed_at is not None and issued <= changed_at:
            issued = changed_at + _TICK
        issued_at = round(issued.timestamp(), 6)
        payload = {
            "sub": str(identity.id),
            "role": Role(identity.role).value,
            "iat": issued_at,
            "exp": round(issued_at + self.lifetime.total_seconds(), 6),
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)
        except JWTError as exc:
            logger.error("Token signing failed: %s", type(exc).__name__)
            raise InternalFailure("token signing failed") from exc

    def verify(self, token: str) -> TokenClaims:
        """Check signature, then expiry, and return the typed claims."""
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidTokenError(f"signature or format rejected: {type(exc).__name__}") from exc

        claims = _parse_claims(payload)
        if self._clock() >= claims.expires_at:
            raise ExpiredTokenError(f"expired at {claims.expires_at.isoformat()}")
        return claims


def _parse_claims(payload: dict) -> TokenClaims:
    """Map a verified payload onto TokenClaims. Missing or odd claims are invalid."""
    try:
        return TokenClaims(
            subject=int(payload["sub"]),
            role=Role(payload["role"]),
            issued_at=datetime.fromtimestamp(float(payload["iat"]), timezone.utc),
            expires_at=datetime.fromtimestamp(float(payload["exp"]), timezone.utc),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidTokenError(f"unusable claims: {type(exc).__name__}") from exc

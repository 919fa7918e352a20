"""
auth/passwords.py -- bcrypt credential hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt only looks at the first 72 bytes of its input and current releases
raise instead of truncating. Longer plaintexts are refused up front as a
ValidationFailure; the API schemas enforce the same bound so this only fires
for direct callers.

Failures of the primitive itself (salt generation, a corrupt cost factor)
raise InternalFailure. There is deliberately no weaker fallback.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import InternalFailure, ValidationFailure

logger = logging.getLogger("userauth.auth")

MAX_PASSWORD_BYTES = 72
DEFAULT_ROUNDS = 12


class CredentialHasher:
    """Salted adaptive hashing with a tunable cost.

    Usage:
        hasher = CredentialHasher(rounds=12)
        digest = hasher.hash("Secret@123")
        hasher.verify("Secret@123", digest)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once here so the first
        # login attempt is not measurably slower than subsequent ones.
        self._dummy_hash = self.hash("userauth_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt hash of plaintext with a fresh random salt."""
        encoded = _encode(plaintext)
        try:
            return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        except (OSError, ValueError) as exc:
            logger.error("Password hashing failed: %s", type(exc).__name__)
            raise InternalFailure("password hashing failed") from exc

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True if plaintext matches digest.

        A digest bcrypt cannot parse, or an over-long plaintext, is a plain
        mismatch rather than an error.
        """
        encoded = plaintext.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, digest.encode("utf-8"))
        except ValueError:
            return False

    def verify_dummy(self, plaintext: str) -> bool:
        """Burn one bcrypt comparison for an account that does not exist.

        Always returns False. Callers use it so that response time does not
        reveal whether an email is registered [C1].
        """
        self.verify(plaintext, self._dummy_hash)
        return False


def _encode(plaintext: str) -> bytes:
    if not plaintext:
        raise ValidationFailure("Password must not be empty.")
    encoded = plaintext.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValidationFailure(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return encoded

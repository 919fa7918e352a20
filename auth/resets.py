"""
auth/resets.py -- One-time password-reset tickets.

secrets.token_hex(32) gives 256 bits of entropy, so the plaintext cannot be
guessed within the ticket's window. Because of that entropy the stored form
only needs to be one-way, not slow: a keyless SHA-256 digest is deterministic,
which lets the store find the owning identity with an indexed equality query
instead of scanning and bcrypt-comparing every pending ticket.

The plaintext is returned once by issue() and never persisted or logged.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from auth.clock import Clock, utc_now
from auth.models import ResetTicket

RESET_TICKET_LIFETIME = timedelta(minutes=10)
_TICKET_BYTES = 32


class ResetTokenIssuer:
    """Create and check reset tickets.

    Redemption is single-use only because the caller clears the stored
    digest and expiry after a successful redeem(). This class holds no state.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    def issue(self) -> ResetTicket:
        token = secrets.token_hex(_TICKET_BYTES)
        return ResetTicket(
            token=token,
            digest=self.digest(token),
            expires_at=self._clock() + RESET_TICKET_LIFETIME,
        )

    @staticmethod
    def digest(plaintext: str) -> str:
        """SHA-256 hex digest used as the stored lookup key."""
        return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()

    def redeem(self, plaintext: str, stored_digest: str | None, stored_expiry: datetime | None) -> bool:
        """True iff plaintext matches stored_digest and the ticket has not expired.

        Absent stored fields (never issued, or already redeemed) fail.
        """
        if not plaintext or stored_digest is None or stored_expiry is None:
            return False
        if not hmac.compare_digest(self.digest(plaintext), stored_digest):
            return False
        return self._clock() < stored_expiry

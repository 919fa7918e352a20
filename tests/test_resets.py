"""Unit tests for ResetTokenIssuer in auth/resets.py.

Covers:
- ticket shape: 64 hex chars, SHA-256 digest, 10-minute expiry
- tickets are unique
- redeem: match before expiry, refuse at/after expiry, wrong plaintext, absent fields
"""

import hashlib

import pytest

from auth.resets import RESET_TICKET_LIFETIME, ResetTokenIssuer


class TestIssue:
    def test_ticket_shape(self, resets: ResetTokenIssuer, clock) -> None:
        ticket = resets.issue()
        assert len(ticket.token) == 64
        int(ticket.token, 16)  # hex
        assert ticket.digest == hashlib.sha256(ticket.token.encode()).hexdigest()
        assert ticket.expires_at == clock.now + RESET_TICKET_LIFETIME

    def test_lifetime_is_ten_minutes(self) -> None:
        assert RESET_TICKET_LIFETIME.total_seconds() == 600

    def test_tickets_are_unique(self, resets: ResetTokenIssuer) -> None:
        tokens = {resets.issue().token for _ in range(50)}
        assert len(tokens) == 50

    def test_plaintext_not_in_repr(self, resets: ResetTokenIssuer) -> None:
        ticket = resets.issue()
        assert ticket.token not in repr(ticket)

    def test_digest_is_deterministic(self) -> None:
        assert ResetTokenIssuer.digest("abc") == ResetTokenIssuer.digest("abc")
        assert ResetTokenIssuer.digest("abc") != ResetTokenIssuer.digest("abd")


class TestRedeem:
    def test_redeem_before_expiry(self, resets: ResetTokenIssuer, clock) -> None:
        ticket = resets.issue()
        clock.advance(599)
        assert resets.redeem(ticket.token, ticket.digest, ticket.expires_at) is True

    def test_redeem_at_expiry_fails(self, resets: ResetTokenIssuer, clock) -> None:
        ticket = resets.issue()
        clock.advance(600)
        assert resets.redeem(ticket.token, ticket.digest, ticket.expires_at) is False

    def test_redeem_after_expiry_fails(self, resets: ResetTokenIssuer, clock) -> None:
        ticket = resets.issue()
        clock.advance(601)
        assert resets.redeem(ticket.token, ticket.digest, ticket.expires_at) is False

    def test_wrong_plaintext(self, resets: ResetTokenIssuer) -> None:
        ticket = resets.issue()
        other = resets.issue()
        assert resets.redeem(other.token, ticket.digest, ticket.expires_at) is False

    @pytest.mark.parametrize("field", ["digest", "expiry"])
    def test_absent_stored_fields(self, resets: ResetTokenIssuer, field: str) -> None:
        ticket = resets.issue()
        digest = None if field == "digest" else ticket.digest
        expiry = None if field == "expiry" else ticket.expires_at
        assert resets.redeem(ticket.token, digest, expiry) is False

    def test_empty_plaintext(self, resets: ResetTokenIssuer) -> None:
        ticket = resets.issue()
        assert resets.redeem("", ticket.digest, ticket.expires_at) is False

"""
auth/lifecycle.py -- Explicit state transitions for Identity records.

A password mutation is one function, credential_change(), so the order of its
effects (validate, hash, stamp, clear reset ticket) is fixed here and not left
to whichever caller happens to run first.

Transitions are expressed as column deltas: a dict of only the fields that
change. The account service hands the delta to IdentityStore.update(), which
writes those columns and nothing else, so a concurrent edit to an unrelated
column (is_active, role) is never overwritten by a stale snapshot.
apply_credential_change() applies the same delta to an in-memory Identity for
records that do not exist yet.

Freshness: password_changed_at is the exact change instant and token iat
carries microseconds, so every token minted before the change compares as
stale (changed_at >= iat). TokenCodec.issue() never dates a token at or
before the identity's password_changed_at, which keeps the replacement token
handed out after the change fresh even on a coarse clock.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from auth.errors import ValidationFailure
from auth.models import Identity, ResetTicket
from auth.passwords import CredentialHasher


def credential_change(
    new_password: str,
    hasher: CredentialHasher,
    now: datetime,
    *,
    initial: bool = False,
    clear_reset_ticket: bool = False,
) -> dict:
    """Return the column delta for setting new_password.

    initial=True is for records being created: no password_changed_at stamp,
    since no token can predate the identity.
    """
    if not new_password:
        raise ValidationFailure("Password must not be empty.")
    changes: dict = {"hashed_password": hasher.hash(new_password)}
    if not initial:
        changes["password_changed_at"] = now
    if clear_reset_ticket:
        changes.update(reset_ticket_fields(None))
    return changes


def apply_credential_change(
    identity: Identity,
    new_password: str,
    hasher: CredentialHasher,
    now: datetime,
    *,
    initial: bool = False,
    clear_reset_ticket: bool = False,
) -> Identity:
    """Return identity with credential_change() applied."""
    changes = credential_change(new_password, hasher, now, initial=initial, clear_reset_ticket=clear_reset_ticket)
    return replace(identity, **changes)


def reset_ticket_fields(ticket: ResetTicket | None) -> dict:
    """Column delta that stores ticket's digest and expiry, or clears both for None.

    Storing a ticket overwrites any pending one.
    """
    if ticket is None:
        return {"reset_token_hash": None, "reset_token_expires": None}
    return {"reset_token_hash": ticket.digest, "reset_token_expires": ticket.expires_at}


def is_token_stale(identity: Identity, issued_at: datetime) -> bool:
    """True when the credential changed at or after issued_at."""
    changed_at = identity.password_changed_at
    return changed_at is not None and changed_at >= issued_at

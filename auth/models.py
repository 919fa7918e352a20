"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the account
service and routes do the work. Identity is frozen: a credential change or
reset-ticket update produces a new Identity through auth/lifecycle.py
rather than mutating fields in place.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. Anything else in a token or a request is rejected."""

    user = "user"
    admin = "admin"


@dataclass(frozen=True)
class Identity:
    """One principal.

    email is stored lower-cased and stripped; the store enforces uniqueness.

    hashed_password is a bcrypt hash and is excluded from repr so it cannot
    leak through a log line or a traceback. The same goes for the reset digest.

    password_changed_at is None until the first password change after
    creation. Tokens issued at or before it are stale.

    reset_token_hash and reset_token_expires are either both set or both None.
    """

    email: str
    name: str
    hashed_password: str = field(repr=False)
    role: Role = Role.user
    id: int | None = None
    is_active: bool = True
    last_login: datetime | None = None
    password_changed_at: datetime | None = None
    reset_token_hash: str | None = field(default=None, repr=False)
    reset_token_expires: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a bearer token."""

    subject: int
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class ResetTicket:
    """A freshly issued password-reset ticket.

    token is the plaintext handed to the user exactly once. Only digest and
    expires_at are ever persisted.
    """

    token: str = field(repr=False)
    digest: str
    expires_at: datetime

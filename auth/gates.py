"""
auth/gates.py -- Request authentication and authorization.

AuthenticationGate walks one request through

    NoToken -> TokenPresent -> SignatureChecked -> IdentityLoaded -> Fresh -> Authenticated

and raises an AuthenticationFailure subclass at the first failing step. The
subclass carries the reason (no-token, invalid-token, expired-token,
identity-missing, stale-token, deactivated); the gate logs it, the API layer
only shows the public message.

AuthorizationGate checks the authenticated identity's role against a fixed
set. It fails closed: no identity means forbidden, never allowed.

Both gates are stateless apart from their collaborators, so one instance
serves every concurrent request.

Layer rule: no imports from api/ or core/. The FastAPI glue lives in
auth/dependencies.py.
"""

from __future__ import annotations

import logging

from auth.errors import (
    AuthenticationFailure,
    AuthorizationFailure,
    DeactivatedError,
    IdentityMissingError,
    NoTokenError,
    StaleTokenError,
)
from auth.lifecycle import is_token_stale
from auth.models import Identity, Role
from auth.store import IdentityStore
from auth.tokens import TokenCodec

logger = logging.getLogger("userauth.auth")

_BEARER_PREFIX = "bearer "


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token from an `Authorization: Bearer <token>` header value."""
    if not authorization or not authorization.lower().startswith(_BEARER_PREFIX):
        raise NoTokenError("missing or non-bearer Authorization header")
    token = authorization[len(_BEARER_PREFIX) :].strip()
    if not token:
        raise NoTokenError("empty bearer token")
    return token


class AuthenticationGate:
    """Turn an Authorization header into a loaded, fresh, active Identity.

    Usage:
        gate = AuthenticationGate(codec, store)
        identity = gate.authenticate(request.headers.get("Authorization"))
    """

    def __init__(self, codec: TokenCodec, store: IdentityStore) -> None:
        self._codec = codec
        self._store = store

    def authenticate(self, authorization: str | None) -> Identity:
        try:
            return self._authenticate(authorization)
        except AuthenticationFailure as exc:
            logger.info("Authentication rejected reason=%s detail=%s", exc.reason, exc.detail)
            raise

    def _authenticate(self, authorization: str | None) -> Identity:
        token = extract_bearer_token(authorization)

        # Signature first, then expiry; both inside verify().
        claims = self._codec.verify(token)

        identity = self._store.get_by_id(claims.subject)
        if identity is None:
            raise IdentityMissingError(f"subject {claims.subject} not found")

        if is_token_stale(identity, claims.issued_at):
            raise StaleTokenError(f"subject {claims.subject} changed password after token issue")

        if not identity.is_active:
            raise DeactivatedError(f"subject {claims.subject} is deactivated")

        return identity


class AuthorizationGate:
    """Allow an authenticated identity whose current role is in `required`.

    The role comes from the identity loaded by AuthenticationGate, not from the
    token claim, so a demotion takes effect on the next request.
    """

    def __init__(self, required: frozenset[Role]) -> None:
        if not required:
            raise ValueError("AuthorizationGate needs at least one role.")
        if not all(isinstance(role, Role) for role in required):
            raise ValueError("AuthorizationGate roles must be Role members.")
        self.required = frozenset(required)

    def check(self, identity: Identity | None) -> Identity:
        if identity is None:
            # Called without a prior AuthenticationGate: a wiring bug. Fail closed.
            logger.error("Authorization checked without an authenticated identity")
            raise AuthorizationFailure("no authenticated identity")
        if identity.role not in self.required:
            logger.info(
                "Authorization denied user_id=%s role=%s required=%s",
                identity.id,
                getattr(identity.role, "value", identity.role),
                ",".join(sorted(role.value for role in self.required)),
            )
            raise AuthorizationFailure(f"role {identity.role!r} not permitted")
        return identity


ADMIN_ONLY = AuthorizationGate(frozenset({Role.admin}))
ANY_ROLE = AuthorizationGate(frozenset(Role))

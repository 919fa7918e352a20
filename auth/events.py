"""
auth/events.py -- Audit trail for authentication events.

Events go to the "userauth.audit" logger as one line each:

    AUTH login outcome=failure email=a@b.com reason=bad-credentials

The same fields are attached as `extra` attributes (auth_event, outcome,
email, plus any context) so a structured handler can emit them as JSON
without parsing the message.

Never pass plaintext passwords, bearer tokens or reset tickets here.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger("userauth.audit")


class AuthEvent(str, Enum):
    registration = "registration"
    login = "login"
    logout = "logout"
    password_change = "password_change"
    reset_issued = "reset_issued"
    reset_redeemed = "reset_redeemed"
    user_created = "user_created"
    user_updated = "user_updated"
    user_deleted = "user_deleted"
    profile_updated = "profile_updated"
    deactivation = "deactivation"


SUCCESS = "success"
FAILURE = "failure"

# Context keys that must never reach a log line, whatever the caller passes.
_FORBIDDEN_KEYS = frozenset({"password", "token", "reset_token", "access_token", "authorization"})


def log_auth_event(event: AuthEvent, outcome: str, email: str | None, **context) -> None:
    """Record one audit event.

    Raises:
        ValueError: if context carries a credential-bearing key.
    """
    leaked = _FORBIDDEN_KEYS.intersection(context)
    if leaked:
        raise ValueError(f"Refusing to log credential fields: {', '.join(sorted(leaked))}")

    details = " ".join(f"{key}={value}" for key, value in context.items())
    level = logging.INFO if outcome == SUCCESS else logging.WARNING
    logger.log(
        level,
        "AUTH %s outcome=%s email=%s%s",
        event.value,
        outcome,
        email or "-",
        f" {details}" if details else "",
        extra={"auth_event": event.value, "outcome": outcome, "email": email, **context},
    )

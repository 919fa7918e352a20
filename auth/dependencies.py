"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

One auth method: the `Authorization: Bearer <token>` header. The request
passes through AuthenticationGate (401 on failure) and, for admin routes,
AuthorizationGate (403 on failure).

get_current_user() authenticates and stores the identity on
request.state.identity. require_admin() authenticates, then checks the role.

Failures are raised as AuthError subclasses; api/main.py renders them.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.gates import ADMIN_ONLY, AuthenticationGate
from auth.models import Identity


def get_current_user(request: Request) -> Identity:
    """Require authentication. Raises an AuthenticationFailure (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: Identity = Depends(get_current_user)): ...
    """
    gate: AuthenticationGate = request.app.state.auth_gate
    identity = gate.authenticate(request.headers.get("Authorization"))
    request.state.identity = identity
    return identity


def require_admin(request: Request) -> Identity:
    """Require the admin role. 401 if unauthenticated, 403 if not admin."""
    get_current_user(request)
    return ADMIN_ONLY.check(getattr(request.state, "identity", None))

"""
api/routes/v1/users.py -- User administration and self-service profile endpoints.

Routes:
  GET    /api/v1/users            -- paginated list, newest first (admin only)
  POST   /api/v1/users            -- create a user with any role (admin only)
  PATCH  /api/v1/users/me         -- update own name / email (requires auth)
  GET    /api/v1/users/{id}       -- one user (admin only)
  PATCH  /api/v1/users/{id}       -- update name/email/role/isActive/password (admin only)
  DELETE /api/v1/users/{id}       -- delete a user (admin only)

Security:
  [M4] PATCH /users/{id} blocks self-deactivation and removing the last active admin.
  DELETE /users/{id} refuses self-deletion with 400; the record is left as is.
  PATCH /users/me refuses any attempt to change the caller's own role with 403.

/users/me is declared before /users/{user_id} so "me" is never parsed as an id.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import Pagination, ProfileUpdate, UserCreate, UserListResponse, UserPatch, UserResponse
from auth.dependencies import get_current_user, require_admin
from auth.models import Identity
from auth.service import AccountService

# Auth policy:
# - PATCH  /api/v1/users/me:    requires auth (get_current_user)
# - every other /api/v1/users route: requires admin (require_admin)
router = APIRouter()


def _service(request: Request) -> AccountService:
    return request.app.state.account_service


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    current_user: Identity = Depends(require_admin),
) -> UserListResponse:
    """List user accounts, newest first. Admin only."""
    users, total = _service(request).list_users(page=page, limit=limit)
    return UserListResponse(
        users=[UserResponse.from_identity(u) for u in users],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: Identity = Depends(require_admin),
) -> UserResponse:
    """Create a user account with any role. Admin only.

    Duplicate email -> 409 conflict.
    """
    created = _service(request).create_user(current_user, body.name, body.email, body.password, body.role)
    return UserResponse.from_identity(created)


@router.patch("/users/me", response_model=UserResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: Identity = Depends(get_current_user),
) -> UserResponse:
    """Update the caller's own name or email.

    A role that differs from the current one -> 403. Email taken -> 409.
    """
    fields = body.model_dump(exclude_unset=True)
    updated = _service(request).update_profile(current_user, **fields)
    return UserResponse.from_identity(updated)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int,
    current_user: Identity = Depends(require_admin),
) -> UserResponse:
    """Return one user account. Admin only."""
    return UserResponse.from_identity(_service(request).get_user(user_id))


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: Identity = Depends(require_admin),
) -> UserResponse:
    """Update a user's profile, role, active status or password. Admin only.

    [M4] Prevents:
      - Self-deactivation (admin accidentally locking themselves out).
      - Deactivating or demoting the last active admin (no recovery path without DB access).
    """
    fields = body.model_dump(exclude_unset=True)
    updated = _service(request).update_user(current_user, user_id, **fields)
    return UserResponse.from_identity(updated)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    current_user: Identity = Depends(require_admin),
) -> Response:
    """Delete a user account. Admin only; an admin cannot delete itself."""
    _service(request).delete_user(current_user, user_id)
    return Response(status_code=204)

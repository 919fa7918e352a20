"""
API request and response models for the secure-user-auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire names follow the JSON convention of the clients (camelCase for
multi-word fields such as currentPassword and isActive); populate_by_name
lets Python callers use the snake_case names too.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints

from auth.models import Identity, Role
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants and field types
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_EMAIL_RE = re.compile(EMAIL_PATTERN)

MIN_PASSWORD_LENGTH = 8
MAX_NAME_LENGTH = 50


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Please provide a valid email address.")
    return value


def _check_password(value: str) -> str:
    """bcrypt only looks at the first 72 bytes; refuse anything longer."""
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return value


_Email = Annotated[str, Field(max_length=255), AfterValidator(_check_email)]
_Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_NAME_LENGTH)]
_Password = Annotated[str, Field(min_length=MIN_PASSWORD_LENGTH), AfterValidator(_check_password)]


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    name: _Name
    email: _Email
    password: _Password


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No length rules on the password here: a login attempt with a short
    password is just a wrong password, not a malformed request.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)


class PasswordChangeRequest(BaseModel):
    """Request body for PUT /api/v1/auth/password."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(min_length=1, alias="currentPassword")
    new_password: _Password = Field(alias="newPassword")


class PasswordResetRequest(BaseModel):
    """Request body for POST /api/v1/auth/password-reset."""

    email: _Email


class PasswordResetConfirm(BaseModel):
    """Request body for PUT /api/v1/auth/password-reset/{token}."""

    password: _Password


# ---------------------------------------------------------------------------
# Users -- request models
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users (admin only)."""

    name: _Name
    email: _Email
    password: _Password
    role: Role = Role.user


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id} (admin only). All fields optional."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[_Name] = None
    email: Optional[_Email] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    password: Optional[_Password] = None


class ProfileUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/me.

    role is accepted on the wire so that an attempt to change it can be
    refused with 403 instead of being silently dropped.
    """

    name: Optional[_Name] = None
    email: Optional[_Email] = None
    role: Optional[Role] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an identity. The password hash and reset fields never appear."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    name: str
    email: str
    role: Role
    is_active: bool = Field(alias="isActive")
    last_login: Optional[str] = Field(default=None, alias="lastLogin")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserResponse":
        """Build a UserResponse from a domain Identity."""
        return cls(
            id=identity.id,
            name=identity.name,
            email=identity.email,
            role=identity.role,
            is_active=identity.is_active,
            last_login=identity.last_login.isoformat() if identity.last_login else None,
            created_at=identity.created_at.isoformat() if identity.created_at else None,
        )


class AuthResponse(BaseModel):
    """Response for register, login and password reset: a token plus the user."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class TokenResponse(BaseModel):
    """Response for PUT /api/v1/auth/password: the replacement token."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ResetRequestedResponse(BaseModel):
    """Response for POST /api/v1/auth/password-reset.

    Always the same message. reset_token is filled only in debug mode, where
    it stands in for the email that would carry it.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    reset_token: Optional[str] = None


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    pages: int


class UserListResponse(BaseModel):
    """Response for GET /api/v1/users."""

    model_config = ConfigDict(frozen=True)

    users: list[UserResponse]
    pagination: Pagination


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)

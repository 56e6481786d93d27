"""
API request and response models for Secure Blog REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Validation here is the first gate: every request body is rejected with a
422 and field-level detail before any store, OTP or token code runs.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"
OTP_PATTERN = r"^\d{4,10}$"


def _strip(value):
    return value.strip() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RegistrationRoleEnum(str, Enum):
    """Roles a visitor may choose for themselves. admin is not one of them."""

    reader = "reader"
    author = "author"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailBody(BaseModel):
    """Request body keyed by a deliverable-looking email address.

    EmailStr (email-validator) checks the syntax; the whole address is then
    lower-cased because email-validator only normalizes the domain and
    identities are unique on the full address.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, value):
        return _strip(value)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class RegisterRequest(_EmailBody):
    """Request body for POST /api/v1/auth/register."""

    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    # bcrypt reads at most 72 bytes; 128 chars keeps inputs sane without
    # rejecting passphrases.
    password: str = Field(min_length=8, max_length=128)
    role: RegistrationRoleEnum = RegistrationRoleEnum.reader


class VerifyOtpRequest(_EmailBody):
    """Request body for POST /api/v1/auth/verify-otp."""

    otp: str = Field(pattern=OTP_PATTERN)


class ResendOtpRequest(_EmailBody):
    """Request body for POST /api/v1/auth/resend-otp."""


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    The email is only normalized, not pattern-checked: a malformed address
    must produce the same invalid_credentials answer as an unknown one.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class RolePatch(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}/role."""

    role: Role


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public identity summary. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(id=user.id, username=user.username, email=user.email, role=user.role)


class UserResponse(UserSummary):
    """Admin view of an identity."""

    is_verified: bool
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            is_verified=user.is_verified,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )


class RegisterResponse(BaseModel):
    """Response for POST /api/v1/auth/register."""

    model_config = ConfigDict(frozen=True)

    message: str
    email: str
    requires_verification: bool = True


class SessionResponse(BaseModel):
    """Response for a successful OTP verification or login."""

    model_config = ConfigDict(frozen=True)

    message: str
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserSummary


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class DashboardResponse(BaseModel):
    """Response for GET /api/v1/admin/dashboard."""

    model_config = ConfigDict(frozen=True)

    total_users: int
    verified_users: int
    unverified_users: int
    new_users_this_week: int
    users_by_role: dict[str, int]


class FieldError(BaseModel):
    """One failed field in a 422 response."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[list[FieldError]] = None
    requires_verification: Optional[bool] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

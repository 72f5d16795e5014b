"""
Pydantic schemas for request / response serialization.

Kept in a single file for now — split per-domain when it grows.
Schemas are deliberately decoupled from SQLAlchemy models so the
API surface can evolve independently of the DB layer.

The browser client speaks camelCase: every schema derives from
`CamelModel`, which aliases snake_case fields to camelCase while still
accepting the Python names.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

from users_service.models.user import UserRole, UserStatus

USERNAME_PATTERN = r"^[A-Za-z0-9_-]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _PasswordConfirmation(CamelModel):
    password: str = Field(min_length=6, max_length=128)
    confirm_password: str | None = None

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords do not match")
        return self


# ── Auth ─────────────────────────────────────────────────────────────
class RegisterRequest(_PasswordConfirmation):
    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: EmailStr
    role: UserRole | None = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshTokenRequest(CamelModel):
    refresh_token: str | None = None


class LogoutRequest(CamelModel):
    refresh_token: str | None = None


class EmailRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(_PasswordConfirmation):
    token: str = Field(min_length=1)


# ── User ─────────────────────────────────────────────────────────────
class UserPublic(CamelModel):
    """The projection auth endpoints return — never carries secrets."""
    id: uuid.UUID
    username: str
    email: str
    role: UserRole

    model_config = ConfigDict(from_attributes=True)


class UserOut(UserPublic):
    status: UserStatus
    email_verified: bool
    login_attempts: int
    lock_until: datetime | None = None
    created_at: datetime
    updated_at: datetime


class UpdateUserRequest(CamelModel):
    """Admin update.  Any field outside this list (e.g. `password`) is a 400."""
    username: str | None = Field(default=None, min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: EmailStr | None = None
    role: UserRole | None = None
    status: UserStatus | None = None
    email_verified: bool | None = None

    model_config = ConfigDict(extra="forbid")


# ── Responses ────────────────────────────────────────────────────────
class SuccessResponse(CamelModel):
    success: bool = True
    message: str


class RegisterResponse(SuccessResponse):
    user_id: uuid.UUID


class LoginResponse(SuccessResponse):
    user: UserPublic


class RefreshResponse(SuccessResponse):
    access_token: str


class VerifyTokenResponse(CamelModel):
    success: bool = True
    valid: bool = True
    user: UserPublic


class VerifyEmailResponse(SuccessResponse):
    email: str


class ProfileResponse(CamelModel):
    success: bool = True
    user: UserPublic


class UserListResponse(CamelModel):
    success: bool = True
    count: int
    users: list[UserOut]


class UserResponse(CamelModel):
    success: bool = True
    user: UserOut


class DashboardStats(CamelModel):
    total: int
    by_status: dict[str, int]
    by_role: dict[str, int]


class DashboardResponse(SuccessResponse):
    stats: DashboardStats

from __future__ import annotations

"""
User model.

Design decisions:
- `password_hash` and the reset-token columns are DEFERRED — a plain
  `select(User)` never loads them.  The login / reset paths undefer
  them explicitly, so the hash cannot leak through a default query.
- Role is a closed ENUM; what a role may do is decided in
  `users_service.rbac.permissions`, never by comparing strings here.
- Status is an ENUM (PENDING → ACTIVE → INACTIVE).  Users are never
  hard-deleted; deactivation flips status to INACTIVE.
- Lockout state (`login_attempts`, `lock_until`) lives on the row so
  every process instance sees the same counter.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from users_service.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    ADMIN_FOURNISSEUR = "admin_fournisseur"
    PHARMACIE_AUTORISEE = "pharmacie_autorisee"
    PHARMACIE_STANDARD = "pharmacie_standard"
    HOPITAL = "hopital"


class UserStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(30), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(256), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False, deferred=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=_enum_values),
        default=UserRole.PHARMACIE_STANDARD,
        nullable=False,
    )
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, name="user_status", values_callable=_enum_values),
        default=UserStatus.PENDING,
        nullable=False,
    )
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # ── Lockout ──────────────────────────────────────────────────────
    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lock_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # ── Password reset (digest of the issued token + expiry) ─────────
    password_reset_token_hash: Mapped[str | None] = mapped_column(
        String(64), nullable=True, deferred=True,
    )
    password_reset_expires: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, deferred=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.username} [{self.status.value}]>"

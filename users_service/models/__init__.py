"""
Models package — import every model so SQLAlchemy's Base.metadata
knows about all tables (critical for `create_all` / Alembic).
"""

from users_service.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from users_service.models.session import UserSession
from users_service.models.user import User, UserRole, UserStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "User",
    "UserRole",
    "UserStatus",
    "UserSession",
]

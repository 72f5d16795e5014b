"""
User service — credential store & admin CRUD helpers.

Default queries never load `password_hash` (the column is deferred);
`get_user_by_email(..., with_secrets=True)` is the only way to get it.

Uniqueness of username / email is checked up front for a friendly
message and enforced again by the unique constraints: an
IntegrityError at flush time (two concurrent registrations) is
reported as the same ConflictError.
"""

import logging
import uuid
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from users_service.core.errors import ConflictError, NotFoundError, ValidationError
from users_service.core.security import hash_password
from users_service.models.user import User, UserRole, UserStatus
from users_service.services import session_service

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"username", "email", "role", "status", "email_verified"})


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user_by_id(user_id: uuid.UUID, db: AsyncSession) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError()
    return user


async def get_user_by_email(
    email: str,
    db: AsyncSession,
    *,
    with_secrets: bool = False,
) -> User | None:
    stmt = select(User).where(User.email == normalize_email(email))
    if with_secrets:
        stmt = stmt.options(
            undefer(User.password_hash),
            undefer(User.password_reset_token_hash),
            undefer(User.password_reset_expires),
        )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_with_secrets(user_id: uuid.UUID, db: AsyncSession) -> User | None:
    stmt = (
        select(User)
        .options(
            undefer(User.password_hash),
            undefer(User.password_reset_token_hash),
            undefer(User.password_reset_expires),
        )
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _ensure_unique(
    db: AsyncSession,
    *,
    username: str | None = None,
    email: str | None = None,
    exclude_id: uuid.UUID | None = None,
) -> None:
    clauses = []
    if username is not None:
        clauses.append(User.username == username)
    if email is not None:
        clauses.append(User.email == email)
    if not clauses:
        return
    stmt = select(User.username, User.email).where(or_(*clauses))
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    for existing_username, existing_email in (await db.execute(stmt)).all():
        if email is not None and existing_email == email:
            raise ConflictError("Email is already registered")
        if username is not None and existing_username == username:
            raise ConflictError("Username is already taken")


async def _flush_unique(db: AsyncSession) -> None:
    try:
        await db.flush()
    except IntegrityError:
        logger.info("Unique constraint hit while saving a user")
        raise ConflictError("Username or email is already registered")


async def create_user(
    username: str,
    email: str,
    password: str,
    db: AsyncSession,
    *,
    role: UserRole = UserRole.PHARMACIE_STANDARD,
    status: UserStatus = UserStatus.PENDING,
    email_verified: bool = False,
    bcrypt_rounds: int = 12,
) -> User:
    email = normalize_email(email)
    username = username.strip()
    await _ensure_unique(db, username=username, email=email)

    user = User(
        id=uuid.uuid4(),
        username=username,
        email=email,
        password_hash=hash_password(password, bcrypt_rounds),
        role=role,
        status=status,
        email_verified=email_verified,
    )
    db.add(user)
    await _flush_unique(db)
    logger.info("Created user %s (%s)", user.id, role.value)
    return user


async def list_users(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 50,
    *,
    status: UserStatus | None = None,
    role: UserRole | None = None,
) -> list[User]:
    stmt = select(User).order_by(User.created_at.desc())
    if status is not None:
        stmt = stmt.where(User.status == status)
    if role is not None:
        stmt = stmt.where(User.role == role)
    stmt = stmt.offset(skip).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_user(
    user_id: uuid.UUID,
    changes: dict[str, Any],
    db: AsyncSession,
    *,
    actor_id: uuid.UUID | None = None,
) -> User:
    """Admin update restricted to UPDATABLE_FIELDS.

    Moving a user to INACTIVE also revokes every session they hold; the
    acting admin cannot do that to themselves. A new email address is
    unverified unless the same update says otherwise.
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            "Some fields cannot be updated",
            errors=[{"field": name, "message": "Field is not updatable"} for name in sorted(unknown)],
        )
    if not changes:
        raise ValidationError("At least one field must be provided")

    user = await get_user_by_id(user_id, db)

    deactivating = (
        changes.get("status") == UserStatus.INACTIVE and user.status != UserStatus.INACTIVE
    )
    if deactivating and user.id == actor_id:
        raise ValidationError("Cannot delete your own account")

    if "email" in changes:
        changes["email"] = normalize_email(changes["email"])
        if changes["email"] != user.email and "email_verified" not in changes:
            changes["email_verified"] = False
    await _ensure_unique(
        db,
        username=changes.get("username"),
        email=changes.get("email"),
        exclude_id=user.id,
    )

    for name, value in changes.items():
        setattr(user, name, value)
    await _flush_unique(db)

    if deactivating:
        revoked = await session_service.revoke_all_for_user(user.id, db)
        logger.info("User %s deactivated via update, %d session(s) revoked", user.id, revoked)
    return user


async def deactivate_user(
    target_user_id: uuid.UUID,
    actor_id: uuid.UUID,
    db: AsyncSession,
) -> User:
    """Admin action — soft-delete a user and invalidate all sessions."""
    if target_user_id == actor_id:
        raise ValidationError("Cannot delete your own account")

    user = await get_user_by_id(target_user_id, db)
    user.status = UserStatus.INACTIVE
    await db.flush()
    # Immediately invalidate every session for this user
    revoked = await session_service.revoke_all_for_user(target_user_id, db)
    logger.info("User %s deactivated by %s, %d session(s) revoked", user.id, actor_id, revoked)
    return user


async def dashboard_stats(db: AsyncSession) -> dict[str, Any]:
    by_status = {s.value: 0 for s in UserStatus}
    for status, count in (await db.execute(
        select(User.status, func.count()).group_by(User.status)
    )).all():
        by_status[status.value] = count

    by_role = {r.value: 0 for r in UserRole}
    for role, count in (await db.execute(
        select(User.role, func.count()).group_by(User.role)
    )).all():
        by_role[role.value] = count

    return {
        "total": sum(by_status.values()),
        "byStatus": by_status,
        "byRole": by_role,
    }

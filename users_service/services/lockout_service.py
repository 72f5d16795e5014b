"""
Login lockout — a per-account state machine kept on the user row.

States:
    unlocked   `lock_until` is NULL or in the past
    locked     `lock_until` is in the future

Transitions:
    failure while unlocked   → login_attempts += 1; reaching the maximum
                               sets lock_until = now + lockout duration
    success while unlocked   → login_attempts = 0, lock_until = NULL
    any attempt while locked → rejected before the password is looked at
    lock_until has elapsed   → unlocked again (computed lazily at request
                               time; no background job)

Concurrent requests for one account share the counter, so every
mutation is a single UPDATE evaluated by the database.  Nothing here
reads the counter, adds one in Python, and writes it back.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import DateTime, case, literal, update
from sqlalchemy.ext.asyncio import AsyncSession

from users_service.core.config import Settings
from users_service.models.base import as_utc, utcnow
from users_service.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LockoutPolicy":
        return cls(
            max_attempts=settings.MAX_LOGIN_ATTEMPTS,
            lockout_duration=timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES),
        )


@dataclass(frozen=True)
class LockState:
    locked: bool
    attempts: int = 0
    minutes_remaining: int = 0


def _minutes_until(lock_until: datetime, now: datetime) -> int:
    return max(1, math.ceil((lock_until - now).total_seconds() / 60))


def lock_state(user: User, now: datetime | None = None) -> LockState:
    now = now or utcnow()
    lock_until = as_utc(user.lock_until)
    if lock_until is not None and lock_until > now:
        return LockState(
            locked=True,
            attempts=user.login_attempts,
            minutes_remaining=_minutes_until(lock_until, now),
        )
    return LockState(locked=False, attempts=user.login_attempts)


def has_elapsed_lock(user: User, now: datetime | None = None) -> bool:
    lock_until = as_utc(user.lock_until)
    return lock_until is not None and lock_until <= (now or utcnow())


async def release_expired_lock(user: User, db: AsyncSession, now: datetime | None = None) -> bool:
    """Clear a lock whose time is up.  Returns True if a row was reset.

    Guarded on `lock_until <= now` so a lock freshly set by a
    concurrent request is never cleared by mistake.
    """
    now = now or utcnow()
    stmt = (
        update(User)
        .where(
            User.id == user.id,
            User.lock_until.is_not(None),
            User.lock_until <= now,
        )
        .values(login_attempts=0, lock_until=None)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount:
        logger.info("Lockout expired for user %s", user.id)
        return True
    return False


async def register_failure(
    user_id: uuid.UUID,
    db: AsyncSession,
    policy: LockoutPolicy,
    now: datetime | None = None,
) -> LockState:
    """Atomically count one failed attempt, locking on the last allowed one."""
    now = now or utcnow()
    lock_value = literal(now + policy.lockout_duration, DateTime(timezone=True))
    stmt = (
        update(User)
        .where(User.id == user_id)
        .values(
            login_attempts=User.login_attempts + 1,
            lock_until=case(
                (User.login_attempts + 1 >= policy.max_attempts, lock_value),
                else_=User.lock_until,
            ),
        )
        .returning(User.login_attempts, User.lock_until)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    attempts, lock_until = result.one()
    lock_until = as_utc(lock_until)

    if lock_until is not None and lock_until > now:
        if attempts == policy.max_attempts:
            logger.warning(
                "User %s locked out after %d failed login attempts", user_id, attempts,
            )
        return LockState(
            locked=True,
            attempts=attempts,
            minutes_remaining=_minutes_until(lock_until, now),
        )
    return LockState(locked=False, attempts=attempts)


async def register_success(user_id: uuid.UUID, db: AsyncSession) -> None:
    stmt = (
        update(User)
        .where(User.id == user_id)
        .values(login_attempts=0, lock_until=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)

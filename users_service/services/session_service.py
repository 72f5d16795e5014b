"""
Session service — the refresh-token registry.

Handles:
- Creating a session row at login (no dedup: one row per device)
- Exact-match lookup by refresh / access token
- Rotation: both token digests replaced by ONE conditional UPDATE
- Revocation of a single session (logout) or of every session of a
  user (admin deactivation, password reset)

Rotation is guarded by the digest it replaces.  Two requests racing
with the same refresh token cannot both rotate: the loser's UPDATE
matches no row and it gets `SessionNotFound`.
"""

import logging
import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from users_service.core.errors import SessionNotFound
from users_service.core.security import hash_token
from users_service.models.session import UserSession

logger = logging.getLogger(__name__)


async def create_session(
    user_id: uuid.UUID,
    access_token: str,
    refresh_token: str,
    db: AsyncSession,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> UserSession:
    session = UserSession(
        id=uuid.uuid4(),
        user_id=user_id,
        access_token_hash=hash_token(access_token),
        refresh_token_hash=hash_token(refresh_token),
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
    )
    db.add(session)
    await db.flush()
    return session


async def find_active_by_refresh_token(
    refresh_token: str,
    db: AsyncSession,
) -> UserSession | None:
    stmt = select(UserSession).where(
        UserSession.refresh_token_hash == hash_token(refresh_token),
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def find_active_by_access_token(
    access_token: str,
    db: AsyncSession,
) -> UserSession | None:
    stmt = select(UserSession).where(
        UserSession.access_token_hash == hash_token(access_token),
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def rotate_session(
    session: UserSession,
    new_access_token: str,
    new_refresh_token: str,
    db: AsyncSession,
) -> UserSession:
    """Overwrite the token pair in place; the old refresh token dies here."""
    stmt = (
        update(UserSession)
        .where(
            UserSession.id == session.id,
            UserSession.refresh_token_hash == session.refresh_token_hash,
        )
        .values(
            access_token_hash=hash_token(new_access_token),
            refresh_token_hash=hash_token(new_refresh_token),
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        logger.warning("Concurrent rotation lost for session %s", session.id)
        raise SessionNotFound()
    await db.refresh(session)
    return session


async def revoke_session(
    user_id: uuid.UUID,
    refresh_token: str,
    db: AsyncSession,
) -> int:
    """Delete the session of `user_id` holding `refresh_token` (logout)."""
    stmt = delete(UserSession).where(
        UserSession.user_id == user_id,
        UserSession.refresh_token_hash == hash_token(refresh_token),
    )
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount


async def revoke_by_refresh_token(refresh_token: str, db: AsyncSession) -> int:
    """Delete whatever row still holds `refresh_token`, whoever owns it."""
    stmt = delete(UserSession).where(
        UserSession.refresh_token_hash == hash_token(refresh_token),
    )
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount


async def revoke_all_for_user(user_id: uuid.UUID, db: AsyncSession) -> int:
    """
    Delete every session of a user.

    Returns the number of sessions removed.  Used by admin
    deactivation and password reset so no refresh token stays usable.
    """
    stmt = delete(UserSession).where(UserSession.user_id == user_id)
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount


async def count_sessions(user_id: uuid.UUID, db: AsyncSession) -> int:
    stmt = select(UserSession.id).where(UserSession.user_id == user_id)
    result = await db.execute(stmt)
    return len(result.scalars().all())

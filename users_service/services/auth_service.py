"""
Authentication service.

Handles:
- Registration (account starts PENDING until the email is verified)
- Login with per-account lockout and server-side session creation
- Refresh-token rotation
- Logout
- Email verification / resend
- Forgot / reset password

Concurrency rules:
- Lockout counters and session rotation are single conditional
  UPDATEs (see lockout_service / session_service).
- A failed login COMMITS its counter increment before raising, so
  the request-level rollback in `get_db` cannot undo it.

All business logic lives here — controllers call service methods
and turn the result into cookies / JSON.
"""

import functools
import hmac
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from users_service.core.config import Settings
from users_service.core.errors import (
    AuthenticationError,
    LockoutError,
    MailDeliveryError,
    NotFoundError,
    SessionNotFound,
    TokenError,
    ValidationError,
)
from users_service.core.security import (
    TOKEN_LIFETIMES,
    TokenIssuer,
    TokenKind,
    hash_password,
    hash_token,
    verify_password,
)
from users_service.models.base import as_utc, utcnow
from users_service.models.user import User, UserRole, UserStatus
from users_service.rbac.permissions import SELF_ASSIGNABLE_ROLES
from users_service.services import lockout_service, session_service, user_service
from users_service.services.email_service import (
    Mailer,
    send_password_reset_email,
    send_verification_email,
)

logger = logging.getLogger(__name__)


@dataclass
class IssuedSession:
    user: User
    access_token: str
    refresh_token: str


# ── Helpers ──────────────────────────────────────────────────────────

def _parse_user_id(sub: Any) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(sub))
    except (TypeError, ValueError):
        return None


@functools.lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> str:
    return hash_password("not-a-real-password", rounds)


def _issue_pair(user: User, issuer: TokenIssuer) -> tuple[str, str]:
    access_token = issuer.issue(
        TokenKind.ACCESS, {"sub": str(user.id), "role": user.role.value},
    )
    refresh_token = issuer.issue(TokenKind.REFRESH, {"sub": str(user.id)})
    return access_token, refresh_token


# ── Registration ─────────────────────────────────────────────────────

async def register(
    username: str,
    email: str,
    password: str,
    db: AsyncSession,
    issuer: TokenIssuer,
    mailer: Mailer,
    settings: Settings,
    role: UserRole | None = None,
) -> User:
    """Create a PENDING account and send the verification link."""
    role = role or UserRole.PHARMACIE_STANDARD
    if role not in SELF_ASSIGNABLE_ROLES:
        raise ValidationError(
            "Validation failed",
            errors=[{"field": "role", "message": "This role cannot be self-assigned"}],
        )

    user = await user_service.create_user(
        username,
        email,
        password,
        db,
        role=role,
        status=UserStatus.PENDING,
        email_verified=False,
        bcrypt_rounds=settings.BCRYPT_ROUNDS,
    )

    token = issuer.issue(TokenKind.EMAIL, {"sub": str(user.id), "email": user.email})
    sent = await send_verification_email(mailer, settings, user.email, user.username, token)
    if not sent:
        # The account stays; /resend-verification can be used later.
        logger.warning("Verification email for user %s could not be sent", user.id)
    return user


# ── Login ────────────────────────────────────────────────────────────

async def login(
    email: str,
    password: str,
    db: AsyncSession,
    issuer: TokenIssuer,
    settings: Settings,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> IssuedSession:
    """
    Validate credentials under the lockout rules, create a session and
    return a fresh access + refresh pair.
    """
    user = await user_service.get_user_by_email(email, db, with_secrets=True)
    if user is None:
        # Same bcrypt cost as a real check, so timing does not reveal the email.
        verify_password(password, _dummy_hash(settings.BCRYPT_ROUNDS))
        raise AuthenticationError()

    now = utcnow()
    if lockout_service.has_elapsed_lock(user, now):
        await lockout_service.release_expired_lock(user, db, now)
    else:
        state = lockout_service.lock_state(user, now)
        if state.locked:
            raise LockoutError(state.minutes_remaining)

    if not verify_password(password, user.password_hash):
        policy = lockout_service.LockoutPolicy.from_settings(settings)
        state = await lockout_service.register_failure(user.id, db, policy, now)
        await db.commit()
        if state.locked:
            raise LockoutError(state.minutes_remaining)
        raise AuthenticationError()

    if user.status == UserStatus.INACTIVE:
        logger.info("Login refused for deactivated user %s", user.id)
        raise AuthenticationError()

    await lockout_service.register_success(user.id, db)

    access_token, refresh_token = _issue_pair(user, issuer)
    await session_service.create_session(
        user.id,
        access_token,
        refresh_token,
        db,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    logger.info("User %s logged in", user.id)
    return IssuedSession(user=user, access_token=access_token, refresh_token=refresh_token)


# ── Refresh ──────────────────────────────────────────────────────────

async def refresh_session(
    refresh_token: str | None,
    db: AsyncSession,
    issuer: TokenIssuer,
) -> IssuedSession:
    """Rotate the session holding `refresh_token`; the old token dies."""
    if not refresh_token:
        raise AuthenticationError("No refresh token provided")

    result = issuer.verify(TokenKind.REFRESH, refresh_token)
    if not result.valid:
        logger.info("Refresh rejected: %s", result.error)
        raise TokenError()

    session = await session_service.find_active_by_refresh_token(refresh_token, db)
    if session is None or str(session.user_id) != str(result.claims["sub"]):
        logger.warning(
            "Refresh token for user %s matches no session (replayed or revoked)",
            result.claims.get("sub"),
        )
        raise SessionNotFound()

    user = await db.get(User, session.user_id)
    if user is None or user.status == UserStatus.INACTIVE:
        raise AuthenticationError("Account is not active")

    access_token, new_refresh_token = _issue_pair(user, issuer)
    await session_service.rotate_session(session, access_token, new_refresh_token, db)
    return IssuedSession(user=user, access_token=access_token, refresh_token=new_refresh_token)


# ── Logout ───────────────────────────────────────────────────────────

async def logout(refresh_token: str | None, db: AsyncSession, issuer: TokenIssuer) -> int:
    """Delete the session holding `refresh_token`.  Returns rows removed.

    The token does not need to be valid any more (an expired refresh
    token must still be able to end its session).
    """
    if not refresh_token:
        raise ValidationError(
            "Refresh token is required",
            errors=[{"field": "refreshToken", "message": "Refresh token is required"}],
        )

    removed = 0
    user_id = _parse_user_id(issuer.peek_subject(refresh_token))
    if user_id is not None:
        removed = await session_service.revoke_session(user_id, refresh_token, db)
    if not removed:
        removed = await session_service.revoke_by_refresh_token(refresh_token, db)
    return removed


# ── Email verification ───────────────────────────────────────────────

async def verify_email(token: str, db: AsyncSession, issuer: TokenIssuer) -> User:
    result = issuer.verify(TokenKind.EMAIL, token)
    if not result.valid:
        logger.info("Email verification rejected: %s", result.error)
        raise TokenError(status_code=400)

    user_id = _parse_user_id(result.claims["sub"])
    user = await db.get(User, user_id) if user_id else None
    # A token minted for an address the user no longer has proves nothing.
    if user is None or user.email != result.claims.get("email"):
        raise TokenError(status_code=400)

    user.email_verified = True
    if user.status == UserStatus.PENDING:
        user.status = UserStatus.ACTIVE
    await db.flush()
    logger.info("Email verified for user %s", user.id)
    return user


async def resend_verification(
    email: str,
    db: AsyncSession,
    issuer: TokenIssuer,
    mailer: Mailer,
    settings: Settings,
) -> None:
    user = await user_service.get_user_by_email(email, db)
    if user is None:
        raise NotFoundError()
    if user.email_verified:
        raise ValidationError("Email is already verified")

    token = issuer.issue(TokenKind.EMAIL, {"sub": str(user.id), "email": user.email})
    if not await send_verification_email(mailer, settings, user.email, user.username, token):
        raise MailDeliveryError()


# ── Password reset ───────────────────────────────────────────────────

async def forgot_password(
    email: str,
    db: AsyncSession,
    issuer: TokenIssuer,
    mailer: Mailer,
    settings: Settings,
) -> None:
    """Issue a reset token and remember its digest + expiry on the user."""
    user = await user_service.get_user_by_email(email, db)
    if user is None or user.status == UserStatus.INACTIVE:
        raise NotFoundError()

    token = issuer.issue(TokenKind.PASSWORD_RESET, {"sub": str(user.id)})
    user.password_reset_token_hash = hash_token(token)
    user.password_reset_expires = utcnow() + TOKEN_LIFETIMES[TokenKind.PASSWORD_RESET]
    await db.flush()

    if not await send_password_reset_email(mailer, settings, user.email, token):
        # get_db rolls back, so the stored token is discarded with the request
        raise MailDeliveryError()
    logger.info("Password reset requested for user %s", user.id)


async def reset_password(
    token: str,
    new_password: str,
    db: AsyncSession,
    issuer: TokenIssuer,
    settings: Settings,
) -> User:
    """
    Accept a reset token only if its signature is valid AND it is the
    token currently stored on the user AND the stored expiry is ahead.
    """
    result = issuer.verify(TokenKind.PASSWORD_RESET, token)
    if not result.valid:
        logger.info("Password reset rejected: %s", result.error)
        raise TokenError(status_code=400)

    user_id = _parse_user_id(result.claims["sub"])
    user = await user_service.get_user_with_secrets(user_id, db) if user_id else None
    if user is None:
        raise TokenError(status_code=400)

    stored = user.password_reset_token_hash
    expires = as_utc(user.password_reset_expires)
    if (
        not stored
        or not hmac.compare_digest(stored, hash_token(token))
        or expires is None
        or expires <= utcnow()
    ):
        logger.warning("Stale or replayed reset token for user %s", user.id)
        raise TokenError(status_code=400)

    user.password_hash = hash_password(new_password, settings.BCRYPT_ROUNDS)
    user.password_reset_token_hash = None
    user.password_reset_expires = None
    user.login_attempts = 0
    user.lock_until = None
    await db.flush()

    revoked = await session_service.revoke_all_for_user(user.id, db)
    logger.info("Password reset for user %s, %d session(s) revoked", user.id, revoked)
    return user

"""
RBAC dependencies — the heart of permission enforcement.

`get_current_user` authenticates a request:

1. Take the access token from the `accessToken` cookie, falling back
   to an `Authorization: Bearer` header.
2. Verify it as an ACCESS-kind JWT.
3. Require a live session holding exactly this access token, so a
   rotated or revoked pair stops working before its JWT expires.
4. Load the user; deactivated users never pass.

`require_capability` is a *dependency factory* on top of it:  call it
with one or more capabilities and it returns a FastAPI dependency that
answers 403 unless the user's role grants all of them — with NO
details about which capabilities are missing.

Usage in a route:
    @router.get("/", dependencies=[Depends(require_capability(Capability.USERS_READ))])
    async def list_users(...): ...

Or inject the user object:
    @router.delete("/{user_id}")
    async def delete(admin: User = Depends(require_capability(Capability.USERS_DEACTIVATE))): ...
"""

import logging
import uuid

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from users_service.core.cookies import ACCESS_COOKIE
from users_service.core.database import get_db
from users_service.core.errors import AuthenticationError, ForbiddenError, TokenError
from users_service.core.security import TokenIssuer, TokenKind, get_token_issuer
from users_service.models.user import User, UserStatus
from users_service.rbac.permissions import Capability, has_capability
from users_service.services import session_service

logger = logging.getLogger("rbac")

bearer_scheme = HTTPBearer(auto_error=False)


def _access_token_from(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None,
) -> str | None:
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    if credentials is not None and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return None


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    issuer: TokenIssuer = Depends(get_token_issuer),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency returning the authenticated user WITHOUT capability checks."""
    token = _access_token_from(request, credentials)
    if not token:
        raise AuthenticationError("Authentication required")

    result = issuer.verify(TokenKind.ACCESS, token)
    if not result.valid:
        raise TokenError()

    session = await session_service.find_active_by_access_token(token, db)
    if session is None or str(session.user_id) != str(result.claims["sub"]):
        raise TokenError()

    user = await db.get(User, uuid.UUID(str(session.user_id)))
    if user is None or user.status == UserStatus.INACTIVE:
        raise AuthenticationError("Account is not active")
    return user


class require_capability:
    """
    Dependency factory.

    Can be used as:
        Depends(require_capability(Capability.USERS_READ))
        Depends(require_capability(Capability.USERS_READ, Capability.USERS_UPDATE))
    """

    def __init__(self, *capabilities: Capability):
        self.required = frozenset(capabilities)

    async def __call__(self, user: User = Depends(get_current_user)) -> User:
        if not has_capability(user.role, *self.required):
            logger.warning(
                "Capability denied for user %s (%s) — required: %s",
                user.id,
                user.role.value,
                sorted(c.value for c in self.required),
            )
            raise ForbiddenError()
        return user

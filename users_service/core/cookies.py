"""
Cookie transport for the access / refresh token pair.

Both cookies are http-only and same-site strict; max-age matches the
lifetime of the token they carry.  `secure` is dropped only for local
development and tests (plain http).
"""

from fastapi import Response

from users_service.core.config import Settings
from users_service.core.security import TOKEN_LIFETIMES, TokenKind

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def set_auth_cookies(
    response: Response,
    access_token: str,
    refresh_token: str,
    settings: Settings,
) -> None:
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=int(TOKEN_LIFETIMES[TokenKind.ACCESS].total_seconds()),
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        max_age=int(TOKEN_LIFETIMES[TokenKind.REFRESH].total_seconds()),
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
        path="/",
    )


def clear_auth_cookies(response: Response, settings: Settings) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name,
            path="/",
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite="strict",
        )

"""
Auth controller — registration, login, token refresh, logout,
email verification & password reset.

All routes here are PUBLIC except `/verify-token` and `/profile`,
which need a valid access token (cookie or Bearer header).
Controllers are THIN — they read the transport (cookies, headers),
call `auth_service`, and write cookies back.
"""

from fastapi import APIRouter, Depends, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from users_service.core.config import Settings
from users_service.core.cookies import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from users_service.core.database import get_db
from users_service.core.error_handling import failure_response
from users_service.core.errors import ValidationError
from users_service.core.rate_limit import credentials_rate_limit
from users_service.core.security import TokenIssuer, get_settings, get_token_issuer
from users_service.models.user import User
from users_service.rbac.dependencies import get_current_user
from users_service.schemas import (
    EmailRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    ProfileResponse,
    RefreshResponse,
    RefreshTokenRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    SuccessResponse,
    UserPublic,
    VerifyEmailResponse,
    VerifyTokenResponse,
)
from users_service.services import auth_service
from users_service.services.email_service import Mailer, get_mailer

router = APIRouter(tags=["Auth"])


@router.get("/health")
async def health(settings: Settings = Depends(get_settings)):
    return {"success": True, "status": "ok", "service": settings.APP_NAME}


@router.post("/register", response_model=RegisterResponse, status_code=201)
@credentials_rate_limit()
async def register(
    body: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    """Create a pending account and email the verification link."""
    user = await auth_service.register(
        body.username,
        body.email,
        body.password,
        db,
        issuer,
        mailer,
        settings,
        role=body.role,
    )
    return RegisterResponse(
        message="User registered successfully. Please check your email to verify your account.",
        user_id=user.id,
    )


@router.post("/login", response_model=LoginResponse)
@credentials_rate_limit()
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    settings: Settings = Depends(get_settings),
):
    """Authenticate with email + password → token pair in http-only cookies."""
    issued = await auth_service.login(
        body.email,
        body.password,
        db,
        issuer,
        settings,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    set_auth_cookies(response, issued.access_token, issued.refresh_token, settings)
    return LoginResponse(message="Login successful", user=UserPublic.model_validate(issued.user))


@router.post("/refresh-token", response_model=RefreshResponse)
async def refresh_token(
    request: Request,
    response: Response,
    body: RefreshTokenRequest | None = None,
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    settings: Settings = Depends(get_settings),
):
    """Exchange the refresh token for a new pair; the old one stops working."""
    token = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    issued = await auth_service.refresh_session(token, db, issuer)
    set_auth_cookies(response, issued.access_token, issued.refresh_token, settings)
    return RefreshResponse(message="Token refreshed successfully", access_token=issued.access_token)


@router.get("/verify-token", response_model=VerifyTokenResponse)
async def verify_token(user: User = Depends(get_current_user)):
    return VerifyTokenResponse(user=UserPublic.model_validate(user))


@router.post("/logout", response_model=SuccessResponse)
async def logout(
    request: Request,
    response: Response,
    body: LogoutRequest | None = None,
    x_refresh_token: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    settings: Settings = Depends(get_settings),
):
    """Delete the server-side session and clear both cookies."""
    token = (
        (body.refresh_token if body else None)
        or request.cookies.get(REFRESH_COOKIE)
        or x_refresh_token
    )
    try:
        await auth_service.logout(token, db, issuer)
    except ValidationError as exc:
        # Nothing to revoke, but the browser still drops both cookies.
        failed = failure_response(exc.status_code, exc.message, exc.errors)
        clear_auth_cookies(failed, settings)
        return failed
    clear_auth_cookies(response, settings)
    return SuccessResponse(message="Logged out successfully")


@router.get("/verify-email/{token}", response_model=VerifyEmailResponse)
async def verify_email(
    token: str,
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    user = await auth_service.verify_email(token, db, issuer)
    return VerifyEmailResponse(message="Email verified successfully", email=user.email)


@router.post("/resend-verification", response_model=SuccessResponse)
async def resend_verification(
    body: EmailRequest,
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    await auth_service.resend_verification(body.email, db, issuer, mailer, settings)
    return SuccessResponse(message="Verification email sent")


@router.post("/forgot-password", response_model=SuccessResponse)
async def forgot_password(
    body: EmailRequest,
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    await auth_service.forgot_password(body.email, db, issuer, mailer, settings)
    return SuccessResponse(message="Password reset email sent")


@router.post("/reset-password", response_model=SuccessResponse)
async def reset_password(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    settings: Settings = Depends(get_settings),
):
    """Set a new password from a reset link; every session is revoked."""
    await auth_service.reset_password(body.token, body.password, db, issuer, settings)
    return SuccessResponse(message="Password updated successfully")


@router.get("/profile", response_model=ProfileResponse)
async def profile(user: User = Depends(get_current_user)):
    return ProfileResponse(user=UserPublic.model_validate(user))

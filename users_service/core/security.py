"""
Password hashing, token digests & the JWT token issuer.

- Passwords are hashed with bcrypt directly (passlib is unmaintained
  and broken with bcrypt>=4.1).
- Four token kinds (access, refresh, email, password_reset), each with
  its own secret and a fixed lifetime.  A token minted for one kind
  never verifies as another: the secrets are independent and the
  `typ` claim is checked as well.
- Tokens that are persisted server-side (session pairs, reset tokens)
  are stored as SHA-256 digests, never raw.
"""

import enum
import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from fastapi import Request
from jose import ExpiredSignatureError, JWTError, jwt

from users_service.core.config import Settings
from users_service.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

TOKEN_AUDIENCE = "stock-management-users"
TOKEN_ISSUER = "stock-management"

# bcrypt only looks at the first 72 bytes and bcrypt>=5 refuses longer input.
_BCRYPT_MAX_BYTES = 72


# ── Password hashing ────────────────────────────────────────────────


def hash_password(plain: str, rounds: int = 12) -> str:
    pw_bytes = plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    pw_bytes = plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# ── Token hashing (for persisted tokens) ────────────────────────────


def hash_token(token: str) -> str:
    """SHA-256 hash — suitable for high-entropy tokens like JWTs."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ── JWT ──────────────────────────────────────────────────────────────


class TokenKind(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    EMAIL = "email"
    PASSWORD_RESET = "password_reset"


TOKEN_LIFETIMES: dict[TokenKind, timedelta] = {
    TokenKind.ACCESS: timedelta(minutes=15),
    TokenKind.REFRESH: timedelta(days=7),
    TokenKind.EMAIL: timedelta(hours=24),
    TokenKind.PASSWORD_RESET: timedelta(hours=1),
}


@dataclass(frozen=True)
class TokenSecrets:
    access: str | None = None
    refresh: str | None = None
    email: str | None = None
    password_reset: str | None = None

    def for_kind(self, kind: TokenKind) -> str | None:
        return getattr(self, kind.value)


@dataclass
class VerifyResult:
    valid: bool
    claims: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class TokenIssuer:
    """Issues and verifies the four kinds of signed, time-limited tokens.

    Secrets are injected at construction so tests (or a second app
    instance) can run with their own keys without touching the process
    environment.
    """

    def __init__(self, secrets: TokenSecrets, algorithm: str = "HS256") -> None:
        self._secrets = secrets
        self._algorithm = algorithm

    def _secret(self, kind: TokenKind) -> str:
        secret = self._secrets.for_kind(kind)
        if not secret:
            raise ConfigurationError(f"Signing secret for '{kind.value}' tokens is not configured")
        return secret

    def missing_secrets(self) -> list[str]:
        return [kind.value for kind in TokenKind if not self._secrets.for_kind(kind)]

    def ensure_configured(self) -> None:
        """Raise ConfigurationError when any kind has no secret."""
        missing = self.missing_secrets()
        if missing:
            raise ConfigurationError(
                "Missing JWT signing secret(s) for: " + ", ".join(missing)
            )

    def issue(self, kind: TokenKind, payload: dict[str, Any]) -> str:
        secret = self._secret(kind)
        now = datetime.now(timezone.utc)
        claims = dict(payload)
        claims.update(
            {
                "typ": kind.value,
                "jti": uuid.uuid4().hex,
                "iat": now,
                "exp": now + TOKEN_LIFETIMES[kind],
                "aud": TOKEN_AUDIENCE,
                "iss": TOKEN_ISSUER,
            }
        )
        return jwt.encode(claims, secret, algorithm=self._algorithm)

    def verify(self, kind: TokenKind, token: str | None) -> VerifyResult:
        """Check signature, expiry, audience, issuer and kind.

        Never raises on bad input — the reason is returned in `error`
        for server-side logging; callers surface a generic message.
        """
        secret = self._secret(kind)
        if not token or not isinstance(token, str):
            return VerifyResult(valid=False, error="Token is missing")
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self._algorithm],
                audience=TOKEN_AUDIENCE,
                issuer=TOKEN_ISSUER,
            )
        except ExpiredSignatureError:
            return VerifyResult(valid=False, error="Token has expired")
        except JWTError as exc:
            return VerifyResult(valid=False, error=str(exc) or "Invalid token")
        except (ValueError, TypeError) as exc:
            return VerifyResult(valid=False, error=f"Malformed token: {exc}")

        if claims.get("typ") != kind.value:
            return VerifyResult(valid=False, error="Token kind mismatch")
        if not claims.get("sub"):
            return VerifyResult(valid=False, error="Token has no subject")
        return VerifyResult(valid=True, claims=claims)

    @staticmethod
    def peek_subject(token: str | None) -> str | None:
        """Read `sub` WITHOUT verifying the signature.

        Only for best-effort cleanup (logout); never for authorization.
        """
        if not token:
            return None
        try:
            return jwt.get_unverified_claims(token).get("sub")
        except (JWTError, ValueError, TypeError, AttributeError):
            return None


def build_token_issuer(settings: Settings) -> TokenIssuer:
    return TokenIssuer(
        TokenSecrets(
            access=settings.JWT_ACCESS_SECRET,
            refresh=settings.JWT_REFRESH_SECRET,
            email=settings.JWT_EMAIL_SECRET,
            password_reset=settings.JWT_PASSWORD_RESET_SECRET,
        ),
        algorithm=settings.JWT_ALGORITHM,
    )


def get_token_issuer(request: Request) -> TokenIssuer:
    """FastAPI dependency — the issuer built by `create_app`."""
    return request.app.state.token_issuer


def get_settings(request: Request) -> Settings:
    return request.app.state.settings

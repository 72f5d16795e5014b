"""
Service-layer exception taxonomy.

Every exception carries the HTTP status it maps to, so controllers
never build error responses themselves — they let the exception
propagate to the handlers installed by `register_exception_handlers`.
The one exception is logout, which must clear cookies on its 400 too.

Credential and token failures deliberately share one generic message
each: an attacker must not be able to tell an unknown email from a
wrong password, or an expired token from a forged one.
"""

from typing import Any

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_TOKEN = "Invalid or expired token"


class ServiceError(Exception):
    """Base class for errors translated into a JSON failure response."""

    status_code: int = 400

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        errors: list[dict[str, str]] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors
        self.extra = extra or {}


class ValidationError(ServiceError):
    """Malformed input (400), optionally with field-level detail."""

    status_code = 400


class AuthenticationError(ServiceError):
    status_code = 401

    def __init__(self, message: str = INVALID_CREDENTIALS) -> None:
        super().__init__(message)


class LockoutError(ServiceError):
    """Account temporarily locked after repeated failed logins."""

    status_code = 423

    def __init__(self, minutes_remaining: int) -> None:
        super().__init__(
            f"Account temporarily locked. Try again in {minutes_remaining} minute(s).",
            extra={"minutesRemaining": minutes_remaining},
        )
        self.minutes_remaining = minutes_remaining


class TokenError(ServiceError):
    status_code = 401

    def __init__(self, *, status_code: int | None = None) -> None:
        super().__init__(INVALID_TOKEN, status_code=status_code)


class SessionNotFound(ServiceError):
    """Refresh token verified but no session holds it any more."""

    status_code = 403

    def __init__(self) -> None:
        super().__init__("Session not found or already rotated")


class ForbiddenError(ServiceError):
    status_code = 403

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message)


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, message: str = "User not found") -> None:
        super().__init__(message)


class ConflictError(ServiceError):
    status_code = 409


class MailDeliveryError(ServiceError):
    status_code = 502

    def __init__(self) -> None:
        super().__init__("Unable to send email")


class ConfigurationError(ServiceError):
    """A signing secret (or other required setting) is missing."""

    status_code = 500

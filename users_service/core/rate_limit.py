"""
Per-client rate limit on the credential endpoints.

`/register` and `/login` draw from a single budget per client address
(AUTH_RATE_LIMIT, five requests per fifteen minutes by default).  This
sits in front of the per-account lockout: the lockout protects one
account, the rate limit slows a client spraying many accounts.

The limiter is module level because slowapi binds route limits at
decoration time; `create_app` switches it on or off per application.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from users_service.core.config import settings

RATE_LIMITED_MESSAGE = "Too many login attempts. Try again in 15 minutes"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.rate_limit_active,
)


def credentials_rate_limit():
    """Route decorator; the decorated endpoint needs a `request` parameter."""
    return limiter.shared_limit(settings.AUTH_RATE_LIMIT, scope="credentials")

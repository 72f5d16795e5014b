"""
Exception handlers — every failure becomes `{"success": false, "message": ...}`.

Domain errors are translated with their own status/message.  Anything
unexpected is logged in full server-side and reported to the client
with a generic 500 so no stack trace or internal identifier leaks.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException

from users_service.core.errors import ServiceError
from users_service.core.rate_limit import RATE_LIMITED_MESSAGE

logger = logging.getLogger(__name__)


def failure_response(
    status_code: int,
    message: str,
    errors: list[dict[str, str]] | None = None,
    extra: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": message, "errors": errors}
    if extra:
        content.update(extra)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors = []
    for err in exc.errors():
        # loc looks like ("body", "email"); drop the location prefix
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s (%s)",
                request.method, request.url.path, exc.message, type(exc).__name__,
            )
            return failure_response(exc.status_code, "Internal server error" if exc.status_code == 500 else exc.message)
        logger.info(
            "%s %s -> %s %s",
            request.method, request.url.path, exc.status_code, type(exc).__name__,
        )
        return failure_response(exc.status_code, exc.message, exc.errors, exc.extra)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return failure_response(400, "Validation failed", _field_errors(exc))

    @app.exception_handler(RateLimitExceeded)
    async def handle_rate_limited(request: Request, exc: RateLimitExceeded):
        logger.warning(
            "Rate limit hit: %s %s from %s",
            request.method, request.url.path, get_remote_address(request),
        )
        return failure_response(429, RATE_LIMITED_MESSAGE)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return failure_response(exc.status_code, message, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return failure_response(500, "Internal server error")

"""Authentication middleware for admin endpoints."""

import hmac
import os
from collections.abc import Callable
from typing import Any

import structlog
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

logger = structlog.get_logger(__name__)

ADMIN_PATH_PREFIX = "/admin"


def get_admin_api_key() -> str | None:
    """Get the admin API key from the environment."""
    return os.getenv("KEYRELAY_ADMIN_API_KEY") or None


def _parse_bearer_token(authorization: str | None) -> str | None:
    """Return the token from a ``Bearer <token>`` header, or None."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class AdminAuthMiddleware(BaseHTTPMiddleware):
    """Require ``Authorization: Bearer <key>`` on ``/admin/*`` when an admin key is set.

    Admin routes only expose masked status, so they stay open when no key is
    configured; a warning is logged at startup in that case.
    """

    def __init__(self, app: Callable[..., Any], admin_api_key: str | None = None) -> None:
        super().__init__(app)
        self._admin_api_key = admin_api_key or get_admin_api_key()
        if not self._admin_api_key:
            logger.warning("admin_api_key_not_configured", path_prefix=ADMIN_PATH_PREFIX)

    def _unauthorized(self, request: Request, reason: str, detail: str) -> JSONResponse:
        logger.warning(
            "authentication_failed",
            reason=reason,
            endpoint=request.url.path,
            method=request.method,
            client_ip=_client_ip(request),
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": detail},
            headers={"WWW-Authenticate": "Bearer"},
        )

    async def dispatch(self, request: Request, call_next: Callable[..., Any]) -> Response:
        path = request.url.path
        if self._admin_api_key and path.startswith(ADMIN_PATH_PREFIX) and request.method != "OPTIONS":
            authorization = request.headers.get("Authorization")
            if not authorization:
                return self._unauthorized(
                    request, "missing_authorization_header", "Missing Authorization header"
                )

            token = _parse_bearer_token(authorization)
            if token is None:
                return self._unauthorized(
                    request,
                    "invalid_authorization_format",
                    "Invalid Authorization header format. Expected: Bearer {api_key}",
                )

            if not hmac.compare_digest(token, self._admin_api_key):
                return self._unauthorized(request, "invalid_api_key", "Invalid admin API key")

            request.state.authenticated = True

        return await call_next(request)

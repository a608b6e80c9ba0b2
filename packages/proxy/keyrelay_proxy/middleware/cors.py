"""CORS middleware for browser-based OpenAI clients."""

import os
from collections.abc import Callable
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

ALLOW_METHODS = "GET, POST, OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization"


def get_cors_origins() -> list[str]:
    """Allowed origins from ``CORS_ORIGINS`` (comma-separated). Defaults to any origin."""
    configured = os.getenv("CORS_ORIGINS", "")
    origins = [origin.strip() for origin in configured.split(",") if origin.strip()]
    return origins or ["*"]


class CORSMiddleware(BaseHTTPMiddleware):
    """Answers preflight requests and adds CORS headers to responses."""

    def __init__(self, app: Callable[..., Any], allowed_origins: list[str] | None = None) -> None:
        super().__init__(app)
        self._allowed_origins = allowed_origins or get_cors_origins()

    def _allow_origin(self, origin: str | None) -> str | None:
        if "*" in self._allowed_origins:
            return "*"
        if origin and origin in self._allowed_origins:
            return origin
        return None

    def _apply(self, response: Response, allow_origin: str) -> None:
        response.headers["Access-Control-Allow-Origin"] = allow_origin
        response.headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
        response.headers["Access-Control-Allow-Headers"] = ALLOW_HEADERS
        if allow_origin != "*":
            response.headers["Vary"] = "Origin"

    async def dispatch(self, request: Request, call_next: Callable[..., Any]) -> Response:
        allow_origin = self._allow_origin(request.headers.get("Origin"))

        if request.method == "OPTIONS":
            response = Response(status_code=204)
            if allow_origin:
                self._apply(response, allow_origin)
                response.headers["Access-Control-Max-Age"] = "86400"
            return response

        response = await call_next(request)
        if allow_origin:
            self._apply(response, allow_origin)
        return response

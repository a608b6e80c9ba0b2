"""FastAPI application entry point for KeyRelay Proxy."""

import asyncio
import os
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from keyrelay.domain.models.errors import RelayError
from keyrelay.infrastructure.observability.logger import sanitize_for_logging
from keyrelay.relay import KeyRelay
from keyrelay_proxy.api import admin, v1
from keyrelay_proxy.dependencies import RelayProvider
from keyrelay_proxy.middleware.auth import AdminAuthMiddleware
from keyrelay_proxy.middleware.cors import CORSMiddleware

logger = structlog.get_logger(__name__)


def get_shutdown_timeout() -> int:
    """Get shutdown timeout from environment variable.

    Returns:
        Shutdown timeout in seconds (default: 30).
    """
    return int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30"))


async def cleanup_resources(app: FastAPI) -> None:
    """Flush pending persistence writes and close the relay's connections."""
    logger.info("shutdown_started", message="Beginning graceful shutdown")

    provider: RelayProvider | None = getattr(app.state, "relay_provider", None)
    if provider is not None and provider.relay is not None:
        try:
            await provider.close()
            logger.info("shutdown_resource_closed", resource="relay", status="success")
        except Exception as e:
            logger.warning(
                "shutdown_resource_error",
                resource="relay",
                error=str(e),
                status="warning",
            )

    logger.info("shutdown_completed", message="Graceful shutdown completed successfully")


def create_app(relay_factory: Callable[[], KeyRelay] = KeyRelay) -> FastAPI:
    """Build the proxy application.

    Args:
        relay_factory: Builds the KeyRelay on first use. Tests pass a factory
            wired to fakes.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("application_startup", message="KeyRelay Proxy starting up")
        shutdown_timeout = get_shutdown_timeout()

        yield

        logger.info("shutdown_signal_received", timeout_seconds=shutdown_timeout)
        try:
            await asyncio.wait_for(cleanup_resources(app), timeout=shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "shutdown_timeout_exceeded",
                timeout_seconds=shutdown_timeout,
                message=f"Shutdown timeout ({shutdown_timeout}s) exceeded, forcing exit",
            )

    app = FastAPI(
        title="KeyRelay Proxy",
        version="0.1.0",
        description="OpenAI-compatible gateway rotating Gemini credentials",
        lifespan=lifespan,
    )
    app.state.relay_provider = RelayProvider(relay_factory)

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "request_failed",
            endpoint=request.url.path,
            category=exc.category.value,
            status_code=exc.status_code,
            error=sanitize_for_logging(exc.message),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    # Last added is outermost
    app.add_middleware(AdminAuthMiddleware)
    app.add_middleware(CORSMiddleware)

    app.include_router(v1.router, prefix="/v1")
    app.include_router(admin.router, prefix="/admin")

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()

"""Startup script for KeyRelay Proxy with graceful shutdown configuration."""

import os

import uvicorn
from dotenv import load_dotenv


def main() -> None:
    """Load ``.env`` and start the proxy server."""
    # Prefix-enumerated credentials (GEMINI_API_KEY_*) are read from os.environ
    load_dotenv()

    host = os.getenv("PROXY_HOST", "0.0.0.0")
    port = int(os.getenv("PROXY_PORT", "8000"))
    reload = os.getenv("PROXY_RELOAD", "false").lower() == "true"
    shutdown_timeout = int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30"))

    config = uvicorn.Config(
        "keyrelay_proxy.main:app",
        host=host,
        port=port,
        reload=reload,
        timeout_graceful_shutdown=shutdown_timeout,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )

    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    main()

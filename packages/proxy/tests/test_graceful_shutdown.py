"""Tests for graceful shutdown functionality."""

import asyncio
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from keyrelay_proxy.dependencies import RelayProvider
from keyrelay_proxy.main import cleanup_resources, create_app, get_shutdown_timeout


class TestShutdownConfiguration:
    """Tests for shutdown configuration."""

    def test_get_shutdown_timeout_default(self) -> None:
        """Test that shutdown timeout defaults to 30 seconds."""
        os.environ.pop("SHUTDOWN_TIMEOUT_SECONDS", None)
        assert get_shutdown_timeout() == 30

    def test_get_shutdown_timeout_from_env(self) -> None:
        """Test that shutdown timeout can be configured via environment variable."""
        os.environ["SHUTDOWN_TIMEOUT_SECONDS"] = "60"
        try:
            assert get_shutdown_timeout() == 60
        finally:
            os.environ.pop("SHUTDOWN_TIMEOUT_SECONDS", None)


class TestCleanupResources:
    """Tests for resource cleanup during shutdown."""

    @pytest.mark.asyncio
    async def test_cleanup_before_first_request(self) -> None:
        """Nothing is built, so nothing is closed."""
        factory = MagicMock()
        app = FastAPI()
        app.state.relay_provider = RelayProvider(factory)

        await cleanup_resources(app)

        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_cleanup_closes_relay(self) -> None:
        relay = MagicMock()
        relay.initialize = AsyncMock()
        relay.close = AsyncMock()
        app = FastAPI()
        app.state.relay_provider = RelayProvider(lambda: relay)
        await app.state.relay_provider.get()

        await cleanup_resources(app)

        relay.close.assert_awaited_once()
        assert app.state.relay_provider.relay is None

    @pytest.mark.asyncio
    async def test_cleanup_error_is_logged_not_raised(self) -> None:
        relay = MagicMock()
        relay.initialize = AsyncMock()
        relay.close = AsyncMock(side_effect=RuntimeError("redis gone"))
        app = FastAPI()
        app.state.relay_provider = RelayProvider(lambda: relay)
        await app.state.relay_provider.get()

        with patch("keyrelay_proxy.main.logger") as mock_logger:
            await cleanup_resources(app)

        assert any(
            call.args[0] == "shutdown_resource_error"
            for call in mock_logger.warning.call_args_list
        )

    @pytest.mark.asyncio
    async def test_relay_built_once(self) -> None:
        built = []

        def factory():
            relay = MagicMock()
            relay.initialize = AsyncMock()
            built.append(relay)
            return relay

        provider = RelayProvider(factory)
        first = await provider.get()
        second = await provider.get()

        assert first is second
        assert len(built) == 1
        first.initialize.assert_awaited_once()


class TestLifespan:
    """Tests for the application lifespan."""

    def test_shutdown_flushes_relay(self, app: FastAPI, adapter) -> None:
        with TestClient(app) as client:
            client.post(
                "/v1/chat/completions",
                json={
                    "model": "gemini-2.5-flash",
                    "messages": [{"role": "user", "content": "Hi"}],
                    "stream": False,
                },
            )
            relay = app.state.relay_provider.relay
            assert relay is not None

        assert app.state.relay_provider.relay is None

    def test_shutdown_timeout_is_logged(self, monkeypatch) -> None:
        monkeypatch.setenv("SHUTDOWN_TIMEOUT_SECONDS", "0")

        async def slow_cleanup(app: FastAPI) -> None:
            await asyncio.sleep(1)

        app = create_app(relay_factory=MagicMock())
        with patch("keyrelay_proxy.main.cleanup_resources", slow_cleanup), patch(
            "keyrelay_proxy.main.logger"
        ) as mock_logger:
            with TestClient(app):
                pass

        assert any(
            call.args[0] == "shutdown_timeout_exceeded"
            for call in mock_logger.warning.call_args_list
        )

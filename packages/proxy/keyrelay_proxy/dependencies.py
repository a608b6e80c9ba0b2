"""
Dependency injection setup for the KeyRelay Proxy.
"""

import asyncio
from collections.abc import Callable

import structlog
from fastapi import Request

from keyrelay.relay import KeyRelay

logger = structlog.get_logger(__name__)


class RelayProvider:
    """Builds the process-wide KeyRelay on first use.

    Construction and state loading happen once, behind a lock, the first
    time a request needs the relay. ``close()`` discards it.
    """

    def __init__(self, factory: Callable[[], KeyRelay] = KeyRelay) -> None:
        self._factory = factory
        self._relay: KeyRelay | None = None
        self._lock = asyncio.Lock()

    @property
    def relay(self) -> KeyRelay | None:
        return self._relay

    async def get(self) -> KeyRelay:
        if self._relay is not None:
            return self._relay
        async with self._lock:
            if self._relay is None:
                relay = self._factory()
                await relay.initialize()
                self._relay = relay
                logger.info(
                    "relay_initialized",
                    mode="rotation" if relay.uses_rotation else "pool",
                    total_keys=relay.key_store.total_count(),
                )
        return self._relay

    async def close(self) -> None:
        if self._relay is None:
            return
        relay, self._relay = self._relay, None
        await relay.close()


async def get_relay(request: Request) -> KeyRelay:
    """Get the process-wide KeyRelay, building it on first use."""
    provider: RelayProvider = request.app.state.relay_provider
    return await provider.get()

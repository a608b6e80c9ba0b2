"""Reporting interface used by the rotation components."""

from abc import ABC, abstractmethod
from typing import Any


class ObservabilityError(Exception):
    """Raised when a log line or event cannot be delivered."""

    pass


class ObservabilityManager(ABC):
    """Sink for rotation logs and events.

    KeyStore, Rotator and UsageRecorder report only through this interface.
    Events they emit: ``keys_configured``, ``key_exhausted``,
    ``tier_fallback`` and ``rotation_exhausted``. Implementations own
    credential redaction; callers may pass raw keys under a ``key`` field.
    """

    @abstractmethod
    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record a rotation event such as ``key_exhausted``."""

    @abstractmethod
    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Write one log line at ``level`` (stdlib level name) with ``context``."""

"""Provider call contracts used by the Rotator and the credential pool.

The Rotator never performs network I/O itself. It receives a provider call
(or stream) with a uniform signature per credential and owns only the
selection and retry policy around it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from keyrelay.domain.models.chat import ChatMessage
    from keyrelay.domain.models.generation import GenerationOptions, ProviderResult
    from keyrelay.domain.models.stream_events import StreamEvent


class ProviderCall(Protocol):
    """``(credential, model, system_prompt, messages, options) -> ProviderResult``."""

    def __call__(
        self,
        credential: str,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> Awaitable[ProviderResult]: ...


class ProviderStream(Protocol):
    """``(credential, model, system_prompt, messages, options) -> AsyncIterator[StreamEvent]``.

    Implementations must raise strictly before yielding their first event
    when the upstream rejects the request; an error after the first event
    cannot be retried on another credential.
    """

    def __call__(
        self,
        credential: str,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> AsyncIterator[StreamEvent]: ...


class ProviderAdapter(ABC):
    """Abstract interface for a backend model provider.

    Bound ``generate_content`` / ``stream_content`` methods satisfy the
    ProviderCall / ProviderStream protocols and are what gets injected into
    the Rotator.

    All failures must be raised as ``UpstreamError`` carrying the upstream
    HTTP status when there was one.
    """

    @abstractmethod
    async def generate_content(
        self,
        credential: str,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> ProviderResult:
        """Perform a single non-streaming completion."""
        pass

    @abstractmethod
    def stream_content(
        self,
        credential: str,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> AsyncIterator[StreamEvent]:
        """Perform a streaming completion yielding backend-native events."""
        pass

    async def aclose(self) -> None:
        """Release pooled HTTP connections."""
        return None

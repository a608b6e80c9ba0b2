"""StreamBridge component: backend stream events to chat.completion.chunk dicts.

A producer task drains the backend event sequence into a bounded channel
and the consumer iterates the channel. The channel holds one chunk at a
time, so the producer suspends until the transport has taken the previous
chunk.

Example:
    ```python
    bridge = StreamBridge(rotator.stream_content(...), model="gemini-2.5-pro")
    async for chunk in bridge:
        yield f"data: {json.dumps(chunk)}\\n\\n"
    ```
"""

import asyncio
import contextlib
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

import structlog

from keyrelay.domain.models.stream_events import (
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ToolCallDelta,
    UsageEvent,
)
from keyrelay.infrastructure.observability.logger import sanitize_for_logging

logger = structlog.get_logger(__name__)


class ChannelClosedError(Exception):
    """Raised when sending on a channel that has been closed or failed."""

    pass


class _Closed:
    pass


class _Failed:
    def __init__(self, error: BaseException) -> None:
        self.error = error


class ChunkChannel:
    """Bounded single-producer, single-consumer channel with terminal signals.

    ``close()`` ends the sequence normally; ``fail(error)`` ends it with an
    error that the consumer receives as a ``_Failed`` marker.
    """

    def __init__(self, maxsize: int = 1) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._terminated = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    async def send(self, chunk: dict[str, Any]) -> None:
        if self._terminated:
            raise ChannelClosedError("Cannot send on a terminated channel")
        await self._queue.put(chunk)

    async def close(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        await self._queue.put(_Closed())

    async def fail(self, error: BaseException) -> None:
        if self._terminated:
            return
        self._terminated = True
        await self._queue.put(_Failed(error))

    async def receive(self) -> dict[str, Any] | _Closed | _Failed:
        return await self._queue.get()


class StreamBridge:
    """Single-pass conversion of backend stream events into output chunks.

    Emits the assistant role first, then content, reasoning and tool-call
    deltas in arrival order, then exactly one finish chunk (``tool_calls`` if
    any tool call was seen, else ``stop``) and a usage chunk when usage was
    reported. An upstream error ends the output with one chunk whose content
    reads ``Error: <message>`` and never propagates to the consumer.
    """

    def __init__(
        self,
        source: AsyncIterator[StreamEvent],
        model: str,
        completion_id: str | None = None,
        created: int | None = None,
    ) -> None:
        self._source = source
        self.model = model
        self.completion_id = completion_id or f"chatcmpl-{uuid.uuid4()}"
        self.created = created if created is not None else int(time.time())
        self._started = False
        self._tool_arguments: dict[int, str] = {}
        self._usage: UsageEvent | None = None

    @property
    def tool_arguments(self) -> dict[int, str]:
        """Concatenated tool-call arguments seen so far, by call index."""
        return dict(self._tool_arguments)

    def _chunk(
        self,
        delta: dict[str, Any],
        finish_reason: str | None = None,
    ) -> dict[str, Any]:
        return {
            "id": self.completion_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }

    def _convert(self, event: StreamEvent) -> dict[str, Any] | None:
        if isinstance(event, TextDelta):
            return self._chunk({"content": event.text})
        if isinstance(event, ThinkingDelta):
            return self._chunk({"reasoning": event.text})
        if isinstance(event, ToolCallDelta):
            first = event.index not in self._tool_arguments
            self._tool_arguments[event.index] = (
                self._tool_arguments.get(event.index, "") + event.arguments
            )
            call: dict[str, Any] = {"index": event.index}
            if first:
                call["id"] = event.id or f"call_{uuid.uuid4().hex}"
                call["type"] = "function"
                call["function"] = {"name": event.name or "", "arguments": event.arguments}
            else:
                call["function"] = {"arguments": event.arguments}
            return self._chunk({"tool_calls": [call]})
        if isinstance(event, UsageEvent):
            self._usage = event
            return None
        logger.warning("stream_event_ignored", event_type=type(event).__name__)
        return None

    def _usage_chunk(self) -> dict[str, Any]:
        usage = self._usage
        return {
            "id": self.completion_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [],
            "usage": {
                "prompt_tokens": usage.input_tokens,
                "completion_tokens": usage.output_tokens,
                "total_tokens": usage.input_tokens + usage.output_tokens,
            },
        }

    def _error_chunk(self, error: BaseException) -> dict[str, Any]:
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        chunk = self._chunk({"content": f"Error: {message}"}, finish_reason="stop")
        chunk["error"] = {"message": message, "type": type(error).__name__}
        return chunk

    async def _produce(self, channel: ChunkChannel) -> None:
        try:
            await channel.send(self._chunk({"role": "assistant"}))
            async for event in self._source:
                chunk = self._convert(event)
                if chunk is not None:
                    await channel.send(chunk)
        except Exception as error:
            logger.warning(
                "stream_failed",
                error=sanitize_for_logging(str(error)),
                model=self.model,
            )
            await channel.fail(error)
            return
        finally:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()

        finish_reason = "tool_calls" if self._tool_arguments else "stop"
        await channel.send(self._chunk({}, finish_reason=finish_reason))
        if self._usage is not None:
            await channel.send(self._usage_chunk())
        await channel.close()

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self.stream()

    async def stream(self) -> AsyncIterator[dict[str, Any]]:
        """Yield output chunks. May only be iterated once."""
        if self._started:
            raise RuntimeError("StreamBridge is single-pass; create a new bridge to retry")
        self._started = True

        channel = ChunkChannel()
        producer = asyncio.create_task(self._produce(channel))
        try:
            while True:
                item = await channel.receive()
                if isinstance(item, _Closed):
                    break
                if isinstance(item, _Failed):
                    yield self._error_chunk(item.error)
                    break
                yield item
        finally:
            if not producer.done():
                producer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await producer

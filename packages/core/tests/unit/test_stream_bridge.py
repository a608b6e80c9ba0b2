"""Tests for StreamBridge and ChunkChannel."""

import asyncio
from unittest.mock import patch

import pytest

from keyrelay.domain.components.stream_bridge import (
    ChannelClosedError,
    ChunkChannel,
    StreamBridge,
)
from keyrelay.domain.models.errors import RecoverableUpstreamError
from keyrelay.domain.models.stream_events import (
    TextDelta,
    ThinkingDelta,
    ToolCallDelta,
    UsageEvent,
)


async def events_from(*events, error: Exception | None = None):
    for event in events:
        yield event
    if error is not None:
        raise error


async def collect(bridge: StreamBridge) -> list[dict]:
    return [chunk async for chunk in bridge]


def deltas(chunks: list[dict]) -> list[dict]:
    return [c["choices"][0]["delta"] for c in chunks if c["choices"]]


class TestStreamBridge:
    """Tests for event conversion and ordering."""

    @pytest.mark.asyncio
    async def test_text_stream_order(self) -> None:
        bridge = StreamBridge(
            events_from(TextDelta(text="Hel"), TextDelta(text="lo")),
            model="gemini-2.5-flash",
            completion_id="chatcmpl-test",
            created=1700000000,
        )

        chunks = await collect(bridge)

        assert deltas(chunks) == [
            {"role": "assistant"},
            {"content": "Hel"},
            {"content": "lo"},
            {},
        ]
        assert chunks[-1]["choices"][0]["finish_reason"] == "stop"
        assert all(c["id"] == "chatcmpl-test" for c in chunks)
        assert all(c["object"] == "chat.completion.chunk" for c in chunks)
        assert all(c["model"] == "gemini-2.5-flash" for c in chunks)

    @pytest.mark.asyncio
    async def test_reasoning_and_usage(self) -> None:
        bridge = StreamBridge(
            events_from(
                ThinkingDelta(text="pondering"),
                TextDelta(text="answer"),
                UsageEvent(input_tokens=12, output_tokens=8),
            ),
            model="gemini-2.5-pro",
        )

        chunks = await collect(bridge)

        assert deltas(chunks)[1:3] == [{"reasoning": "pondering"}, {"content": "answer"}]
        usage_chunk = chunks[-1]
        assert usage_chunk["choices"] == []
        assert usage_chunk["usage"] == {
            "prompt_tokens": 12,
            "completion_tokens": 8,
            "total_tokens": 20,
        }
        assert chunks[-2]["choices"][0]["finish_reason"] == "stop"

    @pytest.mark.asyncio
    async def test_tool_call_fragments_concatenate(self) -> None:
        """Only the first fragment per index carries id and name."""
        bridge = StreamBridge(
            events_from(
                ToolCallDelta(index=0, id="call_1", name="get_weather", arguments='{"city"'),
                ToolCallDelta(index=0, arguments=': "Paris"}'),
            ),
            model="gemini-2.5-flash",
        )

        chunks = await collect(bridge)
        tool_deltas = [d["tool_calls"][0] for d in deltas(chunks) if "tool_calls" in d]

        assert tool_deltas[0] == {
            "index": 0,
            "id": "call_1",
            "type": "function",
            "function": {"name": "get_weather", "arguments": '{"city"'},
        }
        assert tool_deltas[1] == {"index": 0, "function": {"arguments": ': "Paris"}'}}
        assert bridge.tool_arguments == {0: '{"city": "Paris"}'}
        assert chunks[-1]["choices"][0]["finish_reason"] == "tool_calls"

    @pytest.mark.asyncio
    async def test_tool_call_without_id_gets_one(self) -> None:
        bridge = StreamBridge(
            events_from(ToolCallDelta(index=0, name="lookup", arguments="{}")),
            model="gemini-2.5-flash",
        )

        chunks = await collect(bridge)
        call = deltas(chunks)[1]["tool_calls"][0]

        assert call["id"].startswith("call_")

    @pytest.mark.asyncio
    async def test_upstream_error_becomes_error_chunk(self) -> None:
        """The error is delivered in-band and never raised to the consumer."""
        bridge = StreamBridge(
            events_from(
                TextDelta(text="partial"),
                error=RecoverableUpstreamError("Quota exceeded", status=429),
            ),
            model="gemini-2.5-flash",
        )

        chunks = await collect(bridge)

        assert deltas(chunks)[:2] == [{"role": "assistant"}, {"content": "partial"}]
        last = chunks[-1]
        assert last["choices"][0]["delta"] == {"content": "Error: Quota exceeded"}
        assert last["choices"][0]["finish_reason"] == "stop"
        assert last["error"] == {"message": "Quota exceeded", "type": "RecoverableUpstreamError"}
        assert len(chunks) == 3

    @pytest.mark.asyncio
    async def test_error_before_any_event(self) -> None:
        bridge = StreamBridge(events_from(error=RuntimeError("boom")), model="m")

        chunks = await collect(bridge)

        assert deltas(chunks) == [{"role": "assistant"}, {"content": "Error: boom"}]

    @pytest.mark.asyncio
    async def test_failure_log_redacts_credentials(self) -> None:
        leaked = "AIzaSyLeakedKeyInUpstreamMessage0001"
        bridge = StreamBridge(events_from(error=RuntimeError(f"bad key {leaked}")), model="m")

        with patch("keyrelay.domain.components.stream_bridge.logger") as mock_logger:
            await collect(bridge)

        logged = mock_logger.warning.call_args.kwargs["error"]
        assert leaked not in logged
        assert "[REDACTED]" in logged

    @pytest.mark.asyncio
    async def test_bridge_is_single_pass(self) -> None:
        bridge = StreamBridge(events_from(TextDelta(text="x")), model="m")
        await collect(bridge)

        with pytest.raises(RuntimeError, match="single-pass"):
            await collect(bridge)

    @pytest.mark.asyncio
    async def test_early_consumer_exit_closes_source(self) -> None:
        closed = asyncio.Event()

        async def endless():
            try:
                while True:
                    yield TextDelta(text="tick")
            finally:
                closed.set()

        bridge = StreamBridge(endless(), model="m")
        stream = bridge.stream()
        received = [await stream.__anext__() for _ in range(3)]
        await stream.aclose()

        assert deltas(received)[0] == {"role": "assistant"}
        await asyncio.wait_for(closed.wait(), timeout=1)


class TestChunkChannel:
    """Tests for the bounded channel."""

    @pytest.mark.asyncio
    async def test_send_blocks_until_received(self) -> None:
        channel = ChunkChannel(maxsize=1)
        await channel.send({"n": 1})

        blocked = asyncio.create_task(channel.send({"n": 2}))
        await asyncio.sleep(0)
        assert not blocked.done()

        assert await channel.receive() == {"n": 1}
        await asyncio.wait_for(blocked, timeout=1)
        assert await channel.receive() == {"n": 2}

    @pytest.mark.asyncio
    async def test_send_after_close_raises(self) -> None:
        channel = ChunkChannel(maxsize=2)
        await channel.close()

        assert channel.terminated
        with pytest.raises(ChannelClosedError):
            await channel.send({"n": 1})

    @pytest.mark.asyncio
    async def test_fail_after_close_is_ignored(self) -> None:
        channel = ChunkChannel(maxsize=2)
        await channel.close()
        await channel.fail(RuntimeError("late"))

        first = await channel.receive()
        assert type(first).__name__ == "_Closed"

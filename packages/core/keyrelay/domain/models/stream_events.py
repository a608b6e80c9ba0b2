"""Backend-native stream events consumed by the StreamBridge."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class TextDelta(BaseModel):
    """Incremental assistant text."""

    type: Literal["text"] = "text"
    text: str

    model_config = ConfigDict(frozen=True)


class ThinkingDelta(BaseModel):
    """Incremental reasoning ("thought") text."""

    type: Literal["thinking"] = "thinking"
    text: str

    model_config = ConfigDict(frozen=True)


class ToolCallDelta(BaseModel):
    """A fragment of a tool call.

    ``id`` and ``name`` are normally present on the first fragment for an
    index only; ``arguments`` is a raw, possibly partial, JSON fragment.
    """

    type: Literal["tool_call"] = "tool_call"
    index: int = Field(default=0, ge=0)
    id: str | None = None
    name: str | None = None
    arguments: str = ""

    model_config = ConfigDict(frozen=True)


class UsageEvent(BaseModel):
    """Terminal token accounting for the stream."""

    type: Literal["usage"] = "usage"
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)


StreamEvent = TextDelta | ThinkingDelta | ToolCallDelta | UsageEvent

"""Structured generation options and provider results."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class GenerationOptions(BaseModel):
    """Recognized generation parameters passed from the HTTP boundary to a provider.

    Only the fields below exist; anything else a client sent stays on the
    request model and never reaches the provider layer.
    """

    include_reasoning: bool = False
    thinking_budget: int = -1
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stop: str | list[str] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    seed: int | None = None
    response_format: dict[str, Any] | None = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class TokenUsage(BaseModel):
    """Token usage for a single call.

    Example:
        ```python
        usage = TokenUsage(input_tokens=100, output_tokens=50)
        assert usage.total_tokens == 150
        ```
    """

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)

    @computed_field
    @property
    def total_tokens(self) -> int:
        """Compute total tokens (input + output)."""
        return self.input_tokens + self.output_tokens


class ProviderResult(BaseModel):
    """Normalized non-streaming provider response."""

    content: str = ""
    reasoning: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    usage: TokenUsage | None = None
    model: str | None = Field(
        default=None,
        description="Model tier that actually served the call",
    )
    credential: str | None = Field(
        default=None,
        exclude=True,
        description="Credential that served the call; never serialized",
    )

    @property
    def finish_reason(self) -> str:
        return "tool_calls" if self.tool_calls else "stop"

"""Chat-completion request models (OpenAI wire format)."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

EffortLevel = Literal["none", "low", "medium", "high"]


class ChatMessage(BaseModel):
    """A chat message in a conversation.

    ``content`` is either plain text or a list of typed parts
    (``{"type": "text", "text": ...}`` / ``{"type": "image_url", ...}``).

    Example:
        ```python
        user_msg = ChatMessage(role="user", content="Hello!")
        ```
    """

    role: str = Field(
        ...,
        description="Message role: 'system', 'user', 'assistant', or 'tool'",
        min_length=1,
    )
    content: str | list[dict[str, Any]] | None = Field(
        default=None,
        description="Message text or list of content parts",
    )
    name: str | None = None
    tool_calls: list[dict[str, Any]] | None = Field(
        default=None,
        description="Tool calls made by the assistant",
    )
    tool_call_id: str | None = Field(
        default=None,
        description="Tool call ID (for tool role messages)",
    )

    model_config = ConfigDict(extra="ignore")

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        """Validate message role."""
        valid_roles = {"system", "user", "assistant", "tool"}
        if v.lower() not in valid_roles:
            raise ValueError(f"Role must be one of {sorted(valid_roles)}, got {v!r}")
        return v.lower()

    def text(self) -> str:
        """Return the text content, joining text parts with a space."""
        if isinstance(self.content, str):
            return self.content
        if not self.content:
            return ""
        return " ".join(
            part.get("text") or ""
            for part in self.content
            if part.get("type") == "text"
        )

    def has_images(self) -> bool:
        if not isinstance(self.content, list):
            return False
        return any(part.get("type") == "image_url" for part in self.content)


class ChatCompletionRequest(BaseModel):
    """Inbound ``POST /v1/chat/completions`` body.

    Unknown fields are kept (``extra="allow"``) so nothing a client sends is
    lost at the HTTP boundary, but they are never read past this model.
    """

    model: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    stream: bool | None = None
    thinking_budget: int | None = None
    reasoning_effort: str | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    temperature: float | None = None
    max_tokens: int | None = Field(default=None, ge=1)
    top_p: float | None = None
    stop: str | list[str] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    seed: int | None = None
    response_format: dict[str, Any] | None = None
    extra_body: dict[str, Any] | None = None
    model_params: dict[str, Any] | None = None

    model_config = ConfigDict(extra="allow")

    @property
    def wants_stream(self) -> bool:
        """Streaming is the default unless ``stream`` is explicitly false."""
        return self.stream is not False

    def effective_reasoning_effort(self) -> str | None:
        """Reasoning effort from the body, ``extra_body`` or ``model_params``."""
        if self.reasoning_effort:
            return self.reasoning_effort
        for container in (self.extra_body, self.model_params):
            if container and container.get("reasoning_effort"):
                return str(container["reasoning_effort"])
        return None

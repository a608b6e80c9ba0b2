"""Gemini provider adapter implementation."""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from keyrelay.domain.interfaces.provider_adapter import ProviderAdapter
from keyrelay.domain.models.chat import ChatMessage
from keyrelay.domain.models.errors import UpstreamError
from keyrelay.domain.models.generation import GenerationOptions, ProviderResult, TokenUsage
from keyrelay.domain.models.pool_entry import OAuthCredential
from keyrelay.domain.models.stream_events import (
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ToolCallDelta,
    UsageEvent,
)
from keyrelay.infrastructure.adapters.generation_config import GenerationConfigBuilder

logger = structlog.get_logger(__name__)

UPSTREAM_TIMEOUT_STATUS = 524
"""Status reported for requests that time out waiting on the backend."""

Credential = str | OAuthCredential


def _parse_data_url(url: str) -> tuple[str, str] | None:
    """Split ``data:<mime>;base64,<data>`` into (mime, data)."""
    if not url.startswith("data:") or "," not in url:
        return None
    header, data = url[5:].split(",", 1)
    mime_type = header.split(";", 1)[0] or "application/octet-stream"
    return mime_type, data


def _load_arguments(arguments: Any) -> Any:
    if isinstance(arguments, str):
        try:
            return json.loads(arguments) if arguments else {}
        except ValueError:
            return {"value": arguments}
    return arguments or {}


def _tool_call_id() -> str:
    return f"call_{uuid.uuid4().hex}"


class GeminiAdapter(ProviderAdapter):
    """Gemini API adapter.

    Converts chat messages to Gemini ``contents``, performs
    ``generateContent`` / ``streamGenerateContent`` calls with httpx and
    normalizes responses. Every failure surfaces as ``UpstreamError`` with the
    upstream HTTP status; streaming calls raise before yielding anything when
    the backend rejects the request.

    String credentials are sent as API keys; ``OAuthCredential`` objects are
    sent as bearer tokens.

    Example:
        ```python
        adapter = GeminiAdapter()
        result = await adapter.generate_content(
            "AIza...", "gemini-2.5-flash", "", [ChatMessage(role="user", content="Hi")],
            GenerationOptions(),
        )
        ```
    """

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    """Gemini API base URL."""

    TIMEOUT = 120.0
    """Request timeout in seconds."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        config_builder: GenerationConfigBuilder | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Gemini adapter.

        Args:
            base_url: Optional base URL override.
            timeout: Optional timeout override.
            config_builder: Builder for generation config, safety and tools.
            http_client: Optional shared client (tests pass one with a MockTransport).
        """
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout or self.TIMEOUT
        self.config_builder = config_builder or GenerationConfigBuilder()
        self._client = http_client or httpx.AsyncClient(timeout=self.timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, credential: Credential) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if isinstance(credential, OAuthCredential):
            headers["Authorization"] = f"{credential.token_type} {credential.access_token}"
            if credential.project_id:
                headers["x-goog-user-project"] = credential.project_id
        else:
            headers["x-goog-api-key"] = credential
        return headers

    def convert_messages(self, messages: list[ChatMessage]) -> list[dict[str, Any]]:
        """Convert chat messages to Gemini ``contents``.

        System messages are expected to have been extracted already and are
        skipped here.
        """
        tool_names: dict[str, str] = {}
        contents: list[dict[str, Any]] = []

        for message in messages:
            if message.role == "system":
                continue

            if message.role == "tool":
                name = message.name or tool_names.get(message.tool_call_id or "", "")
                content = message.text()
                try:
                    response = json.loads(content)
                except ValueError:
                    response = content
                if not isinstance(response, dict):
                    response = {"result": response}
                contents.append(
                    {
                        "role": "user",
                        "parts": [{"functionResponse": {"name": name, "response": response}}],
                    }
                )
                continue

            parts: list[dict[str, Any]] = []
            if isinstance(message.content, str):
                if message.content:
                    parts.append({"text": message.content})
            elif message.content:
                for part in message.content:
                    if part.get("type") == "text":
                        parts.append({"text": part.get("text") or ""})
                    elif part.get("type") == "image_url":
                        image = part.get("image_url") or {}
                        url = image.get("url", "") if isinstance(image, dict) else str(image)
                        inline = _parse_data_url(url)
                        if inline is not None:
                            parts.append({"inlineData": {"mimeType": inline[0], "data": inline[1]}})
                        else:
                            parts.append({"fileData": {"mimeType": "image/jpeg", "fileUri": url}})

            for call in message.tool_calls or []:
                function = call.get("function") or {}
                if call.get("id"):
                    tool_names[call["id"]] = function.get("name", "")
                parts.append(
                    {
                        "functionCall": {
                            "name": function.get("name", ""),
                            "args": _load_arguments(function.get("arguments")),
                        }
                    }
                )

            if parts:
                role = "model" if message.role == "assistant" else "user"
                contents.append({"role": role, "parts": parts})

        return contents

    def build_request(
        self,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": self.convert_messages(messages),
            "generationConfig": self.config_builder.generation_config(model, options),
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        tools, tool_config = self.config_builder.tools(options)
        if tools:
            body["tools"] = tools
        if tool_config:
            body["toolConfig"] = tool_config

        safety_settings = self.config_builder.safety_settings()
        if safety_settings:
            body["safetySettings"] = safety_settings
        return body

    def _parse_usage(self, data: dict[str, Any]) -> TokenUsage | None:
        metadata = data.get("usageMetadata")
        if not metadata:
            return None
        return TokenUsage(
            input_tokens=metadata.get("promptTokenCount", 0),
            output_tokens=metadata.get("candidatesTokenCount", 0)
            + metadata.get("thoughtsTokenCount", 0),
        )

    def _parts(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        candidates = data.get("candidates") or []
        if not candidates:
            return []
        return (candidates[0].get("content") or {}).get("parts") or []

    def normalize_response(self, data: dict[str, Any], model: str) -> ProviderResult:
        """Normalize a ``generateContent`` response body."""
        content: list[str] = []
        reasoning: list[str] = []
        tool_calls: list[dict[str, Any]] = []

        for part in self._parts(data):
            if "functionCall" in part:
                call = part["functionCall"]
                tool_calls.append(
                    {
                        "id": _tool_call_id(),
                        "type": "function",
                        "function": {
                            "name": call.get("name", ""),
                            "arguments": json.dumps(call.get("args") or {}),
                        },
                    }
                )
            elif part.get("thought"):
                reasoning.append(part.get("text", ""))
            elif "text" in part:
                content.append(part["text"])

        return ProviderResult(
            content="".join(content),
            reasoning="".join(reasoning) or None,
            tool_calls=tool_calls or None,
            usage=self._parse_usage(data),
            model=model,
        )

    def map_error(self, error: Exception) -> UpstreamError:
        """Map an httpx error to UpstreamError."""
        if isinstance(error, httpx.HTTPStatusError):
            return self._status_error(error.response, error.response.text)
        if isinstance(error, httpx.TimeoutException):
            return UpstreamError(
                f"Request to Gemini timed out after {self.timeout}s",
                status=UPSTREAM_TIMEOUT_STATUS,
            )
        if isinstance(error, httpx.RequestError):
            return UpstreamError(f"Network error connecting to Gemini: {error}")
        return UpstreamError(f"Unexpected error: {error}")

    def _status_error(self, response: httpx.Response, text: str) -> UpstreamError:
        status = response.status_code
        details: dict[str, Any] = {}
        message = ""
        try:
            payload = json.loads(text) if text else {}
        except ValueError:
            payload = {}
        if isinstance(payload, list) and payload:
            payload = payload[0]
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            details = payload["error"]
            message = details.get("message", "")

        retry_after = None
        header = response.headers.get("retry-after")
        if header and header.isdigit():
            retry_after = int(header)

        return UpstreamError(
            message or text or f"Gemini API error ({status})",
            status=status,
            details=details,
            retry_after=retry_after,
        )

    async def generate_content(
        self,
        credential: Credential,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> ProviderResult:
        body = self.build_request(model, system_prompt, messages, options)
        try:
            response = await self._client.post(
                f"{self.base_url}/models/{model}:generateContent",
                json=body,
                headers=self._headers(credential),
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise self.map_error(e) from e
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON from Gemini: {e}") from e

        return self.normalize_response(data, model)

    async def stream_content(
        self,
        credential: Credential,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> AsyncIterator[StreamEvent]:
        body = self.build_request(model, system_prompt, messages, options)
        request = self._client.build_request(
            "POST",
            f"{self.base_url}/models/{model}:streamGenerateContent",
            params={"alt": "sse"},
            json=body,
            headers=self._headers(credential),
        )

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise self.map_error(e) from e

        try:
            if response.status_code >= 400:
                text = (await response.aread()).decode("utf-8", errors="replace")
                raise self._status_error(response, text)

            usage: TokenUsage | None = None
            tool_index = 0
            try:
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    payload = line[5:].strip()
                    if not payload or payload == "[DONE]":
                        continue
                    try:
                        data = json.loads(payload)
                    except ValueError:
                        logger.warning("stream_line_invalid", model=model)
                        continue

                    for part in self._parts(data):
                        if "functionCall" in part:
                            call = part["functionCall"]
                            yield ToolCallDelta(
                                index=tool_index,
                                id=_tool_call_id(),
                                name=call.get("name", ""),
                                arguments=json.dumps(call.get("args") or {}),
                            )
                            tool_index += 1
                        elif part.get("thought"):
                            if part.get("text"):
                                yield ThinkingDelta(text=part["text"])
                        elif part.get("text"):
                            yield TextDelta(text=part["text"])

                    usage = self._parse_usage(data) or usage
            except httpx.HTTPError as e:
                raise self.map_error(e) from e

            if usage is not None:
                yield UsageEvent(input_tokens=usage.input_tokens, output_tokens=usage.output_tokens)
        finally:
            await response.aclose()

"""API v1 routes: OpenAI-compatible models and chat completions."""

import json
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError as PydanticValidationError

from keyrelay.domain.components.stream_bridge import StreamBridge
from keyrelay.domain.models.chat import ChatCompletionRequest, ChatMessage
from keyrelay.domain.models.errors import (
    ModelNotFoundError,
    UnsupportedInputError,
    ValidationError,
)
from keyrelay.domain.models.generation import ProviderResult
from keyrelay.domain.models.model_catalog import (
    DEFAULT_MODEL,
    MODEL_OWNER,
    get_all_model_ids,
    get_model_info,
)
from keyrelay.infrastructure.adapters.generation_config import build_generation_options
from keyrelay.relay import KeyRelay
from keyrelay_proxy.dependencies import get_relay

logger = structlog.get_logger(__name__)

router = APIRouter()

SSE_DONE = "data: [DONE]\n\n"


def split_system_prompt(messages: list[ChatMessage]) -> tuple[str, list[ChatMessage]]:
    """Pull system messages out of the conversation; the last one wins."""
    system_prompt = ""
    others = []
    for message in messages:
        if message.role == "system":
            system_prompt = message.text()
        else:
            others.append(message)
    return system_prompt, others


async def parse_chat_request(request: Request) -> ChatCompletionRequest:
    """Parse and validate the request body.

    Raises:
        ValidationError: If the body is not a valid chat completion request.
    """
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    try:
        return ChatCompletionRequest.model_validate(body)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Invalid field '{location}': {first.get('msg')}") from e


def completion_response(result: ProviderResult, model: str) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": result.content}
    if result.reasoning:
        message["reasoning"] = result.reasoning
    if result.tool_calls:
        message["tool_calls"] = result.tool_calls

    response: dict[str, Any] = {
        "id": f"chatcmpl-{uuid.uuid4()}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": result.finish_reason,
            }
        ],
    }
    if result.usage is not None:
        response["usage"] = {
            "prompt_tokens": result.usage.input_tokens,
            "completion_tokens": result.usage.output_tokens,
            "total_tokens": result.usage.total_tokens,
        }
    return response


async def sse_events(bridge: StreamBridge) -> AsyncIterator[str]:
    async for chunk in bridge:
        yield f"data: {json.dumps(chunk)}\n\n"
    yield SSE_DONE


@router.get("/models")
async def list_models() -> dict[str, Any]:
    created = int(time.time())
    return {
        "object": "list",
        "data": [
            {"id": model_id, "object": "model", "created": created, "owned_by": MODEL_OWNER}
            for model_id in get_all_model_ids()
        ],
    }


@router.post("/chat/completions", response_model=None)
async def chat_completions(
    request: Request,
    relay: KeyRelay = Depends(get_relay),
) -> dict[str, Any] | StreamingResponse:
    chat = await parse_chat_request(request)
    model = chat.model or DEFAULT_MODEL

    if not chat.messages:
        raise ValidationError("messages is a required field")

    info = get_model_info(model)
    if info is None:
        raise ModelNotFoundError(model, get_all_model_ids())

    if not info.supports_images and any(m.has_images() for m in chat.messages):
        raise UnsupportedInputError(
            f"Model '{model}' does not support image inputs. "
            "Please use a vision-capable model like gemini-2.5-pro or gemini-2.5-flash."
        )

    system_prompt, messages = split_system_prompt(chat.messages)
    options = build_generation_options(chat, model, relay.config.enable_real_thinking)

    logger.info(
        "chat_completion_request",
        model=model,
        message_count=len(messages),
        stream=chat.wants_stream,
        include_reasoning=options.include_reasoning,
        thinking_budget=options.thinking_budget,
        tool_count=len(options.tools or []),
    )

    if chat.wants_stream:
        bridge = StreamBridge(
            relay.stream(model, system_prompt, messages, options),
            model=model,
        )
        return StreamingResponse(
            sse_events(bridge),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    result = await relay.complete(model, system_prompt, messages, options)
    return completion_response(result, model)

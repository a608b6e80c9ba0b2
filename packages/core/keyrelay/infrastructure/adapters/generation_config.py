"""Gemini generation config, safety settings and tool declarations."""

from __future__ import annotations

from typing import Any

import structlog

from keyrelay.domain.models.chat import ChatCompletionRequest
from keyrelay.domain.models.errors import ValidationError
from keyrelay.domain.models.generation import GenerationOptions
from keyrelay.domain.models.model_catalog import get_model_info

logger = structlog.get_logger(__name__)

DEFAULT_THINKING_BUDGET = -1
"""Dynamic thinking budget chosen by the model."""

EFFORT_LEVELS = ("none", "low", "medium", "high")

REASONING_EFFORT_BUDGETS: dict[str, dict[str, int]] = {
    "none": {"flash": 0, "default": 0},
    "low": {"flash": 1024, "default": 1024},
    "medium": {"flash": 12288, "default": 16384},
    "high": {"flash": 24576, "default": 32768},
}


def is_valid_effort(value: Any) -> bool:
    return isinstance(value, str) and value in EFFORT_LEVELS


def map_effort_to_budget(effort: str, model: str) -> int:
    """Thinking budget for a reasoning effort; flash models get smaller budgets."""
    budgets = REASONING_EFFORT_BUDGETS.get(effort)
    if budgets is None:
        return DEFAULT_THINKING_BUDGET
    return budgets["flash" if "flash" in model else "default"]


def validate_thinking_budget(model: str, budget: int) -> int:
    """Thinking models reject a budget of 0 and anything below -1; use -1 instead."""
    info = get_model_info(model)
    if info is not None and info.thinking and (budget == 0 or budget < -1):
        logger.debug("thinking_budget_corrected", model=model, requested=budget)
        return DEFAULT_THINKING_BUDGET
    return budget


def build_generation_options(
    request: ChatCompletionRequest,
    model: str,
    enable_real_thinking: bool,
) -> GenerationOptions:
    """Turn the recognized request fields into structured GenerationOptions.

    Reasoning is requested when real thinking is enabled or a reasoning effort
    is given; ``reasoning_effort="none"`` switches it off with a zero budget.

    Raises:
        ValidationError: If the reasoning effort is not a known level.
    """
    include_reasoning = enable_real_thinking
    thinking_budget = (
        request.thinking_budget
        if request.thinking_budget is not None
        else DEFAULT_THINKING_BUDGET
    )

    effort = request.effective_reasoning_effort()
    if effort is not None:
        if not is_valid_effort(effort):
            raise ValidationError(
                f"Invalid reasoning_effort '{effort}'. Expected one of: {', '.join(EFFORT_LEVELS)}"
            )
        thinking_budget = map_effort_to_budget(effort, model)
        include_reasoning = effort != "none"

    return GenerationOptions(
        include_reasoning=include_reasoning,
        thinking_budget=thinking_budget,
        tools=request.tools,
        tool_choice=request.tool_choice,
        max_tokens=request.max_tokens,
        temperature=request.temperature,
        top_p=request.top_p,
        stop=request.stop,
        presence_penalty=request.presence_penalty,
        frequency_penalty=request.frequency_penalty,
        seed=request.seed,
        response_format=request.response_format,
    )


def _strip_schema_keys(parameters: dict[str, Any] | None) -> dict[str, Any] | None:
    if parameters is None:
        return None
    return {k: v for k, v in parameters.items() if not k.startswith("$")}


class GenerationConfigBuilder:
    """Builds the Gemini-specific parts of a generateContent request body.

    Example:
        ```python
        builder = GenerationConfigBuilder(enable_real_thinking=True)
        config = builder.generation_config("gemini-2.5-pro", options)
        tools, tool_config = builder.tools(options)
        ```
    """

    def __init__(
        self,
        enable_real_thinking: bool = False,
        moderation_thresholds: dict[str, str] | None = None,
    ) -> None:
        self.enable_real_thinking = enable_real_thinking
        self.moderation_thresholds = dict(moderation_thresholds or {})

    def generation_config(self, model: str, options: GenerationOptions) -> dict[str, Any]:
        stop = [options.stop] if isinstance(options.stop, str) else options.stop
        config: dict[str, Any] = {
            "temperature": options.temperature,
            "maxOutputTokens": options.max_tokens,
            "topP": options.top_p,
            "stopSequences": stop,
            "presencePenalty": options.presence_penalty,
            "frequencyPenalty": options.frequency_penalty,
            "seed": options.seed,
        }

        if options.response_format and options.response_format.get("type") == "json_object":
            config["responseMimeType"] = "application/json"

        info = get_model_info(model)
        if info is not None and info.thinking:
            if self.enable_real_thinking and options.include_reasoning:
                config["thinkingConfig"] = {
                    "thinkingBudget": validate_thinking_budget(model, options.thinking_budget),
                    "includeThoughts": True,
                }
            else:
                # Thinking models cannot turn thinking off; only hide it.
                config["thinkingConfig"] = {
                    "thinkingBudget": validate_thinking_budget(model, DEFAULT_THINKING_BUDGET),
                    "includeThoughts": False,
                }

        return {k: v for k, v in config.items() if v is not None}

    def safety_settings(self) -> list[dict[str, str]]:
        return [
            {"category": category, "threshold": threshold}
            for category, threshold in self.moderation_thresholds.items()
        ]

    def tools(self, options: GenerationOptions) -> tuple[list[dict[str, Any]], dict[str, Any]]:
        """Function declarations and tool config for the request."""
        if not options.tools:
            return [], {}

        declarations = []
        for tool in options.tools:
            function = tool.get("function") or {}
            declaration = {
                "name": function.get("name"),
                "description": function.get("description"),
                "parameters": _strip_schema_keys(function.get("parameters")),
            }
            declarations.append({k: v for k, v in declaration.items() if v is not None})

        tool_config: dict[str, Any] = {}
        choice = options.tool_choice
        if choice == "auto":
            tool_config = {"functionCallingConfig": {"mode": "AUTO"}}
        elif choice == "none":
            tool_config = {"functionCallingConfig": {"mode": "NONE"}}
        elif isinstance(choice, dict) and choice.get("function"):
            tool_config = {
                "functionCallingConfig": {
                    "mode": "ANY",
                    "allowedFunctionNames": [choice["function"].get("name")],
                }
            }

        return [{"functionDeclarations": declarations}], tool_config

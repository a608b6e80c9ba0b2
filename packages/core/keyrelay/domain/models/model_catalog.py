"""Catalog of Gemini models exposed by the relay."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

DEFAULT_MODEL = "gemini-2.5-flash"

MODEL_TIERS: tuple[str, ...] = ("gemini-2.5-pro", "gemini-2.5-flash")
"""Fallback chain from preferred to degraded capability."""

MODEL_OWNER = "google-gemini-cli"


class ModelInfo(BaseModel):
    """Capabilities of a single model."""

    id: str
    max_tokens: int
    supports_images: bool = True
    thinking: bool = False

    model_config = ConfigDict(frozen=True)


GEMINI_MODELS: dict[str, ModelInfo] = {
    "gemini-2.5-pro": ModelInfo(
        id="gemini-2.5-pro",
        max_tokens=65536,
        supports_images=True,
        thinking=True,
    ),
    "gemini-2.5-flash": ModelInfo(
        id="gemini-2.5-flash",
        max_tokens=65536,
        supports_images=True,
        thinking=True,
    ),
    "gemini-2.5-flash-lite": ModelInfo(
        id="gemini-2.5-flash-lite",
        max_tokens=65536,
        supports_images=True,
        thinking=True,
    ),
    "gemini-2.0-flash": ModelInfo(
        id="gemini-2.0-flash",
        max_tokens=8192,
        supports_images=True,
        thinking=False,
    ),
}


def get_all_model_ids() -> list[str]:
    return list(GEMINI_MODELS)


def get_model_info(model_id: str) -> ModelInfo | None:
    return GEMINI_MODELS.get(model_id)

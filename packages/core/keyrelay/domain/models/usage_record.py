"""Usage records and their aggregations."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

NO_KEY = "<no-key>"
"""Grouping sentinel for usage recorded without a credential identity."""


class UsageRecord(BaseModel):
    """One successful call's token usage.

    Serialized with the persisted document's camelCase field names.
    """

    api_key: str | None = Field(default=None, alias="apiKey")
    model: str = Field(..., min_length=1)
    input_tokens: int = Field(default=0, alias="inputTokens", ge=0)
    output_tokens: int = Field(default=0, alias="outputTokens", ge=0)
    timestamp: int = Field(..., description="Epoch milliseconds")

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class KeyUsageSummary(BaseModel):
    """Aggregated usage for one credential."""

    key: str = Field(..., exclude=True, description="Raw credential, never serialized")
    masked_key: str = Field(alias="maskedKey")
    total_input_tokens: int = Field(default=0, alias="totalInputTokens")
    total_output_tokens: int = Field(default=0, alias="totalOutputTokens")
    calls: int = 0
    last_used: int | None = Field(default=None, alias="lastUsed")

    model_config = ConfigDict(populate_by_name=True)


class ModelUsageTotals(BaseModel):
    """Aggregated usage for one model."""

    input_tokens: int = Field(default=0, alias="inputTokens")
    output_tokens: int = Field(default=0, alias="outputTokens")
    calls: int = 0

    model_config = ConfigDict(populate_by_name=True)

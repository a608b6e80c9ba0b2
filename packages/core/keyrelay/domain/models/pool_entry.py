"""Structured OAuth credentials and credential-pool entries."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OAuthCredential(BaseModel):
    """OAuth-derived credential as stored in a ``GEMINI_API_KEY_*`` variable.

    Acquiring the token pair is out of scope; this model only carries it.
    """

    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    expiry_date: int | None = Field(
        default=None,
        description="Access token expiry in epoch milliseconds",
    )
    project_id: str | None = None
    token_type: str = "Bearer"

    model_config = ConfigDict(extra="ignore")

    def __repr__(self) -> str:
        """String representation that never exposes token material."""
        return f"OAuthCredential(project_id={self.project_id!r}, expiry_date={self.expiry_date})"


class PoolEntry(BaseModel):
    """One slot in a CredentialPool.

    ``error_count`` only ever grows; an entry is re-enabled by time, not by
    resetting errors.
    """

    client: Any
    error_count: int = Field(default=0, ge=0)
    invalidated_at: int | None = Field(
        default=None,
        description="Epoch milliseconds when the entry was invalidated",
    )

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def is_valid(self) -> bool:
        return self.invalidated_at is None


class PoolClientStatus(BaseModel):
    """Masked admin view of a pool entry."""

    index: int
    last8_chars_of_token: str = Field(alias="last8CharsOfToken")
    error_count: int = Field(alias="errorCount")
    is_valid: bool = Field(alias="isValid")
    invalidated_at: int | None = Field(default=None, alias="invalidatedAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

"""Cooldown records and the persisted/observable views over them."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class CooldownRecord(BaseModel):
    """Per-credential cooldown annotation.

    A credential with no record, or with ``exhausted_until <= now``, is
    available. Field aliases match the persisted document layout.
    """

    exhausted_until: int | None = Field(
        default=None,
        alias="exhaustedUntil",
        description="Epoch milliseconds when the credential becomes available again",
    )
    last_exhausted_model: str | None = Field(
        default=None,
        alias="lastExhaustedModel",
        description="Model the credential was exhausted for",
    )

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )

    def is_available(self, now_ms: int, model: str | None = None) -> bool:
        """Check availability at ``now_ms``.

        When ``model`` is given, a cooldown recorded against a different model
        does not block the credential.
        """
        if self.exhausted_until is None or self.exhausted_until <= now_ms:
            return True
        if model is not None and self.last_exhausted_model is not None:
            return self.last_exhausted_model != model
        return False


class CooldownDocument(BaseModel):
    """Whole-document persisted form of KeyStore state."""

    keys: list[str] = Field(default_factory=list)
    key_status: dict[str, CooldownRecord] = Field(
        default_factory=dict,
        alias="keyStatus",
    )
    saved_at: int | None = Field(default=None, alias="savedAt")

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class KeyStatusDetail(BaseModel):
    """Masked status of one credential."""

    key: str
    available: bool
    exhausted_until: int | None = Field(default=None, alias="exhaustedUntil")
    last_exhausted_model: str | None = Field(default=None, alias="lastExhaustedModel")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class KeyStoreSnapshot(BaseModel):
    """Read-only observability view of a KeyStore."""

    total: int
    available: int
    details: list[KeyStatusDetail] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

"""Configuration settings using pydantic-settings."""

import json
import os
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from keyrelay.domain.models.model_catalog import MODEL_TIERS
from keyrelay.domain.models.pool_entry import OAuthCredential

logger = structlog.get_logger(__name__)

CREDENTIAL_ENV_PREFIX = "GEMINI_API_KEY_"


def parse_key_list(value: str | None) -> list[str]:
    """Split a comma-separated key list, dropping blanks and duplicates."""
    if not value:
        return []
    return list(dict.fromkeys(k.strip() for k in value.split(",") if k.strip()))


def load_prefixed_credentials(
    environ: Mapping[str, str] | None = None,
    prefix: str = CREDENTIAL_ENV_PREFIX,
) -> list[OAuthCredential]:
    """Collect OAuth credentials stored as JSON in ``<prefix>*`` variables.

    Variables are read in name order. Values that are not valid credential
    JSON are skipped with a warning.
    """
    environ = os.environ if environ is None else environ
    credentials: list[OAuthCredential] = []
    for name in sorted(environ):
        if not name.startswith(prefix):
            continue
        try:
            credentials.append(OAuthCredential.model_validate_json(environ[name]))
        except ValidationError as e:
            logger.warning(
                "credential_env_skipped",
                variable=name,
                error_count=e.error_count(),
            )
    return credentials


class RelaySettings(BaseSettings):
    """Configuration settings for keyrelay.

    Settings are read from environment variables prefixed with ``KEYRELAY_``
    (e.g., ``KEYRELAY_KEY_COOLDOWN_SECONDS=600``). The deployment-facing
    names ``GEMINI_KEYS``, ``GEMINI_KEYS_FILE``, ``ENABLE_AUTO_MODEL_SWITCHING``,
    ``ENABLE_REAL_THINKING`` and ``GEMINI_MODERATION_*_THRESHOLD`` are accepted
    as well.

    Example:
        ```python
        # From environment variables
        settings = RelaySettings()

        # From keyword arguments
        settings = RelaySettings(keys="k1,k2", auto_model_fallback=False)
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="KEYRELAY_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Credentials
    keys: str | None = Field(
        default=None,
        validation_alias=AliasChoices("keys", "KEYRELAY_KEYS", "GEMINI_KEYS"),
        description="Comma-separated API keys",
    )
    keys_file: str | None = Field(
        default=None,
        validation_alias=AliasChoices("keys_file", "KEYRELAY_KEYS_FILE", "GEMINI_KEYS_FILE"),
        description="Path or URL of a key list (JSON array or one key per line)",
    )
    credential_env_prefix: str = Field(
        default=CREDENTIAL_ENV_PREFIX,
        description="Prefix of environment variables holding OAuth credential JSON",
    )

    # Rotation
    model_tiers: list[str] = Field(
        default_factory=lambda: list(MODEL_TIERS),
        description="Ordered model fallback chain",
    )
    key_cooldown_seconds: int = Field(
        default=3600,
        ge=0,
        description="Default cooldown for a rate-limited key",
    )
    per_key_cooldown_seconds: int | None = Field(
        default=None,
        ge=0,
        description="Cooldown override applied by the rotator",
    )
    auto_model_fallback: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "auto_model_fallback",
            "KEYRELAY_AUTO_MODEL_FALLBACK",
            "ENABLE_AUTO_MODEL_SWITCHING",
        ),
        description="Fall through to the next model tier when a tier is exhausted",
    )

    # Credential pool
    pool_error_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive errors before a pooled client is invalidated",
    )
    pool_cooldown_seconds: int = Field(
        default=3600,
        ge=0,
        description="Time after which an invalidated pooled client is re-enabled",
    )

    # Generation
    enable_real_thinking: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "enable_real_thinking", "KEYRELAY_ENABLE_REAL_THINKING", "ENABLE_REAL_THINKING"
        ),
        description="Request and expose model reasoning",
    )
    moderation_harassment_threshold: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "moderation_harassment_threshold", "GEMINI_MODERATION_HARASSMENT_THRESHOLD"
        ),
    )
    moderation_hate_speech_threshold: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "moderation_hate_speech_threshold", "GEMINI_MODERATION_HATE_SPEECH_THRESHOLD"
        ),
    )
    moderation_sexually_explicit_threshold: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "moderation_sexually_explicit_threshold",
            "GEMINI_MODERATION_SEXUALLY_EXPLICIT_THRESHOLD",
        ),
    )
    moderation_dangerous_content_threshold: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "moderation_dangerous_content_threshold",
            "GEMINI_MODERATION_DANGEROUS_CONTENT_THRESHOLD",
        ),
    )

    # Persistence
    state_store_url: str = Field(
        default="memory://",
        description="memory://, redis://host:port/db or a directory path",
    )
    state_namespace: str = Field(
        default="gemini_key_rotator",
        description="Prefix of the persisted document names",
    )
    usage_retention_days: int = Field(default=30, ge=1)

    # Backend
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
    )
    request_timeout: float = Field(default=120.0, gt=0)
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None

    # Proxy
    admin_api_key: str | None = None

    # Observability
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_json: bool = True

    @field_validator("model_tiers", mode="before")
    @classmethod
    def split_model_tiers(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a JSON list."""
        if isinstance(v, str):
            stripped = v.strip()
            if stripped.startswith("["):
                return json.loads(stripped)
            return [m.strip() for m in stripped.split(",") if m.strip()]
        return v

    @field_validator("model_tiers")
    @classmethod
    def validate_model_tiers(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("model_tiers must contain at least one model")
        return v

    @property
    def key_list(self) -> list[str]:
        return parse_key_list(self.keys)

    @property
    def cooldown_document(self) -> str:
        return f"{self.state_namespace}:cooldown_data_v1"

    @property
    def usage_document(self) -> str:
        return f"{self.state_namespace}:usage_data_v1"

    @property
    def moderation_thresholds(self) -> dict[str, str]:
        """Configured safety thresholds keyed by Gemini harm category."""
        thresholds = {
            "HARM_CATEGORY_HARASSMENT": self.moderation_harassment_threshold,
            "HARM_CATEGORY_HATE_SPEECH": self.moderation_hate_speech_threshold,
            "HARM_CATEGORY_SEXUALLY_EXPLICIT": self.moderation_sexually_explicit_threshold,
            "HARM_CATEGORY_DANGEROUS_CONTENT": self.moderation_dangerous_content_threshold,
        }
        return {category: value for category, value in thresholds.items() if value}

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "RelaySettings":
        """Create settings from a dictionary."""
        return cls(**config)

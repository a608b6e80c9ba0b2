"""Domain models for keyrelay."""

from keyrelay.domain.models.chat import ChatCompletionRequest, ChatMessage, EffortLevel
from keyrelay.domain.models.errors import (
    ErrorCategory,
    FatalUpstreamError,
    ModelNotFoundError,
    NoAvailableKeysError,
    NoKeysFoundError,
    PoolExhaustedError,
    RecoverableUpstreamError,
    RelayError,
    SourceUnavailableError,
    UnsupportedInputError,
    UpstreamError,
    ValidationError,
)
from keyrelay.domain.models.generation import GenerationOptions, ProviderResult, TokenUsage
from keyrelay.domain.models.key_status import (
    CooldownDocument,
    CooldownRecord,
    KeyStatusDetail,
    KeyStoreSnapshot,
)
from keyrelay.domain.models.model_catalog import (
    DEFAULT_MODEL,
    GEMINI_MODELS,
    MODEL_TIERS,
    ModelInfo,
)
from keyrelay.domain.models.pool_entry import OAuthCredential, PoolClientStatus, PoolEntry
from keyrelay.domain.models.stream_events import (
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ToolCallDelta,
    UsageEvent,
)
from keyrelay.domain.models.usage_record import (
    NO_KEY,
    KeyUsageSummary,
    ModelUsageTotals,
    UsageRecord,
)

__all__ = [
    "ChatCompletionRequest",
    "ChatMessage",
    "EffortLevel",
    "ErrorCategory",
    "RelayError",
    "ValidationError",
    "ModelNotFoundError",
    "UnsupportedInputError",
    "UpstreamError",
    "RecoverableUpstreamError",
    "FatalUpstreamError",
    "NoAvailableKeysError",
    "NoKeysFoundError",
    "SourceUnavailableError",
    "PoolExhaustedError",
    "GenerationOptions",
    "ProviderResult",
    "TokenUsage",
    "CooldownDocument",
    "CooldownRecord",
    "KeyStatusDetail",
    "KeyStoreSnapshot",
    "DEFAULT_MODEL",
    "GEMINI_MODELS",
    "MODEL_TIERS",
    "ModelInfo",
    "OAuthCredential",
    "PoolClientStatus",
    "PoolEntry",
    "StreamEvent",
    "TextDelta",
    "ThinkingDelta",
    "ToolCallDelta",
    "UsageEvent",
    "NO_KEY",
    "KeyUsageSummary",
    "ModelUsageTotals",
    "UsageRecord",
]

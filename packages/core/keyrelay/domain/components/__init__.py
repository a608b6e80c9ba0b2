"""Domain components for keyrelay."""

from keyrelay.domain.components.credential_pool import CredentialPool
from keyrelay.domain.components.key_store import KeyStore, prune_expired_cooldowns
from keyrelay.domain.components.rotator import FailureKind, Rotator, classify_error
from keyrelay.domain.components.stream_bridge import ChunkChannel, StreamBridge
from keyrelay.domain.components.usage_recorder import UsageRecorder

__all__ = [
    "ChunkChannel",
    "CredentialPool",
    "FailureKind",
    "KeyStore",
    "Rotator",
    "StreamBridge",
    "UsageRecorder",
    "classify_error",
    "prune_expired_cooldowns",
]

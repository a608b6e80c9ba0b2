"""Domain interfaces for dependency injection."""

from keyrelay.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)
from keyrelay.domain.interfaces.provider_adapter import (
    ProviderAdapter,
    ProviderCall,
    ProviderStream,
)
from keyrelay.domain.interfaces.state_store import StateStore, StateStoreError

__all__ = [
    "ObservabilityError",
    "ObservabilityManager",
    "ProviderAdapter",
    "ProviderCall",
    "ProviderStream",
    "StateStore",
    "StateStoreError",
]

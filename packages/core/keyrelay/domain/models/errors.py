"""Error taxonomy for relay operations."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Categories of relay errors."""

    ValidationError = "validation_error"
    """Malformed or missing request fields (400)."""

    ModelNotFoundError = "model_not_found_error"
    """Requested model is not in the catalog (400)."""

    UnsupportedInputError = "unsupported_input_error"
    """Input the model cannot accept, e.g. images on a text-only model (400)."""

    RateLimitError = "rate_limit_error"
    """Rate limit or quota exhausted (429/403). Absorbed by rotation."""

    UpstreamTimeoutError = "upstream_timeout_error"
    """Upstream gateway timeout (524). Absorbed by rotation."""

    ProviderError = "provider_error"
    """Any other backend failure."""

    CapacityExhaustedError = "capacity_exhausted_error"
    """Every credential and model tier has been tried."""

    PersistenceError = "persistence_error"
    """Durable store read/write failure. Never surfaced to callers."""


class RelayError(Exception):
    """Base class for errors that map onto an externally-visible status."""

    category: ErrorCategory = ErrorCategory.ProviderError
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(category={self.category.value}, message={self.message!r})"

    def __str__(self) -> str:
        return self.message


class ValidationError(RelayError):
    """Raised when a chat request is malformed."""

    category = ErrorCategory.ValidationError
    status_code = 400


class ModelNotFoundError(RelayError):
    """Raised when the requested model is unknown."""

    category = ErrorCategory.ModelNotFoundError
    status_code = 400

    def __init__(self, model: str, available: list[str]) -> None:
        self.model = model
        self.available = list(available)
        super().__init__(
            f"Model '{model}' not found. Available models: {', '.join(self.available)}",
            details={"model": model, "available": self.available},
        )


class UnsupportedInputError(RelayError):
    """Raised when the request contains input the model cannot handle."""

    category = ErrorCategory.UnsupportedInputError
    status_code = 400


class UpstreamError(RelayError):
    """Raised by provider adapters for any backend failure.

    Carries the upstream HTTP status (when there was one) so the Rotator can
    decide whether to rotate or propagate.
    """

    category = ErrorCategory.ProviderError
    status_code = 500

    def __init__(
        self,
        message: str,
        status: int | None = None,
        details: dict[str, Any] | None = None,
        retry_after: int | None = None,
    ) -> None:
        self.status = status
        self.retry_after = retry_after
        super().__init__(message, details=details)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, message={self.message!r})"


class RecoverableUpstreamError(UpstreamError):
    """Rate limit, quota or upstream timeout. Triggers rotation."""

    category = ErrorCategory.RateLimitError


class FatalUpstreamError(UpstreamError):
    """Backend failure that rotation cannot fix."""

    category = ErrorCategory.ProviderError
    status_code = 500


class NoAvailableKeysError(RelayError):
    """Raised when every credential in every searched tier has failed."""

    category = ErrorCategory.CapacityExhaustedError
    status_code = 500


class PoolExhaustedError(RelayError):
    """Raised when no pool entry is acceptable within one full sweep."""

    category = ErrorCategory.CapacityExhaustedError
    status_code = 500


class NoKeysFoundError(RelayError):
    """Raised when a key source parses to an empty credential list."""

    category = ErrorCategory.ValidationError
    status_code = 500


class SourceUnavailableError(RelayError):
    """Raised when a key source cannot be fetched or read."""

    category = ErrorCategory.PersistenceError
    status_code = 500

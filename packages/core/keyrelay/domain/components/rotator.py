"""Rotator component: credential and model-tier selection with retry."""

import asyncio
import random
import re
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from enum import Enum
from typing import NoReturn

from keyrelay.domain.components.key_store import KeyStore
from keyrelay.domain.interfaces.observability_manager import ObservabilityManager
from keyrelay.domain.interfaces.provider_adapter import ProviderCall, ProviderStream
from keyrelay.domain.models.chat import ChatMessage
from keyrelay.domain.models.errors import (
    FatalUpstreamError,
    NoAvailableKeysError,
    RecoverableUpstreamError,
    UpstreamError,
)
from keyrelay.domain.models.generation import GenerationOptions, ProviderResult
from keyrelay.domain.models.model_catalog import MODEL_TIERS
from keyrelay.domain.models.stream_events import StreamEvent, UsageEvent

RATE_LIMIT_STATUSES = frozenset({429, 403})
UPSTREAM_TIMEOUT_STATUS = 524

_RATE_LIMIT_PATTERN = re.compile(r"rate limit|quota|exhaust", re.IGNORECASE)


class FailureKind(str, Enum):
    """How the Rotator reacts to a provider failure."""

    Fatal = "fatal"
    RateLimit = "rate_limit"
    UpstreamTimeout = "upstream_timeout"


def error_status(error: BaseException) -> int | None:
    """Extract an HTTP status from an exception, if it carries one."""
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    value = getattr(error, "code", None)
    if isinstance(value, int):
        return value
    return None


def classify_error(error: BaseException) -> FailureKind:
    """Classify a provider failure as fatal or recoverable by rotation.

    429/403 and messages mentioning rate limits, quota or exhaustion are rate
    limits; 524 is an upstream timeout. Everything else is fatal.
    """
    status = error_status(error)
    if status in RATE_LIMIT_STATUSES:
        return FailureKind.RateLimit
    if status == UPSTREAM_TIMEOUT_STATUS:
        return FailureKind.UpstreamTimeout

    message = str(error)
    if _RATE_LIMIT_PATTERN.search(message):
        return FailureKind.RateLimit
    if "524" in message:
        return FailureKind.UpstreamTimeout
    if isinstance(error, RecoverableUpstreamError):
        return FailureKind.RateLimit
    return FailureKind.Fatal


class Rotator:
    """Picks a (credential, model tier) pair per attempt and retries on rotation-recoverable failures.

    The search starts at the tier matching the requested model (tier 0 when
    unmatched) and only moves forward. Within a tier, each credential that
    was available when the tier was entered is tried at most once, in the
    random order KeyStore yields them.

    The Rotator never performs network I/O; provider calls are injected per
    request.
    """

    def __init__(
        self,
        key_store: KeyStore,
        observability_manager: ObservabilityManager,
        model_tiers: Sequence[str] = MODEL_TIERS,
        auto_model_fallback: bool = True,
        per_key_cooldown_seconds: int | None = None,
        usage_recorder=None,
        rate_limit_backoff: float = 0.1,
        timeout_backoff: tuple[float, float] = (0.1, 0.3),
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize Rotator.

        Args:
            key_store: KeyStore supplying credentials and cooldowns.
            observability_manager: ObservabilityManager for events and logging.
            model_tiers: Ordered fallback chain from preferred to degraded model.
            auto_model_fallback: If False, only the starting tier is searched.
            per_key_cooldown_seconds: Cooldown override for marked credentials.
            usage_recorder: Optional UsageRecorder fed after successful calls.
            rate_limit_backoff: Delay in seconds after a rate-limit failure.
            timeout_backoff: Jitter range in seconds after an upstream timeout.
            rng: Source of randomness for jitter.
            sleep: Awaitable sleep function (tests inject a no-op).
        """
        self._key_store = key_store
        self._observability = observability_manager
        self._model_tiers = list(model_tiers)
        self._auto_model_fallback = auto_model_fallback
        self._per_key_cooldown_seconds = per_key_cooldown_seconds
        self._usage_recorder = usage_recorder
        self._rate_limit_backoff = rate_limit_backoff
        self._timeout_backoff = timeout_backoff
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

    @property
    def model_tiers(self) -> list[str]:
        return list(self._model_tiers)

    def tier_plan(self, model: str | None) -> list[str]:
        """Models to search, in order, for a requested model."""
        if model in self._model_tiers:
            start = self._model_tiers.index(model)
        elif not self._auto_model_fallback and model:
            return [model]
        else:
            start = 0

        if not self._auto_model_fallback:
            return [self._model_tiers[start]]
        return self._model_tiers[start:]

    def _pick(self, model: str, snapshot: list[str], tried: set[str]) -> str | None:
        outside = set(self._key_store.keys) - set(snapshot)
        return self._key_store.next_available(model, exclude=tried | outside)

    async def generate_content(
        self,
        model: str | None,
        system_prompt: str,
        messages: list[ChatMessage],
        provider_call: ProviderCall,
        options: GenerationOptions,
    ) -> ProviderResult:
        """Run a non-streaming call with rotation.

        Returns:
            The provider result annotated with the serving model and credential.

        Raises:
            FatalUpstreamError: On the first non-recoverable provider failure.
            NoAvailableKeysError: When every credential in every tier failed.
        """
        plan = self.tier_plan(model)
        attempts = 0

        for position, tier_model in enumerate(plan):
            snapshot = self._key_store.available_keys(tier_model)
            if position > 0:
                await self._emit_fallback(plan[position - 1], tier_model, len(snapshot))
            if not snapshot:
                continue

            tried: set[str] = set()
            while (key := self._pick(tier_model, snapshot, tried)) is not None:
                tried.add(key)
                attempts += 1
                try:
                    result = await provider_call(key, tier_model, system_prompt, messages, options)
                except Exception as error:
                    kind = classify_error(error)
                    if kind is FailureKind.Fatal:
                        self._raise_fatal(error)
                    await self._recover(key, tier_model, kind, error)
                    continue

                result = result.model_copy(update={"model": tier_model, "credential": key})
                if result.usage is not None:
                    await self._record_usage(
                        key, tier_model, result.usage.input_tokens, result.usage.output_tokens
                    )
                return result

        raise await self._exhausted(plan, attempts)

    async def stream_content(
        self,
        model: str | None,
        system_prompt: str,
        messages: list[ChatMessage],
        provider_stream: ProviderStream,
        options: GenerationOptions,
    ) -> AsyncIterator[StreamEvent]:
        """Run a streaming call with rotation, yielding backend events.

        An attempt is committed once its first event has been yielded; a
        failure after that point is re-raised without trying another
        credential.

        Raises:
            FatalUpstreamError: On a non-recoverable failure before first event.
            NoAvailableKeysError: When every credential in every tier failed.
        """
        plan = self.tier_plan(model)
        attempts = 0

        for position, tier_model in enumerate(plan):
            snapshot = self._key_store.available_keys(tier_model)
            if position > 0:
                await self._emit_fallback(plan[position - 1], tier_model, len(snapshot))
            if not snapshot:
                continue

            tried: set[str] = set()
            while (key := self._pick(tier_model, snapshot, tried)) is not None:
                tried.add(key)
                attempts += 1
                committed = False
                usage: UsageEvent | None = None
                try:
                    async for event in provider_stream(
                        key, tier_model, system_prompt, messages, options
                    ):
                        if isinstance(event, UsageEvent):
                            usage = event
                        committed = True
                        yield event
                except Exception as error:
                    kind = classify_error(error)
                    if committed:
                        if kind is not FailureKind.Fatal:
                            await self._mark(key, tier_model, kind, error)
                        raise
                    if kind is FailureKind.Fatal:
                        self._raise_fatal(error)
                    await self._recover(key, tier_model, kind, error)
                    continue

                if usage is not None:
                    await self._record_usage(key, tier_model, usage.input_tokens, usage.output_tokens)
                return

        raise await self._exhausted(plan, attempts)

    def _raise_fatal(self, error: Exception) -> NoReturn:
        if isinstance(error, FatalUpstreamError) or not isinstance(error, UpstreamError):
            raise error
        raise FatalUpstreamError(
            error.message,
            status=error.status,
            details=error.details,
            retry_after=error.retry_after,
        ) from error

    async def _mark(self, key: str, model: str, kind: FailureKind, error: Exception) -> None:
        await self._observability.log(
            level="WARNING",
            message="Credential failed recoverably, marking exhausted",
            context={
                "key": key,
                "model": model,
                "failure": kind.value,
                "status": error_status(error),
                "error": str(error),
            },
        )
        await self._key_store.mark_exhausted(key, model, self._per_key_cooldown_seconds)

    async def _recover(self, key: str, model: str, kind: FailureKind, error: Exception) -> None:
        await self._mark(key, model, kind, error)
        if kind is FailureKind.UpstreamTimeout:
            low, high = self._timeout_backoff
            await self._sleep(self._rng.uniform(low, high))
        else:
            await self._sleep(self._rate_limit_backoff)

    async def _emit_fallback(self, from_model: str, to_model: str, available: int) -> None:
        await self._observability.emit_event(
            event_type="tier_fallback",
            payload={"from_model": from_model, "to_model": to_model, "available": available},
        )

    async def _exhausted(self, plan: list[str], attempts: int) -> NoAvailableKeysError:
        await self._observability.emit_event(
            event_type="rotation_exhausted",
            payload={"models": plan, "attempts": attempts},
        )
        return NoAvailableKeysError(
            f"All API keys exhausted for models: {', '.join(plan)}",
            details={"models": plan, "attempts": attempts},
        )

    async def _record_usage(
        self, key: str, model: str, input_tokens: int, output_tokens: int
    ) -> None:
        if self._usage_recorder is None:
            return
        await self._usage_recorder.record(
            api_key=key,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

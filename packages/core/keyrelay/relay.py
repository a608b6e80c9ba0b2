"""KeyRelay - wires rotation, persistence and the Gemini adapter together."""

import os
import random
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Any

import httpx

from keyrelay.domain.components.credential_pool import CredentialPool
from keyrelay.domain.components.key_store import KeyStore
from keyrelay.domain.components.rotator import Rotator
from keyrelay.domain.components.usage_recorder import UsageRecorder
from keyrelay.domain.interfaces.observability_manager import ObservabilityManager
from keyrelay.domain.interfaces.provider_adapter import ProviderAdapter
from keyrelay.domain.interfaces.state_store import StateStore
from keyrelay.domain.models.chat import ChatMessage
from keyrelay.domain.models.errors import PoolExhaustedError
from keyrelay.domain.models.generation import GenerationOptions, ProviderResult
from keyrelay.domain.models.pool_entry import PoolClientStatus
from keyrelay.domain.models.stream_events import StreamEvent, UsageEvent
from keyrelay.infrastructure.adapters.gemini_adapter import GeminiAdapter
from keyrelay.infrastructure.adapters.generation_config import GenerationConfigBuilder
from keyrelay.infrastructure.adapters.oauth_pool_client import OAuthPoolClient, PooledCaller
from keyrelay.infrastructure.config.settings import RelaySettings, load_prefixed_credentials
from keyrelay.infrastructure.observability.logger import DefaultObservabilityManager
from keyrelay.infrastructure.state_store import create_state_store


class KeyRelay:
    """Main entry point for the relay.

    Owns one KeyStore, UsageRecorder and Rotator per process. Raw keys
    (``GEMINI_KEYS`` / ``GEMINI_KEYS_FILE``) are served through the Rotator;
    without them, calls go through a CredentialPool of OAuth credentials
    read from ``GEMINI_API_KEY_*`` variables, built on first use.

    Example:
        ```python
        relay = KeyRelay(config={"keys": "k1,k2,k3"})
        await relay.initialize()
        result = await relay.complete("gemini-2.5-pro", "", messages, GenerationOptions())
        await relay.close()
        ```
    """

    def __init__(
        self,
        config: RelaySettings | dict[str, Any] | None = None,
        state_store: StateStore | None = None,
        observability_manager: ObservabilityManager | None = None,
        adapter: ProviderAdapter | None = None,
        environ: Mapping[str, str] | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize KeyRelay with dependencies.

        Args:
            config: RelaySettings, a dict of settings, or None to read the environment.
            state_store: Optional StateStore. Defaults to one built from
                ``state_store_url``.
            observability_manager: Optional ObservabilityManager. Defaults to
                DefaultObservabilityManager.
            adapter: Optional provider adapter. Defaults to GeminiAdapter.
            environ: Mapping scanned for prefixed OAuth credentials.
            rng: Source of randomness for key selection and jitter.
            clock: Returns the current time in seconds since the epoch.
            sleep: Awaitable sleep used for rotation backoff.
            http_client: Client used for key sources and token refresh.

        Raises:
            ValueError: If configuration is invalid.
        """
        if config is None:
            self._config = RelaySettings()
        elif isinstance(config, dict):
            self._config = RelaySettings.from_dict(config)
        elif isinstance(config, RelaySettings):
            self._config = config
        else:
            raise ValueError(
                f"Invalid config type: {type(config)}. Expected RelaySettings, dict, or None"
            )

        self._state_store = state_store or create_state_store(self._config.state_store_url)
        self._observability_manager = observability_manager or DefaultObservabilityManager(
            log_level=self._config.log_level,
            json_format=self._config.log_json,
        )
        self._adapter = adapter or GeminiAdapter(
            base_url=self._config.gemini_base_url,
            timeout=self._config.request_timeout,
            config_builder=GenerationConfigBuilder(
                enable_real_thinking=self._config.enable_real_thinking,
                moderation_thresholds=self._config.moderation_thresholds,
            ),
        )
        self._environ = os.environ if environ is None else environ
        self._clock = clock
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=self._config.request_timeout)
        rng = rng or random.Random()

        self._key_store = KeyStore(
            state_store=self._state_store,
            observability_manager=self._observability_manager,
            default_cooldown_seconds=self._config.key_cooldown_seconds,
            document_name=self._config.cooldown_document,
            rng=rng,
            clock=clock,
        )
        self._usage_recorder = UsageRecorder(
            state_store=self._state_store,
            observability_manager=self._observability_manager,
            retention_days=self._config.usage_retention_days,
            document_name=self._config.usage_document,
            clock=clock,
        )
        self._rotator = Rotator(
            key_store=self._key_store,
            observability_manager=self._observability_manager,
            model_tiers=self._config.model_tiers,
            auto_model_fallback=self._config.auto_model_fallback,
            per_key_cooldown_seconds=self._config.per_key_cooldown_seconds,
            usage_recorder=self._usage_recorder,
            rng=rng,
            sleep=sleep,
        )
        self._pooled_caller: PooledCaller | None = None
        self._initialized = False

    @property
    def config(self) -> RelaySettings:
        return self._config

    @property
    def key_store(self) -> KeyStore:
        return self._key_store

    @property
    def rotator(self) -> Rotator:
        return self._rotator

    @property
    def usage_recorder(self) -> UsageRecorder:
        return self._usage_recorder

    @property
    def state_store(self) -> StateStore:
        return self._state_store

    @property
    def observability_manager(self) -> ObservabilityManager:
        return self._observability_manager

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def uses_rotation(self) -> bool:
        """True when raw keys are configured and the Rotator serves calls."""
        return self._key_store.total_count() > 0

    async def initialize(self) -> None:
        """Configure keys and restore persisted state.

        Configured keys come first, then the keys file, then the persisted
        key set is merged in.

        Raises:
            SourceUnavailableError: If the keys file cannot be read.
            NoKeysFoundError: If the keys file is empty.
        """
        if self._initialized:
            return

        configured = self._config.key_list
        if configured:
            self._key_store.configure(configured, persist=False)
        if self._config.keys_file:
            await self._key_store.load_from_source(
                self._config.keys_file, client=self._http_client, persist=False
            )
            if configured:
                self._key_store.configure(configured + self._key_store.keys, persist=False)

        await self._key_store.load_state()
        await self._usage_recorder.load()
        self._initialized = True

        await self._observability_manager.emit_event(
            event_type="keys_configured",
            payload={
                "total": self._key_store.total_count(),
                "available": self._key_store.available_count(),
                "model_tiers": self._rotator.model_tiers,
                "auto_model_fallback": self._config.auto_model_fallback,
            },
        )

    def pooled_caller(self) -> PooledCaller:
        """Build the credential pool on first use.

        Raises:
            PoolExhaustedError: If no prefixed credentials are configured.
        """
        if self._pooled_caller is not None:
            return self._pooled_caller

        prefix = self._config.credential_env_prefix
        credentials = load_prefixed_credentials(self._environ, prefix=prefix)
        if not credentials:
            raise PoolExhaustedError(
                f"No environment variables with prefix `{prefix}` found. "
                "Configure GEMINI_KEYS, GEMINI_KEYS_FILE or OAuth credentials."
            )

        clients = [
            OAuthPoolClient(
                credential=credential,
                http_client=self._http_client,
                client_id=self._config.oauth_client_id,
                client_secret=self._config.oauth_client_secret,
                clock=self._clock,
            )
            for credential in credentials
        ]
        pool = CredentialPool(
            clients,
            cooldown_seconds=self._config.pool_cooldown_seconds,
            clock=self._clock,
        )
        self._pooled_caller = PooledCaller(
            pool,
            self._adapter,
            error_threshold=self._config.pool_error_threshold,
        )
        return self._pooled_caller

    async def complete(
        self,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> ProviderResult:
        """Non-streaming completion through the Rotator or the pool."""
        if self.uses_rotation:
            return await self._rotator.generate_content(
                model, system_prompt, messages, self._adapter.generate_content, options
            )

        result = await self.pooled_caller().generate_content(
            model, system_prompt, messages, options
        )
        if result.usage is not None:
            await self._usage_recorder.record(
                model=model,
                input_tokens=result.usage.input_tokens,
                output_tokens=result.usage.output_tokens,
            )
        return result

    def stream(
        self,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> AsyncIterator[StreamEvent]:
        """Streaming completion through the Rotator or the pool.

        Raises:
            PoolExhaustedError: Immediately, if the pool has no credentials.
        """
        if self.uses_rotation:
            return self._rotator.stream_content(
                model, system_prompt, messages, self._adapter.stream_content, options
            )
        return self._pooled_stream(self.pooled_caller(), model, system_prompt, messages, options)

    async def _pooled_stream(
        self,
        caller: PooledCaller,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> AsyncIterator[StreamEvent]:
        usage: UsageEvent | None = None
        async for event in caller.stream_content(
            model, system_prompt, messages, options
        ):
            if isinstance(event, UsageEvent):
                usage = event
            yield event
        if usage is not None:
            await self._usage_recorder.record(
                model=model,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
            )

    def key_status(self) -> dict[str, Any]:
        snapshot = self._key_store.snapshot()
        return {
            "mode": "rotation" if self.uses_rotation else "pool",
            "modelTiers": self._rotator.model_tiers,
            "autoModelFallback": self._config.auto_model_fallback,
            **snapshot.model_dump(by_alias=True),
        }

    def pool_statuses(self) -> list[PoolClientStatus]:
        """Pool client statuses; builds the pool on first call."""
        return self.pooled_caller().pool.statuses()

    def usage_status(self) -> dict[str, Any]:
        return self._usage_recorder.snapshot()

    async def flush(self) -> None:
        """Wait for pending persistence writes."""
        await self._key_store.flush()
        await self._usage_recorder.flush()

    async def close(self) -> None:
        """Flush pending writes and release connections."""
        await self.flush()
        await self._state_store.close()
        await self._adapter.aclose()
        if self._owns_http_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> "KeyRelay":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

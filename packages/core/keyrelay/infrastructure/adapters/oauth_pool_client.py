"""OAuth-credential clients for the CredentialPool and the caller driving them."""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Callable

import httpx
import structlog

from keyrelay.domain.components.credential_pool import CredentialPool
from keyrelay.domain.interfaces.provider_adapter import ProviderAdapter
from keyrelay.domain.models.chat import ChatMessage
from keyrelay.domain.models.errors import UpstreamError
from keyrelay.domain.models.generation import GenerationOptions, ProviderResult
from keyrelay.domain.models.pool_entry import OAuthCredential
from keyrelay.domain.models.stream_events import StreamEvent
from keyrelay.infrastructure.observability.logger import sanitize_for_logging

logger = structlog.get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

REFRESH_MARGIN_MS = 60_000
"""Refresh access tokens this long before they expire."""


class OAuthPoolClient:
    """Holds one OAuth credential and refreshes its access token when due."""

    def __init__(
        self,
        credential: OAuthCredential,
        http_client: httpx.AsyncClient,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.credential = credential
        self._http_client = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._clock = clock or time.time

    @property
    def access_token(self) -> str:
        return self.credential.access_token

    def needs_refresh(self) -> bool:
        expiry = self.credential.expiry_date
        if expiry is None:
            return False
        return expiry - int(self._clock() * 1000) <= REFRESH_MARGIN_MS

    def can_refresh(self) -> bool:
        return bool(self.credential.refresh_token and self._client_id and self._client_secret)

    async def ensure_token(self) -> OAuthCredential:
        """Return the credential, refreshing the access token first if it is about to expire.

        Raises:
            UpstreamError: If the token endpoint rejects the refresh.
        """
        if not self.needs_refresh() or not self.can_refresh():
            return self.credential

        try:
            response = await self._http_client.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": self.credential.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"Token refresh failed: {e.response.text}",
                status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Token refresh failed: {e}") from e

        expires_in = int(payload.get("expires_in", 3600))
        self.credential = self.credential.model_copy(
            update={
                "access_token": payload["access_token"],
                "expiry_date": int(self._clock() * 1000) + expires_in * 1000,
            }
        )
        logger.info("access_token_refreshed", project_id=self.credential.project_id)
        return self.credential


class PooledCaller:
    """Calls a provider through the next CredentialPool client.

    Counts consecutive failures per pool index and fires the pool's
    invalidation callback once ``error_threshold`` is reached. A success
    resets the consecutive count; the pool's own error count keeps growing.
    """

    def __init__(
        self,
        pool: CredentialPool,
        adapter: ProviderAdapter,
        error_threshold: int = 3,
    ) -> None:
        self._pool = pool
        self._adapter = adapter
        self._error_threshold = error_threshold
        self._consecutive_errors: dict[int, int] = {}

    @property
    def pool(self) -> CredentialPool:
        return self._pool

    def _on_error(self, index: int, error: Exception) -> None:
        self._pool.record_error(index)
        count = self._consecutive_errors.get(index, 0) + 1
        self._consecutive_errors[index] = count
        logger.warning(
            "pooled_call_failed",
            index=index,
            consecutive_errors=count,
            error=sanitize_for_logging(str(error)),
        )
        if count >= self._error_threshold:
            self._pool.invalidation_callback(index)()

    def _on_success(self, index: int) -> None:
        self._consecutive_errors[index] = 0

    async def generate_content(
        self,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> ProviderResult:
        """Run a non-streaming call with the next pooled client.

        Raises:
            PoolExhaustedError: If every client is invalidated.
            UpstreamError: If the call fails.
        """
        index, client = self._pool.next()
        try:
            credential = await client.ensure_token()
            result = await self._adapter.generate_content(
                credential, model, system_prompt, messages, options
            )
        except UpstreamError as e:
            self._on_error(index, e)
            raise
        self._on_success(index)
        return result.model_copy(update={"model": model})

    async def stream_content(
        self,
        model: str,
        system_prompt: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
    ) -> AsyncIterator[StreamEvent]:
        """Stream with the next pooled client."""
        index, client = self._pool.next()
        try:
            credential = await client.ensure_token()
            async for event in self._adapter.stream_content(
                credential, model, system_prompt, messages, options
            ):
                yield event
        except UpstreamError as e:
            self._on_error(index, e)
            raise
        self._on_success(index)

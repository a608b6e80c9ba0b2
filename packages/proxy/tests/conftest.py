"""Shared fixtures for proxy tests."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from keyrelay.domain.interfaces.observability_manager import ObservabilityManager
from keyrelay.domain.interfaces.provider_adapter import ProviderAdapter
from keyrelay.domain.models.generation import ProviderResult, TokenUsage
from keyrelay.domain.models.stream_events import TextDelta, ThinkingDelta, UsageEvent
from keyrelay.infrastructure.state_store.memory_store import InMemoryStateStore
from keyrelay.relay import KeyRelay
from keyrelay_proxy.main import create_app

TEST_KEYS = "AIzaSyTestKeyNumberOne000001,AIzaSyTestKeyNumberTwo000002"


class SilentObservabilityManager(ObservabilityManager):
    async def emit_event(self, event_type, payload, metadata=None) -> None:
        return None

    async def log(self, level, message, context=None) -> None:
        return None


class StubGeminiAdapter(ProviderAdapter):
    """Adapter double. ``failure`` is raised on every call when set."""

    def __init__(self) -> None:
        self.failure: Exception | None = None
        self.calls: list[dict] = []

    async def generate_content(self, credential, model, system_prompt, messages, options):
        self.calls.append(
            {"model": model, "system_prompt": system_prompt, "messages": messages, "options": options}
        )
        if self.failure is not None:
            raise self.failure
        return ProviderResult(
            content="Hello from Gemini",
            usage=TokenUsage(input_tokens=9, output_tokens=3),
        )

    async def stream_content(self, credential, model, system_prompt, messages, options):
        self.calls.append(
            {"model": model, "system_prompt": system_prompt, "messages": messages, "options": options}
        )
        if self.failure is not None:
            raise self.failure
        yield ThinkingDelta(text="considering")
        yield TextDelta(text="Hello")
        yield TextDelta(text=" world")
        yield UsageEvent(input_tokens=5, output_tokens=2)


@pytest.fixture
def adapter() -> StubGeminiAdapter:
    return StubGeminiAdapter()


@pytest.fixture
def relay_config() -> dict:
    return {"keys": TEST_KEYS}


@pytest.fixture
def app(adapter: StubGeminiAdapter, relay_config: dict, monkeypatch) -> FastAPI:
    monkeypatch.delenv("KEYRELAY_ADMIN_API_KEY", raising=False)

    async def no_sleep(_: float) -> None:
        return None

    def factory() -> KeyRelay:
        return KeyRelay(
            config=relay_config,
            state_store=InMemoryStateStore(),
            observability_manager=SilentObservabilityManager(),
            adapter=adapter,
            environ={},
            sleep=no_sleep,
        )

    return create_app(relay_factory=factory)


@pytest.fixture
def client(app: FastAPI):
    with TestClient(app) as test_client:
        yield test_client


"""Pytest configuration and shared fixtures."""

import json
import random
from typing import Any

import pytest

from keyrelay.domain.interfaces.observability_manager import ObservabilityManager
from keyrelay.domain.interfaces.state_store import StateStore, StateStoreError


class MockStateStore(StateStore):
    """In-memory StateStore double that can be told to fail."""

    def __init__(self, documents: dict[str, Any] | None = None) -> None:
        self.documents: dict[str, Any] = dict(documents or {})
        self.puts: list[tuple[str, Any]] = []
        self.get_error: Exception | None = None
        self.put_error: Exception | None = None
        self.closed = False

    async def get_document(self, name: str) -> Any | None:
        if self.get_error:
            raise self.get_error
        value = self.documents.get(name)
        return json.loads(json.dumps(value)) if value is not None else None

    async def put_document(self, name: str, value: Any) -> None:
        if self.put_error:
            raise self.put_error
        self.documents[name] = json.loads(json.dumps(value))
        self.puts.append((name, value))

    async def delete_document(self, name: str) -> None:
        self.documents.pop(name, None)

    async def close(self) -> None:
        self.closed = True


class MockObservabilityManager(ObservabilityManager):
    """Records events and logs instead of emitting them."""

    def __init__(self) -> None:
        self.events: list[dict] = []
        self.logs: list[dict] = []

    async def emit_event(
        self,
        event_type: str,
        payload: dict,
        metadata: dict | None = None,
    ) -> None:
        self.events.append({"event_type": event_type, "payload": payload})

    async def log(
        self,
        level: str,
        message: str,
        context: dict | None = None,
    ) -> None:
        self.logs.append({"level": level, "message": message, "context": context or {}})

    def event_types(self) -> list[str]:
        return [e["event_type"] for e in self.events]


class FakeClock:
    """Manually advanced clock returning seconds since the epoch."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def now_ms(self) -> int:
        return int(self.now * 1000)


@pytest.fixture
def state_store() -> MockStateStore:
    return MockStateStore()


@pytest.fixture
def observability() -> MockObservabilityManager:
    return MockObservabilityManager()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def state_store_error() -> StateStoreError:
    return StateStoreError("store unavailable")

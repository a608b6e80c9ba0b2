"""Tests for Rotator component."""

import pytest

from keyrelay.domain.components.key_store import KeyStore
from keyrelay.domain.components.rotator import FailureKind, Rotator, classify_error
from keyrelay.domain.models.errors import (
    FatalUpstreamError,
    NoAvailableKeysError,
    RecoverableUpstreamError,
    UpstreamError,
)
from keyrelay.domain.models.generation import GenerationOptions, ProviderResult, TokenUsage
from keyrelay.domain.models.stream_events import TextDelta, UsageEvent

PRO = "gemini-2.5-pro"
FLASH = "gemini-2.5-flash"


class ScriptedProvider:
    """Provider double whose outcome is decided per (key, model)."""

    def __init__(self, outcomes: dict | None = None, default=None) -> None:
        self.outcomes = outcomes or {}
        self.default = default
        self.calls: list[tuple[str, str]] = []

    def _outcome(self, key: str, model: str):
        if (key, model) in self.outcomes:
            return self.outcomes[(key, model)]
        if key in self.outcomes:
            return self.outcomes[key]
        return self.default

    async def call(self, key, model, system_prompt, messages, options) -> ProviderResult:
        self.calls.append((key, model))
        outcome = self._outcome(key, model)
        if isinstance(outcome, Exception):
            raise outcome
        return ProviderResult(
            content=f"reply from {key}",
            usage=TokenUsage(input_tokens=10, output_tokens=5),
        )

    async def stream(self, key, model, system_prompt, messages, options):
        self.calls.append((key, model))
        outcome = self._outcome(key, model)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "fail_midway":
            yield TextDelta(text="partial")
            raise RecoverableUpstreamError("quota exceeded", status=429)
        yield TextDelta(text="hello ")
        yield TextDelta(text=key)
        yield UsageEvent(input_tokens=3, output_tokens=2)


class RecordingUsage:
    def __init__(self) -> None:
        self.records: list[dict] = []

    async def record(self, **kwargs) -> None:
        self.records.append(kwargs)


def rate_limited() -> RecoverableUpstreamError:
    return RecoverableUpstreamError("Resource has been exhausted", status=429)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def key_store(state_store, observability, clock, rng) -> KeyStore:
    store = KeyStore(state_store, observability, rng=rng, clock=clock)
    store.configure(["k1", "k2", "k3"])
    return store


@pytest.fixture
def usage() -> RecordingUsage:
    return RecordingUsage()


@pytest.fixture
def rotator(key_store, observability, rng, sleeps, usage) -> Rotator:
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return Rotator(
        key_store=key_store,
        observability_manager=observability,
        model_tiers=[PRO, FLASH],
        auto_model_fallback=True,
        usage_recorder=usage,
        rng=rng,
        sleep=fake_sleep,
    )


async def collect(iterator) -> list:
    return [event async for event in iterator]


class TestClassifyError:
    """Tests for classify_error()."""

    @pytest.mark.parametrize("status", [429, 403])
    def test_rate_limit_statuses(self, status: int) -> None:
        assert classify_error(UpstreamError("boom", status=status)) is FailureKind.RateLimit

    def test_upstream_timeout_status(self) -> None:
        error = UpstreamError("gateway timeout", status=524)
        assert classify_error(error) is FailureKind.UpstreamTimeout

    @pytest.mark.parametrize(
        "message",
        ["Rate limit reached", "QUOTA exceeded for project", "Resource has been exhausted"],
    )
    def test_rate_limit_messages(self, message: str) -> None:
        assert classify_error(Exception(message)) is FailureKind.RateLimit

    def test_timeout_in_message(self) -> None:
        assert classify_error(Exception("upstream returned 524")) is FailureKind.UpstreamTimeout

    def test_status_from_response_attribute(self) -> None:
        class Response:
            status_code = 429

        error = Exception("boom")
        error.response = Response()
        assert classify_error(error) is FailureKind.RateLimit

    @pytest.mark.parametrize("status", [400, 401, 404, 500])
    def test_other_statuses_are_fatal(self, status: int) -> None:
        assert classify_error(UpstreamError("bad request", status=status)) is FailureKind.Fatal


class TestTierPlan:
    """Tests for tier planning."""

    def test_plan_starts_at_requested_tier(self, rotator: Rotator) -> None:
        assert rotator.tier_plan(PRO) == [PRO, FLASH]
        assert rotator.tier_plan(FLASH) == [FLASH]

    def test_unmatched_model_starts_at_first_tier(self, rotator: Rotator) -> None:
        assert rotator.tier_plan("gemini-2.0-flash") == [PRO, FLASH]
        assert rotator.tier_plan(None) == [PRO, FLASH]

    def test_fallback_disabled_keeps_requested_model(self, key_store, observability) -> None:
        rotator = Rotator(key_store, observability, model_tiers=[PRO, FLASH], auto_model_fallback=False)
        assert rotator.tier_plan(PRO) == [PRO]
        assert rotator.tier_plan("gemini-2.0-flash") == ["gemini-2.0-flash"]


class TestGenerateContent:
    """Tests for non-streaming rotation."""

    @pytest.mark.asyncio
    async def test_success_on_first_key(self, rotator: Rotator, usage: RecordingUsage) -> None:
        provider = ScriptedProvider()

        result = await rotator.generate_content(PRO, "", [], provider.call, GenerationOptions())

        assert len(provider.calls) == 1
        key, model = provider.calls[0]
        assert model == PRO
        assert result.model == PRO
        assert result.credential == key
        assert usage.records == [
            {"api_key": key, "model": PRO, "input_tokens": 10, "output_tokens": 5}
        ]

    @pytest.mark.asyncio
    async def test_exhaustion_tries_every_key_in_every_tier(
        self, rotator: Rotator, key_store: KeyStore, observability, sleeps
    ) -> None:
        """Attempts equal the summed snapshot sizes across tiers."""
        provider = ScriptedProvider(default=rate_limited())

        with pytest.raises(NoAvailableKeysError) as exc_info:
            await rotator.generate_content(PRO, "", [], provider.call, GenerationOptions())

        assert len(provider.calls) == 6
        assert {k for k, m in provider.calls if m == PRO} == {"k1", "k2", "k3"}
        assert {k for k, m in provider.calls if m == FLASH} == {"k1", "k2", "k3"}
        assert exc_info.value.details == {"models": [PRO, FLASH], "attempts": 6}
        assert "All API keys exhausted" in exc_info.value.message
        assert sleeps == [0.1] * 6
        assert observability.event_types().count("key_exhausted") == 6
        assert "tier_fallback" in observability.event_types()
        assert observability.event_types()[-1] == "rotation_exhausted"

    @pytest.mark.asyncio
    async def test_rate_limited_key_falls_back_to_next_tier(
        self, state_store, observability, clock, rng
    ) -> None:
        """A single key rate limited on pro serves the flash tier."""
        store = KeyStore(state_store, observability, rng=rng, clock=clock)
        store.configure(["only"])
        provider = ScriptedProvider(outcomes={("only", PRO): rate_limited()})

        async def no_sleep(_: float) -> None:
            return None

        rotator = Rotator(store, observability, model_tiers=[PRO, FLASH], sleep=no_sleep)
        result = await rotator.generate_content(PRO, "", [], provider.call, GenerationOptions())

        assert provider.calls == [("only", PRO), ("only", FLASH)]
        assert result.model == FLASH
        assert not store.is_available("only", PRO)
        assert store.is_available("only", FLASH)

    @pytest.mark.asyncio
    async def test_fatal_error_stops_rotation(
        self, rotator: Rotator, key_store: KeyStore, sleeps
    ) -> None:
        provider = ScriptedProvider(default=UpstreamError("Invalid argument", status=400))

        with pytest.raises(FatalUpstreamError) as exc_info:
            await rotator.generate_content(PRO, "", [], provider.call, GenerationOptions())

        assert len(provider.calls) == 1
        assert exc_info.value.status == 400
        assert key_store.available_count() == 3
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_non_upstream_exception_propagates_unchanged(self, rotator: Rotator) -> None:
        provider = ScriptedProvider(default=KeyError("boom"))

        with pytest.raises(KeyError):
            await rotator.generate_content(PRO, "", [], provider.call, GenerationOptions())

    @pytest.mark.asyncio
    async def test_upstream_timeout_uses_jitter(
        self, rotator: Rotator, key_store: KeyStore, sleeps
    ) -> None:
        first_key = None

        async def call(key, model, system_prompt, messages, options):
            nonlocal first_key
            if first_key is None:
                first_key = key
                raise UpstreamError("Gateway timeout", status=524)
            return ProviderResult(content="ok")

        result = await rotator.generate_content(PRO, "", [], call, GenerationOptions())

        assert result.content == "ok"
        assert result.credential != first_key
        assert len(sleeps) == 1
        assert 0.1 <= sleeps[0] <= 0.3
        assert not key_store.is_available(first_key, PRO)

    @pytest.mark.asyncio
    async def test_fallback_disabled_does_not_leave_tier(
        self, key_store, observability
    ) -> None:
        async def no_sleep(_: float) -> None:
            return None

        rotator = Rotator(
            key_store,
            observability,
            model_tiers=[PRO, FLASH],
            auto_model_fallback=False,
            sleep=no_sleep,
        )
        provider = ScriptedProvider(default=rate_limited())

        with pytest.raises(NoAvailableKeysError):
            await rotator.generate_content(PRO, "", [], provider.call, GenerationOptions())

        assert {m for _, m in provider.calls} == {PRO}
        assert len(provider.calls) == 3

    @pytest.mark.asyncio
    async def test_cooling_keys_are_skipped(self, rotator: Rotator, key_store: KeyStore) -> None:
        await key_store.mark_exhausted("k1", PRO)
        await key_store.mark_exhausted("k2", PRO)
        provider = ScriptedProvider()

        result = await rotator.generate_content(PRO, "", [], provider.call, GenerationOptions())

        assert provider.calls == [("k3", PRO)]
        assert result.credential == "k3"

    @pytest.mark.asyncio
    async def test_no_keys_raises_without_calls(self, state_store, observability) -> None:
        rotator = Rotator(KeyStore(state_store, observability), observability)
        provider = ScriptedProvider()

        with pytest.raises(NoAvailableKeysError) as exc_info:
            await rotator.generate_content(PRO, "", [], provider.call, GenerationOptions())

        assert provider.calls == []
        assert exc_info.value.details["attempts"] == 0


class TestStreamContent:
    """Tests for streaming rotation."""

    @pytest.mark.asyncio
    async def test_stream_rotates_before_first_event(
        self, rotator: Rotator, key_store: KeyStore, usage: RecordingUsage
    ) -> None:
        failed: list[str] = []

        async def stream(key, model, system_prompt, messages, options):
            if not failed:
                failed.append(key)
                raise rate_limited()
            yield TextDelta(text="ok")
            yield UsageEvent(input_tokens=4, output_tokens=6)

        events = await collect(
            rotator.stream_content(PRO, "", [], stream, GenerationOptions())
        )

        assert [type(e) for e in events] == [TextDelta, UsageEvent]
        assert not key_store.is_available(failed[0], PRO)
        assert len(usage.records) == 1
        assert usage.records[0]["input_tokens"] == 4
        assert usage.records[0]["api_key"] != failed[0]

    @pytest.mark.asyncio
    async def test_failure_after_first_event_is_not_retried(
        self, rotator: Rotator, key_store: KeyStore
    ) -> None:
        """Once an event was delivered the stream is committed to its credential."""
        provider = ScriptedProvider(default="fail_midway")
        received = []

        with pytest.raises(RecoverableUpstreamError):
            async for event in rotator.stream_content(
                PRO, "", [], provider.stream, GenerationOptions()
            ):
                received.append(event)

        assert len(provider.calls) == 1
        assert received == [TextDelta(text="partial")]
        key, _ = provider.calls[0]
        assert not key_store.is_available(key, PRO)

    @pytest.mark.asyncio
    async def test_stream_fatal_before_first_event(self, rotator: Rotator) -> None:
        provider = ScriptedProvider(default=UpstreamError("permission denied", status=401))

        with pytest.raises(FatalUpstreamError):
            await collect(rotator.stream_content(PRO, "", [], provider.stream, GenerationOptions()))

        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_stream_exhaustion(self, rotator: Rotator) -> None:
        provider = ScriptedProvider(default=rate_limited())

        with pytest.raises(NoAvailableKeysError):
            await collect(rotator.stream_content(PRO, "", [], provider.stream, GenerationOptions()))

        assert len(provider.calls) == 6

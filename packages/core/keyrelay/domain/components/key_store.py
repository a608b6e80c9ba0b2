"""KeyStore component: raw credentials, cooldowns and their persistence."""

import asyncio
import random
import time
from collections.abc import Callable, Iterable

import httpx
from pydantic import ValidationError as PydanticValidationError

from keyrelay.domain.interfaces.observability_manager import ObservabilityManager
from keyrelay.domain.interfaces.state_store import StateStore, StateStoreError
from keyrelay.domain.models.errors import NoKeysFoundError
from keyrelay.domain.models.key_status import (
    CooldownDocument,
    CooldownRecord,
    KeyStatusDetail,
    KeyStoreSnapshot,
)
from keyrelay.infrastructure.config.key_source import parse_key_text, read_key_source
from keyrelay.infrastructure.utils.masking import mask_key

DEFAULT_COOLDOWN_SECONDS = 3600
COOLDOWN_DOCUMENT = "gemini_key_rotator:cooldown_data_v1"


def prune_expired_cooldowns(
    key_status: dict[str, CooldownRecord], now_ms: int
) -> dict[str, CooldownRecord]:
    """Return only the records whose cooldown is still running at ``now_ms``."""
    return {
        key: record
        for key, record in key_status.items()
        if record.exhausted_until is not None and record.exhausted_until > now_ms
    }


class KeyStore:
    """Holds raw credentials and their cooldown state.

    In-memory state is authoritative for the lifetime of the process. Every
    mutation is a single synchronous update followed by a fire-and-forget
    whole-document write to the StateStore; write failures are logged and
    otherwise ignored.

    Selection is uniformly random among available credentials so that
    uncoordinated instances sharing a key set spread their load.
    """

    def __init__(
        self,
        state_store: StateStore,
        observability_manager: ObservabilityManager,
        default_cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        document_name: str = COOLDOWN_DOCUMENT,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize KeyStore with dependencies.

        Args:
            state_store: StateStore used for durable cooldown state.
            observability_manager: ObservabilityManager for events and logging.
            default_cooldown_seconds: Cooldown applied by mark_exhausted when no
                override is given.
            document_name: Name of the persisted cooldown document.
            rng: Source of randomness for selection. Tests pass a seeded one.
            clock: Returns the current time in seconds since the epoch.
        """
        self._state_store = state_store
        self._observability = observability_manager
        self._default_cooldown_seconds = default_cooldown_seconds
        self._document_name = document_name
        self._rng = rng or random.Random()
        self._clock = clock or time.time

        self._keys: list[str] = []
        self._status: dict[str, CooldownRecord] = {}
        self._pending_writes: set[asyncio.Task] = set()
        self._write_lock = asyncio.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def keys(self) -> list[str]:
        return list(self._keys)

    def configure(self, keys: Iterable[str], persist: bool = True) -> None:
        """Replace the working set with a deduplicated list of keys.

        Status records for keys no longer present are dropped; records for
        retained keys are preserved. With ``persist=False`` no write is scheduled.
        """
        deduplicated = list(dict.fromkeys(k.strip() for k in keys if k and k.strip()))
        self._keys = deduplicated
        retained = set(deduplicated)
        self._status = {k: r for k, r in self._status.items() if k in retained}
        if persist:
            self._schedule_save()

    async def load_from_source(
        self,
        source: str,
        client: httpx.AsyncClient | None = None,
        persist: bool = True,
    ) -> int:
        """Load keys from a file path or URL and configure the store with them.

        The body is parsed as a JSON array of strings, falling back to one key
        per line.

        Returns:
            Number of keys configured.

        Raises:
            SourceUnavailableError: If the fetch or read fails.
            NoKeysFoundError: If the source yields no keys.
        """
        text = await read_key_source(source, client=client)
        keys = parse_key_text(text)
        if not keys:
            raise NoKeysFoundError(f"No keys found in {source}", details={"source": source})

        self.configure(keys, persist=persist)
        await self._observability.log(
            level="INFO",
            message="Keys loaded from source",
            context={"count": len(self._keys), "remote": source.startswith("http")},
        )
        return len(self._keys)

    def is_available(self, key: str, model: str | None = None) -> bool:
        """Check whether a key is out of cooldown.

        A cooldown recorded for one model does not block the key for another
        model when ``model`` is given.
        """
        record = self._status.get(key)
        if record is None:
            return True
        return record.is_available(self._now_ms(), model)

    def available_keys(self, model: str | None = None) -> list[str]:
        now_ms = self._now_ms()
        return [
            k
            for k in self._keys
            if k not in self._status or self._status[k].is_available(now_ms, model)
        ]

    def next_available(
        self,
        model: str | None = None,
        exclude: Iterable[str] | None = None,
    ) -> str | None:
        """Pick a random available key, or None if there is none.

        Args:
            model: Only consider cooldowns recorded against this model.
            exclude: Keys that must not be returned (already tried).
        """
        excluded = set(exclude or ())
        candidates = [k for k in self.available_keys(model) if k not in excluded]
        if not candidates:
            return None
        return self._rng.choice(candidates)

    def available_count(self, model: str | None = None) -> int:
        return len(self.available_keys(model))

    def total_count(self) -> int:
        return len(self._keys)

    async def mark_exhausted(
        self,
        key: str,
        model: str | None = None,
        cooldown_seconds: int | None = None,
    ) -> CooldownRecord:
        """Put a key into cooldown after a recoverable failure.

        If the key is still cooling down for another model, the records merge
        into one that blocks every model until the later of the two ends.
        Unknown keys are added to the working set. The persistence write is
        scheduled and not awaited.
        """
        seconds = self._default_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        now_ms = self._now_ms()
        record = CooldownRecord(
            exhausted_until=now_ms + int(seconds * 1000),
            last_exhausted_model=model,
        )
        previous = self._status.get(key)
        if (
            previous is not None
            and previous.exhausted_until is not None
            and previous.exhausted_until > now_ms
            and previous.last_exhausted_model != model
        ):
            record = CooldownRecord(
                exhausted_until=max(previous.exhausted_until, record.exhausted_until),
                last_exhausted_model=None,
            )
        if key not in self._keys:
            self._keys.append(key)
        self._status[key] = record
        self._schedule_save()

        await self._observability.emit_event(
            event_type="key_exhausted",
            payload={
                "key": key,
                "model": model,
                "cooldown_seconds": seconds,
                "exhausted_until": record.exhausted_until,
            },
        )
        return record

    def snapshot(self) -> KeyStoreSnapshot:
        """Masked status view; raw key values never appear in it."""
        now_ms = self._now_ms()
        details = []
        for key in self._keys:
            record = self._status.get(key)
            details.append(
                KeyStatusDetail(
                    key=mask_key(key),
                    available=record is None or record.is_available(now_ms),
                    exhausted_until=record.exhausted_until if record else None,
                    last_exhausted_model=record.last_exhausted_model if record else None,
                )
            )
        return KeyStoreSnapshot(
            total=len(details),
            available=sum(1 for d in details if d.available),
            details=details,
        )

    def to_document(self) -> CooldownDocument:
        return CooldownDocument(
            keys=list(self._keys),
            key_status=dict(self._status),
            saved_at=self._now_ms(),
        )

    async def load_state(self) -> bool:
        """Merge previously persisted state into memory.

        The persisted key set is unioned with the configured one and elapsed
        cooldowns are dropped. A missing, unreadable or malformed document is
        treated as no prior state.

        Returns:
            True if a document was loaded.
        """
        try:
            raw = await self._state_store.get_document(self._document_name)
        except StateStoreError as e:
            await self._observability.log(
                level="WARNING",
                message="Failed to load cooldown state, starting fresh",
                context={"error": str(e)},
            )
            return False

        if raw is None:
            return False

        try:
            document = CooldownDocument.model_validate(raw)
        except PydanticValidationError as e:
            await self._observability.log(
                level="WARNING",
                message="Ignoring malformed cooldown state",
                context={"error": str(e)},
            )
            return False

        for key in document.keys:
            if key and key not in self._keys:
                self._keys.append(key)

        known = set(self._keys)
        loaded = prune_expired_cooldowns(document.key_status, self._now_ms())
        for key, record in loaded.items():
            if key not in known:
                continue
            current = self._status.get(key)
            if current is None or (current.exhausted_until or 0) < (record.exhausted_until or 0):
                self._status[key] = record

        await self._observability.log(
            level="INFO",
            message="Cooldown state loaded",
            context={"total": len(self._keys), "cooling_down": len(self._status)},
        )
        self._schedule_save()
        return True

    async def save_state(self) -> None:
        """Overwrite the persisted document with the current state.

        Raises:
            StateStoreError: If the write fails.
        """
        async with self._write_lock:
            await self._state_store.put_document(
                self._document_name, self.to_document().to_document()
            )

    async def _save_quietly(self) -> None:
        try:
            await self.save_state()
        except Exception as e:
            await self._observability.log(
                level="WARNING",
                message="Failed to persist cooldown state",
                context={"error": str(e)},
            )

    def _schedule_save(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._save_quietly())
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def flush(self) -> None:
        """Wait for every scheduled persistence write to finish."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

"""UsageRecorder component: per-call token usage log."""

import asyncio
import time
from collections.abc import Callable

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from keyrelay.domain.interfaces.observability_manager import ObservabilityManager
from keyrelay.domain.interfaces.state_store import StateStore, StateStoreError
from keyrelay.domain.models.usage_record import (
    NO_KEY,
    KeyUsageSummary,
    ModelUsageTotals,
    UsageRecord,
)
from keyrelay.infrastructure.utils.masking import mask_key

USAGE_DOCUMENT = "gemini_key_rotator:usage_data_v1"
DEFAULT_RETENTION_DAYS = 30

_records_adapter = TypeAdapter(list[UsageRecord])


class UsageRecorder:
    """Append-only usage log pruned by a retention window.

    Persistence mirrors KeyStore: the whole pruned log is written after each
    record without being awaited, and a missing or corrupt document loads as
    an empty log.
    """

    def __init__(
        self,
        state_store: StateStore,
        observability_manager: ObservabilityManager,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        document_name: str = USAGE_DOCUMENT,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._state_store = state_store
        self._observability = observability_manager
        self._retention_ms = retention_days * 24 * 60 * 60 * 1000
        self._document_name = document_name
        self._clock = clock or time.time
        self._records: list[UsageRecord] = []
        self._pending_writes: set[asyncio.Task] = set()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def records(self) -> list[UsageRecord]:
        return list(self._records)

    def _prune(self) -> int:
        cutoff = self._now_ms() - self._retention_ms
        before = len(self._records)
        self._records = [r for r in self._records if r.timestamp >= cutoff]
        return before - len(self._records)

    async def load(self) -> int:
        """Load and prune the persisted log.

        Returns:
            Number of records kept.
        """
        try:
            raw = await self._state_store.get_document(self._document_name)
            records = _records_adapter.validate_python(raw) if raw is not None else []
        except (StateStoreError, PydanticValidationError) as e:
            await self._observability.log(
                level="WARNING",
                message="Failed to load usage data, starting with an empty log",
                context={"error": str(e)},
            )
            records = []

        self._records = records
        pruned = self._prune()
        if pruned:
            await self._observability.log(
                level="INFO",
                message="Pruned expired usage records",
                context={"pruned": pruned, "kept": len(self._records)},
            )
        return len(self._records)

    async def record(
        self,
        model: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        api_key: str | None = None,
        timestamp: int | None = None,
    ) -> UsageRecord:
        """Append a usage record, prune, and schedule a persistence write."""
        entry = UsageRecord(
            api_key=api_key,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            timestamp=timestamp if timestamp is not None else self._now_ms(),
        )
        self._records.append(entry)
        self._prune()
        self._schedule_save()
        return entry

    def key_summaries(self) -> list[KeyUsageSummary]:
        """Usage grouped by credential, most-called first."""
        summaries: dict[str, KeyUsageSummary] = {}
        for r in self._records:
            key = r.api_key or NO_KEY
            summary = summaries.get(key)
            if summary is None:
                summary = KeyUsageSummary(
                    key=key,
                    masked_key=NO_KEY if key == NO_KEY else mask_key(key),
                )
                summaries[key] = summary
            summary.total_input_tokens += r.input_tokens
            summary.total_output_tokens += r.output_tokens
            summary.calls += 1
            summary.last_used = max(summary.last_used or 0, r.timestamp)
        return sorted(summaries.values(), key=lambda s: s.calls, reverse=True)

    def model_totals(self) -> dict[str, ModelUsageTotals]:
        totals: dict[str, ModelUsageTotals] = {}
        for r in self._records:
            total = totals.setdefault(r.model, ModelUsageTotals())
            total.input_tokens += r.input_tokens
            total.output_tokens += r.output_tokens
            total.calls += 1
        return dict(sorted(totals.items(), key=lambda item: item[1].calls, reverse=True))

    def snapshot(self) -> dict:
        """Masked aggregate view for the admin surface."""
        return {
            "totalRecords": len(self._records),
            "keys": [s.model_dump(by_alias=True) for s in self.key_summaries()],
            "models": {m: t.model_dump(by_alias=True) for m, t in self.model_totals().items()},
        }

    async def save(self) -> None:
        """Overwrite the persisted log with the current records.

        Raises:
            StateStoreError: If the write fails.
        """
        await self._state_store.put_document(
            self._document_name,
            _records_adapter.dump_python(self._records, by_alias=True, exclude_none=True),
        )

    async def _save_quietly(self) -> None:
        try:
            await self.save()
        except Exception as e:
            await self._observability.log(
                level="WARNING",
                message="Failed to persist usage data",
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

"""CredentialPool component: round robin over structured credentials."""

import time
from collections.abc import Callable, Sequence
from typing import Any

import structlog

from keyrelay.domain.models.errors import PoolExhaustedError
from keyrelay.domain.models.pool_entry import PoolClientStatus, PoolEntry
from keyrelay.infrastructure.utils.masking import token_tail

logger = structlog.get_logger(__name__)

DEFAULT_POOL_COOLDOWN_SECONDS = 3600


def _client_token(client: Any) -> str | None:
    credential = getattr(client, "credential", None)
    token = getattr(credential, "access_token", None)
    if token is None:
        token = getattr(client, "access_token", None)
    return token if isinstance(token, str) else None


class CredentialPool:
    """Fixed-order round robin with time-based re-enabling of invalidated entries.

    The cursor moves by exactly one position per ``next()`` call whatever the
    outcome, so selection order stays stable under repeated calls. Error
    counting is the caller's job; the pool only exposes ``mark_invalid``.
    """

    def __init__(
        self,
        clients: Sequence[Any],
        cooldown_seconds: int = DEFAULT_POOL_COOLDOWN_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._entries = [PoolEntry(client=client) for client in clients]
        self._cursor = 0
        self._cooldown_ms = cooldown_seconds * 1000
        self._clock = clock or time.time

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def cursor(self) -> int:
        return self._cursor

    def entry(self, index: int) -> PoolEntry:
        return self._entries[index]

    def next(self) -> tuple[int, Any]:
        """Return ``(index, client)`` for the next acceptable entry.

        Starting at the cursor, up to ``size`` entries are examined. An
        invalidated entry whose cooldown window has elapsed is re-enabled and
        accepted.

        Raises:
            PoolExhaustedError: If no entry is acceptable.
        """
        size = len(self._entries)
        if size == 0:
            raise PoolExhaustedError("Credential pool is empty")

        start = self._cursor
        self._cursor = (self._cursor + 1) % size
        now_ms = self._now_ms()

        for step in range(size):
            index = (start + step) % size
            entry = self._entries[index]
            if entry.invalidated_at is None:
                return index, entry.client
            if now_ms - entry.invalidated_at > self._cooldown_ms:
                entry.invalidated_at = None
                logger.info("pool_client_reenabled", index=index)
                return index, entry.client

        raise PoolExhaustedError(
            "All pooled clients are invalidated",
            details={"size": size},
        )

    def record_error(self, index: int) -> int:
        """Increment and return the error count of an entry."""
        entry = self._entries[index]
        entry.error_count += 1
        return entry.error_count

    def mark_invalid(self, index: int) -> None:
        """Invalidate an entry. No-op if it is already invalidated."""
        entry = self._entries[index]
        if entry.invalidated_at is not None:
            return
        entry.invalidated_at = self._now_ms()
        logger.warning(
            "pool_client_invalidated",
            index=index,
            error_count=entry.error_count,
        )

    def invalidation_callback(self, index: int) -> Callable[[], None]:
        """Callback a provider-call collaborator invokes to invalidate ``index``."""

        def _invalidate() -> None:
            self.mark_invalid(index)

        return _invalidate

    def statuses(self) -> list[PoolClientStatus]:
        return [
            PoolClientStatus(
                index=index,
                last8_chars_of_token=token_tail(_client_token(entry.client)),
                error_count=entry.error_count,
                is_valid=entry.is_valid,
                invalidated_at=entry.invalidated_at,
            )
            for index, entry in enumerate(self._entries)
        ]

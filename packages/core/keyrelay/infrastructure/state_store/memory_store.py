"""In-memory state store implementation.

Documents are kept as JSON text so that reads return fresh copies and
values that would not survive a durable store fail here too.

Example:
    ```python
    from keyrelay.infrastructure.state_store.memory_store import InMemoryStateStore

    store = InMemoryStateStore()
    await store.put_document("gemini_key_rotator:usage_data_v1", [])
    records = await store.get_document("gemini_key_rotator:usage_data_v1")
    ```
"""

import asyncio
import json
from typing import Any

from keyrelay.domain.interfaces.state_store import StateStore, StateStoreError


class InMemoryStateStore(StateStore):
    """In-memory implementation of StateStore interface.

    The default store; state lasts only as long as the process.

    Attributes:
        _documents: JSON text keyed by document name
        _write_lock: asyncio.Lock serializing writes
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        """Initialize InMemoryStateStore.

        Args:
            initial: Optional documents to seed the store with.
        """
        self._documents: dict[str, str] = {}
        self._write_lock = asyncio.Lock()
        for name, value in (initial or {}).items():
            self._documents[name] = json.dumps(value)

    async def get_document(self, name: str) -> Any | None:
        raw = self._documents.get(name)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StateStoreError(f"Document {name} is not valid JSON: {e}") from e

    async def put_document(self, name: str, value: Any) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StateStoreError(f"Failed to serialize document {name}: {e}") from e
        async with self._write_lock:
            self._documents[name] = encoded

    async def delete_document(self, name: str) -> None:
        async with self._write_lock:
            self._documents.pop(name, None)

    def set_raw(self, name: str, raw: str) -> None:
        """Store raw text under ``name``, bypassing serialization."""
        self._documents[name] = raw

"""StateStore interface for durable document persistence.

Rotation and usage state are persisted as whole JSON documents under a
small number of well-known names (a key-value namespace). Every write is a
full overwrite, never an incremental patch.

Example:
    ```python
    from keyrelay.infrastructure.state_store.memory_store import InMemoryStateStore

    store: StateStore = InMemoryStateStore()
    await store.put_document("relay:cooldown_data_v1", {"keys": [], "keyStatus": {}})
    doc = await store.get_document("relay:cooldown_data_v1")
    ```
"""

from abc import ABC, abstractmethod
from typing import Any


class StateStore(ABC):
    """Abstract interface for a durable key-value document store.

    Implementations serialize values as JSON. All methods are async so that
    network-backed stores never block the event loop. Implementations raise
    StateStoreError for any operation failure; callers in the rotation path
    treat persistence as best effort.
    """

    @abstractmethod
    async def get_document(self, name: str) -> Any | None:
        """Load a document.

        Args:
            name: Document name within the store's namespace.

        Returns:
            The decoded JSON value, or None if the document does not exist.

        Raises:
            StateStoreError: If the read fails or the stored value is not
                valid JSON.
        """
        pass

    @abstractmethod
    async def put_document(self, name: str, value: Any) -> None:
        """Overwrite a document with a JSON-serializable value.

        Raises:
            StateStoreError: If serialization or the write fails.
        """
        pass

    @abstractmethod
    async def delete_document(self, name: str) -> None:
        """Remove a document. Deleting a missing document is a no-op."""
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        return None


class StateStoreError(Exception):
    """Raised when a state store operation fails."""

    pass

"""State store implementations."""

from keyrelay.domain.interfaces.state_store import StateStore
from keyrelay.infrastructure.state_store.file_store import FileStateStore
from keyrelay.infrastructure.state_store.memory_store import InMemoryStateStore
from keyrelay.infrastructure.state_store.redis_store import RedisStateStore


def create_state_store(url: str | None) -> StateStore:
    """Build a StateStore from a URL.

    ``memory://`` (or empty) gives an in-memory store, ``redis://`` and
    ``rediss://`` a Redis store, ``file://<dir>`` or a bare path a
    file-backed store.
    """
    if not url or url.startswith("memory:"):
        return InMemoryStateStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisStateStore(redis_url=url)
    if url.startswith("file://"):
        return FileStateStore(url[len("file://") :])
    return FileStateStore(url)


__all__ = ["FileStateStore", "InMemoryStateStore", "RedisStateStore", "create_state_store"]

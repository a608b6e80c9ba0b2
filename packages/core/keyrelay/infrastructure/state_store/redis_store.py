"""Redis-based state store implementation.

Shares rotation and usage documents between relay instances. Consistency
is last-writer-wins: every write overwrites the whole document.

Example:
    ```python
    from keyrelay.infrastructure.state_store.redis_store import RedisStateStore

    store = RedisStateStore(redis_url="redis://localhost:6379/0")
    await store.put_document("gemini_key_rotator:cooldown_data_v1", document)
    ```
"""

import json
import os
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from keyrelay.domain.interfaces.state_store import StateStore, StateStoreError
from keyrelay.infrastructure.state_store.memory_store import InMemoryStateStore

logger = structlog.get_logger(__name__)

KEY_PATTERN_DOCUMENT = "{prefix}{name}"


class RedisStateStore(StateStore):
    """Redis-based implementation of StateStore interface.

    Without a Redis URL the store runs on an in-memory fallback for its whole
    lifetime. With one, a connection failure only affects the failing call:
    it is served from the fallback and the next call tries Redis again.
    Writes are mirrored into the fallback so reads during an outage see this
    instance's latest state.

    Attributes:
        _redis: Redis async client instance
        _connection_pool: Redis connection pool
        _fallback_store: InMemoryStateStore used when Redis is unavailable
        _use_fallback: Flag indicating Redis is not configured at all
        _degraded: True while the most recent Redis call failed to connect
        _key_prefix: Prefix prepended to every document name
        _document_ttl: Optional expiry for written documents, in seconds
    """

    def __init__(
        self,
        redis_url: str | None = None,
        key_prefix: str = "",
        document_ttl: int | None = None,
        connection_timeout: int = 5,
        redis: Redis | None = None,
    ) -> None:
        """Initialize RedisStateStore with connection configuration.

        Args:
            redis_url: Redis connection URL. If None, reads from REDIS_URL environment
                variable. If neither is set, the store starts in fallback mode.
            key_prefix: Prefix for Redis keys.
            document_ttl: Expiry applied to written documents (None keeps them forever).
            connection_timeout: Connection timeout in seconds (default: 5).
            redis: Pre-built client, mainly for tests.
        """
        self._redis_url = redis_url or os.getenv("REDIS_URL")
        self._key_prefix = key_prefix
        self._document_ttl = document_ttl
        self._connection_timeout = connection_timeout

        self._redis: Redis | None = redis
        self._connection_pool: ConnectionPool | None = None
        self._use_fallback = False
        self._degraded = False
        self._fallback_store = InMemoryStateStore()

        if self._redis is not None:
            return

        if self._redis_url:
            try:
                self._connection_pool = ConnectionPool.from_url(
                    self._redis_url,
                    max_connections=10,
                    socket_connect_timeout=connection_timeout,
                    socket_timeout=connection_timeout,
                    retry_on_timeout=True,
                )
                self._redis = Redis(connection_pool=self._connection_pool)
            except (ValueError, RedisError) as e:
                logger.warning(
                    "Failed to initialize Redis connection, using fallback mode",
                    error=str(e),
                )
                self._use_fallback = True
        else:
            logger.warning("REDIS_URL not provided, using fallback in-memory store")
            self._use_fallback = True

    @property
    def using_fallback(self) -> bool:
        return self._use_fallback or self._degraded

    def _redis_key(self, name: str) -> str:
        return KEY_PATTERN_DOCUMENT.format(prefix=self._key_prefix, name=name)

    def _connection_failed(self, operation: str, name: str, error: Exception) -> None:
        logger.warning(
            "Redis operation failed, served from fallback store",
            operation=operation,
            document=name,
            error=str(error),
        )
        self._degraded = True

    def _connection_ok(self) -> None:
        if self._degraded:
            logger.info("Redis connection restored")
        self._degraded = False

    async def get_document(self, name: str) -> Any | None:
        if self._use_fallback or self._redis is None:
            return await self._fallback_store.get_document(name)

        try:
            raw = await self._redis.get(self._redis_key(name))
        except (ConnectionError, TimeoutError) as e:
            self._connection_failed("get", name, e)
            return await self._fallback_store.get_document(name)
        except RedisError as e:
            raise StateStoreError(f"Failed to read document {name}: {e}") from e
        self._connection_ok()

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

        await self._fallback_store.put_document(name, value)
        if self._use_fallback or self._redis is None:
            return

        try:
            if self._document_ttl:
                await self._redis.setex(self._redis_key(name), self._document_ttl, encoded)
            else:
                await self._redis.set(self._redis_key(name), encoded)
        except (ConnectionError, TimeoutError) as e:
            self._connection_failed("put", name, e)
            return
        except RedisError as e:
            raise StateStoreError(f"Failed to write document {name}: {e}") from e
        self._connection_ok()

    async def delete_document(self, name: str) -> None:
        await self._fallback_store.delete_document(name)
        if self._use_fallback or self._redis is None:
            return

        try:
            await self._redis.delete(self._redis_key(name))
        except (ConnectionError, TimeoutError) as e:
            self._connection_failed("delete", name, e)
            return
        except RedisError as e:
            raise StateStoreError(f"Failed to delete document {name}: {e}") from e
        self._connection_ok()

    async def check_connection(self) -> bool:
        """Check if Redis connection is healthy."""
        if self._use_fallback or self._redis is None:
            return False

        try:
            await self._redis.ping()
        except (ConnectionError, TimeoutError, RedisError):
            return False
        return True

    async def close(self) -> None:
        """Close Redis connection and release the pool."""
        if self._redis is not None:
            await self._redis.aclose()
        if self._connection_pool is not None:
            await self._connection_pool.disconnect()

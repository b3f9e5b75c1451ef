# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Redis attribute store for memory records.

Holds the full Memory record plus the secondary indices used for scoped
listing, and owns the search-result cache.

Key layout (all keys carry the configured prefix):
    memory:{id}                 hash   full record
    user:{userId}:memories      set    ids owned by a user
    type:{type}:memories        set    ids of a memory type (all users)
    session:{sessionId}:memories set   ids created in a session
    recent:{userId}             zset   ids scored by creation time (ms)
    cache:{fingerprint}         string cached search results, with TTL
"""

import logging
from typing import Any

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from ..cache.query_cache import DEFAULT_CACHE_TTL_SECONDS, QueryCache
from ..errors import ConfigurationError, ProviderError
from ..models.memory import Memory, new_memory_id, now_ms
from ..models.validators import MemoryType
from .batch import WriteBatch

logger = logging.getLogger(__name__)


class RedisMemoryStore:
    """
    Durable CRUD for memories with by-user, by-type, by-session and
    by-recency indices.

    Index updates for one memory are sent as a single non-transactional
    batch; any failed command surfaces as a BatchWriteError.
    """

    def __init__(
        self,
        url: str | None = None,
        key_prefix: str = "",
        max_connections: int = 10,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        client: Redis | None = None,
    ):
        """
        Initialize the store.

        Args:
            url: Redis connection URL (required unless ``client`` is given)
            key_prefix: Namespace prepended to every key
            max_connections: Maximum Redis connections in pool
            cache_ttl_seconds: Default TTL for cached search results
            client: Pre-built async Redis client to use instead of ``url``

        Raises:
            ConfigurationError: If neither a URL nor a client is provided
        """
        if not url and client is None:
            raise ConfigurationError("Redis URL not configured (set MEMORY_REDIS_URL)")

        self.url = url
        self.key_prefix = key_prefix
        self.max_connections = max_connections
        self.cache_ttl_seconds = cache_ttl_seconds

        self._pool: ConnectionPool | None = None
        self._redis: Redis | None = client
        # Injected clients belong to the caller and are never closed here
        self._owns_client = client is None
        self._cache: QueryCache | None = None
        self._last_timestamp = 0
        self._initialized = False

    async def initialize(self) -> None:
        """Open the connection pool and verify the server answers."""
        if self._initialized:
            return

        if self._redis is None:
            self._pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                decode_responses=True,
            )
            self._redis = Redis(connection_pool=self._pool)

        try:
            await self._redis.ping()
        except RedisError as e:
            logger.error(f"RedisMemoryStore initialization failed: {e}")
            await self.close()
            raise ProviderError("initialize", e) from e

        self._cache = QueryCache(self._redis, key_prefix=self.key_prefix, ttl_seconds=self.cache_ttl_seconds)
        self._initialized = True
        logger.info(f"RedisMemoryStore initialized: {self.url or 'injected client'}")

    async def close(self) -> None:
        """Close the Redis connection pool. Safe to call multiple times."""
        if self._owns_client and self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None

        self._cache = None
        self._initialized = False

    @property
    def redis(self) -> Redis:
        if not self._initialized or self._redis is None:
            raise ProviderError("redis", "RedisMemoryStore is not initialized")
        return self._redis

    # ------------------------------------------------------------------
    # Key helpers
    # ------------------------------------------------------------------

    def _memory_key(self, memory_id: str) -> str:
        return f"{self.key_prefix}memory:{memory_id}"

    def _user_key(self, user_id: str) -> str:
        return f"{self.key_prefix}user:{user_id}:memories"

    def _type_key(self, memory_type: str) -> str:
        return f"{self.key_prefix}type:{memory_type}:memories"

    def _session_key(self, session_id: str) -> str:
        return f"{self.key_prefix}session:{session_id}:memories"

    def _recent_key(self, user_id: str) -> str:
        return f"{self.key_prefix}recent:{user_id}"

    def _next_timestamp(self) -> int:
        """Creation timestamp in ms, strictly increasing for this store."""
        ts = now_ms()
        if ts <= self._last_timestamp:
            ts = self._last_timestamp + 1
        self._last_timestamp = ts
        return ts

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def put(self, memory: Memory) -> str:
        """
        Write a memory and all of its index memberships.

        Assigns an id if the memory has none and stamps the creation
        timestamp in place.

        Returns:
            The memory id

        Raises:
            BatchWriteError: If any of the record/index writes failed
        """
        if not memory.id:
            memory.id = new_memory_id()
        memory.metadata.timestamp = self._next_timestamp()

        batch = WriteBatch(self.redis, "put")
        batch.queue("record", "hset", self._memory_key(memory.id), mapping=memory.to_redis_hash())
        batch.queue("user_index", "sadd", self._user_key(memory.user_id), memory.id)
        batch.queue("type_index", "sadd", self._type_key(memory.type), memory.id)
        if memory.session_id:
            batch.queue("session_index", "sadd", self._session_key(memory.session_id), memory.id)
        batch.queue("recency_index", "zadd", self._recent_key(memory.user_id), {memory.id: memory.timestamp})
        await batch.execute()

        logger.debug(f"Stored memory {memory.id} for user {memory.user_id}")
        return memory.id

    async def get(self, memory_id: str) -> Memory | None:
        """Fetch a memory by id, or None if it does not exist."""
        try:
            data = await self.redis.hgetall(self._memory_key(memory_id))
        except RedisError as e:
            raise ProviderError("get", e) from e

        if not data:
            return None
        return Memory.from_redis_hash(data)

    async def _get_many(self, memory_ids: list[str], operation: str) -> list[Memory]:
        """Fetch several records in one round trip, preserving id order.

        Ids whose record has disappeared (deleted between index read and
        record read) are skipped.
        """
        if not memory_ids:
            return []

        try:
            pipe = self.redis.pipeline(transaction=False)
            for memory_id in memory_ids:
                pipe.hgetall(self._memory_key(memory_id))
            records = await pipe.execute()
        except RedisError as e:
            raise ProviderError(operation, e) from e

        memories = []
        for memory_id, data in zip(memory_ids, records):
            if not data:
                logger.debug(f"{operation}: index references missing record {memory_id}")
                continue
            memories.append(Memory.from_redis_hash(data))
        return memories

    async def _members(self, key: str, operation: str) -> list[str]:
        try:
            return list(await self.redis.smembers(key))
        except RedisError as e:
            raise ProviderError(operation, e) from e

    async def list_by_user(self, user_id: str, limit: int | None = 50) -> list[Memory]:
        """All memories of a user, newest first, truncated to ``limit``."""
        ids = await self._members(self._user_key(user_id), "list_by_user")
        memories = await self._get_many(ids, "list_by_user")
        memories.sort(key=lambda m: m.timestamp, reverse=True)
        return memories if limit is None else memories[:limit]

    async def list_recent(self, user_id: str, limit: int = 10) -> list[Memory]:
        """The ``limit`` most recently created memories of a user, newest first."""
        if limit <= 0:
            return []
        try:
            ids = await self.redis.zrevrange(self._recent_key(user_id), 0, limit - 1)
        except RedisError as e:
            raise ProviderError("list_recent", e) from e
        return await self._get_many(list(ids), "list_recent")

    async def list_by_type(self, user_id: str, memory_type: MemoryType, limit: int = 20) -> list[Memory]:
        """A user's memories of one type, newest first."""
        try:
            ids = await self.redis.sinter([self._user_key(user_id), self._type_key(memory_type)])
        except RedisError as e:
            raise ProviderError("list_by_type", e) from e

        memories = await self._get_many(list(ids), "list_by_type")
        memories.sort(key=lambda m: m.timestamp, reverse=True)
        return memories[:limit]

    async def list_by_session(self, session_id: str) -> list[Memory]:
        """Every memory of a session in creation order (oldest first)."""
        ids = await self._members(self._session_key(session_id), "list_by_session")
        memories = await self._get_many(ids, "list_by_session")
        memories.sort(key=lambda m: m.timestamp)
        return memories

    async def delete(self, memory_id: str) -> bool:
        """
        Remove a memory and all of its index memberships.

        Returns:
            True if a record existed and was removed, False otherwise
        """
        memory = await self.get(memory_id)
        if memory is None:
            return False

        batch = WriteBatch(self.redis, "delete")
        batch.queue("record", "delete", self._memory_key(memory_id))
        batch.queue("user_index", "srem", self._user_key(memory.user_id), memory_id)
        batch.queue("type_index", "srem", self._type_key(memory.type), memory_id)
        batch.queue("recency_index", "zrem", self._recent_key(memory.user_id), memory_id)
        if memory.session_id:
            batch.queue("session_index", "srem", self._session_key(memory.session_id), memory_id)
        await batch.execute()

        logger.debug(f"Deleted memory {memory_id}")
        return True

    # ------------------------------------------------------------------
    # Query cache
    # ------------------------------------------------------------------

    async def cache_get(self, key: str) -> Any | None:
        """Cached value for a query fingerprint, or None."""
        if self._cache is None:
            raise ProviderError("cache_get", "RedisMemoryStore is not initialized")
        return await self._cache.get(key)

    async def cache_put(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Cache a value under a query fingerprint."""
        if self._cache is None:
            raise ProviderError("cache_put", "RedisMemoryStore is not initialized")
        await self._cache.set(key, value, ttl_seconds)

"""
Redis-backed cache for memory search results.

Provides the query-result cache used by searches:
- Deterministic fingerprints from (query, user, effective options)
- Fixed TTL per entry (default 30 minutes)
- JSON serialization for result lists

Entries are never invalidated by writes; they only expire.
"""

import hashlib
import json
import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 1800


def fingerprint(query: str, user_id: str, options: dict[str, Any]) -> str:
    """
    Derive a cache key from a search request.

    Args:
        query: The query text
        user_id: The owning user the search is scoped to
        options: The effective search options (defaults already applied)

    Returns:
        SHA-256 hex digest of the canonical request serialization
    """
    # Sorted keys and fixed separators make the key independent of dict order
    canonical = json.dumps(
        {"query": query, "userId": user_id, "options": options},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class QueryCache:
    """
    Search result cache stored alongside memory records in Redis.

    Values are opaque JSON-serializable objects; decoding them into
    result models is the caller's job.
    """

    def __init__(self, redis: Redis, key_prefix: str = "", ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS):
        """
        Initialize the cache.

        Args:
            redis: Connected async Redis client (shared with the attribute store)
            key_prefix: Namespace prepended to every key
            ttl_seconds: Default TTL for entries
        """
        self._redis = redis
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds

    def _make_key(self, key: str) -> str:
        """Add prefix to key."""
        return f"{self.key_prefix}cache:{key}"

    async def get(self, key: str) -> Any | None:
        """
        Get cached value by fingerprint.

        Returns:
            The decoded value, or None on a miss
        """
        try:
            value = await self._redis.get(self._make_key(key))
        except RedisError as e:
            raise ProviderError("cache_get", e) from e

        if value is None:
            return None

        logger.debug(f"Cache hit for {key[:12]}")
        return json.loads(value)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store a JSON-serializable value under a fingerprint with a TTL."""
        ttl = ttl_seconds or self.ttl_seconds
        try:
            await self._redis.setex(self._make_key(key), ttl, json.dumps(value))
        except RedisError as e:
            raise ProviderError("cache_put", e) from e

"""
Unit tests for the search result cache.

Redis is mocked; these tests pin key layout, TTL handling, error
translation and fingerprint determinism.
"""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from agent_memory.cache.query_cache import DEFAULT_CACHE_TTL_SECONDS, QueryCache, fingerprint
from agent_memory.errors import ProviderError


@pytest.fixture
def mock_redis():
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.setex = AsyncMock(return_value=True)
    return redis


class TestFingerprint:
    """Cache keys must depend on content, not on option ordering."""

    def test_option_order_does_not_matter(self):
        a = fingerprint("q", "u1", {"type": None, "limit": 10, "minScore": 0.7, "includeRecent": True})
        b = fingerprint("q", "u1", {"includeRecent": True, "minScore": 0.7, "limit": 10, "type": None})

        assert a == b

    def test_user_is_part_of_key(self):
        assert fingerprint("q", "u1", {}) != fingerprint("q", "u2", {})

    def test_query_is_part_of_key(self):
        assert fingerprint("q1", "u1", {}) != fingerprint("q2", "u1", {})

    def test_option_values_are_part_of_key(self):
        assert fingerprint("q", "u1", {"limit": 5}) != fingerprint("q", "u1", {"limit": 6})

    def test_is_sha256_hex(self):
        key = fingerprint("q", "u1", {})

        assert len(key) == 64
        int(key, 16)


class TestQueryCache:
    async def test_miss_returns_none(self, mock_redis):
        cache = QueryCache(mock_redis)

        assert await cache.get("abc") is None
        mock_redis.get.assert_awaited_once_with("cache:abc")

    async def test_hit_decodes_json(self, mock_redis):
        mock_redis.get.return_value = json.dumps([{"score": 0.9}])
        cache = QueryCache(mock_redis)

        assert await cache.get("abc") == [{"score": 0.9}]

    async def test_set_uses_default_ttl(self, mock_redis):
        cache = QueryCache(mock_redis)

        await cache.set("abc", [1, 2])

        mock_redis.setex.assert_awaited_once_with("cache:abc", DEFAULT_CACHE_TTL_SECONDS, "[1, 2]")

    async def test_set_with_explicit_ttl(self, mock_redis):
        cache = QueryCache(mock_redis, ttl_seconds=60)

        await cache.set("abc", {}, ttl_seconds=5)

        assert mock_redis.setex.call_args.args[1] == 5

    async def test_key_prefix_applied(self, mock_redis):
        cache = QueryCache(mock_redis, key_prefix="test:")

        await cache.get("abc")

        mock_redis.get.assert_awaited_once_with("test:cache:abc")

    async def test_get_error_raises_provider_error(self, mock_redis):
        mock_redis.get.side_effect = RedisConnectionError("down")
        cache = QueryCache(mock_redis)

        with pytest.raises(ProviderError) as exc_info:
            await cache.get("abc")

        assert exc_info.value.operation == "cache_get"

    async def test_set_error_raises_provider_error(self, mock_redis):
        mock_redis.setex.side_effect = RedisConnectionError("down")
        cache = QueryCache(mock_redis)

        with pytest.raises(ProviderError) as exc_info:
            await cache.set("abc", [])

        assert exc_info.value.operation == "cache_put"

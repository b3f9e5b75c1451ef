"""Redis cache for memory search results."""

from .query_cache import DEFAULT_CACHE_TTL_SECONDS, QueryCache, fingerprint

__all__ = ["DEFAULT_CACHE_TTL_SECONDS", "QueryCache", "fingerprint"]

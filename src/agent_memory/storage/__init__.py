"""Backing stores: Redis attribute store and Qdrant similarity index."""

from .qdrant_index import IndexMatch, IndexStats, QdrantSimilarityIndex, build_vector_metadata
from .redis_store import RedisMemoryStore

__all__ = ["IndexMatch", "IndexStats", "QdrantSimilarityIndex", "RedisMemoryStore", "build_vector_metadata"]

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
Service factory for the agent memory service.

Builds the embedding provider, the Redis attribute store and the Qdrant
similarity index from settings, initializes both backends and wires them
into a MemoryService.
"""

import logging

from .config import Settings
from .embeddings import create_embedding_provider
from .services.memory_service import MemoryService
from .storage.qdrant_index import QdrantSimilarityIndex
from .storage.redis_store import RedisMemoryStore

logger = logging.getLogger(__name__)


async def create_memory_service(settings: Settings | None = None) -> MemoryService:
    """
    Create a fully initialized MemoryService.

    Args:
        settings: Configuration; loaded from the environment when omitted

    Returns:
        MemoryService with both backends connected

    Raises:
        ConfigurationError: If the Redis URL is missing or the Qdrant
            collection does not match the embedding dimensions
    """
    settings = settings or Settings()

    embeddings = create_embedding_provider(settings.embedding)

    store = RedisMemoryStore(
        url=settings.redis.url,
        key_prefix=settings.redis.key_prefix,
        max_connections=settings.redis.max_connections,
        cache_ttl_seconds=settings.redis.cache_ttl_seconds,
    )
    index = QdrantSimilarityIndex(
        vector_size=embeddings.dimensions,
        collection_name=settings.qdrant.collection_name,
        url=settings.qdrant.url,
        api_key=settings.qdrant.api_key.get_secret_value() if settings.qdrant.api_key else None,
    )

    await store.initialize()
    try:
        await index.initialize()
    except Exception:
        await store.close()
        raise

    logger.info(
        f"MemoryService ready: embeddings={embeddings.model} ({embeddings.dimensions}d), "
        f"index={'server' if settings.qdrant.url else 'in-memory'}"
    )
    return MemoryService(store, index, embeddings, cache_ttl_seconds=settings.redis.cache_ttl_seconds)


async def close_memory_service(service: MemoryService) -> None:
    """Release both backend connections."""
    await service.index.close()
    await service.store.close()

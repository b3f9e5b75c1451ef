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
Qdrant similarity index for memory embeddings.

Stores one point per memory (point id == memory id) with a flat payload
and answers filtered nearest-neighbour queries. Runs against a Qdrant
server when a URL is configured, otherwise in Qdrant's in-process
``:memory:`` mode.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from ..errors import ConfigurationError, ProviderError
from ..models.memory import Memory

logger = logging.getLogger(__name__)

# Payload only holds a preview; the attribute store has the full content
CONTENT_PREVIEW_CHARS = 500

# Upper bound on points inspected by stats_for_user
STATS_SCAN_LIMIT = 1000


@dataclass
class IndexMatch:
    """One nearest-neighbour hit."""

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexStats:
    """Approximate per-user point counts."""

    total: int = 0
    by_type: dict[str, int] = field(default_factory=dict)


def build_vector_metadata(memory: Memory) -> dict[str, Any]:
    """
    Flatten a memory into the scalar payload stored next to its vector.

    Qdrant payloads are filtered on scalar fields here, so nested metadata
    is flattened: tags are comma-joined and absent optionals become "".
    """
    meta = memory.metadata
    return {
        "userId": memory.user_id,
        "type": memory.type,
        "timestamp": meta.timestamp,
        "content": memory.content[:CONTENT_PREVIEW_CHARS],
        "language": meta.language or "",
        "tags": ",".join(meta.tags) if meta.tags else "",
        "sessionId": memory.session_id or "",
        "title": meta.title or "",
    }


def _to_unit_score(cosine: float) -> float:
    """Map cosine similarity [-1, 1] onto [0, 1]."""
    return min(1.0, max(0.0, (1.0 + cosine) / 2.0))


def _to_cosine_threshold(min_score: float) -> float:
    """Inverse of ``_to_unit_score`` for threshold push-down."""
    return 2.0 * min_score - 1.0


class QdrantSimilarityIndex:
    """
    Nearest-neighbour retrieval over memory vectors with equality filters.

    The Qdrant client is synchronous; calls run in the default executor.
    """

    def __init__(
        self,
        vector_size: int,
        collection_name: str = "memories",
        url: str | None = None,
        api_key: str | None = None,
    ):
        """
        Initialize the index in server or in-memory mode.

        Args:
            vector_size: Embedding dimensionality
            collection_name: Qdrant collection name (default: "memories")
            url: Qdrant server URL; in-memory mode when omitted
            api_key: Qdrant API key for server mode
        """
        self.vector_size = vector_size
        self.collection_name = collection_name
        self.url = url
        self.api_key = api_key

        self.client: QdrantClient | None = None
        self._initialized = False

        mode = "server" if self.url else "in-memory"
        logger.info(
            f"Initializing QdrantSimilarityIndex: mode={mode}, location={self.url or ':memory:'}, "
            f"collection={collection_name}, vector_size={vector_size}"
        )

    async def initialize(self) -> None:
        """Connect and make sure the collection exists with the right vector size."""
        if self._initialized:
            return

        loop = asyncio.get_running_loop()
        try:
            if self.url:
                self.client = await loop.run_in_executor(None, lambda: QdrantClient(url=self.url, api_key=self.api_key))
                logger.info(f"Connected to Qdrant server at {self.url}")
            else:
                self.client = await loop.run_in_executor(None, lambda: QdrantClient(location=":memory:"))
                logger.info("No Qdrant URL configured, using in-memory similarity index")

            exists = await loop.run_in_executor(None, self.client.collection_exists, self.collection_name)
            if exists:
                await self._verify_vector_size(loop)
            else:
                await loop.run_in_executor(
                    None,
                    lambda: self.client.create_collection(
                        collection_name=self.collection_name,
                        vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
                    ),
                )
                logger.info(f"Created collection '{self.collection_name}' with vector size {self.vector_size}")

            await self._ensure_payload_indexes(loop)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"QdrantSimilarityIndex initialization failed: {e}")
            raise ProviderError("initialize", e) from e

        self._initialized = True
        logger.info("QdrantSimilarityIndex initialization complete")

    async def _verify_vector_size(self, loop: asyncio.AbstractEventLoop) -> None:
        info = await loop.run_in_executor(None, self.client.get_collection, self.collection_name)
        existing = info.config.params.vectors.size
        if existing != self.vector_size:
            raise ConfigurationError(
                f"Collection '{self.collection_name}' has vector size {existing}, "
                f"but the embedding provider produces {self.vector_size}"
            )

    async def _ensure_payload_indexes(self, loop: asyncio.AbstractEventLoop) -> None:
        """Keyword indexes for the filter fields. Idempotent."""
        for field_name in ("userId", "type"):
            await loop.run_in_executor(
                None,
                lambda f=field_name: self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=f,
                    field_schema=PayloadSchemaType.KEYWORD,
                ),
            )

    def _require_client(self, operation: str) -> QdrantClient:
        if not self._initialized or self.client is None:
            raise ProviderError(operation, "QdrantSimilarityIndex is not initialized")
        return self.client

    @staticmethod
    def _build_filter(conditions: dict[str, Any]) -> Filter | None:
        """Conjunctive equality filter; None-valued conditions are skipped."""
        must = [FieldCondition(key=key, match=MatchValue(value=value)) for key, value in conditions.items() if value is not None]
        return Filter(must=must) if must else None

    async def upsert(self, memory_id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        """Insert or replace the point for ``memory_id``."""
        client = self._require_client("upsert")

        if len(vector) != self.vector_size:
            raise ProviderError(
                "upsert",
                f"embedding dimension mismatch: expected {self.vector_size}, got {len(vector)}",
            )

        point = PointStruct(id=memory_id, vector=vector, payload=metadata)
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: client.upsert(collection_name=self.collection_name, points=[point]))
        except Exception as e:
            logger.error(f"Failed to upsert vector {memory_id}: {e}")
            raise ProviderError("upsert", e) from e

        logger.debug(f"Upserted vector {memory_id}")

    async def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any],
        min_score: float | None = None,
    ) -> list[IndexMatch]:
        """
        Nearest neighbours of ``vector`` matching every filter condition.

        Args:
            vector: Query embedding
            top_k: Maximum number of matches
            filter: Equality conditions, e.g. {"userId": "u1", "type": "code"}
            min_score: Optional threshold on the [0, 1] score

        Returns:
            Matches ordered by descending score
        """
        client = self._require_client("query")
        query_filter = self._build_filter(filter)
        score_threshold = _to_cosine_threshold(min_score) if min_score else None

        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: client.query_points(
                    collection_name=self.collection_name,
                    query=vector,
                    query_filter=query_filter,
                    limit=top_k,
                    score_threshold=score_threshold,
                    with_payload=True,
                    with_vectors=False,
                ),
            )
        except Exception as e:
            logger.error(f"Failed to query similarity index: {e}")
            raise ProviderError("query", e) from e

        return [
            IndexMatch(id=str(point.id), score=_to_unit_score(point.score), metadata=point.payload or {})
            for point in response.points
        ]

    async def delete(self, memory_id: str) -> None:
        """Remove the point for ``memory_id``. Missing points are ignored."""
        client = self._require_client("delete")
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: client.delete(
                    collection_name=self.collection_name,
                    points_selector=PointIdsList(points=[memory_id]),
                ),
            )
        except Exception as e:
            logger.error(f"Failed to delete vector {memory_id}: {e}")
            raise ProviderError("delete_vector", e) from e

        logger.debug(f"Deleted vector {memory_id}")

    async def stats_for_user(self, user_id: str) -> IndexStats:
        """
        Approximate point counts for one user.

        Only the first ``STATS_SCAN_LIMIT`` points are inspected, so users
        with more vectors than that are under-counted.
        """
        client = self._require_client("stats_for_user")
        try:
            loop = asyncio.get_running_loop()
            points, _ = await loop.run_in_executor(
                None,
                lambda: client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=self._build_filter({"userId": user_id}),
                    limit=STATS_SCAN_LIMIT,
                    with_payload=["type"],
                    with_vectors=False,
                ),
            )
        except Exception as e:
            logger.error(f"Failed to collect vector stats for {user_id}: {e}")
            raise ProviderError("stats_for_user", e) from e

        stats = IndexStats(total=len(points))
        for point in points:
            memory_type = (point.payload or {}).get("type") or "general"
            stats.by_type[memory_type] = stats.by_type.get(memory_type, 0) + 1
        return stats

    async def close(self) -> None:
        """
        Close the Qdrant client connection.

        Safe to call multiple times. Idempotent operation.
        """
        if self.client is not None:
            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self.client.close)
                logger.info("Qdrant client closed successfully")
            except Exception as e:
                logger.warning(f"Error closing Qdrant client: {e}")
            finally:
                self.client = None
                self._initialized = False

"""
Memory Service - orchestration over the attribute store and similarity index.

The service is the only reader and writer of both backends. Stores are
dual writes (record first, vector second); searches are cached and
backfilled with recent memories.

The two backends are not kept consistent transactionally: a failed vector
write after a successful record write leaves the record searchable only by
recency and listing, and is reported as a ConsistencyGapError.
"""

import logging
from typing import Any

from ..cache.query_cache import DEFAULT_CACHE_TTL_SECONDS, fingerprint
from ..embeddings import EmbeddingProvider
from ..errors import ConsistencyGapError, ProviderError
from ..models.memory import ContextualMemory, Memory, MemoryMetadata, MemoryStats, SearchResult, now_ms
from ..models.validators import MemoryType
from ..storage.qdrant_index import QdrantSimilarityIndex, build_vector_metadata
from ..storage.redis_store import RedisMemoryStore

logger = logging.getLogger(__name__)

# Score given to memories included by recency rather than similarity.
# Callers rely on this exact value to tell the two apart.
RECENCY_FALLBACK_SCORE = 0.5

DEFAULT_SEARCH_LIMIT = 10
DEFAULT_MIN_SCORE = 0.7

CONTEXT_RECENT_COUNT = 5
CONTEXT_RELATED_COUNT = 10
CONTEXT_MAX_RECENT = 8
CONTEXT_MAX_RELATED = 12

RELATED_MIN_SCORE = 0.75

RECENT_ACTIVITY_SAMPLE = 10
RECENT_ACTIVITY_WINDOW_MS = 24 * 60 * 60 * 1000


class MemoryService:
    """
    Shared service for memory operations with consistent business logic.

    Construct once per process with already-initialized backends and pass
    it to every call path.
    """

    def __init__(
        self,
        store: RedisMemoryStore,
        index: QdrantSimilarityIndex,
        embeddings: EmbeddingProvider,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
    ):
        self.store = store
        self.index = index
        self.embeddings = embeddings
        self.cache_ttl_seconds = cache_ttl_seconds

    async def store_memory(
        self,
        user_id: str,
        content: str,
        memory_type: MemoryType = "general",
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """
        Store a new memory: durable record first, then its vector.

        Args:
            user_id: Owning user
            content: Text to remember (embedded for similarity search)
            memory_type: code, conversation, preference or general
            session_id: Optional interaction session to group under
            metadata: Optional tags, language, title, context, source

        Returns:
            The new memory id

        Raises:
            ProviderError: If the record write failed (nothing was stored)
            ConsistencyGapError: If the record was stored but the vector was not
        """
        memory = Memory(
            user_id=user_id,
            content=content,
            type=memory_type,
            session_id=session_id,
            metadata=MemoryMetadata.model_validate(metadata or {}),
        )

        memory_id = await self.store.put(memory)

        try:
            vector = await self.embeddings.embed(memory.content)
            await self.index.upsert(memory_id, vector, build_vector_metadata(memory))
        except ProviderError as e:
            logger.error(f"Memory {memory_id} stored without a vector; it is only reachable by recency: {e}")
            raise ConsistencyGapError(memory_id, "store_memory", e) from e

        logger.info(f"Stored {memory_type} memory {memory_id} for user {user_id}")
        return memory_id

    async def get_memory(self, memory_id: str) -> Memory | None:
        """Fetch a memory by id, or None if it does not exist."""
        return await self.store.get(memory_id)

    async def _vector_search(
        self,
        user_id: str,
        text: str,
        memory_type: MemoryType | None,
        limit: int,
        min_score: float,
    ) -> list[SearchResult]:
        """Similarity search enriched with full records from the attribute store."""
        vector = await self.embeddings.embed(text)
        matches = await self.index.query(
            vector,
            top_k=limit,
            filter={"userId": user_id, "type": memory_type},
            min_score=min_score,
        )

        results = []
        for match in matches:
            # The index may ignore the pushed-down threshold
            if match.score < min_score:
                continue
            memory = await self.store.get(match.id)
            if memory is None:
                logger.warning(f"Similarity index returned {match.id} but its record no longer exists")
                continue
            results.append(SearchResult(memory=memory, score=match.score, similarity=match.score))
        return results

    async def search_memories(
        self,
        user_id: str,
        query: str,
        memory_type: MemoryType | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        min_score: float = DEFAULT_MIN_SCORE,
        include_recent: bool = True,
    ) -> list[SearchResult]:
        """
        Search a user's memories by similarity to ``query``.

        Results come from the query cache when an identical request was
        answered within the cache TTL. Otherwise similarity matches at or
        above ``min_score`` are returned, topped up with the user's most
        recent memories (score 0.5) when ``include_recent`` is set.

        Args:
            user_id: User whose memories are searched
            query: Natural language query
            memory_type: Optional type filter for the similarity search
            limit: Maximum number of results
            min_score: Minimum similarity in [0, 1]
            include_recent: Backfill with recent memories when short of ``limit``

        Returns:
            Up to ``limit`` results, similarity matches first
        """
        options = {
            "type": memory_type,
            "limit": limit,
            "minScore": min_score,
            "includeRecent": include_recent,
        }
        cache_key = fingerprint(query, user_id, options)

        cached = await self.store.cache_get(cache_key)
        if cached is not None:
            logger.debug(f"Search cache hit for user {user_id}")
            return [SearchResult.model_validate(item) for item in cached]

        results = await self._vector_search(user_id, query, memory_type, limit, min_score)

        if include_recent and len(results) < limit:
            seen = {r.memory.id for r in results}
            for recent in await self.store.list_recent(user_id, limit):
                if len(results) >= limit:
                    break
                if recent.id in seen:
                    continue
                results.append(
                    SearchResult(memory=recent, score=RECENCY_FALLBACK_SCORE, similarity=RECENCY_FALLBACK_SCORE)
                )
                seen.add(recent.id)

        results = results[:limit]
        await self.store.cache_put(
            cache_key,
            [r.model_dump(mode="json", by_alias=True) for r in results],
            self.cache_ttl_seconds,
        )
        return results

    async def get_contextual_memory(
        self,
        user_id: str,
        current_query: str,
        session_id: str | None = None,
    ) -> ContextualMemory:
        """
        Build the context for a conversation turn.

        Combines the user's latest memories, the session's memories (in
        chronological order) and memories related to ``current_query``.
        """
        recent = await self.store.list_recent(user_id, CONTEXT_RECENT_COUNT)
        related = await self.search_memories(
            user_id,
            current_query,
            limit=CONTEXT_RELATED_COUNT,
            include_recent=False,
        )

        session_memories: list[Memory] = []
        if session_id:
            session_memories = [m for m in await self.store.list_by_session(session_id) if m.user_id == user_id]

        # First occurrence wins: recent entries shadow session entries
        merged: list[Memory] = []
        seen: set[str] = set()
        for memory in [*recent, *session_memories]:
            if memory.id not in seen:
                merged.append(memory)
                seen.add(memory.id)

        related_unique: list[SearchResult] = []
        seen_related: set[str] = set()
        for result in related:
            if result.memory.id not in seen_related:
                related_unique.append(result)
                seen_related.add(result.memory.id)

        # Summary counts the untruncated lists
        return ContextualMemory(
            recent=merged[:CONTEXT_MAX_RECENT],
            related=related_unique[:CONTEXT_MAX_RELATED],
            summary=self._summarize_context(merged, related_unique),
        )

    @staticmethod
    def _summarize_context(recent: list[Memory], related: list[SearchResult]) -> str:
        total = len(recent) + len(related)
        types = list(dict.fromkeys([m.type for m in recent] + [r.memory.type for r in related]))
        return f"Context: {total} memories available ({', '.join(types)})"

    async def list_user_memories(
        self,
        user_id: str,
        memory_type: MemoryType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Memory]:
        """A page of the user's memories, newest first, optionally of one type."""
        if memory_type:
            memories = await self.store.list_by_type(user_id, memory_type, limit + offset)
        else:
            memories = await self.store.list_by_user(user_id, limit + offset)
        return memories[offset : offset + limit]

    async def get_memory_stats(self, user_id: str) -> MemoryStats:
        """
        Approximate counts for a user.

        Totals come from the similarity index (capped, see
        ``QdrantSimilarityIndex.stats_for_user``); recent activity counts how
        many of the latest memories were created in the last 24 hours.
        """
        vector_stats = await self.index.stats_for_user(user_id)
        latest = await self.store.list_recent(user_id, RECENT_ACTIVITY_SAMPLE)

        day_ago = now_ms() - RECENT_ACTIVITY_WINDOW_MS
        return MemoryStats(
            total=vector_stats.total,
            by_type=vector_stats.by_type,
            recent_activity=sum(1 for m in latest if m.timestamp > day_ago),
        )

    async def delete_memory(self, memory_id: str) -> bool:
        """
        Delete a memory from both backends.

        Ownership is not checked here; callers verify ``memory.user_id``
        via ``get_memory`` first.

        Returns:
            True if the memory existed, False otherwise

        Raises:
            ConsistencyGapError: If the record was removed but the vector was not
        """
        deleted = await self.store.delete(memory_id)
        if not deleted:
            return False

        try:
            await self.index.delete(memory_id)
        except ProviderError as e:
            logger.error(f"Memory {memory_id} deleted but its vector remains: {e}")
            raise ConsistencyGapError(memory_id, "delete_memory", e) from e

        logger.info(f"Deleted memory {memory_id}")
        return True

    async def find_related_memories(self, memory_id: str, limit: int = 5) -> list[SearchResult]:
        """Memories of the same user and type that are similar to an existing memory."""
        memory = await self.store.get(memory_id)
        if memory is None:
            return []

        # One extra candidate because the memory matches itself
        results = await self._vector_search(memory.user_id, memory.content, memory.type, limit + 1, RELATED_MIN_SCORE)
        return [r for r in results if r.memory.id != memory_id][:limit]

    async def purge_user_memories(self, user_id: str) -> int:
        """
        Delete every memory of a user (account cleanup).

        Vector deletes are best-effort: failures are logged and skipped,
        leaving orphaned vectors that no search can resolve to a record.

        Returns:
            Number of records removed
        """
        memories = await self.store.list_by_user(user_id, limit=None)

        removed = 0
        for memory in memories:
            if not await self.store.delete(memory.id):
                continue
            removed += 1
            try:
                await self.index.delete(memory.id)
            except ProviderError as e:
                logger.warning(f"Vector cleanup failed for {memory.id} (non-fatal): {e}")

        logger.info(f"Purged {removed} memories for user {user_id}")
        return removed

"""
Tests for QdrantSimilarityIndex in in-memory mode.

Vectors come from the hash embedding provider, so identical text scores
~1.0 and unrelated text scores ~0.5 on the [0, 1] scale.
"""

from unittest.mock import MagicMock, patch

import pytest

from agent_memory.errors import ConfigurationError, ProviderError
from agent_memory.models.memory import Memory, MemoryMetadata
from agent_memory.storage.qdrant_index import (
    CONTENT_PREVIEW_CHARS,
    QdrantSimilarityIndex,
    _to_cosine_threshold,
    _to_unit_score,
    build_vector_metadata,
)


async def _add(index, embeddings, text: str, user_id: str = "u1", memory_type: str = "general") -> Memory:
    memory = Memory(user_id=user_id, content=text, type=memory_type)
    await index.upsert(memory.id, await embeddings.embed(text), build_vector_metadata(memory))
    return memory


class TestScoreMapping:
    def test_unit_score_bounds(self):
        assert _to_unit_score(1.0) == 1.0
        assert _to_unit_score(-1.0) == 0.0
        assert _to_unit_score(0.0) == 0.5

    def test_unit_score_clamps_rounding_noise(self):
        assert _to_unit_score(1.0000001) == 1.0

    def test_threshold_is_inverse(self):
        assert _to_unit_score(_to_cosine_threshold(0.7)) == pytest.approx(0.7)


class TestVectorMetadata:
    def test_flattens_memory(self):
        memory = Memory(
            user_id="u1",
            content="x",
            type="code",
            session_id="s1",
            metadata=MemoryMetadata(tags=["a", "b"], language="python", title="t"),
        )

        payload = build_vector_metadata(memory)

        assert payload == {
            "userId": "u1",
            "type": "code",
            "timestamp": memory.timestamp,
            "content": "x",
            "language": "python",
            "tags": "a,b",
            "sessionId": "s1",
            "title": "t",
        }

    def test_absent_optionals_become_empty_strings(self):
        payload = build_vector_metadata(Memory(user_id="u1", content="x"))

        assert payload["language"] == ""
        assert payload["tags"] == ""
        assert payload["sessionId"] == ""
        assert payload["title"] == ""

    def test_content_is_truncated(self):
        payload = build_vector_metadata(Memory(user_id="u1", content="a" * 2000))

        assert len(payload["content"]) == CONTENT_PREVIEW_CHARS


class TestQuery:
    async def test_identical_text_scores_near_one(self, index, embeddings):
        memory = await _add(index, embeddings, "pytest fixtures share setup")

        matches = await index.query(await embeddings.embed("pytest fixtures share setup"), 5, {"userId": "u1"})

        assert matches[0].id == memory.id
        assert matches[0].score >= 0.99
        assert matches[0].metadata["userId"] == "u1"

    async def test_filters_by_user(self, index, embeddings):
        await _add(index, embeddings, "shared text", user_id="u2")

        matches = await index.query(await embeddings.embed("shared text"), 5, {"userId": "u1"})

        assert matches == []

    async def test_filters_by_type(self, index, embeddings):
        code = await _add(index, embeddings, "same words", memory_type="code")
        await _add(index, embeddings, "same words", memory_type="general")

        matches = await index.query(await embeddings.embed("same words"), 5, {"userId": "u1", "type": "code"})

        assert [m.id for m in matches] == [code.id]

    async def test_none_filter_values_are_ignored(self, index, embeddings):
        await _add(index, embeddings, "one", memory_type="code")
        await _add(index, embeddings, "two", memory_type="general")

        matches = await index.query(await embeddings.embed("one"), 5, {"userId": "u1", "type": None})

        assert len(matches) == 2

    async def test_min_score_excludes_unrelated(self, index, embeddings):
        await _add(index, embeddings, "completely different words")
        match = await _add(index, embeddings, "the query itself")

        matches = await index.query(await embeddings.embed("the query itself"), 5, {"userId": "u1"}, min_score=0.9)

        assert [m.id for m in matches] == [match.id]

    async def test_top_k_limits_results(self, index, embeddings):
        for i in range(5):
            await _add(index, embeddings, f"memory {i}")

        matches = await index.query(await embeddings.embed("memory 0"), 2, {"userId": "u1"})

        assert len(matches) == 2

    async def test_results_ordered_by_score(self, index, embeddings):
        for i in range(4):
            await _add(index, embeddings, f"memory {i}")

        matches = await index.query(await embeddings.embed("memory 2"), 4, {"userId": "u1"})

        scores = [m.score for m in matches]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)


class TestUpsertAndDelete:
    async def test_upsert_replaces_point(self, index, embeddings):
        memory = await _add(index, embeddings, "first")
        await index.upsert(memory.id, await embeddings.embed("second"), build_vector_metadata(memory))

        matches = await index.query(await embeddings.embed("second"), 5, {"userId": "u1"})

        assert len(matches) == 1
        assert matches[0].score >= 0.99

    async def test_upsert_wrong_dimension_raises(self, index):
        with pytest.raises(ProviderError, match="dimension mismatch"):
            await index.upsert("00000000-0000-0000-0000-000000000001", [0.1, 0.2], {})

    async def test_delete_removes_point(self, index, embeddings):
        memory = await _add(index, embeddings, "to delete")

        await index.delete(memory.id)

        assert await index.query(await embeddings.embed("to delete"), 5, {"userId": "u1"}) == []

    async def test_delete_missing_point_is_silent(self, index):
        await index.delete("00000000-0000-0000-0000-0000000000ff")


class TestStats:
    async def test_counts_per_type(self, index, embeddings):
        await _add(index, embeddings, "a", memory_type="code")
        await _add(index, embeddings, "b", memory_type="code")
        await _add(index, embeddings, "c", memory_type="general")
        await _add(index, embeddings, "d", user_id="u2")

        stats = await index.stats_for_user("u1")

        assert stats.total == 3
        assert stats.by_type == {"code": 2, "general": 1}

    async def test_empty_user(self, index):
        stats = await index.stats_for_user("nobody")

        assert stats.total == 0
        assert stats.by_type == {}


class TestLifecycle:
    async def test_uninitialized_index_raises(self):
        index = QdrantSimilarityIndex(vector_size=8)

        with pytest.raises(ProviderError):
            await index.query([0.0] * 8, 1, {})

    async def test_existing_collection_with_wrong_size_raises(self):
        client = MagicMock()
        client.collection_exists.return_value = True
        client.get_collection.return_value.config.params.vectors.size = 384

        with patch("agent_memory.storage.qdrant_index.QdrantClient", return_value=client):
            index = QdrantSimilarityIndex(vector_size=1536, url="http://qdrant:6333")
            with pytest.raises(ConfigurationError, match="384"):
                await index.initialize()

    async def test_existing_collection_with_matching_size(self):
        client = MagicMock()
        client.collection_exists.return_value = True
        client.get_collection.return_value.config.params.vectors.size = 1536

        with patch("agent_memory.storage.qdrant_index.QdrantClient", return_value=client):
            index = QdrantSimilarityIndex(vector_size=1536, url="http://qdrant:6333")
            await index.initialize()

        client.create_collection.assert_not_called()
        assert client.create_payload_index.call_count == 2

    async def test_connection_failure_raises_provider_error(self):
        with patch("agent_memory.storage.qdrant_index.QdrantClient", side_effect=RuntimeError("refused")):
            index = QdrantSimilarityIndex(vector_size=8, url="http://qdrant:6333")
            with pytest.raises(ProviderError) as exc_info:
                await index.initialize()

        assert exc_info.value.operation == "initialize"

    async def test_close_is_idempotent(self, index):
        await index.close()
        await index.close()

        assert index.client is None

import os
import sys
import uuid
from collections.abc import AsyncGenerator

import pytest
from fakeredis import FakeAsyncRedis, FakeServer

# Keep tests hermetic: never pick up live credentials from the environment
for _var in ("MEMORY_REDIS_URL", "MEMORY_QDRANT_URL", "MEMORY_EMBEDDING_API_KEY", "OPENAI_API_KEY"):
    os.environ.pop(_var, None)

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

from agent_memory.embeddings import HashEmbeddingProvider  # noqa: E402
from agent_memory.services.memory_service import MemoryService  # noqa: E402
from agent_memory.storage.qdrant_index import QdrantSimilarityIndex  # noqa: E402
from agent_memory.storage.redis_store import RedisMemoryStore  # noqa: E402

# Small enough to be fast, large enough that unrelated hash vectors stay near cosine 0
TEST_VECTOR_SIZE = 256


@pytest.fixture
async def redis_client() -> AsyncGenerator[FakeAsyncRedis, None]:
    """Isolated in-process Redis double."""
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
async def store(redis_client) -> AsyncGenerator[RedisMemoryStore, None]:
    """Initialized attribute store over fakeredis."""
    memory_store = RedisMemoryStore(client=redis_client)
    await memory_store.initialize()
    yield memory_store
    await memory_store.close()


@pytest.fixture
async def index() -> AsyncGenerator[QdrantSimilarityIndex, None]:
    """Initialized similarity index in Qdrant :memory: mode."""
    similarity_index = QdrantSimilarityIndex(
        vector_size=TEST_VECTOR_SIZE,
        collection_name=f"test_{uuid.uuid4().hex[:8]}",
    )
    await similarity_index.initialize()
    yield similarity_index
    await similarity_index.close()


@pytest.fixture
def embeddings() -> HashEmbeddingProvider:
    return HashEmbeddingProvider(dimensions=TEST_VECTOR_SIZE)


@pytest.fixture
def memory_service(store, index, embeddings) -> MemoryService:
    """MemoryService wired to fakeredis, in-memory Qdrant and hash embeddings."""
    return MemoryService(store, index, embeddings)

"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from agent_memory.config import (
    DEFAULT_EMBEDDING_DIMENSIONS,
    EmbeddingSettings,
    QdrantSettings,
    RedisSettings,
    ServerSettings,
    Settings,
)


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch, tmp_path):
    # Settings read .env from the working directory
    monkeypatch.chdir(tmp_path)


class TestDefaults:
    def test_defaults(self):
        settings = Settings()

        assert settings.redis.url is None
        assert settings.redis.cache_ttl_seconds == 1800
        assert settings.qdrant.url is None
        assert settings.qdrant.collection_name == "memories"
        assert settings.embedding.api_key is None
        assert settings.embedding.model == "text-embedding-3-small"
        assert settings.embedding.dimensions == DEFAULT_EMBEDDING_DIMENSIONS
        assert settings.server.transport == "http"
        assert settings.server.port == 8000


class TestEnvironment:
    def test_redis_prefix(self, monkeypatch):
        monkeypatch.setenv("MEMORY_REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("MEMORY_REDIS_CACHE_TTL_SECONDS", "60")

        settings = RedisSettings()

        assert settings.url == "redis://cache:6379/2"
        assert settings.cache_ttl_seconds == 60

    def test_qdrant_api_key_is_secret(self, monkeypatch):
        monkeypatch.setenv("MEMORY_QDRANT_URL", "http://qdrant:6333")
        monkeypatch.setenv("MEMORY_QDRANT_API_KEY", "s3cret")

        settings = QdrantSettings()

        assert settings.api_key.get_secret_value() == "s3cret"
        assert "s3cret" not in repr(settings)

    def test_openai_key_fallback(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-fallback")

        assert EmbeddingSettings().api_key.get_secret_value() == "sk-fallback"

    def test_prefixed_key_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-fallback")
        monkeypatch.setenv("MEMORY_EMBEDDING_API_KEY", "sk-primary")

        assert EmbeddingSettings().api_key.get_secret_value() == "sk-primary"

    def test_server_transport(self, monkeypatch):
        monkeypatch.setenv("MEMORY_SERVER_TRANSPORT", "stdio")

        assert ServerSettings().transport == "stdio"

    def test_groups_load_through_settings(self, monkeypatch):
        monkeypatch.setenv("MEMORY_EMBEDDING_DIMENSIONS", "512")

        assert Settings().embedding.dimensions == 512


class TestValidation:
    def test_invalid_transport(self, monkeypatch):
        monkeypatch.setenv("MEMORY_SERVER_TRANSPORT", "carrier-pigeon")

        with pytest.raises(ValidationError):
            ServerSettings()

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            RedisSettings(cache_ttl_seconds=0)

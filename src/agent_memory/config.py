"""Configuration for the agent memory service.

Settings are grouped per backend and loaded from environment variables
(and an optional ``.env`` file) when a ``Settings`` object is built.
The service reads them once at construction time.
"""

from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_DIMENSIONS = 1536


class RedisSettings(BaseSettings):
    """Attribute store (Redis) connection settings."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_REDIS_", env_file=".env", extra="ignore")

    url: str | None = Field(default=None, description="Redis connection URL, e.g. redis://localhost:6379/0")
    key_prefix: str = Field(default="", description="Namespace prepended to every key")
    max_connections: int = Field(default=10, ge=1, le=1000)
    cache_ttl_seconds: int = Field(default=1800, ge=1, description="TTL for cached search results")


class QdrantSettings(BaseSettings):
    """Similarity index (Qdrant) settings.

    Without a URL the index runs in Qdrant's in-process ``:memory:`` mode.
    """

    model_config = SettingsConfigDict(env_prefix="MEMORY_QDRANT_", env_file=".env", extra="ignore")

    url: str | None = Field(default=None, description="Qdrant server URL, e.g. http://localhost:6333")
    api_key: SecretStr | None = None
    collection_name: str = "memories"


class EmbeddingSettings(BaseSettings):
    """Embedding provider settings.

    Without an API key a deterministic hash-based stub is used.
    """

    model_config = SettingsConfigDict(env_prefix="MEMORY_EMBEDDING_", env_file=".env", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("MEMORY_EMBEDDING_API_KEY", "OPENAI_API_KEY", "api_key"),
    )
    base_url: str | None = None
    model: str = DEFAULT_EMBEDDING_MODEL
    dimensions: int = Field(default=DEFAULT_EMBEDDING_DIMENSIONS, ge=1, le=8192)


class ServerSettings(BaseSettings):
    """MCP server transport settings."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_SERVER_", env_file=".env", extra="ignore")

    transport: Literal["stdio", "http"] = "http"
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)


class Settings(BaseSettings):
    """Top-level settings aggregating every backend group."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    redis: RedisSettings = Field(default_factory=RedisSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

"""Embedding providers.

Two interchangeable implementations of ``EmbeddingProvider``:

- ``OpenAIEmbeddingProvider`` calls the OpenAI embeddings API.
- ``HashEmbeddingProvider`` derives a deterministic unit vector from a
  SHA-256 digest of the text. Used when no API key is configured so the
  rest of the service behaves identically without credentials.

The provider is chosen once by ``create_embedding_provider``.
"""

import hashlib
import logging
from abc import ABC, abstractmethod

import numpy as np
from openai import AsyncOpenAI

from .config import EmbeddingSettings
from .errors import ProviderError

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Maps text to a fixed-length numeric vector."""

    def __init__(self, model: str, dimensions: int):
        self.model = model
        self.dimensions = dimensions

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``."""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Live provider backed by the OpenAI embeddings endpoint.

    Supports the text-embedding-3 family, which accepts an explicit
    ``dimensions`` argument (1536 by default for text-embedding-3-small).
    """

    def __init__(self, api_key: str, model: str, dimensions: int, base_url: str | None = None):
        super().__init__(model, dimensions)
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        logger.info(f"OpenAI embedding provider initialized: model={model}, dimensions={dimensions}")

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._client.embeddings.create(
                model=self.model,
                input=text,
                dimensions=self.dimensions,
            )
        except Exception as e:
            logger.error(f"Failed to generate embedding: {e.__class__.__name__}: {e}")
            raise ProviderError("embed", e) from e

        embedding = response.data[0].embedding
        if len(embedding) != self.dimensions:
            raise ProviderError(
                "embed",
                f"embedding dimension mismatch: expected {self.dimensions}, got {len(embedding)}",
            )
        return embedding


class HashEmbeddingProvider(EmbeddingProvider):
    """Deterministic stub: identical text always yields the identical vector.

    Vectors carry no semantic meaning; unrelated texts land near cosine 0,
    identical texts at cosine 1.
    """

    def __init__(self, model: str = "sha256-stub", dimensions: int = 1536):
        super().__init__(model, dimensions)

    def _vector(self, text: str) -> list[float]:
        # Each 32-byte block of sha256(text || counter) yields 32 signed bytes
        raw = bytearray()
        counter = 0
        while len(raw) < self.dimensions:
            raw.extend(hashlib.sha256(f"{text}\x00{counter}".encode("utf-8")).digest())
            counter += 1
        values = np.frombuffer(bytes(raw[: self.dimensions]), dtype=np.int8).astype(np.float64)
        norm = np.linalg.norm(values)
        if norm == 0.0:
            values[0] = 1.0
            norm = 1.0
        return (values / norm).tolist()

    async def embed(self, text: str) -> list[float]:
        return self._vector(text)


def create_embedding_provider(settings: EmbeddingSettings) -> EmbeddingProvider:
    """Select the live provider when an API key is configured, the stub otherwise."""
    if settings.api_key is not None and settings.api_key.get_secret_value():
        return OpenAIEmbeddingProvider(
            api_key=settings.api_key.get_secret_value(),
            model=settings.model,
            dimensions=settings.dimensions,
            base_url=settings.base_url,
        )

    logger.info("No embedding API key configured, using deterministic hash embeddings")
    return HashEmbeddingProvider(dimensions=settings.dimensions)

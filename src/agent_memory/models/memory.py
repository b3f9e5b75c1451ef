"""Memory-related data models.

Pydantic v2 models for stored memories and the transient results built
from them. Python attributes are snake_case; the serialised form uses the
camelCase names the tool layer and the persisted records share
(``userId``, ``sessionId``, ``byType`` ...).
"""

import json
import time
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .validators import MemoryType, NonNegativeInt, Tags, UnitFloat


def new_memory_id() -> str:
    """Return a fresh, never-reused memory identifier."""
    return str(uuid.uuid4())


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MemoryMetadata(_CamelModel):
    """Descriptive attributes attached to a memory."""

    # Creation time in epoch ms; stamped by the attribute store, never mutated after
    timestamp: int = Field(default_factory=now_ms)
    tags: Tags = None
    language: str | None = None
    title: str | None = None
    context: str | None = None
    source: str | None = None


class Memory(_CamelModel):
    """A single stored memory owned by one user."""

    id: str = Field(default_factory=new_memory_id)
    user_id: str = Field(min_length=1)
    session_id: str | None = None
    type: MemoryType = "general"
    content: str = Field(min_length=1)
    metadata: MemoryMetadata = Field(default_factory=MemoryMetadata)

    @property
    def timestamp(self) -> int:
        return self.metadata.timestamp

    def to_redis_hash(self) -> dict[str, str]:
        """Flatten to the string mapping stored under ``memory:{id}``.

        Redis hashes only hold flat string fields, so the nested metadata is
        JSON-encoded into a single field and absent optionals are omitted.
        """
        record = {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "content": self.content,
            "metadata": self.metadata.model_dump_json(by_alias=True, exclude_none=True),
        }
        if self.session_id:
            record["sessionId"] = self.session_id
        return record

    @classmethod
    def from_redis_hash(cls, data: dict[str, Any]) -> "Memory":
        """Rebuild a Memory from a ``memory:{id}`` hash."""
        raw_metadata = data.get("metadata") or "{}"
        metadata = json.loads(raw_metadata) if isinstance(raw_metadata, str) else raw_metadata
        return cls(
            id=data["id"],
            user_id=data["userId"],
            session_id=data.get("sessionId") or None,
            type=data.get("type", "general"),
            content=data["content"],
            metadata=MemoryMetadata.model_validate(metadata),
        )


class SearchResult(_CamelModel):
    """A memory matched by a search, with its match quality in [0, 1]."""

    memory: Memory
    score: UnitFloat
    similarity: UnitFloat


class ContextualMemory(_CamelModel):
    """Request-scoped bundle of recent and related memories. Never persisted."""

    recent: list[Memory] = Field(default_factory=list)
    related: list[SearchResult] = Field(default_factory=list)
    summary: str = ""


class MemoryStats(_CamelModel):
    """Approximate per-user memory statistics."""

    total: NonNegativeInt = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    recent_activity: NonNegativeInt = 0

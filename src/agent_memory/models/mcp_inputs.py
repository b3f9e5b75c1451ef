"""MCP tool input models.

Pydantic models holding the validation for every tool in
``mcp_server.py``. Each tool validates its inputs by constructing the
corresponding model, so range limits and enum checks
live here as declarative constraints.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from .validators import MemoryId, MemoryType, Tags, UnitFloat, UserId


class StoreMemoryParams(BaseModel):
    """Validated input for the ``store_memory`` MCP tool."""

    content: str = Field(min_length=1)
    user_id: UserId
    type: MemoryType = "general"
    session_id: str | None = None
    language: str | None = None
    tags: Tags = None
    title: str | None = None
    context: str | None = None


class SearchMemoryParams(BaseModel):
    """Validated input for the ``search_memory`` MCP tool."""

    query: str = Field(min_length=1)
    user_id: UserId
    type: MemoryType | None = None
    limit: int = Field(default=10, ge=1, le=50)
    min_score: UnitFloat = 0.7


class GetContextParams(BaseModel):
    """Validated input for the ``get_context`` MCP tool."""

    user_id: UserId
    current_query: str = Field(min_length=1)
    session_id: str | None = None


class ListMemoriesParams(BaseModel):
    """Validated input for the ``list_memories`` MCP tool."""

    user_id: UserId
    type: MemoryType | None = None
    limit: int = Field(default=20, ge=1, le=100)
    show_stats: bool = True


class DeleteMemoryParams(BaseModel):
    """Validated input for the ``delete_memory`` MCP tool."""

    memory_id: MemoryId
    user_id: UserId

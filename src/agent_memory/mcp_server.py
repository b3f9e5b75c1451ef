#!/usr/bin/env python3
"""FastMCP server exposing the memory tools to agents.

Each tool validates its arguments through a Pydantic input model, calls
the MemoryService held in the server lifespan context and renders the
outcome as plain text. Failures are reported as text too, never as
protocol errors.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from .config import Settings
from .errors import MemoryEngineError
from .factory import close_memory_service, create_memory_service
from .models.mcp_inputs import (
    DeleteMemoryParams,
    GetContextParams,
    ListMemoriesParams,
    SearchMemoryParams,
    StoreMemoryParams,
)
from .models.memory import Memory
from .models.validators import MemoryType
from .services.memory_service import MemoryService

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class MCPServerContext:
    """Application context for the MCP server."""

    memory_service: MemoryService


@asynccontextmanager
async def mcp_server_lifespan(server: FastMCP) -> AsyncIterator[MCPServerContext]:
    """Build the memory service once at startup and release it on shutdown."""
    memory_service = await create_memory_service()
    try:
        yield MCPServerContext(memory_service=memory_service)
    finally:
        logger.info("Shutting down agent memory service components...")
        await close_memory_service(memory_service)


mcp = FastMCP("Agent Memory Service", lifespan=mcp_server_lifespan)


def _service(ctx: Context) -> MemoryService:
    return ctx.request_context.lifespan_context.memory_service


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _format_time(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _format_tags(memory: Memory) -> str:
    return ", ".join(memory.metadata.tags) if memory.metadata.tags else "None"


# =============================================================================
# CORE MEMORY OPERATIONS
# =============================================================================


@mcp.tool()
async def store_memory(
    content: str,
    userId: str,  # noqa: N803
    ctx: Context,
    type: MemoryType = "general",
    sessionId: str | None = None,  # noqa: N803
    language: str | None = None,
    tags: list[str] | str | None = None,
    title: str | None = None,
    context: str | None = None,
) -> str:
    """Store content in persistent memory with semantic search capabilities.

    Supports code snippets, conversations, preferences, and general knowledge.

    Args:
        content: The content to store in memory
        userId: User identifier for memory ownership
        type: Type of content: "code", "conversation", "preference" or "general"
        sessionId: Optional session identifier for grouping related memories
        language: Programming language (for code type)
        tags: Tags for categorization: ["tag1", "tag2"] or "tag1,tag2"
        title: Optional title or summary
        context: Additional context or explanation
    """
    try:
        params = StoreMemoryParams(
            content=content,
            user_id=userId,
            type=type,
            session_id=sessionId,
            language=language,
            tags=tags,
            title=title,
            context=context,
        )
        memory_id = await _service(ctx).store_memory(
            params.user_id,
            params.content,
            memory_type=params.type,
            session_id=params.session_id,
            metadata={
                "language": params.language,
                "tags": params.tags,
                "title": params.title,
                "context": params.context,
            },
        )
    except (ValidationError, MemoryEngineError) as e:
        return f"Error storing memory: {e}"

    return (
        f"Successfully stored memory with ID: {memory_id}\n"
        f"Type: {params.type}\n"
        f"Content length: {len(params.content)} characters"
    )


@mcp.tool()
async def search_memory(
    query: str,
    userId: str,  # noqa: N803
    ctx: Context,
    type: MemoryType | None = None,
    limit: int = 10,
    minScore: float = 0.7,  # noqa: N803
) -> str:
    """Search stored memories by semantic similarity.

    Returns relevant memories based on content meaning, not just keywords.

    Args:
        query: Search query to find relevant memories
        userId: User identifier to search within the user's memories
        type: Filter by memory type
        limit: Maximum number of results to return (1-50)
        minScore: Minimum similarity score (0-1)
    """
    try:
        params = SearchMemoryParams(query=query, user_id=userId, type=type, limit=limit, min_score=minScore)
        results = await _service(ctx).search_memories(
            params.user_id,
            params.query,
            memory_type=params.type,
            limit=params.limit,
            min_score=params.min_score,
        )
    except (ValidationError, MemoryEngineError) as e:
        return f"Error searching memories: {e}"

    if not results:
        return f'No memories found for query: "{params.query}"'

    formatted = "\n---\n".join(
        f"**Memory ID**: {r.memory.id}\n"
        f"**Type**: {r.memory.type}\n"
        f"**Similarity**: {r.similarity * 100:.1f}%\n"
        f"**Content**: {_preview(r.memory.content, 200)}\n"
        f"**Tags**: {_format_tags(r.memory)}\n"
        f"**Created**: {_format_time(r.memory.timestamp)}\n"
        for r in results
    )
    return f'Found {len(results)} relevant memories for "{params.query}":\n\n{formatted}'


@mcp.tool()
async def get_context(
    userId: str,  # noqa: N803
    currentQuery: str,  # noqa: N803
    ctx: Context,
    sessionId: str | None = None,  # noqa: N803
) -> str:
    """Retrieve recent interactions and related content for the current conversation.

    Args:
        userId: User identifier
        currentQuery: Current conversation query or context
        sessionId: Current session identifier
    """
    try:
        params = GetContextParams(user_id=userId, current_query=currentQuery, session_id=sessionId)
        context = await _service(ctx).get_contextual_memory(
            params.user_id,
            params.current_query,
            session_id=params.session_id,
        )
    except (ValidationError, MemoryEngineError) as e:
        return f"Error getting context: {e}"

    if context.recent:
        recent_section = f"**Recent Memories** ({len(context.recent)}):\n" + "\n".join(
            f"- [{m.type}] {_preview(m.content, 100)}" for m in context.recent
        )
    else:
        recent_section = "No recent memories found."

    if context.related:
        related_section = f"\n\n**Related Memories** ({len(context.related)}):\n" + "\n".join(
            f"- [{r.memory.type}] {r.similarity * 100:.1f}% - {_preview(r.memory.content, 100)}" for r in context.related
        )
    else:
        related_section = "\n\nNo related memories found."

    return f"{context.summary}\n\n{recent_section}{related_section}"


@mcp.tool()
async def list_memories(
    userId: str,  # noqa: N803
    ctx: Context,
    type: MemoryType | None = None,
    limit: int = 20,
    showStats: bool = True,  # noqa: N803
) -> str:
    """List stored memories with optional filtering by type, plus statistics.

    Args:
        userId: User identifier
        type: Filter by memory type
        limit: Maximum number of memories to return (1-100)
        showStats: Include memory statistics
    """
    try:
        params = ListMemoriesParams(user_id=userId, type=type, limit=limit, show_stats=showStats)
        memory_service = _service(ctx)
        memories = await memory_service.list_user_memories(params.user_id, memory_type=params.type, limit=params.limit)
        stats = await memory_service.get_memory_stats(params.user_id) if params.show_stats else None
    except (ValidationError, MemoryEngineError) as e:
        return f"Error listing memories: {e}"

    result = ""
    if stats is not None:
        by_type = ", ".join(f"{t}: {c}" for t, c in stats.by_type.items())
        result += (
            "**Memory Statistics**\n"
            f"Total memories: {stats.total}\n"
            f"Recent activity (24h): {stats.recent_activity}\n"
            f"By type: {by_type}\n\n"
        )

    if not memories:
        result += f"No memories found of type: {params.type}" if params.type else "No memories found for this user."
        return result

    header = f"**Memories** ({params.type}):" if params.type else "**Memories**:"
    result += f"{header}\n\n" + "\n---\n".join(
        f"**{m.id}** [{m.type}]\n"
        f"{_preview(m.content, 150)}\n"
        f"Tags: {_format_tags(m)} | Created: {_format_time(m.timestamp)[:10]}\n"
        for m in memories
    )
    return result


@mcp.tool()
async def delete_memory(
    memoryId: str,  # noqa: N803
    userId: str,  # noqa: N803
    ctx: Context,
) -> str:
    """Delete a specific memory by ID from both the record store and the vector index.

    Only the owning user may delete a memory.

    Args:
        memoryId: ID of the memory to delete
        userId: User identifier for ownership verification
    """
    try:
        params = DeleteMemoryParams(memory_id=memoryId, user_id=userId)
        memory_service = _service(ctx)

        memory = await memory_service.get_memory(params.memory_id)
        if memory is None:
            return f"Memory not found: {params.memory_id}"
        if memory.user_id != params.user_id:
            return f"Access denied: Memory {params.memory_id} does not belong to user {params.user_id}"

        deleted = await memory_service.delete_memory(params.memory_id)
    except (ValidationError, MemoryEngineError) as e:
        return f"Error deleting memory: {e}"

    if deleted:
        return f"Successfully deleted memory: {params.memory_id}"
    return f"Failed to delete memory: {params.memory_id}"


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main():
    """Main entry point for the agent memory MCP server."""
    server_settings = Settings().server

    if server_settings.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        logger.info(f"Starting agent memory MCP server on {server_settings.host}:{server_settings.port}")
        mcp.run(transport="http", host=server_settings.host, port=server_settings.port, stateless_http=True)


if __name__ == "__main__":
    main()

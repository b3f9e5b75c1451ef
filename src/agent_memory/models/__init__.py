"""Data models for memories, search results and tool inputs."""

from .memory import ContextualMemory, Memory, MemoryMetadata, MemoryStats, SearchResult

__all__ = ["ContextualMemory", "Memory", "MemoryMetadata", "MemoryStats", "SearchResult"]

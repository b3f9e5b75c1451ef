"""Agent memory service: durable, searchable memories for AI agents."""

__version__ = "0.1.0"

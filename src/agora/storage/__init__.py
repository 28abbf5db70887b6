"""
Collaborator stores: messages, agent configuration and knowledge.
"""

from typing import Optional

from ..core.config import settings
from .base import AgentConfigStore, KnowledgeChunk, KnowledgeStore, MessageStore
from .memory import InMemoryAgentConfigStore, InMemoryKnowledgeStore, InMemoryMessageStore
from .qdrant import QdrantKnowledgeStore


def get_knowledge_store(vector_db_type: Optional[str] = None) -> KnowledgeStore:
    """Build the configured knowledge store."""
    vector_db_type = (vector_db_type or settings.vector_db_type).lower()
    if vector_db_type == "qdrant":
        return QdrantKnowledgeStore()
    if vector_db_type == "memory":
        return InMemoryKnowledgeStore()
    raise ValueError(f"Unsupported vector database: {vector_db_type}")


__all__ = [
    "AgentConfigStore",
    "KnowledgeChunk",
    "KnowledgeStore",
    "MessageStore",
    "InMemoryAgentConfigStore",
    "InMemoryKnowledgeStore",
    "InMemoryMessageStore",
    "QdrantKnowledgeStore",
    "get_knowledge_store",
]

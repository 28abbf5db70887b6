"""
External collaborator interfaces consumed by the orchestration pipeline.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..agents.base import AgentConfig, AgentRole, ConversationMessage


class KnowledgeChunk(BaseModel):
    """A chunk of an agent's knowledge document as returned by the store."""

    id: str  # document id
    agent_id: str
    title: str = ""
    content: str
    file_name: Optional[str] = None
    chunk_index: int = 0
    similarity: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MessageStore(ABC):
    """Conversation message persistence."""

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[ConversationMessage]:
        pass

    @abstractmethod
    async def recent_messages(
        self,
        scope_id: str,
        limit: int = 50,
        since: Optional[datetime] = None
    ) -> List[ConversationMessage]:
        """Most recent messages of a scope, returned oldest first."""
        pass

    @abstractmethod
    async def insert_message(self, message: ConversationMessage) -> ConversationMessage:
        pass


class AgentConfigStore(ABC):
    """Agent configurations, prompt templates and participant activity."""

    @abstractmethod
    async def find_scoped_agent(self, role: AgentRole, scope_id: str) -> Optional[AgentConfig]:
        """Active agent configured locally for a scope."""
        pass

    @abstractmethod
    async def find_default_agent(self, role: AgentRole) -> Optional[AgentConfig]:
        """Active global default agent for a role."""
        pass

    @abstractmethod
    async def get_agent(self, agent_id: str) -> Optional[AgentConfig]:
        pass

    @abstractmethod
    async def get_prompt_template(self, name: str, scope_id: Optional[str] = None) -> Optional[str]:
        """Template stored under exactly this scope; None is the global scope."""
        pass

    @abstractmethod
    async def active_participant_count(self, scope_id: str, since: datetime) -> Optional[int]:
        pass

    @abstractmethod
    async def recent_contributions(self, scope_id: str, limit: int = 15) -> List[str]:
        """Structured contributions (issues, positions, arguments) mapped for a scope."""
        pass

    @abstractmethod
    async def contribution_count(self, scope_id: str) -> int:
        pass


class KnowledgeStore(ABC):
    """Per-agent document knowledge with vector and text search."""

    @abstractmethod
    async def match_chunks(
        self,
        agent_id: str,
        embedding: List[float],
        threshold: float,
        limit: int
    ) -> List[KnowledgeChunk]:
        """Chunks with similarity above ``threshold``, best first."""
        pass

    @abstractmethod
    async def text_search(self, agent_id: str, query: str, limit: int) -> List[KnowledgeChunk]:
        """Plain substring search over titles and content."""
        pass

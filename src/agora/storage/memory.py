"""
In-memory collaborator stores, used for local runs and tests.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..agents.base import AgentConfig, AgentRole, ConversationMessage
from ..core.logging import logger
from .base import AgentConfigStore, KnowledgeChunk, KnowledgeStore, MessageStore


class InMemoryMessageStore(MessageStore):
    """Messages kept in insertion order per scope."""

    def __init__(self):
        self._messages: Dict[str, ConversationMessage] = {}

    async def get_message(self, message_id: str) -> Optional[ConversationMessage]:
        return self._messages.get(message_id)

    async def recent_messages(
        self,
        scope_id: str,
        limit: int = 50,
        since: Optional[datetime] = None
    ) -> List[ConversationMessage]:
        messages = [
            m for m in self._messages.values()
            if m.scope_id == scope_id and (since is None or m.created_at >= since)
        ]
        messages.sort(key=lambda m: m.created_at)
        return messages[-limit:] if limit else messages

    async def insert_message(self, message: ConversationMessage) -> ConversationMessage:
        self._messages[message.id] = message
        return message

    def __len__(self) -> int:
        return len(self._messages)


class InMemoryAgentConfigStore(AgentConfigStore):
    """Agent configs, templates and activity counters held in dicts."""

    def __init__(self, agents: Optional[List[AgentConfig]] = None):
        self._agents: Dict[str, AgentConfig] = {}
        self._templates: Dict[Tuple[str, Optional[str]], str] = {}
        self._participants: Dict[str, List[Tuple[str, datetime]]] = defaultdict(list)
        self._contributions: Dict[str, List[str]] = defaultdict(list)
        for agent in agents or []:
            self.add_agent(agent)

    def add_agent(self, agent: AgentConfig) -> AgentConfig:
        self._agents[agent.id] = agent
        return agent

    def add_template(self, name: str, content: str, scope_id: Optional[str] = None) -> None:
        self._templates[(name, scope_id)] = content

    def record_participant_activity(self, scope_id: str, participant_id: str, at: Optional[datetime] = None) -> None:
        self._participants[scope_id].append((participant_id, at or datetime.utcnow()))

    def add_contribution(self, scope_id: str, text: str) -> None:
        self._contributions[scope_id].append(text)

    async def find_scoped_agent(self, role: AgentRole, scope_id: str) -> Optional[AgentConfig]:
        candidates = [
            a for a in self._agents.values()
            if a.role == role and a.scope_id == scope_id and a.is_active
        ]
        candidates.sort(key=lambda a: not a.is_default)
        return candidates[0] if candidates else None

    async def find_default_agent(self, role: AgentRole) -> Optional[AgentConfig]:
        for agent in self._agents.values():
            if agent.role == role and agent.is_global and agent.is_default and agent.is_active:
                return agent
        return None

    async def get_agent(self, agent_id: str) -> Optional[AgentConfig]:
        return self._agents.get(agent_id)

    async def get_prompt_template(self, name: str, scope_id: Optional[str] = None) -> Optional[str]:
        return self._templates.get((name, scope_id))

    async def active_participant_count(self, scope_id: str, since: datetime) -> Optional[int]:
        active = {pid for pid, at in self._participants.get(scope_id, []) if at >= since}
        return len(active) if active else None

    async def recent_contributions(self, scope_id: str, limit: int = 15) -> List[str]:
        return self._contributions.get(scope_id, [])[-limit:]

    async def contribution_count(self, scope_id: str) -> int:
        return len(self._contributions.get(scope_id, []))


class InMemoryKnowledgeStore(KnowledgeStore):
    """Brute-force cosine similarity over stored chunk embeddings."""

    def __init__(self):
        self._chunks: List[Tuple[KnowledgeChunk, np.ndarray]] = []

    def add_chunk(self, chunk: KnowledgeChunk, embedding: List[float]) -> None:
        self._chunks.append((chunk, np.asarray(embedding, dtype=float)))

    async def match_chunks(
        self,
        agent_id: str,
        embedding: List[float],
        threshold: float,
        limit: int
    ) -> List[KnowledgeChunk]:
        query = np.asarray(embedding, dtype=float)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            logger.warning("Zero-length query embedding, no matches")
            return []

        matches = []
        for chunk, vector in self._chunks:
            if chunk.agent_id != agent_id or vector.shape != query.shape:
                continue
            norm = np.linalg.norm(vector)
            if norm == 0:
                continue
            similarity = float(np.dot(query, vector) / (query_norm * norm))
            if similarity > threshold:
                matches.append(chunk.model_copy(update={"similarity": similarity}))

        matches.sort(key=lambda c: c.similarity, reverse=True)
        return matches[:limit]

    async def text_search(self, agent_id: str, query: str, limit: int) -> List[KnowledgeChunk]:
        needle = query.lower().strip()
        if not needle:
            return []
        terms = {word for word in needle.split() if len(word) > 2}

        scored = []
        for chunk, _ in self._chunks:
            if chunk.agent_id != agent_id:
                continue
            haystack = f"{chunk.title}\n{chunk.content}".lower()
            if needle in haystack:
                score = len(terms) + 1
            else:
                score = sum(1 for term in terms if term in haystack)
            if score:
                scored.append((score, chunk))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [chunk.model_copy(update={"similarity": None}) for _, chunk in scored[:limit]]

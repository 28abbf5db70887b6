"""
Qdrant-backed knowledge store.

Chunks live in one collection; each point payload carries ``agent_id``,
``document_id``, ``title``, ``content``, ``file_name`` and ``chunk_index``.
"""

import asyncio
from typing import Any, Dict, List, Optional

from ..core.config import settings
from ..core.logging import logger
from .base import KnowledgeChunk, KnowledgeStore


class QdrantKnowledgeStore(KnowledgeStore):
    """Knowledge search over a Qdrant collection, scoped by agent id."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        collection: Optional[str] = None,
        client: Any = None
    ):
        self.collection = collection or settings.qdrant_collection
        self._client = client
        self._host = host or settings.qdrant_host
        self._port = port or settings.qdrant_port

    def _get_client(self):
        """Create the Qdrant client on first use."""
        if self._client is None:
            from qdrant_client import QdrantClient
            self._client = QdrantClient(host=self._host, port=self._port)
            logger.info(f"Connected to Qdrant at {self._host}:{self._port}")
        return self._client

    def _agent_filter(self, agent_id: str, text: Optional[str] = None):
        from qdrant_client.models import FieldCondition, Filter, MatchText, MatchValue

        conditions = [FieldCondition(key="agent_id", match=MatchValue(value=agent_id))]
        if text:
            conditions.append(FieldCondition(key="content", match=MatchText(text=text)))
        return Filter(must=conditions)

    @staticmethod
    def _to_chunk(payload: Dict[str, Any], score: Optional[float]) -> KnowledgeChunk:
        return KnowledgeChunk(
            id=str(payload.get("document_id", "")),
            agent_id=str(payload.get("agent_id", "")),
            title=payload.get("title", ""),
            content=payload.get("content", ""),
            file_name=payload.get("file_name"),
            chunk_index=int(payload.get("chunk_index", 0)),
            similarity=score,
            metadata=payload.get("metadata", {}),
        )

    async def match_chunks(
        self,
        agent_id: str,
        embedding: List[float],
        threshold: float,
        limit: int
    ) -> List[KnowledgeChunk]:
        client = self._get_client()
        response = await asyncio.to_thread(
            client.query_points,
            collection_name=self.collection,
            query=embedding,
            query_filter=self._agent_filter(agent_id),
            limit=limit,
            score_threshold=threshold,
            with_payload=True,
        )
        return [self._to_chunk(hit.payload or {}, hit.score) for hit in response.points]

    async def text_search(self, agent_id: str, query: str, limit: int) -> List[KnowledgeChunk]:
        client = self._get_client()
        points, _ = await asyncio.to_thread(
            client.scroll,
            collection_name=self.collection,
            scroll_filter=self._agent_filter(agent_id, text=query),
            limit=limit,
            with_payload=True,
            with_vectors=False,
        )
        return [self._to_chunk(point.payload or {}, None) for point in points]

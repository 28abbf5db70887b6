"""
Hybrid retrieval: vector search over the primary query, its expansions and
sub-questions, fused by document chunk, with keyword search as the fallback.
"""

import asyncio
import math
import time
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..core.config import settings
from ..core.errors import ValidationError
from ..core.logging import audit_logger, logger
from ..llm.provider import CompletionProvider
from ..resilience.circuit_breaker import CircuitBreaker
from ..storage.base import KnowledgeChunk, KnowledgeStore
from .query_analyzer import QueryAnalysis

KNOWLEDGE_OPERATION = "knowledge_query"
PRIMARY_SHARE = 0.6
EXPANSION_SHARE = 0.2
SUB_QUESTION_SHARE = 0.15
MAX_SECONDARY_EXPANSIONS = 2


class Provenance(Enum):
    """Which search produced a retrieved chunk."""

    PRIMARY = "primary"
    EXPANSION = "expansion"
    SUB_QUESTION = "sub_question"
    KEYWORD = "keyword"


class RetrievalDocument(KnowledgeChunk):
    """A knowledge chunk tagged with the search that found it."""

    provenance: Provenance = Provenance.PRIMARY


class RetrievalResult(BaseModel):
    """Fused retrieval output."""

    documents: List[RetrievalDocument] = Field(default_factory=list)
    method: str = "vector_match"  # vector_match, keyword_fallback, keyword_backfill
    searches: Dict[str, int] = Field(default_factory=dict)
    elapsed_ms: float = 0.0


def quota(max_results: int, share: float) -> int:
    return max(1, math.ceil(max_results * share))


def fuse_results(documents: List[RetrievalDocument], max_results: int) -> List[RetrievalDocument]:
    """Deduplicate by (document id, chunk index) keeping the best similarity.

    The surviving entry keeps the provenance of the search that scored it
    highest. Results are sorted by similarity, missing similarity last.
    """
    best: Dict[Tuple[str, int], RetrievalDocument] = {}
    for document in documents:
        key = (document.id, document.chunk_index)
        current = best.get(key)
        if current is None or (document.similarity or 0.0) > (current.similarity or 0.0):
            best[key] = document

    ranked = sorted(best.values(), key=lambda d: d.similarity or 0.0, reverse=True)
    return ranked[:max_results]


def _tag(chunks: List[KnowledgeChunk], provenance: Provenance) -> List[RetrievalDocument]:
    return [RetrievalDocument(**chunk.model_dump(), provenance=provenance) for chunk in chunks]


class HybridRetriever:
    """Vector-first retrieval with keyword fallback, guarded by the knowledge breaker."""

    def __init__(
        self,
        provider: CompletionProvider,
        store: KnowledgeStore,
        breaker: Optional[CircuitBreaker] = None,
        embedding_timeout: Optional[float] = None,
        keyword_backfill: Optional[bool] = None
    ):
        self.provider = provider
        self.store = store
        self.breaker = breaker or CircuitBreaker()
        self.embedding_timeout = embedding_timeout or settings.embedding_timeout
        self.keyword_backfill = settings.keyword_backfill if keyword_backfill is None else keyword_backfill

    async def embed(self, text: str) -> List[float]:
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValidationError("Embedding input is empty")
        return await asyncio.wait_for(
            self.provider.embed(cleaned, timeout=self.embedding_timeout),
            timeout=self.embedding_timeout
        )

    async def vector_search(
        self,
        query: str,
        agent_id: str,
        limit: int,
        threshold: float,
        provenance: Provenance
    ) -> List[RetrievalDocument]:
        embedding = await self.embed(query)
        chunks = await self.store.match_chunks(agent_id, embedding, threshold, limit)
        return _tag(chunks, provenance)

    async def keyword_search(self, query: str, agent_id: str, limit: int) -> List[RetrievalDocument]:
        """Plain text search; failures give an empty list."""
        if not query.strip():
            return []
        try:
            chunks = await self.store.text_search(agent_id, query, limit)
        except Exception as e:
            logger.error(f"Keyword search failed for agent {agent_id}: {e}")
            return []
        return _tag(chunks, Provenance.KEYWORD)

    async def retrieve(
        self,
        analysis: QueryAnalysis,
        agent_id: str,
        max_results: Optional[int] = None,
        threshold: Optional[float] = None
    ) -> RetrievalResult:
        """Retrieve and fuse documents for an analysed query. Never raises."""
        start_time = time.time()
        max_results = max_results or settings.max_retrieved_docs
        threshold = settings.similarity_threshold if threshold is None else threshold

        if await self.breaker.is_open(KNOWLEDGE_OPERATION):
            logger.warning("Knowledge breaker open, using keyword search")
            return self._finish(
                await self.keyword_search(analysis.primary_query, agent_id, max_results),
                "keyword_fallback", {"keyword": 1}, start_time, analysis, agent_id
            )

        try:
            primary = await self.vector_search(
                analysis.primary_query, agent_id, quota(max_results, PRIMARY_SHARE), threshold, Provenance.PRIMARY
            )
        except Exception as e:
            logger.error(f"Primary vector search failed, using keyword search: {e}")
            await self.breaker.record_failure(KNOWLEDGE_OPERATION)
            return self._finish(
                await self.keyword_search(analysis.primary_query, agent_id, max_results),
                "keyword_fallback", {"keyword": 1}, start_time, analysis, agent_id
            )
        await self.breaker.record_success(KNOWLEDGE_OPERATION)

        secondary = [
            (expansion, quota(max_results, EXPANSION_SHARE), Provenance.EXPANSION)
            for expansion in analysis.expansions[1:1 + MAX_SECONDARY_EXPANSIONS]
        ] + [
            (sub_question, quota(max_results, SUB_QUESTION_SHARE), Provenance.SUB_QUESTION)
            for sub_question in analysis.sub_questions
        ]
        outcomes = await asyncio.gather(
            *(self.vector_search(text, agent_id, limit, threshold, provenance) for text, limit, provenance in secondary),
            return_exceptions=True
        )

        collected = list(primary)
        searches = {Provenance.PRIMARY.value: 1}
        for (text, _, provenance), outcome in zip(secondary, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"{provenance.value} search failed for '{text[:60]}': {outcome}")
                continue
            searches[provenance.value] = searches.get(provenance.value, 0) + 1
            collected.extend(outcome)

        documents = fuse_results(collected, max_results)
        method = "vector_match"
        if not documents and self.keyword_backfill:
            documents = await self.keyword_search(analysis.primary_query, agent_id, max_results)
            searches[Provenance.KEYWORD.value] = 1
            method = "keyword_backfill"

        return self._finish(documents, method, searches, start_time, analysis, agent_id)

    def _finish(
        self,
        documents: List[RetrievalDocument],
        method: str,
        searches: Dict[str, int],
        start_time: float,
        analysis: QueryAnalysis,
        agent_id: str
    ) -> RetrievalResult:
        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(f"Retrieved {len(documents)} documents via {method} in {elapsed_ms:.0f}ms")
        audit_logger.log_knowledge_query(
            agent_id=agent_id,
            query=analysis.query,
            method=method,
            documents=len(documents),
            elapsed_ms=elapsed_ms
        )
        return RetrievalResult(documents=documents, method=method, searches=searches, elapsed_ms=elapsed_ms)

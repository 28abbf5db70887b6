"""
Knowledge service: query analysis, hybrid retrieval and answer generation
behind a single ``retrieve`` operation.
"""

from typing import Any, Dict, List, Optional, Sequence

from ..agents.base import AgentConfig, AgentRole
from ..agents.registry import AgentRegistry
from ..core.config import settings
from ..core.envelope import OperationTimer, ServiceResult
from ..core.logging import logger
from .generator import GENERATION_ERROR_ANSWER, ResponseGenerator
from .query_analyzer import QueryAnalysis, QueryAnalyzer
from .retriever import HybridRetriever, RetrievalDocument

NO_AGENT_ANSWER = (
    "I can't search the knowledge base right now because no knowledge agent is configured. "
    "Please try again later."
)


def _documents_payload(documents: Sequence[RetrievalDocument]) -> List[Dict[str, Any]]:
    return [doc.model_dump(mode="json") for doc in documents]


class KnowledgeService:
    """Runs a knowledge query end to end and wraps it in the service envelope."""

    def __init__(
        self,
        analyzer: QueryAnalyzer,
        retriever: HybridRetriever,
        generator: ResponseGenerator,
        registry: AgentRegistry
    ):
        self.analyzer = analyzer
        self.retriever = retriever
        self.generator = generator
        self.registry = registry

    async def _resolve_agent(self, agent_id: Optional[str]) -> Optional[AgentConfig]:
        if agent_id:
            return await self.registry.get_agent(agent_id)
        return await self.registry.resolve_agent(AgentRole.POLICY)

    async def retrieve(
        self,
        query: str,
        agent_id: Optional[str] = None,
        max_results: Optional[int] = None,
        threshold: Optional[float] = None,
        generate_answer: bool = True,
        history: Optional[Sequence[str]] = None,
        request_id: Optional[str] = None
    ) -> ServiceResult:
        """Retrieve documents for ``query`` and optionally answer it.

        Args:
            query: Natural-language question
            agent_id: Knowledge owner; the global default policy agent when omitted
            max_results: Maximum fused documents (default 10)
            threshold: Similarity floor for vector matches (default 0.35)
            generate_answer: Whether to generate an answer from the documents
            history: Recent conversation turns, oldest first
            request_id: Correlation id for the envelope

        Returns:
            ServiceResult with ``documents``, ``sources`` and, when requested,
            ``generated_answer``
        """
        timer = OperationTimer(request_id)
        query = (query or "").strip()
        if not query:
            return timer.rejected("Missing required field: query")

        max_results = max_results or settings.max_retrieved_docs
        threshold = settings.similarity_threshold if threshold is None else threshold

        agent = await self._resolve_agent(agent_id)
        effective_agent_id = agent.id if agent else agent_id
        if not effective_agent_id:
            logger.warning("No knowledge agent configured")
            return timer.fallback(
                {"documents": [], "sources": [], "generated_answer": NO_AGENT_ANSWER if generate_answer else None},
                reason="no_agent_configured"
            )

        logger.info(f"Processing knowledge query for agent {effective_agent_id}: {query[:100]}")
        try:
            analysis = await self.analyzer.analyze(query)
            retrieval = await self.retriever.retrieve(analysis, effective_agent_id, max_results, threshold)
        except Exception as e:
            logger.error(f"Knowledge query failed, using basic keyword search: {e}")
            return await self._basic_fallback(timer, query, effective_agent_id, max_results, generate_answer)

        data: Dict[str, Any] = {
            "documents": _documents_payload(retrieval.documents),
            "analysis": self._analysis_payload(analysis),
            "method": retrieval.method,
            "sources": [],
        }
        metadata = {"agent_id": effective_agent_id, "documents_used": len(retrieval.documents)}

        if not generate_answer:
            if retrieval.method == "keyword_fallback":
                return timer.fallback(data, reason="keyword_fallback", **metadata)
            return timer.ok(data, **metadata)

        answer = await self.generator.generate(query, analysis, retrieval.documents, agent=agent, history=history)
        data["generated_answer"] = answer.content
        data["sources"] = [source.model_dump() for source in answer.sources]
        data["answer_method"] = answer.method
        metadata["model_used"] = answer.model_used

        if answer.method == "generation_failed":
            return timer.fallback(data, reason="generation_failed", **metadata)
        if retrieval.method == "keyword_fallback":
            return timer.fallback(data, reason="keyword_fallback", **metadata)
        return timer.ok(data, **metadata)

    async def _basic_fallback(
        self,
        timer: OperationTimer,
        query: str,
        agent_id: str,
        max_results: int,
        generate_answer: bool
    ) -> ServiceResult:
        documents = await self.retriever.keyword_search(query, agent_id, max_results)
        data = {
            "documents": _documents_payload(documents),
            "sources": [],
            "method": "text_fallback_error",
        }
        if generate_answer:
            data["generated_answer"] = GENERATION_ERROR_ANSWER
        return timer.fallback(data, reason="knowledge_query_failed", agent_id=agent_id)

    @staticmethod
    def _analysis_payload(analysis: QueryAnalysis) -> Dict[str, Any]:
        return analysis.model_dump(mode="json")

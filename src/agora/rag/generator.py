"""
Answer generation over retrieved knowledge.
"""

from typing import Any, Dict, List, Optional, Sequence

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from ..agents.base import AgentConfig, AgentRole, get_role_profile
from ..core.config import settings
from ..core.errors import DegradedModeError
from ..core.logging import logger
from ..llm.invoker import ResilientModelInvoker
from ..llm.models import build_fallback_chain
from .query_analyzer import QueryAnalysis
from .retriever import RetrievalDocument

ANALYSIS_TEMPLATE_NAME = "langchain_policy_analysis"
DEFAULT_ANALYSIS_PROMPT = (
    "You are a helpful AI assistant specializing in policy and legislative analysis. "
    "Provide accurate, well-researched responses based on the provided context. "
    "Focus on policy and legislative analysis with clear, actionable insights."
)
GENERATION_ERROR_ANSWER = (
    "I encountered an error while processing your request. "
    "Please try again or rephrase your question."
)


class SourceAttribution(BaseModel):
    id: str
    title: str
    file_name: Optional[str] = None
    similarity: Optional[float] = None
    source_number: int
    chunk_index: int = 0


class GeneratedAnswer(BaseModel):
    """Answer text with attribution. ``method`` tells real answers from fallbacks."""

    content: str
    sources: List[SourceAttribution] = Field(default_factory=list)
    method: str = "enhanced_rag"  # enhanced_rag, no_documents_found, generation_failed
    model_used: Optional[str] = None
    analysis: Dict[str, Any] = Field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return self.method != "enhanced_rag"


def no_documents_answer(query: str, analysis: QueryAnalysis) -> str:
    return (
        f"I don't have specific information in my knowledge base to answer your question about \"{query}\". "
        "This might be because:\n\n"
        "1. The topic isn't covered in the current document collection\n"
        "2. The query might need to be rephrased for better results\n"
        "3. Additional documents may need to be uploaded to the knowledge base\n\n"
        f"Based on your question, it appears you're looking for {analysis.intent.value} information. "
        "You might try:\n"
        "- Rephrasing your question with different keywords\n"
        "- Breaking down complex questions into simpler parts\n"
        "- Checking if relevant documents have been uploaded to the system"
    )


def format_context(documents: Sequence[RetrievalDocument]) -> str:
    return "\n\n".join(
        f"[Source {index}: {doc.file_name or 'Document'} - {doc.title or 'Untitled'}]\n{doc.content}"
        for index, doc in enumerate(documents, 1)
    )


def format_history(history: Sequence[str], window: int) -> str:
    if not history or window <= 0:
        return ""
    return "\n\nRecent conversation:\n" + "\n".join(history[-window:])


def substitute_variables(template: str, variables: Dict[str, str]) -> str:
    """Replace ``{{name}}`` placeholders."""
    for key, value in variables.items():
        template = template.replace("{{" + key + "}}", value)
    return template


def build_sources(documents: Sequence[RetrievalDocument]) -> List[SourceAttribution]:
    return [
        SourceAttribution(
            id=doc.id,
            title=doc.title or "Untitled",
            file_name=doc.file_name,
            similarity=doc.similarity,
            source_number=index,
            chunk_index=doc.chunk_index
        )
        for index, doc in enumerate(documents, 1)
    ]


def summarize_analysis(analysis: QueryAnalysis) -> Dict[str, Any]:
    return {
        "intent": analysis.intent.value,
        "complexity": analysis.complexity.value,
        "confidence": analysis.confidence,
        "entities": analysis.entities,
        "jurisdiction": analysis.jurisdiction,
    }


class ResponseGenerator:
    """Generates grounded answers through the resilient invoker."""

    def __init__(
        self,
        invoker: ResilientModelInvoker,
        config_store=None,
        history_window: Optional[int] = None
    ):
        self.invoker = invoker
        self.config_store = config_store
        self.history_window = settings.history_window if history_window is None else history_window

    async def system_prompt(self, agent: Optional[AgentConfig]) -> str:
        """Agent override, then the stored analysis template, then the built-in prompt."""
        if agent and agent.prompt_override and agent.prompt_override.strip():
            return agent.prompt_override

        if self.config_store is not None:
            template = await self._stored_template(agent.scope_id if agent else None)
            if template:
                logger.info(f"Using {ANALYSIS_TEMPLATE_NAME} template")
                return self._apply_agent_variables(template, agent)

        return DEFAULT_ANALYSIS_PROMPT

    async def _stored_template(self, scope_id: Optional[str]) -> Optional[str]:
        for scope in ([scope_id, None] if scope_id else [None]):
            try:
                template = await self.config_store.get_prompt_template(ANALYSIS_TEMPLATE_NAME, scope)
            except Exception as e:
                logger.error(f"Error fetching analysis template: {e}")
                return None
            if template and template.strip():
                return template
        return None

    @staticmethod
    def _apply_agent_variables(template: str, agent: Optional[AgentConfig]) -> str:
        role = agent.role if agent else AgentRole.POLICY
        variables = {
            "agent_type": role.value,
            "response_style": (agent.response_style if agent else None) or "professional",
            "goals": ", ".join(agent.goals) if agent and agent.goals else "assist users with policy analysis",
            "agent_context": get_role_profile(role).display_name,
        }
        return substitute_variables(template, variables)

    async def generate(
        self,
        query: str,
        analysis: QueryAnalysis,
        documents: Sequence[RetrievalDocument],
        agent: Optional[AgentConfig] = None,
        history: Optional[Sequence[str]] = None
    ) -> GeneratedAnswer:
        """Answer ``query`` from ``documents``. Never raises for provider problems."""
        summary = summarize_analysis(analysis)
        if not documents:
            return GeneratedAnswer(
                content=no_documents_answer(query, analysis),
                method="no_documents_found",
                analysis=summary
            )

        context = format_context(documents) + format_history(history or [], self.history_window)
        prompt = await self.system_prompt(agent)
        if "{{context}}" in prompt:
            prompt = substitute_variables(prompt, {"context": context, "input": query})
        else:
            prompt = f"{prompt}\n\nContext:\n{context}"

        messages = [SystemMessage(content=prompt), HumanMessage(content=query)]
        chain = build_fallback_chain(agent.preferred_model if agent else None)
        try:
            result = await self.invoker.invoke(chain, messages, role=agent.role if agent else AgentRole.POLICY)
        except DegradedModeError as e:
            logger.error(f"Response generation failed: {e}")
            return GeneratedAnswer(content=GENERATION_ERROR_ANSWER, method="generation_failed", analysis=summary)

        logger.info(f"Generated answer from {len(documents)} sources with {result.model_used}")
        return GeneratedAnswer(
            content=result.content,
            sources=build_sources(documents),
            model_used=result.model_used,
            analysis=summary
        )

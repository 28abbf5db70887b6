"""
Orchestration Controller - coordinates one request/response cycle using LangGraph.

The full cycle runs as a StateGraph:

    analyze -> select -> prepare -> generate -> persist -> END

Every node absorbs its own failures and records a fallback reason, so the
graph always ends with a usable reply. The individual stages are also exposed
as standalone operations. All operations return a ServiceResult envelope.
"""

from typing import Any, Dict, List, Literal, Optional, Sequence, TypedDict

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph
from pydantic import BaseModel

from ..core.config import settings
from ..core.envelope import OperationTimer, ServiceResult
from ..core.errors import DegradedModeError, PersistenceError, ValidationError
from ..core.logging import audit_logger, logger
from ..llm.invoker import InvocationResult, InvocationStrategy, ResilientModelInvoker
from ..llm.models import build_fallback_chain
from ..llm.provider import CompletionProvider, get_provider
from ..rag.generator import ResponseGenerator
from ..rag.pipeline import KnowledgeService
from ..rag.query_analyzer import QueryAnalyzer
from ..rag.retriever import HybridRetriever
from ..resilience.circuit_breaker import CircuitBreaker, get_breaker_store
from ..storage import get_knowledge_store
from ..storage.base import AgentConfigStore, KnowledgeStore, MessageStore
from ..storage.memory import InMemoryAgentConfigStore, InMemoryMessageStore
from .base import AgentConfig, AgentRole, ContextSource, ConversationMessage, MessageType, get_role_profile
from .classifier import AnalysisResult, IntentClassifier, heuristic_analysis
from .engagement import load_engagement
from .registry import AgentRegistry
from .selector import FALLBACK_ROLE, AgentSelector, SelectionContext, SelectionResult

GENERATION_OPERATION = "agent_response_generation"
APOLOGY_MESSAGE = (
    "I apologize, but I'm experiencing technical difficulties right now. "
    "Please try again in a moment."
)
ENHANCED_CONTEXT_MESSAGES = 15
HISTORY_FETCH_LIMIT = 50


class RespondRequest(BaseModel):
    """Inbound message to answer. Either ``message`` or ``message_id`` is required."""

    message: Optional[str] = None
    message_id: Optional[str] = None
    scope_id: Optional[str] = None
    topic: Optional[str] = None
    mode: Literal["chat", "learn"] = "chat"
    author_id: Optional[str] = None
    enhanced: bool = False
    persist: bool = True
    strategy: Optional[InvocationStrategy] = None


class ResponseState(TypedDict):
    """Shared state of one respond cycle."""

    request: RespondRequest
    message: str
    request_id: str
    analysis: Optional[AnalysisResult]
    selection: Optional[SelectionResult]
    agent: Optional[AgentConfig]
    knowledge_context: Optional[str]
    contributions: List[str]
    messages: List[BaseMessage]
    invocation: Optional[InvocationResult]
    reply: Optional[str]
    reply_message_id: Optional[str]
    fallback_reasons: List[str]


def process_conversation_context(
    history: Sequence[ConversationMessage],
    role: AgentRole,
    enhanced: bool = False,
    exclude_id: Optional[str] = None
) -> List[BaseMessage]:
    """Recent turns relevant to ``role``, oldest first.

    User messages, the role's own messages and facilitator messages are kept;
    each is truncated and the window is bounded.
    """
    limit = ENHANCED_CONTEXT_MESSAGES if enhanced else settings.max_context_messages
    max_chars = settings.max_context_message_chars

    relevant = []
    for message in history:
        if message.id == exclude_id or message.message_type == MessageType.SYSTEM:
            continue
        if message.message_type == MessageType.USER:
            relevant.append(HumanMessage(content=message.content[:max_chars]))
        elif message.agent_role == role or (
            message.agent_role is not None and get_role_profile(message.agent_role).facilitator
        ):
            relevant.append(AIMessage(content=message.content[:max_chars]))

    return relevant[-limit:]


def format_knowledge_context(documents: Sequence[Dict[str, Any]]) -> str:
    """Number retrieved chunks as ``[i] title: content`` blocks."""
    return "\n\n".join(
        f"[{index}] {doc.get('title') or 'Document'}: {doc.get('content') or ''}"
        for index, doc in enumerate(documents, 1)
    )


class OrchestrationServices:
    """Collaborators and components shared by every request."""

    def __init__(
        self,
        provider: CompletionProvider,
        breaker: CircuitBreaker,
        message_store: MessageStore,
        config_store: AgentConfigStore,
        knowledge_store: KnowledgeStore
    ):
        self.provider = provider
        self.breaker = breaker
        self.message_store = message_store
        self.config_store = config_store
        self.knowledge_store = knowledge_store

        self.registry = AgentRegistry(config_store)
        self.classifier = IntentClassifier(provider=provider, breaker=breaker)
        self.selector = AgentSelector()
        self.invoker = ResilientModelInvoker(provider)
        self.knowledge = KnowledgeService(
            analyzer=QueryAnalyzer(provider),
            retriever=HybridRetriever(provider, knowledge_store, breaker),
            generator=ResponseGenerator(self.invoker, config_store),
            registry=self.registry
        )

    @classmethod
    def from_settings(cls) -> "OrchestrationServices":
        """Default wiring: configured provider, breaker store and knowledge store, in-memory records."""
        return cls(
            provider=get_provider(),
            breaker=CircuitBreaker(store=get_breaker_store()),
            message_store=InMemoryMessageStore(),
            config_store=InMemoryAgentConfigStore(),
            knowledge_store=get_knowledge_store()
        )


class OrchestrationController:
    """Exposes classify, select, invoke, retrieve and the full respond cycle."""

    def __init__(self, services: OrchestrationServices):
        self.services = services
        self.graph: Optional[CompiledStateGraph] = None
        self._build_graph()

    def _build_graph(self) -> None:
        """Build the respond workflow."""
        workflow = StateGraph(ResponseState)

        workflow.add_node("analyze", self._analyze_node)
        workflow.add_node("select", self._select_node)
        workflow.add_node("prepare", self._prepare_node)
        workflow.add_node("generate", self._generate_node)
        workflow.add_node("persist", self._persist_node)

        workflow.set_entry_point("analyze")
        workflow.add_edge("analyze", "select")
        workflow.add_edge("select", "prepare")
        workflow.add_edge("prepare", "generate")
        workflow.add_conditional_edges(
            "generate",
            self._route_after_generate,
            {"persist": "persist", "end": END}
        )
        workflow.add_edge("persist", END)

        self.graph = workflow.compile()
        logger.info("Built orchestration workflow")

    # Exposed operations

    async def classify(
        self,
        message: str,
        topic: Optional[str] = None,
        require_full_analysis: bool = False,
        request_id: Optional[str] = None
    ) -> ServiceResult:
        timer = OperationTimer(request_id)
        try:
            analysis = await self.services.classifier.classify(message, topic, require_full_analysis)
        except ValidationError as e:
            return timer.rejected(e.message)
        except Exception as e:
            logger.error(f"Classification failed, using heuristic analysis: {e}")
            return timer.fallback(heuristic_analysis(message).model_dump(mode="json"), reason="classification_failed")
        return timer.ok(analysis.model_dump(mode="json"), source=analysis.source)

    async def select_agent(
        self,
        analysis: AnalysisResult,
        context: Optional[SelectionContext] = None,
        scope_id: Optional[str] = None,
        mode: str = "chat",
        request_id: Optional[str] = None
    ) -> ServiceResult:
        timer = OperationTimer(request_id)
        try:
            if context is None:
                context = await self.build_selection_context(scope_id, mode)
            selection = self.services.selector.select(analysis, context)
        except Exception as e:
            logger.error(f"Agent selection failed, using {FALLBACK_ROLE.value}: {e}")
            return timer.fallback(
                {"role": FALLBACK_ROLE.value, "scores": {}, "breakdown": {}, "tie_break_applied": False},
                reason="selection_failed"
            )
        return timer.ok(selection.model_dump(mode="json"))

    async def invoke(
        self,
        messages: Sequence[BaseMessage],
        agent: Optional[AgentConfig] = None,
        role: Optional[AgentRole] = None,
        strategy: Optional[InvocationStrategy] = None,
        enhanced: bool = False,
        request_id: Optional[str] = None
    ) -> ServiceResult:
        timer = OperationTimer(request_id)
        role = role or (agent.role if agent else None)
        chain = build_fallback_chain(agent.preferred_model if agent else None)
        try:
            result = await self.services.invoker.invoke(chain, messages, role=role, strategy=strategy, enhanced=enhanced)
        except ValidationError as e:
            return timer.rejected(e.message)
        except DegradedModeError as e:
            logger.error(f"Invocation degraded to apology: {e}")
            return timer.fallback(
                {"content": APOLOGY_MESSAGE, "model_used": None, "strategy": None},
                reason="model_chain_exhausted"
            )
        except Exception as e:
            logger.error(f"Unexpected invocation failure: {e}")
            return timer.fallback(
                {"content": APOLOGY_MESSAGE, "model_used": None, "strategy": None},
                reason="invocation_failed"
            )
        return timer.ok(
            {"content": result.content, "model_used": result.model_used, "strategy": result.strategy.value},
            attempts=result.attempts
        )

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
        timer = OperationTimer(request_id)
        try:
            return await self.services.knowledge.retrieve(
                query, agent_id, max_results, threshold, generate_answer, history, request_id=timer.request_id
            )
        except Exception as e:
            logger.error(f"Knowledge retrieval failed: {e}")
            return timer.fallback({"documents": [], "sources": [], "generated_answer": None}, reason="retrieval_failed")

    async def respond(self, request: RespondRequest, request_id: Optional[str] = None) -> ServiceResult:
        """Answer an inbound message end to end."""
        timer = OperationTimer(request_id)
        try:
            message = await self._resolve_message(request)
        except ValidationError as e:
            return timer.rejected(e.message)

        initial_state: ResponseState = {
            "request": request,
            "message": message,
            "request_id": timer.request_id,
            "analysis": None,
            "selection": None,
            "agent": None,
            "knowledge_context": None,
            "contributions": [],
            "messages": [],
            "invocation": None,
            "reply": None,
            "reply_message_id": None,
            "fallback_reasons": [],
        }
        try:
            final_state = await self.graph.ainvoke(initial_state)
        except Exception as e:
            logger.error(f"Orchestration workflow failed: {e}")
            return timer.fallback({"content": APOLOGY_MESSAGE}, reason="workflow_failed")

        data = self._response_payload(final_state)
        reasons = final_state["fallback_reasons"]
        audit_logger.log_event(
            event_type="orchestration",
            action="respond",
            resource=data["agent_role"],
            request_id=timer.request_id,
            outcome="degraded" if reasons else "success",
            metadata={"fallback_reasons": reasons, "model_used": data["model_used"]}
        )
        if reasons:
            return timer.fallback(data, reason=",".join(reasons))
        return timer.ok(data)

    # Helpers

    async def _resolve_message(self, request: RespondRequest) -> str:
        if request.message and request.message.strip():
            return request.message.strip()
        if request.message_id:
            stored = await self.services.message_store.get_message(request.message_id)
            if stored is not None and stored.content.strip():
                return stored.content.strip()
            raise ValidationError("Could not resolve message by message_id")
        raise ValidationError("Message content is required")

    async def build_selection_context(self, scope_id: Optional[str], mode: str = "chat") -> SelectionContext:
        """Selection context for a scope; store failures leave the defaults in place."""
        context = SelectionContext(forced_role=AgentRole.POLICY if mode == "learn" else None)
        context.availability = await self.services.registry.availability(scope_id)
        if not scope_id:
            return context

        store = self.services.message_store
        context.engagement = await load_engagement(store, self.services.config_store, scope_id)
        try:
            context.message_count = len(await store.recent_messages(scope_id, limit=HISTORY_FETCH_LIMIT))
            context.contribution_count = await self.services.config_store.contribution_count(scope_id)
        except Exception as e:
            logger.error(f"Failed to load conversation counts for {scope_id}: {e}")
        return context

    def _route_after_generate(self, state: ResponseState) -> str:
        request = state["request"]
        return "persist" if request.persist and request.scope_id else "end"

    @staticmethod
    def _response_payload(state: ResponseState) -> Dict[str, Any]:
        selection = state["selection"]
        agent = state["agent"]
        invocation = state["invocation"]
        role = selection.role if selection else FALLBACK_ROLE
        return {
            "content": state["reply"] or APOLOGY_MESSAGE,
            "agent_role": role.value,
            "agent_id": agent.id if agent else None,
            "agent_name": agent.name if agent else get_role_profile(role).display_name,
            "model_used": invocation.model_used if invocation else None,
            "strategy": invocation.strategy.value if invocation else None,
            "analysis": state["analysis"].model_dump(mode="json") if state["analysis"] else None,
            "selection": {
                "scores": selection.scores,
                "tie_break_applied": selection.tie_break_applied,
                "forced": selection.forced,
                "reason": selection.reason,
            } if selection else None,
            "knowledge_used": bool(state["knowledge_context"]),
            "message_id": state["reply_message_id"],
        }

    # Graph nodes

    async def _analyze_node(self, state: ResponseState) -> ResponseState:
        request = state["request"]
        try:
            state["analysis"] = await self.services.classifier.classify(state["message"], request.topic)
        except Exception as e:
            logger.error(f"Analyze node failed: {e}")
            state["analysis"] = heuristic_analysis(state["message"])
            state["fallback_reasons"].append("classification_failed")
        return state

    async def _select_node(self, state: ResponseState) -> ResponseState:
        request = state["request"]
        try:
            context = await self.build_selection_context(request.scope_id, request.mode)
            state["selection"] = self.services.selector.select(state["analysis"], context)
        except Exception as e:
            logger.error(f"Select node failed, using {FALLBACK_ROLE.value}: {e}")
            state["selection"] = SelectionResult(
                role=FALLBACK_ROLE, scores={}, breakdown={}, reason="selection failed"
            )
            state["fallback_reasons"].append("selection_failed")
        return state

    async def _prepare_node(self, state: ResponseState) -> ResponseState:
        request = state["request"]
        role = state["selection"].role
        profile = get_role_profile(role)
        registry = self.services.registry

        agent = await registry.resolve_agent(role, request.scope_id)
        state["agent"] = agent

        if profile.context_source == ContextSource.KNOWLEDGE and agent is not None:
            state["knowledge_context"] = await self._knowledge_context(state["message"], agent, state["request_id"])
        elif profile.context_source == ContextSource.CONTRIBUTIONS and request.scope_id:
            try:
                state["contributions"] = await self.services.config_store.recent_contributions(request.scope_id)
            except Exception as e:
                logger.error(f"Failed to load contributions for {request.scope_id}: {e}")

        try:
            system_prompt = await registry.resolve_system_prompt(
                role,
                agent=agent,
                scope_id=request.scope_id,
                complexity=state["analysis"].complexity,
                knowledge_context=state["knowledge_context"],
                contributions=state["contributions"]
            )
        except Exception as e:
            logger.error(f"System prompt resolution failed, using role default: {e}")
            system_prompt = profile.default_prompt

        history: List[ConversationMessage] = []
        if request.scope_id:
            try:
                history = await self.services.message_store.recent_messages(request.scope_id, limit=HISTORY_FETCH_LIMIT)
            except Exception as e:
                logger.error(f"Failed to load conversation history for {request.scope_id}: {e}")

        context = process_conversation_context(history, role, request.enhanced, exclude_id=request.message_id)
        state["messages"] = [SystemMessage(content=system_prompt)] + context + [HumanMessage(content=state["message"])]
        logger.debug(f"Prepared {len(state['messages'])} messages for {role.value}")
        return state

    async def _knowledge_context(self, message: str, agent: AgentConfig, request_id: str) -> Optional[str]:
        result = await self.services.knowledge.retrieve(
            message,
            agent_id=agent.id,
            max_results=settings.orchestration_knowledge_results,
            threshold=settings.orchestration_knowledge_threshold,
            generate_answer=False,
            request_id=request_id
        )
        documents = (result.data or {}).get("documents") or []
        if not result.success or not documents:
            logger.debug(f"No knowledge context for agent {agent.id}")
            return None
        logger.debug(f"Knowledge context for agent {agent.id}: {len(documents)} chunks")
        return format_knowledge_context(documents)

    async def _generate_node(self, state: ResponseState) -> ResponseState:
        request = state["request"]
        role = state["selection"].role
        agent = state["agent"]
        chain = build_fallback_chain(agent.preferred_model if agent else None)

        async def generate() -> InvocationResult:
            return await self.services.invoker.invoke(
                chain, state["messages"], role=role, strategy=request.strategy, enhanced=request.enhanced
            )

        invocation = await self.services.breaker.execute(GENERATION_OPERATION, generate, lambda: None)
        if invocation is None:
            state["reply"] = APOLOGY_MESSAGE
            state["fallback_reasons"].append("response_generation_failed")
        else:
            state["invocation"] = invocation
            state["reply"] = invocation.content
        return state

    async def _store_reply(self, reply: ConversationMessage) -> ConversationMessage:
        try:
            return await self.services.message_store.insert_message(reply)
        except Exception as e:
            raise PersistenceError(f"Failed to persist agent reply: {e}", {"scope_id": reply.scope_id})

    async def _persist_node(self, state: ResponseState) -> ResponseState:
        request = state["request"]
        invocation = state["invocation"]
        reply = ConversationMessage(
            content=state["reply"],
            message_type=MessageType.AGENT,
            agent_role=state["selection"].role,
            scope_id=request.scope_id,
            metadata={
                "request_id": state["request_id"],
                "in_reply_to": request.message_id,
                "model_used": invocation.model_used if invocation else None,
                "degraded": bool(state["fallback_reasons"]),
            }
        )
        try:
            stored = await self._store_reply(reply)
        except PersistenceError as e:
            logger.error(e.message)
            audit_logger.log_event(
                event_type="message_persistence",
                action="insert_agent_message",
                request_id=state["request_id"],
                outcome="failure",
                error_message=e.message,
                level="error"
            )
            return state

        state["reply_message_id"] = stored.id
        audit_logger.log_event(
            event_type="message_persistence",
            action="insert_agent_message",
            resource_id=stored.id,
            request_id=state["request_id"]
        )
        return state

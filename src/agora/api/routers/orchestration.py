"""
Orchestration endpoints: classify, select, invoke and the full respond cycle.
"""

from typing import Dict, List, Literal, Optional

from fastapi import APIRouter, Depends
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from ...agents.base import AgentRole
from ...agents.classifier import AnalysisResult
from ...agents.orchestrator import OrchestrationController, RespondRequest
from ...agents.selector import SelectionContext
from ...llm.invoker import InvocationStrategy
from ..dependencies import get_controller, get_request_id
from ..responses import envelope_response

orchestration_router = APIRouter()

MESSAGE_TYPES = {
    "system": SystemMessage,
    "user": HumanMessage,
    "assistant": AIMessage,
}


class ClassifyRequest(BaseModel):
    """Request model for message classification."""
    message: str
    topic: Optional[str] = None
    require_full_analysis: bool = False


class SelectRequest(BaseModel):
    """Request model for agent selection.

    When ``message_count`` is omitted the selection context is loaded from
    the stores for ``scope_id``.
    """
    analysis: AnalysisResult
    scope_id: Optional[str] = None
    mode: Literal["chat", "learn"] = "chat"
    message_count: Optional[int] = Field(default=None, ge=0)
    contribution_count: int = Field(default=0, ge=0)
    availability: Dict[AgentRole, bool] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class InvokeRequest(BaseModel):
    """Request model for a raw model invocation."""
    messages: List[ChatMessage]
    agent_id: Optional[str] = None
    role: Optional[AgentRole] = None
    strategy: Optional[InvocationStrategy] = None
    enhanced: bool = False


def to_messages(messages: List[ChatMessage]) -> List[BaseMessage]:
    return [MESSAGE_TYPES[m.role](content=m.content) for m in messages]


@orchestration_router.post("/classify")
async def classify_message(
    request: ClassifyRequest,
    controller: OrchestrationController = Depends(get_controller),
    request_id: Optional[str] = Depends(get_request_id)
):
    """Classify an inbound message."""
    result = await controller.classify(
        request.message, request.topic, request.require_full_analysis, request_id=request_id
    )
    return envelope_response(result)


@orchestration_router.post("/select")
async def select_agent(
    request: SelectRequest,
    controller: OrchestrationController = Depends(get_controller),
    request_id: Optional[str] = Depends(get_request_id)
):
    """Score responder roles for an analysed message."""
    context = None
    if request.message_count is not None:
        context = SelectionContext(
            message_count=request.message_count,
            contribution_count=request.contribution_count,
            availability=request.availability,
            forced_role=AgentRole.POLICY if request.mode == "learn" else None
        )
    result = await controller.select_agent(
        request.analysis, context=context, scope_id=request.scope_id, mode=request.mode, request_id=request_id
    )
    return envelope_response(result)


@orchestration_router.post("/invoke")
async def invoke_model(
    request: InvokeRequest,
    controller: OrchestrationController = Depends(get_controller),
    request_id: Optional[str] = Depends(get_request_id)
):
    """Run a message list through the resilient invoker."""
    agent = await controller.services.registry.get_agent(request.agent_id) if request.agent_id else None
    result = await controller.invoke(
        to_messages(request.messages),
        agent=agent,
        role=request.role,
        strategy=request.strategy,
        enhanced=request.enhanced,
        request_id=request_id
    )
    return envelope_response(result)


@orchestration_router.post("/respond")
async def respond(
    request: RespondRequest,
    controller: OrchestrationController = Depends(get_controller),
    request_id: Optional[str] = Depends(get_request_id)
):
    """Full cycle: classify, select, prepare, generate and persist."""
    result = await controller.respond(request, request_id=request_id)
    return envelope_response(result)

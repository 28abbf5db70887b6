"""
Knowledge query endpoint.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...agents.orchestrator import OrchestrationController
from ..dependencies import get_controller, get_request_id
from ..responses import envelope_response

knowledge_router = APIRouter()


class KnowledgeQueryRequest(BaseModel):
    """Request model for knowledge queries."""
    query: str
    agent_id: Optional[str] = None
    max_results: int = Field(default=10, gt=0, le=50)
    threshold: float = Field(default=0.35, ge=0.0, le=1.0)
    generate_answer: bool = True
    history: List[str] = Field(default_factory=list)


@knowledge_router.post("/query")
async def query_knowledge(
    request: KnowledgeQueryRequest,
    controller: OrchestrationController = Depends(get_controller),
    request_id: Optional[str] = Depends(get_request_id)
):
    """Retrieve documents for a query and optionally answer it."""
    result = await controller.retrieve(
        request.query,
        agent_id=request.agent_id,
        max_results=request.max_results,
        threshold=request.threshold,
        generate_answer=request.generate_answer,
        history=request.history,
        request_id=request_id
    )
    return envelope_response(result)

"""
Dependency injection for FastAPI endpoints.
"""

from typing import Optional

from fastapi import HTTPException, Request, status

from ..agents.orchestrator import OrchestrationController, OrchestrationServices
from ..core.logging import logger


def get_controller(request: Request) -> OrchestrationController:
    """Get the orchestration controller from the application state."""
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        logger.error("Orchestration controller not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestration controller not available"
        )
    return controller


def get_services(request: Request) -> OrchestrationServices:
    return get_controller(request).services


def get_request_id(request: Request) -> Optional[str]:
    """Request id assigned by the logging middleware, if any."""
    return getattr(request.state, "request_id", None)

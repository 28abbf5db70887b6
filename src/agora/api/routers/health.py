"""
Health check and breaker status endpoints.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from ... import __version__
from ...agents.orchestrator import OrchestrationServices
from ...core.config import settings
from ...resilience.circuit_breaker import BREAKER_POLICIES, CircuitState
from ..dependencies import get_services

health_router = APIRouter()

DEFAULT_OPERATION = "default"


@health_router.get("")
async def health_check(request: Request) -> Dict[str, Any]:
    """Basic health check endpoint."""
    metrics = getattr(request.app.state, "metrics", None)
    return {
        "status": "healthy",
        "service": "Agora Orchestration API",
        "version": __version__,
        "environment": settings.environment,
        "timestamp": datetime.utcnow().isoformat(),
        "metrics": metrics.snapshot() if metrics else {},
    }


@health_router.get("/breakers")
async def breaker_status(services: OrchestrationServices = Depends(get_services)) -> Dict[str, Any]:
    """State of every known circuit breaker."""
    operations = [DEFAULT_OPERATION] + list(BREAKER_POLICIES)
    breakers = [await services.breaker.get_state(operation) for operation in operations]
    open_count = sum(1 for b in breakers if b["state"] != CircuitState.CLOSED.value)
    return {
        "status": "degraded" if open_count else "healthy",
        "open": open_count,
        "breakers": breakers,
    }

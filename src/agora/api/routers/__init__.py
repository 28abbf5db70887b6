"""
API routers for the orchestration service.
"""

from .health import health_router
from .knowledge import knowledge_router
from .orchestration import orchestration_router

__all__ = [
    "health_router",
    "knowledge_router",
    "orchestration_router",
]

"""
Agora - Agent Orchestration & Resilient Inference Pipeline

Routes deliberation messages to specialized responder agents, generates
responses across a fallback chain of LLM providers guarded by circuit breakers,
and grounds answers in a hybrid vector + keyword knowledge store.
"""

__version__ = "0.1.0"
__author__ = "Agora Team"

from .core.config import settings
from .core.logging import logger

__all__ = ["settings", "logger"]

"""
Agent routing for the orchestration pipeline.

Submodules:
    base         - roles, typed role profiles, config and message models
    classifier   - two-stage intent classification
    engagement   - conversation activity metrics
    selector     - deterministic agent scoring and tie-break
    registry     - agent configuration and prompt resolution with caching
    orchestrator - the request/response cycle and exposed operations

Only the base types are re-exported here. storage and llm import this
package, so it must not import the higher-level submodules.
"""

from .base import (
    AgentConfig,
    AgentRole,
    ContextSource,
    ConversationMessage,
    MessageType,
    RoleProfile,
    ROLE_PROFILES,
    get_role_profile,
    resolve_first,
)

__all__ = [
    "AgentConfig",
    "AgentRole",
    "ContextSource",
    "ConversationMessage",
    "MessageType",
    "RoleProfile",
    "ROLE_PROFILES",
    "get_role_profile",
    "resolve_first",
]

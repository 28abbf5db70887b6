"""
Base agent types for the orchestration pipeline.

Agent roles form a closed enum. Each role carries a typed RoleProfile with its
hardcoded defaults, so role-specific behaviour is a table lookup rather than
attribute probing on loosely shaped config records.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class AgentRole(Enum):
    """Responder roles an inbound message can be routed to."""

    POLICY = "policy_agent"
    PEER = "peer_agent"
    FLOW = "flow_agent"


class ContextSource(Enum):
    """Where a role draws supplementary prompt context from."""

    KNOWLEDGE = "knowledge"
    CONTRIBUTIONS = "contributions"
    NONE = "none"


class MessageType(Enum):
    """Author kind of a conversation message."""

    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class RoleProfile(BaseModel):
    """Hardcoded per-role defaults, the last link of every resolution chain."""

    role: AgentRole
    display_name: str
    default_prompt: str
    context_source: ContextSource
    facilitator: bool = False


ROLE_PROFILES: Dict[AgentRole, RoleProfile] = {
    AgentRole.POLICY: RoleProfile(
        role=AgentRole.POLICY,
        display_name="Policy Analyst",
        default_prompt=(
            "You are a policy analysis agent. Provide clear, factual analysis "
            "of legislation and policy matters."
        ),
        context_source=ContextSource.KNOWLEDGE,
    ),
    AgentRole.PEER: RoleProfile(
        role=AgentRole.PEER,
        display_name="Peer Perspective",
        default_prompt=(
            "You are a peer perspective agent. Share relevant viewpoints and "
            "arguments from the discussion."
        ),
        context_source=ContextSource.CONTRIBUTIONS,
    ),
    AgentRole.FLOW: RoleProfile(
        role=AgentRole.FLOW,
        display_name="Facilitator",
        default_prompt=(
            "You are a conversation facilitation agent. Help guide productive "
            "discussion and engagement."
        ),
        context_source=ContextSource.NONE,
        facilitator=True,
    ),
}


def get_role_profile(role: AgentRole) -> RoleProfile:
    """Profile for a role. Every enum member has one."""
    return ROLE_PROFILES[role]


def resolve_first(*candidates: Optional[T], default: T) -> T:
    """Ordered resolution: first candidate that is set (non-empty for strings) wins."""
    for candidate in candidates:
        if candidate is None:
            continue
        if isinstance(candidate, str) and not candidate.strip():
            continue
        return candidate
    return default


class AgentConfig(BaseModel):
    """Administrator-managed agent configuration record."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    role: AgentRole
    is_active: bool = True
    is_default: bool = False
    scope_id: Optional[str] = None  # None means global
    prompt_override: Optional[str] = None
    preferred_model: Optional[str] = None
    description: Optional[str] = None
    response_style: Optional[str] = None
    goals: List[str] = Field(default_factory=list)
    max_response_characters: Optional[int] = Field(default=None, gt=0)

    @property
    def profile(self) -> RoleProfile:
        return get_role_profile(self.role)

    @property
    def is_global(self) -> bool:
        return self.scope_id is None


class ConversationMessage(BaseModel):
    """A message in a deliberation, authored by a participant or an agent."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str
    message_type: MessageType = MessageType.USER
    agent_role: Optional[AgentRole] = None
    author_id: Optional[str] = None
    scope_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)

"""
Engagement metrics derived from recent conversation activity.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from ..core.logging import logger
from .base import ConversationMessage

VELOCITY_WINDOW = timedelta(hours=2)
PARTICIPANT_WINDOW = timedelta(hours=1)
DEFAULT_AVERAGE_LENGTH = 100
DEPTH_NORMALIZER = 200


class InteractionPhase(Enum):
    """Where a deliberation is in its arc."""

    INITIAL = "initial"
    BUILDING = "building"
    SYNTHESIZING = "synthesizing"
    CONCLUDING = "concluding"


class EngagementMetrics(BaseModel):
    """Activity statistics for one scope, computed per request."""

    message_velocity: float = 0.0  # messages per hour
    active_participants: int = 1
    conversation_depth: float = Field(default=0.5, ge=0.0, le=1.0)
    interaction_phase: InteractionPhase = InteractionPhase.INITIAL


NO_SCOPE_METRICS = EngagementMetrics(
    message_velocity=0.0, active_participants=1, conversation_depth=0.5,
    interaction_phase=InteractionPhase.INITIAL
)
DEGRADED_METRICS = EngagementMetrics(
    message_velocity=0.5, active_participants=1, conversation_depth=0.5,
    interaction_phase=InteractionPhase.INITIAL
)


def classify_phase(velocity: float, participants: int, depth: float) -> InteractionPhase:
    if velocity > 3 and participants > 2:
        return InteractionPhase.BUILDING
    if depth > 0.7:
        return InteractionPhase.SYNTHESIZING
    if velocity < 1 and depth > 0.5:
        return InteractionPhase.CONCLUDING
    return InteractionPhase.INITIAL


def compute_engagement(
    messages: Sequence[ConversationMessage],
    now: Optional[datetime] = None,
    active_participants: Optional[int] = None
) -> EngagementMetrics:
    """Derive metrics from recent messages.

    Args:
        messages: Recent messages of the scope, any order
        now: Reference time (defaults to utcnow)
        active_participants: Count from the participant store; when absent,
            distinct authors of the last hour are used

    Returns:
        EngagementMetrics for the scope
    """
    now = now or datetime.utcnow()
    recent = [m for m in messages if m.created_at >= now - VELOCITY_WINDOW]
    velocity = len(recent) / (VELOCITY_WINDOW.total_seconds() / 3600)

    if active_participants is None:
        authors = {
            m.author_id for m in messages
            if m.author_id and m.created_at >= now - PARTICIPANT_WINDOW
        }
        active_participants = len(authors)
    active_participants = max(1, active_participants)

    if recent:
        average_length = sum(len(m.content) for m in recent) / len(recent)
    else:
        average_length = DEFAULT_AVERAGE_LENGTH
    depth = min(1.0, average_length / DEPTH_NORMALIZER)

    return EngagementMetrics(
        message_velocity=velocity,
        active_participants=active_participants,
        conversation_depth=depth,
        interaction_phase=classify_phase(velocity, active_participants, depth),
    )


async def load_engagement(
    message_store,
    config_store,
    scope_id: Optional[str],
    now: Optional[datetime] = None
) -> EngagementMetrics:
    """Fetch recent activity for a scope and compute metrics; never raises."""
    if not scope_id:
        return NO_SCOPE_METRICS

    now = now or datetime.utcnow()
    try:
        messages = await message_store.recent_messages(scope_id, limit=200, since=now - VELOCITY_WINDOW)
        participants = await config_store.active_participant_count(scope_id, now - PARTICIPANT_WINDOW)
        return compute_engagement(messages, now=now, active_participants=participants)
    except Exception as e:
        logger.error(f"Failed to compute engagement metrics for {scope_id}: {e}")
        return DEGRADED_METRICS

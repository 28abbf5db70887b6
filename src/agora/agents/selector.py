"""
Agent Selector - multi-factor scoring of responder roles.

Selection is a pure function of (analysis, context): every available role
starts from the same baseline, collects complexity, intent and engagement
bonuses, and a near-tie is settled by an intent-keyed preference table.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..core.logging import audit_logger, logger
from .base import AgentRole
from .classifier import AnalysisResult, IntentCategory
from .engagement import EngagementMetrics, InteractionPhase, NO_SCOPE_METRICS

BASELINE_SCORE = 15.0
MAX_COMPLEXITY_BONUS = 5.0
FLOW_COMPLEXITY_WEIGHT = 0.8
PRIMARY_INTENT_BONUS = 12.0
UNAVAILABLE_SCORE = -1000.0
TIE_MARGIN = 3.0
FALLBACK_ROLE = AgentRole.FLOW

# Declaration order settles exact score ties.
ROLE_ORDER: List[AgentRole] = [AgentRole.POLICY, AgentRole.PEER, AgentRole.FLOW]

TIE_BREAK_PREFERENCES: Dict[IntentCategory, AgentRole] = {
    IntentCategory.OFF_TOPIC: AgentRole.FLOW,
    IntentCategory.PARTICIPANT_REQUEST: AgentRole.PEER,
    IntentCategory.POLICY_EXPERTISE: AgentRole.POLICY,
    IntentCategory.DELIBERATION_PROCESS: AgentRole.FLOW,
    IntentCategory.GENERAL: AgentRole.FLOW,
}


class SelectionContext(BaseModel):
    """Conversation state that biases selection."""

    message_count: int = 0
    contribution_count: int = 0
    engagement: EngagementMetrics = Field(default_factory=lambda: NO_SCOPE_METRICS.model_copy())
    availability: Dict[AgentRole, bool] = Field(default_factory=dict)
    forced_role: Optional[AgentRole] = None

    def is_available(self, role: AgentRole) -> bool:
        return self.availability.get(role, True)


class ScoreBreakdown(BaseModel):
    """Per-role score components."""

    base: float = BASELINE_SCORE
    complexity: float = 0.0
    intent: float = 0.0
    context: float = 0.0
    available: bool = True

    @property
    def total(self) -> float:
        if not self.available:
            return UNAVAILABLE_SCORE
        return self.base + self.complexity + self.intent + self.context


class SelectionResult(BaseModel):
    """Selected role with the scores that produced it."""

    role: AgentRole
    scores: Dict[str, float]
    breakdown: Dict[str, ScoreBreakdown]
    tie_break_applied: bool = False
    forced: bool = False
    reason: str = ""


def complexity_bonus(role: AgentRole, analysis: AnalysisResult) -> float:
    """Bonus capped at 5; non-decreasing in complexity for every role."""
    if role == AgentRole.POLICY:
        return min(MAX_COMPLEXITY_BONUS, analysis.complexity * MAX_COMPLEXITY_BONUS)
    if role == AgentRole.PEER:
        return min(MAX_COMPLEXITY_BONUS, analysis.topic_relevance * MAX_COMPLEXITY_BONUS)
    return min(MAX_COMPLEXITY_BONUS, analysis.complexity * MAX_COMPLEXITY_BONUS) * FLOW_COMPLEXITY_WEIGHT


def intent_bonus(role: AgentRole, analysis: AnalysisResult) -> float:
    intent = analysis.intent
    if intent == IntentCategory.OFF_TOPIC:
        return PRIMARY_INTENT_BONUS if role == AgentRole.FLOW else 0.0

    if intent == IntentCategory.PARTICIPANT_REQUEST:
        if role == AgentRole.PEER:
            return PRIMARY_INTENT_BONUS
        if role == AgentRole.POLICY and analysis.has_policy_signal:
            return 6.0
        return 0.0

    if intent == IntentCategory.POLICY_EXPERTISE:
        if role == AgentRole.POLICY:
            return PRIMARY_INTENT_BONUS + (4.0 if analysis.is_question else 0.0)
        return 0.0

    if intent == IntentCategory.DELIBERATION_PROCESS:
        return PRIMARY_INTENT_BONUS if role == AgentRole.FLOW else 0.0

    if role == AgentRole.FLOW:
        return 8.0 + (4.0 if analysis.is_question and not analysis.has_policy_signal else 0.0)
    return 0.0


def context_bonus(role: AgentRole, context: SelectionContext) -> float:
    """Engagement-driven adjustments, each at most 6."""
    engagement = context.engagement
    bonus = 0.0
    if role == AgentRole.PEER:
        if context.contribution_count > 8 and engagement.interaction_phase == InteractionPhase.SYNTHESIZING:
            bonus += 6.0
        if engagement.message_velocity > 5 and context.contribution_count > 3:
            bonus += 4.0
    if role == AgentRole.FLOW:
        if context.message_count < 3 and engagement.interaction_phase == InteractionPhase.INITIAL:
            bonus += 4.0
    return bonus


def score_agents(analysis: AnalysisResult, context: SelectionContext) -> Dict[AgentRole, ScoreBreakdown]:
    """Score every role; unavailable roles are marked and score the sentinel."""
    return {
        role: ScoreBreakdown(
            complexity=complexity_bonus(role, analysis),
            intent=intent_bonus(role, analysis),
            context=context_bonus(role, context),
            available=context.is_available(role),
        )
        for role in ROLE_ORDER
    }


def select_agent(analysis: AnalysisResult, context: Optional[SelectionContext] = None) -> SelectionResult:
    """Pick the responder role. Deterministic for identical inputs."""
    context = context or SelectionContext()
    breakdown = score_agents(analysis, context)
    scores = {role.value: breakdown[role].total for role in ROLE_ORDER}
    serial_breakdown = {role.value: breakdown[role] for role in ROLE_ORDER}

    if context.forced_role is not None:
        if context.is_available(context.forced_role):
            return SelectionResult(
                role=context.forced_role, scores=scores, breakdown=serial_breakdown,
                forced=True, reason=f"forced {context.forced_role.value}"
            )
        logger.warning(f"Forced role {context.forced_role.value} unavailable, scoring normally")

    ranked = sorted(
        (role for role in ROLE_ORDER if breakdown[role].total > 0),
        key=lambda role: (-breakdown[role].total, ROLE_ORDER.index(role))
    )
    if not ranked:
        logger.warning(f"No agents available, falling back to {FALLBACK_ROLE.value}")
        return SelectionResult(
            role=FALLBACK_ROLE, scores=scores, breakdown=serial_breakdown,
            reason="no available agents"
        )

    selected = ranked[0]
    tie_break = False
    if len(ranked) > 1:
        runner_up = ranked[1]
        margin = breakdown[selected].total - breakdown[runner_up].total
        preferred = TIE_BREAK_PREFERENCES.get(analysis.intent)
        if margin <= TIE_MARGIN and preferred == runner_up:
            selected = runner_up
            tie_break = True

    reason = f"{analysis.intent.value} -> {selected.value} ({breakdown[selected].total:.1f})"
    if tie_break:
        reason += " by tie-break"
    return SelectionResult(
        role=selected, scores=scores, breakdown=serial_breakdown,
        tie_break_applied=tie_break, reason=reason
    )


class AgentSelector:
    """Selects responder roles and records the decision."""

    def select(self, analysis: AnalysisResult, context: Optional[SelectionContext] = None) -> SelectionResult:
        result = select_agent(analysis, context)
        logger.info(f"Selected {result.role.value}: {result.reason}")
        audit_logger.log_agent_selection(
            role=result.role.value,
            intent=analysis.intent.value,
            scores=result.scores,
            tie_break=result.tie_break_applied
        )
        return result

"""Tests for multi-factor agent selection."""

import pytest

from agora.agents.base import AgentRole
from agora.agents.classifier import AnalysisResult, IntentCategory, heuristic_analysis
from agora.agents.engagement import EngagementMetrics, InteractionPhase
from agora.agents.selector import (
    FALLBACK_ROLE,
    UNAVAILABLE_SCORE,
    AgentSelector,
    SelectionContext,
    complexity_bonus,
    select_agent,
)


def make_analysis(intent: IntentCategory, complexity: float = 0.0, topic_relevance: float = 0.5, **fields):
    values = {
        "intent": intent,
        "complexity": complexity,
        "topic_relevance": topic_relevance,
        "requires_expertise": False,
        "confidence": 0.8,
    }
    values.update(fields)
    return AnalysisResult(**values)


def busy_context(**fields) -> SelectionContext:
    values = {
        "message_count": 20,
        "contribution_count": 10,
        "engagement": EngagementMetrics(
            message_velocity=6.0, active_participants=2, conversation_depth=0.8,
            interaction_phase=InteractionPhase.SYNTHESIZING
        ),
    }
    values.update(fields)
    return SelectionContext(**values)


class TestSelectAgent:
    """Tests for scoring and ranking."""

    def test_participant_request_selects_peer(self):
        analysis = heuristic_analysis("What have other participants said about cost?")
        result = select_agent(analysis, SelectionContext())

        assert result.role == AgentRole.PEER
        assert result.scores[AgentRole.PEER.value] > result.scores[AgentRole.POLICY.value]
        assert result.scores[AgentRole.PEER.value] > result.scores[AgentRole.FLOW.value]

    def test_policy_question_selects_policy(self):
        analysis = make_analysis(
            IntentCategory.POLICY_EXPERTISE, complexity=0.6, is_question=True, has_policy_signal=True
        )
        result = select_agent(analysis, SelectionContext())
        assert result.role == AgentRole.POLICY

    def test_process_question_selects_flow(self):
        result = select_agent(make_analysis(IntentCategory.DELIBERATION_PROCESS), SelectionContext())
        assert result.role == AgentRole.FLOW

    def test_off_topic_selects_flow(self):
        result = select_agent(make_analysis(IntentCategory.OFF_TOPIC, topic_relevance=1.0), busy_context())
        assert result.role == AgentRole.FLOW

    def test_deterministic(self):
        analysis = make_analysis(IntentCategory.GENERAL, complexity=0.4, topic_relevance=0.7)
        context = busy_context()
        assert select_agent(analysis, context) == select_agent(analysis, context)

    def test_baseline_shared_by_all_roles(self):
        result = select_agent(make_analysis(IntentCategory.GENERAL), SelectionContext())
        for breakdown in result.breakdown.values():
            assert breakdown.base == 15.0


class TestComplexityBonus:

    def test_capped_at_five(self):
        analysis = make_analysis(IntentCategory.GENERAL, complexity=1.0, topic_relevance=1.0)
        for role in AgentRole:
            assert complexity_bonus(role, analysis) <= 5.0

    def test_non_decreasing_in_complexity(self):
        for role in AgentRole:
            previous = -1.0
            for step in range(11):
                analysis = make_analysis(IntentCategory.GENERAL, complexity=step / 10, topic_relevance=step / 10)
                bonus = complexity_bonus(role, analysis)
                assert bonus >= previous
                previous = bonus


class TestAvailability:
    """Unavailable roles never win."""

    def test_unavailable_role_skipped(self):
        analysis = make_analysis(IntentCategory.POLICY_EXPERTISE, is_question=True, has_policy_signal=True)
        context = SelectionContext(availability={AgentRole.POLICY: False})

        result = select_agent(analysis, context)

        assert result.role != AgentRole.POLICY
        assert result.scores[AgentRole.POLICY.value] == UNAVAILABLE_SCORE

    def test_no_roles_available_falls_back(self):
        context = SelectionContext(availability={role: False for role in AgentRole})
        result = select_agent(make_analysis(IntentCategory.GENERAL), context)

        assert result.role == FALLBACK_ROLE
        assert result.reason == "no available agents"


class TestTieBreak:
    """Near-ties go to the intent's preferred role."""

    def test_preferred_runner_up_wins_within_margin(self):
        # peer 15 + 5 + 10 = 30, policy 15 + 12 = 27
        analysis = make_analysis(IntentCategory.POLICY_EXPERTISE, complexity=0.0, topic_relevance=1.0,
                                 has_policy_signal=True)
        result = select_agent(analysis, busy_context())

        assert result.scores[AgentRole.PEER.value] == 30.0
        assert result.scores[AgentRole.POLICY.value] == 27.0
        assert result.role == AgentRole.POLICY
        assert result.tie_break_applied

    def test_clear_leader_keeps_role(self):
        # peer 30, flow 15 + 8 = 23
        analysis = make_analysis(IntentCategory.GENERAL, complexity=0.0, topic_relevance=1.0)
        result = select_agent(analysis, busy_context())

        assert result.role == AgentRole.PEER
        assert not result.tie_break_applied


class TestForcedRole:

    def test_forced_role_wins(self):
        context = SelectionContext(forced_role=AgentRole.POLICY)
        result = select_agent(make_analysis(IntentCategory.DELIBERATION_PROCESS), context)

        assert result.role == AgentRole.POLICY
        assert result.forced

    def test_unavailable_forced_role_scores_normally(self):
        context = SelectionContext(forced_role=AgentRole.POLICY, availability={AgentRole.POLICY: False})
        result = select_agent(make_analysis(IntentCategory.DELIBERATION_PROCESS), context)

        assert result.role == AgentRole.FLOW
        assert not result.forced


class TestAgentSelector:

    def setup_method(self):
        self.selector = AgentSelector()

    def test_select_matches_pure_function(self):
        analysis = make_analysis(IntentCategory.GENERAL, complexity=0.3)
        context = SelectionContext()
        assert self.selector.select(analysis, context).role == select_agent(analysis, context).role

"""Tests for engagement metrics."""

from datetime import datetime, timedelta

import pytest

from agora.agents.base import ConversationMessage
from agora.agents.engagement import (
    DEGRADED_METRICS,
    NO_SCOPE_METRICS,
    InteractionPhase,
    compute_engagement,
    load_engagement,
)
from agora.storage.memory import InMemoryAgentConfigStore, InMemoryMessageStore

NOW = datetime(2026, 3, 1, 12, 0, 0)


def messages(count: int, length: int, authors: int = 1, minutes_apart: int = 5):
    return [
        ConversationMessage(
            content="x" * length,
            author_id=f"user-{i % authors}",
            scope_id="scope-1",
            created_at=NOW - timedelta(minutes=i * minutes_apart)
        )
        for i in range(count)
    ]


class FailingMessageStore(InMemoryMessageStore):
    async def recent_messages(self, scope_id, limit=50, since=None):
        raise ConnectionError("store offline")


class TestComputeEngagement:

    def test_empty_conversation(self):
        metrics = compute_engagement([], now=NOW)

        assert metrics.message_velocity == 0.0
        assert metrics.active_participants == 1
        assert metrics.conversation_depth == 0.5
        assert metrics.interaction_phase == InteractionPhase.INITIAL

    def test_building_phase(self):
        metrics = compute_engagement(messages(10, 50, authors=3), now=NOW)

        assert metrics.message_velocity == 5.0
        assert metrics.active_participants == 3
        assert metrics.interaction_phase == InteractionPhase.BUILDING

    def test_synthesizing_phase(self):
        metrics = compute_engagement(messages(2, 300), now=NOW)

        assert metrics.conversation_depth == 1.0
        assert metrics.interaction_phase == InteractionPhase.SYNTHESIZING

    def test_concluding_phase(self):
        metrics = compute_engagement(messages(1, 120), now=NOW)

        assert metrics.message_velocity == 0.5
        assert metrics.interaction_phase == InteractionPhase.CONCLUDING

    def test_old_messages_ignored(self):
        stale = messages(5, 50, minutes_apart=70)
        metrics = compute_engagement(stale, now=NOW)
        # only t=0 and t=-70min fall inside the two-hour window
        assert metrics.message_velocity == 1.0

    def test_participant_count_override(self):
        metrics = compute_engagement(messages(3, 50), now=NOW, active_participants=7)
        assert metrics.active_participants == 7


class TestLoadEngagement:

    @pytest.mark.asyncio
    async def test_no_scope(self):
        metrics = await load_engagement(InMemoryMessageStore(), InMemoryAgentConfigStore(), None)
        assert metrics == NO_SCOPE_METRICS

    @pytest.mark.asyncio
    async def test_store_failure_degrades(self):
        metrics = await load_engagement(FailingMessageStore(), InMemoryAgentConfigStore(), "scope-1", now=NOW)
        assert metrics == DEGRADED_METRICS

    @pytest.mark.asyncio
    async def test_reads_store(self):
        store = InMemoryMessageStore()
        for message in messages(10, 50, authors=3):
            await store.insert_message(message)
        config_store = InMemoryAgentConfigStore()
        for author in ("a", "b", "c", "d"):
            config_store.record_participant_activity("scope-1", author, at=NOW)

        metrics = await load_engagement(store, config_store, "scope-1", now=NOW)

        assert metrics.message_velocity == 5.0
        assert metrics.active_participants == 4
        assert metrics.interaction_phase == InteractionPhase.BUILDING

"""Tests for the resilient model invoker.

Tests cover:
1. Sequential fallback with minimal-context retry
2. Parallel racing and degradation to sequential
3. Context reduction on fallback attempts
4. Per-attempt request parameters
"""

import asyncio

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from agora.agents.base import AgentRole
from agora.core.errors import ModelChainExhausted, TransientProviderError, ValidationError
from agora.llm.invoker import (
    MINIMAL_RETRY_TIMEOUT,
    MINIMAL_RETRY_TOKENS,
    InvocationStrategy,
    ResilientModelInvoker,
    context_reduction_factor,
    minimal_context,
    reduce_context,
)
from agora.llm.models import (
    build_fallback_chain,
    calculate_max_tokens,
    calculate_temperature,
    calculate_timeout,
)
from conftest import FakeProvider


def conversation(turns: int):
    messages = [SystemMessage(content="system")]
    for i in range(turns):
        if i % 2 == 0:
            messages.append(HumanMessage(content=f"user {i}"))
        else:
            messages.append(AIMessage(content=f"agent {i}"))
    messages.append(HumanMessage(content="latest question"))
    return messages


class SlowProvider(FakeProvider):
    """Never answers for the ``slow`` model within a short timeout."""

    async def complete(self, model, messages, **kwargs):
        if model == "slow":
            await asyncio.sleep(1)
        return await super().complete(model, messages, **kwargs)


class DelayedProvider(FakeProvider):
    """Answers each model after its configured delay."""

    def __init__(self, delays):
        super().__init__()
        self.delays = delays

    async def complete(self, model, messages, **kwargs):
        await asyncio.sleep(self.delays.get(model, 0))
        return await super().complete(model, messages, **kwargs)


class TestSequentialInvocation:
    """Tests for walking the fallback chain."""

    def setup_method(self):
        self.provider = FakeProvider()
        self.invoker = ResilientModelInvoker(self.provider)

    @pytest.mark.asyncio
    async def test_empty_primary_falls_through(self):
        """modelA is empty on both the full and the minimal-context attempt."""
        self.provider.script("modelA", "", "")
        self.provider.script("modelB", "answer from B")

        result = await self.invoker.invoke(
            ["modelA", "modelB"], conversation(2), strategy=InvocationStrategy.SEQUENTIAL
        )

        assert result.model_used == "modelB"
        assert result.content == "answer from B"
        assert result.attempts == 3
        assert len(self.provider.calls_for("modelA")) == 2

    @pytest.mark.asyncio
    async def test_minimal_retry_on_primary(self):
        self.provider.script("modelA", "", "short answer")

        result = await self.invoker.invoke(
            ["modelA", "modelB"], conversation(4), strategy="sequential", enhanced=True
        )

        assert result.model_used == "modelA"
        assert result.strategy == InvocationStrategy.MINIMAL_RETRY
        first, retry = self.provider.calls_for("modelA")
        assert first["temperature"] == 0.75
        assert len(retry["messages"]) == 2
        assert retry["max_tokens"] == MINIMAL_RETRY_TOKENS
        assert retry["timeout"] == MINIMAL_RETRY_TIMEOUT
        assert retry["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_failed_primary_moves_on_without_minimal_retry(self):
        self.provider.script("modelA", TransientProviderError("timeout"), "never sent")
        self.provider.script("modelB", "answer from B")

        result = await self.invoker.invoke(["modelA", "modelB"], conversation(4), strategy="sequential")

        assert result.model_used == "modelB"
        assert result.strategy == InvocationStrategy.SEQUENTIAL
        assert result.attempts == 2
        assert len(self.provider.calls_for("modelA")) == 1

    @pytest.mark.asyncio
    async def test_no_minimal_retry_for_short_context(self):
        self.provider.script("modelA", "")
        self.provider.script("modelB", "ok")

        result = await self.invoker.invoke(["modelA", "modelB"], conversation(0), strategy="sequential")

        assert result.model_used == "modelB"
        assert len(self.provider.calls_for("modelA")) == 1

    @pytest.mark.asyncio
    async def test_fallback_gets_reduced_context(self):
        self.provider.script("modelA", "", "")
        self.provider.script("modelB", "ok")
        messages = conversation(10)

        await self.invoker.invoke(["modelA", "modelB"], messages, strategy="sequential")

        sent = self.provider.calls_for("modelB")[0]["messages"]
        assert len(sent) == 10
        assert sent[0] is messages[0]
        assert sent[-1] is messages[-1]

    @pytest.mark.asyncio
    async def test_chain_exhausted(self):
        self.provider.script("modelA", TransientProviderError("down"))
        self.provider.script("modelB", RuntimeError("bad payload"))

        with pytest.raises(ModelChainExhausted) as excinfo:
            await self.invoker.invoke(["modelA", "modelB"], conversation(0), strategy="sequential")

        assert excinfo.value.attempts == 2
        assert excinfo.value.models == ["modelA", "modelB"]

    @pytest.mark.asyncio
    async def test_timeout_is_a_failed_attempt(self):
        provider = SlowProvider()
        invoker = ResilientModelInvoker(provider, timeout_cap=0.05)

        result = await invoker.invoke(["slow", "fast"], conversation(0), strategy="sequential")

        assert result.model_used == "fast"

    @pytest.mark.asyncio
    async def test_rejects_empty_inputs(self):
        with pytest.raises(ValidationError):
            await self.invoker.invoke([], conversation(0))
        with pytest.raises(ValidationError):
            await self.invoker.invoke(["modelA"], [])


class TestParallelInvocation:
    """Tests for racing the head of the chain."""

    def setup_method(self):
        self.provider = FakeProvider()
        self.invoker = ResilientModelInvoker(self.provider, max_parallel=3)

    @pytest.mark.asyncio
    async def test_first_usable_result_wins(self):
        self.provider.script("m1", TransientProviderError("down"))
        self.provider.script("m2", "")
        self.provider.script("m3", "parallel answer")

        result = await self.invoker.invoke(["m1", "m2", "m3"], conversation(0), strategy="parallel")

        assert result.model_used == "m3"
        assert result.strategy == InvocationStrategy.PARALLEL

    @pytest.mark.asyncio
    async def test_races_at_most_max_parallel(self):
        invoker = ResilientModelInvoker(self.provider, max_parallel=2)

        await invoker.invoke(["m1", "m2", "m3", "m4"], conversation(0), strategy="parallel")

        raced = {call["model"] for call in self.provider.calls}
        assert raced <= {"m1", "m2"}

    @pytest.mark.asyncio
    async def test_all_racers_fail_degrades_to_sequential(self):
        self.provider.script("m1", TransientProviderError("down"), "sequential answer")
        self.provider.script("m2", TransientProviderError("down"))
        self.provider.script("m3", TransientProviderError("down"))

        result = await self.invoker.invoke(["m1", "m2", "m3"], conversation(0), strategy="parallel")

        assert result.model_used == "m1"
        assert result.strategy == InvocationStrategy.SEQUENTIAL
        assert result.attempts == 4

    @pytest.mark.asyncio
    async def test_slow_racer_is_abandoned_not_cancelled(self):
        provider = DelayedProvider(delays={"slow": 0.2})
        invoker = ResilientModelInvoker(provider, max_parallel=2)

        result = await invoker.invoke(["slow", "fast"], conversation(0), strategy="parallel")

        assert result.model_used == "fast"
        assert len(invoker._abandoned) == 1
        (straggler,) = invoker._abandoned
        assert not straggler.done()

        await asyncio.wait_for(straggler, timeout=1)
        await asyncio.sleep(0)

        assert not straggler.cancelled()
        assert straggler.result() == "Generated reply"
        assert invoker._abandoned == set()
        assert len(provider.calls_for("slow")) == 1


class TestContextReduction:

    def test_factor_schedule(self):
        assert context_reduction_factor(0) == 1.0
        assert context_reduction_factor(1) == pytest.approx(0.8)
        assert context_reduction_factor(2) == pytest.approx(0.6)
        assert context_reduction_factor(3) == 0.5
        assert context_reduction_factor(6) == 0.5

    def test_keeps_system_and_final_user(self):
        messages = conversation(10)
        reduced = reduce_context(messages, 0.5)

        assert reduced[0] is messages[0]
        assert reduced[-1] is messages[-1]
        assert len(reduced) == 7

    def test_prefers_recent_messages(self):
        messages = conversation(10)
        reduced = reduce_context(messages, 0.8)
        middle = messages[1:-1]

        # 8 kept: the 2 earliest and the 6 most recent
        assert reduced[1:-1] == middle[:2] + middle[-6:]

    def test_full_factor_is_identity(self):
        messages = conversation(4)
        assert reduce_context(messages, 1.0) == messages

    def test_minimal_context(self):
        messages = conversation(6)
        assert minimal_context(messages) == [messages[0], messages[-1]]


class TestRequestParameters:

    def test_fallback_chain_deduplicates(self):
        assert build_fallback_chain("gpt-4o", ["gpt-4o-mini", "gpt-4o", "gpt-4.1-mini"]) == [
            "gpt-4o", "gpt-4o-mini", "gpt-4.1-mini"
        ]

    def test_max_tokens(self):
        assert calculate_max_tokens("gpt-4o-mini", AgentRole.FLOW) == 700
        assert calculate_max_tokens("gpt-4o-mini", AgentRole.POLICY) == 1000
        assert calculate_max_tokens("gpt-4o", AgentRole.POLICY, attempt=2) == 680
        assert calculate_max_tokens("gpt-4o", AgentRole.POLICY, attempt=10) == 480

    def test_temperature(self):
        assert calculate_temperature("o3", AgentRole.POLICY) is None
        assert calculate_temperature("gpt-4o", AgentRole.FLOW) == 0.3
        assert calculate_temperature("gpt-4o", AgentRole.PEER, enhanced=True) == 0.75
        assert calculate_temperature("gpt-4o", AgentRole.PEER) == 0.7

    def test_timeout_shrinks_on_fallback(self):
        assert calculate_timeout("gpt-4o", 0, cap=45.0) == 25.0
        assert calculate_timeout("gpt-4o", 1, cap=45.0) == 22.0
        assert calculate_timeout("gpt-4o-mini", 3, cap=45.0) == 8.0
        assert calculate_timeout("o3", 0, cap=20.0) == 20.0

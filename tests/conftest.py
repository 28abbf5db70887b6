"""Pytest configuration and shared fixtures."""

import os

os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("RETRY_BASE_DELAY", "0")
os.environ.setdefault("RETRY_MAX_DELAY", "0")

import re
from typing import Callable, Dict, List, Optional, Sequence, Union

import pytest
from langchain_core.messages import BaseMessage

from agora.agents.base import AgentConfig, AgentRole
from agora.agents.orchestrator import OrchestrationController, OrchestrationServices
from agora.llm.provider import CompletionProvider, CompletionResult
from agora.resilience.circuit_breaker import CircuitBreaker, InMemoryBreakerStore
from agora.storage.base import KnowledgeChunk
from agora.storage.memory import InMemoryAgentConfigStore, InMemoryKnowledgeStore, InMemoryMessageStore

VOCABULARY = ["cost", "tax", "policy", "business", "health", "care", "law", "budget", "housing", "school"]

Outcome = Union[str, BaseException, Callable[[Sequence[BaseMessage]], str]]


def keyword_embedding(text: str) -> List[float]:
    """Bag-of-words vector over a small vocabulary, with a constant bias component."""
    words = re.findall(r"[a-z]+", text.lower())
    return [float(sum(1 for w in words if w.startswith(term))) for term in VOCABULARY] + [0.1]


class FakeProvider(CompletionProvider):
    """Scripted provider: per-model queues of replies, errors or callables."""

    name = "fake"

    def __init__(self, default: str = "Generated reply", responses: Optional[Dict[str, List[Outcome]]] = None):
        self.default = default
        self.responses: Dict[str, List[Outcome]] = {model: list(items) for model, items in (responses or {}).items()}
        self.responder: Optional[Callable[[str, Sequence[BaseMessage], bool], Optional[str]]] = None
        self.embed_error: Optional[BaseException] = None
        self.calls: List[dict] = []
        self.embed_calls: List[str] = []

    def script(self, model: str, *outcomes: Outcome) -> None:
        self.responses.setdefault(model, []).extend(outcomes)

    def calls_for(self, model: str) -> List[dict]:
        return [call for call in self.calls if call["model"] == model]

    async def complete(
        self,
        model: str,
        messages: Sequence[BaseMessage],
        max_tokens: int = 800,
        temperature: Optional[float] = None,
        json_mode: bool = False,
        timeout: float = 25.0
    ) -> CompletionResult:
        self.calls.append({
            "model": model,
            "messages": list(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "json_mode": json_mode,
            "timeout": timeout,
        })

        queue = self.responses.get(model)
        if queue:
            outcome = queue.pop(0)
        elif self.responder is not None:
            outcome = self.responder(model, messages, json_mode)
            if outcome is None:
                outcome = self.default
        else:
            outcome = self.default

        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = outcome(messages)
        return CompletionResult(content=outcome, model=model)

    async def embed(self, text: str, model: Optional[str] = None, timeout: float = 15.0) -> List[float]:
        self.embed_calls.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        return keyword_embedding(text)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_agent(role: AgentRole, scope_id: Optional[str] = None, **overrides) -> AgentConfig:
    fields = {
        "name": f"{role.value} ({scope_id or 'global'})",
        "role": role,
        "scope_id": scope_id,
        "is_default": scope_id is None,
    }
    fields.update(overrides)
    return AgentConfig(**fields)


def add_document(store: InMemoryKnowledgeStore, agent_id: str, doc_id: str, title: str, content: str,
                 chunk_index: int = 0, file_name: Optional[str] = None) -> KnowledgeChunk:
    chunk = KnowledgeChunk(
        id=doc_id, agent_id=agent_id, title=title, content=content,
        file_name=file_name or f"{doc_id}.pdf", chunk_index=chunk_index
    )
    store.add_chunk(chunk, keyword_embedding(f"{title} {content}"))
    return chunk


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def clock():
    return FakeClock(1000.0)


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(store=InMemoryBreakerStore(), clock=clock, half_open_probe=False)


@pytest.fixture
def message_store():
    return InMemoryMessageStore()


@pytest.fixture
def config_store():
    return InMemoryAgentConfigStore([
        make_agent(AgentRole.POLICY, id="policy-global"),
        make_agent(AgentRole.PEER, id="peer-global"),
        make_agent(AgentRole.FLOW, id="flow-global"),
    ])


@pytest.fixture
def knowledge_store():
    return InMemoryKnowledgeStore()


@pytest.fixture
def services(provider, breaker, message_store, config_store, knowledge_store):
    return OrchestrationServices(
        provider=provider,
        breaker=breaker,
        message_store=message_store,
        config_store=config_store,
        knowledge_store=knowledge_store
    )


@pytest.fixture
def controller(services):
    return OrchestrationController(services)

"""Tests for the collaborator stores."""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from agora.agents.base import ConversationMessage
from agora.storage import InMemoryKnowledgeStore, InMemoryMessageStore, get_knowledge_store
from agora.storage.qdrant import QdrantKnowledgeStore
from conftest import add_document, keyword_embedding


class TestInMemoryKnowledgeStore:

    def setup_method(self):
        self.store = InMemoryKnowledgeStore()
        add_document(self.store, "agent-1", "tax", "Tax policy", "Tax rates for small business.")
        add_document(self.store, "agent-1", "school", "Schools", "School budgets.")
        add_document(self.store, "agent-2", "other", "Tax policy", "Another agent's tax notes.")

    @pytest.mark.asyncio
    async def test_match_chunks_threshold_and_scope(self):
        matches = await self.store.match_chunks("agent-1", keyword_embedding("tax policy"), 0.5, 10)

        assert [m.id for m in matches] == ["tax"]
        assert matches[0].similarity > 0.5

    @pytest.mark.asyncio
    async def test_zero_embedding_matches_nothing(self):
        assert await self.store.match_chunks("agent-1", [0.0] * 11, 0.0, 10) == []

    @pytest.mark.asyncio
    async def test_text_search(self):
        results = await self.store.text_search("agent-1", "school budgets", 5)

        assert [r.id for r in results] == ["school"]
        assert results[0].similarity is None


class TestInMemoryMessageStore:

    @pytest.mark.asyncio
    async def test_recent_messages_oldest_first(self):
        store = InMemoryMessageStore()
        now = datetime.utcnow()
        for minutes in (1, 30, 5):
            await store.insert_message(ConversationMessage(
                content=f"{minutes} minutes ago", scope_id="s", created_at=now - timedelta(minutes=minutes)
            ))
        await store.insert_message(ConversationMessage(content="elsewhere", scope_id="t"))

        recent = await store.recent_messages("s", limit=2)
        assert [m.content for m in recent] == ["5 minutes ago", "1 minutes ago"]

        since = await store.recent_messages("s", since=now - timedelta(minutes=10))
        assert len(since) == 2


class TestQdrantKnowledgeStore:

    def setup_method(self):
        self.client = MagicMock()
        self.store = QdrantKnowledgeStore(collection="knowledge", client=self.client)
        self.payload = {
            "document_id": "doc-1", "agent_id": "agent-1", "title": "Tax Act",
            "content": "Rates rise.", "file_name": "tax.pdf", "chunk_index": 2,
        }

    @pytest.mark.asyncio
    async def test_match_chunks(self):
        self.client.query_points.return_value = SimpleNamespace(
            points=[SimpleNamespace(payload=self.payload, score=0.82)]
        )

        chunks = await self.store.match_chunks("agent-1", [0.1, 0.2], 0.35, 5)

        assert chunks[0].id == "doc-1"
        assert chunks[0].chunk_index == 2
        assert chunks[0].similarity == 0.82
        kwargs = self.client.query_points.call_args.kwargs
        assert kwargs["collection_name"] == "knowledge"
        assert kwargs["score_threshold"] == 0.35
        assert kwargs["query_filter"].must[0].match.value == "agent-1"

    @pytest.mark.asyncio
    async def test_text_search(self):
        self.client.scroll.return_value = ([SimpleNamespace(payload=self.payload)], None)

        chunks = await self.store.text_search("agent-1", "rates", 5)

        assert chunks[0].title == "Tax Act"
        assert chunks[0].similarity is None
        conditions = self.client.scroll.call_args.kwargs["scroll_filter"].must
        assert conditions[1].match.text == "rates"


class TestStoreFactory:

    def test_memory(self):
        assert isinstance(get_knowledge_store("memory"), InMemoryKnowledgeStore)

    def test_qdrant_is_lazy(self):
        store = get_knowledge_store("qdrant")
        assert isinstance(store, QdrantKnowledgeStore)
        assert store._client is None

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_knowledge_store("pinecone")

"""Tests for the HTTP surface."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from agora.api.main import create_app
from agora.resilience.circuit_breaker import BREAKER_POLICIES

API = "/api/v1"
PEER_MESSAGE = "What have other participants said about cost?"


class TestOrchestrationAPI:

    @pytest.fixture(autouse=True)
    def setup(self, services, breaker):
        self.services = services
        self.breaker = breaker
        self.client = TestClient(create_app(services))

    def test_root(self):
        response = self.client.get("/")
        assert response.status_code == 200
        assert response.json()["health"] == "/api/v1/health"

    def test_health_reports_metrics(self):
        self.client.get("/")
        response = self.client.get(f"{API}/health")

        body = response.json()
        assert body["status"] == "healthy"
        assert body["metrics"]["total_requests"] >= 1

    def test_request_id_echoed(self):
        response = self.client.post(
            f"{API}/orchestration/classify", json={"message": PEER_MESSAGE}, headers={"X-Request-ID": "req-123"}
        )

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["metadata"]["request_id"] == "req-123"

    def test_classify(self):
        response = self.client.post(f"{API}/orchestration/classify", json={"message": PEER_MESSAGE})

        assert response.status_code == 200
        assert response.json()["data"]["intent"] == "participant_request"

    def test_empty_message_is_bad_request(self):
        response = self.client.post(f"{API}/orchestration/respond", json={"message": ""})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_select_with_inline_context(self):
        analysis = self.client.post(f"{API}/orchestration/classify", json={"message": PEER_MESSAGE}).json()["data"]

        response = self.client.post(
            f"{API}/orchestration/select",
            json={"analysis": analysis, "message_count": 0, "availability": {"peer_agent": False}}
        )

        assert response.status_code == 200
        assert response.json()["data"]["role"] != "peer_agent"

    def test_invoke(self):
        response = self.client.post(
            f"{API}/orchestration/invoke",
            json={"messages": [{"role": "system", "content": "Be brief"}, {"role": "user", "content": "Hello"}]}
        )

        assert response.status_code == 200
        assert response.json()["data"]["content"] == "Generated reply"

    def test_respond(self):
        response = self.client.post(
            f"{API}/orchestration/respond", json={"message": PEER_MESSAGE, "scope_id": "scope-1"}
        )

        body = response.json()
        assert response.status_code == 200
        assert body["data"]["agent_role"] == "peer_agent"
        assert body["metadata"]["degraded"] is False

    def test_knowledge_query_validation(self):
        response = self.client.post(f"{API}/knowledge/query", json={"query": "tax", "max_results": 0})
        assert response.status_code == 422

    def test_knowledge_query_empty(self):
        response = self.client.post(f"{API}/knowledge/query", json={"query": " "})
        assert response.status_code == 400

    def test_breaker_status(self):
        for _ in range(3):
            asyncio.run(self.breaker.record_failure("knowledge_query"))

        response = self.client.get(f"{API}/health/breakers")

        body = response.json()
        assert body["status"] == "degraded"
        assert body["open"] == 1
        assert len(body["breakers"]) == len(BREAKER_POLICIES) + 1


class TestUninitializedAPI:

    def test_missing_controller_is_unavailable(self):
        client = TestClient(create_app())
        response = client.post(f"{API}/orchestration/classify", json={"message": "hello"})
        assert response.status_code == 503

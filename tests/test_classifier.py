"""Tests for the two-stage intent classifier.

Tests cover:
1. Priority-ordered deterministic detectors
2. Heuristic complexity and relevance scoring
3. Model enrichment, clamping and malformed output
4. Breaker and retry behaviour around the model stage
"""

import pytest

from agora.agents.classifier import (
    ANALYSIS_OPERATION,
    IntentCategory,
    IntentClassifier,
    clamp_unit,
    detect_intent,
    detect_off_topic,
    detect_participant_request,
    detect_policy_expertise,
    detect_process_question,
    heuristic_analysis,
    parse_analysis_payload,
)
from agora.core.errors import TransientProviderError, ValidationError
from agora.resilience.circuit_breaker import CircuitBreaker, InMemoryBreakerStore
from conftest import FakeClock, FakeProvider

MODEL = "gpt-4o-mini"


class TestDetectors:
    """Tests for the pure detector functions."""

    def test_participant_request(self):
        assert detect_participant_request("What have other participants said about cost?")
        assert detect_participant_request("What do people think about this?")
        assert detect_participant_request("Show me the other perspectives")
        assert not detect_participant_request("I think cost matters most")

    def test_policy_expertise(self):
        assert detect_policy_expertise("What are the legal implications of this bill?")
        assert detect_policy_expertise("Who is eligible for the programme?")
        assert not detect_policy_expertise("I had a lovely walk today")

    def test_policy_keywords_use_word_boundaries(self):
        assert not detect_policy_expertise("That was an exact reaction")
        assert not detect_policy_expertise("The billboard was bright")

    def test_process_question(self):
        assert detect_process_question("How does this deliberation work?")
        assert detect_process_question("What should I do next?")

    def test_explicit_topic_change_is_off_topic(self):
        assert detect_off_topic("Can we talk about something else please")
        assert detect_off_topic("Let's change the subject")

    def test_long_unrelated_message_is_off_topic(self):
        message = (
            "Yesterday I watched a fantastic football match with my friends and we all "
            "agreed the referee made several questionable calls throughout the second half"
        )
        assert detect_off_topic(message, topic="Assisted dying legislation")
        assert not detect_off_topic(message)

    def test_long_related_message_is_on_topic(self):
        message = (
            "I have been thinking a lot about palliative care and whether the current "
            "support offered to families is anywhere near enough for people in their final months"
        )
        assert not detect_off_topic(message, topic="Assisted dying legislation")


class TestDetectIntent:
    """Tests for priority ordering of intents."""

    def test_participant_request_scenario(self):
        detection = detect_intent("What have other participants said about cost?")
        assert detection.primary == IntentCategory.PARTICIPANT_REQUEST
        assert detection.is_question

    def test_participant_beats_policy(self):
        detection = detect_intent("What have other participants said about the legislation?")
        assert detection.primary == IntentCategory.PARTICIPANT_REQUEST
        assert detection.secondary == IntentCategory.POLICY_EXPERTISE

    def test_off_topic_beats_everything(self):
        detection = detect_intent("Let's change the topic, what does the law say?")
        assert detection.primary == IntentCategory.OFF_TOPIC

    def test_policy_with_process_secondary(self):
        detection = detect_intent("How does the process of passing legislation work?")
        assert detection.primary == IntentCategory.POLICY_EXPERTISE
        assert detection.secondary == IntentCategory.DELIBERATION_PROCESS

    def test_general(self):
        detection = detect_intent("I really appreciate everyone here")
        assert detection.primary == IntentCategory.GENERAL
        assert detection.confidence == 0.6

    def test_deterministic(self):
        message = "What are the safeguards in the proposed bill?"
        assert detect_intent(message) == detect_intent(message)


class TestHeuristicAnalysis:
    """Tests for keyword-density scoring."""

    def test_scores_within_bounds(self):
        analysis = heuristic_analysis("analysis " * 200)
        assert 0.0 <= analysis.complexity <= 1.0
        assert 0.0 <= analysis.topic_relevance <= 1.0

    def test_relevance_floor(self):
        analysis = heuristic_analysis("Nice weather")
        assert analysis.topic_relevance == 0.3

    def test_strong_policy_requires_expertise(self):
        analysis = heuristic_analysis("Explain the legal precedent and statutory interpretation here")
        assert analysis.requires_expertise
        assert analysis.label == "policy"

    def test_source_is_heuristic(self):
        analysis = heuristic_analysis("Hello")
        assert analysis.source == "heuristic"
        assert analysis.confidence == 0.8


class TestParsing:
    """Tests for lenient model-output parsing."""

    def test_clamp_unit(self):
        assert clamp_unit(1.7, 0.5) == 1.0
        assert clamp_unit(-0.2, 0.5) == 0.0
        assert clamp_unit("0.4", 0.5) == 0.4
        assert clamp_unit("high", 0.5) == 0.5
        assert clamp_unit(None, 0.5) == 0.5
        assert clamp_unit(float("nan"), 0.5) == 0.5

    def test_json_embedded_in_prose(self):
        payload = parse_analysis_payload('Sure! {"intent": "question", "complexity": 0.4} Hope that helps')
        assert payload["intent"] == "question"
        assert payload["complexity"] == 0.4

    def test_camel_case_keys(self):
        payload = parse_analysis_payload('{"topicRelevance": 0.9, "requiresExpertise": true}')
        assert payload["topic_relevance"] == 0.9
        assert payload["requires_expertise"] is True

    def test_text_extraction(self):
        payload = parse_analysis_payload("intent: argument\ncomplexity: 0.65\nrelevance: 0.8")
        assert payload["intent"] == "argument"
        assert payload["confidence"] == 0.6

    def test_unusable_output(self):
        assert parse_analysis_payload("") is None
        assert parse_analysis_payload("I cannot help with that") is None


class TestIntentClassifier:
    """Tests for the classifier with a scripted provider."""

    def setup_method(self):
        self.provider = FakeProvider()
        self.clock = FakeClock(0.0)
        self.breaker = CircuitBreaker(store=InMemoryBreakerStore(), clock=self.clock)
        self.classifier = IntentClassifier(
            provider=self.provider, breaker=self.breaker, model=MODEL, max_retries=1, retry_base_delay=0
        )

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self):
        with pytest.raises(ValidationError):
            await self.classifier.classify("   ")

    @pytest.mark.asyncio
    async def test_confident_detection_skips_model(self):
        analysis = await self.classifier.classify("What have other participants said about cost?")

        assert analysis.intent == IntentCategory.PARTICIPANT_REQUEST
        assert analysis.source == "heuristic"
        assert self.provider.calls == []

    @pytest.mark.asyncio
    async def test_inconclusive_detection_is_enriched(self):
        self.provider.script(MODEL, '{"intent": "argument", "complexity": 1.5, "topic_relevance": -3, '
                                    '"requires_expertise": "yes", "confidence": 0.9}')

        analysis = await self.classifier.classify("I strongly disagree with that position")

        assert analysis.source == "model"
        assert analysis.intent == IntentCategory.GENERAL
        assert analysis.label == "argument"
        assert analysis.complexity == 1.0
        assert analysis.topic_relevance == 0.0
        assert analysis.requires_expertise is True
        assert self.provider.calls[0]["json_mode"] is True

    @pytest.mark.asyncio
    async def test_full_analysis_requested(self):
        self.provider.script(MODEL, '{"intent": "question", "complexity": 0.3}')

        analysis = await self.classifier.classify(
            "What have other participants said about cost?", require_full_analysis=True
        )

        assert analysis.source == "model"
        assert analysis.intent == IntentCategory.PARTICIPANT_REQUEST

    @pytest.mark.asyncio
    async def test_malformed_output_keeps_heuristic(self):
        self.provider.script(MODEL, "no structure here at all")

        analysis = await self.classifier.classify("Hello everyone")

        assert analysis.source == "heuristic"
        assert (await self.breaker.get_state(ANALYSIS_OPERATION))["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_provider_failure_records_breaker_failure(self):
        self.provider.script(MODEL, TransientProviderError("down"), TransientProviderError("down"))

        analysis = await self.classifier.classify("Hello everyone")

        assert analysis.source == "heuristic"
        assert len(self.provider.calls) == 2
        assert (await self.breaker.get_state(ANALYSIS_OPERATION))["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_empty_reply_is_retried(self):
        self.provider.script(MODEL, "", '{"intent": "question", "complexity": 0.2}')

        analysis = await self.classifier.classify("Hello everyone")

        assert analysis.source == "model"
        assert len(self.provider.calls) == 2

    @pytest.mark.asyncio
    async def test_open_breaker_skips_model(self):
        for _ in range(5):
            await self.breaker.record_failure(ANALYSIS_OPERATION)

        analysis = await self.classifier.classify("Hello everyone")

        assert analysis.source == "heuristic"
        assert self.provider.calls == []

    @pytest.mark.asyncio
    async def test_no_provider_is_heuristic_only(self):
        classifier = IntentClassifier(provider=None, breaker=self.breaker)
        analysis = await classifier.classify("Hello everyone")
        assert analysis.source == "heuristic"

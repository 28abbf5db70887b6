"""
Intent Classifier - two-stage message analysis.

Stage one is a set of pure, priority-ordered regex/keyword detectors plus a
heuristic scorer for complexity and relevance. Stage two asks a model for a
structured analysis, but only when stage one is inconclusive or a caller
explicitly wants it; the routing intent always comes from stage one.
"""

import asyncio
import json
import math
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from ..core.config import settings
from ..core.errors import TransientProviderError, ValidationError
from ..core.logging import logger
from ..llm.provider import CompletionProvider
from ..resilience.circuit_breaker import CircuitBreaker
from ..resilience.retry import retry_with_backoff

ANALYSIS_OPERATION = "message_analysis"
MAX_ANALYSIS_CHARS = 1000
HEURISTIC_CONFIDENCE = 0.8
PARSED_TEXT_CONFIDENCE = 0.6
OFF_TOPIC_MIN_WORDS = 20


class IntentCategory(Enum):
    """Primary routing intent, in detector priority order."""

    OFF_TOPIC = "off_topic"
    PARTICIPANT_REQUEST = "participant_request"
    POLICY_EXPERTISE = "policy_expertise"
    DELIBERATION_PROCESS = "deliberation_process"
    GENERAL = "general"


DETECTION_CONFIDENCE: Dict[IntentCategory, float] = {
    IntentCategory.OFF_TOPIC: 0.9,
    IntentCategory.PARTICIPANT_REQUEST: 0.85,
    IntentCategory.POLICY_EXPERTISE: 0.8,
    IntentCategory.DELIBERATION_PROCESS: 0.75,
    IntentCategory.GENERAL: 0.6,
}


class IntentDetection(BaseModel):
    """Output of the deterministic detector stage."""

    primary: IntentCategory
    secondary: Optional[IntentCategory] = None
    confidence: float
    is_question: bool = False
    has_policy_signal: bool = False


class AnalysisResult(BaseModel):
    """Structured analysis of one inbound message."""

    intent: IntentCategory
    complexity: float = Field(ge=0.0, le=1.0)
    topic_relevance: float = Field(ge=0.0, le=1.0)
    requires_expertise: bool
    confidence: float = Field(ge=0.0, le=1.0)
    secondary_intent: Optional[IntentCategory] = None
    is_question: bool = False
    has_policy_signal: bool = False
    label: str = "general"
    source: str = "heuristic"


def _words(terms: List[str]) -> Pattern:
    return re.compile(r"\b(?:" + "|".join(terms) + r")\b", re.IGNORECASE)


def _compile(patterns: List[str]) -> List[Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Off-topic / redirect
TOPIC_CHANGE_PATTERNS = _compile([
    r"\b(?:can\s+we\s+talk\s+about\s+something\s+else|let'?s\s+change\s+the\s+(?:subject|topic)"
    r"|move\s+on\s+to|discuss\s+something\s+different|change\s+the\s+(?:subject|topic))\b",
    r"\b(?:instead\s+of\b.*\blet'?s|rather\s+than\b.*\bcan\s+we|what\s+about\b.*\binstead"
    r"|how\s+about\s+we\s+talk\s+about)\b",
    r"\b(?:enough\s+about|tired\s+of|bored\s+with|sick\s+of)\b.*\b(?:this|that|topic|subject)\b",
    r"\b(?:off[\s-]topic|going\s+off\s+on\s+a\s+tangent)\b",
])

TOPIC_LEXICONS: Dict[str, List[str]] = {
    "assisted dying": [
        "assisted dying", "euthanasia", "end of life", "medical assistance in dying", "maid",
        "physician assisted", "terminal illness", "palliative care", "dignity", "suffering",
        "pain management", "quality of life", "autonomy", "medical ethics", "healthcare decisions",
    ],
}

_TOPIC_STOPWORDS = {"the", "and", "for", "with", "about", "should", "what", "this", "that", "from", "into"}

# Participant contributions
_PARTICIPANTS = r"(?:others?|people|participants?|members?|stakeholders?|citizens?|community|public|individuals?|groups?|voters?|constituents?)"
_ACTIONS = r"(?:said|mentioned|think|thought|contributed?|shared?|expressed?|raised?|brought\s+up|discussed?|talked\s+about)"
_UNITS = r"(?:issues?|points?|concerns?|problems?|topics?|matters?|questions?|perspectives?|viewpoints?|opinions?)"

PARTICIPANT_PATTERNS = _compile([
    r"\bwhat\s+(?:have\s+)?(?:others?|people|participants?)\s+(?:have\s+)?"
    r"(?:said|mentioned|contributed|shared|expressed|raised|discussed)\b",
    rf"\b(?:what\s+)?{_UNITS}\s+(?:have\s+)?{_PARTICIPANTS}\s+(?:have\s+)?{_ACTIONS}\b",
    rf"\b{_PARTICIPANTS}\s+(?:have\s+)?{_ACTIONS}\s+{_UNITS}\b",
    r"\b(?:hear\s+(?:from\s+)?(?:what\s+)?(?:others?|people)|what\s+(?:do\s+)?(?:others?|people)\s+think)\b",
    r"\bwhat\s+(?:issues?|points?|concerns?|topics?)\s+(?:have\s+)?(?:other\s+)?(?:others?|people|participants?|members?)"
    r"\s+(?:have\s+)?(?:raised|mentioned|said)\b",
    r"\bother\s+(?:people|participants?|members?)\s+(?:have\s+)?(?:raised|mentioned|said)\b",
    r"\b(?:show|tell)\s+me\s+(?:the\s+)?(?:other\s+)?(?:perspectives?|viewpoints?|opinions?)\b",
])

# Policy / expertise
STRONG_POLICY_PATTERNS = _compile([
    r"\b(?:constitutional\s+law|legal\s+precedent|statutory\s+interpretation|regulatory\s+framework)\b",
    r"\b(?:legislative\s+process|policy\s+analysis|legal\s+implications|compliance\s+requirements)\b",
    r"\b(?:how\s+does\s+the\s+law|what\s+does\s+the\s+statute|legal\s+definition\s+of)\b",
    r"\b(?:constitutional\s+basis|regulatory\s+authority|enforcement\s+mechanism)\b",
])

POLICY_QUESTION_PATTERNS = _compile([
    r"\bwhat\s+(?:are\s+the\s+)?(?:laws?|regulations?|policies|requirements|rules|guidelines)\b",
    r"\bhow\s+(?:does\s+the\s+)?(?:law|policy|regulation|system)\s+work\b",
    r"\bwho\s+(?:can|is\s+eligible|qualifies)\s+for\b",
    r"\bwhat\s+(?:are\s+the\s+)?(?:criteria|conditions|safeguards|protections)\b",
    r"\b(?:is\s+it\s+legal|legally\s+allowed|permitted\s+by\s+law)\b",
    r"\b(?:what\s+does\s+the\s+law\s+say|according\s+to\s+(?:law|policy))\b",
])

POLICY_KEYWORDS = _words([
    "policy", "policies", "legislation", "legislative", "law", "laws", "legal", "legally",
    "regulation", "regulations", "regulatory", "statute", "statutes", "statutory",
    "government", "governmental", "governance", "bill", "act", "amendment",
    "compliance", "enforcement", "jurisdiction", "authority", "framework",
    "implementation", "requirement", "requirements", "provision", "provisions",
])

TECHNICAL_TERMS = _words([
    "amendment", "subsection", "provision", "statute", "ordinance", "jurisdiction",
    "precedent", "liability", "compliance", "enforcement", "constitutional", "federal",
])

DOMAIN_POLICY_TERMS = _words([
    "maid", "medical assistance in dying", "physician assisted", "end of life care",
    "palliative care", "terminal diagnosis", "safeguards", "eligibility criteria",
    "waiting period", "second opinion", "capacity assessment",
])

CONTEXTUAL_POLICY = re.compile(
    r"\b(?:policy|policies|legislation|regulation)\s+(?:analysis|interpretation|implications|framework|development)\b",
    re.IGNORECASE
)

# Deliberation process
PROCESS_PATTERNS = _compile([
    r"how.*deliberation.*work", r"what.*rules", r"how.*process", r"how.*this.*work",
    r"what.*supposed.*do", r"how.*participate", r"what.*next", r"how.*contribute",
    r"what.*guidelines", r"how.*discussion.*work", r"what.*format", r"what.*structure",
    r"how.*engage", r"what.*expected", r"how.*should.*proceed", r"what.*steps",
])

QUESTION_PATTERN = re.compile(r"\b(?:what|why|how|when|where|who)\b|\?", re.IGNORECASE)

# Heuristic scoring
HEURISTIC_STRONG_POLICY = re.compile(
    r"\b(?:constitutional\s+law|legal\s+precedent|statutory\s+interpretation|regulatory\s+framework"
    r"|legislative\s+process|policy\s+analysis|legal\s+implications|compliance\s+requirements)\b",
    re.IGNORECASE
)
HEURISTIC_POLICY_QUESTIONS = re.compile(
    r"\b(?:how\s+does\s+the\s+law|what\s+does\s+the\s+statute|legal\s+definition\s+of"
    r"|constitutional\s+basis|regulatory\s+authority|enforcement\s+mechanism)\b",
    re.IGNORECASE
)
HEURISTIC_TECHNICAL = _words([
    "amendment", "subsection", "provision", "statute", "ordinance", "jurisdiction",
    "precedent", "liability", "compliance", "enforcement",
])

KEYWORD_WEIGHTS: Dict[str, Any] = {
    "question": (re.compile(
        r"\b(?:what|why|how|when|where|who|can\s+you|could\s+you|would\s+you|help\s+me\s+understand|explain)\b|\?",
        re.IGNORECASE), 0.7),
    "complex": (_words([
        "analyze", "analysis", "complex", "comprehensive", "detailed", "intricate", "sophisticated",
        "nuanced", "multifaceted", "implications", "consequences"]), 0.8),
    "expertise": (_words([
        "expert", "professional", "technical", "specialized", "advanced", "academic", "research",
        "study", "studies", "scientific", "evidence", "data"]), 0.85),
    "argument": (_words([
        "argue", "argument", "debate", "disagree", "oppose", "support", "claim", "assert",
        "contend", "position", "stance", "counter", "refute"]), 0.75),
    "participant": (_words([
        "participants?", "members?", "stakeholders?", "citizens?", "community", "public", "people",
        "individuals?", "groups?", "voters", "constituents", "others?", "said", "mentioned", "think",
        "contributed?", "shared?", "expressed?"]), 0.6),
}

MODEL_LABELS = {
    "participant_request": "participant",
    "participant_input": "participant",
    "question_clarification": "question",
    "policy_expertise": "policy",
    "argument_perspective": "argument",
}
VALID_LABELS = {"general", "question", "issue", "argument", "participant", "policy"}


def _any_match(patterns: List[Pattern], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def is_question(message: str) -> bool:
    return bool(QUESTION_PATTERN.search(message))


def topic_keywords(topic: str) -> List[str]:
    """Keywords that mark a message as on-topic for a deliberation."""
    topic_lower = topic.lower()
    keywords: List[str] = []
    for name, lexicon in TOPIC_LEXICONS.items():
        if name in topic_lower:
            keywords.extend(lexicon)
    keywords.extend(
        word for word in re.findall(r"[a-z][a-z'-]+", topic_lower)
        if len(word) > 3 and word not in _TOPIC_STOPWORDS
    )
    return keywords


def detect_off_topic(message: str, topic: Optional[str] = None) -> bool:
    """Explicit topic-change requests, or long messages sharing nothing with the topic."""
    if _any_match(TOPIC_CHANGE_PATTERNS, message):
        return True

    if topic:
        keywords = topic_keywords(topic)
        if keywords and len(message.split()) > OFF_TOPIC_MIN_WORDS:
            message_lower = message.lower()
            return not any(keyword in message_lower for keyword in keywords)
    return False


def detect_participant_request(message: str) -> bool:
    """Requests to hear what other participants have contributed."""
    return _any_match(PARTICIPANT_PATTERNS, message)


def detect_policy_expertise(message: str) -> bool:
    """Policy, legal or legislative signal anywhere in the message."""
    return (
        _any_match(STRONG_POLICY_PATTERNS, message)
        or _any_match(POLICY_QUESTION_PATTERNS, message)
        or bool(POLICY_KEYWORDS.search(message))
        or bool(TECHNICAL_TERMS.search(message))
        or bool(DOMAIN_POLICY_TERMS.search(message))
        or bool(CONTEXTUAL_POLICY.search(message))
    )


def detect_process_question(message: str) -> bool:
    """Questions about how the deliberation itself works."""
    return _any_match(PROCESS_PATTERNS, message)


def detect_intent(message: str, topic: Optional[str] = None) -> IntentDetection:
    """Run the detectors in priority order. Pure and deterministic."""
    question = is_question(message)
    policy = detect_policy_expertise(message)

    if detect_off_topic(message, topic):
        primary, secondary = IntentCategory.OFF_TOPIC, None
    elif detect_participant_request(message):
        primary = IntentCategory.PARTICIPANT_REQUEST
        secondary = IntentCategory.POLICY_EXPERTISE if policy else None
    elif policy:
        primary = IntentCategory.POLICY_EXPERTISE
        secondary = IntentCategory.DELIBERATION_PROCESS if detect_process_question(message) else None
    elif detect_process_question(message):
        primary, secondary = IntentCategory.DELIBERATION_PROCESS, None
    else:
        primary, secondary = IntentCategory.GENERAL, None

    return IntentDetection(
        primary=primary,
        secondary=secondary,
        confidence=DETECTION_CONFIDENCE[primary],
        is_question=question,
        has_policy_signal=policy,
    )


def policy_intent_score(message: str) -> float:
    """Weighted count of policy evidence; plain civic mentions score nothing."""
    return (
        len(HEURISTIC_STRONG_POLICY.findall(message)) * 2.0
        + len(HEURISTIC_POLICY_QUESTIONS.findall(message)) * 1.5
        + len(HEURISTIC_TECHNICAL.findall(message)) * 1.0
        + len(CONTEXTUAL_POLICY.findall(message)) * 1.0
    )


def heuristic_analysis(message: str, detection: Optional[IntentDetection] = None) -> AnalysisResult:
    """Complexity, relevance and expertise estimates from keyword density alone."""
    detection = detection or detect_intent(message)
    length = len(message)

    scores = {}
    for name, (pattern, weight) in KEYWORD_WEIGHTS.items():
        scores[name] = len(pattern.findall(message)) * weight

    policy_score = policy_intent_score(message)
    requires_expertise = policy_score > 1.5

    if detect_participant_request(message):
        label = "participant"
    elif requires_expertise:
        label = "policy"
    elif scores["question"] > 0.3:
        label = "question"
    elif scores["argument"] > 0.4:
        label = "argument"
    elif scores["participant"] > 0.3:
        label = "participant"
    else:
        label = "general"

    factors = [
        min(1.0, length / 500),
        min(1.0, scores["complex"] / 2),
        min(1.0, scores["expertise"] / 1.5),
    ]
    complexity = min(1.0, sum(factors) / len(factors))

    total = sum(scores.values())
    topic_relevance = max(0.3, min(1.0, total / max(1.0, length / 40)))

    requires_expertise = (
        requires_expertise
        or scores["expertise"] > 1.2
        or scores["complex"] > 1.0
        or complexity > 0.7
    )

    return AnalysisResult(
        intent=detection.primary,
        complexity=round(complexity, 2),
        topic_relevance=round(topic_relevance, 2),
        requires_expertise=requires_expertise,
        confidence=HEURISTIC_CONFIDENCE,
        secondary_intent=detection.secondary,
        is_question=detection.is_question,
        has_policy_signal=detection.has_policy_signal,
        label=label,
        source="heuristic",
    )


def clamp_unit(value: Any, fallback: float) -> float:
    """Coerce to a float in [0, 1]; anything non-numeric yields ``fallback``."""
    if isinstance(value, bool) or value is None:
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(number) or math.isinf(number):
        return fallback
    return min(1.0, max(0.0, number))


def _parse_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value.strip().lower() in ("true", "yes", "1"):
            return True
        if value.strip().lower() in ("false", "no", "0"):
            return False
    return fallback


def normalize_label(value: Any) -> str:
    label = str(value or "general").strip().lower()
    label = MODEL_LABELS.get(label, label)
    return label if label in VALID_LABELS else "general"


def extract_analysis_from_text(content: str) -> Optional[Dict[str, Any]]:
    """Lenient field extraction from a non-JSON model reply.

    Returns None unless at least two fields could be recovered.
    """
    patterns = {
        "intent": r"(?:intent|type|category)[^:=\n]*[:=]\s*\"?([a-zA-Z_]+)",
        "complexity": r"complexity[^:=\n]*[:=]\s*([0-9.]+)",
        "topic_relevance": r"(?:topic[\s_]*)?relevance[^:=\n]*[:=]\s*([0-9.]+)",
        "requires_expertise": r"(?:requires[\s_]*)?expertise[^:=\n]*[:=]\s*(true|false|yes|no)",
    }
    extracted: Dict[str, Any] = {}
    for key, pattern in patterns.items():
        match = re.search(pattern, content, re.IGNORECASE)
        if match:
            extracted[key] = match.group(1)

    if len(extracted) < 2:
        return None
    extracted["confidence"] = PARSED_TEXT_CONFIDENCE
    return extracted


def parse_analysis_payload(content: str) -> Optional[Dict[str, Any]]:
    """Parse a model's structured analysis; JSON first, then text extraction."""
    text = (content or "").strip()
    if not text:
        return None

    start_idx = text.find("{")
    end_idx = text.rfind("}") + 1
    if start_idx >= 0 and end_idx > start_idx:
        try:
            data = json.loads(text[start_idx:end_idx])
            if isinstance(data, dict):
                if "topicRelevance" in data and "topic_relevance" not in data:
                    data["topic_relevance"] = data["topicRelevance"]
                if "requiresExpertise" in data and "requires_expertise" not in data:
                    data["requires_expertise"] = data["requiresExpertise"]
                return data
        except json.JSONDecodeError as e:
            logger.warning(f"Analysis JSON parsing failed: {e}")

    return extract_analysis_from_text(text)


def merge_analysis(heuristic: AnalysisResult, payload: Dict[str, Any]) -> AnalysisResult:
    """Overlay model-provided fields on the heuristic result, clamped to [0, 1]."""
    return heuristic.model_copy(update={
        "complexity": round(clamp_unit(payload.get("complexity"), heuristic.complexity), 2),
        "topic_relevance": round(clamp_unit(payload.get("topic_relevance"), heuristic.topic_relevance), 2),
        "requires_expertise": _parse_bool(payload.get("requires_expertise"), heuristic.requires_expertise),
        "confidence": clamp_unit(payload.get("confidence"), HEURISTIC_CONFIDENCE),
        "label": normalize_label(payload.get("intent", heuristic.label)),
        "source": "model",
    })


ANALYSIS_SYSTEM_PROMPT = (
    "Analyze the user message for intent, complexity, and topic relevance. "
    "Return JSON with: intent (general/question/issue/argument), complexity (0.0-1.0), "
    "topic_relevance (0.0-1.0), requires_expertise (boolean), confidence (0.0-1.0)."
)


class IntentClassifier:
    """Classifies inbound messages, enriching with a model only when needed."""

    def __init__(
        self,
        provider: Optional[CompletionProvider] = None,
        breaker: Optional[CircuitBreaker] = None,
        model: Optional[str] = None,
        enrichment_threshold: Optional[float] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None
    ):
        self.provider = provider
        self.breaker = breaker or CircuitBreaker()
        self.model = model or settings.analysis_model
        self.enrichment_threshold = (
            settings.classifier_enrichment_threshold if enrichment_threshold is None else enrichment_threshold
        )
        self.timeout = timeout or settings.classifier_timeout
        self.max_retries = settings.classifier_max_retries if max_retries is None else max_retries
        self.retry_base_delay = retry_base_delay

    def needs_enrichment(self, detection: IntentDetection, require_full_analysis: bool = False) -> bool:
        return require_full_analysis or detection.confidence < self.enrichment_threshold

    async def classify(
        self,
        message: str,
        topic: Optional[str] = None,
        require_full_analysis: bool = False
    ) -> AnalysisResult:
        """Analyze a message. Never raises for provider problems.

        Raises:
            ValidationError: the message is empty
        """
        if not message or not message.strip():
            raise ValidationError("Message content is required")

        detection = detect_intent(message, topic)
        heuristic = heuristic_analysis(message, detection)
        logger.debug(
            f"Heuristic intent {detection.primary.value} (confidence {detection.confidence}), "
            f"complexity {heuristic.complexity}"
        )

        if self.provider is None or not self.needs_enrichment(detection, require_full_analysis):
            return heuristic

        if await self.breaker.is_open(ANALYSIS_OPERATION):
            logger.warning("Analysis breaker open, using heuristic analysis")
            return heuristic

        try:
            content = await retry_with_backoff(
                lambda: self._request_analysis(message),
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                operation="Message analysis"
            )
        except TransientProviderError as e:
            logger.error(f"Message analysis failed, using heuristic analysis: {e}")
            await self.breaker.record_failure(ANALYSIS_OPERATION)
            return heuristic

        await self.breaker.record_success(ANALYSIS_OPERATION)

        payload = parse_analysis_payload(content)
        if not payload:
            logger.warning("Unusable analysis output, using heuristic analysis")
            return heuristic

        return merge_analysis(heuristic, payload)

    async def _request_analysis(self, message: str) -> str:
        trimmed = message if len(message) <= MAX_ANALYSIS_CHARS else message[:MAX_ANALYSIS_CHARS] + "..."
        try:
            result = await asyncio.wait_for(
                self.provider.complete(
                    model=self.model,
                    messages=[SystemMessage(content=ANALYSIS_SYSTEM_PROMPT), HumanMessage(content=trimmed.strip())],
                    max_tokens=200,
                    temperature=0.0,
                    json_mode=True,
                    timeout=self.timeout
                ),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise TransientProviderError(f"Analysis timed out after {self.timeout:.0f}s", model=self.model)
        if not result.content or not result.content.strip():
            raise TransientProviderError("Empty analysis response", model=self.model)
        return result.content

"""
Query analysis for knowledge retrieval.

Intent, complexity, entity and jurisdiction tags are keyword based. Expansions
and sub-questions come from the completion provider and degrade to the
original query (or nothing) when the provider is unavailable.
"""

import asyncio
import re
from enum import Enum
from typing import List, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from ..core.config import settings
from ..core.logging import logger
from ..llm.provider import CompletionProvider

MAX_EXPANSIONS = 5
MIN_SUB_QUESTIONS = 2
MAX_SUB_QUESTIONS = 4
COMPLEX_WORD_COUNT = 15
MODERATE_WORD_COUNT = 8
GENERATION_TIMEOUT = 15.0

EXPANSION_PROMPT = (
    "Generate 3-5 alternative phrasings or related questions for the given query. "
    "Focus on policy, legislative, and government contexts. "
    "Return only the alternative queries, one per line."
)
DECOMPOSITION_PROMPT = (
    "Break down this complex query into 2-4 simpler, focused sub-questions that together "
    "would answer the original question. Focus on policy and legislative contexts. "
    "Return only the sub-questions, one per line."
)


class QueryIntent(Enum):
    """What kind of answer a knowledge query is after."""

    FACTUAL = "factual"
    PROCEDURAL = "procedural"
    COMPARATIVE = "comparative"
    ANALYTICAL = "analytical"
    EXPLORATORY = "exploratory"


class QueryComplexity(Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class QueryAnalysis(BaseModel):
    """Analysed knowledge query."""

    query: str
    intent: QueryIntent = QueryIntent.FACTUAL
    complexity: QueryComplexity = QueryComplexity.SIMPLE
    entities: List[str] = Field(default_factory=list)
    jurisdiction: Optional[str] = None
    confidence: float = 0.5
    expansions: List[str] = Field(default_factory=list)
    sub_questions: List[str] = Field(default_factory=list)

    @property
    def primary_query(self) -> str:
        return self.expansions[0] if self.expansions else self.query


def _words(terms: List[str]) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(terms) + r")\b", re.IGNORECASE)


# Checked in order; first match wins.
INTENT_PATTERNS = [
    (QueryIntent.PROCEDURAL, _words([r"how to", "process", "procedure", "steps"])),
    (QueryIntent.COMPARATIVE, _words(["compare", "comparison", "versus", "vs", "difference", "differences"])),
    (QueryIntent.ANALYTICAL, _words(["analy[sz]e", "evaluate", "assess", "impact", "impacts"])),
    (QueryIntent.EXPLORATORY, _words(["explore", "understand", r"learn about"])),
]

CLAUSE_CONNECTIVES = _words(["and", "or", "but", "versus", "vs"])
QUESTION_WORDS = _words(["what", "when", "where", "who", "why", "how", "which"])

ENTITY_PATTERNS = [
    ("legislation", _words(["bill", "law", "legislation", "act", "statute", "regulation", "policy", "amendment"])),
    ("government", _words(["senate", "house", "congress", "committee", "government", "agency", "department",
                           "parliament"])),
    ("legal", _words(["court", "judge", "ruling", "decision", "case", "precedent"])),
    ("financial", _words(["budget", "funding", "cost", "tax", "revenue", "appropriation"])),
]

JURISDICTION_PATTERNS = [
    ("federal", _words(["federal", "national"])),
    ("state", _words(["state", "california", "texas", r"new york", "florida"])),
    ("local", _words(["local", "city", "county", "municipal"])),
]


def classify_query_intent(query: str) -> QueryIntent:
    for intent, pattern in INTENT_PATTERNS:
        if pattern.search(query):
            return intent
    return QueryIntent.FACTUAL


def assess_complexity(query: str, intent: Optional[QueryIntent] = None) -> QueryComplexity:
    """Word count, clause connectives and question/comparison markers.

    Comparative or analytical queries joining several clauses are complex.
    """
    intent = intent or classify_query_intent(query)
    word_count = len(query.split())
    has_clauses = bool(CLAUSE_CONNECTIVES.search(query))
    has_markers = bool(QUESTION_WORDS.search(query)) or intent in (
        QueryIntent.COMPARATIVE, QueryIntent.ANALYTICAL
    )

    if word_count > COMPLEX_WORD_COUNT or (has_clauses and has_markers):
        return QueryComplexity.COMPLEX
    if word_count > MODERATE_WORD_COUNT or has_clauses or has_markers:
        return QueryComplexity.MODERATE
    return QueryComplexity.SIMPLE


def extract_entities(query: str) -> List[str]:
    return [name for name, pattern in ENTITY_PATTERNS if pattern.search(query)]


def detect_jurisdiction(query: str) -> Optional[str]:
    for name, pattern in JURISDICTION_PATTERNS:
        if pattern.search(query):
            return name
    return None


def calculate_confidence(complexity: QueryComplexity, entities: List[str]) -> float:
    confidence = 0.7
    if complexity == QueryComplexity.SIMPLE:
        confidence += 0.2
    elif complexity == QueryComplexity.COMPLEX:
        confidence -= 0.1
    confidence += min(len(entities) * 0.05, 0.2)
    return round(min(max(confidence, 0.1), 1.0), 2)


def parse_lines(content: str, limit: int) -> List[str]:
    """Non-empty lines with list markers stripped."""
    lines = []
    for line in (content or "").splitlines():
        cleaned = re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", line).strip()
        if cleaned:
            lines.append(cleaned)
    return lines[:limit]


class QueryAnalyzer:
    """Analyses knowledge queries before retrieval."""

    def __init__(
        self,
        provider: Optional[CompletionProvider] = None,
        model: Optional[str] = None,
        timeout: float = GENERATION_TIMEOUT
    ):
        self.provider = provider
        self.model = model or settings.analysis_model
        self.timeout = timeout

    async def analyze(self, query: str) -> QueryAnalysis:
        """Analyse a query. Provider failures only cost expansions and sub-questions."""
        query = query.strip()
        intent = classify_query_intent(query)
        complexity = assess_complexity(query, intent)
        entities = extract_entities(query)

        expansions = await self.generate_expansions(query)
        sub_questions: List[str] = []
        if complexity == QueryComplexity.COMPLEX:
            sub_questions = await self.decompose(query)

        analysis = QueryAnalysis(
            query=query,
            intent=intent,
            complexity=complexity,
            entities=entities,
            jurisdiction=detect_jurisdiction(query),
            confidence=calculate_confidence(complexity, entities),
            expansions=expansions,
            sub_questions=sub_questions
        )
        logger.debug(
            f"Query analysis: intent={intent.value}, complexity={complexity.value}, "
            f"{len(expansions)} expansions, {len(sub_questions)} sub-questions"
        )
        return analysis

    async def _generate(self, system_prompt: str, query: str) -> str:
        result = await asyncio.wait_for(
            self.provider.complete(
                model=self.model,
                messages=[SystemMessage(content=system_prompt), HumanMessage(content=query)],
                max_tokens=200,
                temperature=0.7,
                timeout=self.timeout
            ),
            timeout=self.timeout
        )
        return result.content or ""

    async def generate_expansions(self, query: str) -> List[str]:
        """Original query first, then up to four generated phrasings."""
        expansions = [query]
        if self.provider is None:
            return expansions

        try:
            content = await self._generate(EXPANSION_PROMPT, query)
        except Exception as e:
            logger.warning(f"Failed to generate query expansions: {e}")
            return expansions

        for line in parse_lines(content, MAX_EXPANSIONS):
            if line.lower() != query.lower() and line not in expansions:
                expansions.append(line)
        return expansions[:MAX_EXPANSIONS]

    async def decompose(self, query: str) -> List[str]:
        """Two to four sub-questions, or none."""
        if self.provider is None:
            return []

        try:
            content = await self._generate(DECOMPOSITION_PROMPT, query)
        except Exception as e:
            logger.warning(f"Failed to decompose query: {e}")
            return []

        sub_questions = parse_lines(content, MAX_SUB_QUESTIONS)
        if len(sub_questions) < MIN_SUB_QUESTIONS:
            return []
        return sub_questions

"""
Hybrid retrieval-augmented generation over per-agent knowledge.
"""

from .query_analyzer import QueryAnalysis, QueryAnalyzer, QueryComplexity, QueryIntent
from .retriever import HybridRetriever, Provenance, RetrievalDocument, RetrievalResult, fuse_results
from .generator import GeneratedAnswer, ResponseGenerator, SourceAttribution
from .pipeline import KnowledgeService

__all__ = [
    "QueryAnalysis",
    "QueryAnalyzer",
    "QueryComplexity",
    "QueryIntent",
    "HybridRetriever",
    "Provenance",
    "RetrievalDocument",
    "RetrievalResult",
    "fuse_results",
    "GeneratedAnswer",
    "ResponseGenerator",
    "SourceAttribution",
    "KnowledgeService",
]

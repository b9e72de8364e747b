"""Knowledge base search."""

from knowledge_search.search.engine import (
    KnowledgeSearchEngine,
    expand_synonyms,
    recognize_intent,
    relevance_score,
)
from knowledge_search.search.models import (
    AnswerResponse,
    EnhancedSearchResponse,
    SearchFilters,
    SearchResult,
)
from knowledge_search.search.seed import seed_knowledge_base

__all__ = [
    "AnswerResponse",
    "EnhancedSearchResponse",
    "KnowledgeSearchEngine",
    "SearchFilters",
    "SearchResult",
    "expand_synonyms",
    "recognize_intent",
    "relevance_score",
    "seed_knowledge_base",
]

"""Database module for knowledge search."""

from knowledge_search.db.database import async_session_maker, engine, get_session, init_db
from knowledge_search.db.models import (
    Base,
    GeneratedImage,
    ImageStatus,
    KnowledgeEntry,
    KnowledgeFeedback,
    PromptCache,
    SearchAnalytics,
    SearchSession,
    SecurityAuditLog,
    UserSearchPreferences,
)

__all__ = [
    "Base",
    "KnowledgeEntry",
    "SearchSession",
    "SearchAnalytics",
    "KnowledgeFeedback",
    "UserSearchPreferences",
    "GeneratedImage",
    "ImageStatus",
    "PromptCache",
    "SecurityAuditLog",
    "engine",
    "async_session_maker",
    "get_session",
    "init_db",
]

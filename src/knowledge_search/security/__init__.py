"""Content safety and request security."""

from knowledge_search.security.manager import AbuseCheck, RateLimitResult, SecurityManager
from knowledge_search.security.safety import ContentSafetyChecker, ContentSafetyResult

__all__ = [
    "AbuseCheck",
    "ContentSafetyChecker",
    "ContentSafetyResult",
    "RateLimitResult",
    "SecurityManager",
]

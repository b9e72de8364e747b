"""SQLAlchemy models for knowledge search.

Knowledge content and search analytics:
- KnowledgeEntry, SearchSession, SearchAnalytics, KnowledgeFeedback, UserSearchPreferences

Image generation:
- GeneratedImage, PromptCache, SecurityAuditLog

JSON-valued columns are stored as text and decoded by the services that own them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite's CURRENT_TIMESTAMP stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def load_json(value: str | None, default: Any) -> Any:
    """Decode a JSON text column, falling back to a default on bad data."""
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# Knowledge base
# =============================================================================


class KnowledgeEntry(Base):
    """A documented product feature with the questions users ask about it."""

    __tablename__ = "knowledge_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    feature_module: Mapped[str] = mapped_column(String(128), index=True)
    functionality: Mapped[str] = mapped_column(String(256))
    description: Mapped[str] = mapped_column(Text, default="")
    ui_elements: Mapped[str] = mapped_column(Text, default="")
    ui_elements_pt: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    user_questions_en: Mapped[str] = mapped_column(Text, default="")
    user_questions_pt: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(64), index=True)
    subcategory: Mapped[str | None] = mapped_column(String(64), nullable=True)
    content_text: Mapped[str] = mapped_column(Text, default="")

    # Guidance
    difficulty_level: Mapped[str] = mapped_column(String(32), default="basico")
    estimated_time: Mapped[int] = mapped_column(Integer, default=5)  # Minutes
    prerequisites: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    related_features: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    tags: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    troubleshooting: Mapped[str | None] = mapped_column(Text, nullable=True)
    quick_action: Mapped[str | None] = mapped_column(String(256), nullable=True)
    step_by_step_guide: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    philosophy_integration: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Ranking signals
    user_rating: Mapped[float] = mapped_column(Float, default=0.0)
    popularity_score: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    last_updated: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    @property
    def title(self) -> str:
        return f"{self.feature_module} - {self.functionality}"

    def __repr__(self) -> str:
        return f"<KnowledgeEntry(id={self.id}, title={self.title[:40]})>"


class SearchSession(Base):
    """A basic search together with the generated answer."""

    __tablename__ = "search_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    query: Mapped[str] = mapped_column(Text)
    language: Mapped[str] = mapped_column(String(8), default="pt")
    answer: Mapped[str] = mapped_column(Text, default="")
    relevant_entry_ids: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    response_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<SearchSession(id={self.id}, query={self.query[:30]})>"


class SearchAnalytics(Base):
    """One row per enhanced search, used for suggestions and reporting."""

    __tablename__ = "search_analytics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    query: Mapped[str] = mapped_column(Text)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    results_count: Mapped[int] = mapped_column(Integer, default=0)
    clicked_result_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    intent_detected: Mapped[str] = mapped_column(String(32), default="general", index=True)
    filters_used: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<SearchAnalytics(query={self.query[:30]}, results={self.results_count})>"


class KnowledgeFeedback(Base):
    """User rating or comment on a knowledge entry."""

    __tablename__ = "knowledge_feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    knowledge_entry_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("knowledge_entries.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1-5
    helpful: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback_type: Mapped[str] = mapped_column(String(32), default="rating")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<KnowledgeFeedback(entry={self.knowledge_entry_id}, rating={self.rating})>"


class UserSearchPreferences(Base):
    """Per-user ranking preferences."""

    __tablename__ = "user_search_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    preferred_categories: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    difficulty_preference: Mapped[str] = mapped_column(String(32), default="basico")
    language_preference: Mapped[str] = mapped_column(String(8), default="pt")
    search_history: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<UserSearchPreferences(user_id={self.user_id})>"


# =============================================================================
# Image generation
# =============================================================================


class ImageStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class GeneratedImage(Base):
    """A requested image and the outcome of its generation job."""

    __tablename__ = "generated_images"
    __table_args__ = (
        Index("ix_generated_images_user_created", "user_id", "created_at"),
        Index("ix_generated_images_status_created", "status", "created_at"),
    )

    image_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    object_key: Mapped[str] = mapped_column(String(512), default="")
    prompt_parameters: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    status: Mapped[str] = mapped_column(String(16), default=ImageStatus.PENDING.value)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    generation_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    service_used: Mapped[str | None] = mapped_column(String(64), nullable=True)
    public_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def parameters(self) -> dict[str, Any]:
        return load_json(self.prompt_parameters, {})

    def __repr__(self) -> str:
        return f"<GeneratedImage(image_id={self.image_id}, status={self.status})>"


class PromptCache(Base):
    """Built prompt text keyed by a hash of its parameters."""

    __tablename__ = "prompt_cache"

    parameters_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    full_prompt: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_used: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=1, index=True)

    def __repr__(self) -> str:
        return f"<PromptCache(hash={self.parameters_hash[:12]}, uses={self.usage_count})>"


class SecurityAuditLog(Base):
    """Audit trail for image requests, safety rejections and rate limiting."""

    __tablename__ = "security_audit_log"
    __table_args__ = (
        Index("ix_security_audit_user_action", "user_id", "action", "timestamp"),
        Index("ix_security_audit_ip_action", "ip_address", "action", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    action: Mapped[str] = mapped_column(String(64), index=True)
    resource: Mapped[str] = mapped_column(String(256), default="")
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="success")  # success, failure, blocked
    risk_level: Mapped[str] = mapped_column(String(16), default="low")
    details: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<SecurityAuditLog(user={self.user_id}, action={self.action})>"

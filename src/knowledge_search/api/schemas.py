"""API request and response schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from knowledge_search.images.prompts.catalog import FrameType


class SearchRequest(BaseModel):
    """Basic search request schema."""

    query: str = Field(..., description="Question to answer", min_length=1)
    language: Literal["pt", "en"] = Field(default="pt", description="Answer language")
    category: str | None = Field(default=None, description="Restrict to one category")

    model_config = {"json_schema_extra": {
        "example": {
            "query": "Como eu faço login?",
            "language": "pt",
        }
    }}


class AnswerResponse(BaseModel):
    """Basic search response schema."""

    answer: str = Field(..., description="LLM-written answer")
    relevant_entries: list[dict[str, Any]] = Field(
        default_factory=list, description="Entries the answer was based on"
    )
    response_time_ms: int = Field(..., description="Search duration in milliseconds")


class SearchFiltersModel(BaseModel):
    category: str | None = None
    difficulty: str | None = None
    estimated_time: int | None = Field(default=None, ge=1, description="Max minutes")


class EnhancedSearchRequest(BaseModel):
    """Enhanced search request schema."""

    query: str = Field(..., description="Search query text", min_length=1)
    filters: SearchFiltersModel = Field(default_factory=SearchFiltersModel)
    language: Literal["pt", "en"] = Field(default="pt")

    model_config = {"json_schema_extra": {
        "example": {
            "query": "como configurar ritual",
            "filters": {"difficulty": "basico"},
            "language": "pt",
        }
    }}


class SearchResultItem(BaseModel):
    """Individual enhanced search result."""

    id: int
    title: str
    content_text: str
    category: str
    subcategory: str
    difficulty_level: str
    estimated_time: int
    quick_action: str
    ui_elements_pt: list[str] = Field(default_factory=list)
    troubleshooting: str | None = None
    step_by_step_guide: list[str] = Field(default_factory=list)
    philosophy_integration: str | None = None
    relevance_score: float
    match_type: Literal["exact", "synonym", "semantic"]


class EnhancedSearchResponse(BaseModel):
    """Enhanced search response schema."""

    results: list[SearchResultItem] = Field(default_factory=list)
    intent: str = Field(..., description="Detected query intent")
    suggestions: list[str] = Field(default_factory=list)
    total_results: int
    response_time_ms: int
    expanded_terms: list[str] = Field(default_factory=list)


class FeedbackRequest(BaseModel):
    rating: int | None = Field(default=None, ge=1, le=5)
    helpful: bool | None = None
    comment: str | None = Field(default=None, max_length=2000)
    feedback_type: str = Field(default="rating", max_length=32)


class FeedbackResponse(BaseModel):
    id: int
    knowledge_entry_id: int
    rating: int | None = None
    helpful: bool | None = None
    created_at: datetime | None = None


# =============================================================================
# Images
# =============================================================================


class ImageParamsRequest(BaseModel):
    """Character selections for an image request."""

    model_config = ConfigDict(populate_by_name=True)

    pose: str = Field(..., min_length=1)
    outfit: str = Field(..., min_length=1)
    footwear: str = Field(..., min_length=1)
    prop: str | None = None
    frame_type: FrameType | None = Field(default=None, alias="frameType")
    frame_id: str | None = Field(default=None, alias="frameId")


class ValidationResponse(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    cache_hit: bool = False


class GenerateResponse(BaseModel):
    image_id: str
    status: str
    estimated_seconds: int
    cache_hit: bool = False
    warnings: list[str] = Field(default_factory=list)


class ImageStatusResponse(BaseModel):
    image_id: str
    status: str
    progress: int = Field(..., ge=0, le=100)
    estimated_time_remaining: int | None = None  # seconds
    public_url: str | None = None
    error_message: str | None = None
    service_used: str | None = None
    generation_time_ms: int | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class ImageListResponse(BaseModel):
    images: list[ImageStatusResponse] = Field(default_factory=list)
    total: int
    limit: int
    offset: int
    has_more: bool


class ImageSearchRequest(BaseModel):
    """Parameter filters for a user's images; omitted fields match anything."""

    model_config = ConfigDict(populate_by_name=True)

    pose: str | None = None
    outfit: str | None = None
    footwear: str | None = None
    prop: str | None = None
    frame_type: FrameType | None = Field(default=None, alias="frameType")
    frame_id: str | None = Field(default=None, alias="frameId")
    status: Literal["PENDING", "COMPLETE", "FAILED"] | None = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class ImageSearchResponse(BaseModel):
    images: list[ImageStatusResponse] = Field(default_factory=list)
    search_criteria: dict[str, Any] = Field(default_factory=dict)
    total: int
    limit: int
    offset: int
    has_more: bool


class BatchStatusRequest(BaseModel):
    image_ids: list[str] = Field(..., min_length=1, max_length=50)


class BatchStatusItem(BaseModel):
    """Status of one requested image, or why it could not be read."""

    image_id: str
    image: ImageStatusResponse | None = None
    error: str | None = None


class BatchStatusResponse(BaseModel):
    results: list[BatchStatusItem] = Field(default_factory=list)
    total_requested: int
    successful: int


class BulkDeleteRequest(BaseModel):
    image_ids: list[str] = Field(..., min_length=1, max_length=100)


class CleanupRequest(BaseModel):
    failed_images_days: int | None = Field(default=None, ge=1)
    prompt_cache_days: int | None = Field(default=None, ge=1)
    audit_log_days: int | None = Field(default=None, ge=1)

"""Search request and result models.

Plain dataclasses so the engine can be used without the API layer.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

MatchType = Literal["exact", "synonym", "semantic"]


@dataclass
class SearchFilters:
    category: str | None = None
    difficulty: str | None = None
    estimated_time: int | None = None  # Upper bound in minutes

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class SearchResult:
    """A knowledge entry as returned by enhanced search."""

    id: int
    title: str
    content_text: str
    category: str
    subcategory: str
    difficulty_level: str
    estimated_time: int
    quick_action: str
    ui_elements_pt: list[str]
    troubleshooting: str | None
    step_by_step_guide: list[str]
    philosophy_integration: str | None
    relevance_score: float
    match_type: MatchType

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EnhancedSearchResponse:
    results: list[SearchResult]
    intent: str
    suggestions: list[str]
    total_results: int
    response_time_ms: int
    expanded_terms: list[str] = field(default_factory=list)


@dataclass
class AnswerResponse:
    """LLM answer for a basic search together with the entries it used."""

    answer: str
    relevant_entries: list[dict[str, Any]]
    response_time_ms: int

"""Knowledge search API endpoints."""

import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_search.api.deps import (
    CurrentUser,
    client_ip,
    get_optional_user,
    require_admin,
    require_user,
)
from knowledge_search.api.schemas import (
    AnswerResponse,
    EnhancedSearchRequest,
    EnhancedSearchResponse,
    FeedbackRequest,
    FeedbackResponse,
    SearchRequest,
)
from knowledge_search.config import settings
from knowledge_search.db.database import get_session
from knowledge_search.search.engine import KnowledgeSearchEngine
from knowledge_search.search.models import SearchFilters

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["search"])


# Simple in-memory rate limiter
_request_timestamps: dict[str, list[float]] = {}
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX = 60     # requests per window


def _check_rate_limit(client: str) -> None:
    now = time.time()
    if client not in _request_timestamps:
        _request_timestamps[client] = []

    # Keep only timestamps within the window
    _request_timestamps[client] = [
        t for t in _request_timestamps[client]
        if now - t < RATE_LIMIT_WINDOW
    ]

    if len(_request_timestamps[client]) >= RATE_LIMIT_MAX:
        logger.warning(f"Search rate limit exceeded for: {client}")
        raise HTTPException(status_code=429, detail="Too many requests")

    _request_timestamps[client].append(now)


def _internal_error(message: str, error: Exception) -> HTTPException:
    logger.error(f"{message}: {error}", exc_info=True)
    detail = f"{message}: {error}" if settings.DEBUG else message
    return HTTPException(status_code=500, detail=detail)


@router.get("/filters")
async def filters(session: AsyncSession = Depends(get_session)) -> dict[str, list[str]]:
    """Categories and difficulty levels available for filtering."""
    return await KnowledgeSearchEngine(session).filter_options()


@router.post("/search", response_model=AnswerResponse)
async def search(
    request: SearchRequest,
    raw_request: Request,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser | None = Depends(get_optional_user),
) -> AnswerResponse:
    """Answer a question from matching knowledge entries.

    Entries are matched by keyword and handed to the LLM as context. When
    nothing matches, a localized "not found" answer is returned without an
    LLM call.
    """
    _check_rate_limit(client_ip(raw_request))
    try:
        result = await KnowledgeSearchEngine(session).basic_search(
            request.query,
            language=request.language,
            category=request.category,
            user_id=user.user_id if user else None,
        )
    except Exception as e:
        raise _internal_error("Search failed", e)

    logger.info(
        f"Search '{request.query[:50]}' returned {len(result.relevant_entries)} entries "
        f"in {result.response_time_ms}ms"
    )
    return AnswerResponse(
        answer=result.answer,
        relevant_entries=result.relevant_entries,
        response_time_ms=result.response_time_ms,
    )


@router.post("/search/enhanced", response_model=EnhancedSearchResponse)
async def enhanced_search(
    request: EnhancedSearchRequest,
    raw_request: Request,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser | None = Depends(get_optional_user),
) -> EnhancedSearchResponse:
    """Search with intent detection, synonym expansion and personalized ranking."""
    _check_rate_limit(client_ip(raw_request))
    try:
        result = await KnowledgeSearchEngine(session).enhanced_search(
            request.query,
            user_id=user.user_id if user else None,
            filters=SearchFilters(**request.filters.model_dump()),
            language=request.language,
        )
    except Exception as e:
        raise _internal_error("Enhanced search failed", e)

    return EnhancedSearchResponse(
        results=[r.to_dict() for r in result.results],
        intent=result.intent,
        suggestions=result.suggestions,
        total_results=result.total_results,
        response_time_ms=result.response_time_ms,
        expanded_terms=result.expanded_terms,
    )


@router.get("/search/suggestions")
async def suggestions(session: AsyncSession = Depends(get_session)) -> dict[str, list[str]]:
    return {"suggestions": await KnowledgeSearchEngine(session).search_suggestions()}


@router.get("/knowledge/popular")
async def popular(
    limit: int = Query(default=10, ge=1, le=50),
    session: AsyncSession = Depends(get_session),
) -> dict[str, list[dict[str, Any]]]:
    return {"entries": await KnowledgeSearchEngine(session).popular_entries(limit)}


@router.post("/knowledge/{entry_id}/feedback", response_model=FeedbackResponse)
async def feedback(
    entry_id: int,
    request: FeedbackRequest,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(require_user),
) -> FeedbackResponse:
    """Rate an entry; ratings update the entry's average and popularity."""
    try:
        stored = await KnowledgeSearchEngine(session).submit_feedback(
            entry_id,
            user.user_id,
            rating=request.rating,
            helpful=request.helpful,
            comment=request.comment,
            feedback_type=request.feedback_type,
        )
    except LookupError:
        raise HTTPException(status_code=404, detail="Knowledge entry not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return FeedbackResponse(
        id=stored.id,
        knowledge_entry_id=stored.knowledge_entry_id,
        rating=stored.rating,
        helpful=stored.helpful,
        created_at=stored.created_at,
    )


@router.get("/admin/knowledge/analytics")
async def knowledge_analytics(
    days: int = Query(default=30, ge=1, le=365),
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
) -> dict[str, Any]:
    try:
        return await KnowledgeSearchEngine(session).analytics(days)
    except Exception as e:
        raise _internal_error("Failed to load analytics", e)

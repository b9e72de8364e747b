"""Image generation API endpoints."""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_search.api.deps import CurrentUser, client_ip, get_workflow, require_user
from knowledge_search.api.schemas import (
    BatchStatusItem,
    BatchStatusRequest,
    BatchStatusResponse,
    GenerateResponse,
    ImageListResponse,
    ImageParamsRequest,
    ImageSearchRequest,
    ImageSearchResponse,
    ImageStatusResponse,
    ValidationResponse,
)
from knowledge_search.config import settings
from knowledge_search.db.database import get_session
from knowledge_search.db.models import GeneratedImage, ImageStatus, utcnow
from knowledge_search.images.exceptions import PromptValidationError, UnsafePromptError
from knowledge_search.images.prompts.cache import PromptCacheService
from knowledge_search.images.prompts.catalog import ImageGenerationParams
from knowledge_search.images.prompts.engine import get_prompt_engine
from knowledge_search.images.repository import MAX_PAGE_SIZE, GeneratedImageRepository
from knowledge_search.images.workflow import ImageGenerationWorkflow
from knowledge_search.security.manager import (
    ABUSE_DETECTED,
    RATE_LIMIT_EXCEEDED,
    SecurityManager,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/images", tags=["images"])

MAX_PENDING_PROGRESS = 95
RECENT_IMAGES = 10


def _to_params(request: ImageParamsRequest) -> ImageGenerationParams:
    return ImageGenerationParams(**request.model_dump())


def estimate_progress(created_at: datetime | None, now: datetime | None = None) -> tuple[int, int]:
    """Progress percentage and seconds remaining for a pending image.

    Progress grows linearly over IMAGE_ESTIMATED_SECONDS and never reaches
    100 until the job actually completes.
    """
    expected = max(1, settings.IMAGE_ESTIMATED_SECONDS)
    if created_at is None:
        return 0, expected
    elapsed = max(0.0, ((now or utcnow()) - created_at).total_seconds())
    progress = min(MAX_PENDING_PROGRESS, int(elapsed / expected * 100))
    return progress, max(0, int(expected - elapsed))


def to_status_response(image: GeneratedImage) -> ImageStatusResponse:
    remaining = None
    if image.status == ImageStatus.PENDING.value:
        progress, remaining = estimate_progress(image.created_at)
    else:
        progress = 100
    return ImageStatusResponse(
        image_id=image.image_id,
        status=image.status,
        progress=progress,
        estimated_time_remaining=remaining,
        public_url=image.public_url,
        error_message=image.error_message,
        service_used=image.service_used,
        generation_time_ms=image.generation_time_ms,
        parameters=image.parameters,
        created_at=image.created_at,
    )


async def _get_owned_image(
    session: AsyncSession, image_id: str, user: CurrentUser
) -> GeneratedImage:
    image = await GeneratedImageRepository(session).get(image_id)
    if image is None:
        raise HTTPException(status_code=404, detail="Image not found")
    if image.user_id != user.user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Access denied")
    return image


def _check_user_access(user_id: str, user: CurrentUser) -> None:
    if user_id != user.user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Access denied")


@router.get("/options")
async def options(
    pose: str | None = None,
    outfit: str | None = None,
    frame_type: str | None = Query(default=None, alias="frameType"),
) -> dict[str, Any]:
    """Catalog of selectable options, plus what fits a partial selection."""
    engine = get_prompt_engine()
    response: dict[str, Any] = engine.available_options().model_dump()
    if pose or outfit or frame_type:
        compatible = engine.compatible_options(pose=pose, outfit=outfit, frame_type=frame_type)
        response["compatible"] = {
            kind: [item.model_dump() for item in items] for kind, items in compatible.items()
        }
    return response


@router.post("/validate", response_model=ValidationResponse)
async def validate(
    request: ImageParamsRequest,
    session: AsyncSession = Depends(get_session),
) -> ValidationResponse:
    """Check a selection without generating anything."""
    params = _to_params(request)
    result = get_prompt_engine().validate(params)
    cache_hit = await PromptCacheService(session).would_hit(params) if result.is_valid else False
    return ValidationResponse(
        is_valid=result.is_valid,
        errors=result.errors,
        warnings=result.warnings,
        suggestions=result.suggestions,
        cache_hit=cache_hit,
    )


@router.post("/generate", response_model=GenerateResponse, status_code=202)
async def generate(
    request: ImageParamsRequest,
    raw_request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(require_user),
    workflow: ImageGenerationWorkflow = Depends(get_workflow),
) -> GenerateResponse:
    """Queue an image generation.

    The response returns as soon as the request is accepted; poll
    `/{image_id}/status` for the outcome.
    """
    ip = client_ip(raw_request)
    user_agent = raw_request.headers.get("user-agent")
    security = SecurityManager(session)

    limit = await security.check_request_limits(user.user_id, ip)
    if not limit.allowed:
        await security.log_event(
            RATE_LIMIT_EXCEEDED,
            user_id=user.user_id,
            ip_address=ip,
            user_agent=user_agent,
            resource="/api/v1/images/generate",
            status="blocked",
            risk_level="medium",
            details=limit.to_dict(),
        )
        logger.warning(f"Image rate limit ({limit.limit_type}) exceeded for user {user.user_id}")
        raise HTTPException(
            status_code=429,
            detail={"message": "Rate limit exceeded", **limit.to_dict()},
            headers={"Retry-After": str(limit.retry_after or 60)},
        )

    abuse = await security.detect_abuse(user.user_id, ip)
    if abuse.is_abuse:
        await security.log_event(
            ABUSE_DETECTED,
            user_id=user.user_id,
            ip_address=ip,
            user_agent=user_agent,
            resource="/api/v1/images/generate",
            status="blocked",
            risk_level="high",
            details={"reason": abuse.reason, "action": abuse.action},
        )
        raise HTTPException(
            status_code=429 if abuse.action == "temporary_block" else 403,
            detail={"message": abuse.reason, "action": abuse.action},
        )

    params = _to_params(request)
    try:
        submitted = await workflow.submit(
            session, params, user.user_id, ip_address=ip, user_agent=user_agent
        )
    except PromptValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid parameters", "errors": e.errors, "warnings": e.warnings},
        )
    except UnsafePromptError as e:
        raise HTTPException(
            status_code=400,
            detail={"message": "Prompt rejected by content filter", "flags": e.flags},
        )

    background_tasks.add_task(
        workflow.run, submitted.image_id, submitted.prompt, params.model_dump(by_alias=True)
    )
    return GenerateResponse(
        image_id=submitted.image_id,
        status=ImageStatus.PENDING.value,
        estimated_seconds=settings.IMAGE_ESTIMATED_SECONDS,
        cache_hit=submitted.cache_hit,
        warnings=submitted.warnings,
    )


@router.get("/user/{user_id}", response_model=ImageListResponse)
async def list_user_images(
    user_id: str,
    status: str | None = Query(default=None, pattern="^(PENDING|COMPLETE|FAILED)$"),
    sort_by: str = Query(default="created_at"),
    order: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(require_user),
) -> ImageListResponse:
    _check_user_access(user_id, user)

    repo = GeneratedImageRepository(session)
    images = await repo.list_by_user(
        user_id, status=status, sort_by=sort_by, order=order, limit=limit, offset=offset
    )
    total = await repo.count_by_user(user_id, status=status)
    return ImageListResponse(
        images=[to_status_response(image) for image in images],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(images) < total,
    )


@router.post("/user/{user_id}/search", response_model=ImageSearchResponse)
async def search_user_images(
    user_id: str,
    request: ImageSearchRequest,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(require_user),
) -> ImageSearchResponse:
    """Find a user's images by the selections they were generated with."""
    _check_user_access(user_id, user)

    criteria = request.model_dump(
        by_alias=True, exclude={"status", "limit", "offset"}, exclude_none=True
    )
    repo = GeneratedImageRepository(session)
    images = await repo.search_by_parameters(
        criteria,
        limit=request.limit,
        user_id=user_id,
        status=request.status,
        offset=request.offset,
    )
    total = await repo.count_by_parameters(criteria, user_id=user_id, status=request.status)
    if request.status:
        criteria["status"] = request.status
    return ImageSearchResponse(
        images=[to_status_response(image) for image in images],
        search_criteria=criteria,
        total=total,
        limit=request.limit,
        offset=request.offset,
        has_more=request.offset + len(images) < total,
    )


@router.get("/user/{user_id}/stats")
async def user_image_stats(
    user_id: str,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(require_user),
) -> dict[str, Any]:
    _check_user_access(user_id, user)

    repo = GeneratedImageRepository(session)
    stats = await repo.stats(user_id=user_id)
    total = stats["total_images"]
    recent = await repo.list_by_user(user_id, limit=RECENT_IMAGES)
    return {
        "user_id": user_id,
        "statistics": {
            **stats,
            "success_rate": round(stats["complete"] / total * 100) if total else 0,
        },
        "recent_images": [
            {
                "image_id": image.image_id,
                "status": image.status,
                "public_url": image.public_url,
                "created_at": image.created_at.isoformat() if image.created_at else None,
            }
            for image in recent
        ],
        "last_generation": (
            recent[0].created_at.isoformat() if recent and recent[0].created_at else None
        ),
        "popular_parameters": await repo.popular_parameters(user_id),
    }


@router.post("/status/batch", response_model=BatchStatusResponse)
async def batch_status(
    request: BatchStatusRequest,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(require_user),
) -> BatchStatusResponse:
    """Status of several images at once; each id reports its own error."""
    found = {
        image.image_id: image
        for image in await GeneratedImageRepository(session).get_many(request.image_ids)
    }
    results = []
    for image_id in request.image_ids:
        image = found.get(image_id)
        if image is None:
            results.append(BatchStatusItem(image_id=image_id, error="Image not found"))
        elif image.user_id != user.user_id and not user.is_admin:
            results.append(BatchStatusItem(image_id=image_id, error="Access denied"))
        else:
            results.append(BatchStatusItem(image_id=image_id, image=to_status_response(image)))
    return BatchStatusResponse(
        results=results,
        total_requested=len(request.image_ids),
        successful=sum(1 for r in results if r.error is None),
    )


@router.get("/{image_id}/status", response_model=ImageStatusResponse)
async def image_status(
    image_id: str,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(require_user),
) -> ImageStatusResponse:
    image = await _get_owned_image(session, image_id, user)
    return to_status_response(image)


@router.delete("/{image_id}")
async def delete_image(
    image_id: str,
    session: AsyncSession = Depends(get_session),
    user: CurrentUser = Depends(require_user),
    workflow: ImageGenerationWorkflow = Depends(get_workflow),
) -> dict[str, Any]:
    """Delete an image record and its stored file."""
    image = await _get_owned_image(session, image_id, user)
    assets_deleted = await workflow.delete_assets(image.object_key)
    await GeneratedImageRepository(session).delete(image_id)
    logger.info(f"Image {image_id} deleted by {user.user_id}")
    return {"deleted": True, "image_id": image_id, "assets_deleted": assets_deleted}

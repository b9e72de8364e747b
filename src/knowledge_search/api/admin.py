"""Admin endpoints for image generation and security."""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_search.api.deps import (
    CurrentUser,
    get_image_manager,
    get_workflow,
    require_admin,
)
from knowledge_search.api.schemas import BulkDeleteRequest, CleanupRequest
from knowledge_search.config import settings
from knowledge_search.db.database import get_session
from knowledge_search.images.manager import ImageGenerationManager
from knowledge_search.images.prompts.cache import PromptCacheService
from knowledge_search.images.repository import GeneratedImageRepository
from knowledge_search.images.workflow import ImageGenerationWorkflow
from knowledge_search.security.manager import SecurityManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

MAX_AUDIT_PAGE_SIZE = 200


@router.get("/images/stats")
async def image_stats(
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    workflow: ImageGenerationWorkflow = Depends(get_workflow),
) -> dict[str, Any]:
    return {
        "images": await GeneratedImageRepository(session).stats(),
        "prompt_cache": await PromptCacheService(session).stats(),
        "storage": await asyncio.to_thread(workflow.storage.stats),
    }


@router.post("/images/bulk-delete")
async def bulk_delete(
    request: BulkDeleteRequest,
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    workflow: ImageGenerationWorkflow = Depends(get_workflow),
) -> dict[str, Any]:
    """Delete images and their stored files; unknown ids are reported."""
    repo = GeneratedImageRepository(session)
    images = await repo.get_many(request.image_ids)
    found = {image.image_id for image in images}

    deleted = []
    for image in images:
        await workflow.delete_assets(image.object_key)
        if await repo.delete(image.image_id):
            deleted.append(image.image_id)

    not_found = [image_id for image_id in request.image_ids if image_id not in found]
    logger.info(f"Admin {admin.user_id} bulk-deleted {len(deleted)} image(s)")
    return {"deleted": deleted, "not_found": not_found, "count": len(deleted)}


@router.post("/images/cleanup")
async def cleanup(
    request: CleanupRequest | None = None,
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
) -> dict[str, int]:
    """Remove failed images, stale prompt cache entries and old audit logs."""
    request = request or CleanupRequest()
    failed = await GeneratedImageRepository(session).cleanup_failed(
        request.failed_images_days or settings.FAILED_IMAGE_RETENTION_DAYS
    )
    cached = await PromptCacheService(session).cleanup_old(
        request.prompt_cache_days or settings.PROMPT_CACHE_RETENTION_DAYS
    )
    audit = await SecurityManager(session).cleanup_audit_logs(request.audit_log_days)
    return {"failed_images": failed, "prompt_cache_entries": cached, "audit_logs": audit}


@router.get("/services")
async def services(
    admin: CurrentUser = Depends(require_admin),
    manager: ImageGenerationManager = Depends(get_image_manager),
) -> dict[str, Any]:
    """Registered providers with their metrics, alerts and circuit state."""
    return {
        "services": manager.registered_services(),
        "health": await manager.health(),
        "circuit_breakers": manager.circuit_breaker_status(),
    }


@router.post("/services/{name}/reset-circuit")
async def reset_circuit(
    name: str,
    admin: CurrentUser = Depends(require_admin),
    manager: ImageGenerationManager = Depends(get_image_manager),
) -> dict[str, Any]:
    if not manager.reset_circuit_breaker(name):
        raise HTTPException(status_code=404, detail=f"Unknown image service: {name}")
    logger.info(f"Admin {admin.user_id} reset circuit breaker for {name}")
    return {"service": name, "circuit_breaker": manager.circuit_breaker_status()[name]}


@router.post("/services/{name}/enable")
async def enable_service(
    name: str,
    admin: CurrentUser = Depends(require_admin),
    manager: ImageGenerationManager = Depends(get_image_manager),
) -> dict[str, Any]:
    return _set_enabled(manager, name, True, admin)


@router.post("/services/{name}/disable")
async def disable_service(
    name: str,
    admin: CurrentUser = Depends(require_admin),
    manager: ImageGenerationManager = Depends(get_image_manager),
) -> dict[str, Any]:
    """Take a provider out of rotation until it is enabled again."""
    return _set_enabled(manager, name, False, admin)


def _set_enabled(
    manager: ImageGenerationManager, name: str, enabled: bool, admin: CurrentUser
) -> dict[str, Any]:
    if not manager.set_service_enabled(name, enabled):
        raise HTTPException(status_code=404, detail=f"Unknown image service: {name}")
    action = "enabled" if enabled else "disabled"
    logger.info(f"Admin {admin.user_id} {action} image service {name}")
    return {"service": name, "enabled": enabled}


@router.get("/security/report")
async def security_report(
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
) -> dict[str, Any]:
    return await SecurityManager(session).security_report()


@router.get("/security/audit")
async def security_audit(
    limit: int = Query(default=50, ge=1, le=MAX_AUDIT_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    risk_level: str | None = Query(default=None, pattern="^(low|medium|high|critical)$"),
    action: str | None = None,
    session: AsyncSession = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
) -> dict[str, Any]:
    """Audit log entries, newest first."""
    entries, total = await SecurityManager(session).list_audit_logs(
        limit=limit, offset=offset, risk_level=risk_level, action=action
    )
    return {
        "entries": entries,
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(entries) < total,
    }

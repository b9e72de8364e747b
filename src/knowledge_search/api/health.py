"""Health check endpoints for the knowledge search API."""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_search.api.deps import get_image_manager
from knowledge_search.db.database import get_session
from knowledge_search.images.manager import ImageGenerationManager
from knowledge_search.rag.exceptions import LLMProviderNotConfiguredError
from knowledge_search.rag.factory import get_llm

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Basic health check - returns ok if the service is running."""
    return {"status": "ok"}


@router.get("/health/ready")
async def ready(
    session: AsyncSession = Depends(get_session),
    manager: ImageGenerationManager = Depends(get_image_manager),
) -> dict[str, Any]:
    """
    Readiness check - verifies all dependent services are available.

    Checks:
    - Database: a trivial query on the configured engine
    - LLM: answer provider connection
    - Images: at least one registered image provider reports healthy
    """
    services: dict[str, str] = {}
    all_ok = True

    # Check database
    try:
        await session.execute(text("SELECT 1"))
        services["database"] = "ok"
    except Exception as e:
        services["database"] = f"error: {type(e).__name__}"
        all_ok = False

    # Check LLM (provider-agnostic)
    try:
        llm = await get_llm()
        if await llm.check_health():
            services["llm"] = f"ok ({llm.provider_name})"
        else:
            services["llm"] = f"error: {llm.provider_name} not healthy"
            all_ok = False
    except LLMProviderNotConfiguredError:
        services["llm"] = "warning: no provider configured"
        # Basic search degrades to a canned answer without an LLM
    except Exception as e:
        services["llm"] = f"error: {type(e).__name__}"
        all_ok = False

    # Check image providers
    if not manager.has_services:
        services["images"] = "warning: no provider configured"
    else:
        try:
            checks = await manager.check_services()
            healthy = [name for name, available in checks.items() if available]
            if healthy:
                services["images"] = f"ok ({', '.join(healthy)})"
            else:
                services["images"] = "error: no healthy provider"
                all_ok = False
        except Exception as e:
            services["images"] = f"error: {type(e).__name__}"
            all_ok = False

    status = "ready" if all_ok else "degraded"
    return {"status": status, "services": services}

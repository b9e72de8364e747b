"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from knowledge_search.api.admin import router as admin_router
from knowledge_search.api.health import router as health_router
from knowledge_search.api.images import router as images_router
from knowledge_search.api.search import router as search_router
from knowledge_search.config import settings
from knowledge_search.db.database import init_db
from knowledge_search.images.manager import get_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await init_db()
    manager = get_manager()
    manager.start()
    logger.info(f"{settings.APP_NAME} started with image providers: {manager.registry.names()}")
    try:
        yield
    finally:
        await manager.shutdown()


app = FastAPI(
    title=settings.APP_NAME,
    description="Knowledge base search with AI answers and character image generation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for now, restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health_router)
app.include_router(search_router)
app.include_router(images_router)
app.include_router(admin_router)

# Serve stored images when they are published under a local path
if settings.IMAGE_PUBLIC_BASE_URL.startswith("/"):
    app.mount(
        settings.IMAGE_PUBLIC_BASE_URL.rstrip("/"),
        StaticFiles(directory=settings.IMAGE_STORAGE_DIR, check_dir=False),
        name="media",
    )


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic application info."""
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }

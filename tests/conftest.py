"""Shared fixtures: in-memory database, image manager and API client."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from knowledge_search.db.models import Base


@pytest.fixture(scope="function")
def test_db_engine():
    """Create an in-memory SQLite engine for testing.

    StaticPool keeps a single connection so sessions opened by background
    tasks see the same database as the test.
    """
    return create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_db_engine):
    """Create tables and provide a session factory bound to the test engine."""
    async with test_db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(test_db_engine, class_=AsyncSession, expire_on_commit=False)

    async with test_db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_db_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def image_manager():
    """Manager with one healthy mock provider and no real waiting."""
    from knowledge_search.images.adapters.mock import MockAdapter
    from knowledge_search.images.manager import ImageGenerationManager
    from knowledge_search.images.retry import CircuitBreakerConfig, RetryConfig

    manager = ImageGenerationManager(
        retry_config=RetryConfig(max_attempts=2, base_delay=0.0, jitter_factor=0.0),
        breaker_config=CircuitBreakerConfig(failure_threshold=5),
        sleep=AsyncMock(),
    )
    manager.register_service(MockAdapter(), priority=1)
    return manager


@pytest.fixture
def asset_storage(tmp_path):
    from knowledge_search.images.storage import AssetStorage

    return AssetStorage(root=tmp_path / "media", public_base_url="/media")


@pytest.fixture
def workflow(image_manager, asset_storage, session_factory):
    from knowledge_search.images.workflow import ImageGenerationWorkflow

    return ImageGenerationWorkflow(
        image_manager, storage=asset_storage, session_factory=session_factory
    )


@pytest_asyncio.fixture
async def client(session_factory, image_manager, workflow):
    """Async API client wired to the test database and mock provider."""
    from knowledge_search.api.deps import get_image_manager, get_workflow
    from knowledge_search.db.database import get_session
    from knowledge_search.main import app

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_image_manager] = lambda: image_manager
    app.dependency_overrides[get_workflow] = lambda: workflow

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def user_headers():
    return {"X-User-Id": "user-1", "X-User-Email": "user@example.com"}


@pytest.fixture
def admin_headers(monkeypatch):
    from knowledge_search.config import settings

    monkeypatch.setattr(settings, "ADMIN_EMAILS", "admin@example.com")
    return {"X-User-Id": "admin-1", "X-User-Email": "admin@example.com"}

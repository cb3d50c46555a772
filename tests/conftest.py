"""Shared pytest fixtures: fakeredis as the fast store, in-memory SQLite as the durable store."""

from typing import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shortener.config import Settings
from shortener.database import build_session_factory, init_db
from shortener.dependencies import ServiceManager, get_service_manager
from shortener.main import app
from shortener.repository import LinkRepository
from shortener.tracker import HotPathTracker


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        REDIS_URL="redis://localhost:6379/0",
        BASE_URL="http://test",
        ID_RANGE_SIZE=100,
        RATE_LIMIT_MAX_REQUESTS=100,
        RATE_LIMIT_WINDOW_SECONDS=60,
        SYNC_ENABLED=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest.fixture
def fake_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest_asyncio.fixture(scope="function")
async def redis_client(fake_server: fakeredis.FakeServer) -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    client = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
    yield client
    fake_server.connected = True
    await client.flushdb()
    await client.aclose()


@pytest.fixture
def repository(session_factory: async_sessionmaker[AsyncSession]) -> LinkRepository:
    return LinkRepository(session_factory, timeout=5.0)


@pytest.fixture
def tracker(redis_client: fakeredis.FakeAsyncRedis) -> HotPathTracker:
    return HotPathTracker(redis_client, timeout=1.0)


@pytest_asyncio.fixture(scope="function")
async def manager(
    settings: Settings,
    redis_client: fakeredis.FakeAsyncRedis,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[ServiceManager, None]:
    service_manager = ServiceManager()
    await service_manager.initialize(settings=settings, cache=redis_client, session_factory=session_factory)
    await service_manager.allocator.ensure_counter(settings.ID_SEQUENCE_NAME)
    yield service_manager
    await service_manager.cleanup()


@pytest_asyncio.fixture(scope="function")
async def client(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_service_manager() -> ServiceManager:
        return manager

    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

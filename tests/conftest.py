"""Shared pytest fixtures for component, service and API tests.

The durable store runs on a throwaway SQLite file through aiosqlite and the
cache on the in-process backend, so the suite needs no external services.
"""

import os
import tempfile
from collections.abc import AsyncGenerator

_DB_DIR = tempfile.mkdtemp(prefix="shortener-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/shortener.db")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("HIT_FLUSH_INTERVAL_SECONDS", "3600")
os.environ.setdefault("JWT_KEY", "shortener-test-signing-key-0123456789")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shortener.aggregator import HitAggregator
from shortener.auth import issue_access_token
from shortener.cache import MemoryURLCache
from shortener.codegen import CodeGenerator
from shortener.config import Settings, get_settings
from shortener.database import Base, async_session, engine
from shortener.dependencies import ServiceManager, _service_manager
from shortener.main import app
from shortener.resolver import RedirectResolver
from shortener.service import ShortenerService
from shortener.store import ShortURLStore

OWNER_ID = "user-1"
OTHER_ID = "user-2"


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest_asyncio.fixture(scope="function")
async def database() -> AsyncGenerator[None, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(database: None, settings: Settings) -> ShortURLStore:
    return ShortURLStore(async_session, timeout_seconds=settings.DATABASE_TIMEOUT_SECONDS)


@pytest.fixture
def cache() -> MemoryURLCache:
    return MemoryURLCache()


@pytest_asyncio.fixture
async def aggregator(store: ShortURLStore, cache: MemoryURLCache) -> AsyncGenerator[HitAggregator, None]:
    hit_aggregator = HitAggregator(store, cache, interval_seconds=3600)
    yield hit_aggregator
    if hit_aggregator.running:
        await hit_aggregator.stop()


@pytest.fixture
def generator(store: ShortURLStore, cache: MemoryURLCache, aggregator: HitAggregator, settings: Settings) -> CodeGenerator:
    return CodeGenerator(
        store,
        cache,
        is_pending=aggregator.is_pending,
        length=settings.SHORT_CODE_LENGTH,
        max_attempts=settings.CODE_GENERATION_MAX_ATTEMPTS,
    )


@pytest.fixture
def resolver(
    store: ShortURLStore, cache: MemoryURLCache, aggregator: HitAggregator, settings: Settings
) -> RedirectResolver:
    return RedirectResolver(store, cache, aggregator, cache_ttl_seconds=settings.CACHE_TTL_SECONDS)


@pytest.fixture
def service(
    store: ShortURLStore,
    cache: MemoryURLCache,
    generator: CodeGenerator,
    aggregator: HitAggregator,
    resolver: RedirectResolver,
    settings: Settings,
) -> ShortenerService:
    return ShortenerService(store, cache, generator, aggregator, resolver, settings)


@pytest_asyncio.fixture
async def manager(database: None) -> AsyncGenerator[ServiceManager, None]:
    await _service_manager.initialize()
    yield _service_manager
    await _service_manager.cleanup()


@pytest_asyncio.fixture
async def client(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth_headers(user_id: str) -> dict[str, str]:
    settings = get_settings()
    return {"Cookie": f"{settings.ACCESS_TOKEN_COOKIE}={issue_access_token(user_id, settings)}"}


@pytest.fixture
def owner_headers() -> dict[str, str]:
    return auth_headers(OWNER_ID)


@pytest.fixture
def other_headers() -> dict[str, str]:
    return auth_headers(OTHER_ID)

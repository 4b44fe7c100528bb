"""Shared pytest fixtures for engine and API tests."""

import asyncio
import datetime
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shortener.allocation import AllocationService
from shortener.cache import ResolutionCache
from shortener.codegen import CodeGenerator, LocalCounter, SequentialCodeGenerator
from shortener.config import Settings
from shortener.dependencies import _service_manager
from shortener.main import app
from shortener.resolution import ResolutionService
from shortener.retry import RetryPolicy
from shortener.store import InMemoryMappingStore

BASE_URL = "http://sho.rt"


class ScriptedGenerator(CodeGenerator):
    """Generator that hands out a fixed sequence of candidates."""

    def __init__(self, codes: list[str]):
        super().__init__(length=7)
        self.codes = list(codes)
        self.attempts: list[int] = []

    def generate(self, attempt: int) -> str:
        self.attempts.append(attempt)
        return self.codes.pop(0)


class CountingStore(InMemoryMappingStore):
    """In-memory store that records how often it was read."""

    def __init__(self) -> None:
        super().__init__()
        self.lookups: list[str] = []

    async def lookup(self, code: str):
        self.lookups.append(code)
        return await super().lookup(code)


class StalledStore(InMemoryMappingStore):
    """In-memory store whose reads and inserts block until cancelled."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.cancelled = False

    async def _stall(self) -> None:
        self.entered.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise

    async def lookup(self, code: str):
        await self._stall()

    async def try_insert(self, code: str, destination: str, expires_at=None):
        await self._stall()


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        BASE_URL=BASE_URL,
        MAPPING_STORE_BACKEND="memory",
        CODE_STRATEGY="sequential",
        SHORT_CODE_LENGTH=7,
        MAX_ALLOCATION_ATTEMPTS=5,
        STORE_MAX_RETRIES=3,
        STORE_RETRY_BASE_DELAY_SECONDS=0.0,
        STORE_RETRY_MAX_DELAY_SECONDS=0.0,
        CACHE_MAX_ENTRIES=100,
        CACHE_TTL_SECONDS=60.0,
    )


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock(return_value=None)


@pytest.fixture
def retry_policy(sleep: AsyncMock) -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay=0.01, max_delay=1.0, sleep=sleep)


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def cache(settings: Settings) -> ResolutionCache:
    return ResolutionCache.from_settings(settings)


@pytest.fixture
def generator(settings: Settings) -> SequentialCodeGenerator:
    return SequentialCodeGenerator(LocalCounter(), settings.SHORT_CODE_LENGTH, settings.CODE_ALPHABET)


@pytest.fixture
def allocation(store, generator, settings, retry_policy) -> AllocationService:
    return AllocationService(store, generator, settings, retry_policy=retry_policy)


@pytest.fixture
def resolution(store, cache, settings, retry_policy) -> ResolutionService:
    return ResolutionService(store, cache, settings, retry_policy=retry_policy)


@pytest.fixture
def past() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC) - datetime.timedelta(hours=1)


@pytest.fixture
def future() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC) + datetime.timedelta(hours=1)


@pytest_asyncio.fixture(scope="function")
async def client(settings: Settings, store: CountingStore) -> AsyncGenerator[AsyncClient, None]:
    await _service_manager.cleanup()
    await _service_manager.initialize(settings, store=store)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await _service_manager.cleanup()

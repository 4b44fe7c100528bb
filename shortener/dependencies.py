"""Dependency injection with a singleton service manager.

The manager builds every shared component once at startup from a single
``Settings`` instance and hands the same objects to each request. Only the
per-request logger adapter is created per call.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from shortener.allocation import AllocationService
from shortener.cache import ResolutionCache
from shortener.codegen import CodeGenerator, build_code_generator
from shortener.config import Settings, get_settings
from shortener.database import create_engine, create_session_factory, init_db
from shortener.resolution import ResolutionService
from shortener.retry import RetryPolicy
from shortener.sql_store import SQLMappingStore
from shortener.store import InMemoryMappingStore, MappingStore


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton owner of the store, cache, generator and services."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self, settings: Settings | None = None, store: MappingStore | None = None) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.redis_client: redis.Redis | None = None
        self.store = store or await self._setup_store()
        self.generator = self._setup_generator()
        self.cache = ResolutionCache.from_settings(self.settings)
        retry_policy = RetryPolicy.from_settings(self.settings)
        self.allocation = AllocationService(self.store, self.generator, self.settings, self.logger, retry_policy)
        self.resolution = ResolutionService(self.store, self.cache, self.settings, self.logger, retry_policy)
        self._initialized = True
        self.logger.info(
            f"Service manager ready (store={type(self.store).__name__}, generator={type(self.generator).__name__})"
        )

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    async def _setup_store(self) -> MappingStore:
        if self.settings.MAPPING_STORE_BACKEND == "memory":
            return InMemoryMappingStore()
        engine = create_engine(self.settings)
        await init_db(engine)
        return SQLMappingStore(create_session_factory(engine), self.settings.STORE_TIMEOUT_SECONDS, engine)

    def _setup_generator(self) -> CodeGenerator:
        # A process-local counter restarts at 1, so durable stores need the shared Redis counter.
        if self.settings.CODE_STRATEGY == "sequential" and self.settings.MAPPING_STORE_BACKEND == "sql":
            self.redis_client = redis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        return build_code_generator(self.settings, self.redis_client)

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.store.close()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


class RequestLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the request id and client address."""

    def process(self, msg, kwargs):
        return f"[{self.extra['request_id']} {self.extra['client_ip'] or '-'}] {msg}", kwargs


@dataclass
class RequestContext:
    """Per-request tracking on top of the shared service manager."""

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> RequestLoggerAdapter:
        return RequestLoggerAdapter(
            self.service_manager.logger,
            {"request_id": self.request_id, "client_ip": self.client_ip},
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        client_ip=request.client.host if request.client else None,
    )


def get_allocation_service(manager: ServiceManager = Depends(get_service_manager)) -> AllocationService:
    return manager.allocation


def get_resolution_service(manager: ServiceManager = Depends(get_service_manager)) -> ResolutionService:
    return manager.resolution

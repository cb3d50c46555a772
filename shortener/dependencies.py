"""Dependency injection with a singleton service manager.

The manager owns every shared resource (settings, logger, Redis client,
session factory and the core components built on them) so a request only pays
for a lightweight context object and a service facade.

Object Graph
============
::
    ServiceManager
    ├─ settings / logger
    ├─ cache (redis.asyncio.Redis)
    ├─ session_factory (async_sessionmaker)
    ├─ repository ─────────── LinkRepository(session_factory)
    ├─ link_cache ─────────── ReadThroughCache(cache, repository)
    ├─ allocator ──────────── SequenceAllocator(session_factory)
    ├─ tracker ────────────── HotPathTracker(cache)
    ├─ rate_limiter ───────── RateLimiter(cache)
    └─ sync_worker ────────── SyncWorker(cache, repository)
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.cache import ReadThroughCache
from shortener.config import Settings, get_settings
from shortener.rate_limiter import RateLimiter
from shortener.repository import LinkRepository
from shortener.sequence import SequenceAllocator
from shortener.sync_worker import SyncWorker
from shortener.tracker import HotPathTracker
from shortener.url_service import URLShorteningService

__all__ = [
    "RequestContext",
    "ServiceManager",
    "client_id_from_request",
    "get_request_context",
    "get_service_manager",
    "get_url_service",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    `initialize()` builds the Redis client and session factory from settings
    unless they are passed in, which is how tests plug in fakeredis and SQLite.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(
        self,
        settings: Settings | None = None,
        cache: redis.Redis | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return

        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self._owns_cache = cache is None
        self.cache = cache or self._setup_redis()
        self.session_factory = session_factory or self._setup_session_factory()

        self.repository = LinkRepository(self.session_factory, self.settings.DURABLE_STORE_TIMEOUT_SECONDS)
        self.link_cache = ReadThroughCache(self.cache, self.repository, self.settings.LINK_CACHE_TTL_SECONDS)
        self.allocator = SequenceAllocator(
            self.session_factory,
            range_size=self.settings.ID_RANGE_SIZE,
            timeout=self.settings.DURABLE_STORE_TIMEOUT_SECONDS,
        )
        self.tracker = HotPathTracker(self.cache, self.settings.FAST_STORE_TIMEOUT_SECONDS)
        self.rate_limiter = RateLimiter(
            self.cache,
            max_requests=self.settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=self.settings.RATE_LIMIT_WINDOW_SECONDS,
            timeout=self.settings.FAST_STORE_TIMEOUT_SECONDS,
            enabled=self.settings.RATE_LIMIT_ENABLED,
        )
        self.sync_worker = SyncWorker(
            self.cache,
            self.repository,
            interval_seconds=self.settings.SYNC_INTERVAL_SECONDS,
            timeout=self.settings.FAST_STORE_TIMEOUT_SECONDS,
        )
        self._initialized = True
        self.logger.info(f"Service manager initialized for {self.settings.APP_NAME} ({self.settings.APP_ENV})")

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    def _setup_redis(self) -> redis.Redis:
        from shortener.redis import create_redis

        return create_redis(self.settings)

    def _setup_session_factory(self) -> async_sessionmaker[AsyncSession]:
        from shortener.database import async_session

        return async_session

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        if self.sync_worker.running:
            await self.sync_worker.stop()
        if self._owns_cache:
            await self.cache.aclose()
        self._initialized = False


_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking data plus access to the shared service manager.

    Attributes:
        service_manager: Singleton service manager with shared resources
        client_id: Identity used for rate limiting
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    client_id: str
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with request context attached."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_id,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def client_id_from_request(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def get_service_manager() -> ServiceManager:
    if not _service_manager.initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        service_manager=manager,
        client_id=client_id_from_request(request),
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
    )


def get_url_service(ctx: RequestContext = Depends(get_request_context)) -> URLShorteningService:
    """Create URL service bound to the request context."""
    return URLShorteningService.from_context(ctx)

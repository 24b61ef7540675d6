"""Dependency injection with a singleton service manager.

The shortener core (store, cache, code generator, hit aggregator, resolver)
is built once per process by ``ServiceManager`` and shared by every request;
the hit aggregator's flush task lives as long as the manager does. Each
request gets a lightweight ``RequestContext`` carrying tracking information
and a context-aware logger.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request

from shortener.aggregator import HitAggregator
from shortener.cache import URLCache, build_cache
from shortener.codegen import CodeGenerator
from shortener.config import Settings, get_settings
from shortener.database import async_session
from shortener.resolver import RedirectResolver
from shortener.service import ShortenerService
from shortener.store import ShortURLStore

__all__ = [
    "RequestContext",
    "ServiceManager",
    "get_request_context",
    "get_service_manager",
    "get_shortener_service",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton owner of the shared shortener components.

    This class manages shared resources that don't need to be created per request,
    and the lifetime of the background hit flush task.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    settings: Settings
    logger: logging.Logger
    cache: URLCache
    store: ShortURLStore
    aggregator: HitAggregator
    generator: CodeGenerator
    resolver: RedirectResolver

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Build the shared components once and start the flush task."""
        if self._initialized:
            return
        self.settings = get_settings()
        self.logger = self._setup_logger()
        self.cache = build_cache(self.settings)
        self.store = ShortURLStore(async_session, timeout_seconds=self.settings.DATABASE_TIMEOUT_SECONDS)
        self.aggregator = HitAggregator(
            self.store,
            self.cache,
            interval_seconds=self.settings.HIT_FLUSH_INTERVAL_SECONDS,
        )
        self.generator = CodeGenerator(
            self.store,
            self.cache,
            is_pending=self.aggregator.is_pending,
            length=self.settings.SHORT_CODE_LENGTH,
            max_attempts=self.settings.CODE_GENERATION_MAX_ATTEMPTS,
        )
        self.resolver = RedirectResolver(
            self.store,
            self.cache,
            self.aggregator,
            cache_ttl_seconds=self.settings.CACHE_TTL_SECONDS,
        )
        self.aggregator.start()
        self._initialized = True
        self.logger.info(f"Service manager initialized with {self.settings.CACHE_BACKEND} cache")

    def _setup_logger(self) -> logging.Logger:
        """Setup the package logger once."""
        logger = logging.getLogger("shortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Flush pending hits and release shared resources at shutdown."""
        if not self._initialized:
            return
        await self.aggregator.stop()
        await self.cache.close()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking plus access to the shared service manager.

    Attributes:
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with this request's context attached."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


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
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def get_shortener_service(ctx: RequestContext = Depends(get_request_context)) -> ShortenerService:
    return ShortenerService.from_context(ctx)

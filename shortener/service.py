"""Shortener service - owner-facing operations and the public resolve path.

This module is the façade the HTTP layer talks to. It validates input,
enforces ownership, and sequences the code generator, durable store, cache
and hit aggregator.

Flow Diagram — Create
=====================
::
    validate URL ──▶ CodeGenerator.generate ──▶ store.insert ──▶ cache.set (warm)
                          ▲                        │
                          └── DuplicateCodeError ──┘  (bounded retries)

Flow Diagram — Delete
=====================
::
    store.get_by_code ──▶ owner check ──▶ aggregator.drop ──▶ cache.invalidate
                                                                   │
    cache.invalidate ◀── cache.mark_deleted ◀── store.delete ◀─────┘

How to Use
===========
**Step 1 — Build from a request context**::
    service = ShortenerService.from_context(ctx)

**Step 2 — Create / list / delete as an owner**::
    record = await service.create(user_id, "https://example.com")
    records = await service.list(user_id)
    await service.delete(user_id, record.code)

**Step 3 — Resolve publicly**::
    origin_url = await service.resolve(code)

Key Behaviours
===============
- Invalid URLs are rejected before a code is drawn.
- ``list`` reports flushed hit counts only; they trail live traffic by up to
  one flush interval.
- ``delete`` fences off the pending hits, the cache and the durable record
  before it returns, so a deleted code resolves to nothing on every path.
  After the durable delete the code is tombstoned in the cache and the
  entry is invalidated again, so a resolution that read the record
  mid-delete cannot leave a live entry behind.
"""

import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import validators
from prometheus_client import Counter, Histogram

from shortener.aggregator import HitAggregator
from shortener.cache import URLCache
from shortener.codegen import CodeGenerator
from shortener.config import Settings
from shortener.enums import RequestStatus
from shortener.exceptions import (
    CodeSpaceExhaustedError,
    DuplicateCodeError,
    ForbiddenError,
    InvalidURLError,
    NotFoundError,
)
from shortener.models import ShortURL
from shortener.resolver import RedirectResolver
from shortener.store import ShortURLStore

if TYPE_CHECKING:
    from shortener.dependencies import RequestContext

__all__ = ["ShortenerService", "validate_origin_url"]

ALLOWED_SCHEMES = ("http", "https")

URL_CREATION_REQUESTS_TOTAL = Counter(
    "shortener_creation_requests_total",
    "Total short URL creation requests",
    ["status"],
)
URL_CREATION_DURATION = Histogram(
    "shortener_creation_duration_seconds",
    "Time taken to create short URLs",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
URL_DELETIONS_TOTAL = Counter(
    "shortener_deletions_total",
    "Total short URL deletion requests",
    ["status"],
)


def validate_origin_url(raw_url: str) -> str:
    """Return ``raw_url`` unchanged if it is an absolute http(s) URL.

    Raises:
        InvalidURLError: empty, malformed, relative, or non-http(s) URL.
    """
    if not isinstance(raw_url, str) or not raw_url.strip():
        raise InvalidURLError("URL must not be empty")
    parts = urlsplit(raw_url)
    if parts.scheme not in ALLOWED_SCHEMES or not parts.netloc:
        raise InvalidURLError("URL must be absolute and use http or https")
    if not validators.url(raw_url, simple_host=True, strict_query=False):
        raise InvalidURLError("Invalid URL provided")
    return raw_url


class ShortenerService:
    """Owner operations on short URLs plus the public resolve path.

    Example:
        >>> service = ShortenerService.from_context(ctx)
        >>> record = await service.create("42", "https://example.com")
        >>> await service.resolve(record.code)
        'https://example.com'
    """

    def __init__(
        self,
        store: ShortURLStore,
        cache: URLCache,
        generator: CodeGenerator,
        aggregator: HitAggregator,
        resolver: RedirectResolver,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._store = store
        self._cache = cache
        self._generator = generator
        self._aggregator = aggregator
        self._resolver = resolver
        self._settings = settings
        self._logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "ShortenerService":
        """Build a service over the shared components with the request's logger."""
        manager = ctx.service_manager
        return cls(
            store=manager.store,
            cache=manager.cache,
            generator=manager.generator,
            aggregator=manager.aggregator,
            resolver=manager.resolver,
            settings=ctx.settings,
            logger=ctx.logger,
        )

    async def create(self, owner_id: str, raw_url: str) -> ShortURL:
        """Shorten ``raw_url`` on behalf of ``owner_id``.

        Raises:
            InvalidURLError: the URL was rejected.
            CodeSpaceExhaustedError: no free code within the retry budget.
            TransientBackendError: the durable store is unavailable.
        """
        start_time = time.perf_counter()
        try:
            origin_url = validate_origin_url(raw_url)
        except InvalidURLError:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            raise

        try:
            record = await self._insert_with_fresh_code(owner_id, origin_url)
        except CodeSpaceExhaustedError as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"ALARM short code space exhausted: {exc}")
            raise
        except Exception:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            raise

        if self._settings.CACHE_WARM_ON_CREATE:
            await self._cache.set(record.code, record.origin_url, self._settings.CACHE_TTL_SECONDS)

        duration = time.perf_counter() - start_time
        URL_CREATION_DURATION.observe(duration)
        URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Short URL created: {record.code} for owner {owner_id} in {duration:.3f}s")
        return record

    async def _insert_with_fresh_code(self, owner_id: str, origin_url: str) -> ShortURL:
        for _ in range(self._generator.max_attempts):
            code = await self._generator.generate()
            try:
                return await self._store.insert(code, origin_url, owner_id)
            except DuplicateCodeError:
                self._logger.warning(f"Short code {code} taken by a concurrent insert, redrawing")
        raise CodeSpaceExhaustedError(f"Inserts kept colliding after {self._generator.max_attempts} attempts")

    async def list(self, owner_id: str) -> Sequence[ShortURL]:
        records = await self._store.list_by_owner(owner_id)
        self._logger.debug(f"Listed {len(records)} short URLs for owner {owner_id}")
        return records

    async def delete(self, owner_id: str, code: str) -> None:
        """Delete ``code`` if ``owner_id`` owns it.

        Raises:
            NotFoundError: the code does not exist.
            ForbiddenError: the code belongs to another owner.
            TransientBackendError: the store or the cache failed. The delete
                is not acknowledged; a retry reports NotFoundError if the
                record was already removed.
        """
        record = await self._store.get_by_code(code)
        if record is None:
            URL_DELETIONS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            raise NotFoundError(f"Short URL '{code}' not found")
        if record.owner_id != owner_id:
            URL_DELETIONS_TOTAL.labels(status=RequestStatus.FORBIDDEN).inc()
            raise ForbiddenError(f"Short URL '{code}' is not owned by {owner_id}")

        await self._aggregator.drop(code)
        await self._cache.invalidate(code)
        deleted = await self._store.delete(code)
        try:
            if deleted:
                await self._cache.mark_deleted(code, self._settings.DELETE_TOMBSTONE_TTL_SECONDS)
        finally:
            await self._cache.invalidate(code)

        if not deleted:
            URL_DELETIONS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            raise NotFoundError(f"Short URL '{code}' was deleted concurrently")
        URL_DELETIONS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Short URL deleted: {code} by owner {owner_id}")

    async def resolve(self, code: str) -> str | None:
        return await self._resolver.resolve(code)

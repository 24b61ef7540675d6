"""Cache-aside layer mapping short codes to origin URLs and local hit deltas.

Flow Diagram — Redirect Hot Path
================================
::
    ┌─────────────┐
    │ get(code)    │──── miss / backend down ───▶ caller reads durable store
    └──────┬──────┘
       HIT │
           ▼
    ┌─────────────┐
    │ increment_  │  atomic per-code delta cell
    │ local(code) │  (Redis INCR / in-process dict)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ claim_local │  read-and-clear, only called by
    │ (code)      │  the hit aggregator's flush
    └─────────────┘

How to Use
===========
**Step 1 — Build from settings**::
    cache = build_cache(get_settings())

**Step 2 — Read / populate**::
    origin_url = await cache.get("abc123")
    if origin_url is None:
        await cache.set("abc123", "https://example.com", ttl_seconds=3600)

**Step 3 — Invalidate on delete**::
    await cache.invalidate("abc123")

Key Behaviours
===============
- Two backends share one interface: Redis (shared across workers) and an
  in-process ``cachetools.TLRUCache`` with per-entry TTL.
- URL entries and hit-delta cells live under separate keys so that TTL
  eviction of an entry never drops counted hits.
- Backend failures on ``get``/``set`` degrade to miss/no-op and are logged;
  ``increment_local``/``claim_local`` return ``None`` so the aggregator can
  keep the count in-process instead.
- ``invalidate`` raises ``TransientBackendError`` when it cannot confirm the
  entry is gone: a delete must not be acknowledged while a stale entry may
  still serve redirects.
- ``mark_deleted`` leaves a short-lived tombstone for a deleted code. A
  resolution that read the record before the delete sees it after filling
  the cache and evicts its own entry. Failing to write the tombstone raises;
  failing to read it counts as "not deleted".

Classes:
    URLCache:  Abstract cache capability used by the resolver and aggregator.
    RedisURLCache:  ``redis.asyncio`` backend.
    MemoryURLCache:  In-process backend.

Functions:
    build_cache():  Backend factory driven by ``CACHE_BACKEND``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Any, NamedTuple, TypeVar

import redis.asyncio as redis
from cachetools import TLRUCache
from prometheus_client import Counter
from pydantic import ValidationError
from redis.exceptions import RedisError

from shortener.config import Settings
from shortener.enums import CacheBackend
from shortener.exceptions import TransientBackendError
from shortener.schemas import CachedURLPayload

__all__ = ["MemoryURLCache", "RedisURLCache", "URLCache", "build_cache"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_OPERATIONS_TOTAL = Counter(
    "shortener_cache_operations_total",
    "Total cache backend operations",
    ["operation"],
)
CACHE_ERRORS_TOTAL = Counter(
    "shortener_cache_errors_total",
    "Cache backend operations that failed or timed out",
    ["operation"],
)


class URLCache(ABC):
    """Capability interface for the short code cache."""

    @abstractmethod
    async def get(self, code: str) -> str | None:
        """Return the cached origin URL, or None on miss."""

    @abstractmethod
    async def set(self, code: str, origin_url: str, ttl_seconds: int) -> None:
        """Install or refresh the entry for ``code``."""

    @abstractmethod
    async def increment_local(self, code: str) -> int | None:
        """Atomically bump the local hit delta; None if the backend is unavailable."""

    @abstractmethod
    async def claim_local(self, code: str) -> int | None:
        """Atomically read and clear the local hit delta; None if unavailable."""

    @abstractmethod
    async def invalidate(self, code: str) -> None:
        """Remove the entry for ``code`` immediately."""

    @abstractmethod
    async def mark_deleted(self, code: str, ttl_seconds: int) -> None:
        """Record that ``code`` was just deleted, for ``ttl_seconds``."""

    @abstractmethod
    async def is_deleted(self, code: str) -> bool:
        """True while a deletion mark for ``code`` is live."""

    @abstractmethod
    async def ping(self) -> None:
        """Raise if the backend is unreachable."""

    async def close(self) -> None:
        return None


class RedisURLCache(URLCache):
    """Cache backed by a shared Redis instance."""

    def __init__(
        self,
        client: redis.Redis,
        timeout_seconds: float,
        key_prefix: str = "url",
        delta_key_prefix: str = "hits",
        tombstone_key_prefix: str = "tomb",
    ):
        self._client = client
        self._timeout = timeout_seconds
        self._key_prefix = key_prefix
        self._delta_key_prefix = delta_key_prefix
        self._tombstone_key_prefix = tombstone_key_prefix

    def _url_key(self, code: str) -> str:
        return f"{self._key_prefix}:{code}"

    def _delta_key(self, code: str) -> str:
        return f"{self._delta_key_prefix}:{code}"

    def _tombstone_key(self, code: str) -> str:
        return f"{self._tombstone_key_prefix}:{code}"

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        CACHE_OPERATIONS_TOTAL.labels(operation=operation).inc()
        try:
            async with asyncio.timeout(self._timeout):
                return await awaitable
        except (RedisError, TimeoutError, OSError):
            CACHE_ERRORS_TOTAL.labels(operation=operation).inc()
            raise

    async def get(self, code: str) -> str | None:
        try:
            raw = await self._call("get", self._client.get(self._url_key(code)))
        except (RedisError, TimeoutError, OSError) as exc:
            logger.warning(f"Cache get failed for {code}, treating as miss: {exc!r}")
            return None
        if raw is None:
            return None
        try:
            return CachedURLPayload.model_validate_json(raw).origin_url
        except ValidationError as exc:
            logger.error(f"Cache deserialization error for {code}: {exc}")
            return None

    async def set(self, code: str, origin_url: str, ttl_seconds: int) -> None:
        payload = CachedURLPayload(code=code, origin_url=origin_url)
        try:
            await self._call("set", self._client.set(self._url_key(code), payload.model_dump_json(), ex=ttl_seconds))
        except (RedisError, TimeoutError, OSError) as exc:
            logger.warning(f"Cache set failed for {code}: {exc!r}")

    async def increment_local(self, code: str) -> int | None:
        try:
            return int(await self._call("incr", self._client.incr(self._delta_key(code))))
        except (RedisError, TimeoutError, OSError) as exc:
            logger.warning(f"Cache increment failed for {code}: {exc!r}")
            return None

    async def claim_local(self, code: str) -> int | None:
        try:
            raw = await self._call("getdel", self._client.getdel(self._delta_key(code)))
        except (RedisError, TimeoutError, OSError) as exc:
            logger.warning(f"Cache claim failed for {code}: {exc!r}")
            return None
        return int(raw) if raw else 0

    async def invalidate(self, code: str) -> None:
        try:
            await self._call("delete", self._client.delete(self._url_key(code)))
        except (RedisError, TimeoutError, OSError) as exc:
            raise TransientBackendError(f"Cache invalidation failed for {code}") from exc

    async def mark_deleted(self, code: str, ttl_seconds: int) -> None:
        try:
            await self._call("set", self._client.set(self._tombstone_key(code), "1", ex=ttl_seconds))
        except (RedisError, TimeoutError, OSError) as exc:
            raise TransientBackendError(f"Cache tombstone failed for {code}") from exc

    async def is_deleted(self, code: str) -> bool:
        try:
            return bool(await self._call("exists", self._client.exists(self._tombstone_key(code))))
        except (RedisError, TimeoutError, OSError) as exc:
            logger.warning(f"Cache tombstone check failed for {code}: {exc!r}")
            return False

    async def ping(self) -> None:
        await self._call("ping", self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


class _Entry(NamedTuple):
    origin_url: str
    ttl_seconds: int


def _entry_expiry(_key: str, value: _Entry, now: float) -> float:
    return now + value.ttl_seconds


def _tombstone_expiry(_key: str, ttl_seconds: int, now: float) -> float:
    return now + ttl_seconds


class MemoryURLCache(URLCache):
    """Per-process cache.

    All operations complete without awaiting, so on a single event loop each
    one is atomic with respect to every other coroutine.
    """

    def __init__(self, maxsize: int = 100_000):
        self._entries: TLRUCache[str, _Entry] = TLRUCache(maxsize=maxsize, ttu=_entry_expiry)
        self._deltas: dict[str, int] = {}
        self._tombstones: TLRUCache[str, int] = TLRUCache(maxsize=maxsize, ttu=_tombstone_expiry)

    async def get(self, code: str) -> str | None:
        CACHE_OPERATIONS_TOTAL.labels(operation="get").inc()
        entry = self._entries.get(code)
        return entry.origin_url if entry is not None else None

    async def set(self, code: str, origin_url: str, ttl_seconds: int) -> None:
        CACHE_OPERATIONS_TOTAL.labels(operation="set").inc()
        self._entries[code] = _Entry(origin_url, ttl_seconds)

    async def increment_local(self, code: str) -> int | None:
        CACHE_OPERATIONS_TOTAL.labels(operation="incr").inc()
        self._deltas[code] = self._deltas.get(code, 0) + 1
        return self._deltas[code]

    async def claim_local(self, code: str) -> int | None:
        CACHE_OPERATIONS_TOTAL.labels(operation="getdel").inc()
        return self._deltas.pop(code, 0)

    async def invalidate(self, code: str) -> None:
        CACHE_OPERATIONS_TOTAL.labels(operation="delete").inc()
        self._entries.pop(code, None)

    async def mark_deleted(self, code: str, ttl_seconds: int) -> None:
        CACHE_OPERATIONS_TOTAL.labels(operation="set").inc()
        self._tombstones[code] = ttl_seconds

    async def is_deleted(self, code: str) -> bool:
        CACHE_OPERATIONS_TOTAL.labels(operation="exists").inc()
        return code in self._tombstones

    async def ping(self) -> None:
        return None


def build_cache(settings: Settings, **redis_options: Any) -> URLCache:
    if settings.CACHE_BACKEND == CacheBackend.MEMORY:
        return MemoryURLCache(maxsize=settings.CACHE_MAX_ENTRIES)

    client = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.CACHE_TIMEOUT_SECONDS,
        **redis_options,
    )
    return RedisURLCache(
        client,
        timeout_seconds=settings.CACHE_TIMEOUT_SECONDS,
        key_prefix=settings.CACHE_KEY_PREFIX,
        delta_key_prefix=settings.HIT_DELTA_KEY_PREFIX,
        tombstone_key_prefix=settings.TOMBSTONE_KEY_PREFIX,
    )

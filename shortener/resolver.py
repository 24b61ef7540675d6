"""Short code resolution for the public redirect path.

Flow Diagram — resolve(code)
============================
::
    ┌─────────────┐
    │ cache.get    │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            │
┌─────────┐      │
│ store.  │      │
│ get_by_ │      │
│ code    │      │
└────┬────┘      │
 FOUND?          │
 ┌───┴────┐      │
 NO      YES     │
 │        ▼      │
 │   ┌─────────┐ │
 │   │cache.set│ │
 │   │+ tomb-  │ │
 │   │ stone?  │ │
 │   └────┬────┘ │
 │        ▼      ▼
 │     ┌─────────────┐
 │     │ aggregator. │
 │     │ increment   │
 │     └──────┬──────┘
 ▼            ▼
None      origin URL

Key Behaviours
===============
- Exactly one hit is counted per successful resolution, whichever path
  served it. Unknown codes count nothing.
- Absence is never cached; a code created a moment later resolves at once.
- A cache fill is checked against the deletion tombstone after it is
  written. Either the check sees the tombstone and the entry is evicted
  here, or the fill happened before the tombstone and the delete's final
  invalidation removes it.
- Cache trouble degrades to the durable path. Store trouble propagates as
  ``TransientBackendError`` and is never reported as "not found".
"""

import logging
import time

from prometheus_client import Counter, Histogram

from shortener.aggregator import HitAggregator
from shortener.cache import URLCache
from shortener.enums import CacheStatus, RequestStatus
from shortener.store import ShortURLStore

__all__ = ["RedirectResolver"]

logger = logging.getLogger(__name__)

RESOLVE_REQUESTS_TOTAL = Counter(
    "shortener_resolve_requests_total",
    "Total short code resolutions",
    ["status", "cache_hit"],
)
RESOLVE_DURATION = Histogram(
    "shortener_resolve_duration_seconds",
    "Time taken to resolve a short code",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


class RedirectResolver:
    def __init__(self, store: ShortURLStore, cache: URLCache, aggregator: HitAggregator, cache_ttl_seconds: int):
        self._store = store
        self._cache = cache
        self._aggregator = aggregator
        self._cache_ttl = cache_ttl_seconds

    async def resolve(self, code: str) -> str | None:
        """Return the origin URL for ``code`` and count the hit, or None if unknown."""
        start_time = time.perf_counter()

        origin_url = await self._cache.get(code)
        if origin_url is not None:
            await self._aggregator.increment(code)
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.HIT).inc()
            RESOLVE_DURATION.observe(time.perf_counter() - start_time)
            return origin_url

        record = await self._store.get_by_code(code)
        if record is None:
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=CacheStatus.MISS).inc()
            logger.debug(f"Short code not found: {code}")
            return None

        await self._cache.set(code, record.origin_url, self._cache_ttl)
        if await self._cache.is_deleted(code):
            # record was deleted after the read above
            await self._cache.invalidate(code)
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=CacheStatus.MISS).inc()
            logger.debug(f"Short code deleted during resolution: {code}")
            return None

        await self._aggregator.increment(code)
        RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.MISS).inc()
        RESOLVE_DURATION.observe(time.perf_counter() - start_time)
        return record.origin_url

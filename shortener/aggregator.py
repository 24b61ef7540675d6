"""Write-back aggregation of redirect hits.

Redirects must never wait on a durable-store write, so a hit is only counted
in the cache's per-code delta cell and the code is marked dirty. A single
background task flushes the accumulated deltas to the store on a fixed
interval.

Flow Diagram — Flush Cycle
==========================
::
    dirty codes ──claim_local (read-and-clear)──▶ PendingFlush {code: delta}
                                                        │
                                                        ▼
                                        store.increment_hits(code, delta)
                                     ┌──────────────┼───────────────┐
                                  applied       row missing      failed
                                     │              │               │
                                  cleared       discarded     kept for next cycle

Key Behaviours
===============
- Claim-then-apply: a delta leaves the cache before it is written and is only
  ever written once. A failed write puts it back into PendingFlush, never
  into the cache cell, so it cannot be claimed twice.
- Deltas are applied with an additive ``UPDATE``; a retried delta composes
  with writes from other workers.
- ``drop(code)`` removes a code from every stage (dirty set, PendingFlush,
  the batch being flushed) and clears its cache cell. A write already on the
  wire for that code either lands before the record is deleted or matches no
  row and is discarded.
- If the cache cannot count a hit, the hit goes straight into PendingFlush.

Classes:
    HitAggregator:  Counts hits and owns the periodic flush task.
"""

import asyncio
import logging

from prometheus_client import Counter, Gauge
from sqlalchemy.exc import SQLAlchemyError

from shortener.cache import URLCache
from shortener.enums import FlushOutcome
from shortener.exceptions import TransientBackendError
from shortener.store import ShortURLStore

__all__ = ["HitAggregator"]

logger = logging.getLogger(__name__)

HITS_RECORDED_TOTAL = Counter(
    "shortener_hits_recorded_total",
    "Redirect hits counted by the aggregator",
)
HITS_FLUSHED_TOTAL = Counter(
    "shortener_hits_flushed_total",
    "Redirect hits durably applied to the store",
)
FLUSH_OUTCOMES_TOTAL = Counter(
    "shortener_flush_outcomes_total",
    "Per-code results of hit flushes",
    ["outcome"],
)
PENDING_CODES = Gauge(
    "shortener_pending_flush_codes",
    "Codes holding claimed hits that are not yet in the store",
)


class HitAggregator:
    def __init__(self, store: ShortURLStore, cache: URLCache, interval_seconds: float = 5.0):
        assert interval_seconds > 0, f"interval_seconds must be positive, got {interval_seconds!r}"
        self._store = store
        self._cache = cache
        self._interval = interval_seconds

        self._dirty: set[str] = set()
        self._pending: dict[str, int] = {}
        self._in_flight: dict[str, int] = {}
        self._dropped: set[str] = set()

        self._flush_lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def increment(self, code: str) -> None:
        """Count one hit for ``code``."""
        local = await self._cache.increment_local(code)
        if local is None:
            self._pending[code] = self._pending.get(code, 0) + 1
        else:
            self._dirty.add(code)
        HITS_RECORDED_TOTAL.inc()

    def is_pending(self, code: str) -> bool:
        return code in self._dirty or code in self._pending or code in self._in_flight

    async def drop(self, code: str) -> None:
        """Forget every not-yet-applied hit for ``code``."""
        self._dropped.add(code)
        self._dirty.discard(code)
        self._pending.pop(code, None)
        self._in_flight.pop(code, None)
        await self._cache.claim_local(code)
        PENDING_CODES.set(len(self._pending))

    async def flush(self) -> int:
        """Run one flush cycle and return the number of hits applied."""
        async with self._flush_lock:
            self._dropped.clear()
            await self._claim_dirty()

            self._in_flight, self._pending = self._pending, {}
            applied = 0
            try:
                while self._in_flight:
                    code, delta = self._in_flight.popitem()
                    try:
                        applied += await self._apply(code, delta)
                    except BaseException:
                        self._requeue(code, delta)
                        raise
            finally:
                for code, delta in self._in_flight.items():
                    self._requeue(code, delta)
                self._in_flight = {}
                PENDING_CODES.set(len(self._pending))

            if applied:
                logger.debug(f"Flushed {applied} hits")
            return applied

    async def _claim_dirty(self) -> None:
        dirty, self._dirty = self._dirty, set()
        for code in dirty:
            delta = await self._cache.claim_local(code)
            if delta is None:
                # cell still holds the hits; try again next cycle
                self._dirty.add(code)
            elif delta > 0 and code not in self._dropped:
                self._pending[code] = self._pending.get(code, 0) + delta

    async def _apply(self, code: str, delta: int) -> int:
        try:
            found = await self._store.increment_hits(code, delta)
        except (TransientBackendError, SQLAlchemyError):
            logger.warning(f"Hit flush failed for {code}, keeping {delta} for retry", exc_info=True)
            FLUSH_OUTCOMES_TOTAL.labels(outcome=FlushOutcome.RETRY).inc()
            self._requeue(code, delta)
            return 0

        if not found:
            logger.debug(f"Discarded {delta} hits for deleted code {code}")
            FLUSH_OUTCOMES_TOTAL.labels(outcome=FlushOutcome.DISCARDED).inc()
            return 0

        FLUSH_OUTCOMES_TOTAL.labels(outcome=FlushOutcome.APPLIED).inc()
        HITS_FLUSHED_TOTAL.inc(delta)
        return delta

    def _requeue(self, code: str, delta: int) -> None:
        if code in self._dropped:
            return
        self._pending[code] = self._pending.get(code, 0) + delta

    def start(self) -> None:
        """Start the periodic flush task on the running loop."""
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="hit-aggregator-flush")
        logger.info(f"Hit aggregator started, flushing every {self._interval}s")

    async def stop(self) -> None:
        """Stop the flush task and flush whatever is still pending."""
        if self._task is not None:
            self._stopping.set()
            await self._task
            self._task = None
        await self.flush()
        logger.info("Hit aggregator stopped")

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            if self._stopping.is_set():
                return
            try:
                await self.flush()
            except Exception:
                logger.warning("hit flush cycle failed", exc_info=True)

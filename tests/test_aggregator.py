"""Hit aggregation and write-back flush tests."""

import asyncio

import pytest
import pytest_asyncio

from shortener.aggregator import HitAggregator
from shortener.cache import MemoryURLCache
from shortener.exceptions import TransientBackendError
from shortener.store import ShortURLStore

CODE = "abc12345"


async def _hits(store: ShortURLStore, code: str = CODE) -> int:
    record = await store.get_by_code(code)
    assert record is not None
    return record.hits


@pytest_asyncio.fixture
async def stored(store: ShortURLStore) -> str:
    await store.insert(CODE, "https://www.google.com", "user-1")
    return CODE


class UnavailableCounterCache(MemoryURLCache):
    """In-process cache whose hit counters are unreachable."""

    async def increment_local(self, code: str) -> int | None:
        return None


class TestIncrementAndFlush:
    @pytest.mark.asyncio
    async def test_increment_marks_code_pending(self, aggregator: HitAggregator, stored: str) -> None:
        assert not aggregator.is_pending(stored)
        await aggregator.increment(stored)
        assert aggregator.is_pending(stored)

    @pytest.mark.asyncio
    async def test_flush_applies_accumulated_delta(self, aggregator: HitAggregator, store, stored: str) -> None:
        for _ in range(3):
            await aggregator.increment(stored)

        assert await _hits(store) == 0
        assert await aggregator.flush() == 3
        assert await _hits(store) == 3
        assert not aggregator.is_pending(stored)

    @pytest.mark.asyncio
    async def test_flush_clears_applied_delta(self, aggregator: HitAggregator, store, stored: str) -> None:
        await aggregator.increment(stored)
        await aggregator.flush()

        assert await aggregator.flush() == 0
        assert await _hits(store) == 1

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, aggregator: HitAggregator, store, stored: str) -> None:
        await asyncio.gather(*(aggregator.increment(stored) for _ in range(100)))

        assert await aggregator.flush() == 100
        assert await _hits(store) == 100

    @pytest.mark.asyncio
    async def test_flushes_compose_additively(self, aggregator: HitAggregator, store, stored: str) -> None:
        await aggregator.increment(stored)
        await aggregator.flush()
        await aggregator.increment(stored)
        await aggregator.increment(stored)
        await aggregator.flush()

        assert await _hits(store) == 3

    @pytest.mark.asyncio
    async def test_flush_for_deleted_code_is_discarded(self, aggregator: HitAggregator, store, stored: str) -> None:
        await aggregator.increment(stored)
        await store.delete(stored)

        assert await aggregator.flush() == 0
        assert not aggregator.is_pending(stored)
        assert await store.get_by_code(stored) is None

    @pytest.mark.asyncio
    async def test_unavailable_cache_counts_in_process(self, store, stored: str) -> None:
        aggregator = HitAggregator(store, UnavailableCounterCache(), interval_seconds=3600)
        await aggregator.increment(stored)
        await aggregator.increment(stored)

        assert aggregator.is_pending(stored)
        assert await aggregator.flush() == 2
        assert await _hits(store) == 2


class TestFlushFailures:
    @pytest.mark.asyncio
    async def test_failed_flush_is_retried_exactly_once(
        self, aggregator: HitAggregator, cache: MemoryURLCache, store, stored: str, monkeypatch
    ) -> None:
        real_increment = store.increment_hits
        calls = 0

        async def flaky_increment(code: str, delta: int) -> bool:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise TransientBackendError("store timed out")
            return await real_increment(code, delta)

        monkeypatch.setattr(store, "increment_hits", flaky_increment)
        for _ in range(3):
            await aggregator.increment(stored)

        assert await aggregator.flush() == 0
        assert aggregator.is_pending(stored)
        assert await cache.claim_local(stored) == 0
        assert await _hits(store) == 0

        assert await aggregator.flush() == 3
        assert await aggregator.flush() == 0
        assert await _hits(store) == 3

    @pytest.mark.asyncio
    async def test_hits_during_failed_flush_are_merged(
        self, aggregator: HitAggregator, store, stored: str, monkeypatch
    ) -> None:
        real_increment = store.increment_hits
        failures = iter([True])

        async def flaky_increment(code: str, delta: int) -> bool:
            if next(failures, False):
                await aggregator.increment(code)
                raise TransientBackendError("store timed out")
            return await real_increment(code, delta)

        monkeypatch.setattr(store, "increment_hits", flaky_increment)
        await aggregator.increment(stored)
        await aggregator.flush()

        assert await aggregator.flush() == 2
        assert await _hits(store) == 2


    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_delta_for_next_cycle(
        self, aggregator: HitAggregator, store, stored: str, monkeypatch
    ) -> None:
        real_increment = store.increment_hits

        async def broken_increment(code: str, delta: int) -> bool:
            raise RuntimeError("driver bug")

        monkeypatch.setattr(store, "increment_hits", broken_increment)
        for _ in range(2):
            await aggregator.increment(stored)

        with pytest.raises(RuntimeError):
            await aggregator.flush()
        assert aggregator.is_pending(stored)

        monkeypatch.setattr(store, "increment_hits", real_increment)
        assert await aggregator.flush() == 2
        assert await _hits(store) == 2

class TestDrop:
    @pytest.mark.asyncio
    async def test_drop_discards_pending_hits(self, aggregator: HitAggregator, store, stored: str) -> None:
        await aggregator.increment(stored)
        await aggregator.drop(stored)

        assert not aggregator.is_pending(stored)
        assert await aggregator.flush() == 0
        assert await _hits(store) == 0

    @pytest.mark.asyncio
    async def test_drop_discards_hits_awaiting_retry(
        self, aggregator: HitAggregator, store, stored: str, monkeypatch
    ) -> None:
        async def failing_increment(code: str, delta: int) -> bool:
            raise TransientBackendError("store timed out")

        monkeypatch.setattr(store, "increment_hits", failing_increment)
        await aggregator.increment(stored)
        await aggregator.flush()
        assert aggregator.is_pending(stored)

        await aggregator.drop(stored)
        assert not aggregator.is_pending(stored)

    @pytest.mark.asyncio
    async def test_drop_during_failing_flush_is_not_requeued(
        self, aggregator: HitAggregator, store, stored: str, monkeypatch
    ) -> None:
        async def increment_racing_delete(code: str, delta: int) -> bool:
            await aggregator.drop(code)
            raise TransientBackendError("store timed out")

        monkeypatch.setattr(store, "increment_hits", increment_racing_delete)
        await aggregator.increment(stored)

        assert await aggregator.flush() == 0
        assert not aggregator.is_pending(stored)


class TestBackgroundTask:
    @pytest.mark.asyncio
    async def test_periodic_flush(self, store, cache: MemoryURLCache, stored: str) -> None:
        aggregator = HitAggregator(store, cache, interval_seconds=0.05)
        aggregator.start()
        try:
            await aggregator.increment(stored)
            for _ in range(40):
                await asyncio.sleep(0.05)
                if await _hits(store) == 1:
                    break
            assert await _hits(store) == 1
        finally:
            await aggregator.stop()

    @pytest.mark.asyncio
    async def test_stop_flushes_remaining_hits(self, aggregator: HitAggregator, store, stored: str) -> None:
        aggregator.start()
        assert aggregator.running
        await aggregator.increment(stored)

        await aggregator.stop()

        assert not aggregator.running
        assert await _hits(store) == 1

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, aggregator: HitAggregator) -> None:
        aggregator.start()
        aggregator.start()
        assert aggregator.running
        await aggregator.stop()

"""Tests for the size cache and the cached measurer."""

from __future__ import annotations

import asyncio

import pytest

from promptfit.cancellation import CancellationToken
from promptfit.exceptions import MeasurementError, RenderCancelledError
from promptfit.measure.cache import SizeCache, fingerprint
from promptfit.measure.measurer import CachedMeasurer, CharRatioMeasurer, measurer_namespace


class TestFingerprint:
    def test_stable(self):
        assert fingerprint("hello") == fingerprint("hello")

    def test_namespaced(self):
        assert fingerprint("hello", "a") != fingerprint("hello", "b")
        assert fingerprint("hello", "a").startswith("a:")


class TestSizeCacheLRU:
    def test_put_and_get(self):
        cache = SizeCache(capacity=2)
        cache.put("a", 1)
        assert cache.get("a") == 1
        assert cache.get("missing") is None

    def test_zero_size_is_a_hit(self):
        cache = SizeCache()
        cache.put("empty", 0)
        assert cache.get("empty") == 0
        assert "empty" in cache

    def test_capacity_bound(self):
        cache = SizeCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        assert len(cache) == 2
        assert "a" not in cache

    def test_recent_use_survives(self):
        cache = SizeCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)
        assert "a" in cache
        assert "b" not in cache

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            SizeCache(capacity=0)

    def test_clear(self):
        cache = SizeCache()
        cache.put("a", 1)
        cache.clear()
        assert len(cache) == 0
        assert cache.stats()["hits"] == 0


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_lookups_measure_once(self):
        cache = SizeCache()
        calls = 0

        async def compute() -> int:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return 7

        results = await asyncio.gather(*[cache.get_or_measure("k", compute) for _ in range(5)])
        assert calls == 1
        assert [size for size, _ in results] == [7] * 5
        assert sum(1 for _, hit in results if not hit) == 1
        assert cache.stats()["misses"] == 1
        assert cache.stats()["hits"] == 4

    @pytest.mark.asyncio
    async def test_unrelated_keys_do_not_wait(self):
        cache = SizeCache()
        release = asyncio.Event()

        async def slow() -> int:
            await release.wait()
            return 1

        async def fast() -> int:
            return 2

        slow_task = asyncio.ensure_future(cache.get_or_measure("slow", slow))
        await asyncio.sleep(0)
        assert await cache.get_or_measure("fast", fast) == (2, False)
        release.set()
        assert await slow_task == (1, False)

    @pytest.mark.asyncio
    async def test_failure_reaches_every_waiter_and_is_not_cached(self):
        cache = SizeCache()

        async def broken() -> int:
            await asyncio.sleep(0.01)
            raise RuntimeError("tokenizer down")

        results = await asyncio.gather(
            *[cache.get_or_measure("k", broken) for _ in range(3)],
            return_exceptions=True,
        )
        assert all(isinstance(r, RuntimeError) for r in results)
        assert "k" not in cache
        assert cache.stats()["inflight"] == 0

    @pytest.mark.asyncio
    async def test_abandoned_leader_hands_over(self):
        cache = SizeCache()
        started = asyncio.Event()

        async def hangs() -> int:
            started.set()
            await asyncio.sleep(10)
            return 1

        async def works() -> int:
            return 5

        leader = asyncio.ensure_future(cache.get_or_measure("k", hangs))
        await started.wait()
        follower = asyncio.ensure_future(cache.get_or_measure("k", works))
        await asyncio.sleep(0)
        leader.cancel()

        assert await follower == (5, False)
        assert cache.get("k") == 5


class TestCachedMeasurer:
    @pytest.mark.asyncio
    async def test_counts_request_hits_and_misses(self, measurer):
        cache = SizeCache()
        cached = CachedMeasurer(measurer, cache)
        assert await cached.measure("hello") == 5
        assert await cached.measure("hello") == 5
        assert await cached.measure("world!") == 6
        assert (cached.hits, cached.misses) == (1, 2)
        assert measurer.calls == ["hello", "world!"]

    @pytest.mark.asyncio
    async def test_shared_cache_across_requests(self, measurer):
        cache = SizeCache()
        await CachedMeasurer(measurer, cache).measure("hello")
        second = CachedMeasurer(measurer, cache)
        await second.measure("hello")
        assert (second.hits, second.misses) == (1, 0)
        assert len(measurer.calls) == 1

    @pytest.mark.asyncio
    async def test_without_cache_always_measures(self, measurer):
        cached = CachedMeasurer(measurer)
        await cached.measure("x")
        await cached.measure("x")
        assert cached.misses == 2
        assert len(measurer.calls) == 2

    @pytest.mark.asyncio
    async def test_plain_callable(self):
        cached = CachedMeasurer(lambda text: len(text.split()), SizeCache())
        assert await cached.measure("three word text") == 3

    @pytest.mark.asyncio
    async def test_async_measurer(self, slow_measurer):
        cached = CachedMeasurer(slow_measurer, SizeCache())
        assert await cached.measure("abcd") == 4

    @pytest.mark.asyncio
    async def test_failure_wrapped(self):
        def broken(text: str) -> int:
            raise RuntimeError("boom")

        cached = CachedMeasurer(broken, SizeCache())
        with pytest.raises(MeasurementError) as exc_info:
            await cached.measure("hello", "greeting")
        assert exc_info.value.content_id == "greeting"
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", [-1, 2.5, "3", None, True])
    async def test_invalid_result_rejected(self, bad):
        cached = CachedMeasurer(lambda text: bad)
        with pytest.raises(MeasurementError):
            await cached.measure("hello")

    @pytest.mark.asyncio
    async def test_cancelled_token(self, measurer):
        token = CancellationToken()
        token.cancel()
        cached = CachedMeasurer(measurer, SizeCache(), token)
        with pytest.raises(RenderCancelledError):
            await cached.measure("hello")
        assert measurer.calls == []

    @pytest.mark.asyncio
    async def test_measurers_do_not_share_entries(self):
        cache = SizeCache()
        chars = CachedMeasurer(lambda text: len(text), cache, namespace="chars")
        words = CachedMeasurer(lambda text: len(text.split()), cache, namespace="words")
        assert await chars.measure("a b c") == 5
        assert await words.measure("a b c") == 3

    @pytest.mark.asyncio
    async def test_waiting_request_honors_its_own_cancellation(self):
        cache = SizeCache()
        started = asyncio.Event()
        release = asyncio.Event()

        async def gated(text: str) -> int:
            started.set()
            await release.wait()
            return len(text)

        first = CachedMeasurer(gated, cache, CancellationToken(), namespace="gated")
        token = CancellationToken()
        second = CachedMeasurer(gated, cache, token, namespace="gated")

        leader = asyncio.ensure_future(first.measure("hello"))
        await asyncio.wait_for(started.wait(), timeout=1)
        follower = asyncio.ensure_future(second.measure("hello"))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not follower.done()

        token.cancel()
        with pytest.raises(RenderCancelledError):
            await asyncio.wait_for(follower, timeout=1)

        release.set()
        assert await asyncio.wait_for(leader, timeout=1) == 5
        assert first.misses == 1

    def test_unnamed_callables_get_distinct_namespaces(self):
        chars = lambda text: len(text)  # noqa: E731
        words = lambda text: len(text.split())  # noqa: E731
        assert measurer_namespace(chars) != measurer_namespace(words)
        assert measurer_namespace(chars) == measurer_namespace(chars)
        assert measurer_namespace(CharRatioMeasurer()) == "char-ratio:4.0"


class TestCharRatioMeasurer:
    def test_estimate(self):
        assert CharRatioMeasurer().measure("x" * 40) == 10

    def test_empty_is_zero(self):
        assert CharRatioMeasurer().measure("") == 0

    def test_short_text_counts_one(self):
        assert CharRatioMeasurer().measure("hi") == 1

    def test_ratio(self):
        assert CharRatioMeasurer(chars_per_token=2).measure("x" * 40) == 20

    def test_invalid_ratio(self):
        with pytest.raises(ValueError):
            CharRatioMeasurer(0)

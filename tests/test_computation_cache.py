import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from orchestrator.errors import CacheUnavailableError, CacheWaitTimeout
from docmetrics.models import CacheKey, MetricResult
from pipeline.core.services.computation_cache import ComputationCache


def key(metric="m", fingerprint="fp", version="1"):
    return CacheKey(fingerprint, metric, version)


def ok(value=1.0):
    return MetricResult.success("m", value, version="1")


def test_single_flight_under_concurrency():
    cache = ComputationCache()
    calls = []
    lock = threading.Lock()

    def compute():
        with lock:
            calls.append(1)
        time.sleep(0.1)
        return ok(42.0)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: cache.get_or_compute(key(), compute), range(8)))

    assert len(calls) == 1
    assert all(r is results[0] for r in results)
    stats = cache.stats()
    assert stats["misses"] == 1
    assert stats["hits"] + stats["waits"] == 7
    assert stats["hit_ratio"] == pytest.approx(7 / 8)


def test_hit_returns_cached_instance():
    cache = ComputationCache()
    first = cache.get_or_compute(key(), ok)
    second = cache.get_or_compute(key(), lambda: pytest.fail("should not recompute"))
    assert second is first
    assert key() in cache


def test_exception_reaches_waiters_and_is_not_cached():
    cache = ComputationCache()
    started = threading.Event()
    release = threading.Event()

    def failing():
        started.set()
        release.wait(2)
        raise ValueError("bad input")

    with ThreadPoolExecutor(max_workers=2) as pool:
        owner = pool.submit(cache.get_or_compute, key(), failing)
        started.wait(2)
        waiter = pool.submit(cache.get_or_compute, key(), lambda: pytest.fail("waiter must not compute"))
        time.sleep(0.2)
        release.set()
        with pytest.raises(ValueError):
            owner.result()
        with pytest.raises(ValueError):
            waiter.result()

    assert len(cache) == 0
    assert cache.get_or_compute(key(), ok).value == 1.0


def test_wait_timeout():
    cache = ComputationCache(wait_timeout=0.05)
    started = threading.Event()
    release = threading.Event()

    def slow():
        started.set()
        release.wait(2)
        return ok()

    with ThreadPoolExecutor(max_workers=1) as pool:
        owner = pool.submit(cache.get_or_compute, key(), slow)
        started.wait(2)
        with pytest.raises(CacheWaitTimeout) as info:
            cache.get_or_compute(key(), ok)
        assert info.value.code == "cache_timeout"
        release.set()
        assert owner.result().ok

    assert cache.stats()["wait_timeouts"] == 1


def test_lru_eviction():
    cache = ComputationCache(max_entries=2)
    cache.get_or_compute(key("a"), ok)
    cache.get_or_compute(key("b"), ok)
    cache.get_or_compute(key("a"), ok)
    cache.get_or_compute(key("c"), ok)

    assert key("a") in cache
    assert key("b") not in cache
    assert key("c") in cache
    assert cache.stats()["evictions"] == 1


def test_success_ttl(clock):
    cache = ComputationCache(success_ttl=10, clock=clock)
    calls = []

    def compute():
        calls.append(1)
        return ok()

    cache.get_or_compute(key(), compute)
    clock.advance(9)
    cache.get_or_compute(key(), compute)
    clock.advance(2)
    cache.get_or_compute(key(), compute)
    assert len(calls) == 2
    assert cache.stats()["expirations"] == 1


def test_failures_are_cached_briefly(clock):
    cache = ComputationCache(failure_ttl=30, clock=clock)
    calls = []

    def compute():
        calls.append(1)
        return MetricResult.failed("m", version="1", code="nan_input")

    cache.get_or_compute(key(), compute)
    cache.get_or_compute(key(), compute)
    clock.advance(31)
    cache.get_or_compute(key(), compute)
    assert len(calls) == 2


@pytest.mark.parametrize("code", ["deadline_exceeded", "cache_timeout"])
def test_transient_failures_are_not_cached(code):
    cache = ComputationCache()
    cache.get_or_compute(key(), lambda: MetricResult.failed("m", version="1", code=code))
    assert len(cache) == 0


def test_invalidate_metric_keeps_requested_version():
    cache = ComputationCache()
    cache.get_or_compute(key("a", version="1"), ok)
    cache.get_or_compute(key("a", version="2"), ok)
    cache.get_or_compute(key("b", version="1"), ok)

    assert cache.invalidate_metric("a", keep_version="2") == 1
    assert key("a", version="2") in cache
    assert cache.invalidate_metric("b") == 1
    assert len(cache) == 1


def test_closed_cache_rejects_calls():
    cache = ComputationCache()
    cache.get_or_compute(key(), ok)
    cache.close()
    assert cache.closed
    with pytest.raises(CacheUnavailableError):
        cache.get_or_compute(key(), ok)


def test_invalid_size():
    with pytest.raises(ValueError):
        ComputationCache(max_entries=0)

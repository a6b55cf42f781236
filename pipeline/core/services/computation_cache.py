"""ComputationCache: 指标计算缓存（reserve-then-fill）

协议：
1. 命中未过期条目 -> 直接返回（LRU 刷新）
2. 未命中且无人计算 -> 当前调用方安装 Future 占位（reservation），在锁外执行 compute_fn
3. 未命中但已有占位 -> 等待该 Future 完成（完成信号，非轮询），超时抛 CacheWaitTimeout
4. compute_fn 返回 -> 写入缓存并唤醒全部等待者，所有调用方拿到同一个 MetricResult 实例
5. compute_fn 抛异常 -> 释放占位，异常传递给全部等待者，不写缓存

淘汰：有界 LRU；计算中的键只存在于占位表，不参与 LRU，因此不会在计算中被淘汰。
失败结果按 failure_ttl 短期缓存，成功结果按 success_ttl（None 表示直到被淘汰）。
"""
from __future__ import annotations
from collections import OrderedDict
from concurrent.futures import Future, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging
import threading
import time

from orchestrator.errors import CacheUnavailableError, CacheWaitTimeout
from docmetrics.models import CacheKey, MetricResult

# 与输入无关的失败，不写入缓存
UNCACHEABLE_FAILURES = frozenset(['cache_timeout', 'deadline_exceeded'])


@dataclass
class _Entry:
    result: MetricResult
    expires_at: Optional[float]


class ComputationCache:
    """线程安全的计算缓存，引擎中唯一的可变共享结构"""

    def __init__(self, max_entries: int = 10000, success_ttl: Optional[float] = None,
                 failure_ttl: float = 30.0, wait_timeout: Optional[float] = 30.0,
                 clock: Callable[[], float] = time.monotonic,
                 logger: Optional[logging.Logger] = None):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.success_ttl = success_ttl
        self.failure_ttl = failure_ttl
        self.wait_timeout = wait_timeout
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._entries: "OrderedDict[CacheKey, _Entry]" = OrderedDict()
        self._inflight: Dict[CacheKey, Future] = {}
        self._closed = False
        self._stats: Dict[str, int] = {
            'hits': 0, 'misses': 0, 'waits': 0, 'evictions': 0,
            'expirations': 0, 'stores': 0, 'compute_errors': 0, 'wait_timeouts': 0,
        }

    @classmethod
    def from_settings(cls, settings: Any, clock: Callable[[], float] = time.monotonic) -> 'ComputationCache':
        return cls(
            max_entries=settings.cache_max_entries,
            success_ttl=settings.cache_success_ttl,
            failure_ttl=settings.cache_failure_ttl,
            wait_timeout=settings.cache_wait_timeout,
            clock=clock,
        )

    # ================== 核心协议 ==================

    def get_or_compute(self, key: CacheKey, compute_fn: Callable[[], MetricResult]) -> MetricResult:
        """获取或计算

        Raises:
            CacheUnavailableError: 缓存已关闭
            CacheWaitTimeout: 等待他人计算同一键超时
            Exception: compute_fn 抛出的异常（原样传递给全部调用方）
        """
        with self._lock:
            self._ensure_open()
            cached = self._lookup(key)
            if cached is not None:
                self._stats['hits'] += 1
                return cached
            future = self._inflight.get(key)
            if future is None:
                future = Future()
                self._inflight[key] = future
                self._stats['misses'] += 1
                owner = True
            else:
                self._stats['waits'] += 1
                owner = False

        if not owner:
            return self._await(key, future)

        try:
            result = compute_fn()
        except BaseException as e:
            with self._lock:
                self._inflight.pop(key, None)
                self._stats['compute_errors'] += 1
            future.set_exception(e)
            raise

        with self._lock:
            self._inflight.pop(key, None)
            if not self._closed:
                self._store(key, result)
        future.set_result(result)
        return result

    def _await(self, key: CacheKey, future: Future) -> MetricResult:
        try:
            return future.result(timeout=self.wait_timeout)
        except FutureTimeout:
            with self._lock:
                self._stats['wait_timeouts'] += 1
            raise CacheWaitTimeout(f"timed out after {self.wait_timeout}s waiting for {key.metric}") from None

    def _ensure_open(self) -> None:
        if self._closed:
            raise CacheUnavailableError("computation cache is closed")

    def _lookup(self, key: CacheKey) -> Optional[MetricResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._entries[key]
            self._stats['expirations'] += 1
            return None
        self._entries.move_to_end(key)
        return entry.result

    def _store(self, key: CacheKey, result: MetricResult) -> None:
        if result.ok:
            ttl = self.success_ttl
        else:
            if result.failure.code in UNCACHEABLE_FAILURES or not self.failure_ttl:
                return
            ttl = self.failure_ttl
        expires_at = None if ttl is None else self._clock() + ttl
        self._entries[key] = _Entry(result=result, expires_at=expires_at)
        self._entries.move_to_end(key)
        self._stats['stores'] += 1
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._stats['evictions'] += 1
            self._logger.debug(f"[cache] evict {evicted.metric}@{evicted.fingerprint[:8]}")

    # ================== 管理接口 ==================

    def invalidate_metric(self, metric: str, keep_version: Optional[str] = None) -> int:
        """删除某指标的缓存条目；keep_version 给出时保留该版本的条目

        计算中的条目不受影响（其结果写回时使用的是计算时的版本键）。
        """
        with self._lock:
            doomed = [k for k in self._entries
                      if k.metric == metric and (keep_version is None or k.scorer_version != keep_version)]
            for k in doomed:
                del self._entries[k]
        if doomed:
            self._logger.info(f"♻️ 缓存失效: {metric} 条目数={len(doomed)}")
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def close(self) -> None:
        """关闭缓存：之后的调用抛 CacheUnavailableError；计算中的调用方仍会拿到结果"""
        with self._lock:
            self._closed = True
            self._entries.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            out: Dict[str, Any] = dict(self._stats)
            out['size'] = len(self._entries)
            out['in_flight'] = len(self._inflight)
        lookups = out['hits'] + out['misses'] + out['waits']
        # 等待者未触发计算，同样计为命中
        out['hit_ratio'] = round((out['hits'] + out['waits']) / lookups, 4) if lookups else 0.0
        return out

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and (entry.expires_at is None or self._clock() < entry.expires_at)


__all__ = ["ComputationCache", "UNCACHEABLE_FAILURES"]

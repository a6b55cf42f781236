from __future__ import annotations
from typing import Dict, Any
from time import perf_counter
import threading


class MetricsService:
    """评分器调用统计（按 metric 名聚合，线程安全）"""

    def __init__(self):
        self.stats: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def ensure(self, metric: str, kind: str) -> Dict[str, Any]:
        return self.stats.setdefault(metric, {
            'kind': kind, 'total_calls': 0, 'success_calls': 0, 'failed_calls': 0,
            'total_time': 0.0, 'avg_time': 0.0, 'last_error': None, 'last_duration': 0.0,
        })

    def record(self, metric: str, kind: str, duration: float, error: str | None = None) -> None:
        with self._lock:
            stat = self.ensure(metric, kind)
            stat['total_calls'] += 1
            if error is None:
                stat['success_calls'] += 1
            else:
                stat['failed_calls'] += 1
                stat['last_error'] = error
            stat['total_time'] += duration
            stat['last_duration'] = duration
            stat['avg_time'] = stat['total_time'] / stat['total_calls']

    def wrap_execute(self, metric: str, kind: str, func, *args, **kwargs):
        """执行并计时，异常原样返回给调用方处理"""
        start = perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:  # rethrow decision belongs to caller
            dt = perf_counter() - start
            self.record(metric, kind, dt, error=str(e))
            return None, dt, e
        dt = perf_counter() - start
        failure = getattr(result, 'failure', None)
        self.record(metric, kind, dt, error=failure.message if failure else None)
        return result, dt, None

    def calls(self, metric: str | None = None) -> int:
        with self._lock:
            if metric is not None:
                return self.stats.get(metric, {}).get('total_calls', 0)
            return sum(s['total_calls'] for s in self.stats.values())

    def reset(self) -> None:
        with self._lock:
            self.stats.clear()

    def export(self) -> Dict[str, Any]:
        with self._lock:
            total_calls = sum(s['total_calls'] for s in self.stats.values())
            success_calls = sum(s['success_calls'] for s in self.stats.values())
            return {
                'execution_stats': {k: dict(v) for k, v in self.stats.items()},
                'total_calls': total_calls,
                'success_rate': (success_calls / total_calls * 100) if total_calls else 0
            }

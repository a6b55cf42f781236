"""HookManager: 批次观测事件分发

事件与参数:
 - before_batch(batch_id, record_count)
 - after_record(batch_id, index, report)
 - on_cache_hit(batch_id, metric)        评分线程中触发
 - on_failure(batch_id, index, error)
 - after_batch(batch_id, summary)

使用:
   from pipeline.core.services.hook_manager import HookManager
   hooks = HookManager.get()
   hooks.register('after_batch', callable)
   hooks.register_many({'after_record': f, 'on_failure': g})
"""
from __future__ import annotations
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Tuple
import logging
import threading
import time


class HookManager:
    """事件钩子管理器（进程级单例）

    - 处理器列表写时复制：emit 在工作线程中遍历快照，注册/注销不阻塞分发
    - 单个处理器抛错只计入统计并记录日志，不影响其余处理器与批次
    """
    _instance: ClassVar[Optional['HookManager']] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    SUPPORTED_EVENTS = frozenset([
        'before_batch',
        'after_batch',
        'after_record',
        'on_cache_hit',
        'on_failure',
    ])

    def __init__(self):
        self._logger = logging.getLogger(__name__)
        self._hooks: Dict[str, Tuple[Callable, ...]] = {event: () for event in self.SUPPORTED_EVENTS}
        self._write_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats: Dict[str, Dict[str, Any]] = {
            event: {'call_count': 0, 'error_count': 0, 'total_time_ms': 0.0, 'last_error': None}
            for event in self.SUPPORTED_EVENTS
        }
        self._debug_mode = False

    @classmethod
    def get(cls) -> 'HookManager':
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = HookManager()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """丢弃单例（测试隔离用）"""
        with cls._lock:
            cls._instance = None

    def set_debug(self, enabled: bool = True) -> None:
        self._debug_mode = enabled

    # ------------------------------------------------------------------
    # 注册
    # ------------------------------------------------------------------
    def _check_event(self, event: str) -> None:
        if event not in self.SUPPORTED_EVENTS:
            raise ValueError(
                f"未支持的 hook 事件: {event}。"
                f"支持的事件: {sorted(self.SUPPORTED_EVENTS)}"
            )

    def register(self, event: str, func: Callable) -> Callable:
        """注册事件处理器，返回原函数（可作装饰器）

        Raises:
            ValueError: 事件类型不支持
        """
        self._check_event(event)
        with self._write_lock:
            self._hooks[event] = self._hooks[event] + (func,)
        self._logger.debug(f"🔗 Hook 注册: {event} <- {getattr(func, '__name__', func)}")
        return func

    def register_many(self, handlers: Mapping[str, Callable]) -> None:
        """一次注册多个事件；任一事件名非法时不注册任何处理器"""
        for event in handlers:
            self._check_event(event)
        for event, func in handlers.items():
            self.register(event, func)

    def unregister(self, event: str, func: Callable) -> bool:
        with self._write_lock:
            current = self._hooks.get(event)
            if not current or func not in current:
                return False
            remaining = list(current)
            remaining.remove(func)
            self._hooks[event] = tuple(remaining)
        return True

    def clear(self, event: Optional[str] = None) -> None:
        with self._write_lock:
            for name in ([event] if event else list(self._hooks)):
                if name in self._hooks:
                    self._hooks[name] = ()

    def get_handlers(self, event: str) -> Tuple[Callable, ...]:
        return self._hooks.get(event, ())

    # ------------------------------------------------------------------
    # 分发
    # ------------------------------------------------------------------
    def emit(self, event: str, *args, **kwargs) -> int:
        """同步调用 event 的全部处理器

        Returns:
            成功执行的处理器数量
        """
        handlers = self._hooks.get(event, ())
        success_count = 0
        for handler in handlers:
            name = getattr(handler, '__name__', repr(handler))
            start = time.perf_counter()
            error: Optional[str] = None
            try:
                handler(*args, **kwargs)
                success_count += 1
                if self._debug_mode:
                    self._logger.debug(f"✅ Hook {event}.{name} 执行成功")
            except Exception as e:
                error = f"{name}: {type(e).__name__}: {e}"
                self._logger.warning(f"⚠️ Hook '{event}.{name}' 执行失败（已忽略）: {e}")
            elapsed_ms = (time.perf_counter() - start) * 1000
            with self._stats_lock:
                stats = self._stats[event]
                stats['total_time_ms'] += elapsed_ms
                stats['call_count'] += 1
                if error is not None:
                    stats['error_count'] += 1
                    stats['last_error'] = error
        return success_count

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        with self._stats_lock:
            return {
                event: {
                    'handler_count': len(self._hooks[event]),
                    'call_count': stats['call_count'],
                    'error_count': stats['error_count'],
                    'last_error': stats['last_error'],
                    'total_time_ms': round(stats['total_time_ms'], 2),
                    'avg_time_ms': round(stats['total_time_ms'] / max(1, stats['call_count']), 2),
                }
                for event, stats in self._stats.items()
            }


__all__ = ["HookManager"]

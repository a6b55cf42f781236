"""CacheStatsService: 汇总缓存相关统计信息

来源: ComputationCache.stats()
- 批次开始/结束各取一次快照，差值即本批次的命中/未命中/等待次数

提供:
- summary(before, after): 本批次命中、未命中、等待、命中率、淘汰数、当前条目数

无状态服务，不依赖 Orchestrator。
"""
from __future__ import annotations
from typing import Dict, Any, Optional
import logging

_DELTA_KEYS = ('hits', 'misses', 'waits', 'evictions', 'expirations', 'wait_timeouts')


class CacheStatsService:
    """缓存统计服务（无状态版本）"""

    __slots__ = ('logger',)

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def summary(self, before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """计算两次快照之间的缓存统计摘要

        Returns:
            缓存统计字典，快照缺失时返回空字典
        """
        if not after:
            return {}
        before = before or {}
        delta = {k: int(after.get(k, 0)) - int(before.get(k, 0)) for k in _DELTA_KEYS}
        lookups = delta['hits'] + delta['misses'] + delta['waits']
        served = delta['hits'] + delta['waits']
        return {
            'cache_hits': served,
            'cache_misses': delta['misses'],
            'cache_waits': delta['waits'],
            'cache_hit_ratio': round(served / lookups, 4) if lookups else 0.0,
            'cache_evictions': delta['evictions'],
            'cache_expirations': delta['expirations'],
            'cache_wait_timeouts': delta['wait_timeouts'],
            'cache_size': int(after.get('size', 0)),
        }


__all__ = ["CacheStatsService"]

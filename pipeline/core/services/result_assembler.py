"""ResultAssembler: 批次结果组装

输入：BatchContext + 按输入顺序排列的 Report 列表 + 缓存/评分器调用快照
输出：BatchResult（reports / 扁平化 failures / BatchSummary）
"""
from __future__ import annotations
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence
import logging

from docmetrics.models import Report, ReportStatus

from ..context import BatchContext, BatchFailure, BatchResult, BatchSummary
from .cache_stats_service import CacheStatsService


class ResultAssembler:
    """结果组装服务（无状态）"""

    __slots__ = ('cache_stats', 'logger')

    def __init__(self, cache_stats: Optional[CacheStatsService] = None,
                 logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)
        self.cache_stats = cache_stats or CacheStatsService(self.logger)

    def assemble(
        self,
        ctx: BatchContext,
        reports: Sequence[Report],
        cache_before: Optional[Dict[str, Any]] = None,
        cache_after: Optional[Dict[str, Any]] = None,
        scorer_invocations: int = 0,
    ) -> BatchResult:
        """组装批次结果

        Args:
            ctx: 已进入 DONE 状态的批次上下文
            reports: 与输入记录顺序一致的报告
            cache_before / cache_after: ComputationCache.stats() 快照
            scorer_invocations: 本批次评分器实际调用次数
        """
        failures: List[BatchFailure] = []
        succeeded = failed = 0
        for index, report in enumerate(reports):
            for error in report.errors:
                failures.append(BatchFailure(index=index, record_id=report.record_id, error=error))
            for result in report.results.values():
                if result.ok:
                    succeeded += 1
                else:
                    failed += 1

        by_status = Counter(r.status.value for r in reports)
        cache = self.cache_stats.summary(cache_before, cache_after)
        cancelled = ctx.cancelled or any(r.cancelled for r in reports)

        summary = BatchSummary(
            batch_id=ctx.batch_id,
            records_processed=len(reports),
            reports_by_status={s.value: by_status.get(s.value, 0) for s in ReportStatus},
            metrics_succeeded=succeeded,
            metrics_failed=failed,
            scorer_invocations=scorer_invocations,
            cache_hits=cache.get('cache_hits', 0),
            cache_misses=cache.get('cache_misses', 0),
            cache_hit_ratio=cache.get('cache_hit_ratio', 0.0),
            duration_seconds=round(ctx.elapsed, 6),
            cancelled=cancelled,
            phases=ctx.phase_durations(),
        )
        return BatchResult(
            reports=tuple(reports),
            failures=tuple(failures),
            summary=summary,
            state=ctx.state,
            cancelled=cancelled,
        )


__all__ = ["ResultAssembler"]

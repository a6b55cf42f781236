"""FlowExecutor: 负责批次流执行（抽取 -> 评分 -> 聚合）

调度模型：
- 记录池 (record_workers): 每条记录一个任务，记录之间完全独立
- 评分池 (scorer_workers): 同一记录同一层内互不依赖的指标并发执行
  记录任务只会等待评分池，评分任务不再提交新任务，两池分离避免自等待死锁
- 指标层按 MetricRegistry.execution_layers() 顺序推进，保证上游结果（成功或失败）先于下游可用

错误收敛：
- ExtractionError -> 记录级 ReportError，继续以部分特征向量评分
- 指标级失败 -> MetricResult 失败标记（由 ScorerExecutor 收敛）
- 记录任务中的意外异常 -> 记录级 ReportError(code="record_fault")
- BatchError（如缓存关闭）-> 向上抛出
"""
from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
import logging

from orchestrator.errors import BatchError, CacheWaitTimeout, ExtractionError
from docmetrics.models import CacheKey, FeatureVector, MetricResult, Record, Report, ReportError

from ..context import BatchContext, BatchState
from ..metric_registry import MetricRegistry
from .computation_cache import UNCACHEABLE_FAILURES, ComputationCache
from .hook_manager import HookManager


@dataclass
class _RecordOutcome:
    features: FeatureVector
    errors: List[ReportError] = field(default_factory=list)
    results: Dict[str, MetricResult] = field(default_factory=dict)
    cancelled: bool = False
    # 结果依赖于时序（非输入决定）的指标名，其下游不读写缓存
    transient: Set[str] = field(default_factory=set)


class FlowExecutor:
    """批次流执行服务"""

    __slots__ = ('cache', 'hooks', 'record_workers', 'scorer_workers', 'logger')

    def __init__(self, cache: ComputationCache, hooks: Optional[HookManager] = None,
                 record_workers: int = 4, scorer_workers: int = 4,
                 logger: logging.Logger | None = None):
        self.cache = cache
        self.hooks = hooks or HookManager.get()
        self.record_workers = record_workers
        self.scorer_workers = scorer_workers
        self.logger = logger or logging.getLogger(__name__)

    def run(self, ctx: BatchContext, records: Sequence[Record], registry: MetricRegistry,
            extractor: Any, aggregator: Any) -> List[Report]:
        """执行整个批次，返回与输入顺序一致的 Report 列表"""
        with ThreadPoolExecutor(max_workers=self.record_workers, thread_name_prefix='dm-record') as record_pool, \
                ThreadPoolExecutor(max_workers=self.scorer_workers, thread_name_prefix='dm-scorer') as scorer_pool:
            ctx.transition(BatchState.EXTRACTING)
            outcomes = list(record_pool.map(lambda r: self._extract(r, extractor), records))

            ctx.transition(BatchState.SCORING)
            futures = [
                record_pool.submit(self._score_record, ctx, outcome, registry, scorer_pool)
                for outcome in outcomes
            ]
            for future in futures:
                future.result()

        ctx.transition(BatchState.AGGREGATING)
        reports = []
        for index, (record, outcome) in enumerate(zip(records, outcomes)):
            report = aggregator.aggregate(record, outcome.results, outcome.errors, cancelled=outcome.cancelled)
            reports.append(report)
            self.hooks.emit('after_record', ctx.batch_id, index, report)
            for error in report.errors:
                self.hooks.emit('on_failure', ctx.batch_id, index, error)
        return reports

    # ------------------------------------------------------------------
    # Extracting
    # ------------------------------------------------------------------
    def _extract(self, record: Record, extractor: Any) -> _RecordOutcome:
        try:
            return _RecordOutcome(features=extractor.extract(record))
        except ExtractionError as e:
            partial = e.partial if e.partial is not None else FeatureVector(record.fingerprint, {})
            errors = [ReportError(scope='record', code=code, message=msg, metric=None)
                      for _, code, msg in e.problems] or [
                ReportError(scope='record', code='extraction_failed', message=str(e))]
            self.logger.debug(f"[extract] record={record.record_id} partial features={len(partial)}: {e}")
            return _RecordOutcome(features=partial, errors=errors)
        except Exception as e:
            self.logger.error(f"❌ 记录抽取异常 record={record.record_id}: {e}", exc_info=True)
            return _RecordOutcome(
                features=FeatureVector(record.fingerprint, {}),
                errors=[ReportError(scope='record', code='record_fault', message=f"{type(e).__name__}: {e}")],
            )

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def _score_record(self, ctx: BatchContext, outcome: _RecordOutcome, registry: MetricRegistry,
                      scorer_pool: ThreadPoolExecutor) -> None:
        try:
            for layer in registry.execution_layers():
                upstream = dict(outcome.results)
                bypass = {name: self._tainted(registry, name, outcome.transient) for name in layer}
                if len(layer) == 1 or self.scorer_workers == 1:
                    scored = [self._score_metric(ctx, name, outcome.features, registry, upstream, bypass[name])
                              for name in layer]
                else:
                    futures = [
                        scorer_pool.submit(self._score_metric, ctx, name, outcome.features, registry, upstream,
                                           bypass[name])
                        for name in layer
                    ]
                    scored = [f.result() for f in futures]
                for name, (result, cancelled) in zip(layer, scored):
                    outcome.results[name] = result
                    outcome.cancelled = outcome.cancelled or cancelled
                    if bypass[name] or (result.failure is not None and result.failure.code in UNCACHEABLE_FAILURES):
                        outcome.transient.add(name)
        except BatchError:
            raise
        except Exception as e:
            self.logger.error(f"❌ 记录评分异常 fingerprint={outcome.features.fingerprint[:8]}: {e}", exc_info=True)
            outcome.errors.append(
                ReportError(scope='record', code='record_fault', message=f"{type(e).__name__}: {e}"))

    @staticmethod
    def _tainted(registry: MetricRegistry, name: str, transient: Set[str]) -> bool:
        return any(dep in transient for dep in registry.definition(name).depends_on)

    def _score_metric(self, ctx: BatchContext, name: str, features: FeatureVector,
                      registry: MetricRegistry, upstream: Dict[str, MetricResult],
                      bypass_cache: bool = False) -> Tuple[MetricResult, bool]:
        definition = registry.definition(name)
        if ctx.expired():
            ctx.mark_cancelled()
            return self._deadline_failure(definition), True

        scorer = registry.scorer_for(name)
        key = CacheKey(features.fingerprint, name, registry.cache_version(name))
        deps = {d: upstream[d] for d in definition.depends_on if d in upstream}
        computed = []

        def compute() -> MetricResult:
            computed.append(True)
            return registry.executor.execute(definition, scorer, features, deps)

        if bypass_cache:
            # 上游结果由超时等时序因素决定，本次结果不代表该缓存键
            self.logger.debug(f"[score] {name} 上游含瞬时失败，跳过缓存直接计算")
            result = compute()
        else:
            try:
                result = self.cache.get_or_compute(key, compute)
            except CacheWaitTimeout as e:
                result = MetricResult.failed(name, version=definition.version, code=e.code, message=str(e))
            else:
                if not computed:
                    self.hooks.emit('on_cache_hit', ctx.batch_id, name)

        # 截止时间已过：结果已写入缓存，但不进入本批次报告
        if ctx.expired():
            ctx.mark_cancelled()
            return self._deadline_failure(definition), True
        return result, False

    @staticmethod
    def _deadline_failure(definition) -> MetricResult:
        return MetricResult.failed(definition.name, version=definition.version, code='deadline_exceeded',
                                   message='batch deadline passed before the metric was reported')


__all__ = ["FlowExecutor"]

from __future__ import annotations
from typing import Any, Mapping, TYPE_CHECKING
import logging

from ..errors import ScoringError
from .metrics import MetricsService

if TYPE_CHECKING:
    from docmetrics.models import FeatureVector, MetricDefinition, MetricResult

logger = logging.getLogger(__name__)


class ScorerExecutor:
    """评分器执行器

    统一调用入口：计时 + 统计 + 异常收敛。
    ScoringError 与评分器内部的意外异常都会转换为失败的 MetricResult，
    从不向上抛出（指标级错误不允许中断记录或批次）。
    """

    def __init__(self, metrics: MetricsService):
        self.metrics = metrics

    def execute(self, definition: 'MetricDefinition', scorer: Any, features: 'FeatureVector',
                upstream: Mapping[str, 'MetricResult']) -> 'MetricResult':
        # Lazy import to avoid circular dependency
        from docmetrics.models import MetricResult

        result, dt, err = self.metrics.wrap_execute(definition.name, definition.kind,
                                                    scorer.score, features, upstream)
        if err is None:
            if not isinstance(result, MetricResult):
                return MetricResult.failed(
                    definition.name, version=definition.version, code='invalid_result',
                    message=f"scorer returned {type(result).__name__}, expected MetricResult")
            return result
        if isinstance(err, ScoringError):
            logger.debug(f"[scorer] {definition.name} failed code={err.code}: {err}")
            return MetricResult.failed(definition.name, version=definition.version,
                                       code=err.code, message=str(err))
        logger.error(f"❌ 评分器异常 {definition.name} ({definition.kind}): {err}", exc_info=err)
        return MetricResult.failed(definition.name, version=definition.version, code='scorer_fault',
                                   message=f"{type(err).__name__}: {err}")

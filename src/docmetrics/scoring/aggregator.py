"""
结果聚合器
==========

Aggregator.aggregate(record, results, errors=()) -> Report

组合策略:
- renormalize (默认): composite = Σ wᵢ·vᵢ / Σ wᵢ，仅统计成功且权重 > 0 的指标，失败指标的权重被剔除后重新归一
- zero_fill: 失败的加权指标按 0 计入且保留其权重
- 没有任何加权指标成功时 composite = None
- overrides: 第一条其指标成功且条件满足的规则直接给出 composite

置信度 = Σ wᵢ·cᵢ / Σ wᵢ（全部加权指标，失败记 0）；无权重时取平均置信度。

状态:
- failed:   全部已配置指标失败
- complete: 全部成功且无记录级错误
- partial:  其余情况

聚合从不抛异常，失败指标以 ReportError(scope="metric") 记录在 Report 上。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from orchestrator.errors import ConfigurationError
from ..models import MetricDefinition, MetricResult, Report, ReportError, ReportStatus
from ..scorers.base import COMPARISON_OPS, compare

logger = logging.getLogger(__name__)

POLICIES = ('renormalize', 'zero_fill')


@dataclass(frozen=True)
class AggregationConfig:
    policy: str = 'renormalize'
    overrides: Tuple[Tuple[str, str, float, float], ...] = ()

    @classmethod
    def from_mapping(cls, section: Optional[Mapping[str, Any]]) -> 'AggregationConfig':
        section = section or {}
        if not isinstance(section, Mapping):
            raise ConfigurationError("'aggregation' section must be a mapping")
        policy = str(section.get('policy', 'renormalize'))
        if policy not in POLICIES:
            raise ConfigurationError(f"unknown aggregation policy '{policy}', expected one of {POLICIES}")
        overrides = []
        for rule in section.get('overrides') or ():
            if not isinstance(rule, Mapping) or not {'metric', 'op', 'value', 'composite'} <= set(rule):
                raise ConfigurationError(f"override rule needs metric/op/value/composite: {rule!r}")
            if rule['op'] not in COMPARISON_OPS:
                raise ConfigurationError(f"override rule has unknown op {rule['op']!r}")
            try:
                overrides.append((str(rule['metric']), str(rule['op']), float(rule['value']), float(rule['composite'])))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"override rule values must be numeric: {rule!r}") from e
        return cls(policy=policy, overrides=tuple(overrides))

    def validate_against(self, metric_names: Iterable[str]) -> None:
        names = set(metric_names)
        unknown = [m for m, *_ in self.overrides if m not in names]
        if unknown:
            raise ConfigurationError(f"override rules reference unknown metrics: {unknown}")


class Aggregator:
    """按已配置指标（注册顺序）将 MetricResult 折叠为 Report"""

    def __init__(self, definitions: Sequence[MetricDefinition], config: Optional[AggregationConfig] = None):
        self.config = config or AggregationConfig()
        self.metrics: Tuple[str, ...] = tuple(d.name for d in definitions)
        self.weights: Dict[str, float] = {d.name: d.weight for d in definitions}
        self.config.validate_against(self.metrics)

    @classmethod
    def for_registry(cls, registry, config: Optional[AggregationConfig] = None) -> 'Aggregator':
        return cls(registry.ordered_scorers(), config)

    def aggregate(self, record: Any, results: Mapping[str, MetricResult],
                  errors: Iterable[ReportError] = (), *, cancelled: bool = False) -> Report:
        ordered: Dict[str, MetricResult] = {}
        for name in self.metrics:
            result = results.get(name)
            if result is None:
                result = MetricResult.failed(name, version='', code='not_computed',
                                             message='metric was not computed')
            ordered[name] = result

        record_errors = list(errors)
        metric_errors = [
            ReportError(scope='metric', code=r.failure.code, message=r.failure.message, metric=name)
            for name, r in ordered.items() if not r.ok
        ]

        return Report(
            record_id=getattr(record, 'record_id', None),
            fingerprint=getattr(record, 'fingerprint', ''),
            results=ordered,
            composite=self.composite(ordered),
            confidence=self.confidence(ordered),
            status=self.status(ordered, record_errors),
            errors=tuple(record_errors + metric_errors),
            cancelled=cancelled,
        )

    def composite(self, results: Mapping[str, MetricResult]) -> Optional[float]:
        for metric, op, threshold, forced in self.config.overrides:
            r = results.get(metric)
            if r is not None and r.ok and compare(r.value, op, threshold):
                logger.debug(f"[aggregate] override by {metric} {op} {threshold} -> {forced}")
                return forced

        weighted = [(self.weights[n], r) for n, r in results.items() if self.weights.get(n, 0.0) > 0]
        succeeded = [(w, r) for w, r in weighted if r.ok]
        if not succeeded:
            return None
        if self.config.policy == 'zero_fill':
            total = sum(w for w, _ in weighted)
            return sum(w * r.value for w, r in succeeded) / total
        total = sum(w for w, _ in succeeded)
        return sum(w * r.value for w, r in succeeded) / total

    def confidence(self, results: Mapping[str, MetricResult]) -> float:
        if not results:
            return 0.0
        weighted = [(self.weights.get(n, 0.0), r) for n, r in results.items() if self.weights.get(n, 0.0) > 0]
        if weighted:
            total = sum(w for w, _ in weighted)
            return sum(w * (r.confidence if r.ok else 0.0) for w, r in weighted) / total
        return sum(r.confidence if r.ok else 0.0 for r in results.values()) / len(results)

    @staticmethod
    def status(results: Mapping[str, MetricResult], record_errors: List[ReportError]) -> ReportStatus:
        if results and all(not r.ok for r in results.values()):
            return ReportStatus.FAILED
        if all(r.ok for r in results.values()) and not record_errors:
            return ReportStatus.COMPLETE
        return ReportStatus.PARTIAL

"""
评分器协议与公共工具
====================

评分器是"协议 + 注册表"而非继承链：任何带有
``score(features, upstream) -> MetricResult`` 方法、可用 ``cls(definition)`` 构造的类，
经 ``@register_scorer(kind)`` 注册后即可被 MetricDefinition.kind 引用。

构造函数负责参数校验（失败抛 ConfigurationError）；score 对超出支持域的输入抛 ScoringError，
由 ScorerExecutor 转换为失败的 MetricResult。
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Protocol, Sequence, Tuple, runtime_checkable

from orchestrator.errors import ConfigurationError, ScoringError
from ..models import FeatureVector, MetricDefinition, MetricResult


@runtime_checkable
class Scorer(Protocol):
    definition: MetricDefinition

    def score(self, features: FeatureVector, upstream: Mapping[str, MetricResult]) -> MetricResult: ...


def numeric_feature(features: FeatureVector, name: str) -> float:
    """读取数值特征，拒绝缺失 / 非数值 / NaN / inf"""
    value = features.require(name)
    if isinstance(value, str):
        raise ScoringError(f"feature '{name}' is not numeric: {value!r}", code='invalid_input')
    value = float(value)
    if math.isnan(value):
        raise ScoringError(f"feature '{name}' is NaN", code='nan_input')
    if not math.isfinite(value):
        raise ScoringError(f"feature '{name}' is not finite", code='non_finite')
    return value


def numeric_features(features: FeatureVector, names: Sequence[str]) -> List[float]:
    return [numeric_feature(features, n) for n in names]


def ensure_finite(value: float, metric: str) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise ScoringError(f"metric '{metric}' produced non-finite value {value}", code='non_finite')
    return value


def require_params(definition: MetricDefinition, *names: str) -> None:
    missing = [n for n in names if n not in definition.params]
    if missing:
        raise ConfigurationError(f"metric '{definition.name}' ({definition.kind}) missing params: {missing}")


def float_param(definition: MetricDefinition, name: str, default: Any = None) -> float:
    value = definition.params.get(name, default)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"metric '{definition.name}' param '{name}' must be numeric, got {value!r}") from e


def parse_bands(definition: MetricDefinition, raw: Any) -> Tuple[Tuple[float, float], ...]:
    """分档表 -> 按阈值降序排列的 ((threshold, score), ...)

    支持 {threshold: score} 映射或 [[threshold, score], ...] 列表。
    """
    items = raw.items() if isinstance(raw, Mapping) else raw
    try:
        table = [(float(t), float(s)) for t, s in items]
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"metric '{definition.name}' has invalid bands: {raw!r}") from e
    if not table:
        raise ConfigurationError(f"metric '{definition.name}' bands are empty")
    return tuple(sorted(table, key=lambda x: x[0], reverse=True))


def apply_thresholds(value: float, bands: Sequence[Tuple[float, float]], default: float = 0.0) -> float:
    for thresh, score in bands:
        if value >= thresh:
            return score
    return default


def compare(left: float, op: str, right: float) -> bool:
    if op == '>':
        return left > right
    if op == '>=':
        return left >= right
    if op == '<':
        return left < right
    if op == '<=':
        return left <= right
    if op == '==':
        return left == right
    if op == '!=':
        return left != right
    raise ValueError(f"unknown comparison operator: {op}")


COMPARISON_OPS = ('>', '>=', '<', '<=', '==', '!=')


def parse_rules(definition: MetricDefinition, raw: Any, *, result_key: str,
                known: Sequence[str]) -> Tuple[Dict[str, Any], ...]:
    """解析条件规则列表 [{metric, op, value, <result_key>}]"""
    rules = []
    for rule in raw or ():
        if not isinstance(rule, Mapping):
            raise ConfigurationError(f"metric '{definition.name}' rule must be a mapping: {rule!r}")
        missing = [k for k in ('metric', 'op', 'value', result_key) if k not in rule]
        if missing:
            raise ConfigurationError(f"metric '{definition.name}' rule missing keys {missing}")
        if rule['op'] not in COMPARISON_OPS:
            raise ConfigurationError(f"metric '{definition.name}' rule has unknown op {rule['op']!r}")
        if known and rule['metric'] not in known:
            raise ConfigurationError(
                f"metric '{definition.name}' rule references '{rule['metric']}' which is not an upstream")
        rules.append({
            'metric': str(rule['metric']),
            'op': str(rule['op']),
            'value': float(rule['value']),
            result_key: float(rule[result_key]),
        })
    return tuple(rules)

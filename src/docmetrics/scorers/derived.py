"""
派生评分器
==========

kind = "derived"：只依赖同一 Report 中已产出的上游 MetricResult（depends_on 声明）。

ops:
    mean / min / max / product       作用于全部（可用）上游值
    weighted_mean                    params.weights {upstream: w}
    difference / ratio               恰好两个上游，按 depends_on 顺序；分母为 0 -> ScoringError
    rules                            第一个满足 {metric, op, value, then} 的规则给出结果，否则 default

严格模式（默认）任何上游失败 -> ScoringError(code="upstream_failed")；
allow_partial: true 时仅使用成功的上游（全部失败仍然失败）。
置信度传播 confidence: min (默认) | product | mean。
"""

from __future__ import annotations

import math
from typing import Dict, List, Mapping, Tuple

from orchestrator import register_scorer
from orchestrator.errors import ConfigurationError, ScoringError
from ..models import FeatureVector, MetricDefinition, MetricResult
from .base import compare, ensure_finite, parse_rules

OPS = ('mean', 'weighted_mean', 'min', 'max', 'product', 'difference', 'ratio', 'rules')
CONFIDENCE_MODES = ('min', 'product', 'mean')


@register_scorer('derived', version='1.0.0', tags=['composite'])
class DerivedScorer:
    """Composite metric computed from upstream metric results"""

    def __init__(self, definition: MetricDefinition):
        self.definition = definition
        params = definition.params
        name = definition.name
        if not definition.depends_on:
            raise ConfigurationError(f"metric '{name}': derived scorer requires depends_on")
        self.op = str(params.get('op', 'mean'))
        if self.op not in OPS:
            raise ConfigurationError(f"metric '{name}': unknown derived op '{self.op}'")
        self.confidence_mode = str(params.get('confidence', 'min'))
        if self.confidence_mode not in CONFIDENCE_MODES:
            raise ConfigurationError(f"metric '{name}': unknown confidence mode '{self.confidence_mode}'")
        self.allow_partial = bool(params.get('allow_partial', False))

        if self.op in ('difference', 'ratio') and len(definition.depends_on) != 2:
            raise ConfigurationError(f"metric '{name}': op '{self.op}' needs exactly two upstream metrics")
        if self.op == 'weighted_mean':
            weights = params.get('weights') or {}
            missing = [d for d in definition.depends_on if d not in weights]
            if missing:
                raise ConfigurationError(f"metric '{name}': weights missing for {missing}")
            self.weights = {k: float(weights[k]) for k in definition.depends_on}
            if any(w < 0 for w in self.weights.values()):
                raise ConfigurationError(f"metric '{name}': weights must be >= 0")
        if self.op == 'rules':
            self.rules = parse_rules(definition, params.get('rules'), result_key='then',
                                     known=definition.depends_on)
            self.default = params.get('default')
            if self.default is not None:
                self.default = float(self.default)

    def _collect(self, upstream: Mapping[str, MetricResult]) -> List[Tuple[str, MetricResult]]:
        available = []
        failed = []
        for dep in self.definition.depends_on:
            result = upstream.get(dep)
            if result is None or not result.ok:
                failed.append(dep)
            else:
                available.append((dep, result))
        if failed and (not self.allow_partial or self.op in ('difference', 'ratio')):
            raise ScoringError(f"upstream metrics failed: {failed}", code='upstream_failed')
        if not available:
            raise ScoringError(f"no successful upstream metrics for '{self.definition.name}'",
                               code='upstream_failed')
        return available

    def _confidence(self, used: List[Tuple[str, MetricResult]]) -> float:
        confs = [r.confidence for _, r in used]
        if self.confidence_mode == 'product':
            return math.prod(confs)
        if self.confidence_mode == 'mean':
            return sum(confs) / len(confs)
        return min(confs)

    def score(self, features: FeatureVector, upstream: Mapping[str, MetricResult]) -> MetricResult:
        used = self._collect(upstream)
        values: Dict[str, float] = {name: r.value for name, r in used}
        op = self.op

        if op == 'mean':
            value = sum(values.values()) / len(values)
        elif op == 'weighted_mean':
            total = sum(self.weights[n] for n in values)
            if total <= 0:
                raise ScoringError("weights of available upstream metrics sum to zero", code='zero_weight')
            value = sum(self.weights[n] * v for n, v in values.items()) / total
        elif op == 'min':
            value = min(values.values())
        elif op == 'max':
            value = max(values.values())
        elif op == 'product':
            value = math.prod(values.values())
        elif op == 'difference':
            a, b = self.definition.depends_on
            value = values[a] - values[b]
        elif op == 'ratio':
            a, b = self.definition.depends_on
            if values[b] == 0:
                raise ScoringError(f"denominator '{b}' is zero", code='division_by_zero')
            value = values[a] / values[b]
        else:
            value = self._apply_rules(values)

        value = ensure_finite(value, self.definition.name)
        return MetricResult.success(self.definition.name, value, version=self.definition.version,
                                    confidence=self._confidence(used),
                                    details={'op': op, 'upstream': sorted(values)})

    def _apply_rules(self, values: Mapping[str, float]) -> float:
        for rule in self.rules:
            v = values.get(rule['metric'])
            if v is not None and compare(v, rule['op'], rule['value']):
                return rule['then']
        if self.default is None:
            raise ScoringError("no rule matched and no default configured", code='no_rule_matched')
        return self.default

"""
统计评分器 (closed-form)
========================

kind = "statistical"，params.op 决定计算方式：

聚合类（作用于全部 inputs）:
    mean / sum / min / max / variance / std   (variance/std 支持 ddof，默认 0)
单值类（inputs 恰好一个）:
    zscore      (x - mean) / std，std > 0
    percentile  x 在 reference 列表中的百分位 (scipy.stats.percentileofscore)，返回 0..1
    minmax      (x - low) / (high - low) 截断到 0..1
    bands       降序分档表 {threshold: score}，低于全部阈值返回 default

确定性：相同特征总是得到完全相同的结果，置信度恒为 1.0。
"""

from __future__ import annotations

import numpy as np
from scipy import stats

from orchestrator import register_scorer
from orchestrator.errors import ConfigurationError
from ..models import FeatureVector, MetricDefinition, MetricResult
from .base import apply_thresholds, ensure_finite, float_param, numeric_features, parse_bands, require_params

AGGREGATE_OPS = ('mean', 'sum', 'min', 'max', 'variance', 'std')
SINGLE_OPS = ('zscore', 'percentile', 'minmax', 'bands')


@register_scorer('statistical', version='1.0.0', tags=['closed_form'])
class StatisticalScorer:
    """Closed-form statistics over numeric features"""

    def __init__(self, definition: MetricDefinition):
        self.definition = definition
        params = definition.params
        self.op = str(params.get('op', 'mean')).lower()
        if self.op not in AGGREGATE_OPS + SINGLE_OPS:
            raise ConfigurationError(f"metric '{definition.name}': unknown statistical op '{self.op}'")
        if not definition.inputs:
            raise ConfigurationError(f"metric '{definition.name}': statistical scorer needs at least one input")
        if self.op in SINGLE_OPS and len(definition.inputs) != 1:
            raise ConfigurationError(f"metric '{definition.name}': op '{self.op}' takes exactly one input")

        self.ddof = int(params.get('ddof', 0))
        if self.op in ('variance', 'std') and len(definition.inputs) <= self.ddof:
            raise ConfigurationError(f"metric '{definition.name}': ddof={self.ddof} needs more inputs")

        if self.op == 'zscore':
            require_params(definition, 'mean', 'std')
            self.mean = float_param(definition, 'mean')
            self.std = float_param(definition, 'std')
            if self.std <= 0:
                raise ConfigurationError(f"metric '{definition.name}': zscore std must be > 0")
        elif self.op == 'percentile':
            require_params(definition, 'reference')
            reference = np.asarray(list(params['reference']), dtype=float)
            if reference.size == 0 or not np.all(np.isfinite(reference)):
                raise ConfigurationError(f"metric '{definition.name}': reference must be non-empty and finite")
            self.reference = np.sort(reference)
            self.kind = str(params.get('kind', 'rank'))
            if self.kind not in ('rank', 'weak', 'strict', 'mean'):
                raise ConfigurationError(f"metric '{definition.name}': unknown percentile kind '{self.kind}'")
        elif self.op == 'minmax':
            require_params(definition, 'low', 'high')
            self.low = float_param(definition, 'low')
            self.high = float_param(definition, 'high')
            if self.high <= self.low:
                raise ConfigurationError(f"metric '{definition.name}': minmax requires high > low")
        elif self.op == 'bands':
            require_params(definition, 'bands')
            self.bands = parse_bands(definition, params['bands'])
            self.default = float_param(definition, 'default', 0.0)

    def score(self, features: FeatureVector, upstream) -> MetricResult:
        values = numeric_features(features, self.definition.inputs)
        value = ensure_finite(self._compute(values), self.definition.name)
        return MetricResult.success(self.definition.name, value, version=self.definition.version,
                                    details={'op': self.op})

    def _compute(self, values) -> float:
        arr = np.asarray(values, dtype=float)
        op = self.op
        if op == 'mean':
            return float(np.mean(arr))
        if op == 'sum':
            return float(np.sum(arr))
        if op == 'min':
            return float(np.min(arr))
        if op == 'max':
            return float(np.max(arr))
        if op == 'variance':
            return float(np.var(arr, ddof=self.ddof))
        if op == 'std':
            return float(np.std(arr, ddof=self.ddof))

        x = float(arr[0])
        if op == 'zscore':
            return (x - self.mean) / self.std
        if op == 'percentile':
            return float(stats.percentileofscore(self.reference, x, kind=self.kind)) / 100.0
        if op == 'minmax':
            return float(np.clip((x - self.low) / (self.high - self.low), 0.0, 1.0))
        return apply_thresholds(x, self.bands, self.default)

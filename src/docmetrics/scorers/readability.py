"""
可读性评分器
============

kind = "readability"，基于文本统计特征 ``<field>.avg_sentence_length`` 与
``<field>.avg_syllables_per_word``：

- reading_ease (Flesch Reading Ease):  206.835 - 1.015 * ASL - 84.6 * ASW，截断到 [0, 100]
  标签为复杂度等级 (Very Easy / Easy / Moderate / Difficult / Very Difficult)
- grade_level (Flesch-Kincaid Grade):  0.39 * ASL + 11.8 * ASW - 15.59
  标签为阅读水平 (Elementary / Middle School / High School / College / Graduate)

系数与分档均可通过 params 覆盖；词数为 0 的文本评分失败 (code=empty_text)。
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

import numpy as np

from orchestrator import register_scorer
from orchestrator.errors import ConfigurationError, ScoringError
from ..models import FeatureVector, MetricDefinition, MetricResult
from .base import ensure_finite, numeric_feature

READING_EASE_DEFAULTS: Dict[str, float] = {
    'constant': 206.835,
    'sentence_length_multiplier': 1.015,
    'syllables_per_word_multiplier': 84.6,
}

READING_EASE_MIN, READING_EASE_MAX = 0.0, 100.0

GRADE_LEVEL_DEFAULTS: Dict[str, float] = {
    'constant': -15.59,
    'sentence_length_multiplier': 0.39,
    'syllables_per_word_multiplier': 11.8,
}

# 分数 >= 阈值 -> 等级（降序）
COMPLEXITY_LEVELS = (
    (80.0, 'Very Easy'),
    (60.0, 'Easy'),
    (40.0, 'Moderate'),
    (20.0, 'Difficult'),
)

# 年级 <= 阈值 -> 水平（升序）
READING_LEVELS = (
    (6.0, 'Elementary'),
    (9.0, 'Middle School'),
    (12.0, 'High School'),
    (16.0, 'College'),
)


def complexity_level(score: float, levels=COMPLEXITY_LEVELS) -> str:
    for thresh, label in levels:
        if score >= thresh:
            return label
    return 'Very Difficult'


def reading_level(grade: float, levels=READING_LEVELS) -> str:
    for thresh, label in levels:
        if grade <= thresh:
            return label
    return 'Graduate'


def _coefficients(definition: MetricDefinition, defaults: Mapping[str, float]) -> Dict[str, float]:
    overrides = definition.params.get('coefficients') or {}
    unknown = set(overrides) - set(defaults)
    if unknown:
        raise ConfigurationError(f"metric '{definition.name}': unknown coefficients {sorted(unknown)}")
    return {k: float(overrides.get(k, v)) for k, v in defaults.items()}


def _levels(definition: MetricDefinition, key: str, defaults, reverse: bool):
    raw = definition.params.get(key)
    if raw is None:
        return defaults
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"metric '{definition.name}': {key} must map label -> threshold")
    return tuple(sorted(((float(t), str(label)) for label, t in raw.items()), reverse=reverse))


@register_scorer('readability', version='1.0.0', tags=['text'])
class ReadabilityScorer:
    """Flesch reading ease / Flesch-Kincaid grade level"""

    FORMULAS = ('reading_ease', 'grade_level')

    def __init__(self, definition: MetricDefinition):
        self.definition = definition
        params = definition.params
        self.field = params.get('field') or (definition.inputs[0] if definition.inputs else None)
        if not self.field:
            raise ConfigurationError(f"metric '{definition.name}': readability needs a text field")
        self.formula = str(params.get('formula', 'reading_ease'))
        if self.formula not in self.FORMULAS:
            raise ConfigurationError(f"metric '{definition.name}': unknown readability formula '{self.formula}'")
        if self.formula == 'reading_ease':
            self.coefficients = _coefficients(definition, READING_EASE_DEFAULTS)
            self.levels = _levels(definition, 'complexity_levels', COMPLEXITY_LEVELS, reverse=True)
        else:
            self.coefficients = _coefficients(definition, GRADE_LEVEL_DEFAULTS)
            self.levels = _levels(definition, 'reading_levels', READING_LEVELS, reverse=False)
        # reading_ease 可选归一化到 0..1 (截断后的 score / 100)
        self.normalize = bool(params.get('normalize', False))

    def score(self, features: FeatureVector, upstream) -> MetricResult:
        words = numeric_feature(features, f"{self.field}.word_count")
        if words <= 0:
            raise ScoringError(f"text field '{self.field}' has no words", code='empty_text')
        asl = numeric_feature(features, f"{self.field}.avg_sentence_length")
        asw = numeric_feature(features, f"{self.field}.avg_syllables_per_word")

        c = self.coefficients
        if self.formula == 'reading_ease':
            raw = ensure_finite(
                c['constant'] - c['sentence_length_multiplier'] * asl - c['syllables_per_word_multiplier'] * asw,
                self.definition.name)
            # 报告值与分级均使用截断到 [0, 100] 的分数，原始值保留在 details
            value = float(np.clip(raw, READING_EASE_MIN, READING_EASE_MAX))
            label = complexity_level(value, self.levels)
            if self.normalize:
                value = value / READING_EASE_MAX
        else:
            raw = ensure_finite(
                c['sentence_length_multiplier'] * asl + c['syllables_per_word_multiplier'] * asw + c['constant'],
                self.definition.name)
            value = raw
            label = reading_level(raw, self.levels)

        details: Dict[str, Any] = {
            'formula': self.formula,
            'raw_score': raw,
            'avg_sentence_length': asl,
            'avg_syllables_per_word': asw,
        }
        return MetricResult.success(self.definition.name, value, version=self.definition.version,
                                    label=label, details=details)
